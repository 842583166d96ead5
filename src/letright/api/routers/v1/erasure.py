"""Right-to-erasure API endpoints.

Subject-facing (token is the credential, no API key):
- POST /erasure/verify - Confirm a request with its verification token
- POST /erasure/cancel - Withdraw a request with its cancellation token

Operator (Bearer API key):
- POST /erasure/requests - Create a deletion request
- GET /erasure/requests - List a subject's requests
- GET /erasure/requests/{request_id} - Get one request
- POST /erasure/requests/{request_id}/requeue - Re-queue a failed request
- POST /erasure/jobs/execute - Run the batch runner now
- POST /erasure/jobs/recover-stale - Return abandoned claims to verified
"""

from datetime import timedelta
from typing import Annotated
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query, status

from letright.api.dependencies import BatchRunnerDep, ErasureServiceDep, get_actor_id
from letright.api.schemas.erasure import (
    DeletionRequestCreate,
    DeletionRequestListResponse,
    DeletionRequestResponse,
    DeletionStatusResponse,
    ExecuteJobResponse,
    ExecuteJobSubmission,
    RecoverStaleResponse,
    RequeueSubmission,
    TokenSubmission,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/erasure", tags=["erasure"])

ActorId = Annotated[str | None, Depends(get_actor_id)]


# =============================================================================
# Subject-facing endpoints
# =============================================================================


@router.post(
    "/verify",
    response_model=DeletionStatusResponse,
    summary="Verify a deletion request",
    responses={400: {"description": "Invalid or expired verification token"}},
)
async def verify_deletion(
    body: TokenSubmission,
    service: ErasureServiceDep,
) -> DeletionStatusResponse:
    """Confirm a pending deletion request.

    The request is executed once its grace period has elapsed; until then
    it can still be cancelled.
    """
    request = await service.verify_deletion(body.token)
    return DeletionStatusResponse.from_request(
        request, "Deletion confirmed. Your data will be erased after the grace period."
    )


@router.post(
    "/cancel",
    response_model=DeletionStatusResponse,
    summary="Cancel a deletion request",
    responses={400: {"description": "Invalid or expired cancellation token"}},
)
async def cancel_deletion(
    body: TokenSubmission,
    service: ErasureServiceDep,
) -> DeletionStatusResponse:
    """Withdraw a deletion request that has not started processing."""
    request = await service.cancel_deletion(body.token)
    return DeletionStatusResponse.from_request(request, "Deletion request cancelled.")


# =============================================================================
# Operator endpoints
# =============================================================================


@router.post(
    "/requests",
    response_model=DeletionRequestResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a deletion request",
    responses={
        404: {"description": "Subject has no profile of the given type"},
        409: {"description": "Subject already has an active request"},
    },
)
async def create_deletion_request(
    body: DeletionRequestCreate,
    service: ErasureServiceDep,
    actor_id: ActorId,
) -> DeletionRequestResponse:
    """Create a deletion request and send the verification links."""
    request = await service.request_deletion(
        body.subject_id,
        body.subject_type,
        body.to_options(actor_id),
    )
    return DeletionRequestResponse.from_request(request)


@router.get(
    "/requests",
    response_model=DeletionRequestListResponse,
    summary="List a subject's deletion requests",
)
async def list_deletion_requests(
    service: ErasureServiceDep,
    subject_id: Annotated[str, Query(min_length=1, description="Subject to list requests for")],
) -> DeletionRequestListResponse:
    requests = await service.list_requests_for_subject(subject_id)
    return DeletionRequestListResponse(
        subject_id=subject_id,
        requests=[DeletionRequestResponse.from_request(r) for r in requests],
    )


@router.get(
    "/requests/{request_id}",
    response_model=DeletionRequestResponse,
    summary="Get a deletion request",
    responses={404: {"description": "Request not found"}},
)
async def get_deletion_request(
    request_id: UUID,
    service: ErasureServiceDep,
) -> DeletionRequestResponse:
    request = await service.get_request(request_id)
    return DeletionRequestResponse.from_request(request)


@router.post(
    "/requests/{request_id}/requeue",
    response_model=DeletionRequestResponse,
    summary="Re-queue a failed deletion request",
    responses={
        404: {"description": "Request not found"},
        409: {"description": "Request is not failed, or the subject has another active request"},
    },
)
async def requeue_deletion_request(
    request_id: UUID,
    service: ErasureServiceDep,
    actor_id: ActorId,
    body: RequeueSubmission | None = None,
) -> DeletionRequestResponse:
    """Return a failed request to verified after the cause has been fixed."""
    delay = timedelta(seconds=body.delay_seconds) if body else None
    request = await service.requeue_failed(request_id, delay=delay, actor_id=actor_id)
    return DeletionRequestResponse.from_request(request)


@router.post(
    "/jobs/execute",
    response_model=ExecuteJobResponse,
    summary="Execute due deletion requests",
    responses={503: {"description": "Request store unavailable"}},
)
async def execute_pending_deletions(
    runner: BatchRunnerDep,
    actor_id: ActorId,
    body: ExecuteJobSubmission | None = None,
) -> ExecuteJobResponse:
    """Run one batch now, in addition to the scheduled job."""
    now = body.now if body else None
    logger.info("batch_triggered", actor_id=actor_id, now=now.isoformat() if now else None)
    results = await runner.execute_pending_deletions(now)
    return ExecuteJobResponse.from_results(results)


@router.post(
    "/jobs/recover-stale",
    response_model=RecoverStaleResponse,
    summary="Recover abandoned processing requests",
)
async def recover_stale_requests(
    service: ErasureServiceDep,
    actor_id: ActorId,
) -> RecoverStaleResponse:
    logger.info("stale_recovery_triggered", actor_id=actor_id)
    recovered = await service.recover_stale_requests()
    return RecoverStaleResponse(
        recovered=[DeletionRequestResponse.from_request(r) for r in recovered]
    )
