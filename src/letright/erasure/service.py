"""Lifecycle controller for right-to-erasure requests.

This module provides the ErasureService class that creates deletion
requests, applies verification and cancellation tokens, and records the
outcome of batch execution. Every status change is a compare-and-swap on
the request store, so concurrent callers never both win the same
transition.

State machine::

    pending_verification --verify--> verified
    pending_verification --cancel--> cancelled
    verified --cancel--> cancelled
    verified --claim--> processing
    processing --success--> completed
    processing --exception--> failed
    failed --requeue (operator)--> verified
    processing --stale recovery--> verified
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

import structlog

from letright.config.settings import ErasureSettings
from letright.core.audit import AuditEntry, AuditSink, record_safely
from letright.core.exceptions import (
    DuplicateRequestError,
    InvalidTokenError,
    InvalidTransitionError,
    RequestNotFoundError,
    SubjectNotFoundError,
)
from letright.core.logging import mask_token
from letright.db.models.audit import AuditEventType, AuditSeverity
from letright.erasure.notifications import NotificationDispatcher
from letright.erasure.store import DeletionRequestStore
from letright.erasure.subjects import SubjectDirectory
from letright.erasure.tokens import TokenIssuer
from letright.erasure.types import (
    ALLOWED_TRANSITIONS,
    CascadeResult,
    DeletionOptions,
    DeletionRequest,
    DeletionStatus,
    SubjectType,
)

logger = structlog.get_logger()


def utc_now() -> datetime:
    return datetime.now(UTC)


class ErasureService:
    """Creates deletion requests and drives them through their lifecycle.

    Collaborators are passed in explicitly; the service holds no global
    state. ``notifier`` may be None, in which case no links are delivered.
    """

    def __init__(
        self,
        store: DeletionRequestStore,
        subjects: SubjectDirectory,
        audit: AuditSink,
        notifier: NotificationDispatcher | None = None,
        tokens: TokenIssuer | None = None,
        settings: ErasureSettings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.subjects = subjects
        self.audit = audit
        self.notifier = notifier
        self.settings = settings or ErasureSettings()
        self.tokens = tokens or TokenIssuer(self.settings.token_bytes)
        self.clock = clock

    # =========================================================================
    # Subject-facing operations
    # =========================================================================

    async def request_deletion(
        self,
        subject_id: str,
        subject_type: SubjectType | str,
        options: DeletionOptions | None = None,
    ) -> DeletionRequest:
        """Create a deletion request for a subject.

        The request starts in ``pending_verification`` and is scheduled
        ``grace_period_days`` after creation, or immediately when
        ``options.skip_grace_period`` is set. Callers are responsible for
        only allowing authorized operators to skip the grace period.

        Args:
            subject_id: Subject whose data is to be erased
            subject_type: Type of the subject's account
            options: Request options

        Returns:
            The created request, holding both tokens

        Raises:
            SubjectNotFoundError: If the subject has no profile of that type
            DuplicateRequestError: If the subject already has a non-terminal request
        """
        options = options or DeletionOptions()
        subject_type = SubjectType(subject_type)

        if not await self.subjects.subject_exists(subject_id, subject_type):
            raise SubjectNotFoundError(subject_id, subject_type.value)

        existing = await self.store.find_active_for_subject(subject_id)
        if existing is not None:
            raise DuplicateRequestError(subject_id, existing.id)

        now = self.clock()
        grace_days = 0 if options.skip_grace_period else self.settings.grace_period_days
        tokens = self.tokens.issue_pair()

        request = await self.store.create(
            DeletionRequest(
                subject_id=subject_id,
                subject_type=subject_type,
                requested_at=now,
                scheduled_deletion_at=now + timedelta(days=grace_days),
                verification_token=tokens.verification,
                cancellation_token=tokens.cancellation,
                reason=options.reason,
            )
        )

        logger.info(
            "erasure_requested",
            request_id=str(request.id),
            subject_id=subject_id,
            subject_type=subject_type.value,
            scheduled_deletion_at=request.scheduled_deletion_at.isoformat(),
            skip_grace_period=options.skip_grace_period,
        )
        await self._record(
            AuditEventType.ERASURE_REQUESTED,
            request,
            actor_id=options.actor_id,
            grace_period_days=grace_days,
            skip_grace_period=options.skip_grace_period,
            scheduled_deletion_at=request.scheduled_deletion_at.isoformat(),
            reason_provided=options.reason is not None,
        )

        if options.send_verification_email and self.notifier is not None:
            self.notifier.dispatch(request)

        return request

    async def verify_deletion(self, token: str) -> DeletionRequest:
        """Confirm a pending request with its verification token.

        Raises:
            InvalidTokenError: If no pending request holds the token
        """
        request = await self.store.find_by_verification_token(token)
        if request is None or request.status != DeletionStatus.PENDING_VERIFICATION:
            logger.info("verification_rejected", token=mask_token(token))
            raise InvalidTokenError("verification")

        updated = await self.store.transition(
            request.id,
            {DeletionStatus.PENDING_VERIFICATION},
            DeletionStatus.VERIFIED,
            verified_at=self.clock(),
        )
        if updated is None:
            logger.info(
                "verification_rejected", token=mask_token(token), request_id=str(request.id)
            )
            raise InvalidTokenError("verification")

        logger.info("erasure_verified", request_id=str(updated.id), subject_id=updated.subject_id)
        await self._record(
            AuditEventType.ERASURE_VERIFIED,
            updated,
            actor_id=updated.subject_id,
            scheduled_deletion_at=updated.scheduled_deletion_at.isoformat(),
        )
        return updated

    async def cancel_deletion(self, token: str) -> DeletionRequest:
        """Withdraw a request that has not started processing.

        Raises:
            InvalidTokenError: If no pending or verified request holds the token
        """
        cancellable = ALLOWED_TRANSITIONS[DeletionStatus.CANCELLED]

        request = await self.store.find_by_cancellation_token(token)
        if request is None or request.status not in cancellable:
            logger.info("cancellation_rejected", token=mask_token(token))
            raise InvalidTokenError("cancellation")

        updated = await self.store.transition(
            request.id,
            cancellable,
            DeletionStatus.CANCELLED,
            cancelled_at=self.clock(),
        )
        if updated is None:
            logger.info(
                "cancellation_rejected", token=mask_token(token), request_id=str(request.id)
            )
            raise InvalidTokenError("cancellation")

        logger.info("erasure_cancelled", request_id=str(updated.id), subject_id=updated.subject_id)
        await self._record(
            AuditEventType.ERASURE_CANCELLED,
            updated,
            actor_id=updated.subject_id,
            previous_status=request.status.value,
        )
        return updated

    # =========================================================================
    # Execution bookkeeping (used by the batch runner)
    # =========================================================================

    async def claim(self, request: DeletionRequest) -> DeletionRequest | None:
        """Move a verified request to processing.

        Clears the cancellation token: cancelling is never possible once
        processing has begun.

        Returns:
            The claimed request, or None if another caller changed it first
        """
        claimed = await self.store.transition(
            request.id,
            {DeletionStatus.VERIFIED},
            DeletionStatus.PROCESSING,
            processing_started_at=self.clock(),
            cancellation_token=None,
            attempts=request.attempts + 1,
        )
        if claimed is None:
            return None

        logger.info("erasure_claimed", request_id=str(claimed.id), attempt=claimed.attempts)
        await self._record(AuditEventType.ERASURE_CLAIMED, claimed, attempt=claimed.attempts)
        return claimed

    async def mark_completed(
        self, request: DeletionRequest, cascade: CascadeResult
    ) -> DeletionRequest | None:
        """Record a finished cascade. Per-collection errors are kept as warnings."""
        completed = await self.store.transition(
            request.id,
            {DeletionStatus.PROCESSING},
            DeletionStatus.COMPLETED,
            executed_at=self.clock(),
            last_error=None,
        )
        if completed is None:
            logger.warning("completion_not_recorded", request_id=str(request.id))
            return None

        logger.info(
            "erasure_completed",
            request_id=str(completed.id),
            subject_id=completed.subject_id,
            rows_deleted=cascade.rows_deleted,
            rows_anonymized=cascade.rows_anonymized,
            warnings=len(cascade.errors),
        )
        await self._record(
            AuditEventType.ERASURE_COMPLETED,
            completed,
            severity=AuditSeverity.WARNING if cascade.errors else AuditSeverity.INFO,
            tables_affected=cascade.tables_affected,
            records_deleted=cascade.rows_deleted,
            anonymized_records=cascade.rows_anonymized,
            warnings=cascade.errors,
        )
        return completed

    async def mark_failed(self, request: DeletionRequest, error: str) -> DeletionRequest | None:
        """Record a failed execution. The request waits for an operator re-queue."""
        failed = await self.store.transition(
            request.id,
            {DeletionStatus.PROCESSING},
            DeletionStatus.FAILED,
            last_error=error,
        )
        if failed is None:
            logger.warning("failure_not_recorded", request_id=str(request.id), error=error)
            return None

        logger.error(
            "erasure_failed",
            request_id=str(failed.id),
            subject_id=failed.subject_id,
            error=error,
        )
        await self._record(
            AuditEventType.ERASURE_FAILED,
            failed,
            severity=AuditSeverity.ERROR,
            error=error,
            attempt=failed.attempts,
        )
        return failed

    # =========================================================================
    # Operator operations
    # =========================================================================

    async def requeue_failed(
        self,
        request_id: UUID,
        delay: timedelta | None = None,
        actor_id: str | None = None,
    ) -> DeletionRequest:
        """Return a failed request to verified with a new schedule.

        Args:
            request_id: Failed request to re-queue
            delay: Time until the new ``scheduled_deletion_at`` (default: now)
            actor_id: Operator performing the re-queue

        Raises:
            RequestNotFoundError: If the request does not exist
            InvalidTransitionError: If the request is not failed
            DuplicateRequestError: If the subject has since made another request
        """
        request = await self.get_request(request_id)
        if request.status != DeletionStatus.FAILED:
            raise InvalidTransitionError(
                request_id, request.status.value, DeletionStatus.VERIFIED.value
            )

        scheduled = self.clock() + (delay or timedelta(0))
        requeued = await self.store.transition(
            request_id,
            {DeletionStatus.FAILED},
            DeletionStatus.VERIFIED,
            scheduled_deletion_at=scheduled,
            processing_started_at=None,
            last_error=None,
        )
        if requeued is None:
            current = await self.get_request(request_id)
            raise InvalidTransitionError(
                request_id, current.status.value, DeletionStatus.VERIFIED.value
            )

        logger.info(
            "erasure_requeued",
            request_id=str(request_id),
            scheduled_deletion_at=scheduled.isoformat(),
            actor_id=actor_id,
        )
        await self._record(
            AuditEventType.ERASURE_REQUEUED,
            requeued,
            actor_id=actor_id,
            previous_error=request.last_error,
            scheduled_deletion_at=scheduled.isoformat(),
        )
        return requeued

    async def recover_stale_requests(self, now: datetime | None = None) -> list[DeletionRequest]:
        """Return abandoned processing requests to verified.

        A request is stale when it has been processing for longer than
        ``stale_processing_minutes``; its worker is assumed to have died.

        Returns:
            Requests moved back to verified
        """
        now = now or self.clock()
        cutoff = now - timedelta(minutes=self.settings.stale_processing_minutes)
        stale = await self.store.list_stale_processing(cutoff, self.settings.batch_size)

        recovered: list[DeletionRequest] = []
        for request in stale:
            updated = await self.store.transition(
                request.id,
                {DeletionStatus.PROCESSING},
                DeletionStatus.VERIFIED,
                processing_started_at=None,
            )
            if updated is None:
                continue

            started = request.processing_started_at
            logger.warning(
                "stale_request_recovered",
                request_id=str(request.id),
                processing_started_at=started.isoformat() if started else None,
            )
            await self._record(
                AuditEventType.ERASURE_RECOVERED,
                updated,
                severity=AuditSeverity.WARNING,
                processing_started_at=started.isoformat() if started else None,
                attempt=request.attempts,
            )
            recovered.append(updated)

        return recovered

    async def get_request(self, request_id: UUID) -> DeletionRequest:
        """Get a request by ID.

        Raises:
            RequestNotFoundError: If the request does not exist
        """
        request = await self.store.get(request_id)
        if request is None:
            raise RequestNotFoundError(request_id)
        return request

    async def list_requests_for_subject(self, subject_id: str) -> list[DeletionRequest]:
        """Get every request made for a subject, oldest first."""
        return await self.store.list_for_subject(subject_id)

    async def _record(
        self,
        event_type: AuditEventType,
        request: DeletionRequest,
        severity: AuditSeverity = AuditSeverity.INFO,
        actor_id: str | None = None,
        **event_data: Any,
    ) -> None:
        await record_safely(
            self.audit,
            AuditEntry(
                event_type=event_type,
                severity=severity,
                subject_id=request.subject_id,
                subject_type=request.subject_type.value,
                actor_id=actor_id,
                resource_id=str(request.id),
                event_data={"status": request.status.value, **event_data},
                occurred_at=self.clock(),
            ),
        )
