"""Request and response schemas for the erasure endpoints.

Tokens are credentials delivered out of band; no response ever contains
them.
"""

from datetime import datetime
from typing import Self
from uuid import UUID

from pydantic import BaseModel, Field

from letright.erasure.types import (
    DeletionOptions,
    DeletionRequest,
    DeletionResult,
    DeletionStatus,
    SubjectType,
)


class DeletionRequestCreate(BaseModel):
    """Body of ``POST /v1/erasure/requests``."""

    subject_id: str = Field(..., min_length=1, max_length=255)
    subject_type: SubjectType
    reason: str | None = Field(default=None, max_length=2000)
    skip_grace_period: bool = Field(
        default=False, description="Schedule the purge immediately"
    )
    send_verification_email: bool = True

    def to_options(self, actor_id: str | None) -> DeletionOptions:
        return DeletionOptions(
            skip_grace_period=self.skip_grace_period,
            send_verification_email=self.send_verification_email,
            reason=self.reason,
            actor_id=actor_id,
        )


class TokenSubmission(BaseModel):
    """Body of the public verify and cancel endpoints."""

    token: str = Field(..., min_length=16, max_length=256)


class RequeueSubmission(BaseModel):
    """Body of ``POST /v1/erasure/requests/{id}/requeue``."""

    delay_seconds: int = Field(default=0, ge=0, description="Delay before the new schedule")


class ExecuteJobSubmission(BaseModel):
    """Body of ``POST /v1/erasure/jobs/execute``."""

    now: datetime | None = Field(
        default=None, description="Selection time; defaults to the server clock"
    )


class DeletionRequestResponse(BaseModel):
    """Operator view of a deletion request."""

    id: UUID
    subject_id: str
    subject_type: SubjectType
    status: DeletionStatus
    requested_at: datetime
    verified_at: datetime | None = None
    scheduled_deletion_at: datetime
    processing_started_at: datetime | None = None
    executed_at: datetime | None = None
    cancelled_at: datetime | None = None
    reason: str | None = None
    last_error: str | None = None
    attempts: int = 0

    @classmethod
    def from_request(cls, request: DeletionRequest) -> Self:
        data = request.model_dump(exclude={"verification_token", "cancellation_token"})
        return cls.model_validate(data)


class DeletionRequestListResponse(BaseModel):
    subject_id: str
    requests: list[DeletionRequestResponse]


class DeletionStatusResponse(BaseModel):
    """Subject-facing result of verify and cancel."""

    request_id: UUID
    status: DeletionStatus
    scheduled_deletion_at: datetime
    message: str

    @classmethod
    def from_request(cls, request: DeletionRequest, message: str) -> Self:
        return cls(
            request_id=request.id,
            status=request.status,
            scheduled_deletion_at=request.scheduled_deletion_at,
            message=message,
        )


class ExecuteJobResponse(BaseModel):
    executed: int
    completed: int
    failed: int
    results: list[DeletionResult]

    @classmethod
    def from_results(cls, results: list[DeletionResult]) -> Self:
        return cls(
            executed=len(results),
            completed=sum(1 for r in results if r.status == DeletionStatus.COMPLETED),
            failed=sum(1 for r in results if r.status == DeletionStatus.FAILED),
            results=results,
        )


class RecoverStaleResponse(BaseModel):
    recovered: list[DeletionRequestResponse]
