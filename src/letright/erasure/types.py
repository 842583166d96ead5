"""Type definitions for the right-to-erasure workflow.

This module defines the deletion request record, its status machine, the
options accepted when a request is created, and the results produced by
the cascade executor and the batch runner.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from uuid_utils.compat import uuid7


class SubjectType(str, Enum):
    """Kind of account whose data is erased."""

    RENTER = "renter"
    LANDLORD = "landlord"
    AGENCY = "agency"
    ADMIN = "admin"


class DeletionStatus(str, Enum):
    """Status of a deletion request."""

    PENDING_VERIFICATION = "pending_verification"
    """Request created, waiting for the subject to confirm via token."""

    VERIFIED = "verified"
    """Confirmed; waiting for the grace period to elapse."""

    PROCESSING = "processing"
    """Claimed by a batch runner; cascade in progress."""

    COMPLETED = "completed"
    """Cascade finished (possibly with per-collection warnings)."""

    FAILED = "failed"
    """Cascade aborted or every collection failed. Needs an operator."""

    CANCELLED = "cancelled"
    """Withdrawn by the subject before processing began."""

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {DeletionStatus.COMPLETED, DeletionStatus.FAILED, DeletionStatus.CANCELLED}
)
NON_TERMINAL_STATUSES = frozenset(
    {
        DeletionStatus.PENDING_VERIFICATION,
        DeletionStatus.VERIFIED,
        DeletionStatus.PROCESSING,
    }
)

# target status -> statuses it may be reached from
ALLOWED_TRANSITIONS: dict[DeletionStatus, frozenset[DeletionStatus]] = {
    DeletionStatus.VERIFIED: frozenset(
        {
            DeletionStatus.PENDING_VERIFICATION,  # verify
            DeletionStatus.FAILED,  # operator re-queue
            DeletionStatus.PROCESSING,  # stale claim recovery
        }
    ),
    DeletionStatus.CANCELLED: frozenset(
        {DeletionStatus.PENDING_VERIFICATION, DeletionStatus.VERIFIED}
    ),
    DeletionStatus.PROCESSING: frozenset({DeletionStatus.VERIFIED}),
    DeletionStatus.COMPLETED: frozenset({DeletionStatus.PROCESSING}),
    DeletionStatus.FAILED: frozenset({DeletionStatus.PROCESSING}),
    DeletionStatus.PENDING_VERIFICATION: frozenset(),
}


def can_transition(current: DeletionStatus, target: DeletionStatus) -> bool:
    """Check whether ``current -> target`` is an edge of the status machine."""
    return current in ALLOWED_TRANSITIONS[target]


class DeletionRequest(BaseModel):
    """A subject's request to have their data erased.

    Never deleted: the request outlives the subject's other records as the
    audit record of the erasure.
    """

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid7)
    subject_id: str
    subject_type: SubjectType
    status: DeletionStatus = DeletionStatus.PENDING_VERIFICATION

    requested_at: datetime
    verified_at: datetime | None = None
    scheduled_deletion_at: datetime
    processing_started_at: datetime | None = None
    executed_at: datetime | None = None
    cancelled_at: datetime | None = None

    verification_token: str
    cancellation_token: str | None = None

    reason: str | None = None
    last_error: str | None = None
    attempts: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class DeletionOptions(BaseModel):
    """Options accepted by ``request_deletion``."""

    skip_grace_period: bool = False
    """Schedule the purge immediately. Restricted to authorized operators."""

    send_verification_email: bool = True
    """Deliver verification and cancellation links to the subject."""

    reason: str | None = None
    """Free text kept on the request; not interpreted."""

    actor_id: str | None = None
    """Who created the request, for the audit trail."""


class PurgePolicy(str, Enum):
    """What happens to a subject's rows in one collection."""

    DELETE = "delete"
    ANONYMIZE = "anonymize"


@dataclass
class CollectionOutcome:
    """Result of purging one plan entry."""

    collection: str
    subject_column: str
    policy: PurgePolicy
    rows_affected: int = 0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class CascadeResult:
    """Aggregate result of one cascade run for one subject."""

    subject_id: str
    subject_type: SubjectType
    outcomes: list[CollectionOutcome] = field(default_factory=list)

    @property
    def tables_affected(self) -> list[str]:
        """Collections purged without error, in execution order."""
        seen: list[str] = []
        for outcome in self.outcomes:
            if outcome.succeeded and outcome.collection not in seen:
                seen.append(outcome.collection)
        return seen

    @property
    def rows_deleted(self) -> int:
        return sum(
            o.rows_affected
            for o in self.outcomes
            if o.succeeded and o.policy == PurgePolicy.DELETE
        )

    @property
    def rows_anonymized(self) -> int:
        return sum(
            o.rows_affected
            for o in self.outcomes
            if o.succeeded and o.policy == PurgePolicy.ANONYMIZE
        )

    @property
    def errors(self) -> list[str]:
        return [
            f"{o.collection}.{o.subject_column}: {o.error}"
            for o in self.outcomes
            if not o.succeeded
        ]

    @property
    def all_failed(self) -> bool:
        """True when there was work to do and none of it succeeded."""
        return bool(self.outcomes) and not any(o.succeeded for o in self.outcomes)


class CollectionReport(BaseModel):
    """Serializable per-collection entry of a :class:`DeletionResult`."""

    collection: str
    subject_column: str
    policy: PurgePolicy
    rows_affected: int
    error: str | None = None


class DeletionResult(BaseModel):
    """Outcome of executing one claimed deletion request."""

    request_id: UUID
    subject_id: str
    subject_type: SubjectType
    success: bool
    status: DeletionStatus
    tables_affected: list[str] = Field(default_factory=list)
    records_deleted: int = 0
    anonymized_records: int = 0
    errors: list[str] = Field(default_factory=list)
    """Per-collection warnings on success; the failure cause otherwise."""

    collections: list[CollectionReport] = Field(default_factory=list)
    executed_at: datetime

    @classmethod
    def from_cascade(
        cls,
        request: DeletionRequest,
        cascade: CascadeResult,
        status: DeletionStatus,
        executed_at: datetime,
    ) -> "DeletionResult":
        return cls(
            request_id=request.id,
            subject_id=request.subject_id,
            subject_type=request.subject_type,
            success=status == DeletionStatus.COMPLETED,
            status=status,
            tables_affected=cascade.tables_affected,
            records_deleted=cascade.rows_deleted,
            anonymized_records=cascade.rows_anonymized,
            errors=cascade.errors,
            collections=[
                CollectionReport(
                    collection=o.collection,
                    subject_column=o.subject_column,
                    policy=o.policy,
                    rows_affected=o.rows_affected,
                    error=o.error,
                )
                for o in cascade.outcomes
            ],
            executed_at=executed_at,
        )

    @classmethod
    def from_exception(
        cls,
        request: DeletionRequest,
        error: str,
        executed_at: datetime,
    ) -> "DeletionResult":
        return cls(
            request_id=request.id,
            subject_id=request.subject_id,
            subject_type=request.subject_type,
            success=False,
            status=DeletionStatus.FAILED,
            errors=[error],
            executed_at=executed_at,
        )
