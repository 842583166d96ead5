"""Deletion request model for the right-to-erasure workflow."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column
from uuid_utils.compat import uuid7

from .base import Base, PortableUUID, TimestampMixin, UTCDateTime

# Statuses that hold the per-subject slot. Kept as SQL text for the partial index.
_ACTIVE_STATUS_SQL = "status IN ('pending_verification', 'verified', 'processing')"


class DeletionRequestRecord(Base, TimestampMixin):
    """Persisted deletion request.

    Rows are never deleted: a request stays behind as the audit record of
    the erasure after the subject's other data has been purged.
    """

    __tablename__ = "deletion_requests"

    id: Mapped[UUID] = mapped_column(PortableUUID(), primary_key=True, default=uuid7)
    subject_id: Mapped[str] = mapped_column(String(255), nullable=False)
    subject_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)

    requested_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    verified_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    scheduled_deletion_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    processing_started_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    executed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    verification_token: Mapped[str] = mapped_column(String(128), nullable=False)
    cancellation_token: Mapped[str | None] = mapped_column(String(128), nullable=True)

    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("uq_deletion_requests_verification_token", "verification_token", unique=True),
        Index("uq_deletion_requests_cancellation_token", "cancellation_token", unique=True),
        Index("idx_deletion_requests_due", "status", "scheduled_deletion_at"),
        Index("idx_deletion_requests_subject", "subject_id"),
        # At most one non-terminal request per subject
        Index(
            "uq_deletion_requests_active_subject",
            "subject_id",
            unique=True,
            postgresql_where=text(_ACTIVE_STATUS_SQL),
            sqlite_where=text(_ACTIVE_STATUS_SQL),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<DeletionRequestRecord(id={self.id}, subject={self.subject_id}, "
            f"status={self.status})>"
        )
