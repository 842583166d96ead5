"""Repository for deletion request records."""

from collections.abc import Collection
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select, update

from letright.db.models.deletion import DeletionRequestRecord
from letright.db.repositories.base import BaseRepository

ACTIVE_STATUSES = ("pending_verification", "verified", "processing")


class DeletionRequestRepository(BaseRepository[DeletionRequestRecord, UUID]):
    """Data access for ``deletion_requests``.

    Status changes go through :meth:`compare_and_set`, which only touches
    the row when its current status is one of the expected values. The
    caller commits.
    """

    async def find_by_verification_token(self, token: str) -> DeletionRequestRecord | None:
        stmt = select(DeletionRequestRecord).where(
            DeletionRequestRecord.verification_token == token
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_cancellation_token(self, token: str) -> DeletionRequestRecord | None:
        stmt = select(DeletionRequestRecord).where(
            DeletionRequestRecord.cancellation_token == token
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def find_active_for_subject(self, subject_id: str) -> DeletionRequestRecord | None:
        stmt = select(DeletionRequestRecord).where(
            DeletionRequestRecord.subject_id == subject_id,
            DeletionRequestRecord.status.in_(ACTIVE_STATUSES),
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def list_for_subject(self, subject_id: str) -> list[DeletionRequestRecord]:
        stmt = (
            select(DeletionRequestRecord)
            .where(DeletionRequestRecord.subject_id == subject_id)
            .order_by(DeletionRequestRecord.requested_at)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_due(self, now: datetime, limit: int) -> list[DeletionRequestRecord]:
        """List verified requests whose grace period has elapsed, oldest first."""
        stmt = (
            select(DeletionRequestRecord)
            .where(
                DeletionRequestRecord.status == "verified",
                DeletionRequestRecord.scheduled_deletion_at <= now,
            )
            .order_by(DeletionRequestRecord.scheduled_deletion_at)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_stale_processing(
        self, cutoff: datetime, limit: int
    ) -> list[DeletionRequestRecord]:
        """List processing requests claimed at or before ``cutoff``."""
        stmt = (
            select(DeletionRequestRecord)
            .where(
                DeletionRequestRecord.status == "processing",
                DeletionRequestRecord.processing_started_at <= cutoff,
            )
            .order_by(DeletionRequestRecord.processing_started_at)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def compare_and_set(
        self,
        request_id: UUID,
        expected_statuses: Collection[str],
        values: dict[str, Any],
    ) -> bool:
        """Apply ``values`` only if the row is still in an expected status.

        Args:
            request_id: Row to update
            expected_statuses: Statuses the row must currently hold
            values: Column values to write

        Returns:
            True if exactly one row was updated
        """
        stmt = (
            update(DeletionRequestRecord)
            .where(
                DeletionRequestRecord.id == request_id,
                DeletionRequestRecord.status.in_(list(expected_statuses)),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1
