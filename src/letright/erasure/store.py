"""Persistence for deletion requests.

Two interchangeable implementations of :class:`DeletionRequestStore` are
provided and one is selected when the service is constructed:

- ``InMemoryDeletionRequestStore`` for tests and single-process setups
- ``SqlDeletionRequestStore`` backed by the ``deletion_requests`` table

Every status change goes through :meth:`DeletionRequestStore.transition`,
a compare-and-swap on the current status. It is the only correctness
critical synchronisation point of the workflow: two batch runners racing
for the same request both call ``transition(VERIFIED -> PROCESSING)`` and
exactly one gets the updated request back. Only edges listed in
:data:`letright.erasure.types.ALLOWED_TRANSITIONS` are ever applied.
"""

import asyncio
from collections.abc import AsyncGenerator, Collection
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from letright.core.exceptions import (
    DuplicateRequestError,
    InvalidTransitionError,
    StoreUnavailableError,
)
from letright.db.models.deletion import DeletionRequestRecord
from letright.db.repositories.deletion import DeletionRequestRepository
from letright.erasure.types import (
    NON_TERMINAL_STATUSES,
    TERMINAL_STATUSES,
    DeletionRequest,
    DeletionStatus,
    can_transition,
)


def check_edges(
    request_id: UUID, expected: Collection[DeletionStatus], target: DeletionStatus
) -> None:
    """Reject a transition whose expected statuses cannot reach ``target``."""
    for status in expected:
        if not can_transition(status, target):
            raise InvalidTransitionError(request_id, status.value, target.value)


class DeletionRequestStore(Protocol):
    """Protocol for deletion request storage."""

    async def create(self, request: DeletionRequest) -> DeletionRequest:
        """Insert a new request.

        Raises:
            DuplicateRequestError: If the subject already has a non-terminal request
        """
        ...

    async def get(self, request_id: UUID) -> DeletionRequest | None:
        """Get a request by ID."""
        ...

    async def find_by_verification_token(self, token: str) -> DeletionRequest | None:
        """Get the request holding a verification token."""
        ...

    async def find_by_cancellation_token(self, token: str) -> DeletionRequest | None:
        """Get the request holding a cancellation token."""
        ...

    async def find_active_for_subject(self, subject_id: str) -> DeletionRequest | None:
        """Get the subject's non-terminal request, if any."""
        ...

    async def list_for_subject(self, subject_id: str) -> list[DeletionRequest]:
        """Get every request ever made for a subject, oldest first."""
        ...

    async def list_due(self, now: datetime, limit: int) -> list[DeletionRequest]:
        """Get verified requests with ``scheduled_deletion_at <= now``."""
        ...

    async def list_stale_processing(self, cutoff: datetime, limit: int) -> list[DeletionRequest]:
        """Get processing requests claimed at or before ``cutoff``."""
        ...

    async def transition(
        self,
        request_id: UUID,
        expected: Collection[DeletionStatus],
        target: DeletionStatus,
        **changes: Any,
    ) -> DeletionRequest | None:
        """Atomically move a request to ``target`` if its status is in ``expected``.

        Returns:
            The updated request, or None if the request is missing or its
            status did not match

        Raises:
            DuplicateRequestError: If re-activating the request would give
                the subject two non-terminal requests
            InvalidTransitionError: If an expected status has no edge to ``target``
        """
        ...


class InMemoryDeletionRequestStore:
    """In-memory implementation of DeletionRequestStore.

    A single lock serialises every mutation, which makes ``transition`` a
    true compare-and-swap within one event loop. Callers always receive
    copies, never the stored objects.
    """

    def __init__(self) -> None:
        self._requests: dict[UUID, DeletionRequest] = {}
        self._lock = asyncio.Lock()

    async def create(self, request: DeletionRequest) -> DeletionRequest:
        async with self._lock:
            existing = self._active_for(request.subject_id)
            if existing is not None:
                raise DuplicateRequestError(request.subject_id, existing.id)
            self._requests[request.id] = request.model_copy()
        return request.model_copy()

    async def get(self, request_id: UUID) -> DeletionRequest | None:
        request = self._requests.get(request_id)
        return request.model_copy() if request else None

    async def find_by_verification_token(self, token: str) -> DeletionRequest | None:
        for request in self._requests.values():
            if request.verification_token == token:
                return request.model_copy()
        return None

    async def find_by_cancellation_token(self, token: str) -> DeletionRequest | None:
        for request in self._requests.values():
            if request.cancellation_token is not None and request.cancellation_token == token:
                return request.model_copy()
        return None

    async def find_active_for_subject(self, subject_id: str) -> DeletionRequest | None:
        request = self._active_for(subject_id)
        return request.model_copy() if request else None

    async def list_for_subject(self, subject_id: str) -> list[DeletionRequest]:
        matches = [r for r in self._requests.values() if r.subject_id == subject_id]
        return [r.model_copy() for r in sorted(matches, key=lambda r: r.requested_at)]

    async def list_due(self, now: datetime, limit: int) -> list[DeletionRequest]:
        due = [
            r
            for r in self._requests.values()
            if r.status == DeletionStatus.VERIFIED and r.scheduled_deletion_at <= now
        ]
        due.sort(key=lambda r: r.scheduled_deletion_at)
        return [r.model_copy() for r in due[:limit]]

    async def list_stale_processing(self, cutoff: datetime, limit: int) -> list[DeletionRequest]:
        stale = [
            r
            for r in self._requests.values()
            if r.status == DeletionStatus.PROCESSING
            and r.processing_started_at is not None
            and r.processing_started_at <= cutoff
        ]
        stale.sort(key=lambda r: r.processing_started_at)
        return [r.model_copy() for r in stale[:limit]]

    async def transition(
        self,
        request_id: UUID,
        expected: Collection[DeletionStatus],
        target: DeletionStatus,
        **changes: Any,
    ) -> DeletionRequest | None:
        check_edges(request_id, expected, target)
        async with self._lock:
            current = self._requests.get(request_id)
            if current is None or current.status not in expected:
                return None

            if current.status in TERMINAL_STATUSES and target in NON_TERMINAL_STATUSES:
                existing = self._active_for(current.subject_id)
                if existing is not None:
                    raise DuplicateRequestError(current.subject_id, existing.id)

            updated = current.model_copy(update={**changes, "status": target})
            self._requests[request_id] = updated
            return updated.model_copy()

    def _active_for(self, subject_id: str) -> DeletionRequest | None:
        for request in self._requests.values():
            if request.subject_id == subject_id and request.status in NON_TERMINAL_STATUSES:
                return request
        return None


class SqlDeletionRequestStore:
    """SQLAlchemy implementation of DeletionRequestStore.

    Each call runs in its own session and transaction, bounded by
    ``timeout_seconds``. Timeouts and driver errors surface as
    :class:`StoreUnavailableError`.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        timeout_seconds: float = 10.0,
    ):
        self._session_factory = session_factory
        self._timeout = timeout_seconds

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with asyncio.timeout(self._timeout):
                async with self._session_factory() as session:
                    yield session
        except TimeoutError as exc:
            raise StoreUnavailableError(operation, f"timed out after {self._timeout}s") from exc
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(operation, str(exc)) from exc

    async def create(self, request: DeletionRequest) -> DeletionRequest:
        async with self._session("create") as session:
            repo = DeletionRequestRepository(session)
            try:
                record = await repo.create(self._to_record(request))
            except IntegrityError as exc:
                await session.rollback()
                existing = await repo.find_active_for_subject(request.subject_id)
                raise DuplicateRequestError(
                    request.subject_id, existing.id if existing else None
                ) from exc
            return self._to_model(record)

    async def get(self, request_id: UUID) -> DeletionRequest | None:
        async with self._session("get") as session:
            record = await DeletionRequestRepository(session).get(request_id)
            return self._to_model(record) if record else None

    async def find_by_verification_token(self, token: str) -> DeletionRequest | None:
        async with self._session("find_by_verification_token") as session:
            record = await DeletionRequestRepository(session).find_by_verification_token(token)
            return self._to_model(record) if record else None

    async def find_by_cancellation_token(self, token: str) -> DeletionRequest | None:
        async with self._session("find_by_cancellation_token") as session:
            record = await DeletionRequestRepository(session).find_by_cancellation_token(token)
            return self._to_model(record) if record else None

    async def find_active_for_subject(self, subject_id: str) -> DeletionRequest | None:
        async with self._session("find_active_for_subject") as session:
            record = await DeletionRequestRepository(session).find_active_for_subject(subject_id)
            return self._to_model(record) if record else None

    async def list_for_subject(self, subject_id: str) -> list[DeletionRequest]:
        async with self._session("list_for_subject") as session:
            records = await DeletionRequestRepository(session).list_for_subject(subject_id)
            return [self._to_model(r) for r in records]

    async def list_due(self, now: datetime, limit: int) -> list[DeletionRequest]:
        async with self._session("list_due") as session:
            records = await DeletionRequestRepository(session).list_due(now, limit)
            return [self._to_model(r) for r in records]

    async def list_stale_processing(self, cutoff: datetime, limit: int) -> list[DeletionRequest]:
        async with self._session("list_stale_processing") as session:
            records = await DeletionRequestRepository(session).list_stale_processing(cutoff, limit)
            return [self._to_model(r) for r in records]

    async def transition(
        self,
        request_id: UUID,
        expected: Collection[DeletionStatus],
        target: DeletionStatus,
        **changes: Any,
    ) -> DeletionRequest | None:
        check_edges(request_id, expected, target)
        async with self._session("transition") as session:
            repo = DeletionRequestRepository(session)
            try:
                applied = await repo.compare_and_set(
                    request_id,
                    [status.value for status in expected],
                    {**changes, "status": target.value},
                )
            except IntegrityError as exc:
                await session.rollback()
                record = await repo.get(request_id)
                raise DuplicateRequestError(
                    record.subject_id if record else str(request_id)
                ) from exc

            if not applied:
                await session.rollback()
                return None

            await session.commit()
            record = await repo.get(request_id)
            return self._to_model(record) if record else None

    @staticmethod
    def _to_record(request: DeletionRequest) -> DeletionRequestRecord:
        data = request.model_dump()
        data["status"] = request.status.value
        data["subject_type"] = request.subject_type.value
        return DeletionRequestRecord(**data)

    @staticmethod
    def _to_model(record: DeletionRequestRecord) -> DeletionRequest:
        return DeletionRequest.model_validate(record)
