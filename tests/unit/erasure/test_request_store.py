"""Unit tests for deletion request stores.

The same behaviour is checked against the in-memory store and the SQL
store on SQLite, including the compare-and-swap transition and the one
active request per subject rule.
"""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from letright.core.exceptions import (
    DuplicateRequestError,
    InvalidTransitionError,
    StoreUnavailableError,
)
from letright.erasure.store import InMemoryDeletionRequestStore, SqlDeletionRequestStore
from letright.erasure.tokens import TokenIssuer
from letright.erasure.types import DeletionRequest, DeletionStatus, SubjectType

T0 = datetime(2025, 1, 1, tzinfo=UTC)
ISSUER = TokenIssuer()


def new_request(subject_id: str = "renter-1", **overrides) -> DeletionRequest:
    pair = ISSUER.issue_pair()
    data = {
        "subject_id": subject_id,
        "subject_type": SubjectType.RENTER,
        "requested_at": T0,
        "scheduled_deletion_at": T0 + timedelta(days=30),
        "verification_token": pair.verification,
        "cancellation_token": pair.cancellation,
    }
    data.update(overrides)
    return DeletionRequest(**data)


@pytest.fixture(params=["memory", "sql"])
def store(request, session_factory):
    """Each test runs against both store implementations."""
    if request.param == "memory":
        return InMemoryDeletionRequestStore()
    return SqlDeletionRequestStore(session_factory, timeout_seconds=5.0)


class TestCreateAndLookup:
    """Tests for creating and finding requests."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, store):
        """Test a created request can be read back unchanged."""
        request = new_request()

        await store.create(request)
        loaded = await store.get(request.id)

        assert loaded is not None
        assert loaded.id == request.id
        assert loaded.status == DeletionStatus.PENDING_VERIFICATION
        assert loaded.scheduled_deletion_at == T0 + timedelta(days=30)
        assert loaded.scheduled_deletion_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        """Test get returns None for an unknown ID."""
        assert await store.get(new_request().id) is None

    @pytest.mark.asyncio
    async def test_find_by_tokens(self, store):
        """Test both tokens locate the request."""
        request = await store.create(new_request())

        by_verify = await store.find_by_verification_token(request.verification_token)
        by_cancel = await store.find_by_cancellation_token(request.cancellation_token)

        assert by_verify.id == request.id
        assert by_cancel.id == request.id
        assert await store.find_by_verification_token("0" * 64) is None

    @pytest.mark.asyncio
    async def test_duplicate_active_request_rejected(self, store):
        """Test a second non-terminal request for a subject is rejected."""
        first = await store.create(new_request())

        with pytest.raises(DuplicateRequestError) as exc_info:
            await store.create(new_request())

        assert exc_info.value.subject_id == "renter-1"
        assert exc_info.value.existing_request_id == first.id

    @pytest.mark.asyncio
    async def test_new_request_allowed_after_terminal(self, store):
        """Test a subject may request again once the previous request ended."""
        first = await store.create(new_request())
        await store.transition(
            first.id, {DeletionStatus.PENDING_VERIFICATION}, DeletionStatus.CANCELLED
        )

        second = await store.create(new_request(requested_at=T0 + timedelta(days=1)))

        history = await store.list_for_subject("renter-1")
        assert [r.id for r in history] == [first.id, second.id]
        active = await store.find_active_for_subject("renter-1")
        assert active.id == second.id


class TestTransition:
    """Tests for the compare-and-swap transition."""

    @pytest.mark.asyncio
    async def test_applies_when_status_matches(self, store):
        """Test a matching transition updates status and fields."""
        request = await store.create(new_request())

        updated = await store.transition(
            request.id,
            {DeletionStatus.PENDING_VERIFICATION},
            DeletionStatus.VERIFIED,
            verified_at=T0 + timedelta(hours=1),
        )

        assert updated.status == DeletionStatus.VERIFIED
        assert updated.verified_at == T0 + timedelta(hours=1)
        assert (await store.get(request.id)).status == DeletionStatus.VERIFIED

    @pytest.mark.asyncio
    async def test_rejected_when_status_differs(self, store):
        """Test a stale expectation leaves the request untouched."""
        request = await store.create(new_request())

        result = await store.transition(
            request.id, {DeletionStatus.VERIFIED}, DeletionStatus.PROCESSING
        )

        assert result is None
        assert (await store.get(request.id)).status == DeletionStatus.PENDING_VERIFICATION

    @pytest.mark.asyncio
    async def test_missing_request(self, store):
        """Test transitioning an unknown request returns None."""
        result = await store.transition(
            new_request().id, {DeletionStatus.VERIFIED}, DeletionStatus.PROCESSING
        )
        assert result is None

    @pytest.mark.asyncio
    async def test_concurrent_claims_have_one_winner(self, store):
        """Test two racing claims produce exactly one processing request."""
        request = await store.create(new_request())
        await store.transition(
            request.id, {DeletionStatus.PENDING_VERIFICATION}, DeletionStatus.VERIFIED
        )

        results = await asyncio.gather(
            *(
                store.transition(
                    request.id,
                    {DeletionStatus.VERIFIED},
                    DeletionStatus.PROCESSING,
                    processing_started_at=T0,
                )
                for _ in range(5)
            )
        )

        winners = [r for r in results if r is not None]
        assert len(winners) == 1
        assert winners[0].status == DeletionStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_clearing_a_field(self, store):
        """Test a change can set a column back to None."""
        request = await store.create(new_request())
        await store.transition(
            request.id, {DeletionStatus.PENDING_VERIFICATION}, DeletionStatus.VERIFIED
        )

        claimed = await store.transition(
            request.id,
            {DeletionStatus.VERIFIED},
            DeletionStatus.PROCESSING,
            cancellation_token=None,
        )

        assert claimed.cancellation_token is None
        assert await store.find_by_cancellation_token(request.cancellation_token) is None

    @pytest.mark.asyncio
    async def test_reactivation_blocked_by_newer_request(self, store):
        """Test a failed request cannot return to verified beside a newer active one."""
        first = await store.create(new_request())
        await store.transition(
            first.id, {DeletionStatus.PENDING_VERIFICATION}, DeletionStatus.VERIFIED
        )
        await store.transition(first.id, {DeletionStatus.VERIFIED}, DeletionStatus.PROCESSING)
        await store.transition(first.id, {DeletionStatus.PROCESSING}, DeletionStatus.FAILED)
        await store.create(new_request(requested_at=T0 + timedelta(days=2)))

        with pytest.raises(DuplicateRequestError):
            await store.transition(first.id, {DeletionStatus.FAILED}, DeletionStatus.VERIFIED)

        assert (await store.get(first.id)).status == DeletionStatus.FAILED

    @pytest.mark.asyncio
    async def test_edge_outside_state_machine_rejected(self, store):
        """Test a transition the status machine does not allow is refused."""
        request = await store.create(new_request())

        with pytest.raises(InvalidTransitionError) as exc_info:
            await store.transition(
                request.id, {DeletionStatus.PENDING_VERIFICATION}, DeletionStatus.COMPLETED
            )

        assert exc_info.value.current_status == "pending_verification"
        assert exc_info.value.target_status == "completed"
        assert (await store.get(request.id)).status == DeletionStatus.PENDING_VERIFICATION

    @pytest.mark.asyncio
    async def test_terminal_status_cannot_be_reopened(self, store):
        """Test a cancelled request cannot be moved back to verified."""
        request = await store.create(new_request())
        await store.transition(
            request.id, {DeletionStatus.PENDING_VERIFICATION}, DeletionStatus.CANCELLED
        )

        with pytest.raises(InvalidTransitionError):
            await store.transition(request.id, {DeletionStatus.CANCELLED}, DeletionStatus.VERIFIED)

        assert (await store.get(request.id)).status == DeletionStatus.CANCELLED


class TestSelection:
    """Tests for due and stale selection."""

    async def _verified(self, store, subject_id: str, scheduled: datetime) -> DeletionRequest:
        request = await store.create(new_request(subject_id, scheduled_deletion_at=scheduled))
        return await store.transition(
            request.id, {DeletionStatus.PENDING_VERIFICATION}, DeletionStatus.VERIFIED
        )

    @pytest.mark.asyncio
    async def test_list_due(self, store):
        """Test only verified requests at or before now are due, oldest first."""
        now = T0 + timedelta(days=30)
        late = await self._verified(store, "a", now)
        early = await self._verified(store, "b", now - timedelta(days=1))
        await self._verified(store, "c", now + timedelta(seconds=1))
        await store.create(new_request("d", scheduled_deletion_at=now - timedelta(days=5)))

        due = await store.list_due(now, limit=10)

        assert [r.id for r in due] == [early.id, late.id]

    @pytest.mark.asyncio
    async def test_list_due_respects_limit(self, store):
        """Test the batch limit bounds the selection."""
        for index in range(3):
            await self._verified(store, f"s{index}", T0)

        assert len(await store.list_due(T0, limit=2)) == 2

    @pytest.mark.asyncio
    async def test_list_stale_processing(self, store):
        """Test processing requests claimed before the cutoff are stale."""
        old = await self._verified(store, "a", T0)
        fresh = await self._verified(store, "b", T0)
        await store.transition(
            old.id, {DeletionStatus.VERIFIED}, DeletionStatus.PROCESSING,
            processing_started_at=T0,
        )
        await store.transition(
            fresh.id, {DeletionStatus.VERIFIED}, DeletionStatus.PROCESSING,
            processing_started_at=T0 + timedelta(hours=2),
        )

        stale = await store.list_stale_processing(T0 + timedelta(hours=1), limit=10)

        assert [r.id for r in stale] == [old.id]


class TestSqlStoreFailures:
    """Tests for SQL store error mapping."""

    @pytest.mark.asyncio
    async def test_missing_schema_is_unavailable(self, tmp_path):
        """Test driver errors surface as StoreUnavailableError."""
        from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
        store = SqlDeletionRequestStore(async_sessionmaker(engine, class_=AsyncSession))

        try:
            with pytest.raises(StoreUnavailableError) as exc_info:
                await store.list_due(T0, 10)
        finally:
            await engine.dispose()

        assert exc_info.value.operation == "list_due"
