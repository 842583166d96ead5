"""Unit tests for the cascade executor."""

import asyncio

import pytest

from letright.config.settings import ErasureSettings
from letright.core.exceptions import DeletionPlanError
from letright.erasure.anonymizer import DELETED_REVIEW_CONTENT
from letright.erasure.cascade import CascadeExecutor
from letright.erasure.collections import InMemoryCollectionStore
from letright.erasure.plan import DeletionPlan, DeletionPlanRegistry, PlanEntry
from letright.erasure.types import PurgePolicy, SubjectType


class SlowCollectionStore(InMemoryCollectionStore):
    """Collection store that records call order and can stall collections."""

    def __init__(self, delays: dict[str, float] | None = None):
        super().__init__()
        self.delays = delays or {}
        self.calls: list[str] = []
        self.active = 0
        self.max_active = 0

    async def delete_rows(self, collection, subject_column, subject_id):
        self.calls.append(collection)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delays.get(collection, 0.01))
            return await super().delete_rows(collection, subject_column, subject_id)
        finally:
            self.active -= 1


def simple_registry() -> DeletionPlanRegistry:
    return DeletionPlanRegistry(
        [
            DeletionPlan(
                SubjectType.RENTER,
                entries=(
                    PlanEntry("messages", "renter_id", references=("renter_profiles",)),
                    PlanEntry("viewings", "renter_id", references=("renter_profiles",)),
                    PlanEntry("renter_profiles", "id"),
                ),
            )
        ]
    )


class TestDefaultPlanExecution:
    """Tests running the marketplace plans over in-memory rows."""

    @pytest.mark.asyncio
    async def test_renter_rows_purged(self, cascade_executor, collections):
        """Test every row referencing the renter is deleted or anonymized."""
        result = await cascade_executor.execute_for("renter-1", SubjectType.RENTER)

        assert result.errors == []
        assert collections.count("renter_profiles", "id", "renter-1") == 0
        assert collections.count("matches", "renter_id", "renter-1") == 0
        assert collections.count("conversations", "renter_id", "renter-1") == 0
        assert collections.count("email_notifications", "recipient_id", "renter-1") == 0

        # Other subjects are untouched
        assert collections.count("renter_profiles", "id", "renter-2") == 1
        assert collections.count("matches", "renter_id", "renter-2") == 1

    @pytest.mark.asyncio
    async def test_ratings_anonymized(self, cascade_executor, collections):
        """Test the renter's rating survives without identifying data."""
        result = await cascade_executor.execute_for("renter-1", SubjectType.RENTER)

        rating = collections.rows["ratings"][0]
        assert rating["id"] == "rating-1"
        assert rating["score"] == 4
        assert rating["from_user_id"] == "[DELETED]"
        assert rating["to_user_id"] == "landlord-1"
        assert rating["review"] == DELETED_REVIEW_CONTENT
        assert result.rows_anonymized == 1

    @pytest.mark.asyncio
    async def test_rating_counterparty_kept(self, cascade_executor, collections):
        """Test erasing a rated landlord leaves the author's id on the rating."""
        collections.insert(
            "ratings",
            {
                "id": "rating-2",
                "from_user_id": "renter-7",
                "to_user_id": "landlord-9",
                "score": 2,
                "review": "Slow repairs",
            },
        )

        await cascade_executor.execute_for("landlord-9", SubjectType.LANDLORD)

        rating = next(r for r in collections.rows["ratings"] if r["id"] == "rating-2")
        assert rating["from_user_id"] == "renter-7"
        assert rating["to_user_id"] == "[DELETED]"
        assert rating["review"] == DELETED_REVIEW_CONTENT

    @pytest.mark.asyncio
    async def test_counts(self, cascade_executor):
        """Test deleted rows are counted per collection."""
        result = await cascade_executor.execute_for("renter-1", SubjectType.RENTER)

        by_collection = {
            o.collection: o.rows_affected
            for o in result.outcomes
            if o.policy == PurgePolicy.DELETE
        }
        assert by_collection["matches"] == 1
        assert by_collection["renter_profiles"] == 1
        assert result.rows_deleted == 6
        assert "renter_profiles" in result.tables_affected

    @pytest.mark.asyncio
    async def test_agency_unlink(self, erasure_settings):
        """Test agency erasure keeps landlord properties and clears agency_id."""
        collections = InMemoryCollectionStore()
        collections.insert("agency_profiles", {"id": "agency-1"})
        collections.insert(
            "properties",
            {"id": "prop-1", "landlord_id": "landlord-1", "agency_id": "agency-1"},
        )
        collections.insert(
            "agency_property_links", {"agency_id": "agency-1", "property_id": "prop-1"}
        )
        executor = CascadeExecutor(
            DeletionPlanRegistry.with_default_plans(), collections, settings=erasure_settings
        )

        await executor.execute_for("agency-1", SubjectType.AGENCY)

        assert collections.rows["properties"] == [
            {"id": "prop-1", "landlord_id": "landlord-1", "agency_id": None}
        ]
        assert collections.count("agency_property_links") == 0
        assert collections.count("agency_profiles") == 0

    @pytest.mark.asyncio
    async def test_subject_without_rows(self, cascade_executor):
        """Test a subject with no rows completes with zero counts."""
        result = await cascade_executor.execute_for("admin-1", SubjectType.ADMIN)

        assert result.rows_deleted == 0
        assert result.errors == []
        assert result.all_failed is False

    @pytest.mark.asyncio
    async def test_missing_plan_raises(self, collections):
        """Test an unregistered subject type aborts the run."""
        executor = CascadeExecutor(DeletionPlanRegistry(), collections)
        with pytest.raises(DeletionPlanError):
            await executor.execute_for("renter-1", SubjectType.RENTER)


class TestFailureIsolation:
    """Tests for per-collection failure handling."""

    @pytest.mark.asyncio
    async def test_one_failing_collection(self, cascade_executor, collections):
        """Test remaining collections are purged when one collection throws."""
        collections.fail_on["interests"] = RuntimeError("interests shard offline")

        result = await cascade_executor.execute_for("renter-1", SubjectType.RENTER)

        assert result.errors == ["interests.renter_id: interests shard offline"]
        assert "interests" not in result.tables_affected
        assert collections.count("interests", "renter_id", "renter-1") == 1
        assert collections.count("matches", "renter_id", "renter-1") == 0
        assert collections.count("renter_profiles", "id", "renter-1") == 0
        assert result.all_failed is False

    @pytest.mark.asyncio
    async def test_error_without_message(self, cascade_executor, collections):
        """Test an exception without a message is reported by its type."""
        collections.fail_on["issues"] = ConnectionError()

        result = await cascade_executor.execute_for("renter-1", SubjectType.RENTER)

        assert result.errors == ["issues.renter_id: ConnectionError"]

    @pytest.mark.asyncio
    async def test_every_collection_failing(self):
        """Test all_failed when nothing could be purged."""
        collections = InMemoryCollectionStore()
        for name in ("messages", "viewings", "renter_profiles"):
            collections.fail_on[name] = RuntimeError("down")
        executor = CascadeExecutor(simple_registry(), collections)

        result = await executor.execute_for("renter-1", SubjectType.RENTER)

        assert result.all_failed is True
        assert len(result.errors) == 3

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Test a stalled collection is cut off and reported."""
        collections = SlowCollectionStore(delays={"messages": 5.0})
        executor = CascadeExecutor(
            simple_registry(),
            collections,
            settings=ErasureSettings(collection_timeout_seconds=0.05),
        )

        result = await executor.execute_for("renter-1", SubjectType.RENTER)

        assert result.errors == ["messages.renter_id: timed out after 0.05s"]
        assert result.tables_affected == ["viewings", "renter_profiles"]


class TestTierOrdering:
    """Tests for tiered, concurrent execution."""

    @pytest.mark.asyncio
    async def test_siblings_run_concurrently(self):
        """Test entries of one tier overlap and the parent waits for both."""
        collections = SlowCollectionStore(delays={"messages": 0.05, "viewings": 0.05})
        executor = CascadeExecutor(
            simple_registry(), collections, settings=ErasureSettings(concurrent_siblings=True)
        )

        await executor.execute_for("renter-1", SubjectType.RENTER)

        assert collections.max_active == 2
        assert collections.calls[-1] == "renter_profiles"

    @pytest.mark.asyncio
    async def test_sequential_mode(self):
        """Test concurrent_siblings=False runs entries one at a time in order."""
        collections = SlowCollectionStore()
        executor = CascadeExecutor(
            simple_registry(), collections, settings=ErasureSettings(concurrent_siblings=False)
        )

        await executor.execute_for("renter-1", SubjectType.RENTER)

        assert collections.max_active == 1
        assert collections.calls == ["messages", "viewings", "renter_profiles"]
