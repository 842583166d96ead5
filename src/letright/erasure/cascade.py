"""Cascade executor.

Walks the deletion plan of one subject tier by tier. Entries of a tier are
independent and run concurrently when ``concurrent_siblings`` is enabled;
a tier starts only after every entry of the previous tier has finished.

A failing entry is recorded on its :class:`CollectionOutcome` and the walk
continues, so one unavailable collection never prevents the purge of the
others.
"""

import asyncio

import structlog

from letright.config.settings import ErasureSettings
from letright.erasure.anonymizer import DataAnonymizer
from letright.erasure.collections import CollectionStore
from letright.erasure.plan import DeletionPlanRegistry, PlanEntry
from letright.erasure.types import CascadeResult, CollectionOutcome, PurgePolicy, SubjectType

logger = structlog.get_logger()


class CascadeExecutor:
    """Purges or anonymizes every row referencing one subject."""

    def __init__(
        self,
        registry: DeletionPlanRegistry,
        collections: CollectionStore,
        anonymizer: DataAnonymizer | None = None,
        settings: ErasureSettings | None = None,
    ):
        self.registry = registry
        self.collections = collections
        self.anonymizer = anonymizer or DataAnonymizer()
        self.settings = settings or ErasureSettings()

    async def execute_for(self, subject_id: str, subject_type: SubjectType) -> CascadeResult:
        """Run the subject type's plan for one subject.

        Args:
            subject_id: Subject whose rows are purged
            subject_type: Selects the deletion plan

        Returns:
            Outcome of every plan entry, in execution order

        Raises:
            DeletionPlanError: If no plan exists for the subject type
        """
        plan = self.registry.get(subject_type)
        result = CascadeResult(subject_id=subject_id, subject_type=subject_type)

        for index, tier in enumerate(plan.tiers):
            if self.settings.concurrent_siblings and len(tier) > 1:
                outcomes = await asyncio.gather(
                    *(self._purge(entry, subject_id) for entry in tier)
                )
            else:
                outcomes = [await self._purge(entry, subject_id) for entry in tier]
            result.outcomes.extend(outcomes)

            logger.debug(
                "cascade_tier_finished",
                subject_id=subject_id,
                tier=index,
                collections=[entry.key for entry in tier],
            )

        logger.info(
            "cascade_finished",
            subject_id=subject_id,
            subject_type=subject_type.value,
            rows_deleted=result.rows_deleted,
            rows_anonymized=result.rows_anonymized,
            failed_collections=len(result.errors),
        )
        return result

    async def _purge(self, entry: PlanEntry, subject_id: str) -> CollectionOutcome:
        outcome = CollectionOutcome(
            collection=entry.collection,
            subject_column=entry.subject_column,
            policy=entry.policy,
        )
        try:
            async with asyncio.timeout(self.settings.collection_timeout_seconds):
                if entry.policy == PurgePolicy.ANONYMIZE:
                    outcome.rows_affected = await self.collections.anonymize_rows(
                        entry.collection,
                        entry.subject_column,
                        subject_id,
                        self.anonymizer.build_replacements(entry.anonymize),
                    )
                else:
                    outcome.rows_affected = await self.collections.delete_rows(
                        entry.collection, entry.subject_column, subject_id
                    )
        except TimeoutError:
            outcome.error = f"timed out after {self.settings.collection_timeout_seconds}s"
        except Exception as exc:
            outcome.error = str(exc) or type(exc).__name__

        if outcome.error is not None:
            logger.warning(
                "collection_purge_failed",
                subject_id=subject_id,
                collection=entry.collection,
                subject_column=entry.subject_column,
                policy=entry.policy.value,
                error=outcome.error,
            )
        return outcome
