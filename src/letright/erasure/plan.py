"""Deletion plan registry.

A deletion plan lists, for one subject type, every collection holding rows
that reference the subject, the column identifying the subject, and what
happens to matching rows (delete or anonymize). Plans are data, not
control flow, so the purge order and policy of every collection can be
reviewed in one place.

Ordering is derived from each entry's ``references``: the collections it
holds foreign keys into. A collection is purged before every collection it
references, so a partially failed run never leaves rows pointing at a
parent that is already gone. Entries without a path between them share a
tier and may be purged concurrently.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from functools import cached_property
from graphlib import CycleError, TopologicalSorter
from typing import Self

from letright.core.exceptions import DeletionPlanError
from letright.erasure.anonymizer import AnonymizationRule
from letright.erasure.types import PurgePolicy, SubjectType

PROFILE_COLLECTIONS: dict[SubjectType, str] = {
    SubjectType.RENTER: "renter_profiles",
    SubjectType.LANDLORD: "landlord_profiles",
    SubjectType.AGENCY: "agency_profiles",
    SubjectType.ADMIN: "admin_profiles",
}
"""Profile collection of each subject type, keyed by the subject ID in ``id``."""


@dataclass(frozen=True)
class PlanEntry:
    """One collection purge within a deletion plan.

    Attributes:
        collection: Table or collection name
        subject_column: Column holding the subject ID
        policy: Delete matching rows or anonymize them in place
        references: Collections this one holds foreign keys into
        anonymize: Column rules applied under the anonymize policy
    """

    collection: str
    subject_column: str
    policy: PurgePolicy = PurgePolicy.DELETE
    references: tuple[str, ...] = ()
    anonymize: tuple[AnonymizationRule, ...] = ()

    def __post_init__(self) -> None:
        if self.policy == PurgePolicy.ANONYMIZE and not self.anonymize:
            raise DeletionPlanError(f"{self.key} uses the anonymize policy without rules")
        if self.policy == PurgePolicy.DELETE and self.anonymize:
            raise DeletionPlanError(f"{self.key} declares anonymization rules but deletes rows")

    @property
    def key(self) -> str:
        return f"{self.collection}.{self.subject_column}"


@dataclass(frozen=True)
class DeletionPlan:
    """Ordered purge plan for one subject type."""

    subject_type: SubjectType
    entries: tuple[PlanEntry, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        keys = [entry.key for entry in self.entries]
        duplicates = {key for key in keys if keys.count(key) > 1}
        if duplicates:
            raise DeletionPlanError(
                f"Plan for {self.subject_type.value} repeats entries: {sorted(duplicates)}"
            )

    @property
    def collections(self) -> list[str]:
        """Distinct collection names in declaration order."""
        return list(dict.fromkeys(entry.collection for entry in self.entries))

    @cached_property
    def tiers(self) -> list[list[PlanEntry]]:
        """Entries grouped into dependency tiers.

        Every entry of tier N+1 references, directly or transitively, some
        entry of an earlier tier. Within a tier entries keep declaration
        order.

        Raises:
            DeletionPlanError: If the references form a cycle
        """
        position = {entry.key: index for index, entry in enumerate(self.entries)}
        by_key = {entry.key: entry for entry in self.entries}
        by_collection: dict[str, list[str]] = {}
        for entry in self.entries:
            by_collection.setdefault(entry.collection, []).append(entry.key)

        # node -> entries that must run before it
        graph: dict[str, set[str]] = {entry.key: set() for entry in self.entries}
        for entry in self.entries:
            for referenced in entry.references:
                if referenced == entry.collection:
                    continue
                for parent_key in by_collection.get(referenced, []):
                    graph[parent_key].add(entry.key)

        sorter = TopologicalSorter(graph)
        try:
            sorter.prepare()
        except CycleError as exc:
            raise DeletionPlanError(
                f"Plan for {self.subject_type.value} has a reference cycle: {exc.args[1]}"
            ) from exc

        tiers: list[list[PlanEntry]] = []
        while sorter.is_active():
            ready = sorted(sorter.get_ready(), key=position.__getitem__)
            tiers.append([by_key[key] for key in ready])
            sorter.done(*ready)
        return tiers

    def ordered_entries(self) -> list[PlanEntry]:
        """All entries flattened in execution order."""
        return [entry for tier in self.tiers for entry in tier]


class DeletionPlanRegistry:
    """Registry of deletion plans keyed by subject type."""

    def __init__(self, plans: Sequence[DeletionPlan] | None = None):
        self._plans: dict[SubjectType, DeletionPlan] = {}
        if plans:
            self.load_plans(plans)

    def load_plans(self, plans: Iterable[DeletionPlan]) -> None:
        for plan in plans:
            self.register(plan)

    def register(self, plan: DeletionPlan) -> None:
        """Add or replace the plan for ``plan.subject_type``.

        Raises:
            DeletionPlanError: If the plan's references form a cycle
        """
        # Resolve tiers now so a broken plan fails at registration.
        _ = plan.tiers
        self._plans[plan.subject_type] = plan

    def get(self, subject_type: SubjectType) -> DeletionPlan:
        """Get the plan for a subject type.

        Raises:
            DeletionPlanError: If no plan is registered for the subject type
        """
        try:
            return self._plans[subject_type]
        except KeyError:
            raise DeletionPlanError(
                f"No deletion plan registered for subject type {subject_type.value}"
            ) from None

    def subject_types(self) -> list[SubjectType]:
        return list(self._plans)

    @classmethod
    def with_default_plans(cls) -> Self:
        """Create a registry holding the marketplace's default plans."""
        from letright.erasure.default_plans import get_default_plans

        return cls(plans=get_default_plans())
