"""Column anonymization for rows that must outlive their subject.

Rows under an anonymize policy (ratings that feed aggregate scores, links
that other subjects still own) keep their primary key and numeric fields;
identifying columns are overwritten with fixed values. Replacement values
never depend on the original value, so the same UPDATE can be applied to
every matching row and the result cannot be reversed.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


DELETED_SUBJECT_SENTINEL = "[DELETED]"
"""Written over identifier columns that referenced the erased subject."""

DELETED_REVIEW_CONTENT = "[User deleted their account]"
"""Written over free-text review content."""


class AnonymizationMethod(str, Enum):
    """Methods for anonymizing a column."""

    REDACTION = "redaction"
    """Replace with the deleted-subject sentinel."""

    PLACEHOLDER = "placeholder"
    """Replace with a rule-specific placeholder text."""

    NULLIFY = "nullify"
    """Clear the column (used for optional foreign keys)."""


@dataclass(frozen=True)
class AnonymizationRule:
    """Rule for anonymizing one column."""

    field_name: str
    """Name of the column to overwrite."""

    method: AnonymizationMethod = AnonymizationMethod.REDACTION
    """Anonymization method to use."""

    custom_value: str | None = None
    """Replacement text for PLACEHOLDER."""

    def __post_init__(self) -> None:
        if self.method == AnonymizationMethod.PLACEHOLDER and not self.custom_value:
            raise ValueError(f"Placeholder rule for {self.field_name} needs a custom_value")


class DataAnonymizer:
    """Turns anonymization rules into column replacement values."""

    def __init__(self, sentinel: str = DELETED_SUBJECT_SENTINEL):
        self.sentinel = sentinel

    def replacement_for(self, rule: AnonymizationRule) -> Any:
        """Get the value written over ``rule.field_name``."""
        if rule.method == AnonymizationMethod.NULLIFY:
            return None
        if rule.method == AnonymizationMethod.PLACEHOLDER:
            return rule.custom_value
        return self.sentinel

    def build_replacements(self, rules: tuple[AnonymizationRule, ...]) -> dict[str, Any]:
        """Build the column -> value mapping for an anonymize UPDATE.

        Args:
            rules: Rules of one plan entry

        Returns:
            Mapping of column name to replacement value

        Raises:
            ValueError: If no rules were given or a column has two rules
        """
        if not rules:
            raise ValueError("At least one anonymization rule is required")

        replacements: dict[str, Any] = {}
        for rule in rules:
            if rule.field_name in replacements:
                raise ValueError(f"Duplicate anonymization rule for {rule.field_name}")
            replacements[rule.field_name] = self.replacement_for(rule)

        logger.debug(f"Built anonymization replacements for {sorted(replacements)}")
        return replacements

    def anonymize_row(
        self, row: dict[str, Any], rules: tuple[AnonymizationRule, ...]
    ) -> dict[str, Any]:
        """Return a copy of ``row`` with the rules applied."""
        return {**row, **self.build_replacements(rules)}
