"""Configuration validation for startup checks.

Validates that required configuration is present and consistent before the
application starts accepting requests or running the erasure job.

Usage:
    from letright.config.validation import validate_configuration

    # During startup
    errors = validate_configuration()
    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        sys.exit(1)
"""

import logging
from dataclasses import dataclass
from enum import Enum

from letright.config.settings import ErasureBackend, Settings, get_settings
from letright.utils.exceptions import ConfigurationError

logger = logging.getLogger("letright.config")


class ValidationSeverity(str, Enum):
    """Severity of configuration validation issues."""

    ERROR = "error"  # Must be fixed, app cannot start
    WARNING = "warning"  # Should be fixed, app can start but may have issues


@dataclass
class ValidationResult:
    """Result of a configuration validation check."""

    field: str
    severity: ValidationSeverity
    message: str
    suggestion: str | None = None

    def __str__(self) -> str:
        prefix = "ERROR" if self.severity == ValidationSeverity.ERROR else "WARNING"
        result = f"[{prefix}] {self.field}: {self.message}"
        if self.suggestion:
            result += f"\n  Suggestion: {self.suggestion}"
        return result


def validate_configuration(settings: Settings | None = None) -> list[ValidationResult]:
    """Validate application configuration.

    Runs all configuration checks and returns a list of validation results.

    Args:
        settings: Settings to validate (default: global settings)

    Returns:
        List of validation results (empty if all checks pass)
    """
    if settings is None:
        settings = get_settings()

    results: list[ValidationResult] = []
    results.extend(_validate_database(settings))
    results.extend(_validate_security(settings))
    results.extend(_validate_erasure(settings))

    return results


def validate_or_raise(settings: Settings | None = None) -> None:
    """Validate configuration and raise if errors found.

    Args:
        settings: Settings to validate

    Raises:
        ConfigurationError: If any validation errors are found
    """
    results = validate_configuration(settings)
    errors = [r for r in results if r.severity == ValidationSeverity.ERROR]

    if errors:
        error_messages = "\n".join(str(e) for e in errors)
        raise ConfigurationError(f"Configuration validation failed:\n{error_messages}")

    for warning in results:
        if warning.severity == ValidationSeverity.WARNING:
            logger.warning(str(warning))


# =============================================================================
# Validators
# =============================================================================


def _validate_database(settings: Settings) -> list[ValidationResult]:
    """Validate database configuration."""
    results: list[ValidationResult] = []

    if settings.ERASURE_BACKEND != ErasureBackend.SQL:
        return results

    if not settings.DATABASE_URL:
        results.append(
            ValidationResult(
                field="DATABASE_URL",
                severity=ValidationSeverity.ERROR,
                message="Database URL is not configured",
                suggestion="Set DATABASE_URL environment variable",
            )
        )
    elif not settings.DATABASE_URL.startswith(("postgresql", "sqlite")):
        results.append(
            ValidationResult(
                field="DATABASE_URL",
                severity=ValidationSeverity.WARNING,
                message=f"Unexpected database type in URL: {settings.DATABASE_URL[:20]}...",
                suggestion="Let Right is designed for PostgreSQL or SQLite",
            )
        )

    if settings.DATABASE_TIMEOUT_SECONDS > 60:
        results.append(
            ValidationResult(
                field="DATABASE_TIMEOUT_SECONDS",
                severity=ValidationSeverity.WARNING,
                message=f"Timeout of {settings.DATABASE_TIMEOUT_SECONDS}s delays failure detection",
                suggestion="Keep store calls bounded to a few seconds",
            )
        )

    return results


def _validate_security(settings: Settings) -> list[ValidationResult]:
    """Validate security configuration."""
    results: list[ValidationResult] = []

    if settings.API_SECRET_KEY is None:
        if settings.ENVIRONMENT == "production":
            results.append(
                ValidationResult(
                    field="API_SECRET_KEY",
                    severity=ValidationSeverity.ERROR,
                    message="API secret key is required in production",
                    suggestion="Generate a secure random string for operator authentication",
                )
            )
        return results

    if len(settings.API_SECRET_KEY.get_secret_value()) < 32:
        results.append(
            ValidationResult(
                field="API_SECRET_KEY",
                severity=ValidationSeverity.WARNING,
                message="API secret key is shorter than 32 characters",
                suggestion="Use at least 32 random characters",
            )
        )

    if settings.ENVIRONMENT == "production" and not settings.PUBLIC_BASE_URL.startswith("https://"):
        results.append(
            ValidationResult(
                field="PUBLIC_BASE_URL",
                severity=ValidationSeverity.ERROR,
                message="Verification links must use HTTPS in production",
                suggestion="Set PUBLIC_BASE_URL to the https:// origin of the web app",
            )
        )

    return results


def _validate_erasure(settings: Settings) -> list[ValidationResult]:
    """Validate erasure workflow configuration."""
    results: list[ValidationResult] = []
    erasure = settings.erasure

    if settings.ENVIRONMENT == "production":
        if settings.ERASURE_BACKEND == ErasureBackend.MEMORY:
            results.append(
                ValidationResult(
                    field="ERASURE_BACKEND",
                    severity=ValidationSeverity.ERROR,
                    message="In-memory erasure backend loses requests on restart",
                    suggestion="Use ERASURE_BACKEND=sql in production",
                )
            )
        if settings.NOTIFICATION_WEBHOOK_URL is None:
            results.append(
                ValidationResult(
                    field="NOTIFICATION_WEBHOOK_URL",
                    severity=ValidationSeverity.WARNING,
                    message="Verification links are only logged, not delivered",
                    suggestion="Configure the email gateway webhook",
                )
            )

    if erasure.grace_period_days < 30:
        results.append(
            ValidationResult(
                field="erasure.grace_period_days",
                severity=ValidationSeverity.WARNING,
                message=f"Grace period of {erasure.grace_period_days} days is below 30 days",
            )
        )

    stale_seconds = erasure.stale_processing_minutes * 60
    if stale_seconds <= erasure.collection_timeout_seconds:
        results.append(
            ValidationResult(
                field="erasure.stale_processing_minutes",
                severity=ValidationSeverity.ERROR,
                message="Stale threshold must exceed the per-collection timeout",
                suggestion="Raise stale_processing_minutes or lower collection_timeout_seconds",
            )
        )

    return results
