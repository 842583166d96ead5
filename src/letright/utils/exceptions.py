"""Custom exceptions for Let Right."""


class LetRightError(Exception):
    """Base exception for all Let Right errors."""

    pass


class ConfigurationError(LetRightError):
    """Error in configuration or settings."""

    pass
