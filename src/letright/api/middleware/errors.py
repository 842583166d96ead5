"""Error handling middleware for mapping exceptions to HTTP responses."""

from datetime import UTC, datetime
from typing import Callable
from uuid import UUID

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.middleware.base import BaseHTTPMiddleware

from letright.api.schemas.errors import APIError, ErrorCode
from letright.core.exceptions import (
    DuplicateRequestError,
    InvalidTokenError,
    InvalidTransitionError,
    RequestNotFoundError,
    StoreUnavailableError,
    SubjectNotFoundError,
)

logger = structlog.get_logger()


# Exception to HTTP status/error code mapping
# Format: Exception -> (status_code, error_code)
EXCEPTION_MAP: dict[type[Exception], tuple[int, str]] = {
    SubjectNotFoundError: (404, ErrorCode.SUBJECT_NOT_FOUND.value),
    RequestNotFoundError: (404, ErrorCode.REQUEST_NOT_FOUND.value),
    DuplicateRequestError: (409, ErrorCode.DUPLICATE_REQUEST.value),
    InvalidTransitionError: (409, ErrorCode.INVALID_TRANSITION.value),
    InvalidTokenError: (400, ErrorCode.INVALID_TOKEN.value),
    StoreUnavailableError: (503, ErrorCode.STORE_UNAVAILABLE.value),
    ValidationError: (422, ErrorCode.VALIDATION_ERROR.value),
}


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Middleware that catches exceptions and returns standardized error responses.

    Maps domain exceptions to appropriate HTTP status codes and formats
    all errors using the APIError schema.
    """

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        """Process request and handle any exceptions."""
        try:
            return await call_next(request)
        except Exception as exc:
            return self._handle_exception(request, exc)

    def _handle_exception(self, request: Request, exc: Exception) -> JSONResponse:
        """Convert exception to JSON error response."""
        request_id = self._get_request_id(request)
        status_code, error_code, message, details = self._map_exception(request, exc)

        if status_code >= 500:
            logger.error(
                "request_failed",
                path=request.url.path,
                error_type=type(exc).__name__,
                error=str(exc),
                exc_info=status_code == 500,
            )

        error = APIError(
            error_code=error_code,
            message=message,
            details=details,
            request_id=request_id,
            timestamp=datetime.now(UTC),
        )

        return JSONResponse(
            status_code=status_code,
            content=error.model_dump(mode="json"),
            headers={"X-Request-ID": request_id},
        )

    def _get_request_id(self, request: Request) -> str:
        """Extract request ID from state or generate placeholder."""
        if hasattr(request.state, "request_id"):
            rid = request.state.request_id
            return str(rid) if isinstance(rid, UUID) else rid
        return "unknown"

    def _map_exception(
        self, request: Request, exc: Exception
    ) -> tuple[int, str, str, dict | None]:
        """Map exception to (status_code, error_code, message, details)."""
        if isinstance(exc, SubjectNotFoundError):
            return (
                404,
                ErrorCode.SUBJECT_NOT_FOUND.value,
                str(exc.args[0]),
                {"subject_id": exc.subject_id, "subject_type": exc.subject_type},
            )

        if isinstance(exc, RequestNotFoundError):
            return (
                404,
                ErrorCode.REQUEST_NOT_FOUND.value,
                str(exc),
                {"request_id": str(exc.request_id)},
            )

        if isinstance(exc, DuplicateRequestError):
            details = {"subject_id": exc.subject_id}
            if exc.existing_request_id is not None:
                details["existing_request_id"] = str(exc.existing_request_id)
            return (409, ErrorCode.DUPLICATE_REQUEST.value, str(exc), details)

        if isinstance(exc, InvalidTransitionError):
            return (
                409,
                ErrorCode.INVALID_TRANSITION.value,
                str(exc),
                {
                    "request_id": str(exc.request_id),
                    "current_status": exc.current_status,
                    "target_status": exc.target_status,
                },
            )

        # Token errors never say why the token was rejected
        if isinstance(exc, InvalidTokenError):
            return (400, ErrorCode.INVALID_TOKEN.value, str(exc), None)

        if isinstance(exc, StoreUnavailableError):
            return (
                503,
                ErrorCode.STORE_UNAVAILABLE.value,
                "Deletion request store is unavailable",
                {"operation": exc.operation},
            )

        # Validation errors (Pydantic)
        if isinstance(exc, ValidationError):
            return (
                422,
                ErrorCode.VALIDATION_ERROR.value,
                "Request validation failed",
                {"errors": exc.errors(include_url=False)},
            )

        # Generic exceptions
        return (
            500,
            ErrorCode.INTERNAL_ERROR.value,
            "Internal server error",
            {"type": type(exc).__name__} if self._is_debug(request) else None,
        )

    def _is_debug(self, request: Request) -> bool:
        """Check if debug mode is enabled."""
        settings = getattr(request.app.state, "settings", None)
        return bool(settings and settings.DEBUG)
