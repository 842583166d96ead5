"""Authentication middleware for operator API key validation."""

import hashlib
import re
import secrets
from datetime import UTC, datetime
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from letright.api.schemas.errors import APIError, ErrorCode

# Paths that don't require authentication
SKIP_AUTH_PATHS = {
    "/health",
    "/health/ready",
    "/docs",
    "/redoc",
    "/openapi.json",
    # The token in the body is the credential
    "/v1/erasure/verify",
    "/v1/erasure/cancel",
}

# Paths that start with these prefixes don't require auth
SKIP_AUTH_PREFIXES = (
    "/docs",
    "/redoc",
)


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """Middleware that validates Bearer token authentication.

    Operator endpoints require ``Authorization: Bearer <API_SECRET_KEY>``.

    Sets:
        request.state.actor_id: Stable identifier derived from the API key,
            or None for unauthenticated paths
    """

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        """Process request and validate authentication."""
        if self._should_skip_auth(request.url.path):
            request.state.actor_id = None
            return await call_next(request)

        auth_header = request.headers.get("Authorization")
        if not auth_header:
            return self._unauthorized_response(request, "Missing Authorization header")

        match = re.match(r"^Bearer\s+(.+)$", auth_header, re.IGNORECASE)
        if not match:
            return self._unauthorized_response(request, "Invalid Authorization header format")

        token = match.group(1)
        if not self._validate_token(token, request):
            return self._unauthorized_response(request, "Invalid API key")

        request.state.actor_id = self._get_actor_id_from_token(token)
        return await call_next(request)

    def _should_skip_auth(self, path: str) -> bool:
        """Check if path should skip authentication."""
        if path in SKIP_AUTH_PATHS:
            return True
        return path.startswith(SKIP_AUTH_PREFIXES)

    def _validate_token(self, token: str, request: Request) -> bool:
        """Validate API token against configured secret.

        Without a configured key, any non-empty token is accepted in DEBUG
        mode only.
        """
        settings = request.app.state.settings

        if settings.API_SECRET_KEY is None:
            return bool(token) and settings.DEBUG

        expected = settings.API_SECRET_KEY.get_secret_value()
        return secrets.compare_digest(token.encode(), expected.encode())

    def _get_actor_id_from_token(self, token: str) -> str:
        """Derive a stable, non-secret actor ID for the audit trail."""
        return f"operator:{hashlib.sha256(token.encode()).hexdigest()[:16]}"

    def _unauthorized_response(self, request: Request, message: str) -> JSONResponse:
        """Create a 401 unauthorized response."""
        request_id = getattr(request.state, "request_id", "unknown")
        error = APIError(
            error_code=ErrorCode.UNAUTHORIZED.value,
            message=message,
            details=None,
            request_id=str(request_id),
            timestamp=datetime.now(UTC),
        )

        return JSONResponse(
            status_code=401,
            content=error.model_dump(mode="json"),
            headers={"WWW-Authenticate": "Bearer"},
        )
