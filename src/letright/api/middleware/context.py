"""Request context middleware for propagating the request ID."""

from typing import Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from uuid_utils.compat import uuid7


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Middleware that assigns a request ID and binds it for logging.

    An incoming ``X-Request-ID`` header is reused so that callers can
    correlate their own logs.

    Sets:
        request.state.request_id: The request ID (UUIDv7 unless supplied)
        X-Request-ID response header: For client correlation
    """

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        """Process request with the request ID bound to structlog contextvars."""
        request_id = request.headers.get("X-Request-ID") or str(uuid7())
        request.state.request_id = request_id

        with structlog.contextvars.bound_contextvars(request_id=request_id):
            response = await call_next(request)

        response.headers["X-Request-ID"] = request_id
        return response
