"""Error response schemas for API."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ErrorCode(str, Enum):
    """Standardized error codes for API responses."""

    # Authentication
    UNAUTHORIZED = "unauthorized"

    # Request errors
    VALIDATION_ERROR = "validation_error"
    SUBJECT_NOT_FOUND = "subject_not_found"
    REQUEST_NOT_FOUND = "request_not_found"
    DUPLICATE_REQUEST = "duplicate_request"
    INVALID_TRANSITION = "invalid_transition"
    INVALID_TOKEN = "invalid_token"

    # System errors
    STORE_UNAVAILABLE = "store_unavailable"
    INTERNAL_ERROR = "internal_error"


class APIError(BaseModel):
    """Standardized API error response format.

    All API errors return this format for consistency.
    """

    error_code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: dict[str, Any] | None = Field(
        default=None, description="Additional error context"
    )
    request_id: str = Field(..., description="Request ID for tracing (UUIDv7)")
    timestamp: datetime = Field(..., description="When the error occurred")

    model_config = {"json_schema_extra": {"example": {
        "error_code": "duplicate_request",
        "message": "Deletion request already exists for subject renter-42",
        "details": {"subject_id": "renter-42"},
        "request_id": "019478f2-1234-7000-8000-abcdef123456",
        "timestamp": "2026-01-30T12:00:00Z",
    }}}
