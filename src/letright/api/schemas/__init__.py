"""API request and response schemas."""

from letright.api.schemas.erasure import (
    DeletionRequestCreate,
    DeletionRequestListResponse,
    DeletionRequestResponse,
    DeletionStatusResponse,
    ExecuteJobResponse,
    ExecuteJobSubmission,
    RecoverStaleResponse,
    RequeueSubmission,
    TokenSubmission,
)
from letright.api.schemas.errors import APIError, ErrorCode
from letright.api.schemas.health import (
    ComponentHealth,
    HealthResponse,
    HealthStatus,
    ReadinessResponse,
)

__all__ = [
    "APIError",
    "ErrorCode",
    "HealthStatus",
    "HealthResponse",
    "ComponentHealth",
    "ReadinessResponse",
    "DeletionRequestCreate",
    "DeletionRequestResponse",
    "DeletionRequestListResponse",
    "DeletionStatusResponse",
    "TokenSubmission",
    "RequeueSubmission",
    "ExecuteJobSubmission",
    "ExecuteJobResponse",
    "RecoverStaleResponse",
]
