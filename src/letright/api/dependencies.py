"""FastAPI dependencies for API endpoints."""

from typing import Annotated

from fastapi import Depends, Request

from letright.erasure.factory import ErasureComponents
from letright.erasure.runner import BatchRunner
from letright.erasure.service import ErasureService

__all__ = [
    "get_components",
    "get_erasure_service",
    "get_batch_runner",
    "get_actor_id",
    "ErasureServiceDep",
    "BatchRunnerDep",
]


def get_components(request: Request) -> ErasureComponents:
    """Get the erasure components wired by the application factory."""
    return request.app.state.erasure


def get_erasure_service(
    components: Annotated[ErasureComponents, Depends(get_components)],
) -> ErasureService:
    return components.service


def get_batch_runner(
    components: Annotated[ErasureComponents, Depends(get_components)],
) -> BatchRunner:
    return components.runner


def get_actor_id(request: Request) -> str | None:
    """Get the authenticated operator, set by AuthenticationMiddleware."""
    return getattr(request.state, "actor_id", None)


ErasureServiceDep = Annotated[ErasureService, Depends(get_erasure_service)]
BatchRunnerDep = Annotated[BatchRunner, Depends(get_batch_runner)]
