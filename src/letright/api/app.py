"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from letright import __version__
from letright.api.middleware import (
    AuthenticationMiddleware,
    ErrorHandlingMiddleware,
    RequestContextMiddleware,
    RequestLoggingMiddleware,
)
from letright.api.routers import health_router, v1_router
from letright.config.settings import ErasureBackend, Settings, get_settings
from letright.config.validation import validate_or_raise
from letright.core.logging import setup_logging
from letright.erasure.factory import ErasureComponents, create_erasure_components

logger = structlog.get_logger("letright.api")


def create_app(
    settings: Settings | None = None,
    components: ErasureComponents | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    This is the application factory that assembles all components:
    - Erasure workflow (backend selected once from settings)
    - Middleware (in correct order)
    - Routers
    - Lifespan management (background batch job)

    Args:
        settings: Optional settings override (useful for testing)
        components: Optional pre-wired erasure components (useful for testing)

    Returns:
        Configured FastAPI application

    Example:
        # Testing
        test_settings = Settings(ERASURE_BACKEND="memory", API_SECRET_KEY=SecretStr("test"))
        app = create_app(settings=test_settings)

        # Run with uvicorn
        uvicorn letright.api.app:create_app --factory
    """
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title="Let Right Erasure API",
        description="Right-to-erasure request lifecycle for the Let Right marketplace",
        version=__version__,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        lifespan=_lifespan,
    )

    app.state.settings = settings
    app.state.erasure = components or create_erasure_components(settings)

    _configure_middleware(app)
    _configure_routers(app)

    return app


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Validates configuration, configures logging and starts the background
    batch job when ``ERASURE_JOB_ENABLED`` is set.
    """
    settings: Settings = app.state.settings
    components: ErasureComponents = app.state.erasure

    setup_logging(settings)
    validate_or_raise(settings)
    logger.info(
        "api_starting",
        environment=settings.ENVIRONMENT,
        backend=settings.ERASURE_BACKEND.value,
    )

    if settings.ERASURE_BACKEND == ErasureBackend.SQL:
        try:
            from letright.db.config import init_db

            await init_db(settings)
            logger.info("database_ready")
        except Exception as e:
            logger.warning("database_initialization_skipped", error=str(e))

    if settings.ERASURE_JOB_ENABLED:
        await components.runner.start()

    yield

    logger.info("api_stopping")
    await components.aclose()

    if settings.ERASURE_BACKEND == ErasureBackend.SQL:
        from letright.db.config import close_db

        await close_db()


def _configure_middleware(app: FastAPI) -> None:
    """Configure middleware stack.

    Middleware order (outermost to innermost execution):
    1. RequestLoggingMiddleware - Logs all requests
    2. RequestContextMiddleware - Assigns and binds the request ID
    3. ErrorHandlingMiddleware - Converts exceptions to HTTP responses
    4. AuthenticationMiddleware - Validates Bearer token on operator paths

    Note: Middleware is added in reverse order because Starlette
    processes them from last-added to first-added.
    """
    app.add_middleware(AuthenticationMiddleware)
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(RequestLoggingMiddleware)


def _configure_routers(app: FastAPI) -> None:
    """Configure API routers."""
    app.include_router(health_router)
    app.include_router(v1_router)
