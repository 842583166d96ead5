"""Pytest fixtures for Let Right tests."""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
import structlog
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from letright.config.settings import ErasureBackend, ErasureSettings, Settings
from letright.core.audit import InMemoryAuditSink
from letright.db.models.base import Base
from letright.erasure.cascade import CascadeExecutor
from letright.erasure.collections import InMemoryCollectionStore
from letright.erasure.factory import ErasureComponents, create_erasure_components
from letright.erasure.notifications import NotificationDispatcher
from letright.erasure.plan import DeletionPlanRegistry
from letright.erasure.runner import BatchRunner
from letright.erasure.service import ErasureService
from letright.erasure.store import InMemoryDeletionRequestStore
from letright.erasure.subjects import InMemorySubjectDirectory
from letright.erasure.types import SubjectType

TEST_API_KEY = "test-api-secret-0123456789abcdef0123"


# =============================================================================
# Structlog Configuration Fixture
# =============================================================================


@pytest.fixture(scope="function", autouse=True)
def reset_structlog_after_test():
    """Reset structlog configuration after each test.

    This ensures tests that modify structlog global state
    don't affect other tests.
    """
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


# =============================================================================
# Erasure workflow doubles
# =============================================================================


class FrozenClock:
    """Manually advanced clock passed to the service as ``clock``."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


class RecordingGateway:
    """Notification gateway that remembers every delivery."""

    def __init__(self, error: Exception | None = None):
        self.sent: list[dict[str, str]] = []
        self.error = error

    async def send_verification_links(self, subject_id, subject_type, verify_token, cancel_token):
        if self.error is not None:
            raise self.error
        self.sent.append(
            {
                "subject_id": subject_id,
                "subject_type": subject_type.value,
                "verify_token": verify_token,
                "cancel_token": cancel_token,
            }
        )


@pytest.fixture
def clock() -> FrozenClock:
    """Clock frozen at 2025-01-01T00:00:00Z."""
    return FrozenClock(datetime(2025, 1, 1, tzinfo=UTC))


@pytest.fixture
def erasure_settings() -> ErasureSettings:
    return ErasureSettings(concurrent_siblings=True, collection_timeout_seconds=2.0)


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def request_store() -> InMemoryDeletionRequestStore:
    return InMemoryDeletionRequestStore()


@pytest.fixture
def subjects() -> InMemorySubjectDirectory:
    """Directory holding one subject of every type."""
    return InMemorySubjectDirectory(
        {
            SubjectType.RENTER: {"renter-1", "renter-2"},
            SubjectType.LANDLORD: {"landlord-1"},
            SubjectType.AGENCY: {"agency-1"},
            SubjectType.ADMIN: {"admin-1"},
        }
    )


@pytest.fixture
def collections() -> InMemoryCollectionStore:
    """Marketplace rows referencing renter-1 and landlord-1."""
    store = InMemoryCollectionStore()
    store.insert("renter_profiles", {"id": "renter-1"}, {"id": "renter-2"})
    store.insert("landlord_profiles", {"id": "landlord-1"})
    store.insert("properties", {"id": "prop-1", "landlord_id": "landlord-1", "agency_id": None})
    store.insert(
        "matches",
        {"id": "match-1", "renter_id": "renter-1", "landlord_id": "landlord-1"},
        {"id": "match-2", "renter_id": "renter-2", "landlord_id": "landlord-1"},
    )
    store.insert("interests", {"id": "int-1", "renter_id": "renter-1"})
    store.insert(
        "conversations",
        {"id": "conv-1", "renter_id": "renter-1", "landlord_id": "landlord-1"},
    )
    store.insert("viewing_requests", {"id": "view-1", "renter_id": "renter-1"})
    store.insert("email_notifications", {"id": "mail-1", "recipient_id": "renter-1"})
    store.insert(
        "ratings",
        {
            "id": "rating-1",
            "from_user_id": "renter-1",
            "to_user_id": "landlord-1",
            "score": 4,
            "review": "Responsive landlord",
        },
    )
    return store


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture
def dispatcher(gateway: RecordingGateway, audit_sink: InMemoryAuditSink) -> NotificationDispatcher:
    return NotificationDispatcher(gateway, audit_sink, timeout_seconds=1.0)


@pytest.fixture
def erasure_service(
    request_store: InMemoryDeletionRequestStore,
    subjects: InMemorySubjectDirectory,
    audit_sink: InMemoryAuditSink,
    dispatcher: NotificationDispatcher,
    erasure_settings: ErasureSettings,
    clock: FrozenClock,
) -> ErasureService:
    return ErasureService(
        store=request_store,
        subjects=subjects,
        audit=audit_sink,
        notifier=dispatcher,
        settings=erasure_settings,
        clock=clock,
    )


@pytest.fixture
def cascade_executor(
    collections: InMemoryCollectionStore, erasure_settings: ErasureSettings
) -> CascadeExecutor:
    return CascadeExecutor(
        DeletionPlanRegistry.with_default_plans(), collections, settings=erasure_settings
    )


@pytest.fixture
def batch_runner(
    erasure_service: ErasureService, cascade_executor: CascadeExecutor
) -> BatchRunner:
    return BatchRunner(erasure_service, cascade_executor)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Create a file-backed SQLite engine with every table created.

    A file database lets concurrent sessions see each other's commits.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'letright.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# =============================================================================
# API test fixtures
# =============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Create settings for API testing."""
    return Settings(
        API_SECRET_KEY=SecretStr(TEST_API_KEY),
        ENVIRONMENT="test",
        DEBUG=True,
        log_level="DEBUG",
        ERASURE_BACKEND=ErasureBackend.MEMORY,
        PUBLIC_BASE_URL="https://letright.test",
    )


@pytest.fixture
def test_components(test_settings: Settings, gateway: RecordingGateway) -> ErasureComponents:
    """In-memory components with one subject of each type."""
    components = create_erasure_components(test_settings, gateway=gateway)
    components.subjects.add("renter-1", SubjectType.RENTER)
    components.subjects.add("landlord-1", SubjectType.LANDLORD)
    components.collections.insert("renter_profiles", {"id": "renter-1"})
    components.collections.insert("matches", {"id": "match-1", "renter_id": "renter-1"})
    return components


@pytest.fixture
def test_app(test_settings: Settings, test_components: ErasureComponents) -> FastAPI:
    """Create a FastAPI test application backed by in-memory components."""
    from letright.api.app import create_app

    return create_app(settings=test_settings, components=test_components)


@pytest_asyncio.fixture
async def test_client(test_app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for API testing.

    Provides an httpx.AsyncClient configured to call the test application
    directly without network overhead.
    """
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
    ) as client:
        yield client


@pytest_asyncio.fixture
async def authenticated_client(test_app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client carrying the operator API key."""
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
        headers={"Authorization": f"Bearer {TEST_API_KEY}"},
    ) as client:
        yield client
