"""Wiring of the erasure workflow.

The persistence backend is chosen once here, from ``ERASURE_BACKEND``;
nothing downstream branches on it.
"""

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from letright.config.settings import ErasureBackend, Settings
from letright.core.audit import AuditSink, InMemoryAuditSink, SqlAuditSink
from letright.db.config import get_session_factory
from letright.erasure.anonymizer import DataAnonymizer
from letright.erasure.cascade import CascadeExecutor
from letright.erasure.collections import (
    CollectionStore,
    InMemoryCollectionStore,
    SqlCollectionStore,
)
from letright.erasure.notifications import (
    HttpNotificationGateway,
    LoggingNotificationGateway,
    NotificationDispatcher,
    NotificationGateway,
)
from letright.erasure.plan import DeletionPlanRegistry
from letright.erasure.runner import BatchRunner
from letright.erasure.service import ErasureService
from letright.erasure.store import (
    DeletionRequestStore,
    InMemoryDeletionRequestStore,
    SqlDeletionRequestStore,
)
from letright.erasure.subjects import (
    InMemorySubjectDirectory,
    SqlSubjectDirectory,
    SubjectDirectory,
)
from letright.erasure.tokens import TokenIssuer


@dataclass
class ErasureComponents:
    """Every collaborator of one erasure workflow instance."""

    settings: Settings
    store: DeletionRequestStore
    subjects: SubjectDirectory
    collections: CollectionStore
    audit: AuditSink
    gateway: NotificationGateway
    dispatcher: NotificationDispatcher
    registry: DeletionPlanRegistry
    service: ErasureService
    executor: CascadeExecutor
    runner: BatchRunner

    async def aclose(self) -> None:
        """Stop the background job and wait for pending notifications."""
        await self.runner.stop()
        await self.dispatcher.drain()
        if isinstance(self.gateway, HttpNotificationGateway):
            await self.gateway.aclose()


def create_gateway(settings: Settings) -> NotificationGateway:
    if settings.NOTIFICATION_WEBHOOK_URL:
        return HttpNotificationGateway(
            settings.NOTIFICATION_WEBHOOK_URL,
            settings.PUBLIC_BASE_URL,
            timeout_seconds=settings.erasure.notification_timeout_seconds,
        )
    return LoggingNotificationGateway(settings.PUBLIC_BASE_URL)


def create_erasure_components(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    registry: DeletionPlanRegistry | None = None,
    gateway: NotificationGateway | None = None,
) -> ErasureComponents:
    """Build the erasure workflow for the configured backend.

    Args:
        settings: Application settings
        session_factory: Session factory for the SQL backend (default: process-wide)
        registry: Deletion plans (default: the marketplace plans)
        gateway: Notification gateway (default: webhook if configured, else logging)

    Returns:
        Wired components sharing one store, audit sink and dispatcher
    """
    store: DeletionRequestStore
    subjects: SubjectDirectory
    collections: CollectionStore
    audit: AuditSink

    if settings.ERASURE_BACKEND == ErasureBackend.MEMORY:
        store = InMemoryDeletionRequestStore()
        subjects = InMemorySubjectDirectory()
        collections = InMemoryCollectionStore()
        audit = InMemoryAuditSink()
    else:
        session_factory = session_factory or get_session_factory(settings)
        store = SqlDeletionRequestStore(session_factory, settings.DATABASE_TIMEOUT_SECONDS)
        subjects = SqlSubjectDirectory(
            session_factory, timeout_seconds=settings.DATABASE_TIMEOUT_SECONDS
        )
        collections = SqlCollectionStore(session_factory)
        audit = SqlAuditSink(session_factory, settings.DATABASE_TIMEOUT_SECONDS)

    erasure_settings = settings.erasure
    registry = registry or DeletionPlanRegistry.with_default_plans()
    gateway = gateway or create_gateway(settings)
    dispatcher = NotificationDispatcher(
        gateway, audit, timeout_seconds=erasure_settings.notification_timeout_seconds
    )

    service = ErasureService(
        store=store,
        subjects=subjects,
        audit=audit,
        notifier=dispatcher,
        tokens=TokenIssuer(erasure_settings.token_bytes),
        settings=erasure_settings,
    )
    executor = CascadeExecutor(registry, collections, DataAnonymizer(), erasure_settings)
    runner = BatchRunner(service, executor)

    return ErasureComponents(
        settings=settings,
        store=store,
        subjects=subjects,
        collections=collections,
        audit=audit,
        gateway=gateway,
        dispatcher=dispatcher,
        registry=registry,
        service=service,
        executor=executor,
        runner=runner,
    )
