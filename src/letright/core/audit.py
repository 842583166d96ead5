"""Audit logging service for compliance and accountability.

The erasure workflow reports every lifecycle transition and execution
outcome to an :class:`AuditSink`. ``SqlAuditSink`` persists entries to
``audit_events`` through :class:`AuditLogger`; ``InMemoryAuditSink`` keeps
them in a list for tests and the in-memory backend.
"""

import asyncio
from datetime import UTC, datetime
from typing import Any, Protocol
from uuid import UUID

import structlog
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from letright.core.exceptions import StoreUnavailableError
from letright.db.models.audit import AuditEvent, AuditEventType, AuditSeverity

logger = structlog.get_logger()


class AuditEntry(BaseModel):
    """A single compliance event emitted by the erasure workflow."""

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO
    subject_id: str | None = None
    subject_type: str | None = None
    actor_id: str | None = None
    resource_type: str | None = "deletion_request"
    resource_id: str | None = None
    event_data: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class AuditSink(Protocol):
    """Destination for audit entries."""

    async def record(self, entry: AuditEntry) -> None:
        """Persist an audit entry."""
        ...


class AuditLogger:
    """Service for creating and querying audit events.

    Audit events are immutable, append-only logs of all critical operations
    for compliance, security monitoring, and debugging.
    """

    def __init__(self, db: AsyncSession):
        """Initialize audit logger with database session.

        Args:
            db: Async SQLAlchemy session for database operations
        """
        self.db = db

    async def log_event(
        self,
        event_type: AuditEventType | str,
        event_data: dict[str, Any],
        severity: AuditSeverity | str = AuditSeverity.INFO,
        actor_id: str | None = None,
        subject_id: str | None = None,
        subject_type: str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
    ) -> AuditEvent:
        """Create an immutable audit log entry.

        Args:
            event_type: Type of event (erasure.requested, erasure.completed, etc.)
            event_data: Structured event details (must be JSON serializable)
            severity: Event severity level (default: INFO)
            actor_id: Operator or subject who triggered the event (None for jobs)
            subject_id: Data subject the event concerns
            subject_type: Type of the data subject
            resource_type: Optional resource type (deletion_request, ...)
            resource_id: Optional resource ID

        Returns:
            Created AuditEvent instance
        """
        if isinstance(event_type, AuditEventType):
            event_type = event_type.value
        if isinstance(severity, AuditSeverity):
            severity = severity.value

        event = AuditEvent(
            event_type=event_type,
            severity=severity,
            actor_id=actor_id,
            subject_id=subject_id,
            subject_type=subject_type,
            resource_type=resource_type,
            resource_id=resource_id,
            event_data=event_data,
        )

        self.db.add(event)
        await self.db.flush()

        return event

    async def query_events(
        self,
        event_type: AuditEventType | str | None = None,
        subject_id: str | None = None,
        resource_id: str | None = None,
        severity: AuditSeverity | str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AuditEvent]:
        """Query audit events with filters.

        Args:
            event_type: Filter by event type
            subject_id: Filter by data subject
            resource_id: Filter by resource (e.g. deletion request ID)
            severity: Filter by severity level
            limit: Max results (max 1000)
            offset: Pagination offset

        Returns:
            List of matching audit events, ordered by created_at DESC
        """
        if isinstance(event_type, AuditEventType):
            event_type = event_type.value
        if isinstance(severity, AuditSeverity):
            severity = severity.value

        query = select(AuditEvent).order_by(
            AuditEvent.created_at.desc(),
            AuditEvent.audit_id.desc(),  # Secondary sort for equal timestamps
        )

        if event_type is not None:
            query = query.where(AuditEvent.event_type == event_type)
        if subject_id is not None:
            query = query.where(AuditEvent.subject_id == subject_id)
        if resource_id is not None:
            query = query.where(AuditEvent.resource_id == resource_id)
        if severity is not None:
            query = query.where(AuditEvent.severity == severity)

        query = query.limit(min(limit, 1000)).offset(offset)

        result = await self.db.execute(query)
        return list(result.scalars().all())


class SqlAuditSink:
    """Audit sink that writes each entry in its own transaction.

    Writes are bounded by ``timeout_seconds``. Timeouts and driver errors
    surface as :class:`StoreUnavailableError`.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        timeout_seconds: float = 10.0,
    ):
        self._session_factory = session_factory
        self._timeout = timeout_seconds

    async def record(self, entry: AuditEntry) -> None:
        try:
            async with asyncio.timeout(self._timeout):
                async with self._session_factory() as session:
                    audit_logger = AuditLogger(session)
                    await audit_logger.log_event(
                        event_type=entry.event_type,
                        event_data={
                            **entry.event_data,
                            "occurred_at": entry.occurred_at.isoformat(),
                        },
                        severity=entry.severity,
                        actor_id=entry.actor_id,
                        subject_id=entry.subject_id,
                        subject_type=entry.subject_type,
                        resource_type=entry.resource_type,
                        resource_id=entry.resource_id,
                    )
                    await session.commit()
        except TimeoutError as exc:
            raise StoreUnavailableError(
                "audit_record", f"timed out after {self._timeout}s"
            ) from exc
        except SQLAlchemyError as exc:
            raise StoreUnavailableError("audit_record", str(exc)) from exc


class InMemoryAuditSink:
    """Audit sink that keeps entries in memory."""

    def __init__(self) -> None:
        self.entries: list[AuditEntry] = []

    async def record(self, entry: AuditEntry) -> None:
        self.entries.append(entry)

    def of_type(self, event_type: AuditEventType) -> list[AuditEntry]:
        """Return recorded entries of one event type, oldest first."""
        return [e for e in self.entries if e.event_type == event_type]

    def for_request(self, request_id: UUID) -> list[AuditEntry]:
        """Return recorded entries for one deletion request, oldest first."""
        return [e for e in self.entries if e.resource_id == str(request_id)]


async def record_safely(sink: AuditSink, entry: AuditEntry) -> bool:
    """Record an entry, logging instead of raising when the sink fails.

    A state transition that already committed is never reported as failed
    because its audit entry could not be written.

    Returns:
        True if the sink accepted the entry
    """
    try:
        await sink.record(entry)
    except Exception as exc:
        logger.error(
            "audit_record_failed",
            event_type=entry.event_type.value,
            resource_id=entry.resource_id,
            error=str(exc),
        )
        return False
    return True
