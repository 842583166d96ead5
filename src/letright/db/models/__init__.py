"""Database models for Let Right."""

from .audit import AuditEvent, AuditEventType, AuditSeverity
from .base import Base, PortableJSON, PortableUUID, TimestampMixin, UTCDateTime
from .deletion import DeletionRequestRecord

__all__ = [
    "Base",
    "TimestampMixin",
    "PortableJSON",
    "PortableUUID",
    "UTCDateTime",
    "AuditEvent",
    "AuditEventType",
    "AuditSeverity",
    "DeletionRequestRecord",
]
