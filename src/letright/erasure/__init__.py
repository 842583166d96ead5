"""Right-to-erasure workflow.

This package provides the lifecycle of a subject's deletion request:

- ErasureService: request, verify and cancel, plus operator re-queue and
  stale-claim recovery
- BatchRunner: claims due requests and drives them through the cascade
- CascadeExecutor: tiered purge of every collection in a deletion plan
- DeletionPlanRegistry: per-subject-type plans with delete/anonymize policy

Usage:
    from letright.erasure import SubjectType

    request = await service.request_deletion("user-1", SubjectType.RENTER)
    await service.verify_deletion(request.verification_token)
    results = await runner.execute_pending_deletions()
"""

from letright.erasure.anonymizer import (
    DELETED_REVIEW_CONTENT,
    DELETED_SUBJECT_SENTINEL,
    AnonymizationMethod,
    AnonymizationRule,
    DataAnonymizer,
)
from letright.erasure.cascade import CascadeExecutor
from letright.erasure.collections import (
    CollectionStore,
    InMemoryCollectionStore,
    SqlCollectionStore,
)
from letright.erasure.factory import ErasureComponents, create_erasure_components
from letright.erasure.notifications import (
    HttpNotificationGateway,
    LoggingNotificationGateway,
    NotificationDispatcher,
    NotificationGateway,
    build_cancellation_url,
    build_verification_url,
)
from letright.erasure.plan import (
    PROFILE_COLLECTIONS,
    DeletionPlan,
    DeletionPlanRegistry,
    PlanEntry,
)
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
from letright.erasure.tokens import TokenIssuer, TokenPair
from letright.erasure.types import (
    ALLOWED_TRANSITIONS,
    NON_TERMINAL_STATUSES,
    TERMINAL_STATUSES,
    CascadeResult,
    CollectionOutcome,
    DeletionOptions,
    DeletionRequest,
    DeletionResult,
    DeletionStatus,
    PurgePolicy,
    SubjectType,
    can_transition,
)

__all__ = [
    # Types
    "SubjectType",
    "DeletionStatus",
    "DeletionRequest",
    "DeletionOptions",
    "DeletionResult",
    "CascadeResult",
    "CollectionOutcome",
    "PurgePolicy",
    "ALLOWED_TRANSITIONS",
    "TERMINAL_STATUSES",
    "NON_TERMINAL_STATUSES",
    "can_transition",
    # Tokens
    "TokenIssuer",
    "TokenPair",
    # Persistence
    "DeletionRequestStore",
    "InMemoryDeletionRequestStore",
    "SqlDeletionRequestStore",
    "CollectionStore",
    "InMemoryCollectionStore",
    "SqlCollectionStore",
    "SubjectDirectory",
    "InMemorySubjectDirectory",
    "SqlSubjectDirectory",
    # Plans
    "PROFILE_COLLECTIONS",
    "PlanEntry",
    "DeletionPlan",
    "DeletionPlanRegistry",
    # Anonymization
    "AnonymizationMethod",
    "AnonymizationRule",
    "DataAnonymizer",
    "DELETED_SUBJECT_SENTINEL",
    "DELETED_REVIEW_CONTENT",
    # Notifications
    "NotificationGateway",
    "LoggingNotificationGateway",
    "HttpNotificationGateway",
    "NotificationDispatcher",
    "build_verification_url",
    "build_cancellation_url",
    # Workflow
    "ErasureService",
    "CascadeExecutor",
    "BatchRunner",
    "ErasureComponents",
    "create_erasure_components",
]
