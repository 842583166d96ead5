"""Delivery of verification and cancellation links.

The notification gateway is an external collaborator. Delivery is
best-effort: :class:`NotificationDispatcher` runs each send as a background
task with its own timeout, so a slow or failing gateway never blocks or
fails the request that triggered it. Failures are logged and audited.
"""

import asyncio
from typing import Protocol
from urllib.parse import urlencode

import httpx
import structlog
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from letright.core.audit import AuditEntry, AuditSink, record_safely
from letright.core.logging import mask_token
from letright.db.models.audit import AuditEventType, AuditSeverity
from letright.erasure.types import DeletionRequest, SubjectType

logger = structlog.get_logger()

VERIFY_PATH = "/verify-deletion"
CANCEL_PATH = "/cancel-deletion"


def build_verification_url(base_url: str, token: str) -> str:
    """Link the subject follows to confirm the request."""
    return f"{base_url.rstrip('/')}{VERIFY_PATH}?{urlencode({'token': token})}"


def build_cancellation_url(base_url: str, token: str) -> str:
    """Link the subject follows to withdraw the request."""
    return f"{base_url.rstrip('/')}{CANCEL_PATH}?{urlencode({'token': token})}"


class NotificationGateway(Protocol):
    """Delivers verification and cancellation links to a subject."""

    async def send_verification_links(
        self,
        subject_id: str,
        subject_type: SubjectType,
        verify_token: str,
        cancel_token: str,
    ) -> None: ...


class LoggingNotificationGateway:
    """Gateway that only logs the delivery. Used in development."""

    def __init__(self, public_base_url: str):
        self.public_base_url = public_base_url

    async def send_verification_links(
        self,
        subject_id: str,
        subject_type: SubjectType,
        verify_token: str,
        cancel_token: str,
    ) -> None:
        logger.info(
            "verification_links_logged",
            subject_id=subject_id,
            subject_type=subject_type.value,
            verify_token=mask_token(verify_token),
            cancel_token=mask_token(cancel_token),
        )


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return False


class HttpNotificationGateway:
    """Gateway posting links to an email service webhook.

    Transport errors and 5xx responses are retried; 4xx responses are not.
    """

    def __init__(
        self,
        webhook_url: str,
        public_base_url: str,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.webhook_url = webhook_url
        self.public_base_url = public_base_url
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def send_verification_links(
        self,
        subject_id: str,
        subject_type: SubjectType,
        verify_token: str,
        cancel_token: str,
    ) -> None:
        payload = {
            "template": "data_deletion_verification",
            "subject_id": subject_id,
            "subject_type": subject_type.value,
            "verification_url": build_verification_url(self.public_base_url, verify_token),
            "cancellation_url": build_cancellation_url(self.public_base_url, cancel_token),
        }
        await self._post(payload)
        logger.info(
            "verification_links_sent",
            subject_id=subject_id,
            subject_type=subject_type.value,
        )

    @retry(
        retry=retry_if_exception(_is_retryable),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def _post(self, payload: dict[str, str]) -> None:
        response = await self._client.post(self.webhook_url, json=payload)
        response.raise_for_status()


class NotificationDispatcher:
    """Sends verification links in the background.

    Each delivery runs as its own task bounded by ``timeout_seconds``.
    Failures are logged and recorded as ``erasure.notification_failed``
    audit events; they never reach the caller of :meth:`dispatch`.
    """

    def __init__(
        self,
        gateway: NotificationGateway,
        audit: AuditSink,
        timeout_seconds: float = 10.0,
    ):
        self.gateway = gateway
        self._audit = audit
        self._timeout = timeout_seconds
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(self, request: DeletionRequest) -> asyncio.Task[None]:
        """Schedule delivery of the request's links and return immediately."""
        task = asyncio.create_task(self._deliver(request))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every scheduled delivery to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _deliver(self, request: DeletionRequest) -> None:
        try:
            async with asyncio.timeout(self._timeout):
                await self.gateway.send_verification_links(
                    request.subject_id,
                    request.subject_type,
                    request.verification_token,
                    request.cancellation_token or "",
                )
        except Exception as exc:
            reason = "timed out" if isinstance(exc, TimeoutError) else str(exc)
            logger.warning(
                "verification_links_failed",
                request_id=str(request.id),
                subject_id=request.subject_id,
                error_type=type(exc).__name__,
                error=reason,
            )
            await record_safely(
                self._audit,
                AuditEntry(
                    event_type=AuditEventType.NOTIFICATION_FAILED,
                    severity=AuditSeverity.WARNING,
                    subject_id=request.subject_id,
                    subject_type=request.subject_type.value,
                    resource_id=str(request.id),
                    event_data={"error": reason, "error_type": type(exc).__name__},
                ),
            )
