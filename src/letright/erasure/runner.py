"""Batch runner for due deletion requests.

The runner selects verified requests whose grace period has elapsed,
claims each one with a compare-and-swap and drives it through the cascade
executor. Overlapping runs are safe: a request claimed by another run is
skipped. Failures are isolated per request, so one failing subject never
halts the rest of the batch.
"""

import asyncio
import contextlib
from datetime import datetime

import structlog
from uuid_utils.compat import uuid7

from letright.core.exceptions import StoreUnavailableError
from letright.core.logging import LogContext
from letright.erasure.cascade import CascadeExecutor
from letright.erasure.service import ErasureService
from letright.erasure.types import DeletionRequest, DeletionResult, DeletionStatus

logger = structlog.get_logger()


class BatchRunner:
    """Executes due deletion requests, on demand or on a schedule."""

    def __init__(self, service: ErasureService, executor: CascadeExecutor):
        self.service = service
        self.executor = executor
        self.settings = service.settings
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def execute_pending_deletions(self, now: datetime | None = None) -> list[DeletionResult]:
        """Execute every verified request scheduled at or before ``now``.

        Args:
            now: Selection time (default: the service clock)

        Returns:
            One result per request claimed by this run. Requests claimed by
            a concurrent run are skipped and produce no result.

        Raises:
            StoreUnavailableError: If due requests could not be selected
        """
        now = now or self.service.clock()

        with LogContext(run_id=str(uuid7())):
            if self.settings.auto_recover_stale:
                try:
                    await self.service.recover_stale_requests(now)
                except StoreUnavailableError as exc:
                    logger.warning("stale_recovery_skipped", error=str(exc))

            due = await self.service.store.list_due(now, self.settings.batch_size)
            logger.info("batch_started", due=len(due), now=now.isoformat())

            semaphore = asyncio.Semaphore(self.settings.max_concurrent_requests)
            outcomes = await asyncio.gather(
                *(self._execute_one(request, semaphore) for request in due)
            )
            results = [result for result in outcomes if result is not None]

            logger.info(
                "batch_finished",
                due=len(due),
                executed=len(results),
                completed=sum(1 for r in results if r.status == DeletionStatus.COMPLETED),
                failed=sum(1 for r in results if r.status == DeletionStatus.FAILED),
            )
            return results

    async def _execute_one(
        self, request: DeletionRequest, semaphore: asyncio.Semaphore
    ) -> DeletionResult | None:
        async with semaphore:
            try:
                claimed = await self.service.claim(request)
            except Exception as exc:
                # Unclaimed requests stay verified and are selected again next run.
                logger.error("claim_failed", request_id=str(request.id), error=str(exc))
                return None

            if claimed is None:
                logger.debug("claim_skipped", request_id=str(request.id))
                return None

            with LogContext(request_id=str(claimed.id)):
                return await self._run_cascade(claimed)

    async def _run_cascade(self, request: DeletionRequest) -> DeletionResult:
        try:
            cascade = await self.executor.execute_for(request.subject_id, request.subject_type)
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"
            await self._mark_failed(request, error)
            return DeletionResult.from_exception(request, error, self.service.clock())

        if cascade.all_failed:
            error = "every collection failed: " + "; ".join(cascade.errors)
            await self._mark_failed(request, error)
            return DeletionResult.from_cascade(
                request, cascade, DeletionStatus.FAILED, self.service.clock()
            )

        try:
            completed = await self.service.mark_completed(request, cascade)
        except Exception as exc:
            # The request stays processing until stale recovery returns it.
            logger.error("completion_record_failed", error=str(exc))
            result = DeletionResult.from_cascade(
                request, cascade, DeletionStatus.PROCESSING, self.service.clock()
            )
            result.errors.append(f"completion not recorded: {exc}")
            return result

        if completed is None:
            current = await self._current_status(request)
            result = DeletionResult.from_cascade(request, cascade, current, self.service.clock())
            result.errors.append(f"completion not recorded: request is {current.value}")
            return result

        executed_at = completed.executed_at or self.service.clock()
        return DeletionResult.from_cascade(request, cascade, DeletionStatus.COMPLETED, executed_at)

    async def _current_status(self, request: DeletionRequest) -> DeletionStatus:
        try:
            stored = await self.service.store.get(request.id)
        except Exception as exc:
            logger.error("status_lookup_failed", request_id=str(request.id), error=str(exc))
            return DeletionStatus.PROCESSING
        return stored.status if stored is not None else DeletionStatus.PROCESSING

    async def _mark_failed(self, request: DeletionRequest, error: str) -> None:
        try:
            await self.service.mark_failed(request, error)
        except Exception as exc:
            logger.error("failure_record_failed", error=str(exc), cause=error)

    # =========================================================================
    # Background scheduling
    # =========================================================================

    async def start(self) -> None:
        """Start running batches every ``job_interval_seconds``."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._background_loop())
        logger.info("batch_runner_started", interval_seconds=self.settings.job_interval_seconds)

    async def stop(self) -> None:
        """Stop the background loop, cancelling an in-flight wait."""
        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("batch_runner_stopped")

    async def _background_loop(self) -> None:
        while self._running:
            try:
                await self.execute_pending_deletions()
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error("batch_run_failed", error_type=type(exc).__name__, error=str(exc))

            try:
                await asyncio.sleep(self.settings.job_interval_seconds)
            except asyncio.CancelledError:
                break
