"""Worker pool executing queued pipeline jobs with retry/backoff."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog

from ..config import WorkerSettings
from ..errors import ErrorCode, PipelineError, StageError, StaleJobError
from ..media.media_models import MediaRef
from ..pipeline.pipeline_service import PipelineOrchestrator
from ..repositories.job_history_repository import JobHistoryRepository
from ..repositories.session_repository import SessionRepository
from .job_queue import JobQueue
from .jobs_models import JobPayload

T = TypeVar("T")

logger = logging.getLogger(__name__)


class JobWorker:
    """Run jobs taken from :class:`JobQueue`, one at a time.

    Each attempt re-runs the whole pipeline. Failures marked non-retryable,
    and loss of session ownership, end the job immediately.
    """

    def __init__(
        self,
        *,
        queue: JobQueue,
        orchestrator: PipelineOrchestrator,
        sessions: SessionRepository,
        job_history: JobHistoryRepository,
        settings: WorkerSettings,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self.queue = queue
        self.orchestrator = orchestrator
        self.sessions = sessions
        self.job_history = job_history
        self._retry_attempts = max(1, settings.retry_attempts)
        self._retry_backoff_seconds = max(0.0, settings.retry_backoff_seconds)
        self._job_ceiling_seconds = settings.job_ceiling_seconds
        self._sleep = sleep or asyncio.sleep
        self._logger = logger

    @staticmethod
    async def _run_sync(func: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:
        """Execute ``func`` in a worker thread to avoid blocking the event loop."""
        return await asyncio.to_thread(func, *args, **kwargs)

    async def run_forever(self, *, worker_id: int) -> None:
        """Consume the queue until cancelled."""
        self._logger.info("jobs.worker.started", extra={"worker_id": worker_id})
        try:
            while True:
                payload = await self.queue.get()
                try:
                    await self.process(payload)
                except Exception:
                    self._logger.exception(
                        "jobs.worker.unhandled",
                        extra={"worker_id": worker_id, "job_id": payload.job_id},
                    )
                finally:
                    self.queue.task_done()
        except asyncio.CancelledError:
            self._logger.debug("jobs.worker.cancelled", extra={"worker_id": worker_id})
            raise

    async def process(self, payload: JobPayload) -> bool:
        """Run ``payload`` to completion; return ``True`` on success."""
        try:
            return await self._process(payload)
        except asyncio.CancelledError:
            cancelled = StageError(
                "Job cancelled before completion", code=ErrorCode.INTERNAL_ERROR
            )
            await asyncio.shield(self._record_failure(payload, cancelled))
            raise

    async def _process(self, payload: JobPayload) -> bool:
        last_error: Exception | None = None
        for attempt in range(1, self._retry_attempts + 1):
            with structlog.contextvars.bound_contextvars(
                job_id=payload.job_id,
                session_id=payload.session_id,
                attempt=attempt,
            ):
                if attempt > 1:
                    await self._sleep(self._retry_backoff_seconds * (attempt - 1))
                    try:
                        await self._run_sync(
                            self.sessions.reclaim_job, payload.session_id, payload.job_id
                        )
                    except StaleJobError as exc:
                        self._logger.warning("jobs.retry.stale", extra={"error": exc.message})
                        last_error = exc
                        break

                await self._run_sync(self.job_history.mark_attempt, payload.job_id, attempt)
                try:
                    result = await self._run_attempt(payload, attempt)
                except StaleJobError as exc:
                    self._logger.warning("jobs.attempt.stale", extra={"error": exc.message})
                    last_error = exc
                    break
                except PipelineError as exc:
                    last_error = exc
                    if not exc.retryable:
                        self._logger.warning(
                            "jobs.attempt.failed_permanently",
                            extra={"error_code": exc.code.value, "error": exc.message},
                        )
                        break
                    self._logger.warning(
                        "jobs.attempt.failed",
                        extra={
                            "error_code": exc.code.value,
                            "error": exc.message,
                            "remaining_attempts": self._retry_attempts - attempt,
                        },
                    )
                    continue
                except Exception as exc:
                    last_error = exc
                    self._logger.exception("jobs.attempt.crashed")
                    continue

                await self._run_sync(
                    self.job_history.set_result, payload.job_id, result_path=result.path
                )
                self._logger.info("jobs.completed", extra={"result_path": result.path})
                return True

        await self._record_failure(payload, last_error)
        return False

    async def _run_attempt(self, payload: JobPayload, attempt: int) -> MediaRef:
        loop = asyncio.get_running_loop()
        started = time.monotonic()
        watchdog = loop.call_later(
            self._job_ceiling_seconds, self._report_stuck, payload, attempt, started
        )
        try:
            return await self.orchestrator.run(
                payload.session_id, payload.job_id, payload.options
            )
        finally:
            watchdog.cancel()

    def _report_stuck(self, payload: JobPayload, attempt: int, started: float) -> None:
        self._logger.warning(
            "jobs.stuck",
            extra={
                "job_id": payload.job_id,
                "session_id": payload.session_id,
                "attempt": attempt,
                "elapsed_seconds": round(time.monotonic() - started, 1),
                "ceiling_seconds": self._job_ceiling_seconds,
            },
        )

    async def _record_failure(self, payload: JobPayload, error: Exception | None) -> None:
        if isinstance(error, PipelineError):
            code, message = error.code.value, error.message
        else:
            code = ErrorCode.INTERNAL_ERROR.value
            message = str(error) if error is not None else "job failed"
        await self._run_sync(
            self.job_history.set_failure,
            payload.job_id,
            failure_code=code,
            failure_message=message,
        )
        self._logger.error(
            "jobs.failed",
            extra={"job_id": payload.job_id, "session_id": payload.session_id, "error_code": code},
        )


class WorkerPool:
    """Start and stop a fixed number of :class:`JobWorker` tasks."""

    def __init__(self, worker: JobWorker, concurrency: int) -> None:
        self.worker = worker
        self.concurrency = max(1, concurrency)
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self.worker.run_forever(worker_id=index), name=f"job-worker-{index}")
            for index in range(self.concurrency)
        ]
        logger.info("jobs.pool.started", extra={"concurrency": self.concurrency})

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks = []
        logger.info("jobs.pool.stopped")
