"""Job dispatcher: precondition checks, claim and enqueue."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from ..errors import (
    ErrorCode,
    JobInProgressError,
    PreconditionError,
    SessionCompletedError,
    TransformNotFoundError,
)
from ..repositories.ai_config_repository import AiConfigRepository
from ..repositories.job_history_repository import JobHistoryRepository
from ..repositories.session_repository import SessionRepository
from ..sessions.sessions_models import GuestSession
from ..pipeline.pipeline_models import PipelineOptions
from .job_queue import JobQueue
from .jobs_models import JobHandle, JobPayload

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class JobDispatcher:
    """Accept pipeline requests and hand them to the worker pool.

    Checks run in order: the session exists and is not completed, no other
    job is running, and the AI configuration resolves (image output with
    ``ai_transform`` only). Only the final claim writes to the session, so a
    rejected submission leaves it untouched. A running job whose session has
    not been written for ``stale_after_seconds`` counts as abandoned.
    """

    sessions: SessionRepository
    ai_configs: AiConfigRepository
    job_history: JobHistoryRepository
    queue: JobQueue
    stale_after_seconds: float | None = None
    log: logging.Logger = field(default_factory=lambda: logger)

    async def submit(self, session_id: str, options: PipelineOptions) -> JobHandle:
        try:
            handle = await self._submit(session_id, options)
        except PreconditionError as exc:
            self.log.info(
                "jobs.submit.rejected",
                extra={"session_id": session_id, "error_code": exc.code.value},
            )
            raise
        self.log.info(
            "jobs.submit.accepted",
            extra={"session_id": session_id, "job_id": handle.job_id, **options.to_dict()},
        )
        return handle

    async def _submit(self, session_id: str, options: PipelineOptions) -> JobHandle:
        session = await asyncio.to_thread(self.sessions.get_session, session_id)
        if session.is_completed:
            raise SessionCompletedError(f"Session '{session_id}' is already completed")
        if session.has_running_job and not self._is_abandoned(session):
            raise JobInProgressError(
                f"Session '{session_id}' already has running job '{session.job_id}'"
            )

        if options.requires_ai_transform:
            config = await asyncio.to_thread(self.ai_configs.resolve, session.experience_id)
            if config is None:
                raise TransformNotFoundError(
                    f"No AI configuration for experience '{session.experience_id}'"
                )

        job_id = uuid.uuid4().hex
        if session.has_running_job:
            self.log.warning(
                "jobs.submit.takeover",
                extra={"session_id": session_id, "abandoned_job_id": session.job_id},
            )
        # Concurrent submissions race here; the conditional update lets one win.
        await asyncio.to_thread(
            self.sessions.claim_job,
            session_id,
            job_id,
            stale_after_seconds=self.stale_after_seconds,
        )
        try:
            await asyncio.to_thread(
                self.job_history.create_pending,
                job_id=job_id,
                session_id=session_id,
                output_format=options.output_format.value,
                aspect_ratio=options.aspect_ratio.value,
            )
            await self.queue.put(JobPayload(job_id=job_id, session_id=session_id, options=options))
        except Exception as exc:
            await self._release(session_id, job_id, exc)
            raise
        return JobHandle(job_id=job_id, session_id=session_id)

    async def _release(self, session_id: str, job_id: str, error: Exception) -> None:
        """Fail a claimed job that never reached the queue so the session can be resubmitted."""
        self.log.error(
            "jobs.submit.enqueue_failed",
            extra={"session_id": session_id, "job_id": job_id, "error": str(error)},
        )
        await asyncio.to_thread(
            self.sessions.fail,
            session_id,
            job_id,
            error_code=ErrorCode.INTERNAL_ERROR.value,
            error_message=f"Job could not be queued: {error}",
        )

    def _is_abandoned(self, session: GuestSession) -> bool:
        if self.stale_after_seconds is None or session.updated_at is None:
            return False
        idle = datetime.utcnow() - session.updated_at
        return idle > timedelta(seconds=self.stale_after_seconds)
