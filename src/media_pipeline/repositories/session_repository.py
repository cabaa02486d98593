"""Persistence layer for guest sessions.

Every mutation performed on behalf of a job is a single conditional
``UPDATE`` keyed on ``(id, job_id, job_status='running')``. A write that
matches no row means the job lost ownership of the session (or tried an
illegal state change) and is reported instead of silently applied.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import and_, or_, update
from sqlalchemy.orm import Session

from ..db.db_models import GuestSessionModel
from ..errors import (
    InvalidTransitionError,
    JobInProgressError,
    SessionCompletedError,
    SessionNotFoundError,
    StaleJobError,
)
from ..media.media_models import MediaRef
from ..sessions.sessions_models import (
    PREDECESSORS,
    GuestSession,
    JobStatus,
    Processing,
    ProcessingState,
)


class SessionRepository:
    """Read and transactionally mutate ``guest_session`` records."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def create_session(
        self,
        *,
        session_id: str,
        project_id: str,
        experience_id: str,
        input_assets: Sequence[MediaRef],
    ) -> GuestSession:
        now = datetime.utcnow()
        with self._session_factory() as session:
            model = GuestSessionModel(
                id=session_id,
                project_id=project_id,
                experience_id=experience_id,
                input_assets=[asset.to_dict() for asset in input_assets],
                processing_state=ProcessingState.PENDING.value,
                created_at=now,
                updated_at=now,
            )
            session.add(model)
            session.commit()
            return self._to_domain(model)

    def get_session(self, session_id: str) -> GuestSession:
        with self._session_factory() as session:
            model = session.get(GuestSessionModel, session_id)
            if model is None:
                raise SessionNotFoundError(f"Session '{session_id}' not found")
            return self._to_domain(model)

    def claim_job(
        self,
        session_id: str,
        job_id: str,
        *,
        stale_after_seconds: float | None = None,
    ) -> GuestSession:
        """Assign ``job_id`` as the running job unless another job owns the session.

        With ``stale_after_seconds`` a running job whose session has not been
        written for that long is treated as abandoned and taken over; its
        worker, if still alive, loses ownership on its next write.
        """
        claimable = [
            GuestSessionModel.job_status.is_(None),
            GuestSessionModel.job_status != JobStatus.RUNNING.value,
        ]
        if stale_after_seconds is not None:
            cutoff = datetime.utcnow() - timedelta(seconds=stale_after_seconds)
            claimable.append(
                and_(
                    GuestSessionModel.job_status == JobStatus.RUNNING.value,
                    GuestSessionModel.updated_at < cutoff,
                )
            )
        with self._session_factory() as session:
            result = session.execute(
                update(GuestSessionModel)
                .where(
                    GuestSessionModel.id == session_id,
                    or_(*claimable),
                    GuestSessionModel.processing_state != ProcessingState.COMPLETED.value,
                )
                .values(
                    job_id=job_id,
                    job_status=JobStatus.RUNNING.value,
                    processing_state=ProcessingState.PENDING.value,
                    error_code=None,
                    error_message=None,
                    updated_at=datetime.utcnow(),
                )
            )
            if result.rowcount == 1:
                session.commit()
                return self._to_domain(session.get(GuestSessionModel, session_id, populate_existing=True))
            session.rollback()

            model = session.get(GuestSessionModel, session_id)
            if model is None:
                raise SessionNotFoundError(f"Session '{session_id}' not found")
            if model.processing_state == ProcessingState.COMPLETED.value:
                raise SessionCompletedError(f"Session '{session_id}' is already completed")
            raise JobInProgressError(
                f"Session '{session_id}' already has running job '{model.job_id}'"
            )

    def reclaim_job(self, session_id: str, job_id: str) -> None:
        """Reset ``job_id`` to ``pending``/``running`` before a retry attempt.

        The previous attempt may have recorded ``failed`` or died before it
        could; either way the session must still belong to ``job_id``.
        """
        with self._session_factory() as session:
            result = session.execute(
                update(GuestSessionModel)
                .where(
                    GuestSessionModel.id == session_id,
                    GuestSessionModel.job_id == job_id,
                    GuestSessionModel.job_status.in_(
                        [JobStatus.FAILED.value, JobStatus.RUNNING.value]
                    ),
                    GuestSessionModel.processing_state != ProcessingState.COMPLETED.value,
                )
                .values(
                    job_status=JobStatus.RUNNING.value,
                    processing_state=ProcessingState.PENDING.value,
                    error_code=None,
                    error_message=None,
                    updated_at=datetime.utcnow(),
                )
            )
            if result.rowcount != 1:
                session.rollback()
                raise StaleJobError(
                    f"Job '{job_id}' can no longer be retried for session '{session_id}'"
                )
            session.commit()

    def advance(self, session_id: str, job_id: str, state: ProcessingState) -> None:
        """Move the session to ``state`` if the transition is legal and owned."""
        if state in (ProcessingState.COMPLETED, ProcessingState.FAILED):
            raise InvalidTransitionError(
                f"Use complete()/fail() to enter terminal state '{state}'"
            )
        self._guarded_update(session_id, job_id, state, {})

    def complete(self, session_id: str, job_id: str, result_media: MediaRef) -> None:
        """Set ``result_media`` together with ``completed`` in one write."""
        self._guarded_update(
            session_id,
            job_id,
            ProcessingState.COMPLETED,
            {
                "result_media": result_media.to_dict(),
                "job_status": JobStatus.COMPLETED.value,
                "error_code": None,
                "error_message": None,
            },
        )

    def fail(self, session_id: str, job_id: str, *, error_code: str, error_message: str) -> None:
        """Record ``failed`` with its error code and message in one write."""
        self._guarded_update(
            session_id,
            job_id,
            ProcessingState.FAILED,
            {
                "job_status": JobStatus.FAILED.value,
                "error_code": error_code,
                "error_message": error_message,
            },
        )

    def _guarded_update(
        self,
        session_id: str,
        job_id: str,
        state: ProcessingState,
        values: dict[str, Any],
    ) -> None:
        allowed = [predecessor.value for predecessor in PREDECESSORS[state]]
        with self._session_factory() as session:
            result = session.execute(
                update(GuestSessionModel)
                .where(
                    GuestSessionModel.id == session_id,
                    GuestSessionModel.job_id == job_id,
                    GuestSessionModel.job_status == JobStatus.RUNNING.value,
                    GuestSessionModel.processing_state.in_(allowed),
                )
                .values(processing_state=state.value, updated_at=datetime.utcnow(), **values)
            )
            if result.rowcount == 1:
                session.commit()
                return
            session.rollback()

            model = session.get(GuestSessionModel, session_id)
            if model is None:
                raise SessionNotFoundError(f"Session '{session_id}' not found")
            if model.job_id != job_id or model.job_status != JobStatus.RUNNING.value:
                raise StaleJobError(
                    f"Job '{job_id}' no longer owns session '{session_id}' "
                    f"(job_id={model.job_id}, job_status={model.job_status})"
                )
            raise InvalidTransitionError(
                f"Illegal transition {model.processing_state} -> {state.value} "
                f"for session '{session_id}'"
            )

    @staticmethod
    def _to_domain(model: GuestSessionModel) -> GuestSession:
        return GuestSession(
            id=model.id,
            project_id=model.project_id,
            experience_id=model.experience_id,
            input_assets=tuple(MediaRef.from_dict(item) for item in model.input_assets or []),
            result_media=MediaRef.from_dict(model.result_media) if model.result_media else None,
            processing=Processing(
                state=ProcessingState(model.processing_state),
                error_code=model.error_code,
                error_message=model.error_message,
            ),
            job_id=model.job_id,
            job_status=JobStatus(model.job_status) if model.job_status else None,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )
