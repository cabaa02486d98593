"""Persistence layer for job history."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from ..db.db_models import JobHistoryModel


@dataclass(slots=True)
class JobHistoryRecord:
    """Audit view of one job across all of its attempts."""

    job_id: str
    session_id: str
    output_format: str
    aspect_ratio: str
    status: str
    attempts: int
    failure_code: str | None
    failure_message: str | None
    result_path: str | None


class JobHistoryRepository:
    """Manage job_history records."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def create_pending(
        self,
        *,
        job_id: str,
        session_id: str,
        output_format: str,
        aspect_ratio: str,
    ) -> None:
        with self._session_factory() as session:
            session.add(
                JobHistoryModel(
                    job_id=job_id,
                    session_id=session_id,
                    output_format=output_format,
                    aspect_ratio=aspect_ratio,
                    status="pending",
                    attempts=0,
                    created_at=datetime.utcnow(),
                )
            )
            session.commit()

    def mark_attempt(self, job_id: str, attempt: int) -> None:
        with self._session_factory() as session:
            model = self._get(session, job_id)
            model.status = "running"
            model.attempts = attempt
            if model.started_at is None:
                model.started_at = datetime.utcnow()
            session.commit()

    def set_result(self, job_id: str, *, result_path: str) -> None:
        with self._session_factory() as session:
            model = self._get(session, job_id)
            model.status = "completed"
            model.result_path = result_path
            model.failure_code = None
            model.failure_message = None
            model.completed_at = datetime.utcnow()
            session.commit()

    def set_failure(self, job_id: str, *, failure_code: str, failure_message: str) -> None:
        with self._session_factory() as session:
            model = self._get(session, job_id)
            model.status = "failed"
            model.failure_code = failure_code
            model.failure_message = failure_message
            model.completed_at = datetime.utcnow()
            session.commit()

    def get_job(self, job_id: str) -> JobHistoryRecord:
        with self._session_factory() as session:
            model = self._get(session, job_id)
            return JobHistoryRecord(
                job_id=model.job_id,
                session_id=model.session_id,
                output_format=model.output_format,
                aspect_ratio=model.aspect_ratio,
                status=model.status,
                attempts=model.attempts,
                failure_code=model.failure_code,
                failure_message=model.failure_message,
                result_path=model.result_path,
            )

    @staticmethod
    def _get(session: Session, job_id: str) -> JobHistoryModel:
        model = session.get(JobHistoryModel, job_id)
        if model is None:
            raise KeyError(f"Job '{job_id}' not found")
        return model
