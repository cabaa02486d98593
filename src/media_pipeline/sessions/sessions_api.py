"""HTTP routes for polling session processing state."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, Request

from ..api_errors import ApiError
from ..errors import SessionNotFoundError
from ..repositories.session_repository import SessionRepository

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


def get_session_repository(request: Request) -> SessionRepository:
    try:
        return request.app.state.session_repo  # type: ignore[attr-defined]
    except AttributeError as exc:  # pragma: no cover - defensive path
        raise RuntimeError("SessionRepository is not configured") from exc


@router.get("/{session_id}/processing")
async def get_processing(
    session_id: str,
    repo: SessionRepository = Depends(get_session_repository),
) -> dict:
    try:
        session = await asyncio.to_thread(repo.get_session, session_id)
    except SessionNotFoundError as exc:
        raise ApiError.from_pipeline_error(exc) from exc
    return {
        "sessionId": session.id,
        "processing": {
            "state": session.processing.state.value,
            "errorCode": session.processing.error_code,
            "errorMessage": session.processing.error_message,
        },
        "jobId": session.job_id,
        "jobStatus": session.job_status.value if session.job_status else None,
        "resultMedia": session.result_media.to_dict() if session.result_media else None,
    }
