"""HTTP routes for starting pipeline jobs."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ..api_errors import ApiError, invalid_request
from ..errors import PreconditionError
from .jobs_schemas import StartPipelineRequest, StartPipelineResponse
from .jobs_service import JobDispatcher

router = APIRouter(prefix="/api", tags=["jobs"])
logger = logging.getLogger(__name__)

PIPELINE_PATH = "/transform-pipeline"


def get_job_dispatcher(request: Request) -> JobDispatcher:
    """Fetch the job dispatcher from application state."""
    try:
        return request.app.state.job_dispatcher  # type: ignore[attr-defined]
    except AttributeError as exc:  # pragma: no cover - defensive path
        raise RuntimeError("JobDispatcher is not configured") from exc


@router.post(PIPELINE_PATH)
async def start_pipeline(
    request: Request,
    dispatcher: JobDispatcher = Depends(get_job_dispatcher),
) -> JSONResponse:
    """Validate the request and enqueue a pipeline job for the session."""
    raw = await request.body()
    try:
        body = json.loads(raw or b"null")
    except ValueError as exc:
        logger.warning("jobs.request.malformed_json")
        raise invalid_request(f"Malformed JSON body: {exc}") from exc
    if not isinstance(body, dict):
        raise invalid_request("Request body must be a JSON object")

    try:
        payload = StartPipelineRequest.model_validate(body)
    except ValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        )
        logger.warning("jobs.request.invalid", extra={"details": details})
        raise invalid_request(details) from exc

    try:
        handle = await dispatcher.submit(payload.session_id, payload.to_options())
    except PreconditionError as exc:
        raise ApiError.from_pipeline_error(exc) from exc

    response = StartPipelineResponse(job_id=handle.job_id)
    return JSONResponse(content=response.model_dump(by_alias=True))


@router.api_route(PIPELINE_PATH, methods=["GET", "PUT", "PATCH", "DELETE"], include_in_schema=False)
async def reject_method(request: Request) -> JSONResponse:
    raise invalid_request(f"Method {request.method} is not allowed; use POST")
