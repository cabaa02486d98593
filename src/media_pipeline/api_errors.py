"""Error envelope and exception handlers for the HTTP layer."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .errors import ErrorCode, PipelineError

_STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.INVALID_REQUEST: status.HTTP_400_BAD_REQUEST,
    ErrorCode.SESSION_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.TRANSFORM_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.JOB_IN_PROGRESS: status.HTTP_409_CONFLICT,
    ErrorCode.SESSION_ALREADY_COMPLETED: status.HTTP_409_CONFLICT,
}


@dataclass(slots=True)
class ApiError(Exception):
    """Structured application-level error for HTTP handlers."""

    status_code: int
    code: str
    message: str

    def to_response(self) -> JSONResponse:
        return JSONResponse(
            status_code=self.status_code,
            content={"success": False, "error": {"code": self.code, "message": self.message}},
        )

    @classmethod
    def from_pipeline_error(cls, exc: PipelineError) -> "ApiError":
        status_code = _STATUS_BY_CODE.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        return cls(status_code, exc.code.value, exc.message)


def invalid_request(message: str) -> ApiError:
    return ApiError(status.HTTP_400_BAD_REQUEST, ErrorCode.INVALID_REQUEST.value, message)


async def api_error_handler(_: Request, exc: ApiError) -> JSONResponse:
    """Convert :class:`ApiError` exceptions into JSON payloads."""
    return exc.to_response()


async def validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    """Report FastAPI request validation failures as ``INVALID_REQUEST``."""
    details = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}"
        for error in exc.errors()
    )
    return invalid_request(details or "Invalid request").to_response()


__all__ = ["ApiError", "api_error_handler", "invalid_request", "validation_error_handler"]
