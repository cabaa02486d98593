"""Error taxonomy shared by the dispatcher, orchestrator and HTTP layer."""

from __future__ import annotations

from enum import StrEnum

__all__ = [
    "ErrorCode",
    "PipelineError",
    "PreconditionError",
    "SessionNotFoundError",
    "TransformNotFoundError",
    "JobInProgressError",
    "SessionCompletedError",
    "StageError",
    "StaleJobError",
    "InvalidTransitionError",
    "NON_RETRYABLE_CODES",
]


class ErrorCode(StrEnum):
    """Codes surfaced to submitters and persisted on ``processing.errorCode``."""

    INVALID_REQUEST = "INVALID_REQUEST"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    TRANSFORM_NOT_FOUND = "TRANSFORM_NOT_FOUND"
    JOB_IN_PROGRESS = "JOB_IN_PROGRESS"
    SESSION_ALREADY_COMPLETED = "SESSION_ALREADY_COMPLETED"
    NO_INPUT_ASSETS = "NO_INPUT_ASSETS"
    DOWNLOAD_FAILED = "DOWNLOAD_FAILED"
    REFERENCE_IMAGE_NOT_FOUND = "REFERENCE_IMAGE_NOT_FOUND"
    AI_TRANSFORM_FAILED = "AI_TRANSFORM_FAILED"
    AI_TRANSFORM_TIMEOUT = "AI_TRANSFORM_TIMEOUT"
    INVALID_AI_CONFIG = "INVALID_AI_CONFIG"
    INVALID_INPUT_IMAGE = "INVALID_INPUT_IMAGE"
    ENCODING_FAILED = "ENCODING_FAILED"
    UPLOAD_FAILED = "UPLOAD_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


NON_RETRYABLE_CODES = frozenset(
    {
        ErrorCode.NO_INPUT_ASSETS,
        ErrorCode.TRANSFORM_NOT_FOUND,
        ErrorCode.REFERENCE_IMAGE_NOT_FOUND,
        ErrorCode.INVALID_AI_CONFIG,
        ErrorCode.INVALID_INPUT_IMAGE,
    }
)


class PipelineError(Exception):
    """Base class for errors carrying a public :class:`ErrorCode`."""

    default_code = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        retryable: bool | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        if retryable is None:
            retryable = self.code not in NON_RETRYABLE_CODES
        self.retryable = retryable


class PreconditionError(PipelineError):
    """Rejected before a job is created; never mutates the session."""

    def __init__(self, message: str, *, code: ErrorCode | None = None) -> None:
        super().__init__(message, code=code, retryable=False)


class SessionNotFoundError(PreconditionError):
    default_code = ErrorCode.SESSION_NOT_FOUND


class TransformNotFoundError(PreconditionError):
    default_code = ErrorCode.TRANSFORM_NOT_FOUND


class JobInProgressError(PreconditionError):
    default_code = ErrorCode.JOB_IN_PROGRESS


class SessionCompletedError(PreconditionError):
    default_code = ErrorCode.SESSION_ALREADY_COMPLETED


class StageError(PipelineError):
    """Raised by a pipeline stage; always recorded on the session as ``failed``."""


class StaleJobError(PipelineError):
    """Raised when a job no longer owns the session it is writing to."""

    def __init__(self, message: str) -> None:
        super().__init__(message, retryable=False)


class InvalidTransitionError(PipelineError):
    """Raised when a processing state change violates the state machine."""

    def __init__(self, message: str) -> None:
        super().__init__(message, retryable=False)
