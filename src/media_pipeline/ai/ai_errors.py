"""Typed failures raised by the AI transform stage."""

from __future__ import annotations

from enum import StrEnum


class AiErrorCode(StrEnum):
    API_ERROR = "API_ERROR"
    INVALID_CONFIG = "INVALID_CONFIG"
    REFERENCE_IMAGE_NOT_FOUND = "REFERENCE_IMAGE_NOT_FOUND"
    INVALID_INPUT_IMAGE = "INVALID_INPUT_IMAGE"
    TIMEOUT = "TIMEOUT"


class AiTransformError(Exception):
    """Raised when an AI transformation cannot produce an image."""

    def __init__(
        self,
        message: str,
        code: AiErrorCode,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def __repr__(self) -> str:
        return f"AiTransformError(code={self.code.value!r}, message={self.message!r})"
