"""Typed failures raised by the encoding stage."""

from __future__ import annotations

from enum import StrEnum


class EncodingFailureKind(StrEnum):
    VALIDATION = "validation"
    TIMEOUT = "timeout"
    CODEC = "codec"
    FILESYSTEM = "filesystem"
    MEMORY = "memory"
    UNKNOWN = "unknown"


# Repeating the same input produces the same failure.
DETERMINISTIC_KINDS = frozenset({EncodingFailureKind.VALIDATION, EncodingFailureKind.CODEC})


class EncodingError(Exception):
    """Raised when media cannot be encoded."""

    def __init__(
        self,
        message: str,
        kind: EncodingFailureKind = EncodingFailureKind.UNKNOWN,
        *,
        stderr: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.stderr = stderr

    @property
    def deterministic(self) -> bool:
        return self.kind in DETERMINISTIC_KINDS
