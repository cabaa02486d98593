"""Thin wrapper around the ffmpeg binary."""

from __future__ import annotations

import logging
import subprocess
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .encoding_errors import EncodingError, EncodingFailureKind

logger = logging.getLogger(__name__)

MAX_INPUT_BYTES = 50 * 1024 * 1024

# Seconds per operation; frame sequences get the longer budget above 10 frames.
TIMEOUTS = {
    "image": 30.0,
    "overlay": 45.0,
    "gif_short": 45.0,
    "gif_long": 90.0,
    "video_short": 60.0,
    "video_long": 120.0,
}

_STDERR_RULES: tuple[tuple[EncodingFailureKind, tuple[str, ...]], ...] = (
    (
        EncodingFailureKind.VALIDATION,
        ("invalid data", "no such file", "does not exist", "could not find codec parameters"),
    ),
    (
        EncodingFailureKind.CODEC,
        ("unknown encoder", "encoder not found", "codec not currently supported"),
    ),
    (
        EncodingFailureKind.FILESYSTEM,
        ("permission denied", "no space left", "read only", "read-only"),
    ),
    (
        EncodingFailureKind.MEMORY,
        ("cannot allocate memory", "out of memory"),
    ),
)


def categorize_ffmpeg_error(stderr: str) -> EncodingFailureKind:
    """Classify an ffmpeg failure from its stderr output."""
    lowered = stderr.lower()
    for kind, needles in _STDERR_RULES:
        if any(needle in lowered for needle in needles):
            return kind
    return EncodingFailureKind.UNKNOWN


def sequence_timeout(kind: str, frame_count: int) -> float:
    suffix = "long" if frame_count > 10 else "short"
    return TIMEOUTS[f"{kind}_{suffix}"]


def validate_input_file(path: Path) -> None:
    """Reject missing, empty or oversized inputs before ffmpeg sees them."""
    try:
        size = path.stat().st_size
    except FileNotFoundError as exc:
        raise EncodingError(
            f"Input file not found: {path.name}", EncodingFailureKind.VALIDATION
        ) from exc
    if size == 0:
        raise EncodingError(f"Input file is empty: {path.name}", EncodingFailureKind.VALIDATION)
    if size > MAX_INPUT_BYTES:
        raise EncodingError(
            f"Input file too large: {size / 1024 / 1024:.1f}MB "
            f"(max {MAX_INPUT_BYTES // 1024 // 1024}MB)",
            EncodingFailureKind.VALIDATION,
        )


@dataclass(slots=True)
class FfmpegRunner:
    """Run ffmpeg synchronously with a hard timeout."""

    ffmpeg_path: str = "ffmpeg"
    log: logging.Logger = field(default_factory=lambda: logger)

    def run(self, args: Sequence[str], *, timeout: float, description: str) -> None:
        command = [self.ffmpeg_path, "-hide_banner", "-loglevel", "error", "-y", *args]
        started = time.monotonic()
        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            self.log.error(
                "encoding.ffmpeg.timeout",
                extra={"operation": description, "timeout_seconds": timeout},
            )
            raise EncodingError(
                f"{description} timed out after {timeout:.0f}s",
                EncodingFailureKind.TIMEOUT,
            ) from exc
        except FileNotFoundError as exc:
            raise EncodingError(
                f"ffmpeg binary not found at '{self.ffmpeg_path}'",
                EncodingFailureKind.CODEC,
            ) from exc

        duration = round(time.monotonic() - started, 3)
        if completed.returncode != 0:
            stderr = completed.stderr.decode("utf-8", errors="replace").strip()
            kind = categorize_ffmpeg_error(stderr)
            self.log.error(
                "encoding.ffmpeg.failed",
                extra={
                    "operation": description,
                    "returncode": completed.returncode,
                    "kind": kind.value,
                    "stderr_tail": stderr[-500:],
                },
            )
            raise EncodingError(
                f"{description} failed ({kind.value}): {stderr[-300:] or 'no output'}",
                kind,
                stderr=stderr,
            )
        self.log.debug(
            "encoding.ffmpeg.completed",
            extra={"operation": description, "duration_seconds": duration},
        )
