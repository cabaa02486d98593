"""Data structures for the AI transform stage."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePosixPath

from .ai_errors import AiErrorCode, AiTransformError

REFERENCE_DIR = "ai-reference"


@dataclass(slots=True, frozen=True)
class AiTransformConfig:
    """Caller-supplied configuration for one AI transformation.

    There is deliberately no aspect-ratio field: output dimensions come from
    the pipeline options only.
    """

    provider: str
    model: str
    prompt: str
    reference_images: tuple[str, ...] = ()
    temperature: float | None = None


@dataclass(slots=True, frozen=True)
class ReferenceImage:
    path: str
    mime_type: str
    data: bytes


def validate_config(config: AiTransformConfig) -> None:
    """Reject configurations that would waste a provider call."""
    if not config.provider or not config.provider.strip():
        raise AiTransformError("AI provider is required in config", AiErrorCode.INVALID_CONFIG)
    if not config.model or not config.model.strip():
        raise AiTransformError("Model name is required in config", AiErrorCode.INVALID_CONFIG)
    if not config.prompt or not config.prompt.strip():
        raise AiTransformError("Prompt is required in config", AiErrorCode.INVALID_CONFIG)
    if config.temperature is not None and not 0.0 <= config.temperature <= 2.0:
        raise AiTransformError(
            f"Temperature must be within [0, 2], got {config.temperature}",
            AiErrorCode.INVALID_CONFIG,
        )
    for path in config.reference_images:
        validate_reference_path(path)


def validate_reference_path(path: str) -> None:
    """Reference images are store paths under an ``ai-reference/`` directory."""
    if not path or not path.strip():
        raise AiTransformError("Reference image path cannot be empty", AiErrorCode.INVALID_CONFIG)
    if "://" in path:
        raise AiTransformError(
            f"Reference image must be a storage path, not a URL: {path}",
            AiErrorCode.INVALID_CONFIG,
        )
    candidate = PurePosixPath(path)
    if candidate.is_absolute() or ".." in candidate.parts:
        raise AiTransformError(
            f"Invalid reference image path: {path}", AiErrorCode.INVALID_CONFIG
        )
    if REFERENCE_DIR not in candidate.parts[:-1]:
        raise AiTransformError(
            f"Invalid reference image path format: {path}. "
            f"Expected: media/{{companyId}}/{REFERENCE_DIR}/{{filename}}",
            AiErrorCode.INVALID_CONFIG,
        )
