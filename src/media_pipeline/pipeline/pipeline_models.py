"""Pipeline option models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class OutputFormat(StrEnum):
    IMAGE = "image"
    GIF = "gif"
    VIDEO = "video"


class AspectRatio(StrEnum):
    SQUARE = "square"
    STORY = "story"


@dataclass(slots=True, frozen=True)
class PipelineOptions:
    """Per-invocation options carried in the job payload.

    ``aspect_ratio`` alone decides the output dimensions.
    """

    output_format: OutputFormat
    aspect_ratio: AspectRatio
    overlay: bool = False
    ai_transform: bool = False

    @property
    def requires_ai_transform(self) -> bool:
        return self.ai_transform and self.output_format is OutputFormat.IMAGE

    def to_dict(self) -> dict[str, Any]:
        return {
            "outputFormat": self.output_format.value,
            "aspectRatio": self.aspect_ratio.value,
            "overlay": self.overlay,
            "aiTransform": self.ai_transform,
        }
