"""Pydantic schemas for job submission."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr

from ..pipeline.pipeline_models import AspectRatio, OutputFormat, PipelineOptions


class StartPipelineRequest(BaseModel):
    """Body of ``POST /api/transform-pipeline``; only camelCase keys are accepted."""

    model_config = ConfigDict(extra="ignore")

    session_id: StrictStr = Field(alias="sessionId", min_length=1)
    output_format: Literal["image", "gif", "video"] = Field(alias="outputFormat")
    aspect_ratio: Literal["square", "story"] = Field(alias="aspectRatio")
    overlay: StrictBool = False
    ai_transform: StrictBool = Field(default=False, alias="aiTransform")

    def to_options(self) -> PipelineOptions:
        return PipelineOptions(
            output_format=OutputFormat(self.output_format),
            aspect_ratio=AspectRatio(self.aspect_ratio),
            overlay=self.overlay,
            ai_transform=self.ai_transform,
        )


class StartPipelineResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    job_id: str = Field(serialization_alias="jobId")
