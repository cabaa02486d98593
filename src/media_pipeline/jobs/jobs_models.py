"""Job payload and handle models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from ..pipeline.pipeline_models import PipelineOptions


@dataclass(slots=True, frozen=True)
class JobHandle:
    job_id: str
    session_id: str


@dataclass(slots=True, frozen=True)
class JobPayload:
    """Everything a worker needs to run one job."""

    job_id: str
    session_id: str
    options: PipelineOptions
    enqueued_at: datetime = field(default_factory=datetime.utcnow)
