"""Session domain models and the processing state machine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from ..media.media_models import MediaRef


class ProcessingState(StrEnum):
    """Processing states in success-path order, plus terminal ``failed``."""

    PENDING = "pending"
    INITIALIZING = "initializing"
    DOWNLOADING = "downloading"
    AI_TRANSFORM = "ai-transform"
    PROCESSING = "processing"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessingState.COMPLETED, ProcessingState.FAILED)


class JobStatus(StrEnum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


NON_TERMINAL_STATES = frozenset(state for state in ProcessingState if not state.is_terminal)

# Allowed predecessor states for every target state. ``failed`` is reachable
# from any non-terminal state; ``ai-transform`` is optional on the way to
# ``processing``.
PREDECESSORS: dict[ProcessingState, frozenset[ProcessingState]] = {
    ProcessingState.INITIALIZING: frozenset({ProcessingState.PENDING}),
    ProcessingState.DOWNLOADING: frozenset({ProcessingState.INITIALIZING}),
    ProcessingState.AI_TRANSFORM: frozenset({ProcessingState.DOWNLOADING}),
    ProcessingState.PROCESSING: frozenset(
        {ProcessingState.DOWNLOADING, ProcessingState.AI_TRANSFORM}
    ),
    ProcessingState.UPLOADING: frozenset({ProcessingState.PROCESSING}),
    ProcessingState.COMPLETED: frozenset({ProcessingState.UPLOADING}),
    ProcessingState.FAILED: NON_TERMINAL_STATES,
}


def can_transition(current: ProcessingState, target: ProcessingState) -> bool:
    return current in PREDECESSORS.get(target, frozenset())


@dataclass(slots=True)
class Processing:
    state: ProcessingState = ProcessingState.PENDING
    error_code: str | None = None
    error_message: str | None = None


@dataclass(slots=True)
class GuestSession:
    """One guest's run through an experience."""

    id: str
    project_id: str
    experience_id: str
    input_assets: tuple[MediaRef, ...] = ()
    result_media: MediaRef | None = None
    processing: Processing = field(default_factory=Processing)
    job_id: str | None = None
    job_status: JobStatus | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_completed(self) -> bool:
        return self.processing.state is ProcessingState.COMPLETED

    @property
    def has_running_job(self) -> bool:
        return self.job_status is JobStatus.RUNNING
