"""Pipeline orchestrator: sequences stages and records session state."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from ..ai.ai_errors import AiErrorCode, AiTransformError
from ..ai.ai_models import validate_config
from ..ai.ai_transform_service import AiTransformService
from ..encoding.encoding_errors import EncodingError
from ..encoding.encoding_service import EncodedMedia, EncodingService
from ..errors import (
    ErrorCode,
    PipelineError,
    StageError,
    StaleJobError,
)
from ..media.media_helpers import result_path
from ..media.media_models import MediaRef
from ..media.media_store import MediaStore, MediaStoreError
from ..media.overlays import OverlayResolver
from ..repositories.ai_config_repository import AiConfigRepository
from ..repositories.session_repository import SessionRepository
from ..sessions.sessions_models import GuestSession, ProcessingState
from .pipeline_models import OutputFormat, PipelineOptions

logger = logging.getLogger(__name__)

AI_ERROR_CODES: dict[AiErrorCode, ErrorCode] = {
    AiErrorCode.REFERENCE_IMAGE_NOT_FOUND: ErrorCode.REFERENCE_IMAGE_NOT_FOUND,
    AiErrorCode.TIMEOUT: ErrorCode.AI_TRANSFORM_TIMEOUT,
    AiErrorCode.INVALID_CONFIG: ErrorCode.INVALID_AI_CONFIG,
    AiErrorCode.INVALID_INPUT_IMAGE: ErrorCode.INVALID_INPUT_IMAGE,
    AiErrorCode.API_ERROR: ErrorCode.AI_TRANSFORM_FAILED,
}

STAGE_DEFAULT_CODES: dict[ProcessingState, ErrorCode] = {
    ProcessingState.PENDING: ErrorCode.INTERNAL_ERROR,
    ProcessingState.INITIALIZING: ErrorCode.INTERNAL_ERROR,
    ProcessingState.DOWNLOADING: ErrorCode.DOWNLOAD_FAILED,
    ProcessingState.AI_TRANSFORM: ErrorCode.AI_TRANSFORM_FAILED,
    ProcessingState.PROCESSING: ErrorCode.ENCODING_FAILED,
    ProcessingState.UPLOADING: ErrorCode.UPLOAD_FAILED,
}


@dataclass(slots=True)
class PipelineRun:
    """Mutable bookkeeping for one attempt of one job."""

    session: GuestSession
    job_id: str
    options: PipelineOptions
    stage: ProcessingState = ProcessingState.PENDING


@dataclass(slots=True)
class PipelineOrchestrator:
    """Execute one job attempt for a session.

    A run either ends with the session ``completed`` or with it ``failed``
    and a :class:`StageError` raised to the caller; there is no partial
    success. Ownership loss (:class:`StaleJobError`) is raised without
    touching the session.
    """

    sessions: SessionRepository
    ai_configs: AiConfigRepository
    media_store: MediaStore
    ai_service: AiTransformService
    encoder: EncodingService
    overlays: OverlayResolver
    log: logging.Logger = field(default_factory=lambda: logger)

    async def run(self, session_id: str, job_id: str, options: PipelineOptions) -> MediaRef:
        session = await asyncio.to_thread(self.sessions.get_session, session_id)
        run = PipelineRun(session=session, job_id=job_id, options=options)
        try:
            await self._enter(run, ProcessingState.INITIALIZING)
            if options.output_format is OutputFormat.IMAGE:
                return await self._run_image(run)
            return await self._run_sequence(run)
        except StaleJobError:
            self.log.warning(
                "pipeline.job.stale",
                extra={"session_id": session_id, "job_id": job_id, "stage": run.stage.value},
            )
            raise
        except asyncio.CancelledError:
            await self._record_cancellation(run)
            raise
        except Exception as exc:
            error = self._to_stage_error(exc, run.stage)
            await self._record_failure(run, error)
            if error is exc:
                raise
            raise error from exc

    async def _run_image(self, run: PipelineRun) -> MediaRef:
        assets = [asset for asset in run.session.input_assets if not asset.is_video]
        frames = await self._download(run, assets[:1])
        working = frames[0]
        if run.options.requires_ai_transform:
            working = await self._ai_transform(run, working)
        encoded = await self._encode(run, [working])
        return await self._upload(run, encoded)

    async def _run_sequence(self, run: PipelineRun) -> MediaRef:
        if run.options.ai_transform:
            self.log.warning(
                "pipeline.ai_transform.ignored",
                extra={
                    "session_id": run.session.id,
                    "output_format": run.options.output_format.value,
                },
            )
        video_input = False
        assets = [asset for asset in run.session.input_assets if not asset.is_video]
        if run.options.output_format is OutputFormat.VIDEO:
            clips = [asset for asset in run.session.input_assets if asset.is_video]
            if clips:
                assets, video_input = clips[:1], True
        frames = await self._download(run, assets)
        encoded = await self._encode(run, frames, video_input=video_input)
        return await self._upload(run, encoded)

    async def _download(self, run: PipelineRun, assets: list[MediaRef]) -> list[bytes]:
        await self._enter(run, ProcessingState.DOWNLOADING)
        if not assets:
            raise StageError(
                f"Session '{run.session.id}' has no usable input assets for "
                f"{run.options.output_format.value} output",
                code=ErrorCode.NO_INPUT_ASSETS,
            )
        frames = await asyncio.gather(
            *(asyncio.to_thread(self.media_store.read, asset.path) for asset in assets)
        )
        self.log.info(
            "pipeline.download.completed",
            extra={
                "session_id": run.session.id,
                "asset_count": len(frames),
                "total_bytes": sum(len(frame) for frame in frames),
            },
        )
        return list(frames)

    async def _ai_transform(self, run: PipelineRun, working: bytes) -> bytes:
        await self._enter(run, ProcessingState.AI_TRANSFORM)
        config = await asyncio.to_thread(self.ai_configs.resolve, run.session.experience_id)
        if config is None:
            raise StageError(
                f"No AI configuration for experience '{run.session.experience_id}'",
                code=ErrorCode.TRANSFORM_NOT_FOUND,
            )
        validate_config(config)
        for path in config.reference_images:
            exists = await asyncio.to_thread(self.media_store.exists, path)
            if not exists:
                raise AiTransformError(
                    f"Reference image not found: {path}",
                    AiErrorCode.REFERENCE_IMAGE_NOT_FOUND,
                )
        return await self.ai_service.transform(working, config)

    async def _encode(
        self, run: PipelineRun, frames: list[bytes], *, video_input: bool = False
    ) -> EncodedMedia:
        await self._enter(run, ProcessingState.PROCESSING)
        overlay = None
        if run.options.overlay:
            overlay = await asyncio.to_thread(
                self.overlays.load, run.session.project_id, run.options.aspect_ratio.value
            )
        return await asyncio.to_thread(
            self.encoder.encode,
            run.options.output_format.value,
            frames,
            run.options.aspect_ratio.value,
            overlay,
            video_input=video_input,
        )

    async def _upload(self, run: PipelineRun, encoded: EncodedMedia) -> MediaRef:
        await self._enter(run, ProcessingState.UPLOADING)
        path = result_path(run.session.project_id, run.session.id, run.job_id, encoded.extension)
        stored = await asyncio.to_thread(
            self.media_store.write, path, encoded.data, encoded.content_type
        )
        try:
            await asyncio.to_thread(self.sessions.complete, run.session.id, run.job_id, stored)
        except StaleJobError:
            self.log.warning(
                "pipeline.upload.orphaned",
                extra={"session_id": run.session.id, "job_id": run.job_id, "path": stored.path},
            )
            raise
        run.stage = ProcessingState.COMPLETED
        self.log.info(
            "pipeline.job.completed",
            extra={
                "session_id": run.session.id,
                "job_id": run.job_id,
                "result_path": stored.path,
                "size_bytes": stored.size_bytes,
            },
        )
        return stored

    async def _enter(self, run: PipelineRun, state: ProcessingState) -> None:
        await asyncio.to_thread(self.sessions.advance, run.session.id, run.job_id, state)
        run.stage = state
        self.log.info(
            "pipeline.stage.start",
            extra={"session_id": run.session.id, "job_id": run.job_id, "stage": state.value},
        )

    async def _record_failure(self, run: PipelineRun, error: PipelineError) -> None:
        try:
            await asyncio.to_thread(
                self.sessions.fail,
                run.session.id,
                run.job_id,
                error_code=error.code.value,
                error_message=error.message,
            )
        except StaleJobError:
            self.log.warning(
                "pipeline.fail.stale",
                extra={"session_id": run.session.id, "job_id": run.job_id},
            )
            raise
        self.log.error(
            "pipeline.job.failed",
            extra={
                "session_id": run.session.id,
                "job_id": run.job_id,
                "stage": run.stage.value,
                "error_code": error.code.value,
                "error_message": error.message,
                "retryable": error.retryable,
            },
        )

    async def _record_cancellation(self, run: PipelineRun) -> None:
        """Mark an interrupted run ``failed`` so the session can be resubmitted."""
        if run.stage is ProcessingState.COMPLETED:
            return
        message = f"Job cancelled during {run.stage.value}"
        try:
            await asyncio.shield(
                asyncio.to_thread(
                    self.sessions.fail,
                    run.session.id,
                    run.job_id,
                    error_code=ErrorCode.INTERNAL_ERROR.value,
                    error_message=message,
                )
            )
        except PipelineError as exc:
            self.log.warning(
                "pipeline.cancel.unrecorded",
                extra={"session_id": run.session.id, "job_id": run.job_id, "error": exc.message},
            )
            return
        self.log.warning(
            "pipeline.job.cancelled",
            extra={"session_id": run.session.id, "job_id": run.job_id, "stage": run.stage.value},
        )

    @staticmethod
    def _to_stage_error(exc: Exception, stage: ProcessingState) -> PipelineError:
        """Pick the most specific error code for ``exc`` raised during ``stage``."""
        if isinstance(exc, PipelineError):
            return exc
        default = STAGE_DEFAULT_CODES.get(stage, ErrorCode.INTERNAL_ERROR)
        if isinstance(exc, AiTransformError):
            return StageError(exc.message, code=AI_ERROR_CODES.get(exc.code, default))
        if isinstance(exc, EncodingError):
            return StageError(
                exc.message, code=ErrorCode.ENCODING_FAILED, retryable=not exc.deterministic
            )
        if isinstance(exc, MediaStoreError):
            return StageError(str(exc), code=default)
        message = str(exc) or exc.__class__.__name__
        return StageError(message, code=default)
