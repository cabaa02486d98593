"""Dependency wiring helpers."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from functools import partial

from fastapi import FastAPI

from .ai.ai_transform_service import AiTransformService
from .ai.providers_base import AiProvider
from .ai.providers_factory import create_provider
from .config import AppConfig
from .encoding.encoding_service import EncodingService
from .encoding.ffmpeg import FfmpegRunner
from .jobs.job_queue import JobQueue
from .jobs.job_worker import JobWorker, WorkerPool
from .jobs.jobs_api import router as jobs_router
from .jobs.jobs_service import JobDispatcher
from .media.media_store import LocalMediaStore, MediaStore
from .media.overlays import OverlayResolver
from .pipeline.pipeline_service import PipelineOrchestrator
from .repositories.ai_config_repository import AiConfigRepository
from .repositories.job_history_repository import JobHistoryRepository
from .repositories.session_repository import SessionRepository
from .sessions.sessions_api import router as sessions_router


@dataclass(slots=True)
class Services:
    """Fully wired object graph for one application instance."""

    session_repo: SessionRepository
    ai_config_repo: AiConfigRepository
    job_history_repo: JobHistoryRepository
    media_store: MediaStore
    orchestrator: PipelineOrchestrator
    dispatcher: JobDispatcher
    queue: JobQueue
    pool: WorkerPool


def build_services(
    config: AppConfig,
    *,
    media_store: MediaStore | None = None,
    provider_factory: Callable[[str], AiProvider] | None = None,
    ffmpeg_runner: FfmpegRunner | None = None,
) -> Services:
    """Assemble repositories, stages and the worker pool from ``config``."""
    session_repo = SessionRepository(config.session_factory)
    ai_config_repo = AiConfigRepository(config.session_factory)
    job_history_repo = JobHistoryRepository(config.session_factory)
    store = media_store or LocalMediaStore(config.media_paths)

    ai_service = AiTransformService(
        media_store=store,
        provider_factory=provider_factory
        or partial(
            create_provider,
            api_key=config.ai.api_key,
            api_url_base=config.ai.api_url_base,
            timeout_seconds=config.ai.timeout_seconds,
        ),
        timeout_seconds=config.ai.timeout_seconds,
    )
    encoder = EncodingService(
        settings=config.encoding,
        runner=ffmpeg_runner or FfmpegRunner(config.encoding.ffmpeg_path),
    )
    orchestrator = PipelineOrchestrator(
        sessions=session_repo,
        ai_configs=ai_config_repo,
        media_store=store,
        ai_service=ai_service,
        encoder=encoder,
        overlays=OverlayResolver(store),
    )

    queue = JobQueue()
    dispatcher = JobDispatcher(
        sessions=session_repo,
        ai_configs=ai_config_repo,
        job_history=job_history_repo,
        queue=queue,
        stale_after_seconds=config.worker.job_ceiling_seconds,
    )
    worker = JobWorker(
        queue=queue,
        orchestrator=orchestrator,
        sessions=session_repo,
        job_history=job_history_repo,
        settings=config.worker,
    )
    return Services(
        session_repo=session_repo,
        ai_config_repo=ai_config_repo,
        job_history_repo=job_history_repo,
        media_store=store,
        orchestrator=orchestrator,
        dispatcher=dispatcher,
        queue=queue,
        pool=WorkerPool(worker, config.worker.concurrency),
    )


def include_routers(app: FastAPI, config: AppConfig, services: Services) -> None:
    """Mount module routers and attach services."""
    app.state.config = config
    app.state.services = services
    app.state.session_repo = services.session_repo
    app.state.ai_config_repo = services.ai_config_repo
    app.state.job_history_repo = services.job_history_repo
    app.state.job_dispatcher = services.dispatcher
    app.state.worker_pool = services.pool

    app.include_router(jobs_router)
    app.include_router(sessions_router)
