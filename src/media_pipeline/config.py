"""Application configuration builder.

Environment variables are parsed by :class:`PipelineSettings` and folded into
an :class:`AppConfig` that is passed explicitly to every service. Nothing in
the package reads configuration from module-level state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .db.db_init import init_db


class PipelineSettings(BaseSettings):
    """Raw settings read from ``MEDIA_PIPELINE_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="MEDIA_PIPELINE_",
        env_file=".env",
        extra="ignore",
    )

    database_url: str = "sqlite:///media_pipeline.db"
    media_root: Path = Path("./var/media")
    public_media_base_url: str = "/media"
    gemini_api_key: str = ""
    gemini_api_url_base: str = "https://generativelanguage.googleapis.com/v1beta"
    ai_timeout_seconds: float = Field(default=90.0, gt=0)
    ffmpeg_path: str = "ffmpeg"
    gif_fps: int = Field(default=2, ge=1, le=30)
    video_fps: int = Field(default=5, ge=1, le=60)
    worker_concurrency: int = Field(default=2, ge=1)
    worker_retry_attempts: int = Field(default=3, ge=1)
    worker_retry_backoff_seconds: float = Field(default=2.0, ge=0.0)
    job_ceiling_seconds: float = Field(default=300.0, gt=0)


@dataclass(slots=True)
class MediaPaths:
    root: Path
    public_base_url: str


@dataclass(slots=True)
class AiSettings:
    api_key: str
    api_url_base: str
    timeout_seconds: float


@dataclass(slots=True)
class EncodingSettings:
    ffmpeg_path: str = "ffmpeg"
    gif_fps: int = 2
    video_fps: int = 5
    dimensions: dict[str, tuple[int, int]] = field(
        default_factory=lambda: {"square": (1080, 1080), "story": (1080, 1920)}
    )


@dataclass(slots=True)
class WorkerSettings:
    concurrency: int = 2
    retry_attempts: int = 3
    retry_backoff_seconds: float = 2.0
    job_ceiling_seconds: float = 300.0


@dataclass(slots=True)
class AppConfig:
    media_paths: MediaPaths
    database_url: str
    engine: Engine
    session_factory: sessionmaker[Session]
    ai: AiSettings
    encoding: EncodingSettings
    worker: WorkerSettings


def build_session_factory(database_url: str) -> tuple[Engine, sessionmaker[Session]]:
    """Create the engine and session factory, initialising the schema."""
    engine = create_engine(database_url, future=True)
    session_factory: sessionmaker[Session] = sessionmaker(
        bind=engine, expire_on_commit=False
    )
    init_db(engine)
    return engine, session_factory


def load_config(settings: PipelineSettings | None = None) -> AppConfig:
    """Load configuration from environment (SQLite by default)."""
    settings = settings or PipelineSettings()

    media_paths = MediaPaths(
        root=settings.media_root,
        public_base_url=settings.public_media_base_url.rstrip("/"),
    )
    media_paths.root.mkdir(parents=True, exist_ok=True)

    engine, session_factory = build_session_factory(settings.database_url)

    return AppConfig(
        media_paths=media_paths,
        database_url=settings.database_url,
        engine=engine,
        session_factory=session_factory,
        ai=AiSettings(
            api_key=settings.gemini_api_key,
            api_url_base=settings.gemini_api_url_base,
            timeout_seconds=settings.ai_timeout_seconds,
        ),
        encoding=EncodingSettings(
            ffmpeg_path=settings.ffmpeg_path,
            gif_fps=settings.gif_fps,
            video_fps=settings.video_fps,
        ),
        worker=WorkerSettings(
            concurrency=settings.worker_concurrency,
            retry_attempts=settings.worker_retry_attempts,
            retry_backoff_seconds=settings.worker_retry_backoff_seconds,
            job_ceiling_seconds=settings.job_ceiling_seconds,
        ),
    )
