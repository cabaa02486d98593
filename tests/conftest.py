from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from src.media_pipeline.config import EncodingSettings, MediaPaths
from src.media_pipeline.db.db_init import init_db
from src.media_pipeline.media.media_store import LocalMediaStore
from src.media_pipeline.repositories.ai_config_repository import AiConfigRepository
from src.media_pipeline.repositories.job_history_repository import JobHistoryRepository
from src.media_pipeline.repositories.session_repository import SessionRepository


@pytest.fixture
def session_factory(tmp_path: Path):
    # File-backed so repository calls made from worker threads share one database.
    engine = create_engine(f"sqlite:///{tmp_path / 'pipeline.db'}", future=True)
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    init_db(engine)
    yield factory
    engine.dispose()


@pytest.fixture
def media_paths(tmp_path: Path) -> MediaPaths:
    root = tmp_path / "media"
    root.mkdir()
    return MediaPaths(root=root, public_base_url="https://cdn.test/media")


@pytest.fixture
def media_store(media_paths: MediaPaths) -> LocalMediaStore:
    return LocalMediaStore(media_paths)


@pytest.fixture
def encoding_settings() -> EncodingSettings:
    return EncodingSettings()


@pytest.fixture
def session_repo(session_factory) -> SessionRepository:
    return SessionRepository(session_factory)


@pytest.fixture
def ai_config_repo(session_factory) -> AiConfigRepository:
    return AiConfigRepository(session_factory)


@pytest.fixture
def job_history_repo(session_factory) -> JobHistoryRepository:
    return JobHistoryRepository(session_factory)
