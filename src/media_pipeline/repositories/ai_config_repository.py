"""Persistence layer for per-experience AI transform configuration."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime

from sqlalchemy.orm import Session

from ..ai.ai_models import AiTransformConfig
from ..db.db_models import ExperienceAiConfigModel


class AiConfigRepository:
    """Resolve and store ``experience_ai_config`` rows."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def resolve(self, experience_id: str) -> AiTransformConfig | None:
        """Return the AI configuration for ``experience_id`` or ``None``."""
        with self._session_factory() as session:
            model = session.get(ExperienceAiConfigModel, experience_id)
            if model is None:
                return None
            return AiTransformConfig(
                provider=model.provider,
                model=model.model,
                prompt=model.prompt,
                reference_images=tuple(model.reference_images or ()),
                temperature=model.temperature,
            )

    def upsert(
        self,
        *,
        experience_id: str,
        provider: str,
        model: str,
        prompt: str,
        reference_images: Sequence[str] = (),
        temperature: float | None = None,
    ) -> AiTransformConfig:
        with self._session_factory() as session:
            row = session.get(ExperienceAiConfigModel, experience_id)
            if row is None:
                row = ExperienceAiConfigModel(experience_id=experience_id)
                session.add(row)
            row.provider = provider
            row.model = model
            row.prompt = prompt
            row.reference_images = list(reference_images)
            row.temperature = temperature
            row.updated_at = datetime.utcnow()
            session.commit()
        return AiTransformConfig(
            provider=provider,
            model=model,
            prompt=prompt,
            reference_images=tuple(reference_images),
            temperature=temperature,
        )
