"""Abstract AI provider definition."""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass

from .ai_models import AiTransformConfig, ReferenceImage


@dataclass(slots=True)
class ProviderResult:
    """Standard response from provider implementations."""

    payload: bytes
    content_type: str


class AiProvider(ABC):
    """Base interface for generative image providers."""

    name: str

    @abstractmethod
    async def transform_image(
        self,
        input_image: bytes,
        config: AiTransformConfig,
        reference_images: Sequence[ReferenceImage],
    ) -> ProviderResult:
        """Transform ``input_image`` and return the generated image."""
