"""AI transform stage: validate, load references, call the provider."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from ..media.media_helpers import sniff_image_mime
from ..media.media_store import MediaNotFoundError, MediaStore, MediaStoreError
from .ai_errors import AiErrorCode, AiTransformError
from .ai_models import AiTransformConfig, ReferenceImage, validate_config
from .providers_base import AiProvider
from .providers_factory import create_provider

logger = logging.getLogger(__name__)

_UNKNOWN_MIME = "application/octet-stream"


@dataclass(slots=True)
class AiTransformService:
    """Run one image through the configured generative provider.

    Every failure surfaces as :class:`AiTransformError`. Reference images are
    resolved before the provider is contacted so a missing reference never
    costs a provider call.
    """

    media_store: MediaStore
    provider_factory: Callable[[str], AiProvider] = field(
        default_factory=lambda: create_provider
    )
    timeout_seconds: float = 90.0
    log: logging.Logger = field(default_factory=lambda: logger)

    async def transform(self, input_image: bytes, config: AiTransformConfig) -> bytes:
        validate_config(config)
        self._validate_input(input_image)

        references = await asyncio.to_thread(self._load_references, config)

        try:
            provider = self.provider_factory(config.provider)
        except ValueError as exc:
            raise AiTransformError(
                f"Unsupported AI provider '{config.provider}'",
                AiErrorCode.INVALID_CONFIG,
                exc,
            ) from exc

        self.log.info(
            "ai.transform.start",
            extra={
                "provider": config.provider,
                "model": config.model,
                "reference_count": len(references),
            },
        )
        started = time.monotonic()
        try:
            result = await asyncio.wait_for(
                provider.transform_image(input_image, config, references),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            self.log.warning(
                "ai.transform.timeout",
                extra={"provider": config.provider, "timeout_seconds": self.timeout_seconds},
            )
            raise AiTransformError(
                f"AI transform did not finish within {self.timeout_seconds}s",
                AiErrorCode.TIMEOUT,
                exc,
            ) from exc
        except AiTransformError:
            raise
        except Exception as exc:
            raise AiTransformError(
                f"AI transform failed: {exc}", AiErrorCode.API_ERROR, exc
            ) from exc

        if not result.payload:
            raise AiTransformError("AI provider returned an empty image", AiErrorCode.API_ERROR)

        self.log.info(
            "ai.transform.completed",
            extra={
                "provider": config.provider,
                "duration_seconds": round(time.monotonic() - started, 3),
                "result_bytes": len(result.payload),
            },
        )
        return result.payload

    def _load_references(self, config: AiTransformConfig) -> list[ReferenceImage]:
        references: list[ReferenceImage] = []
        for path in config.reference_images:
            try:
                data = self.media_store.read(path)
            except MediaNotFoundError as exc:
                self.log.warning("ai.reference.missing", extra={"path": path})
                raise AiTransformError(
                    f"Reference image not found: {path}",
                    AiErrorCode.REFERENCE_IMAGE_NOT_FOUND,
                    exc,
                ) from exc
            except MediaStoreError as exc:
                raise AiTransformError(
                    f"Failed to load reference image {path}: {exc}",
                    AiErrorCode.API_ERROR,
                    exc,
                ) from exc
            references.append(
                ReferenceImage(path=path, mime_type=sniff_image_mime(data), data=data)
            )
        return references

    @staticmethod
    def _validate_input(input_image: bytes) -> None:
        if not input_image:
            raise AiTransformError("Input image is empty", AiErrorCode.INVALID_INPUT_IMAGE)
        if sniff_image_mime(input_image, _UNKNOWN_MIME) == _UNKNOWN_MIME:
            raise AiTransformError(
                "Input image is not a supported image format",
                AiErrorCode.INVALID_INPUT_IMAGE,
            )
