"""Gemini image provider."""

from __future__ import annotations

import base64
import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..media.media_helpers import sniff_image_mime
from .ai_errors import AiErrorCode, AiTransformError
from .ai_models import AiTransformConfig, ReferenceImage
from .providers_base import AiProvider, ProviderResult

logger = logging.getLogger(__name__)

_BODY_PREVIEW_LIMIT = 4000


@dataclass(slots=True)
class GeminiProvider(AiProvider):
    """Call the Gemini ``generateContent`` endpoint once per transform.

    The request carries the input image, then every reference image, then the
    prompt text. No aspect-ratio hint is sent; the encoder crops afterwards.
    """

    api_key: str | None
    api_url_base: str = "https://generativelanguage.googleapis.com/v1beta"
    timeout_seconds: float = 90.0
    name: str = "google"
    log: logging.Logger = field(default_factory=lambda: logger)

    async def transform_image(
        self,
        input_image: bytes,
        config: AiTransformConfig,
        reference_images: Sequence[ReferenceImage],
    ) -> ProviderResult:
        if not self.api_key:
            raise AiTransformError(
                "Gemini API key is not configured", AiErrorCode.INVALID_CONFIG
            )

        input_mime = sniff_image_mime(input_image, "image/jpeg")
        parts: list[dict[str, Any]] = [
            {
                "inline_data": {
                    "mime_type": input_mime,
                    "data": base64.b64encode(input_image).decode("ascii"),
                }
            }
        ]
        for reference in reference_images:
            parts.append(
                {
                    "inline_data": {
                        "mime_type": reference.mime_type,
                        "data": base64.b64encode(reference.data).decode("ascii"),
                    }
                }
            )
        parts.append({"text": config.prompt})

        body: dict[str, Any] = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {"responseModalities": ["IMAGE"]},
        }
        if config.temperature is not None:
            body["generationConfig"]["temperature"] = config.temperature

        url = f"{self.api_url_base}/models/{config.model}:generateContent"
        headers = {
            "x-goog-api-key": self.api_key,
            "Content-Type": "application/json",
        }

        self.log.info(
            "gemini.request.start",
            extra={
                "model": config.model,
                "payload_bytes": len(input_image),
                "payload_mime": input_mime,
                "reference_count": len(reference_images),
                "prompt_len": len(config.prompt),
            },
        )

        try:
            response = await self._post(url, headers=headers, json=body)
        except httpx.TimeoutException as exc:
            raise AiTransformError(
                f"Gemini request timed out: {exc}", AiErrorCode.TIMEOUT, exc
            ) from exc
        except httpx.HTTPError as exc:
            raise AiTransformError(
                f"Gemini HTTP error: {exc}", AiErrorCode.API_ERROR, exc
            ) from exc

        if response.status_code != 200:
            error_detail = _extract_error(response)
            self.log.error(
                "gemini.response.error",
                extra={
                    "status_code": response.status_code,
                    "error_detail": error_detail,
                    "body_preview": response.text[:500],
                },
            )
            raise AiTransformError(
                f"Gemini request failed (status={response.status_code}): {error_detail}",
                AiErrorCode.API_ERROR,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise AiTransformError(
                "Gemini response is not valid JSON", AiErrorCode.API_ERROR, exc
            ) from exc

        self.log.info("gemini.response.received %s", _response_summary(data))
        inline = _first_inline_image(data)
        if inline is None:
            body_preview = json.dumps(_mask_inline_data(data), ensure_ascii=False)
            if len(body_preview) > _BODY_PREVIEW_LIMIT:
                body_preview = body_preview[:_BODY_PREVIEW_LIMIT] + "...(truncated)"
            self.log.warning("gemini.response.no_inline_data %s", body_preview)
            candidate = (data.get("candidates") or [None])[0] or {}
            finish_message = candidate.get("finishMessage") or candidate.get("finish_message")
            finish_reason = candidate.get("finishReason") or candidate.get("finish_reason")
            if finish_message:
                raise AiTransformError(finish_message, AiErrorCode.API_ERROR)
            if finish_reason:
                raise AiTransformError(
                    f"Gemini response has no image (finish_reason={finish_reason})",
                    AiErrorCode.API_ERROR,
                )
            raise AiTransformError(
                "Gemini response does not contain image data", AiErrorCode.API_ERROR
            )

        result = _decode_inline(inline, fallback_mime="image/png")
        self.log.info(
            "gemini.request.success",
            extra={"result_bytes": len(result.payload), "content_type": result.content_type},
        )
        return result

    async def _post(
        self, url: str, *, headers: dict[str, str], json: dict[str, Any]
    ) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            return await client.post(url, headers=headers, json=json)


def _extract_error(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text
    error = data.get("error")
    if isinstance(error, dict):
        message = (error.get("message") or "").strip()
        status = (error.get("status") or "").strip()
        return " ".join(part for part in (status, message) if part)
    return str(data)


def _first_inline_image(data: dict[str, Any]) -> dict[str, Any] | None:
    """Return the first part payload carrying base64 image data, if any."""
    parts = (
        part
        for candidate in data.get("candidates") or []
        for part in (candidate.get("content") or {}).get("parts", [])
    )
    for part in parts:
        inline = part.get("inline_data") or part.get("inlineData")
        if inline and inline.get("data"):
            return inline
    return None


def _decode_inline(inline: dict[str, Any], *, fallback_mime: str) -> ProviderResult:
    mime = inline.get("mime_type") or inline.get("mimeType") or fallback_mime
    try:
        payload = base64.b64decode(inline["data"], validate=True)
    except (KeyError, ValueError) as exc:
        raise AiTransformError(
            "Gemini response payload is invalid", AiErrorCode.API_ERROR, exc
        ) from exc
    return ProviderResult(payload=payload, content_type=mime)


def _mask_inline_data(obj: Any) -> Any:
    """Drop base64 payloads so responses can be logged."""
    if isinstance(obj, dict):
        result = {}
        for key, value in obj.items():
            if key in {"inline_data", "inlineData"} and isinstance(value, dict):
                result[key] = {k: v for k, v in value.items() if k != "data"}
            else:
                result[key] = _mask_inline_data(value)
        return result
    if isinstance(obj, list):
        return [_mask_inline_data(item) for item in obj]
    return obj


def _response_summary(data: dict[str, Any]) -> str:
    candidates = data.get("candidates") or []
    first = candidates[0] if candidates else {}
    part_types: list[str] = []
    text = ""
    for part in (first.get("content") or {}).get("parts", []):
        if "inline_data" in part or "inlineData" in part:
            part_types.append("inline_data")
        if "text" in part:
            part_types.append("text")
            text = text or part.get("text", "")
    return (
        f"candidates={len(candidates)} part_types={part_types} "
        f"text_preview='{text[:160]}'"
    )
