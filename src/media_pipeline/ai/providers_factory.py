"""Factory for AI providers."""

from .providers_base import AiProvider
from .providers_gemini import GeminiProvider


def create_provider(
    name: str,
    *,
    api_key: str | None = None,
    api_url_base: str | None = None,
    timeout_seconds: float = 90.0,
) -> AiProvider:
    """Instantiate provider by name."""
    lower = name.lower()
    if lower in {"google", "gemini"}:
        provider = GeminiProvider(api_key=api_key, timeout_seconds=timeout_seconds)
        if api_url_base:
            provider.api_url_base = api_url_base
        return provider
    raise ValueError(f"Unsupported provider '{name}'")
