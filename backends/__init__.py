"""Narration backends: Gemini (REST) and LM Studio (OpenAI-compatible, local)."""

from config import Config, get_config
from utils.llm import NarrationBackend, RetryPolicy

from .gemini import GeminiBackend
from .lmstudio import LMStudioBackend

BACKENDS = ("gemini", "lmstudio")


def create_backend(
    name: str,
    config: Config | None = None,
    model: str | None = None,
    **kwargs,
) -> NarrationBackend:
    """Construct a backend by name from configuration.

    Extra keyword arguments (usage_tracker, logger, transport, sleep) are
    passed to the backend.

    Raises:
        ValueError: Unknown backend name, or Gemini without an API key.
    """
    config = config or get_config()
    retry_policy = RetryPolicy(
        max_attempts=config.retry.max_attempts,
        rate_limit_delay=config.retry.rate_limit_delay,
    )

    if name == "gemini":
        settings = config.gemini
        return GeminiBackend(
            api_key=settings.api_key,
            model=model or settings.model,
            base_url=settings.base_url,
            temperature=settings.temperature,
            max_output_tokens=settings.max_output_tokens,
            timeout=settings.timeout,
            retry_policy=retry_policy,
            **kwargs,
        )

    if name == "lmstudio":
        settings = config.lmstudio
        return LMStudioBackend(
            model=model or settings.model,
            base_url=settings.base_url,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            timeout=settings.timeout,
            enable_vision=settings.enable_vision,
            max_image_edge=settings.max_image_edge,
            jpeg_quality=settings.jpeg_quality,
            send_previous_screenshot=settings.send_previous_screenshot,
            retry_policy=retry_policy,
            **kwargs,
        )

    raise ValueError(f"Unknown backend: {name!r} (choose from {', '.join(BACKENDS)})")


__all__ = [
    "BACKENDS",
    "create_backend",
    "GeminiBackend",
    "LMStudioBackend",
]
