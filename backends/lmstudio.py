"""LM Studio (OpenAI-compatible chat completions) backend."""

import logging
from pathlib import Path

import httpx

from utils.llm import NarrationBackend, NarrationPrompt

from .images import image_data_uri

_module_logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://127.0.0.1:1234"
DEFAULT_MODEL = "zai-org/glm-4.6v-flash"


class LMStudioBackend(NarrationBackend):
    """Narrates steps through a local LM Studio server.

    Sends a single user message (no system role; small local models follow the
    inline rules better) with the screenshots attached as JPEG data URIs.
    """

    name = "lmstudio"

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        temperature: float = 0.2,
        max_tokens: int = 1024,
        timeout: float = 120.0,
        enable_vision: bool = True,
        max_image_edge: int = 1024,
        jpeg_quality: int = 75,
        send_previous_screenshot: bool = False,
        **kwargs,
    ):
        super().__init__(model=model, timeout=timeout, **kwargs)
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.enable_vision = enable_vision
        self.max_image_edge = max_image_edge
        self.jpeg_quality = jpeg_quality
        self.send_previous_screenshot = send_previous_screenshot

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/v1/chat/completions"

    def _select_images(self, prompt: NarrationPrompt) -> list[Path]:
        if not self.enable_vision:
            return []
        selected = []
        for path in prompt.images:
            is_current = prompt.current_image is not None and path == prompt.current_image
            if not is_current and not self.send_previous_screenshot:
                continue
            if path.is_file():
                selected.append(path)
        return selected

    def _build_payload(self, prompt: NarrationPrompt) -> tuple[str, dict[str, str], dict]:
        content: list[dict] = [{"type": "text", "text": prompt.text}]
        for path in self._select_images(prompt):
            content.append({
                "type": "image_url",
                "image_url": {"url": image_data_uri(path, self.max_image_edge, self.jpeg_quality)},
            })

        body = {
            "model": self.model,
            "messages": [{"role": "user", "content": content}],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        return self.endpoint, {"Content-Type": "application/json"}, body

    def _extract_text(self, data: dict) -> str:
        return data["choices"][0]["message"]["content"]

    def _extract_usage(self, data: dict) -> tuple[int, int]:
        usage = data.get("usage") or {}
        return usage.get("prompt_tokens", 0), usage.get("completion_tokens", 0)

    async def list_models(self) -> list[str]:
        """Model ids the server has loaded. Empty when the server is unreachable."""
        try:
            response = await self._get_client().get(f"{self.base_url}/v1/models")
        except httpx.HTTPError as e:
            _module_logger.debug("LM Studio unreachable: %s", e)
            return []

        if not response.is_success:
            _module_logger.debug("Failed to fetch models: %s", response.status_code)
            return []
        try:
            data = response.json()
        except ValueError:
            return []
        if not isinstance(data, dict):
            return []
        return [m["id"] for m in data.get("data", []) if isinstance(m, dict) and m.get("id")]
