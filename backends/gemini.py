"""Gemini generateContent backend."""

import httpx

from utils.llm import NarrationBackend, NarrationPrompt

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"
DEFAULT_MODEL = "gemini-2.0-flash-exp"


class GeminiBackend(NarrationBackend):
    """Narrates steps through the Gemini REST API.

    The whole prompt goes as one text part and the reply is requested as JSON.
    """

    name = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        temperature: float = 0.3,
        max_output_tokens: int = 2048,
        timeout: float = 30.0,
        **kwargs,
    ):
        if not api_key:
            raise ValueError("Gemini API key is required (set GEMINI_API_KEY or GOOGLE_API_KEY)")
        super().__init__(model=model, timeout=timeout, **kwargs)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/{self.model}:generateContent"

    def _build_payload(self, prompt: NarrationPrompt) -> tuple[str, dict[str, str], dict]:
        headers = {
            "x-goog-api-key": self.api_key,
            "Content-Type": "application/json",
        }
        body = {
            "contents": [
                {"parts": [{"text": prompt.combined_text()}]},
            ],
            "generationConfig": {
                "response_mime_type": "application/json",
                "temperature": self.temperature,
                "topP": 0.8,
                "topK": 40,
                "maxOutputTokens": self.max_output_tokens,
            },
        }
        return self.endpoint, headers, body

    def _extract_text(self, data: dict) -> str:
        return data["candidates"][0]["content"]["parts"][0]["text"]

    def _extract_usage(self, data: dict) -> tuple[int, int]:
        usage = data.get("usageMetadata") or {}
        return usage.get("promptTokenCount", 0), usage.get("candidatesTokenCount", 0)

    def _error_message(self, response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            data = {}
        error = data.get("error") if isinstance(data, dict) else None
        if isinstance(error, dict) and error.get("message"):
            status = error.get("status") or response.status_code
            return f"Gemini API error ({status}): {error['message']}"
        return f"Gemini API returned {response.status_code}: {response.text[:500]}"
