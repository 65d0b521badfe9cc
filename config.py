"""Configuration and settings for step guide recording and generation."""

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class CaptureConfig:
    """Recording cadence and storage."""

    recordings_dir: Path = Path("./recordings")
    window_poll_interval: float = 0.5  # seconds
    screenshot_interval: float = 4.0  # seconds
    keystroke_tail: float = 2.0  # seconds after a frame still attributed to it


@dataclass
class RetryConfig:
    """Backend retry bounds."""

    max_attempts: int = 3
    rate_limit_delay: float = 10.0  # seconds, times the attempt number


@dataclass
class GeminiConfig:
    """Gemini REST backend settings."""

    api_key: str = ""
    model: str = "gemini-2.0-flash-exp"
    base_url: str = "https://generativelanguage.googleapis.com/v1beta/models"
    timeout: float = 30.0
    temperature: float = 0.3
    max_output_tokens: int = 2048


@dataclass
class LMStudioConfig:
    """Local LM Studio backend settings."""

    base_url: str = "http://127.0.0.1:1234"
    model: str = "zai-org/glm-4.6v-flash"  # Vision-capable model
    temperature: float = 0.2
    max_tokens: int = 1024
    timeout: float = 120.0
    enable_vision: bool = True
    max_image_edge: int = 1024  # Resize screenshots to reduce token usage
    jpeg_quality: int = 75
    send_previous_screenshot: bool = False


@dataclass
class Config:
    """Application configuration."""

    capture: CaptureConfig = field(default_factory=CaptureConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    gemini: GeminiConfig = field(default_factory=GeminiConfig)
    lmstudio: LMStudioConfig = field(default_factory=LMStudioConfig)

    backend: str = "gemini"
    guides_dir: Path = Path("./guides")
    logs_dir: Path = Path("./logs")

    @classmethod
    def from_env(cls) -> "Config":
        """Build configuration from environment variables (after ``load_dotenv()``)."""
        config = cls()

        config.gemini.api_key = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY") or ""
        config.gemini.model = os.getenv("HOWL_GEMINI_MODEL", config.gemini.model)

        config.lmstudio.base_url = os.getenv("LMSTUDIO_BASE_URL", config.lmstudio.base_url)
        config.lmstudio.model = os.getenv("LMSTUDIO_MODEL", config.lmstudio.model)

        config.backend = os.getenv("HOWL_BACKEND", config.backend)
        config.capture.recordings_dir = Path(os.getenv("HOWL_RECORDINGS_DIR", config.capture.recordings_dir))
        config.guides_dir = Path(os.getenv("HOWL_GUIDES_DIR", config.guides_dir))

        max_attempts = os.getenv("HOWL_MAX_ATTEMPTS")
        if max_attempts:
            config.retry.max_attempts = int(max_attempts)

        return config


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance, reading the environment on first use."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config
