"""Usage and time tracking utilities."""

import time
from dataclasses import dataclass, field
from typing import Any


# Gemini model pricing per million tokens (input, output)
# From: https://ai.google.dev/gemini-api/docs/pricing
GEMINI_PRICING: dict[str, tuple[float, float]] = {
    "gemini-2.0-flash": (0.10, 0.40),
    "gemini-2.0-flash-exp": (0.10, 0.40),
    "gemini-2.0-flash-lite": (0.075, 0.30),
    "gemini-1.5-flash": (0.075, 0.30),
    "gemini-1.5-pro": (1.25, 5.0),
}

# Local models (LM Studio) and unknown models cost nothing
DEFAULT_PRICING = (0.0, 0.0)


def get_model_pricing(model: str) -> tuple[float, float]:
    """Get pricing for a model. Returns (input_price_per_mtok, output_price_per_mtok)."""
    return GEMINI_PRICING.get(model, DEFAULT_PRICING)


@dataclass
class UsageTracker:
    """Tracks backend calls, retry attempts and token usage.

    A call is one narration or refinement request; attempts count every HTTP
    round trip including retries.
    """

    api_calls: int = 0
    total_attempts: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_cost_dollars: float = 0.0

    # Per-backend tracking
    backend_stats: dict[str, dict[str, Any]] = field(default_factory=dict)

    def add_usage(
        self,
        backend: str,
        model: str,
        input_tokens: int = 0,
        output_tokens: int = 0,
        attempts: int = 1,
    ) -> float:
        """Record one completed call.

        Args:
            backend: Backend name ("gemini", "lmstudio").
            model: Model that served the call.
            input_tokens: Prompt tokens, when the backend reports them.
            output_tokens: Completion tokens, when the backend reports them.
            attempts: HTTP attempts the call took (1 = no retries).

        Returns:
            The cost of this call in dollars.
        """
        input_price, output_price = get_model_pricing(model)
        call_cost = (
            (input_tokens / 1_000_000) * input_price +
            (output_tokens / 1_000_000) * output_price
        )

        self.api_calls += 1
        self.total_attempts += attempts
        self.total_input_tokens += input_tokens
        self.total_output_tokens += output_tokens
        self.total_cost_dollars += call_cost

        stats = self._stats_for(backend, model)
        stats["calls"] += 1
        stats["attempts"] += attempts
        stats["input"] += input_tokens
        stats["output"] += output_tokens
        stats["cost"] += call_cost

        return call_cost

    def add_failure(self, backend: str, model: str, attempts: int) -> None:
        """Record attempts spent on a call that did not succeed."""
        self.total_attempts += attempts
        self._stats_for(backend, model)["attempts"] += attempts

    def _stats_for(self, backend: str, model: str) -> dict[str, Any]:
        stats = self.backend_stats.setdefault(backend, {
            "model": model, "calls": 0, "attempts": 0,
            "input": 0, "output": 0, "cost": 0.0,
        })
        stats["model"] = model
        return stats

    @property
    def retries(self) -> int:
        """Attempts beyond the first of each successful call, plus failed attempts."""
        return max(self.total_attempts - self.api_calls, 0)

    @property
    def total_cost(self) -> float:
        """Get total cost in dollars."""
        return self.total_cost_dollars

    def get_summary(self) -> dict[str, str]:
        """Get a summary dictionary for display."""
        backends = ", ".join(
            f"{name} ({stats['model']})" for name, stats in self.backend_stats.items()
        ) or "None"

        return {
            "Backends Used": backends,
            "API Calls": str(self.api_calls),
            "Retries": str(self.retries),
            "Input Tokens": f"{self.total_input_tokens:,}",
            "Output Tokens": f"{self.total_output_tokens:,}",
            "Total Cost": f"${self.total_cost:.4f}",
        }

    def get_backend_summary(self) -> list[list[str]]:
        """Get per-backend breakdown for table display."""
        rows = []
        for backend, stats in self.backend_stats.items():
            rows.append([
                backend,
                stats["model"],
                str(stats["calls"]),
                str(stats["attempts"]),
                f"{stats['input']:,}",
                f"{stats['output']:,}",
                f"${stats['cost']:.4f}",
            ])
        return rows


class Timer:
    """Wall-clock timer for a CLI run; usable as a context manager."""

    def __init__(self, name: str = "Operation"):
        self.name = name
        self.start_time: float | None = None
        self.end_time: float | None = None

    def start(self) -> None:
        self.start_time = time.time()
        self.end_time = None

    def stop(self) -> float:
        """Stop the timer and return the elapsed seconds."""
        self.end_time = time.time()
        return self.elapsed

    def __enter__(self) -> "Timer":
        self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        self.stop()

    @property
    def elapsed(self) -> float:
        """Get elapsed time in seconds."""
        if self.start_time is None:
            return 0.0
        end = self.end_time or time.time()
        return end - self.start_time

    @property
    def elapsed_str(self) -> str:
        """Get elapsed time as a formatted string."""
        seconds = self.elapsed
        if seconds < 60:
            return f"{seconds:.1f}s"
        minutes = int(seconds // 60)
        secs = seconds % 60
        if minutes < 60:
            return f"{minutes}m {secs:.0f}s"
        hours = minutes // 60
        mins = minutes % 60
        return f"{hours}h {mins}m {secs:.0f}s"
