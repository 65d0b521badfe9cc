"""Narration backend abstraction with retry, cancellation and usage tracking.

Each backend only knows how to build its HTTP request and where the reply
text lives in its response envelope. Sending, retrying, cancelling and
accounting are shared here so every backend follows the same policy.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any, TYPE_CHECKING

import httpx

from analyzer.json_utils import parse_guide_payload
from analyzer.schema import GuideDraft, StepCandidate
from prompts.narration_prompts import build_refinement_prompt, build_step_prompt

from .tracking import UsageTracker

if TYPE_CHECKING:
    from .logger import GuideLogger

_module_logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RATE_LIMIT_DELAY = 10.0  # seconds, multiplied by the attempt number


# =============================================================================
# Errors
# =============================================================================


class BackendError(Exception):
    """Base class for narration backend failures."""


class BackendHTTPError(BackendError):
    """The backend answered with a non-success status."""

    def __init__(self, status_code: int, message: str, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class BackendResponseError(BackendError):
    """The response envelope was not the expected shape."""


class BackendRetryExhausted(BackendError):
    """Every allowed attempt failed with a retryable error."""

    def __init__(self, attempts: int, last_error: BaseException | None):
        super().__init__(f"Failed after {attempts} attempts. Last error: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class GenerationCancelled(BackendError):
    """The caller's cancel event fired during a request or backoff."""


# =============================================================================
# Retry policy
# =============================================================================


class FailureKind(StrEnum):
    """How a failed attempt should be treated."""

    SERVER = "server"  # 5xx
    RATE_LIMITED = "rate_limited"  # 429
    CLIENT = "client"  # other 4xx, never retried
    TRANSIENT = "transient"  # timeouts, transport errors, malformed envelopes


RETRYABLE_ERRORS = (httpx.HTTPError, BackendHTTPError, BackendResponseError)


def classify_failure(exc: BaseException) -> FailureKind:
    """Classify an attempt failure.

    Raises:
        TypeError: ``exc`` is not a backend or transport failure.
    """
    status_code = None
    if isinstance(exc, BackendHTTPError):
        status_code = exc.status_code
    elif isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code

    if status_code is not None:
        if status_code == 429:
            return FailureKind.RATE_LIMITED
        if status_code >= 500:
            return FailureKind.SERVER
        return FailureKind.CLIENT

    if isinstance(exc, (BackendResponseError, httpx.HTTPError)):
        return FailureKind.TRANSIENT

    raise TypeError(f"Not a backend failure: {exc!r}")


@dataclass
class RetryPolicy:
    """Bounded retries with per-kind backoff."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    rate_limit_delay: float = DEFAULT_RATE_LIMIT_DELAY

    def delay_for(self, kind: FailureKind, attempt: int) -> float | None:
        """Seconds to wait after failed ``attempt`` (1-based), or None for no retry."""
        if kind is FailureKind.CLIENT:
            return None
        if kind is FailureKind.RATE_LIMITED:
            return self.rate_limit_delay * attempt
        return float(2 ** attempt)


# =============================================================================
# Requests and responses
# =============================================================================


@dataclass
class NarrationPrompt:
    """What to send: instruction text, an optional system prompt and screenshots.

    ``images`` is ordered oldest first (previous screenshot, then current);
    backends decide which of them they can send.
    """

    text: str
    system: str | None = None
    images: list[Path] = field(default_factory=list)
    current_image: Path | None = None

    def combined_text(self) -> str:
        """System prompt and text as one block, for backends without a system role."""
        if self.system:
            return f"{self.system}\n\n{self.text}"
        return self.text


@dataclass
class LLMResponse:
    """Standardized response from any backend."""

    text: str
    input_tokens: int
    output_tokens: int
    model: str
    attempts: int = 1


# =============================================================================
# Backend base
# =============================================================================


class NarrationBackend(ABC):
    """A generative backend that can narrate one step at a time.

    Subclasses implement ``_build_payload`` and ``_extract_text``; everything
    else (HTTP, retries, cancellation, usage accounting) lives here.
    """

    name: str = "backend"

    def __init__(
        self,
        model: str,
        timeout: float = 30.0,
        retry_policy: RetryPolicy | None = None,
        usage_tracker: UsageTracker | None = None,
        logger: "GuideLogger | None" = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ):
        """Initialize the backend.

        Args:
            model: Model identifier sent to the backend.
            timeout: Per-request timeout in seconds.
            retry_policy: Retry bounds and delays.
            usage_tracker: Tracker for calls, attempts and tokens.
            logger: Optional GuideLogger for retry and usage messages.
            transport: Optional httpx transport (tests use ``httpx.MockTransport``).
            sleep: Backoff sleep, ``asyncio.sleep`` unless overridden.
        """
        self.model = model
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self.usage_tracker = usage_tracker or UsageTracker()
        self.logger = logger
        self._transport = transport
        self._sleep = sleep or asyncio.sleep
        self._client: httpx.AsyncClient | None = None

    # -- backend hooks -----------------------------------------------------

    @abstractmethod
    def _build_payload(self, prompt: NarrationPrompt) -> tuple[str, dict[str, str], dict]:
        """Return (url, headers, json body) for a prompt."""

    @abstractmethod
    def _extract_text(self, data: dict) -> str:
        """Return the reply text from a decoded response envelope.

        May raise KeyError/IndexError/TypeError on an unexpected shape.
        """

    def _extract_usage(self, data: dict) -> tuple[int, int]:
        """Return (input_tokens, output_tokens) when the envelope reports them."""
        return 0, 0

    def _error_message(self, response: httpx.Response) -> str:
        return f"{self.name} returned {response.status_code}: {response.text[:500]}"

    # -- client lifecycle --------------------------------------------------

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "NarrationBackend":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    # -- capability --------------------------------------------------------

    async def narrate_step(
        self,
        system_prompt: str,
        current: StepCandidate,
        previous: StepCandidate | None,
        step_number: int,
        cancel_event: asyncio.Event | None = None,
    ) -> str:
        """Ask the backend to describe one step. Returns the raw reply text."""
        images = []
        if previous is not None:
            images.append(Path(previous.screenshot_path))
        images.append(Path(current.screenshot_path))

        prompt = NarrationPrompt(
            text=build_step_prompt(current, previous, step_number),
            system=system_prompt,
            images=images,
            current_image=Path(current.screenshot_path),
        )
        response = await self.complete(prompt, cancel_event=cancel_event)
        return response.text

    async def refine_instructions(
        self,
        system_prompt: str,
        candidates: list[StepCandidate],
        instructions: list[str],
        cancel_event: asyncio.Event | None = None,
    ) -> GuideDraft:
        """Ask the backend to polish all instructions at once.

        Raises:
            NormalizationError: The reply has no usable guide payload.
        """
        prompt = NarrationPrompt(
            text=build_refinement_prompt(candidates, instructions),
            system=system_prompt,
        )
        response = await self.complete(prompt, cancel_event=cancel_event)
        return parse_guide_payload(response.text)

    async def complete(
        self,
        prompt: NarrationPrompt,
        cancel_event: asyncio.Event | None = None,
    ) -> LLMResponse:
        """Send a prompt with retries.

        Raises:
            BackendHTTPError: A non-retryable client error (4xx other than 429).
            BackendRetryExhausted: Every attempt failed with a retryable error.
            GenerationCancelled: ``cancel_event`` fired.
        """
        if cancel_event is not None and cancel_event.is_set():
            raise GenerationCancelled("Generation cancelled")
        # Pillow resize and encode run on a worker thread
        url, headers, payload = await self._until_cancelled(
            asyncio.to_thread(self._build_payload, prompt), cancel_event
        )
        policy = self.retry_policy
        last_error: BaseException | None = None

        for attempt in range(1, policy.max_attempts + 1):
            if cancel_event is not None and cancel_event.is_set():
                raise GenerationCancelled("Generation cancelled")

            try:
                response = await self._until_cancelled(
                    self._send(url, headers, payload), cancel_event
                )
            except RETRYABLE_ERRORS as e:
                kind = classify_failure(e)
                if kind is FailureKind.CLIENT:
                    self.usage_tracker.add_failure(self.name, self.model, attempt)
                    raise
                last_error = e
                _module_logger.debug("%s attempt %d failed (%s): %s", self.name, attempt, kind, e)

                if attempt < policy.max_attempts:
                    delay = policy.delay_for(kind, attempt)
                    if self.logger:
                        self.logger.retry(f"{self.name} {kind} error", delay, attempt, policy.max_attempts)
                    await self._until_cancelled(self._sleep(delay), cancel_event)
                continue

            response.attempts = attempt
            self.usage_tracker.add_usage(
                self.name,
                self.model,
                response.input_tokens,
                response.output_tokens,
                attempts=attempt,
            )
            if self.logger:
                self.logger.api(self.name, response.input_tokens, response.output_tokens, attempt)
            return response

        self.usage_tracker.add_failure(self.name, self.model, policy.max_attempts)
        raise BackendRetryExhausted(policy.max_attempts, last_error) from last_error

    async def _send(self, url: str, headers: dict[str, str], payload: dict) -> LLMResponse:
        """One HTTP attempt, with status and envelope checks."""
        response = await self._get_client().post(url, headers=headers, json=payload)

        if not response.is_success:
            raise BackendHTTPError(
                response.status_code,
                self._error_message(response),
                body=response.text,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise BackendResponseError(f"{self.name} returned a non-JSON body: {e}") from e

        try:
            text = self._extract_text(data)
        except (KeyError, IndexError, TypeError) as e:
            raise BackendResponseError(f"Unexpected {self.name} response shape: {e!r}") from e
        if not text:
            raise BackendResponseError(f"Empty response from {self.name}")

        input_tokens, output_tokens = self._extract_usage(data)
        return LLMResponse(
            text=text,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            model=self.model,
        )

    @staticmethod
    async def _until_cancelled(awaitable: Awaitable[Any], cancel_event: asyncio.Event | None) -> Any:
        """Await ``awaitable`` unless ``cancel_event`` fires first.

        Raises:
            GenerationCancelled: The event fired; the awaitable is cancelled.
        """
        if cancel_event is None:
            return await awaitable

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise

        if task in done:
            waiter.cancel()
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise GenerationCancelled("Generation cancelled")
