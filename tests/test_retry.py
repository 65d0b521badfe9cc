"""Tests for backend retry classification, backoff and cancellation."""

import asyncio
import threading

import httpx
import pytest

from backends.gemini import GeminiBackend
from utils.llm import (
    BackendHTTPError,
    BackendResponseError,
    BackendRetryExhausted,
    FailureKind,
    GenerationCancelled,
    NarrationPrompt,
    RetryPolicy,
    classify_failure,
)
from utils.tracking import UsageTracker

PROMPT = NarrationPrompt(text="Describe the step", system="You are Howl")


def gemini_reply(text: str = '{"instruction": "Open the menu"}') -> dict:
    return {
        "candidates": [{"content": {"parts": [{"text": text}]}}],
        "usageMetadata": {"promptTokenCount": 12, "candidatesTokenCount": 5},
    }


class FakeSleep:
    """Records backoff delays instead of sleeping."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class ScriptedServer:
    """MockTransport handler that plays back a list of responses or exceptions."""

    def __init__(self, *script):
        self.script = list(script)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, int):
            return httpx.Response(item, json={"error": {"message": f"status {item}"}})
        return httpx.Response(200, json=item)


def make_backend(server, sleep=None, tracker=None, max_attempts=3) -> GeminiBackend:
    return GeminiBackend(
        api_key="test-key",
        transport=httpx.MockTransport(server),
        sleep=sleep or FakeSleep(),
        usage_tracker=tracker or UsageTracker(),
        retry_policy=RetryPolicy(max_attempts=max_attempts, rate_limit_delay=10.0),
    )


def run(coro):
    return asyncio.run(coro)


async def complete(backend, cancel_event=None):
    async with backend:
        return await backend.complete(PROMPT, cancel_event=cancel_event)


# -- classification ---------------------------------------------------------


def test_classify_status_codes():
    assert classify_failure(BackendHTTPError(500, "x")) is FailureKind.SERVER
    assert classify_failure(BackendHTTPError(503, "x")) is FailureKind.SERVER
    assert classify_failure(BackendHTTPError(429, "x")) is FailureKind.RATE_LIMITED
    assert classify_failure(BackendHTTPError(400, "x")) is FailureKind.CLIENT
    assert classify_failure(BackendHTTPError(404, "x")) is FailureKind.CLIENT


def test_classify_transport_and_envelope_errors():
    request = httpx.Request("POST", "https://example.test")
    assert classify_failure(httpx.ConnectError("down", request=request)) is FailureKind.TRANSIENT
    assert classify_failure(httpx.ReadTimeout("slow", request=request)) is FailureKind.TRANSIENT
    assert classify_failure(BackendResponseError("bad envelope")) is FailureKind.TRANSIENT


def test_classify_rejects_unrelated_errors():
    with pytest.raises(TypeError):
        classify_failure(ValueError("not a backend failure"))


def test_policy_delays():
    policy = RetryPolicy(max_attempts=3, rate_limit_delay=10.0)

    assert policy.delay_for(FailureKind.SERVER, 1) == 2
    assert policy.delay_for(FailureKind.SERVER, 2) == 4
    assert policy.delay_for(FailureKind.TRANSIENT, 2) == 4
    assert policy.delay_for(FailureKind.RATE_LIMITED, 1) == 10
    assert policy.delay_for(FailureKind.RATE_LIMITED, 2) == 20
    assert policy.delay_for(FailureKind.CLIENT, 1) is None


# -- retry loop -------------------------------------------------------------


def test_server_errors_retry_with_exponential_backoff():
    server = ScriptedServer(500, 502, gemini_reply())
    sleep = FakeSleep()
    tracker = UsageTracker()

    response = run(complete(make_backend(server, sleep, tracker)))

    assert response.text == '{"instruction": "Open the menu"}'
    assert response.attempts == 3
    assert sleep.delays == [2, 4]
    assert len(server.requests) == 3
    assert tracker.api_calls == 1
    assert tracker.total_attempts == 3
    assert tracker.total_input_tokens == 12


def test_rate_limit_uses_longer_linear_backoff():
    server = ScriptedServer(429, 429, gemini_reply())
    sleep = FakeSleep()

    run(complete(make_backend(server, sleep)))

    assert sleep.delays == [10, 20]


def test_client_error_is_not_retried():
    server = ScriptedServer(400, gemini_reply())
    sleep = FakeSleep()

    with pytest.raises(BackendHTTPError) as exc_info:
        run(complete(make_backend(server, sleep)))

    assert exc_info.value.status_code == 400
    assert "status 400" in str(exc_info.value)
    assert len(server.requests) == 1
    assert sleep.delays == []


def test_transport_error_is_retried():
    request = httpx.Request("POST", "https://example.test")
    server = ScriptedServer(httpx.ConnectError("refused", request=request), gemini_reply())
    sleep = FakeSleep()

    response = run(complete(make_backend(server, sleep)))

    assert response.attempts == 2
    assert sleep.delays == [2]


def test_malformed_envelope_is_retried():
    server = ScriptedServer({"candidates": []}, gemini_reply())
    sleep = FakeSleep()

    response = run(complete(make_backend(server, sleep)))

    assert response.attempts == 2
    assert sleep.delays == [2]


def test_exhaustion_names_attempts_and_last_cause():
    server = ScriptedServer(503, 500, 502)
    sleep = FakeSleep()
    tracker = UsageTracker()

    with pytest.raises(BackendRetryExhausted) as exc_info:
        run(complete(make_backend(server, sleep, tracker)))

    error = exc_info.value
    assert error.attempts == 3
    assert isinstance(error.last_error, BackendHTTPError)
    assert error.last_error.status_code == 502
    assert error.__cause__ is error.last_error
    assert "3 attempts" in str(error)
    # No sleep after the final attempt
    assert sleep.delays == [2, 4]
    assert tracker.api_calls == 0
    assert tracker.total_attempts == 3


def test_max_attempts_bounds_the_loop():
    server = ScriptedServer(500, 500, 500, 500, 500)

    with pytest.raises(BackendRetryExhausted) as exc_info:
        run(complete(make_backend(server, max_attempts=2)))

    assert exc_info.value.attempts == 2
    assert len(server.requests) == 2


# -- cancellation -----------------------------------------------------------


def test_cancel_before_request_sends_nothing():
    server = ScriptedServer(gemini_reply())

    async def scenario():
        cancel = asyncio.Event()
        cancel.set()
        return await complete(make_backend(server), cancel_event=cancel)

    with pytest.raises(GenerationCancelled):
        run(scenario())
    assert server.requests == []


def test_cancel_during_backoff_aborts_sleep():
    server = ScriptedServer(500, gemini_reply())

    async def scenario():
        cancel = asyncio.Event()

        async def blocking_sleep(delay):
            cancel.set()
            await asyncio.Event().wait()

        return await complete(make_backend(server, sleep=blocking_sleep), cancel_event=cancel)

    with pytest.raises(GenerationCancelled):
        run(scenario())
    assert len(server.requests) == 1


def test_cancel_during_request_aborts_it():
    async def scenario():
        cancel = asyncio.Event()

        async def hanging_server(request):
            cancel.set()
            await asyncio.Event().wait()

        backend = GeminiBackend(api_key="test-key", transport=httpx.MockTransport(hanging_server))
        return await complete(backend, cancel_event=cancel)

    with pytest.raises(GenerationCancelled):
        run(scenario())


def test_rate_limit_exhausts_after_max_attempts():
    server = ScriptedServer(429, 429, 429)
    sleep = FakeSleep()

    with pytest.raises(BackendRetryExhausted) as exc_info:
        run(complete(make_backend(server, sleep)))

    assert exc_info.value.last_error.status_code == 429
    assert len(server.requests) == 3
    assert sleep.delays == [10, 20]


def test_not_found_fails_without_retry():
    server = ScriptedServer(404)
    sleep = FakeSleep()

    with pytest.raises(BackendHTTPError):
        run(complete(make_backend(server, sleep)))

    assert len(server.requests) == 1
    assert sleep.delays == []


def test_cancel_during_payload_encoding_does_not_wait_for_it():
    release = threading.Event()
    server = ScriptedServer(gemini_reply())

    class SlowEncodingBackend(GeminiBackend):
        def _build_payload(self, prompt):
            release.wait(5)
            return super()._build_payload(prompt)

    async def scenario():
        cancel = asyncio.Event()
        backend = SlowEncodingBackend(api_key="test-key", transport=httpx.MockTransport(server))
        asyncio.get_running_loop().call_later(0.05, cancel.set)
        try:
            return await complete(backend, cancel_event=cancel)
        finally:
            release.set()

    with pytest.raises(GenerationCancelled):
        run(scenario())
    assert server.requests == []
