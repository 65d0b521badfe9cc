"""Tests for usage accounting and the run timer."""

import pytest

from utils.tracking import Timer, UsageTracker


def test_usage_and_failures_per_backend():
    tracker = UsageTracker()

    cost = tracker.add_usage("gemini", "gemini-2.0-flash", 1_000_000, 500_000, attempts=2)
    tracker.add_usage("lmstudio", "local-vision", 400, 30)
    tracker.add_failure("gemini", "gemini-2.0-flash", attempts=3)

    assert cost == pytest.approx(0.10 + 0.20)
    assert tracker.api_calls == 2
    assert tracker.total_attempts == 6
    assert tracker.retries == 4
    assert tracker.total_cost == pytest.approx(0.30)

    rows = tracker.get_backend_summary()
    assert rows[0] == ["gemini", "gemini-2.0-flash", "1", "5", "1,000,000", "500,000", "$0.3000"]
    assert rows[1][:4] == ["lmstudio", "local-vision", "1", "1"]
    assert tracker.get_summary()["Retries"] == "4"


def test_timer_start_stop():
    timer = Timer("run")
    assert timer.elapsed == 0.0

    timer.start()
    elapsed = timer.stop()

    assert elapsed >= 0.0
    assert timer.elapsed == elapsed
    assert timer.elapsed_str.endswith("s")


def test_elapsed_str_formats_minutes_and_hours():
    timer = Timer()
    timer.start_time, timer.end_time = 0.0, 125.0
    assert timer.elapsed_str == "2m 5s"

    timer.end_time = 3725.0
    assert timer.elapsed_str == "1h 2m 5s"
