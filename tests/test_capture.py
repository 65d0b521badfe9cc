"""Tests for event capture against an in-memory platform."""

import threading
import time

import pytest

from pipeline.orchestrator import GuidePipeline, PipelineState
from recorder.capture import CaptureError, CaptureStateError, EventCapture, RepeatingTimer
from recorder.keymap import KeyPress
from recorder.session import ClickButton, Session

from conftest import png_bytes

LONG = 3600.0  # Timers fire once on start, then not again during a test


class FakePlatform:
    """In-memory PlatformCapabilities."""

    def __init__(self, titles=None, fail_install=False, fail_screens=0):
        self.titles = list(titles or [("Untitled - Notepad", "notepad.exe")])
        self.fail_install = fail_install
        self.fail_screens = fail_screens
        self.on_click = None
        self.on_key_down = None
        self.uninstalled = 0
        self.saved = []

    def install_input_listener(self, on_click, on_key_down):
        if self.fail_install:
            raise OSError("hooks unavailable")
        self.on_click = on_click
        self.on_key_down = on_key_down
        return "handle"

    def uninstall(self, handle):
        self.uninstalled += 1

    def poll_foreground_window(self):
        if len(self.titles) > 1:
            return self.titles.pop(0)
        return self.titles[0]

    def capture_screen(self):
        if self.fail_screens:
            self.fail_screens -= 1
            raise OSError("no display")
        return png_bytes()

    def save_image(self, data, path):
        path.write_bytes(data)
        self.saved.append(path)


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def make_capture(tmp_path, platform=None, **kwargs):
    platform = platform or FakePlatform()
    capture = EventCapture(
        platform,
        base_dir=tmp_path,
        window_poll_interval=kwargs.pop("window_poll_interval", LONG),
        screenshot_interval=kwargs.pop("screenshot_interval", LONG),
        **kwargs,
    )
    return capture, platform


def key(char):
    return KeyPress(virtual_key_code=ord(char.upper()), key=char.upper(), text=char)


def test_start_creates_session_folder(tmp_path):
    capture, _ = make_capture(tmp_path)

    session = capture.start_recording()
    try:
        assert capture.is_recording
        assert capture.active_session is session
        assert session.output_dir == tmp_path / f"session_{session.id}"
        assert session.frames_dir.is_dir()
    finally:
        capture.stop_recording()


def test_start_twice_raises_and_keeps_active_session(tmp_path):
    capture, _ = make_capture(tmp_path)
    session = capture.start_recording()
    try:
        with pytest.raises(CaptureStateError):
            capture.start_recording()
        assert capture.active_session is session
    finally:
        capture.stop_recording()


def test_stop_without_recording_raises(tmp_path):
    capture, _ = make_capture(tmp_path)

    with pytest.raises(CaptureStateError):
        capture.stop_recording()
    assert not capture.is_recording


def test_records_events_and_persists_sealed_session(tmp_path):
    capture, platform = make_capture(tmp_path)
    session = capture.start_recording()
    assert wait_for(lambda: session.window_events and platform.saved)

    platform.on_click(120, 340, ClickButton.LEFT)
    platform.on_key_down(key("h"))
    platform.on_key_down(key("i"))

    stopped = capture.stop_recording()

    assert stopped is session
    assert stopped.is_sealed
    assert not capture.is_recording
    assert platform.uninstalled == 1
    assert [c.position for c in stopped.clicks] == [(120, 340)]
    assert [k.text for k in stopped.keystrokes] == ["h", "i"]
    assert {k.window_title for k in stopped.keystrokes} == {"Untitled - Notepad"}
    assert [w.process_name for w in stopped.window_events] == ["notepad.exe"]
    assert [p.name for p in stopped.frame_paths()] == ["frame_0001.png"]

    reloaded = Session.load(stopped.output_dir)
    assert reloaded.id == stopped.id
    assert len(reloaded.keystrokes) == 2
    assert reloaded.end_time == stopped.end_time


def test_events_after_stop_are_dropped(tmp_path):
    capture, platform = make_capture(tmp_path)
    capture.start_recording()
    session = capture.stop_recording()

    platform.on_click(1, 2, ClickButton.RIGHT)
    platform.on_key_down(key("x"))

    assert session.clicks == []
    assert session.keystrokes == []


def test_window_poll_records_only_title_changes(tmp_path):
    platform = FakePlatform(titles=[
        ("Notepad", "notepad.exe"),
        ("Notepad", "notepad.exe"),
        ("   ", "explorer.exe"),
        ("Chrome", "chrome.exe"),
        ("Chrome", "chrome.exe"),
    ])
    capture, _ = make_capture(tmp_path, platform)
    session = capture.start_recording()
    assert wait_for(lambda: session.window_events)

    for _ in range(4):
        capture._poll_window()
    capture.stop_recording()

    assert [w.window_title for w in session.window_events] == ["Notepad", "Chrome"]


def test_window_poll_errors_skip_the_tick(tmp_path):
    class BrokenPoll(FakePlatform):
        def poll_foreground_window(self):
            raise RuntimeError("xdotool missing")

    capture, _ = make_capture(tmp_path, BrokenPoll())
    session = capture.start_recording()
    capture._poll_window()
    capture.stop_recording()

    assert session.window_events == []


def test_screenshot_failure_skips_tick_and_numbering_continues(tmp_path):
    platform = FakePlatform(fail_screens=1)
    capture, _ = make_capture(tmp_path, platform)
    session = capture.start_recording()
    assert wait_for(lambda: platform.fail_screens == 0)

    capture._take_screenshot()
    capture._take_screenshot()
    capture.stop_recording()

    assert [p.name for p in session.frame_paths()] == ["frame_0001.png", "frame_0002.png"]


def test_listener_install_failure_rolls_back(tmp_path):
    capture, _ = make_capture(tmp_path, FakePlatform(fail_install=True))

    with pytest.raises(CaptureError) as exc_info:
        capture.start_recording()

    assert isinstance(exc_info.value.__cause__, OSError)
    assert not capture.is_recording
    assert capture.active_session is None


def test_pipeline_enforces_one_recording(tmp_path):
    capture, _ = make_capture(tmp_path)
    pipeline = GuidePipeline(capture=capture)

    pipeline.start_recording()
    assert pipeline.state is PipelineState.RECORDING
    with pytest.raises(CaptureStateError):
        pipeline.start_recording()

    session = pipeline.stop_recording()

    assert pipeline.state is PipelineState.IDLE
    assert pipeline.session is session
    assert session.is_sealed


def test_repeating_timer_fires_immediately_and_repeats():
    ticks = []
    timer = RepeatingTimer(0.01, lambda: ticks.append(1), "test")
    timer.start()
    assert wait_for(lambda: len(ticks) >= 3)

    timer.stop()
    timer.stop()
    count = len(ticks)
    time.sleep(0.05)

    assert not timer.is_running
    assert len(ticks) == count


def test_repeating_timer_survives_callback_errors():
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("first tick fails")

    timer = RepeatingTimer(0.01, flaky, "flaky")
    timer.start()
    try:
        assert wait_for(lambda: len(calls) >= 2)
    finally:
        timer.stop()


def test_stop_joins_timer_threads(tmp_path):
    capture, _ = make_capture(tmp_path, window_poll_interval=0.01, screenshot_interval=0.01)
    capture.start_recording()
    capture.stop_recording()

    names = {t.name for t in threading.enumerate()}
    assert "window-poll" not in names
    assert "screenshot" not in names


class FailingUninstall(FakePlatform):
    def uninstall(self, handle):
        super().uninstall(handle)
        raise OSError("hook already gone")


def test_uninstall_failure_still_seals_and_saves(tmp_path):
    capture, platform = make_capture(tmp_path, FailingUninstall())
    session = capture.start_recording()
    platform.on_key_down(key("a"))

    with pytest.raises(CaptureError) as exc_info:
        capture.stop_recording()

    assert exc_info.value.session is session
    assert isinstance(exc_info.value.__cause__, OSError)
    assert session.is_sealed
    assert (session.output_dir / "session.json").is_file()
    assert not capture.is_recording
    assert Session.load(session.output_dir).keystrokes == session.keystrokes

    # Capture is usable again
    capture.start_recording()
    with pytest.raises(CaptureError):
        capture.stop_recording()


def test_pipeline_recovers_from_uninstall_failure(tmp_path):
    capture, _ = make_capture(tmp_path, FailingUninstall())
    messages = []
    pipeline = GuidePipeline(capture=capture, progress=messages.append)
    first = pipeline.start_recording()

    with pytest.raises(CaptureError):
        pipeline.stop_recording()

    assert pipeline.state is PipelineState.ERROR
    assert pipeline.session is first
    assert messages[-1].startswith("Error: ")
    with pytest.raises(CaptureStateError):
        pipeline.stop_recording()

    second = pipeline.start_recording()
    assert pipeline.state is PipelineState.RECORDING
    assert second is not first
    with pytest.raises(CaptureError):
        pipeline.stop_recording()
