"""Event capture: input hooks, window polling and periodic screenshots into a Session."""

import logging
import threading
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .keymap import KeyPress
from .platform import PlatformCapabilities
from .session import ClickButton, ClickEvent, KeystrokeEvent, Session, WindowEvent

if TYPE_CHECKING:
    from utils.logger import GuideLogger

_module_logger = logging.getLogger(__name__)

DEFAULT_WINDOW_POLL_INTERVAL = 0.5  # seconds
DEFAULT_SCREENSHOT_INTERVAL = 4.0  # seconds
FRAME_NAME_FORMAT = "frame_{:04d}.png"


class CaptureError(Exception):
    """Capture could not be started, run or stopped cleanly.

    ``session`` is set when the recording was still sealed and saved.
    """

    def __init__(self, message: str, session: Session | None = None):
        super().__init__(message)
        self.session = session


class CaptureStateError(CaptureError):
    """Start while already recording, or stop while idle."""


class RepeatingTimer:
    """Run a callback on a daemon thread: once immediately, then every ``interval`` seconds.

    Exceptions from the callback are logged and the timer keeps running.
    """

    def __init__(self, interval: float, callback: Callable[[], None], name: str):
        self.interval = interval
        self.callback = callback
        self.name = name
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def _run(self) -> None:
        self._fire()
        while not self._stop_event.wait(self.interval):
            self._fire()

    def _fire(self) -> None:
        try:
            self.callback()
        except Exception:
            _module_logger.exception("%s tick failed", self.name)

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the timer and wait for an in-progress tick. Safe to call twice."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                _module_logger.warning("%s did not stop within %.1fs", self.name, timeout)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


class EventCapture:
    """Records clicks, keystrokes, foreground window changes and screenshots.

    At most one session is active at a time. Input callbacks run on the
    listener's dispatch thread and only append to the session; the keystroke's
    window title is the poller's last observed title, so no OS call happens
    inside the hook.
    """

    def __init__(
        self,
        platform: PlatformCapabilities,
        base_dir: Path | str = "./recordings",
        window_poll_interval: float = DEFAULT_WINDOW_POLL_INTERVAL,
        screenshot_interval: float = DEFAULT_SCREENSHOT_INTERVAL,
        logger: "GuideLogger | None" = None,
    ):
        """Initialize capture.

        Args:
            platform: OS capabilities (input listener, window poll, screen grab).
            base_dir: Parent directory for ``session_<id>`` folders.
            window_poll_interval: Seconds between foreground window polls.
            screenshot_interval: Seconds between screenshots.
            logger: Optional GuideLogger for user-facing messages.
        """
        self.platform = platform
        self.base_dir = Path(base_dir)
        self.window_poll_interval = window_poll_interval
        self.screenshot_interval = screenshot_interval
        self.logger = logger

        self._lock = threading.Lock()
        self._session: Session | None = None
        self._listener: Any = None
        self._timers: list[RepeatingTimer] = []
        self._last_title = ""
        self._frame_counter = 0

    @property
    def is_recording(self) -> bool:
        return self._session is not None

    @property
    def active_session(self) -> Session | None:
        return self._session

    def start_recording(self) -> Session:
        """Begin a new session.

        Raises:
            CaptureStateError: A session is already active.
            CaptureError: The input listener could not be installed.
        """
        with self._lock:
            if self._session is not None:
                raise CaptureStateError(
                    f"Recording already in progress (session {self._session.id})"
                )

            session = Session(output_dir=self.base_dir)
            session.output_dir = self.base_dir / f"session_{session.id}"
            session.frames_dir.mkdir(parents=True, exist_ok=True)

            self._last_title = ""
            self._frame_counter = 0
            self._session = session

            try:
                self._listener = self.platform.install_input_listener(
                    self._on_click, self._on_key_down
                )
            except Exception as e:
                self._session = None
                self._listener = None
                raise CaptureError(f"Failed to install input listener: {e}") from e

            self._timers = [
                RepeatingTimer(self.window_poll_interval, self._poll_window, "window-poll"),
                RepeatingTimer(self.screenshot_interval, self._take_screenshot, "screenshot"),
            ]
            for timer in self._timers:
                timer.start()

        _module_logger.debug("Recording started: %s", session.output_dir)
        if self.logger:
            self.logger.info(f"Recording to {session.output_dir}")
        return session

    def stop_recording(self) -> Session:
        """Stop the active session, seal it and write ``session.json``.

        The session is sealed and saved even when removing the input listener
        fails; capture is idle again either way.

        Raises:
            CaptureStateError: No session is active.
            CaptureError: The listener could not be removed (``e.session`` holds
                the saved session).
        """
        with self._lock:
            session = self._session
            if session is None:
                raise CaptureStateError("No recording in progress")
            self._session = None

            for timer in self._timers:
                timer.stop()
            self._timers = []

            listener, self._listener = self._listener, None
            uninstall_error = None
            try:
                if listener is not None:
                    self.platform.uninstall(listener)
            except Exception as e:
                uninstall_error = e
            finally:
                session.seal()
                session.save()

            if uninstall_error is not None:
                _module_logger.warning("Input listener uninstall failed: %s", uninstall_error)
                raise CaptureError(
                    f"Recording saved to {session.output_dir}, but the input listener "
                    f"could not be removed: {uninstall_error}",
                    session=session,
                ) from uninstall_error

        _module_logger.debug(
            "Recording stopped: %d clicks, %d keystrokes, %d window events, %d frames",
            len(session.clicks),
            len(session.keystrokes),
            len(session.window_events),
            self._frame_counter,
        )
        if self.logger:
            self.logger.success(
                f"Recorded {self._frame_counter} screenshots, {len(session.clicks)} clicks, "
                f"{len(session.keystrokes)} keystrokes in {session.duration.total_seconds():.1f}s"
            )
        return session

    # -- producers ---------------------------------------------------------

    def _on_click(self, x: int, y: int, button: ClickButton) -> None:
        session = self._session
        if session is None:
            return
        session.record_click(ClickEvent(position=(x, y), button=button, timestamp=datetime.now()))

    def _on_key_down(self, press: KeyPress) -> None:
        session = self._session
        if session is None:
            return
        session.record_keystroke(
            KeystrokeEvent(
                virtual_key_code=press.virtual_key_code,
                key=press.key,
                text=press.text,
                timestamp=datetime.now(),
                window_title=self._last_title,
                ctrl=press.ctrl,
                alt=press.alt,
                shift=press.shift,
                is_modifier=press.is_modifier,
            )
        )

    def _poll_window(self) -> None:
        session = self._session
        if session is None:
            return
        try:
            title, process_name = self.platform.poll_foreground_window()
        except Exception as e:
            _module_logger.debug("Window poll failed: %s", e)
            return

        if not title or not title.strip() or title == self._last_title:
            return
        self._last_title = title
        session.record_window_event(
            WindowEvent(window_title=title, process_name=process_name, timestamp=datetime.now())
        )

    def _take_screenshot(self) -> None:
        session = self._session
        if session is None:
            return
        try:
            data = self.platform.capture_screen()
            path = session.frames_dir / FRAME_NAME_FORMAT.format(self._frame_counter + 1)
            self.platform.save_image(data, path)
        except Exception as e:
            _module_logger.warning("Screenshot failed: %s", e)
            return
        self._frame_counter += 1
