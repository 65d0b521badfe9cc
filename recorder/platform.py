"""Platform capabilities consumed by capture: input hooks, foreground window, screen grabs.

Capture never talks to the OS directly; it goes through ``PlatformCapabilities``.
``DesktopPlatform`` is the real implementation (pynput, mss, psutil plus a
per-OS foreground window lookup). Tests substitute an in-memory fake.
"""

import io
import logging
import platform
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from PIL import Image

from .keymap import KeyPress, ModifierState
from .session import ClickButton

_module_logger = logging.getLogger(__name__)

ClickCallback = Callable[[int, int, ClickButton], None]
KeyDownCallback = Callable[[KeyPress], None]


class PlatformCapabilities(Protocol):
    """The narrow contract capture depends on."""

    def install_input_listener(
        self,
        on_click: ClickCallback,
        on_key_down: KeyDownCallback,
    ) -> Any:
        """Start delivering clicks and key-downs; returns an opaque handle."""
        ...

    def uninstall(self, handle: Any) -> None:
        """Stop a listener. Must be safe to call more than once."""
        ...

    def poll_foreground_window(self) -> tuple[str, str]:
        """Return (window title, owning process name) of the foreground window."""
        ...

    def capture_screen(self) -> bytes:
        """Grab the primary display as PNG bytes."""
        ...

    def save_image(self, data: bytes, path: Path) -> None:
        """Write encoded image bytes to ``path``."""
        ...


@dataclass
class InputListenerHandle:
    """Running pynput listeners for one recording."""

    mouse_listener: Any
    keyboard_listener: Any
    stopped: bool = False


class DesktopPlatform:
    """Real desktop implementation of ``PlatformCapabilities``."""

    def __init__(self, monitor_index: int = 1):
        """Initialize the platform.

        Args:
            monitor_index: mss monitor to capture (1 = primary display).
        """
        self.monitor_index = monitor_index
        self.system = platform.system()

    # -- input hooks -------------------------------------------------------

    def install_input_listener(
        self,
        on_click: ClickCallback,
        on_key_down: KeyDownCallback,
    ) -> InputListenerHandle:
        from pynput import keyboard, mouse

        modifiers = ModifierState()

        def _on_click(x, y, button, pressed):
            if not pressed:
                return
            if button == mouse.Button.left:
                on_click(int(x), int(y), ClickButton.LEFT)
            elif button == mouse.Button.right:
                on_click(int(x), int(y), ClickButton.RIGHT)

        def _on_press(key):
            if isinstance(key, keyboard.Key):
                modifiers.update(key.name, True)
                vk = getattr(key.value, "vk", None) or 0
                on_key_down(modifiers.special_key(key.name, vk))
            elif key is not None:
                on_key_down(modifiers.char_key(key.char, key.vk or 0))

        def _on_release(key):
            if isinstance(key, keyboard.Key):
                modifiers.update(key.name, False)

        mouse_listener = mouse.Listener(on_click=_on_click)
        keyboard_listener = keyboard.Listener(on_press=_on_press, on_release=_on_release)
        mouse_listener.start()
        keyboard_listener.start()

        return InputListenerHandle(mouse_listener, keyboard_listener)

    def uninstall(self, handle: InputListenerHandle) -> None:
        if handle is None or handle.stopped:
            return
        handle.stopped = True
        handle.mouse_listener.stop()
        handle.keyboard_listener.stop()

    # -- foreground window -------------------------------------------------

    def poll_foreground_window(self) -> tuple[str, str]:
        if self.system == "Windows":
            return self._foreground_windows()
        if self.system == "Darwin":
            return self._foreground_mac()
        return self._foreground_x11()

    def _foreground_windows(self) -> tuple[str, str]:
        import psutil
        import win32gui
        import win32process

        hwnd = win32gui.GetForegroundWindow()
        title = win32gui.GetWindowText(hwnd)
        _, pid = win32process.GetWindowThreadProcessId(hwnd)
        return title, self._process_name(pid, psutil)

    def _foreground_mac(self) -> tuple[str, str]:
        import Quartz
        from AppKit import NSWorkspace

        app = NSWorkspace.sharedWorkspace().frontmostApplication()
        if app is None:
            return "", ""
        app_name = str(app.localizedName() or "")
        pid = app.processIdentifier()

        # Window titles need screen recording permission; fall back to the app name
        windows = Quartz.CGWindowListCopyWindowInfo(
            Quartz.kCGWindowListOptionOnScreenOnly | Quartz.kCGWindowListExcludeDesktopElements,
            Quartz.kCGNullWindowID,
        ) or []
        for info in windows:
            if info.get("kCGWindowOwnerPID") == pid and info.get("kCGWindowLayer") == 0:
                name = info.get("kCGWindowName")
                if name:
                    return f"{name} - {app_name}", app_name
        return app_name, app_name

    def _foreground_x11(self) -> tuple[str, str]:
        import psutil

        title = self._run_xdotool("getactivewindow", "getwindowname")
        pid_str = self._run_xdotool("getactivewindow", "getwindowpid")
        pid = int(pid_str) if pid_str.isdigit() else 0
        return title, self._process_name(pid, psutil)

    @staticmethod
    def _run_xdotool(*args: str) -> str:
        result = subprocess.run(
            ["xdotool", *args],
            capture_output=True, text=True, timeout=2,
        )
        if result.returncode != 0:
            raise RuntimeError(f"xdotool {' '.join(args)} failed: {result.stderr.strip()}")
        return result.stdout.strip()

    @staticmethod
    def _process_name(pid: int, psutil: Any) -> str:
        if not pid:
            return ""
        try:
            return psutil.Process(pid).name()
        except psutil.Error:
            return ""

    # -- screenshots -------------------------------------------------------

    def capture_screen(self) -> bytes:
        import mss

        with mss.mss() as sct:
            raw = sct.grab(sct.monitors[self.monitor_index])
            img = Image.frombytes("RGB", raw.size, raw.bgra, "raw", "BGRX")

        buffer = io.BytesIO()
        img.save(buffer, format="PNG")
        return buffer.getvalue()

    def save_image(self, data: bytes, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        # Write beside the target and rename so a reader never sees half a frame
        tmp_path = path.with_name(path.name + ".part")
        tmp_path.write_bytes(data)
        tmp_path.replace(path)
