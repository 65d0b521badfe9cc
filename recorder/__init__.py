"""Recording module for step guides.

This module provides:
- EventCapture: Record clicks, keystrokes, window changes and screenshots
- Session: The captured events and frames of one recording
- DesktopPlatform: OS hooks behind the PlatformCapabilities contract
"""

from .capture import CaptureError, CaptureStateError, EventCapture, RepeatingTimer
from .keymap import KeyPress
from .platform import DesktopPlatform, PlatformCapabilities
from .session import (
    ClickButton,
    ClickEvent,
    KeyPhase,
    KeystrokeEvent,
    Session,
    WindowEvent,
)

__all__ = [
    "EventCapture",
    "RepeatingTimer",
    "CaptureError",
    "CaptureStateError",
    "KeyPress",
    "DesktopPlatform",
    "PlatformCapabilities",
    "ClickButton",
    "ClickEvent",
    "KeyPhase",
    "KeystrokeEvent",
    "Session",
    "WindowEvent",
]
