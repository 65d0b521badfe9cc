"""Shared fixtures: sessions on disk, frame files with controlled timestamps, keystrokes."""

import io
import os
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from PIL import Image

from recorder.session import KeystrokeEvent, Session, WindowEvent

T0 = datetime(2024, 5, 1, 10, 0, 0)


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


def png_bytes(size=(64, 48), color=(200, 200, 200)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def session(tmp_path) -> Session:
    return Session(output_dir=tmp_path / "session_test", start_time=T0)


@pytest.fixture
def make_frame():
    """Write ``frame_NNNN.png`` into a session with its mtime set to ``when``."""

    def _make(session: Session, number: int, when: datetime, size=(64, 48)) -> Path:
        session.frames_dir.mkdir(parents=True, exist_ok=True)
        path = session.frames_dir / f"frame_{number:04d}.png"
        path.write_bytes(png_bytes(size))
        ts = when.timestamp()
        os.utime(path, (ts, ts))
        return path

    return _make


def window(title: str, when: datetime, process: str = "notepad.exe") -> WindowEvent:
    return WindowEvent(window_title=title, process_name=process, timestamp=when)


def typed(char: str, when: datetime, title: str = "Notepad") -> KeystrokeEvent:
    return KeystrokeEvent(
        virtual_key_code=ord(char.upper()),
        key=char.upper(),
        text=char,
        timestamp=when,
        window_title=title,
    )


def shortcut(key: str, when: datetime, title: str = "Notepad", **flags) -> KeystrokeEvent:
    return KeystrokeEvent(
        virtual_key_code=ord(key[0]),
        key=key,
        text=None,
        timestamp=when,
        window_title=title,
        **flags,
    )
