"""Recording session: the captured events and screenshot frames of one recording."""

import json
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from pathlib import Path


FRAMES_DIRNAME = "frames"
_FRAME_NUMBER = re.compile(r"(\d+)$")
SESSION_FILENAME = "session.json"


class ClickButton(StrEnum):
    """Mouse button that produced a click."""

    LEFT = "left"
    RIGHT = "right"


class KeyPhase(StrEnum):
    """Key transition. Only key-down is captured."""

    DOWN = "down"
    UP = "up"


@dataclass(frozen=True)
class ClickEvent:
    """A mouse click at screen coordinates."""

    position: tuple[int, int]
    button: ClickButton
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "position": list(self.position),
            "button": self.button.value,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "ClickEvent":
        x, y = d["position"]
        return cls(
            position=(int(x), int(y)),
            button=ClickButton(d.get("button", "left")),
            timestamp=datetime.fromisoformat(d["timestamp"]),
        )


@dataclass(frozen=True)
class KeystrokeEvent:
    """A key press with the window it was typed into."""

    virtual_key_code: int
    key: str  # Logical key name ("A", "Enter", "Ctrl")
    text: str | None  # Resolved printable text, None for non-printable keys
    timestamp: datetime
    window_title: str
    ctrl: bool = False
    alt: bool = False
    shift: bool = False
    is_modifier: bool = False
    phase: KeyPhase = KeyPhase.DOWN

    def display_text(self) -> str:
        """Human-readable form: typed text, a shortcut like "Ctrl+C", or the key name."""
        if self.text:
            return self.text

        if self.is_modifier or self.ctrl or self.alt or self.shift:
            parts = []
            if self.ctrl:
                parts.append("Ctrl")
            if self.alt:
                parts.append("Alt")
            if self.shift:
                parts.append("Shift")
            if not self.is_modifier:
                parts.append(self.key)
            return "+".join(parts)

        return self.key

    @property
    def is_shortcut(self) -> bool:
        """Whether this key press reads as a shortcut rather than typing."""
        return self.ctrl or self.alt or self.is_modifier

    def to_dict(self) -> dict:
        return {
            "virtual_key_code": self.virtual_key_code,
            "key": self.key,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
            "window_title": self.window_title,
            "ctrl": self.ctrl,
            "alt": self.alt,
            "shift": self.shift,
            "is_modifier": self.is_modifier,
            "phase": self.phase.value,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "KeystrokeEvent":
        return cls(
            virtual_key_code=d.get("virtual_key_code", 0),
            key=d["key"],
            text=d.get("text"),
            timestamp=datetime.fromisoformat(d["timestamp"]),
            window_title=d.get("window_title", ""),
            ctrl=d.get("ctrl", False),
            alt=d.get("alt", False),
            shift=d.get("shift", False),
            is_modifier=d.get("is_modifier", False),
            phase=KeyPhase(d.get("phase", "down")),
        )


@dataclass(frozen=True)
class WindowEvent:
    """Foreground window change, recorded only when the title changes."""

    window_title: str
    process_name: str
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "window_title": self.window_title,
            "process_name": self.process_name,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "WindowEvent":
        return cls(
            window_title=d["window_title"],
            process_name=d.get("process_name", ""),
            timestamp=datetime.fromisoformat(d["timestamp"]),
        )


@dataclass
class Session:
    """Events and frames captured between start and stop of one recording.

    The event lists are append-only. Capture producers append from their own
    threads while the session is live; once ``seal()`` has stamped the end
    time, further events are dropped and the session is read-only.
    """

    output_dir: Path
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    start_time: datetime = field(default_factory=datetime.now)
    end_time: datetime | None = None
    clicks: list[ClickEvent] = field(default_factory=list)
    window_events: list[WindowEvent] = field(default_factory=list)
    keystrokes: list[KeystrokeEvent] = field(default_factory=list)

    def __post_init__(self):
        self.output_dir = Path(self.output_dir)

    @property
    def frames_dir(self) -> Path:
        """Directory holding the sequentially named PNG screenshots."""
        return self.output_dir / FRAMES_DIRNAME

    @property
    def is_sealed(self) -> bool:
        return self.end_time is not None

    @property
    def duration(self) -> timedelta:
        return (self.end_time or datetime.now()) - self.start_time

    def record_click(self, event: ClickEvent) -> bool:
        if self.is_sealed:
            return False
        self.clicks.append(event)
        return True

    def record_keystroke(self, event: KeystrokeEvent) -> bool:
        if self.is_sealed:
            return False
        self.keystrokes.append(event)
        return True

    def record_window_event(self, event: WindowEvent) -> bool:
        if self.is_sealed:
            return False
        self.window_events.append(event)
        return True

    def seal(self, end_time: datetime | None = None) -> None:
        """Stamp the end time. Sealing twice keeps the first end time."""
        if self.end_time is None:
            self.end_time = end_time or datetime.now()

    def applications(self) -> list[str]:
        """Distinct process names seen in window events, in first-seen order."""
        seen: list[str] = []
        for event in self.window_events:
            if event.process_name and event.process_name not in seen:
                seen.append(event.process_name)
        return seen

    def frame_paths(self) -> list[Path]:
        """Screenshot files in capture sequence order.

        Ordered by the trailing frame number, so ``frame_10000`` follows
        ``frame_9999`` once the zero padding runs out.
        """
        if not self.frames_dir.is_dir():
            return []
        return sorted(self.frames_dir.glob("*.png"), key=_frame_sort_key)

    def to_dict(self) -> dict:
        """Convert to serializable dictionary."""
        return {
            "id": self.id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "output_dir": str(self.output_dir),
            "clicks": [c.to_dict() for c in self.clicks],
            "window_events": [w.to_dict() for w in self.window_events],
            "keystrokes": [k.to_dict() for k in self.keystrokes],
        }

    @classmethod
    def from_dict(cls, d: dict, output_dir: Path | None = None) -> "Session":
        """Create from dictionary. ``output_dir`` overrides the stored path."""
        end_time = d.get("end_time")
        return cls(
            output_dir=Path(output_dir or d["output_dir"]),
            id=d["id"],
            start_time=datetime.fromisoformat(d["start_time"]),
            end_time=datetime.fromisoformat(end_time) if end_time else None,
            clicks=[ClickEvent.from_dict(c) for c in d.get("clicks", [])],
            window_events=[WindowEvent.from_dict(w) for w in d.get("window_events", [])],
            keystrokes=[KeystrokeEvent.from_dict(k) for k in d.get("keystrokes", [])],
        )

    def save(self) -> Path:
        """Write session metadata next to the frames directory."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / SESSION_FILENAME
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)
        return path

    @classmethod
    def load(cls, session_dir: Path) -> "Session":
        """Load a session from its directory.

        The directory the file was found in wins over the stored path, so a
        session folder can be moved between recording and generation.
        """
        session_dir = Path(session_dir)
        path = session_dir / SESSION_FILENAME
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        return cls.from_dict(data, output_dir=session_dir)


def _frame_sort_key(path: Path) -> tuple[int, str]:
    match = _FRAME_NUMBER.search(path.stem)
    return (int(match.group(1)) if match else -1, path.name)
