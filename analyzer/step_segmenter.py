"""Turn a recorded session into step candidates, one per screenshot."""

import bisect
import logging
from datetime import datetime, timedelta
from pathlib import Path

from recorder.session import Session, WindowEvent

from .schema import StepCandidate, StepTrigger

_module_logger = logging.getLogger(__name__)

UNKNOWN_WINDOW = "Unknown"
KEYSTROKE_TAIL = timedelta(seconds=2)  # Typing just after a frame still belongs to it


class NoStepsDetectedError(Exception):
    """The session produced no step candidates (no screenshots)."""


def frame_time(path: Path) -> datetime:
    """Timestamp of a frame file.

    Frames are written once and never touched again, so the modification time
    is the capture time.
    """
    return datetime.fromtimestamp(path.stat().st_mtime)


def window_title_at(window_events: list[WindowEvent], when: datetime) -> str:
    """Title of the last window event at or before ``when``, else ``"Unknown"``."""
    times = [e.timestamp for e in window_events]
    i = bisect.bisect_right(times, when)
    if i == 0:
        return UNKNOWN_WINDOW
    return window_events[i - 1].window_title


def segment(session: Session, keystroke_tail: timedelta = KEYSTROKE_TAIL) -> list[StepCandidate]:
    """Build step candidates from a sealed session.

    Each frame becomes one candidate in filename order. A keystroke is
    attributed to a candidate when it falls between the previous candidate's
    time (session start for the first) and this candidate's time plus
    ``keystroke_tail``, and was typed into the candidate's window.

    Returns an empty list when the session has no frames.
    """
    frames = session.frame_paths()
    candidates: list[StepCandidate] = []
    window_start = session.start_time

    for position, path in enumerate(frames, start=1):
        timestamp = frame_time(path)
        title = window_title_at(session.window_events, timestamp)
        window_end = timestamp + keystroke_tail

        keystrokes = [
            k for k in session.keystrokes
            if window_start <= k.timestamp <= window_end and k.window_title == title
        ]
        typed = "".join(k.text for k in keystrokes if not k.is_modifier and k.text)

        candidates.append(StepCandidate(
            index=position,
            window_title=title,
            screenshot_path=path,
            timestamp=timestamp,
            trigger=StepTrigger.VISUAL_CHANGE,
            keystrokes=keystrokes,
            text_entered=typed or None,
        ))
        window_start = timestamp

    _module_logger.debug("Segmented %d frames into %d candidates", len(frames), len(candidates))
    return candidates
