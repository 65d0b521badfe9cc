"""Prompt preview export: everything that would be sent to a backend, without sending it."""

from datetime import datetime
from pathlib import Path

from analyzer.schema import StepCandidate
from prompts.narration_prompts import (
    build_context_prompt,
    build_step_prompt,
    build_system_prompt,
)
from recorder.session import Session

MAX_CLICKS_LISTED = 10
MAX_KEYSTROKES_LISTED = 20

_RULE = "=" * 63
_THIN_RULE = "-" * 63


def _section(lines: list[str], title: str, rule: str = _RULE) -> None:
    lines.extend([rule, title, rule, ""])


def render_prompt_preview(session: Session, candidates: list[StepCandidate]) -> str:
    """Render the session summary, detected steps and the full per-step prompts."""
    context_prompt = build_context_prompt(session)
    system_prompt = build_system_prompt(context_prompt)

    lines = [
        _RULE,
        "HOWL - PROMPT PREVIEW (not sent to any backend)",
        _RULE,
        "",
        f"Generated: {datetime.now():%Y-%m-%d %H:%M:%S}",
        f"Session ID: {session.id}",
        f"Duration: {session.duration.total_seconds():.1f} seconds",
        f"Clicks Captured: {len(session.clicks)}",
        f"Window Changes: {len(session.window_events)}",
        f"Keystrokes Captured: {len(session.keystrokes)}",
        f"Steps Detected: {len(candidates)}",
        "",
    ]

    _section(lines, "RECORDING DETAILS", _THIN_RULE)

    lines.append("Applications Used:")
    lines.extend(f"  - {app}" for app in session.applications())
    lines.append("")

    lines.append("Click Events:")
    for i, click in enumerate(session.clicks[:MAX_CLICKS_LISTED], start=1):
        x, y = click.position
        lines.append(f"  {i}. [{click.timestamp:%H:%M:%S.%f}] {click.button} click at ({x}, {y})")
    if len(session.clicks) > MAX_CLICKS_LISTED:
        lines.append(f"  ... and {len(session.clicks) - MAX_CLICKS_LISTED} more clicks")
    lines.append("")

    lines.append("Keystroke Events:")
    for i, key in enumerate(session.keystrokes[:MAX_KEYSTROKES_LISTED], start=1):
        lines.append(
            f'  {i}. [{key.timestamp:%H:%M:%S.%f}] {key.display_text()} in "{key.window_title}"'
        )
    if len(session.keystrokes) > MAX_KEYSTROKES_LISTED:
        lines.append(f"  ... and {len(session.keystrokes) - MAX_KEYSTROKES_LISTED} more keystrokes")
    lines.append("")

    lines.append("Detected Steps:")
    for candidate in candidates:
        lines.append(f"  Step {candidate.index}: {candidate.window_title}")
        lines.append(f"    Trigger: {candidate.trigger}")
        lines.append(f"    Time: {candidate.timestamp:%H:%M:%S}")
        lines.append(f"    Screenshot: {candidate.screenshot_path}")
        if candidate.text_entered:
            lines.append(f'    Text Entered: "{candidate.text_entered}"')
        if candidate.keystrokes:
            lines.append(f"    Keystrokes: {len(candidate.keystrokes)}")
            shortcuts = candidate.shortcuts()
            if shortcuts:
                lines.append(f"    Shortcuts: {', '.join(shortcuts)}")
        lines.append("")

    _section(lines, "SYSTEM PROMPT")
    lines.extend([system_prompt, ""])

    previous = None
    for candidate in candidates:
        _section(lines, f"STEP {candidate.index} PROMPT")
        lines.extend([build_step_prompt(candidate, previous, candidate.index), ""])
        previous = candidate

    return "\n".join(lines)


def write_prompt_preview(
    session: Session,
    candidates: list[StepCandidate],
    output_path: Path | str,
) -> Path:
    """Write the prompt preview to ``output_path`` and return the path."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(render_prompt_preview(session, candidates), encoding="utf-8")
    return output_path
