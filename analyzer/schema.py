"""Data models for step candidates, narrated instructions, and assembled guides."""

import json
import re
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from pathlib import Path

import yaml

from recorder.session import KeystrokeEvent


# =============================================================================
# Segmentation
# =============================================================================


class StepTrigger(StrEnum):
    """Why a step candidate was created."""

    VISUAL_CHANGE = "visual_change"


@dataclass
class StepCandidate:
    """One screenshot plus the context attributed to it.

    Candidates are 1:1 with screenshots, in time order, with dense 1-based
    indices.
    """

    index: int
    window_title: str
    screenshot_path: Path
    timestamp: datetime
    trigger: StepTrigger = StepTrigger.VISUAL_CHANGE
    keystrokes: list[KeystrokeEvent] = field(default_factory=list)
    text_entered: str | None = None

    def shortcuts(self) -> list[str]:
        """Distinct shortcut display strings (Ctrl/Alt combos, bare modifiers) in order."""
        seen: list[str] = []
        for k in self.keystrokes:
            if k.is_shortcut:
                text = k.display_text()
                if text not in seen:
                    seen.append(text)
        return seen

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "window_title": self.window_title,
            "screenshot_path": str(self.screenshot_path),
            "timestamp": self.timestamp.isoformat(),
            "trigger": self.trigger.value,
            "keystrokes": [k.to_dict() for k in self.keystrokes],
            "text_entered": self.text_entered,
        }


# =============================================================================
# Generation output
# =============================================================================


@dataclass
class InstructionStep:
    """A narrated instruction. ``step_number`` equals the candidate index."""

    step_number: int
    instruction: str
    screenshot_reference: str | None = None  # Frame filename, e.g. "frame_0003.png"

    def to_dict(self) -> dict:
        return {
            "step_number": self.step_number,
            "instruction": self.instruction,
            "screenshot_reference": self.screenshot_reference,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "InstructionStep":
        return cls(
            step_number=int(d["step_number"]),
            instruction=d["instruction"],
            screenshot_reference=d.get("screenshot_reference"),
        )


@dataclass
class GuideDraft:
    """A guide-shaped payload parsed out of a model reply (refinement pass)."""

    title: str = ""
    summary: str = ""
    prerequisites: list[str] = field(default_factory=list)
    instructions: list[str] = field(default_factory=list)


@dataclass
class Guide:
    """An assembled step guide.

    Saved as Markdown (YAML frontmatter + numbered steps with screenshots) and
    as JSON.
    """

    title: str
    summary: str
    steps: list[InstructionStep]
    prerequisites: list[str] = field(default_factory=list)
    session_id: str | None = None
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_markdown(self, image_dir: str | None = None) -> str:
        """Convert to markdown with YAML frontmatter.

        Args:
            image_dir: Relative directory for screenshot links. Steps are
                rendered without images when None.
        """
        frontmatter = {
            "title": self.title,
            "summary": self.summary,
            "created_at": self.created_at,
            "step_count": len(self.steps),
        }
        if self.session_id:
            frontmatter["session_id"] = self.session_id
        if self.prerequisites:
            frontmatter["prerequisites"] = list(self.prerequisites)

        yaml_str = yaml.dump(frontmatter, default_flow_style=False, sort_keys=False)

        lines = [f"# {self.title}", "", self.summary, ""]
        if self.prerequisites:
            lines.append("## Prerequisites")
            lines.append("")
            lines.extend(f"- {p}" for p in self.prerequisites)
            lines.append("")

        lines.append("## Steps")
        lines.append("")
        for step in self.steps:
            lines.append(f"### Step {step.step_number}")
            lines.append("")
            lines.append(step.instruction)
            lines.append("")
            if image_dir and step.screenshot_reference:
                lines.append(f"![Step {step.step_number}]({image_dir}/{step.screenshot_reference})")
                lines.append("")

        return f"---\n{yaml_str}---\n\n" + "\n".join(lines)

    @classmethod
    def from_markdown(cls, content: str) -> "Guide":
        """Parse a guide from markdown written by ``to_markdown``."""
        frontmatter, body = cls._parse_frontmatter(content)

        steps = []
        pattern = r"^### Step (\d+)\s*\n\n(.*?)(?=\n### Step |\Z)"
        for match in re.finditer(pattern, body, re.DOTALL | re.MULTILINE):
            number = int(match.group(1))
            block = match.group(2).strip()
            image = re.search(r"!\[[^\]]*\]\(([^)]+)\)", block)
            reference = Path(image.group(1)).name if image else None
            instruction = re.sub(r"!\[[^\]]*\]\([^)]+\)", "", block).strip()
            steps.append(InstructionStep(number, instruction, reference))

        return cls(
            title=frontmatter.get("title", "Untitled Guide"),
            summary=frontmatter.get("summary", ""),
            steps=steps,
            prerequisites=frontmatter.get("prerequisites", []),
            session_id=frontmatter.get("session_id"),
            created_at=frontmatter.get("created_at", datetime.now().isoformat()),
        )

    @staticmethod
    def _parse_frontmatter(content: str) -> tuple[dict, str]:
        """Parse YAML frontmatter from markdown content."""
        pattern = r'^---\s*\n(.*?)\n---\s*\n(.*)$'
        match = re.match(pattern, content, re.DOTALL)

        if match:
            try:
                frontmatter = yaml.safe_load(match.group(1)) or {}
            except yaml.YAMLError:
                frontmatter = {}
            return frontmatter, match.group(2)

        return {}, content

    def save(self, path: Path, image_dir: str | None = None) -> None:
        """Save guide to file (markdown or JSON based on extension)."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        if path.suffix == ".md":
            with open(path, "w", encoding="utf-8") as f:
                f.write(self.to_markdown(image_dir=image_dir))
        else:
            with open(path, "w", encoding="utf-8") as f:
                json.dump(self.to_dict(), f, indent=2)

    def save_both(self, base_path: Path, frames_dir: Path | None = None) -> tuple[Path, Path]:
        """Save guide to both .md and .json formats.

        Args:
            base_path: Base path without extension (e.g., 'guides/my_guide').
            frames_dir: Session frames directory. When given, referenced
                screenshots are copied to ``<base_path>_frames/`` and linked
                from the markdown.

        Returns:
            Tuple of (md_path, json_path)
        """
        base_path = Path(base_path)
        base_path.parent.mkdir(parents=True, exist_ok=True)

        md_path = base_path.with_suffix(".md")
        json_path = base_path.with_suffix(".json")

        image_dir = None
        if frames_dir is not None:
            target = base_path.parent / f"{base_path.name}_frames"
            if self.copy_frames(frames_dir, target):
                image_dir = target.name

        self.save(md_path, image_dir=image_dir)
        self.save(json_path)

        return md_path, json_path

    def copy_frames(self, frames_dir: Path, target_dir: Path) -> int:
        """Copy each step's referenced screenshot into ``target_dir``. Returns the count copied."""
        frames_dir = Path(frames_dir)
        target_dir = Path(target_dir)
        copied = 0
        for step in self.steps:
            if not step.screenshot_reference:
                continue
            source = frames_dir / step.screenshot_reference
            if not source.is_file():
                continue
            target_dir.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target_dir / step.screenshot_reference)
            copied += 1
        return copied

    @classmethod
    def load(cls, path: Path) -> "Guide":
        """Load guide from file (supports both .md and .json)."""
        path = Path(path)

        with open(path, encoding="utf-8") as f:
            content = f.read()

        if path.suffix == ".md":
            return cls.from_markdown(content)
        return cls.from_dict(json.loads(content))

    def to_dict(self) -> dict:
        """Convert to dictionary (for JSON serialization)."""
        return {
            "title": self.title,
            "summary": self.summary,
            "prerequisites": list(self.prerequisites),
            "steps": [s.to_dict() for s in self.steps],
            "session_id": self.session_id,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Guide":
        return cls(
            title=d.get("title", "Untitled Guide"),
            summary=d.get("summary", ""),
            steps=[InstructionStep.from_dict(s) for s in d.get("steps", [])],
            prerequisites=d.get("prerequisites", []),
            session_id=d.get("session_id"),
            created_at=d.get("created_at", datetime.now().isoformat()),
        )
