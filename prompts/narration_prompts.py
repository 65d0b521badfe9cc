"""Prompts used to narrate recorded steps and refine the resulting guide."""

import platform
from datetime import timedelta

from analyzer.schema import StepCandidate
from recorder.session import Session

SYSTEM_PROMPT = """You are Howl, a system that explains recorded computer actions as clear,
step-by-step instructions for another human to follow.

You will see a screenshot and metadata about what happened at that moment.
Use the visual information and keyboard/mouse data to describe the action.

Rules:
- Write ONE clear sentence describing the action taken.
- Do not mention timestamps or the recording.
- Do not mention "the user" - write as if instructing someone.
- Be specific about what was clicked or typed based on the screenshot.
- Prefer intent over mechanics (e.g., "Save the file" not "Click the save button").
- If you see text input in the metadata, mention what was typed.
- If you see a keyboard shortcut, mention it naturally (e.g., "Press Ctrl+C to copy").
- Keep it concise - one action per instruction."""

STEP_PROMPT = """Analyze this screenshot and respond with ONLY a valid JSON object.

Context for Step {step_number}:
{step_context}
{previous_context}
Based on the screenshot and context, describe what action was performed.

{{
  "instruction": "Clear, concise description of the action"
}}

RULES:
- instruction: One to two sentences describing what the user did, max 200 chars
- Focus on the ACTION, not what's visible
- Be specific and actionable - include what was clicked, typed, or navigated to
- DO NOT include <think> tags or reasoning
- DO NOT explain your thought process

Respond with ONLY the JSON object, no markdown, no explanation, no thinking."""

REFINEMENT_PROMPT = """Review and refine these step-by-step instructions for accuracy and consistency.

Current instructions:
{numbered_instructions}

Context for each step:
{step_contexts}

Refine the instructions to:
- Ensure step 1 and step {step_count} make sense as the beginning and end
- Fix any contradictions (e.g., don't say 'started' and 'initiated' for different steps)
- Make descriptions specific and actionable
- Keep each instruction under 200 chars
- Give the guide a clear, action-oriented title and a 1-2 sentence summary

Respond with a JSON object containing the refined guide:
{{
  "title": "A clear, action-oriented title for this guide",
  "summary": "A brief 1-2 sentence summary of what this guide accomplishes",
  "prerequisites": ["Optional things needed before starting"],
  "instructions": [
    "Refined instruction for step 1",
    "Refined instruction for step 2"
  ]
}}

You MUST return exactly {step_count} instructions, one per step, in order.
Respond with ONLY the JSON object, no markdown, no explanation."""

_OS_NAMES = {"Windows": "Windows", "Darwin": "macOS", "Linux": "Linux"}


def format_duration(duration: timedelta) -> str:
    """Coarse duration: "42 seconds", "7 minutes", "2 hours"."""
    seconds = duration.total_seconds()
    if seconds < 60:
        return f"{int(seconds)} seconds"
    if seconds < 3600:
        return f"{int(seconds // 60)} minutes"
    return f"{int(seconds // 3600)} hours"


def describe_candidate(candidate: StepCandidate, indent: str = "- ") -> list[str]:
    """Context lines for one candidate: window, typed text, shortcuts."""
    lines = [f'{indent}Window: "{candidate.window_title}"']
    if candidate.text_entered:
        lines.append(f'{indent}Text entered: "{candidate.text_entered}"')
    shortcuts = candidate.shortcuts()
    if shortcuts:
        lines.append(f"{indent}Keyboard shortcuts: {', '.join(shortcuts)}")
    return lines


def build_system_prompt(context: str | None = None) -> str:
    """System prompt, optionally followed by the session context block."""
    if context:
        return f"{SYSTEM_PROMPT}\n\n{context}"
    return SYSTEM_PROMPT


def build_context_prompt(session: Session, operating_system: str | None = None) -> str:
    """Task context: operating system, applications seen, approximate duration."""
    os_name = operating_system or _OS_NAMES.get(platform.system(), platform.system() or "Unknown")
    lines = ["Task context:", f"- Operating system: {os_name}"]

    applications = session.applications()
    if applications:
        lines.append("- Application(s) used:")
        lines.extend(f'  - "{app}"' for app in applications)

    lines.append(f"- Approximate task duration: {format_duration(session.duration)}")
    return "\n".join(lines) + "\n"


def build_step_prompt(
    current: StepCandidate,
    previous: StepCandidate | None,
    step_number: int,
) -> str:
    """Per-step prompt asking for a single ``{"instruction": ...}`` object."""
    previous_context = ""
    if previous is not None:
        previous_context = (
            f'\nPrevious step ({previous.index}) was in window "{previous.window_title}".\n'
        )
    return STEP_PROMPT.format(
        step_number=step_number,
        step_context="\n".join(describe_candidate(current)),
        previous_context=previous_context,
    )


def build_refinement_prompt(candidates: list[StepCandidate], instructions: list[str]) -> str:
    """Prompt asking the model to polish all instructions together."""
    numbered = "\n".join(f"{i}. {text}" for i, text in enumerate(instructions, start=1))
    contexts = []
    for i, candidate in enumerate(candidates, start=1):
        contexts.append(f"Step {i}:")
        contexts.extend(describe_candidate(candidate, indent="  "))
    return REFINEMENT_PROMPT.format(
        numbered_instructions=numbered,
        step_contexts="\n".join(contexts),
        step_count=len(candidates),
    )
