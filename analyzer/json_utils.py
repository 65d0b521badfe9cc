"""Extract JSON payloads from free-form model replies.

Replies may carry reasoning preambles, markdown fences, chatter around the
object, or be cut off mid-object by a token limit. Extraction strips the
wrappers, isolates the first top-level object and, when it never closes,
appends the missing closers.
"""

import json
import logging
import re

from .schema import GuideDraft

_module_logger = logging.getLogger(__name__)

_REASONING_END = re.compile(r"</(?:think|thinking|reasoning)>", re.IGNORECASE)
_FENCE = re.compile(r"```[A-Za-z]*")
_CLOSERS = {"{": "}", "[": "]"}


class NormalizationError(ValueError):
    """A model reply did not contain a usable JSON payload."""

    def __init__(self, message: str, reply: str = ""):
        super().__init__(message)
        self.reply = reply


def strip_reasoning(text: str) -> str:
    """Drop everything up to and including the last closing reasoning tag."""
    last = None
    for last in _REASONING_END.finditer(text):
        pass
    if last is None:
        return text
    return text[last.end():]


def strip_fences(text: str) -> str:
    return _FENCE.sub("", text).strip()


def _match_object(text: str, start: int) -> int | None:
    """Index of the brace closing the object opened at ``start``, or None."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        c = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif c == "\\":
                escaped = True
            elif c == '"':
                in_string = False
            continue
        if c == '"':
            in_string = True
        elif c == "{":
            depth += 1
        elif c == "}":
            depth -= 1
            if depth == 0:
                return i
    return None


def repair_truncated(fragment: str) -> str:
    """Close an object that was cut off: open string first, then brackets innermost-out."""
    stack: list[str] = []
    in_string = False
    escaped = False
    for c in fragment:
        if in_string:
            if escaped:
                escaped = False
            elif c == "\\":
                escaped = True
            elif c == '"':
                in_string = False
            continue
        if c == '"':
            in_string = True
        elif c in _CLOSERS:
            stack.append(c)
        elif c in "}]" and stack:
            stack.pop()

    repaired = fragment
    if in_string:
        if escaped:
            # A lone trailing backslash would escape the closing quote
            repaired = repaired[:-1]
        repaired += '"'
    else:
        repaired = repaired.rstrip()
        if repaired.endswith(","):
            repaired = repaired[:-1]

    closers = "".join(_CLOSERS[c] for c in reversed(stack))
    _module_logger.debug("Repaired truncated JSON by appending %r", ('"' if in_string else "") + closers)
    return repaired + closers


def extract_json_text(reply: str) -> str:
    """Isolate the JSON object text inside a model reply.

    Raises:
        NormalizationError: The reply contains no ``{``.
    """
    text = strip_fences(strip_reasoning(reply or ""))

    start = text.find("{")
    if start < 0:
        raise NormalizationError("No JSON object found in model reply", reply)

    end = _match_object(text, start)
    if end is not None:
        return text[start:end + 1]
    return repair_truncated(text[start:])


def extract_json_from_response(reply: str) -> dict:
    """Parse the JSON object inside a model reply.

    Raises:
        NormalizationError: No object, or the (repaired) text is not valid JSON.
    """
    candidate = extract_json_text(reply)
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise NormalizationError(f"Model reply is not valid JSON: {e}", reply) from e
    if not isinstance(data, dict):
        raise NormalizationError("Model reply JSON is not an object", reply)
    return data


def parse_instruction(reply: str) -> str:
    """The non-empty ``instruction`` field of a single-step reply."""
    data = extract_json_from_response(reply)
    instruction = data.get("instruction")
    if not isinstance(instruction, str) or not instruction.strip():
        raise NormalizationError("Model reply has no 'instruction' text", reply)
    return instruction.strip()


def parse_guide_payload(reply: str) -> GuideDraft:
    """Parse a guide-shaped reply.

    Accepts ``{"title", "summary", "prerequisites", "steps": [{"stepNumber",
    "instruction"}]}`` or a plain ``{"instructions": ["...", ...]}``.
    """
    data = extract_json_from_response(reply)

    instructions: list[str] = []
    if isinstance(data.get("steps"), list):
        numbered = []
        for step in data["steps"]:
            if isinstance(step, dict):
                numbered.append((_step_number(step, reply), str(step.get("instruction", "")).strip()))
        numbered.sort(key=lambda pair: pair[0])
        instructions = [text for _, text in numbered]
    elif isinstance(data.get("instructions"), list):
        instructions = [str(i).strip() for i in data["instructions"] if i is not None]
    else:
        raise NormalizationError("Model reply has neither 'steps' nor 'instructions'", reply)

    if any(not i for i in instructions):
        raise NormalizationError("Model reply contains an empty instruction", reply)

    prerequisites = data.get("prerequisites") or []
    return GuideDraft(
        title=str(data.get("title") or ""),
        summary=str(data.get("summary") or ""),
        prerequisites=[str(p) for p in prerequisites] if isinstance(prerequisites, list) else [],
        instructions=instructions,
    )


def _step_number(step: dict, reply: str) -> int:
    """Integer step number of a ``steps`` entry; models sometimes send "3" for 3."""
    value = step.get("stepNumber", step.get("step_number"))
    if value is None:
        return 0
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    try:
        return int(str(value).strip())
    except (TypeError, ValueError) as e:
        raise NormalizationError(f"Invalid step number: {value!r}", reply) from e
