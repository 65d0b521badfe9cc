"""Analysis module: segmenting sessions into steps and reading model replies."""

from .json_utils import (
    NormalizationError,
    extract_json_from_response,
    extract_json_text,
    parse_guide_payload,
    parse_instruction,
)
from .schema import (
    # Segmentation
    StepCandidate,
    StepTrigger,
    # Output
    Guide,
    GuideDraft,
    InstructionStep,
)
from .step_segmenter import NoStepsDetectedError, segment

__all__ = [
    # Segmentation
    "segment",
    "NoStepsDetectedError",
    "StepCandidate",
    "StepTrigger",
    # Output
    "Guide",
    "GuideDraft",
    "InstructionStep",
    # Reply parsing
    "NormalizationError",
    "extract_json_text",
    "extract_json_from_response",
    "parse_instruction",
    "parse_guide_payload",
]
