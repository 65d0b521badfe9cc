"""Pipeline module: from a recorded session to an assembled guide."""

from .orchestrator import GuidePipeline, PipelineError, PipelineState, ProgressCallback
from .preview import render_prompt_preview, write_prompt_preview

__all__ = [
    "GuidePipeline",
    "PipelineError",
    "PipelineState",
    "ProgressCallback",
    "render_prompt_preview",
    "write_prompt_preview",
]
