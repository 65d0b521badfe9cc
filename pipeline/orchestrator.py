"""Guide pipeline: recording, segmentation, per-step narration and assembly."""

import asyncio
import logging
from collections.abc import Callable
from datetime import timedelta
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

from analyzer.json_utils import NormalizationError, parse_instruction
from analyzer.schema import Guide, InstructionStep, StepCandidate
from analyzer.step_segmenter import KEYSTROKE_TAIL, NoStepsDetectedError, segment
from prompts.narration_prompts import build_context_prompt, build_system_prompt
from recorder.capture import CaptureError, CaptureStateError, EventCapture
from recorder.session import Session
from utils.llm import BackendError, GenerationCancelled, NarrationBackend

if TYPE_CHECKING:
    from utils.logger import GuideLogger

_module_logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]

DEFAULT_TITLE = "Computer Task Guide"


class PipelineState(StrEnum):
    """Where the pipeline is. ERROR is reachable from every state."""

    IDLE = "idle"
    RECORDING = "recording"
    SEGMENTING = "segmenting"
    GENERATING = "generating"
    ASSEMBLING = "assembling"
    DONE = "done"
    ERROR = "error"


_BUSY_STATES = {PipelineState.SEGMENTING, PipelineState.GENERATING, PipelineState.ASSEMBLING}


class PipelineError(Exception):
    """Generation halted. ``partial_steps`` holds the instructions completed so far."""

    def __init__(self, message: str, partial_steps: list[InstructionStep] | None = None):
        super().__init__(message)
        self.partial_steps = partial_steps or []


class GuidePipeline:
    """Drives one session from capture to an assembled guide.

    Steps are narrated strictly one after another, each with its predecessor
    for context. On failure the pipeline enters ERROR, reports
    ``"Error: ..."`` on the progress channel and raises; instructions
    generated before the failure stay available on ``instructions``.
    """

    def __init__(
        self,
        backend: NarrationBackend | None = None,
        capture: EventCapture | None = None,
        progress: ProgressCallback | None = None,
        logger: "GuideLogger | None" = None,
        refine: bool = False,
        fallback_on_unparseable: bool = False,
        keystroke_tail: timedelta = KEYSTROKE_TAIL,
    ):
        """Initialize the pipeline.

        Args:
            backend: Narration backend used by ``generate``.
            capture: Event capture used by ``start_recording``/``stop_recording``.
            progress: Receives human-readable progress messages.
            logger: Optional GuideLogger for warnings.
            refine: Run a refinement pass over all instructions after narration.
            fallback_on_unparseable: Use ``"Step N in <window>"`` for a step whose
                reply cannot be parsed instead of failing.
            keystroke_tail: Keystroke attribution tail for segmentation.
        """
        self.backend = backend
        self.capture = capture
        self.progress = progress
        self.logger = logger
        self.refine = refine
        self.fallback_on_unparseable = fallback_on_unparseable
        self.keystroke_tail = keystroke_tail

        self.state = PipelineState.IDLE
        self.session: Session | None = None
        self.candidates: list[StepCandidate] = []
        self.instructions: list[InstructionStep] = []
        self.guide: Guide | None = None
        self.exported_paths: tuple[Path, Path] | None = None
        self.error: BaseException | None = None
        self.current_step = 0
        self.total_steps = 0

    # -- progress ----------------------------------------------------------

    def _emit(self, message: str) -> None:
        _module_logger.debug("progress: %s", message)
        if self.progress:
            self.progress(message)

    def _set_state(self, state: PipelineState) -> None:
        _module_logger.debug("state %s -> %s", self.state, state)
        self.state = state

    def _fail(self, error: BaseException) -> None:
        self.error = error
        self._set_state(PipelineState.ERROR)
        self._emit(f"Error: {error}")

    @property
    def status(self) -> str:
        """State with step progress while generating, e.g. ``"generating (3/7)"``."""
        if self.state is PipelineState.GENERATING:
            return f"{self.state} ({self.current_step}/{self.total_steps})"
        return str(self.state)

    # -- recording ---------------------------------------------------------

    def start_recording(self) -> Session:
        """Start a capture session.

        Raises:
            CaptureStateError: Already recording or generating.
            CaptureError: No capture is configured or it failed to start.
        """
        if self.state is PipelineState.RECORDING:
            raise CaptureStateError("Recording already in progress")
        if self.state in _BUSY_STATES:
            raise CaptureStateError(f"Cannot record while {self.state}")
        if self.capture is None:
            raise CaptureError("No capture configured")

        try:
            session = self.capture.start_recording()
        except CaptureError as e:
            self._fail(e)
            raise

        self.session = session
        self.candidates = []
        self.instructions = []
        self.guide = None
        self.error = None
        self._set_state(PipelineState.RECORDING)
        self._emit("Recording started")
        return session

    def stop_recording(self) -> Session:
        """Stop the active capture session and keep it for generation.

        Raises:
            CaptureStateError: Not recording.
            CaptureError: Capture stopped uncleanly. The pipeline moves to ERROR
                and keeps the saved session when there is one.
        """
        if self.state is not PipelineState.RECORDING or self.capture is None:
            raise CaptureStateError("No recording in progress")

        try:
            session = self.capture.stop_recording()
        except CaptureError as e:
            if e.session is not None:
                self.session = e.session
            self._fail(e)
            raise
        self.session = session
        self._set_state(PipelineState.IDLE)
        self._emit(f"Recording stopped ({len(session.frame_paths())} screenshots)")
        return session

    def load_session(self, session_dir: Path | str) -> Session:
        """Adopt a previously recorded session from disk."""
        if self.state is PipelineState.RECORDING or self.state in _BUSY_STATES:
            raise CaptureStateError(f"Cannot load a session while {self.state}")

        session = Session.load(Path(session_dir))
        session.seal()
        self.session = session
        self.candidates = []
        self.instructions = []
        self.guide = None
        self.error = None
        self._set_state(PipelineState.IDLE)
        return session

    # -- generation --------------------------------------------------------

    async def generate(
        self,
        cancel_event: asyncio.Event | None = None,
        export_to: Path | str | None = None,
    ) -> Guide:
        """Segment the session, narrate every step and assemble the guide.

        Args:
            cancel_event: Set to abort; the pipeline ends in ERROR.
            export_to: Base path (no extension). When given, the guide is saved
                as ``.md`` and ``.json`` with its frames before completion, and
                the written paths are kept on ``exported_paths``.

        Raises:
            CaptureStateError: Called while recording or already generating.
            NoStepsDetectedError: The session has no screenshots.
            PipelineError: Narration failed; ``partial_steps`` holds completed steps.
        """
        if self.state is PipelineState.RECORDING:
            raise CaptureStateError("Stop the recording before generating")
        if self.state in _BUSY_STATES:
            raise CaptureStateError("Generation already in progress")
        if self.session is None:
            raise PipelineError("No session to process")
        if self.backend is None:
            raise PipelineError("No narration backend configured")

        session = self.session
        self.instructions = []
        self.guide = None
        self.exported_paths = None
        self.error = None
        self.current_step = 0
        self.total_steps = 0

        try:
            self._set_state(PipelineState.SEGMENTING)
            self._emit("Detecting steps from recording...")
            self.candidates = segment(session, self.keystroke_tail)
            if not self.candidates:
                raise NoStepsDetectedError(
                    "No steps detected in recording. Please record some actions."
                )
            self.total_steps = len(self.candidates)
            self._emit(f"Detected {self.total_steps} steps")

            system_prompt = build_system_prompt(build_context_prompt(session))

            self._set_state(PipelineState.GENERATING)
            previous = None
            for candidate in self.candidates:
                if cancel_event is not None and cancel_event.is_set():
                    raise GenerationCancelled("Generation cancelled")
                self.current_step = candidate.index
                self._emit(f"Generating instruction {candidate.index}/{self.total_steps}...")
                text = await self._narrate(system_prompt, candidate, previous, cancel_event)
                self.instructions.append(InstructionStep(
                    step_number=candidate.index,
                    instruction=text,
                    screenshot_reference=Path(candidate.screenshot_path).name,
                ))
                previous = candidate

            title = self._default_title(session)
            summary = f"A {len(self.instructions)}-step guide"
            prerequisites: list[str] = []
            if self.refine:
                self._emit("Refining instructions...")
                draft = await self._refine(system_prompt, cancel_event)
                if draft is not None:
                    title = draft.title or title
                    summary = draft.summary or summary
                    prerequisites = draft.prerequisites

            self._set_state(PipelineState.ASSEMBLING)
            self._emit("Assembling guide...")
            self.guide = Guide(
                title=title,
                summary=summary,
                steps=list(self.instructions),
                prerequisites=prerequisites,
                session_id=session.id,
            )
            if export_to is not None:
                self._emit("Exporting guide...")
                self.exported_paths = self.guide.save_both(
                    Path(export_to), frames_dir=session.frames_dir
                )
        except NoStepsDetectedError as e:
            self._fail(e)
            raise
        except asyncio.CancelledError:
            self._fail(GenerationCancelled("Generation cancelled"))
            raise
        except Exception as e:
            self._fail(e)
            raise PipelineError(str(e), list(self.instructions)) from e

        self._set_state(PipelineState.DONE)
        self._emit("Done!")
        return self.guide

    async def _narrate(
        self,
        system_prompt: str,
        candidate: StepCandidate,
        previous: StepCandidate | None,
        cancel_event: asyncio.Event | None,
    ) -> str:
        reply = await self.backend.narrate_step(
            system_prompt, candidate, previous, candidate.index, cancel_event=cancel_event
        )
        try:
            return parse_instruction(reply)
        except NormalizationError as e:
            if not self.fallback_on_unparseable:
                raise
            _module_logger.warning("Step %d reply unparseable (%s), using fallback", candidate.index, e)
            if self.logger:
                self.logger.warning(f"Step {candidate.index}: could not parse reply, using fallback text")
            return f"Step {candidate.index} in {candidate.window_title}"

    async def _refine(self, system_prompt: str, cancel_event: asyncio.Event | None):
        """Apply a refinement pass. Any failure keeps the original instructions."""
        originals = [step.instruction for step in self.instructions]
        try:
            draft = await self.backend.refine_instructions(
                system_prompt, self.candidates, originals, cancel_event=cancel_event
            )
        except GenerationCancelled:
            raise
        except (NormalizationError, BackendError) as e:
            self._warn(f"Refinement failed, keeping original instructions: {e}")
            return None

        if len(draft.instructions) != len(self.instructions):
            self._warn(
                f"Refinement returned {len(draft.instructions)} instructions for "
                f"{len(self.instructions)} steps, keeping originals"
            )
            return None

        self.instructions = [
            InstructionStep(step.step_number, text, step.screenshot_reference)
            for step, text in zip(self.instructions, draft.instructions)
        ]
        return draft

    def _warn(self, message: str) -> None:
        _module_logger.warning(message)
        if self.logger:
            self.logger.warning(message)

    @staticmethod
    def _default_title(session: Session) -> str:
        applications = session.applications()
        if applications:
            return f"How to use {applications[0]}"
        return DEFAULT_TITLE
