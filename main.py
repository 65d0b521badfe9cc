#!/usr/bin/env python3
"""
Howl CLI

Record a task on the desktop and turn it into a step-by-step guide.
"""

import asyncio
import time
from datetime import timedelta
from pathlib import Path
from typing import Annotated, Optional

import typer
from dotenv import load_dotenv
from rich.console import Console

from config import get_config
from utils.logger import GuideLogger
from utils.tracking import Timer, UsageTracker

load_dotenv()

# Create Typer app
app = typer.Typer(
    name="howl",
    help="Record desktop tasks and generate step-by-step guides",
    rich_markup_mode="rich",
)

console = Console()


@app.command()
def record(
    output: Annotated[
        Optional[Path],
        typer.Option("-o", "--output", help="Directory for session folders"),
    ] = None,
    interval: Annotated[
        Optional[float],
        typer.Option("--interval", help="Seconds between screenshots"),
    ] = None,
) -> None:
    """Record clicks, keystrokes, window changes and screenshots until Ctrl+C."""
    from pipeline.orchestrator import GuidePipeline
    from recorder.capture import CaptureError, EventCapture
    from recorder.platform import DesktopPlatform

    config = get_config()
    logger = GuideLogger("record", logs_dir=config.logs_dir)

    try:
        capture = EventCapture(
            DesktopPlatform(),
            base_dir=output or config.capture.recordings_dir,
            window_poll_interval=config.capture.window_poll_interval,
            screenshot_interval=interval or config.capture.screenshot_interval,
            logger=logger,
        )
        pipeline = GuidePipeline(capture=capture, progress=logger.step, logger=logger)

        try:
            session = pipeline.start_recording()
        except CaptureError as e:
            logger.error(f"Could not start recording: {e}")
            raise typer.Exit(1)

        logger.print("[red bold]🔴 Recording...[/red bold]")
        logger.print("Press [bold]Ctrl+C[/bold] to stop recording.")
        logger.print()

        try:
            while True:
                time.sleep(0.5)
        except KeyboardInterrupt:
            pass

        try:
            session = pipeline.stop_recording()
        except CaptureError as e:
            logger.error(str(e))
            if e.session is None:
                raise typer.Exit(1)
            session = e.session

        frames = len(session.frame_paths())
        logger.success(f"Recording saved: [cyan]{session.output_dir}[/cyan]")
        logger.print(
            f"  {frames} screenshots, {len(session.clicks)} clicks, "
            f"{len(session.keystrokes)} keystrokes, {len(session.window_events)} window changes"
        )
        logger.print("\nTo generate a guide from this recording, run:")
        logger.print(f"  [dim]python main.py generate {session.output_dir}[/dim]")
    finally:
        logger.close()


@app.command()
def generate(
    session_dir: Annotated[
        Path,
        typer.Argument(help="Session folder (contains session.json and frames/)"),
    ],
    backend: Annotated[
        Optional[str],
        typer.Option("-b", "--backend", help="Backend: gemini or lmstudio"),
    ] = None,
    model: Annotated[
        Optional[str],
        typer.Option("-m", "--model", help="Model to use (defaults per backend)"),
    ] = None,
    refine: Annotated[
        bool,
        typer.Option("--refine/--no-refine", help="Polish all instructions in a final pass"),
    ] = False,
    fallback: Annotated[
        bool,
        typer.Option("--fallback", help="Use placeholder text for unparseable replies instead of failing"),
    ] = False,
    output: Annotated[
        Optional[Path],
        typer.Option("-o", "--output", help="Output path for the guide (without extension)"),
    ] = None,
) -> None:
    """Generate a step guide from a recorded session."""
    from analyzer.step_segmenter import NoStepsDetectedError
    from backends import create_backend
    from pipeline.orchestrator import GuidePipeline, PipelineError

    if not (session_dir / "session.json").exists():
        console.print(f"[red]✗[/red] Not a session folder: {session_dir}")
        raise typer.Exit(1)

    config = get_config()
    backend_name = backend or config.backend

    logger = GuideLogger("generate", logs_dir=config.logs_dir)
    usage_tracker = UsageTracker()
    timer = Timer("Generation")

    try:
        timer.start()
        logger.header("Guide Generation")
        logger.info(f"Session: [cyan]{session_dir}[/cyan]")

        try:
            narration_backend = create_backend(
                backend_name, config, model=model, usage_tracker=usage_tracker, logger=logger
            )
        except ValueError as e:
            logger.error(str(e))
            raise typer.Exit(1)
        logger.info(f"Backend: [cyan]{backend_name}[/cyan] ({narration_backend.model})")

        pipeline = GuidePipeline(
            backend=narration_backend,
            progress=logger.step,
            logger=logger,
            refine=refine,
            fallback_on_unparseable=fallback,
            keystroke_tail=timedelta(seconds=config.capture.keystroke_tail),
        )
        pipeline.load_session(session_dir)
        output_base = output.with_suffix("") if output else config.guides_dir / session_dir.name

        def _report_partial(steps, reason: str) -> None:
            if not steps:
                return
            logger.warning(f"{len(steps)} step(s) were generated before the {reason}:")
            for step in steps:
                logger.print(f"  [dim]{step.step_number}.[/dim] {step.instruction}")

        async def _run():
            async with narration_backend:
                return await pipeline.generate(export_to=output_base)

        try:
            guide = asyncio.run(_run())
        except NoStepsDetectedError as e:
            logger.error(str(e))
            raise typer.Exit(1)
        except PipelineError as e:
            logger.error(f"Generation failed: {e}")
            _report_partial(e.partial_steps, "failure")
            raise typer.Exit(1)
        except KeyboardInterrupt:
            logger.warning("Generation cancelled")
            _report_partial(pipeline.instructions, "cancellation")
            raise typer.Exit(1)

        md_path, json_path = pipeline.exported_paths

        logger.success(f"Guide: [bold]{guide.title}[/bold] ({len(guide.steps)} steps)")
        logger.success(f"Markdown saved: [cyan]{md_path}[/cyan]")
        logger.success(f"JSON saved: [cyan]{json_path}[/cyan]")

        timer.stop()

        logger.header("Generation Summary")
        if usage_tracker.backend_stats:
            logger.table(
                "Usage by Backend",
                ["Backend", "Model", "Calls", "Attempts", "Input Tokens", "Output Tokens", "Cost"],
                usage_tracker.get_backend_summary(),
            )
            logger.print()

        summary_data = {
            "Status": "[green]Completed[/green]",
            "Duration": timer.elapsed_str,
            **usage_tracker.get_summary(),
            "Log File": str(logger.log_file),
        }
        logger.summary("Generation Complete", summary_data)

    finally:
        logger.close()


@app.command()
def preview(
    session_dir: Annotated[
        Path,
        typer.Argument(help="Session folder (contains session.json and frames/)"),
    ],
    output: Annotated[
        Optional[Path],
        typer.Option("-o", "--output", help="Where to write the preview text"),
    ] = None,
) -> None:
    """Write the prompts a generation run would send, without calling a backend."""
    from analyzer.step_segmenter import segment
    from pipeline.preview import write_prompt_preview
    from recorder.session import Session

    if not (session_dir / "session.json").exists():
        console.print(f"[red]✗[/red] Not a session folder: {session_dir}")
        raise typer.Exit(1)

    config = get_config()
    session = Session.load(session_dir)
    candidates = segment(session, timedelta(seconds=config.capture.keystroke_tail))
    if not candidates:
        console.print("[yellow]⚠[/yellow] No screenshots in this session; the preview lists no steps.")

    path = write_prompt_preview(session, candidates, output or session_dir / "prompt_preview.txt")
    console.print(f"[green]✓[/green] Preview written: [cyan]{path}[/cyan] ({len(candidates)} steps)")


@app.command()
def models() -> None:
    """List the models loaded in LM Studio."""
    from backends.lmstudio import LMStudioBackend

    config = get_config()

    async def _list():
        async with LMStudioBackend(base_url=config.lmstudio.base_url, timeout=5.0) as lmstudio:
            return await lmstudio.list_models()

    ids = asyncio.run(_list())
    if not ids:
        console.print(f"[yellow]No models found at {config.lmstudio.base_url} (is LM Studio running?)[/yellow]")
        return

    console.print(f"\n[bold]Models at {config.lmstudio.base_url}:[/bold]\n")
    for model_id in ids:
        console.print(f"  [cyan]{model_id}[/cyan]")


@app.command()
def show(
    guide: Annotated[
        Path,
        typer.Argument(help="Path to guide file (.md or .json)"),
    ],
) -> None:
    """Show a generated guide."""
    from analyzer.schema import Guide

    if not guide.exists():
        console.print(f"[red]✗[/red] Guide not found: {guide}")
        raise typer.Exit(1)

    g = Guide.load(guide)

    console.print(f"\n[bold blue]# {g.title}[/bold blue]")
    console.print(f"\n{g.summary}")
    console.print(f"[dim]Created:[/dim] {g.created_at}")

    if g.prerequisites:
        console.print("\n[bold]## Prerequisites[/bold]")
        for item in g.prerequisites:
            console.print(f"  - {item}")

    console.print(f"\n[bold]## Steps ({len(g.steps)})[/bold]\n")
    for step in g.steps:
        console.print(f"  [cyan]{step.step_number}.[/cyan] {step.instruction}")


def main() -> None:
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
