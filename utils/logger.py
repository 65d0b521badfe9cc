"""Logging utility with Rich console output and file logging."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme


# Custom theme for consistent styling
THEME = Theme({
    "info": "cyan",
    "success": "green",
    "warning": "yellow",
    "error": "red bold",
    "step": "blue",
    "api": "magenta",
    "dim": "dim",
})


class GuideLogger:
    """Logger that outputs to Rich console and optionally to a file."""

    def __init__(
        self,
        command: str,
        logs_dir: Path | str | None = "./logs",
        console: Console | None = None,
    ):
        """Initialize the logger.

        Args:
            command: The command name (e.g., 'record', 'generate') for log filename.
            logs_dir: Directory to store log files. None disables the log file.
            console: Optional Rich console instance.
        """
        self.command = command
        self.log_file: Path | None = None
        self._file_handle = None
        self._module_handler: logging.Handler | None = None

        if logs_dir is not None:
            self.logs_dir = Path(logs_dir)
            self.logs_dir.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            self.log_file = self.logs_dir / f"{command}_{timestamp}.log"
            self._file_handle = open(self.log_file, "w", encoding="utf-8")
            self._attach_module_logs()

        # Rich console for terminal output
        self.console = console or Console(theme=THEME)

    def _attach_module_logs(self) -> None:
        """Send records from `logging.getLogger(__name__)` loggers into the same file."""
        handler = logging.StreamHandler(self._file_handle)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "[%(asctime)s] %(levelname)s %(name)s: %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
        ))
        root = logging.getLogger()
        root.addHandler(handler)
        if root.level > logging.DEBUG:
            root.setLevel(logging.DEBUG)
        self._module_handler = handler

    def _write_to_file(self, level: str, message: str) -> None:
        """Write a log entry to the file."""
        if self._file_handle is None:
            return
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        self._file_handle.write(f"[{timestamp}] {level}: {message}\n")
        self._file_handle.flush()

    def info(self, message: str, **kwargs: Any) -> None:
        """Log an info message."""
        self.console.print(f"[info]ℹ[/info] {message}", **kwargs)
        self._write_to_file("INFO", message)

    def success(self, message: str, **kwargs: Any) -> None:
        """Log a success message."""
        self.console.print(f"[success]✓[/success] {message}", **kwargs)
        self._write_to_file("SUCCESS", message)

    def warning(self, message: str, **kwargs: Any) -> None:
        """Log a warning message."""
        self.console.print(f"[warning]⚠[/warning] {message}", **kwargs)
        self._write_to_file("WARNING", message)

    def error(self, message: str, **kwargs: Any) -> None:
        """Log an error message."""
        self.console.print(f"[error]✗[/error] {message}", **kwargs)
        self._write_to_file("ERROR", message)

    def step(self, message: str, **kwargs: Any) -> None:
        """Log a step/progress message."""
        self.console.print(f"[step]→[/step] {message}", **kwargs)
        self._write_to_file("STEP", message)

    def api(
        self,
        backend: str,
        input_tokens: int,
        output_tokens: int,
        attempts: int = 1,
        **kwargs: Any,
    ) -> None:
        """Log one backend call's token usage and attempt count."""
        message = f"{backend}: {input_tokens:,} in, {output_tokens:,} out"
        if attempts > 1:
            message += f" ({attempts} attempts)"
        self.console.print(f"[api]⚡[/api] {message}", **kwargs)
        self._write_to_file("API", message)

    def retry(self, reason: str, delay: float, attempt: int, max_attempts: int) -> None:
        """Log a retry wait."""
        message = f"{reason}, retrying in {delay:.1f}s (attempt {attempt}/{max_attempts})"
        self.console.print(f"[warning]↻[/warning] {message}")
        self._write_to_file("RETRY", message)

    def header(self, title: str, **kwargs: Any) -> None:
        """Print a section header."""
        self.console.print()
        self.console.rule(f"[bold]{title}[/bold]", **kwargs)
        self.console.print()
        self._write_to_file("HEADER", title)

    def summary(
        self,
        title: str,
        data: dict[str, str],
        style: str = "green",
    ) -> None:
        """Print a summary panel with key-value data."""
        table = Table(show_header=False, box=None, padding=(0, 2))
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            table.add_row(key, value)

        panel = Panel(table, title=f"[bold]{title}[/bold]", border_style=style)
        self.console.print(panel)

        self._write_to_file("SUMMARY", title)
        for key, value in data.items():
            self._write_to_file("SUMMARY", f"  {key}: {value}")

    def table(
        self,
        title: str,
        columns: list[str],
        rows: list[list[str]],
        **kwargs: Any,
    ) -> None:
        """Print a table."""
        table = Table(title=title, **kwargs)
        for col in columns:
            table.add_column(col)
        for row in rows:
            table.add_row(*row)

        self.console.print(table)

        self._write_to_file("TABLE", title)
        for row in rows:
            self._write_to_file("TABLE", "  " + " | ".join(row))

    def print(self, *args: Any, **kwargs: Any) -> None:
        """Direct print to console."""
        self.console.print(*args, **kwargs)
        if args:
            text = " ".join(str(a) for a in args)
            self._write_to_file("PRINT", text)

    def close(self) -> None:
        """Close the log file."""
        if self._module_handler is not None:
            logging.getLogger().removeHandler(self._module_handler)
            self._module_handler = None
        if self._file_handle:
            self._file_handle.close()
            self._file_handle = None

    def __enter__(self) -> "GuideLogger":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

