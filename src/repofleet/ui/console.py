"""Console output formatting utilities for repofleet."""

from __future__ import annotations

import sys
import threading
from typing import Dict, List, Optional

from ..model import Event, EventCode, EventLevel


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, quiet: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            quiet: If True, suppress INFO events (warnings and errors still print)
        """
        self.debug = debug
        self.quiet = quiet
        self._lock = threading.Lock()

    def _emit(self, line: str, err: bool = False) -> None:
        with self._lock:
            print(line, file=sys.stderr if err else sys.stdout)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._emit(f"\n{title}\n{'-' * len(title)}")

    def print_run_started(
        self,
        roots: List[str],
        workflow: str,
        step_count: int,
        repository_count: int,
        dry_run: bool = False,
    ) -> None:
        """Print run start information."""
        lines = [
            "\nRUN STARTED" + (" (dry run)" if dry_run else ""),
            f"Roots: {', '.join(roots)}",
            f"Workflow: {workflow}",
            f"Steps: {step_count}",
            f"Repositories: {repository_count}",
            "",
        ]
        self._emit("\n".join(lines))

    def print_plan_stage(self, index: int, names: List[str]) -> None:
        self._emit(f"  stage {index}: {', '.join(names)}")

    def print_event(self, event: Event) -> None:
        if self.quiet and event.level == EventLevel.INFO:
            return
        if event.code == EventCode.WORKFLOW_STEP_SUMMARY and not self.debug:
            return
        self._emit(format_event(event), err=event.level == EventLevel.ERROR)

    def print_results(self, results: Dict[str, Dict[str, str]]) -> None:
        """Print the final per-repository, per-step outcome table."""
        self._emit("\n" + "=" * 40 + "\nRESULTS\n" + "=" * 40)
        for repository, steps in results.items():
            self._emit(f"  {repository}")
            for step, label in steps.items():
                self._emit(f"    {step}: {label.upper() if label != 'ok' else 'SUCCESS'}")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {detail}" for detail in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._emit("\n".join(lines), err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._emit(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._emit(message)

    def print_raw(self, text: str) -> None:
        """Print preformatted output such as CSV, unchanged."""
        self._emit(text)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._emit(f"[DEBUG] {message}", err=True)


def format_event(event: Event) -> str:
    """`LEVEL CODE repo (path) message`, omitting the parts an event lacks."""
    parts = [event.level.value, event.code]
    if event.repository_identifier:
        parts.append(event.repository_identifier)
    if event.repository_path:
        parts.append(f"({event.repository_path})")
    if event.message:
        parts.append(event.message)
    return " ".join(parts)


class ConsoleReporter:
    """Reporter that prints every event through the global Console."""

    def __init__(self, console: Optional[Console] = None):
        self._console = console

    @property
    def console(self) -> Console:
        return self._console or get_console()

    def report(self, event: Event) -> None:
        self.console.print_event(event)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
