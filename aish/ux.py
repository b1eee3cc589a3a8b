"""
Console output for a command session.

- Human mode prints each phase as it happens (colored via rich, which honors NO_COLOR)
- JSON mode prints nothing until the end, then exactly one summary line
"""

from __future__ import annotations

import contextlib
import json
import sys
from typing import Any, Dict, Iterator, List, Optional, TextIO

from rich.console import Console
from rich.text import Text

from .models import CommandAnalysis, FailureAnalysis, FailureRecord
from .state import CommandContext, Phase


class Reporter:
    def __init__(
        self,
        verbose: bool = False,
        json_mode: bool = False,
        console: Optional[Console] = None,
    ) -> None:
        self.verbose = verbose
        self.json_mode = json_mode
        self.console = console or Console(highlight=False)

    # --- low level

    def _line(self, text: str, style: Optional[str] = None) -> None:
        if self.json_mode:
            return
        self.console.print(Text(text, style=style or ""), soft_wrap=True)

    @contextlib.contextmanager
    def status(self, message: str) -> Iterator[None]:
        """Spinner while waiting on the oracle; silent in JSON mode or when piped."""
        if self.json_mode or not self.console.is_terminal:
            yield
            return
        with self.console.status(message):
            yield

    # --- analysis phase

    def analysis(self, analysis: CommandAnalysis) -> None:
        self._line(analysis.command, "cyan")
        if self.verbose:
            self._line(f"\n{analysis.explanation}", "bright_black")
            if analysis.requires_external_packages and analysis.external_packages:
                packages = ", ".join(sorted(analysis.external_packages))
                self._line(f"\nRequires external packages: {packages}", "yellow")
        if analysis.is_dangerous:
            self._line("[BLOCKED] This command is potentially dangerous and cannot be executed.", "red")

    def refining(self, text: str) -> None:
        self._line(f'Refining command based on: "{text}"', "bright_black")

    # --- execution / failure phase

    def interrupted(self) -> None:
        self._line("\nCommand interrupted", "yellow")

    def timed_out(self) -> None:
        self._line("timed out", "red")

    def sudo_auth_failed(self) -> None:
        self._line("\nAuthentication failed. Incorrect sudo password.", "red")

    def sudo_retry(self) -> None:
        self._line("Try again with the correct password.", "bright_black")

    def sudo_exhausted(self, attempts: int) -> None:
        self._line(f"sudo: {attempts} incorrect password attempts", "red")

    def permission_error(self) -> None:
        self._line("\nPermission denied. Attempting analysis for alternative (e.g., with sudo)", "red")

    def failure_analysis(self, analysis: FailureAnalysis) -> None:
        self._line(analysis.explanation, "bright_black")
        if self.verbose and analysis.solution != analysis.explanation:
            self._line(f"\nSolution: {analysis.solution}", "bright_black")
        if analysis.alternative_command:
            self._line(analysis.alternative_command, "cyan")

    def max_tries(self, max_tries: int) -> None:
        self._line(f"Max tries ({max_tries}) reached.", "red")

    def no_alternative(self) -> None:
        self._line("\nNo alternative command suggested. You can modify the request or abort.", "bright_black")

    def analysis_error(self, exc: BaseException) -> None:
        self._line("(Unable to analyze failure)", "bright_black")
        self._line(f"Analysis error: {exc}", "red")

    def error(self, exc: BaseException) -> None:
        self._line(f"❌ Error: {exc or 'Unknown error occurred'}", "red")


def _failure_entry(record: FailureRecord) -> Dict[str, Any]:
    entry: Dict[str, Any] = {"command": record.command, "exitCode": record.exit_code}
    if record.explanation is not None:
        entry["explanation"] = record.explanation
    if record.solution is not None:
        entry["solution"] = record.solution
    if record.alternative_command is not None:
        entry["alternativeCommand"] = record.alternative_command
    entry["stdout"] = record.stdout
    entry["stderr"] = record.stderr
    return entry


def build_summary(context: CommandContext) -> Dict[str, Any]:
    """Terminal-state summary; depends only on the final context."""
    analysis = context.get("current_analysis")
    last_error = context.get("last_error")
    failures: List[FailureRecord] = list(context.get("failures") or [])
    success = context.get("phase") == Phase.SUCCESS

    final_command = analysis.command if analysis and analysis.command else None
    if final_command is None and last_error is not None:
        final_command = last_error.command

    return {
        "status": Phase.SUCCESS if success else Phase.ABORTED,
        "success": success,
        "abortedReason": None if success else context.get("aborted_reason"),
        "originalQuery": context.get("original_query", ""),
        "finalQuery": context.get("query", ""),
        "finalCommand": final_command,
        "explanation": analysis.explanation if analysis else None,
        "attempts": context.get("attempt_count", 0),
        "failures": [_failure_entry(f) for f in failures],
        "alternativesTried": sum(1 for f in failures if f.alternative_command),
    }


def render_summary(context: CommandContext) -> str:
    return json.dumps(build_summary(context), ensure_ascii=False, separators=(",", ":"))


def emit_summary(context: CommandContext, stream: Optional[TextIO] = None) -> None:
    out = stream or sys.stdout
    out.write(render_summary(context) + "\n")
    out.flush()


def exit_code_for(context: CommandContext) -> int:
    """Process exit status for a finished session.

    0 on success; otherwise the last failed run's exit code (124 timeout,
    130 interrupt, ...), or 1 when nothing was executed.
    """
    if context.get("phase") == Phase.SUCCESS:
        return 0
    last_error = context.get("last_error")
    if last_error is not None and last_error.exit_code != 0:
        return last_error.exit_code
    return 1


__all__ = [
    "Reporter",
    "build_summary",
    "render_summary",
    "emit_summary",
    "exit_code_for",
]
