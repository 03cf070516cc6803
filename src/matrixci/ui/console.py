"""Console output formatting utilities for matrixci."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, Iterable, Optional

if TYPE_CHECKING:
    from matrixci.model import JobInstance, StepResult
    from matrixci.report import RunReport


class Console:
    """
    Centralized console output formatting.

    Instances run on worker threads, so every write goes through one lock
    to keep multi-line blocks together.
    """

    def __init__(self, debug: bool = False, quiet: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            quiet: If True, suppress per-step progress lines
        """
        self.debug = debug
        self.quiet = quiet
        self._lock = threading.Lock()

    def _out(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}", "-" * len(title))

    def print_run_started(
        self,
        repository: str,
        workflow: str,
        event: str,
        instance_count: int,
    ) -> None:
        """Print run start information."""
        self._out(
            "\nRUN STARTED",
            f"Repository: {repository}",
            f"Workflow: {workflow}",
            f"Event: {event}",
            f"Instances: {instance_count}",
            "",
        )

    def print_instance_start(self, instance: "JobInstance") -> None:
        if self.quiet:
            return
        self._out(f"[{instance.instance_id}] JOB STARTED: {instance.display_name} (runs-on: {instance.runs_on})")

    def print_step(self, instance_id: str, name: str) -> None:
        """Print step start message."""
        if self.quiet:
            return
        self._out(f"[{instance_id}] STEP: {name}")

    def print_step_failure(
        self,
        instance_id: str,
        result: "StepResult",
        hint: Optional[str] = None,
    ) -> None:
        """
        Print a failed step.

        In debug mode the captured output is shown in full, otherwise only
        its last line.
        """
        lines = [f"[{instance_id}] STEP FAILED: {result.name}"]
        if result.exit_code is not None:
            lines.append(f"[{instance_id}] Exit code: {result.exit_code}")
        if result.error:
            lines.append(f"[{instance_id}] Error: {result.error}")
        if hint:
            lines.append(f"[{instance_id}] Hint: {hint}")
        output = result.output.rstrip()
        if output:
            if self.debug:
                lines.extend(f"[{instance_id}]   {l}" for l in output.splitlines())
            else:
                lines.append(f"[{instance_id}]   {output.splitlines()[-1]}")
        self._out(*lines)

    def print_instance_finished(self, instance: "JobInstance") -> None:
        """Print the terminal status of an instance."""
        status = instance.status.value
        line = f"[{instance.instance_id}] STATUS: {status}"
        if instance.reason:
            line += f" ({instance.reason})"
        self._out(line)

    def print_plan(self, workflow: str, instances: Iterable["JobInstance"]) -> None:
        """Print the expanded instances of one workflow."""
        lines = [f"\nPLAN: {workflow}"]
        for inst in instances:
            needs = f" needs: {', '.join(inst.job.needs)}" if inst.job.needs else ""
            lines.append(f"  {inst.instance_id} (runs-on: {inst.runs_on}){needs}")
        self._out(*lines)

    def print_plan_skipped(self, workflow: str, reason: str) -> None:
        self._out(f"  {workflow} (skipped: {reason})")

    def print_results(self, report: "RunReport") -> None:
        """Print final results summary."""
        lines = ["\n" + "=" * 40, f"RESULTS: {report.workflow}", "=" * 40]
        for rec in report.instances:
            status_display = rec.status.value.upper()
            extra = f" ({rec.reason})" if rec.reason else ""
            lines.append(f"  {rec.instance_id}: {status_display}{extra}")
        lines.append(f"VERDICT: {report.verdict.value.upper()}")
        self._out(*lines)

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
        lines = [f"\nERROR: {title}", f"{message}"]
        if details:
            lines.extend(f"  {detail}" for detail in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_warning(self, message: str) -> None:
        self._out(f"WARNING: {message}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


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
