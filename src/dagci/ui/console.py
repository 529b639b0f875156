"""Console output formatting utilities for dagci."""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from dagci.dag import DependencyGraph
    from dagci.report import RunReport


STATUS_MARKS = {
    "success": "✓",
    "failure": "✗",
    "skipped": "⏭",
    "cancelled": "⊘",
}


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, quiet: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces and job logs
            quiet: If True, suppress per-job progress lines
        """
        self.debug = debug
        self.quiet = quiet

    def print_header(self, title: str) -> None:
        """Print a section header."""
        print(f"\n{title}")
        print("-" * len(title))

    def print_run_started(
        self,
        workflow: str,
        run_id: str,
        job_count: int,
        instance_count: int,
        workers: int,
    ) -> None:
        """Print run start information."""
        print("\nRUN STARTED")
        print(f"Workflow: {workflow}")
        print(f"Run ID: {run_id}")
        print(f"Jobs: {job_count} ({instance_count} after matrix expansion)")
        print(f"Workers: {workers}")
        print()

    def print_plan(self, graph: "DependencyGraph") -> None:
        """Print the stages of a graph with their expanded instances."""
        for idx, level in enumerate(graph.levels()):
            self.print_header(f"Stage {idx + 1}")
            for name in level:
                job = graph.templates[name]
                needs = f" needs={list(job.needs)}" if job.needs else ""
                cond = str(graph.conditions[name])
                cond = f" if={cond}" if cond != "success()" else ""
                print(f"  {job.title}{needs}{cond}")
                instances = graph.instances_of(name)
                if len(instances) > 1 or instances[0] != name:
                    for inst in instances:
                        print(f"    - {inst}")

    def print_job_start(self, name: str) -> None:
        """Print job start message."""
        if not self.quiet:
            print(f"JOB STARTED: {name}")

    def print_job_finished(
        self,
        name: str,
        status: str,
        exit_code: Optional[int] = None,
        duration: Optional[float] = None,
    ) -> None:
        """Print job completion message."""
        if self.quiet:
            return
        mark = STATUS_MARKS.get(status, "?")
        line = f"{mark} {name}: {status}"
        if exit_code not in (None, 0):
            line += f" (exit={exit_code})"
        if duration is not None:
            line += f" [{duration:.1f}s]"
        print(line)

    def print_job_skipped(self, name: str, reason: str) -> None:
        """Print job skipped message."""
        if not self.quiet:
            print(f"⏭ {name}: skipped ({reason})")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
    ) -> None:
        """
        Print failure message.

        Args:
            name: Job instance id
            reason: Failure reason/error message
            exit_code: Optional exit code
            hint: Optional hint for user
        """
        print(f"JOB FAILED: {name}")
        if exit_code is not None:
            print(f"Exit code: {exit_code}")
        if hint:
            print(f"Hint: {hint}")
        if self.debug:
            print(f"Error details: {reason}")
        else:
            # Show first line of error for non-debug mode
            error_line = reason.split('\n')[0] if reason else "Unknown error"
            print(f"Error: {error_line}")

    def print_logs(self, name: str, logs: str) -> None:
        """Print captured job logs (debug mode only)."""
        if self.debug and logs:
            print(f"\nLogs for {name}:")
            print("=" * 60)
            print(logs.rstrip())
            print("=" * 60)

    def print_results(self, report: "RunReport") -> None:
        """Print final results summary."""
        print("\n" + "=" * 40)
        print("RESULTS")
        print("=" * 40)
        for job_id, job in report.jobs.items():
            status = job.status.value
            line = f"  {job_id}: {status.upper()}"
            if job.exit_code not in (None, 0):
                line += f" (exit={job.exit_code})"
            print(line)
        print("-" * 40)
        print(f"VERDICT: {report.verdict.value.upper()}")
        if report.cancel_reason:
            print(f"Cancelled: {report.cancel_reason}")
        if report.failures:
            print(f"Caused by: {', '.join(report.failures)}")

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
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        print(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            print(f"[DEBUG] {message}", file=sys.stderr)


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
