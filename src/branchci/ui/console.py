"""Console output formatting utilities for branchci."""

from __future__ import annotations

import sys
from typing import Optional

from ..model import FAILURE, SKIPPED, Event, RunResult, StepResult, Workflow


def _describe(event: Event) -> str:
    if event.kind == "pull_request":
        head = f"{event.head_branch} -> " if event.head_branch else ""
        text = f"pull_request {head}{event.branch}"
    else:
        text = f"push {event.ref_type} {event.branch}" if event.ref_type != "branch" else f"push {event.branch}"
    if event.sha:
        text += f" @ {event.sha[:12]}"
    return text


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, quiet: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            quiet: If True, do not echo command output (failures still show the tail)
        """
        self.debug = debug
        self.quiet = quiet

    def print_header(self, title: str) -> None:
        """Print a section header."""
        print(f"\n{title}")
        print("-" * len(title))

    def print_run_started(self, workflow: str, event: Event, step_count: int) -> None:
        """Print run start information."""
        print("\nRUN STARTED")
        print(f"Workflow: {workflow}")
        print(f"Event: {_describe(event)}")
        print(f"Steps: {step_count}")
        print()

    def print_not_triggered(self, workflow: str, event: Event) -> None:
        print(f"\nNO RUN: {workflow} is not triggered by {_describe(event)}")

    def print_job_start(self, name: str, runs_on: Optional[str] = None) -> None:
        """Print job start message."""
        suffix = f" (runs-on {runs_on}, running locally)" if runs_on else ""
        print(f"\nJOB STARTED: {name}{suffix}")

    def print_step(self, name: str, display: str) -> None:
        """Print step start message."""
        print(f"STEP: {name}")
        if self.debug:
            print(f"  $ {display}")
        sys.stdout.flush()

    def print_output(self, line: str) -> None:
        """Echo one line of command output, untouched."""
        if not self.quiet:
            sys.stdout.write(line)
            sys.stdout.flush()

    def print_step_finished(self, result: StepResult) -> None:
        if result.status == FAILURE:
            self.print_failure(
                result.name,
                result.error or "",
                exit_code=result.exit_code,
                hint=result.hint,
                output_tail=result.output_tail if self.quiet else None,
            )
        else:
            print(f"STATUS: {result.status} ({result.duration:.1f}s)")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
        output_tail: Optional[str] = None,
    ) -> None:
        """
        Print failure message.

        Args:
            name: Step name
            reason: Failure reason/error message
            exit_code: Optional exit code
            hint: Optional hint for user
            output_tail: Last lines of the command output
        """
        print(f"STEP FAILED: {name}")
        if exit_code is not None:
            print(f"Exit code: {exit_code}")
        if output_tail:
            print("Output (tail):")
            for line in output_tail.rstrip("\n").splitlines():
                print(f"  {line}")
        if self.debug:
            print(f"Error details: {reason}")
        else:
            # first line only outside debug mode
            error_line = reason.split("\n")[0] if reason else ""
            if error_line:
                print(f"Error: {error_line}")
        if hint:
            print(f"Hint: {hint}")

    def print_results(self, result: RunResult) -> None:
        """Print final results summary."""
        print("\n" + "=" * 40)
        print(f"RESULT: {result.status.upper()}")
        print("=" * 40)
        for s in result.steps:
            if s.status == SKIPPED:
                print(f"  {s.job} / {s.name}: SKIPPED")
            else:
                code = f", exit {s.exit_code}" if s.exit_code is not None else ""
                print(f"  {s.job} / {s.name}: {s.status.upper()} ({s.duration:.1f}s{code})")

    def print_workflow(self, wf: Workflow) -> None:
        """Print a parsed workflow (used by `branchci show`)."""
        self.print_header(f"Workflow: {wf.name}")
        if wf.source:
            print(f"Source: {wf.source}")
        print("Triggers:")
        if not wf.triggers:
            print("  (none, never runs locally)")
        for rule in wf.triggers:
            branches = ", ".join(rule.branches) if rule.branches is not None else "any branch"
            line = f"  {rule.event}: {branches}"
            if rule.branches_ignore:
                line += f" (ignoring {', '.join(rule.branches_ignore)})"
            if rule.types:
                line += f" [types: {', '.join(rule.types)}]"
            print(line)
        if wf.env:
            print("Env:")
            for k, v in wf.env.items():
                print(f"  {k}={v}")
        for j in wf.jobs:
            print(f"Job: {j.name}" + (f" (runs-on {j.runs_on})" if j.runs_on else ""))
            for i, s in enumerate(j.steps, 1):
                print(f"  {i}. {s.name}: {s.display}")

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
