# runner.py
from __future__ import annotations

import os
import re
import signal
import subprocess
import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, Optional

from .git_facts import git
from .model import FAILURE, SKIPPED, SUCCESS, Event, Job, RunResult, Step, StepResult, Workflow
from .provision import Workspace, is_checkout, provision, run_checkout
from .triggers import should_run
from .ui.console import Console, get_console


# local push / pull request ---> trigger match ---> provision ---> steps, fail-fast


@dataclass
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - debugging without full tracebacks
    """
    kind: str
    job: str
    step: str | None
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}", f"job={self.job}"]
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


@dataclass
class StepFailure(Exception):
    job: str
    step: str
    cmd: str
    exit_code: int | None
    hint: str | None = None
    output_tail: str = ""
    timed_out: bool = False

    def __str__(self) -> str:
        if self.timed_out:
            return f"[{self.job}] step '{self.step}' timed out: {self.cmd}"
        return f"[{self.job}] step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"


TOOL_HINTS = {
    "cargo": "Install the Rust toolchain (https://rustup.rs) or fix PATH.",
    "rustc": "Install the Rust toolchain (https://rustup.rs) or fix PATH.",
    "go": "Install Go or fix PATH.",
    "npm": "Install Node.js (includes npm) or fix PATH.",
    "node": "Install Node.js or fix PATH.",
    "make": "Install make (e.g., build-essential) or fix PATH.",
    "gradle": "Install Gradle or fix PATH.",
    "pytest": "Install pytest (e.g., pip install pytest).",
    "git": "Install Git or fix PATH.",
}

# shell -> argv prefix; the command string is appended
SHELL_ARGV = {
    "bash": ["bash", "--noprofile", "--norc", "-eo", "pipefail", "-c"],
    "sh": ["sh", "-e", "-c"],
}

TAIL_LINES = 40
COMMAND_NOT_FOUND = 127


# ----------------------------------------------------------------------
# Environment
# ----------------------------------------------------------------------

def run_env(workflow: Workflow, event: Event, workspace: Path) -> Dict[str, str]:
    """Variables every step of the run sees: context first, then workflow env."""
    env = {
        "CI": "true",
        "BRANCHCI": "true",
        "BRANCHCI_WORKFLOW": workflow.name,
        "BRANCHCI_EVENT": event.kind,
        "BRANCHCI_BRANCH": event.branch,
        "BRANCHCI_WORKSPACE": str(workspace),
    }
    if event.sha:
        env["BRANCHCI_SHA"] = event.sha
    env.update(workflow.env)
    return env


def step_env(base: Dict[str, str], job: Job, step: Step) -> Dict[str, str]:
    env = os.environ.copy()
    env.update(base)
    env.update(job.env)
    env.update(step.env)
    return env


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

_NOT_FOUND = re.compile(r"([^\s:]+): (?:command )?not found")


def _hint_for(cmd: str, output: str = "") -> str | None:
    """Installation hint for a command that exited 127."""
    found = _NOT_FOUND.findall(output)
    if found:
        tool = found[-1]
    else:
        words = cmd.strip().split(None, 1)
        tool = words[0] if words else ""
    tool = os.path.basename(tool)
    if tool in TOOL_HINTS:
        return TOOL_HINTS[tool]
    if tool:
        return f"Install {tool} or fix PATH."
    return None


def _raise_interrupt(signum, frame) -> None:
    raise KeyboardInterrupt(f"received signal {signum}")


@contextmanager
def sigterm_as_interrupt() -> Iterator[None]:
    """
    Deliver SIGTERM as KeyboardInterrupt while the block runs.

    Steps run in their own session and never see the runner's signals, so
    the interrupt path in `_execute` is what stops them. Outside the main
    thread signal handlers cannot be installed and the block runs unchanged.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return
    previous = signal.signal(signal.SIGTERM, _raise_interrupt)
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous if previous is not None else signal.SIG_DFL)


def _kill(proc: subprocess.Popen) -> None:
    # the step runs in its own session; take its children down with it
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


def _execute(
    job: Job,
    step: Step,
    cwd: Path,
    env: Dict[str, str],
    console: Console,
    timeout: float | None,
) -> None:
    """
    Run one shell step, streaming its output to the console.

    Raises:
        StepFailure: non-zero exit or timeout
    """
    argv = SHELL_ARGV[step.shell] + [step.run or ""]
    tail: deque[str] = deque(maxlen=TAIL_LINES)

    try:
        proc = subprocess.Popen(
            argv,
            cwd=str(cwd),
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
            bufsize=1,
            start_new_session=True,
        )
    except FileNotFoundError:
        raise CIError(
            kind="shell_unavailable",
            job=job.name,
            step=step.name,
            message=f"{argv[0]} is not available",
            details={"shell": step.shell},
        )

    timed_out = threading.Event()
    timer = None
    if timeout is not None:
        def _expire() -> None:
            timed_out.set()
            _kill(proc)
        timer = threading.Timer(timeout, _expire)
        timer.daemon = True
        timer.start()

    try:
        assert proc.stdout is not None
        for line in proc.stdout:
            tail.append(line)
            console.print_output(line)
        code = proc.wait()
    except BaseException:
        # cancellation: stop the command and let the interrupt propagate
        _kill(proc)
        proc.wait()
        raise
    finally:
        if timer is not None:
            timer.cancel()
        if proc.stdout is not None:
            proc.stdout.close()

    if timed_out.is_set() and code != 0:
        raise StepFailure(
            job=job.name,
            step=step.name,
            cmd=step.run or "",
            exit_code=None,
            output_tail="".join(tail),
            timed_out=True,
        )
    if code != 0:
        raise StepFailure(
            job=job.name,
            step=step.name,
            cmd=step.run or "",
            exit_code=code,
            hint=_hint_for(step.run or "", "".join(tail)) if code == COMMAND_NOT_FOUND else None,
            output_tail="".join(tail),
        )


def _run_step(
    job: Job,
    step: Step,
    workspace: Workspace,
    base_env: Dict[str, str],
    console: Console,
    timeout: float | None,
) -> None:
    if step.is_action:
        if not is_checkout(step):
            raise CIError(
                kind="unsupported_action",
                job=job.name,
                step=step.name,
                message=f"action '{step.uses}' cannot run locally",
                details={"supported": "actions/checkout"},
            )
        try:
            console.print_info(run_checkout(workspace, step))
        except RuntimeError as e:
            raise CIError(kind="checkout_failed", job=job.name, step=step.name, message=str(e))
        return

    cwd = (workspace.path / (step.cwd or ".")).resolve()
    if not cwd.is_dir():
        raise CIError(
            kind="cwd_not_found",
            job=job.name,
            step=step.name,
            message=f"working directory not found: {cwd}",
        )
    _execute(job, step, cwd, step_env(base_env, job, step), console, timeout)


def _has_local_changes(repo_root: str | Path) -> bool:
    if not git.is_work_tree(repo_root):
        return False
    try:
        return git.is_dirty(repo_root)
    except subprocess.CalledProcessError:
        return False


def _step_timeout(step: Step, job_deadline: float | None) -> float | None:
    limits = []
    if step.timeout_minutes is not None:
        limits.append(step.timeout_minutes * 60)
    if job_deadline is not None:
        limits.append(max(0.0, job_deadline - time.monotonic()))
    return min(limits) if limits else None


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def run_workflow(
    workflow: Workflow,
    event: Event,
    workspace: Workspace | str | Path,
    console: Optional[Console] = None,
) -> RunResult:
    """
    Execute every step of every job in declaration order.

    The first failing step fails the run; every step after it is recorded as
    skipped and never started.
    """
    console = console or get_console()
    if not isinstance(workspace, Workspace):
        path = Path(workspace).resolve()
        workspace = Workspace(path=path, isolated=False, source=str(path), ref=event.sha)

    result = RunResult(workflow=workflow.name, event=event)
    base_env = run_env(workflow, event, workspace.path)
    failed = False

    console.print_run_started(workflow.name, event, len(workflow.steps))

    for job in workflow.jobs:
        if failed:
            result.steps.extend(StepResult(job=job.name, name=s.name, status=SKIPPED) for s in job.steps)
            continue

        console.print_job_start(job.name, job.runs_on)
        job_deadline = (
            time.monotonic() + job.timeout_minutes * 60 if job.timeout_minutes is not None else None
        )

        for step in job.steps:
            if failed:
                result.steps.append(StepResult(job=job.name, name=step.name, status=SKIPPED))
                continue

            console.print_step(step.name, step.display)
            started = time.monotonic()
            try:
                _run_step(job, step, workspace, base_env, console, _step_timeout(step, job_deadline))
                sr = StepResult(job=job.name, name=step.name, status=SUCCESS, exit_code=None if step.is_action else 0)
            except StepFailure as e:
                failed = True
                sr = StepResult(
                    job=job.name,
                    name=step.name,
                    status=FAILURE,
                    exit_code=e.exit_code,
                    output_tail=e.output_tail,
                    error=str(e),
                    hint=e.hint,
                )
            except CIError as e:
                failed = True
                sr = StepResult(
                    job=job.name,
                    name=step.name,
                    status=FAILURE,
                    error=str(e),
                    hint=e.details.get("hint"),
                )
            sr.duration = time.monotonic() - started
            result.steps.append(sr)
            console.print_step_finished(sr)

    return result


def trigger(
    workflow: Workflow,
    event: Event,
    *,
    repo_root: str | Path = ".",
    isolated: bool = False,
    work_dir: str | Path | None = None,
    source: str | None = None,
    force: bool = False,
    console: Optional[Console] = None,
) -> Optional[RunResult]:
    """
    Match the event against the workflow's triggers and, on a match, run it.

    Returns None when no trigger matches; no run is created and nothing is
    provisioned in that case.
    """
    console = console or get_console()
    if not force and not should_run(workflow, event):
        console.print_not_triggered(workflow.name, event)
        return None

    if isolated and source is None and _has_local_changes(repo_root):
        console.print_info(
            f"Note: uncommitted changes in {Path(repo_root).resolve()} are not part of an isolated run"
        )

    with provision(repo_root, event, isolated=isolated, work_dir=work_dir, source=source) as ws:
        console.print_debug(f"workspace: {ws.path} (isolated={ws.isolated})")
        result = run_workflow(workflow, event, ws, console)

    console.print_results(result)
    return result
