# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

PUSH = "push"
PULL_REQUEST = "pull_request"
EVENT_KINDS = (PUSH, PULL_REQUEST)

# activity types that start a pull_request run when a rule lists none
DEFAULT_PR_TYPES = ("opened", "synchronize", "reopened")


@dataclass(frozen=True)
class TriggerRule:
    """
    When a workflow starts: one event kind plus its branch filters.

    branches=None means any branch; an empty tuple matches nothing.
    """
    event: str
    branches: Optional[Tuple[str, ...]] = None
    branches_ignore: Optional[Tuple[str, ...]] = None
    types: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class Step:
    """A single command (or checkout action) inside a CI job."""
    name: str
    run: str | None = None
    uses: str | None = None
    with_: Dict[str, str] = field(default_factory=dict)
    env: Dict[str, str] = field(default_factory=dict)
    cwd: str | None = None
    shell: str = "bash"
    timeout_minutes: float | None = None

    @property
    def is_action(self) -> bool:
        return self.uses is not None

    @property
    def display(self) -> str:
        return self.run if self.run is not None else f"uses: {self.uses}"


@dataclass
class Job:
    """
    A CI job: an ordered list of steps sharing one working tree.

    `needs` may only name jobs declared before this one; jobs always run in
    declaration order.
    """
    name: str
    steps: list[Step]
    env: Dict[str, str] = field(default_factory=dict)
    needs: list[str] = field(default_factory=list)
    runs_on: str | None = None
    timeout_minutes: float | None = None


@dataclass
class Workflow:
    name: str
    triggers: list[TriggerRule]
    jobs: list[Job]
    env: Dict[str, str] = field(default_factory=dict)
    source: str | None = None

    @property
    def steps(self) -> List[Tuple[Job, Step]]:
        return [(j, s) for j in self.jobs for s in j.steps]


@dataclass(frozen=True)
class Event:
    """
    A repository event as seen by the trigger matcher.

    For pull requests `branch` is the target (base) branch.
    """
    kind: str
    branch: str
    sha: str | None = None
    ref_type: str = "branch"  # "branch" | "tag"
    action: str | None = None
    head_branch: str | None = None
    repository: str | None = None


SUCCESS = "success"
FAILURE = "failure"
SKIPPED = "skipped"


@dataclass
class StepResult:
    job: str
    name: str
    status: str
    exit_code: int | None = None
    duration: float = 0.0
    output_tail: str = ""
    error: str | None = None
    hint: str | None = None


@dataclass
class RunResult:
    workflow: str
    event: Event
    steps: list[StepResult] = field(default_factory=list)

    @property
    def status(self) -> str:
        if any(s.status == FAILURE for s in self.steps):
            return FAILURE
        return SUCCESS

    @property
    def ok(self) -> bool:
        return self.status == SUCCESS

    @property
    def executed(self) -> list[StepResult]:
        return [s for s in self.steps if s.status != SKIPPED]

    @property
    def failed_step(self) -> StepResult | None:
        for s in self.steps:
            if s.status == FAILURE:
                return s
        return None

    def to_dict(self) -> dict:
        return {
            "workflow": self.workflow,
            "event": {
                "kind": self.event.kind,
                "branch": self.event.branch,
                "sha": self.event.sha,
            },
            "status": self.status,
            "steps": [
                {
                    "job": s.job,
                    "name": s.name,
                    "status": s.status,
                    "exit_code": s.exit_code,
                    "duration": round(s.duration, 3),
                }
                for s in self.steps
            ],
        }
