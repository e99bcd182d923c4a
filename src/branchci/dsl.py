# src/branchci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from .model import PULL_REQUEST, PUSH, Job, Step, TriggerRule, Workflow


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    cwd: str | None = None,
    env: Optional[Dict[str, str]] = None,
    timeout_minutes: float | None = None,
) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, cwd=cwd, env=env or {}, timeout_minutes=timeout_minutes)


def checkout(pin: str = "v3", *, name: str = "Checkout") -> Step:
    """The checkout action, pinned to a version."""
    return Step(name=name, uses=f"actions/checkout@{pin}")


# ---------------------------------------------------------------------
# Trigger helpers
# ---------------------------------------------------------------------

def _branches(branches: Iterable[str]) -> Optional[tuple[str, ...]]:
    branches = tuple(branches)
    return branches or None


def on_push(*branches: str, ignore: Iterable[str] = ()) -> TriggerRule:
    """on_push("master", "dev"); no branches means every branch."""
    return TriggerRule(event=PUSH, branches=_branches(branches), branches_ignore=_branches(ignore))


def on_pull_request(
    *branches: str,
    ignore: Iterable[str] = (),
    types: Iterable[str] = (),
) -> TriggerRule:
    """Branches here are target branches of the pull request."""
    return TriggerRule(
        event=PULL_REQUEST,
        branches=_branches(branches),
        branches_ignore=_branches(ignore),
        types=_branches(types),
    )


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    needs: Optional[List[str]] = None,
    env: Optional[Dict[str, str]] = None,
    runs_on: str | None = None,
    timeout_minutes: float | None = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Job:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    return Job(
        name=name,
        steps=steps_final,
        env=env or {},
        needs=needs or [],
        runs_on=runs_on,
        timeout_minutes=timeout_minutes,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._steps: list[Step] = []
        self._env: dict[str, str] = {}
        self._runs_on: str | None = None
        self._timeout_minutes: float | None = None

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None):
        self._steps.append(Step(name=name, run=run, cwd=cwd))
        return self

    def checkout(self, pin: str = "v3"):
        self._steps.append(checkout(pin))
        return self

    def with_env(self, **env):
        # force values to str, the environment only holds text
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def runs_on(self, label: str):
        self._runs_on = label
        return self

    def timeout(self, minutes: float):
        self._timeout_minutes = minutes
        return self

    def build(self) -> Job:
        if not self._steps:
            raise ValueError(f"Job '{self.name}' has no steps")
        return Job(
            name=self.name,
            steps=list(self._steps),
            env=dict(self._env),
            needs=list(self._needs),
            runs_on=self._runs_on,
            timeout_minutes=self._timeout_minutes,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(
    name: str,
    *jobs: Job,
    on: Iterable[TriggerRule] = (),
    env: Optional[Dict[str, str]] = None,
) -> Workflow:
    """
    Workflow definition helper. Use this name so you can define your own
    def workflow(): return wf(...).

    Users can write:
        from branchci import wf, job, sh, checkout, on_push, on_pull_request

        def workflow():
            return wf(
                "Rust",
                job("build", checkout(), sh("Build", "cargo build --verbose")),
                on=[on_push("master", "dev"), on_pull_request("master", "dev")],
                env={"CARGO_TERM_COLOR": "always"},
            )
    """
    if not jobs:
        raise ValueError(f"wf({name!r}) must have at least one job")
    return Workflow(name=name, triggers=list(on), jobs=list(jobs), env=dict(env or {}))


workflow = wf  # alias (avoid naming your function workflow if you use it)
