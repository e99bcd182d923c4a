# loader.py
"""
Workflow loading.

Two sources are accepted:
  - YAML workflow files in the hosted CI dialect (.github/workflows/*.yml)
  - Python files defining workflow() -> Workflow or WORKFLOW = Workflow(...)
"""
from __future__ import annotations

import runpy
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .model import EVENT_KINDS, Job, Step, TriggerRule, Workflow


class WorkflowConfigError(Exception):
    """Raised when a workflow definition is invalid."""
    pass


YAML_SUFFIXES = (".yml", ".yaml")
SHELLS = ("bash", "sh")


# ----------------------------------------------------------------------
# Discovery
# ----------------------------------------------------------------------

def discover_workflows(root: str | Path = ".") -> List[Path]:
    """
    Find workflow files under `root`.

    Looks for .github/workflows/*.yml|*.yaml and *_workflow.py at the root.
    """
    root = Path(root)
    found: List[Path] = []

    wf_dir = root / ".github" / "workflows"
    if wf_dir.is_dir():
        for suffix in YAML_SUFFIXES:
            found.extend(wf_dir.glob(f"*{suffix}"))

    found.extend(root.glob("*_workflow.py"))
    return sorted(found)


def load_workflow(path: str | Path) -> Workflow:
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")

    if wf_path.suffix in YAML_SUFFIXES:
        return parse_workflow_yaml(wf_path.read_text(encoding="utf-8"), source=str(wf_path))
    if wf_path.suffix == ".py":
        return _load_python_workflow(wf_path)
    raise WorkflowConfigError(
        f"Workflow must be a .yml, .yaml or .py file, got: {wf_path.name}"
    )


def _load_python_workflow(wf_path: Path) -> Workflow:
    module_name = f"branchci_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    wf = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        wf = globals_dict["workflow"]()
    elif "WORKFLOW" in globals_dict:
        wf = globals_dict["WORKFLOW"]

    if not isinstance(wf, Workflow):
        raise WorkflowConfigError(
            f"{wf_path.name} must define workflow() -> Workflow or WORKFLOW = Workflow(...). "
            "Build one with `from branchci import wf, job, sh, on_push`."
        )
    if wf.source is None:
        wf.source = str(wf_path)
    _check_jobs(wf.jobs)
    return wf


# ----------------------------------------------------------------------
# YAML parsing
# ----------------------------------------------------------------------

def parse_workflow_yaml(text: str, source: str | None = None) -> Workflow:
    """Parse a YAML workflow document into a Workflow."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise WorkflowConfigError(f"Invalid YAML: {e}")

    if not data:
        raise WorkflowConfigError("Empty workflow")
    if not isinstance(data, dict):
        raise WorkflowConfigError("Workflow must be a mapping")

    name = data.get("name") or (Path(source).stem if source else "workflow")
    if not isinstance(name, str):
        raise WorkflowConfigError("Workflow 'name' must be a string")

    # YAML 1.1 reads a bare `on` key as boolean True
    if "on" in data:
        on = data["on"]
    elif True in data:
        on = data[True]
    else:
        raise WorkflowConfigError("Workflow must define 'on'")

    jobs_raw = data.get("jobs")
    if not isinstance(jobs_raw, dict) or not jobs_raw:
        raise WorkflowConfigError("Workflow must define at least one job under 'jobs'")

    jobs = [_parse_job(str(job_id), spec) for job_id, spec in jobs_raw.items()]
    _check_jobs(jobs)

    return Workflow(
        name=name,
        triggers=parse_triggers(on),
        jobs=jobs,
        env=_parse_env(data.get("env"), "env"),
        source=source,
    )


def parse_triggers(on: Any) -> List[TriggerRule]:
    """
    Parse the `on` section.

    Event kinds other than push and pull_request are ignored, so a workflow
    that only has a schedule never starts a local run.
    """
    if isinstance(on, str):
        on = [on]
    if isinstance(on, list):
        return [TriggerRule(event=kind) for kind in on if kind in EVENT_KINDS]
    if not isinstance(on, dict):
        raise WorkflowConfigError("'on' must be a string, list or mapping")

    rules: List[TriggerRule] = []
    for kind, spec in on.items():
        if kind not in EVENT_KINDS:
            continue
        if spec is None:
            rules.append(TriggerRule(event=kind))
            continue
        if not isinstance(spec, dict):
            raise WorkflowConfigError(f"on.{kind} must be a mapping")

        branches = _pattern_list(spec.get("branches"), f"on.{kind}.branches")
        ignore = _pattern_list(spec.get("branches-ignore"), f"on.{kind}.branches-ignore")
        if branches is not None and ignore is not None:
            raise WorkflowConfigError(
                f"on.{kind}: 'branches' and 'branches-ignore' cannot be used together"
            )
        types = _pattern_list(spec.get("types"), f"on.{kind}.types")
        rules.append(
            TriggerRule(event=kind, branches=branches, branches_ignore=ignore, types=types)
        )
    return rules


def _pattern_list(value: Any, where: str) -> Optional[Tuple[str, ...]]:
    if value is None:
        return None
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise WorkflowConfigError(f"{where} must be a string or a list of strings")
    return tuple(value)


def _parse_env(value: Any, where: str) -> Dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise WorkflowConfigError(f"{where} must be a mapping")
    env: Dict[str, str] = {}
    for k, v in value.items():
        if isinstance(v, (dict, list)):
            raise WorkflowConfigError(f"{where}.{k} must be a scalar")
        # YAML turns `true` into a bool; the environment wants the text form
        if isinstance(v, bool):
            v = "true" if v else "false"
        env[str(k)] = "" if v is None else str(v)
    return env


def _parse_timeout(value: Any, where: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise WorkflowConfigError(f"{where} must be a positive number")
    return float(value)


def _parse_job(job_id: str, spec: Any) -> Job:
    where = f"jobs.{job_id}"
    if not isinstance(spec, dict):
        raise WorkflowConfigError(f"{where} must be a mapping")

    steps_raw = spec.get("steps")
    if not isinstance(steps_raw, list) or not steps_raw:
        raise WorkflowConfigError(f"{where} must have at least one step")

    needs = spec.get("needs") or []
    if isinstance(needs, str):
        needs = [needs]

    runs_on = spec.get("runs-on")
    if isinstance(runs_on, list):
        runs_on = ", ".join(str(r) for r in runs_on)

    return Job(
        name=job_id,
        steps=[_parse_step(s, f"{where}.steps[{i}]") for i, s in enumerate(steps_raw)],
        env=_parse_env(spec.get("env"), f"{where}.env"),
        needs=[str(n) for n in needs],
        runs_on=str(runs_on) if runs_on is not None else None,
        timeout_minutes=_parse_timeout(spec.get("timeout-minutes"), f"{where}.timeout-minutes"),
    )


def _parse_step(spec: Any, where: str) -> Step:
    if not isinstance(spec, dict):
        raise WorkflowConfigError(f"{where} must be a mapping")

    run = spec.get("run")
    uses = spec.get("uses")
    if (run is None) == (uses is None):
        raise WorkflowConfigError(f"{where} must have exactly one of 'run' or 'uses'")
    if run is not None and (not isinstance(run, str) or not run.strip()):
        raise WorkflowConfigError(f"{where}.run must be a non-empty string")
    if uses is not None and not isinstance(uses, str):
        raise WorkflowConfigError(f"{where}.uses must be a string")

    name = spec.get("name")
    if name is None:
        name = f"Run {run.strip().splitlines()[0]}" if run is not None else f"Run {uses}"

    shell = spec.get("shell", "bash")
    if shell not in SHELLS:
        raise WorkflowConfigError(f"{where}.shell must be one of {SHELLS}, got {shell!r}")

    return Step(
        name=str(name),
        run=run,
        uses=uses,
        with_=_parse_env(spec.get("with"), f"{where}.with"),
        env=_parse_env(spec.get("env"), f"{where}.env"),
        cwd=spec.get("working-directory"),
        shell=shell,
        timeout_minutes=_parse_timeout(spec.get("timeout-minutes"), f"{where}.timeout-minutes"),
    )


def _check_jobs(jobs: List[Job]) -> None:
    """Job names are unique and `needs` only points backwards."""
    seen: set[str] = set()
    for j in jobs:
        if j.name in seen:
            raise WorkflowConfigError(f"Duplicate job name: {j.name}")
        if not j.steps:
            raise WorkflowConfigError(f"Job '{j.name}' has no steps")
        for dep in j.needs:
            if dep not in seen:
                raise WorkflowConfigError(
                    f"Job '{j.name}' needs '{dep}', which is not declared before it. "
                    f"Jobs run in declaration order."
                )
        seen.add(j.name)
