from .dsl import job, sh, checkout, on_push, on_pull_request, wf, workflow, JobBuilder, build
from .loader import load_workflow, WorkflowConfigError
from .model import Event, Job, RunResult, Step, TriggerRule, Workflow
from .runner import run_workflow, trigger
from .triggers import should_run

__all__ = [
    "job", "sh", "checkout", "on_push", "on_pull_request", "wf", "workflow", "JobBuilder", "build",
    "load_workflow", "WorkflowConfigError",
    "Event", "Job", "RunResult", "Step", "TriggerRule", "Workflow",
    "run_workflow", "trigger", "should_run",
]
