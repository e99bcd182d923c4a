# cli.py
from __future__ import annotations

import sys
from pathlib import Path

import click

from branchci.loader import WorkflowConfigError, discover_workflows, load_workflow
from branchci.model import EVENT_KINDS, PUSH, Event, Workflow
from branchci.runner import sigterm_as_interrupt, trigger
from branchci.triggers import TriggerError, local_event, matching_rule
from branchci.ui.console import Console, get_console, set_console

EXIT_NOT_TRIGGERED = 3


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument or default.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Specify a different path:\n  branchci run --workflow .github/workflows/ci.yml",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = discover_workflows(".")

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=[
                "Looked for:",
                "  .github/workflows/*.yml",
                "  .github/workflows/*.yaml",
                "  *_workflow.py",
            ],
            suggestion="Specify a workflow explicitly:\n  branchci run --workflow my_workflow.py",
        )
        sys.exit(1)

    if len(workflow_files) > 1:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[file_list],
            suggestion=f"Specify a workflow explicitly:\n  branchci run --workflow {workflow_files[0]}",
        )
        sys.exit(1)

    return workflow_files[0]


def _load(workflow_arg: str | None) -> Workflow:
    console = get_console()
    workflow_path = discover_workflow(workflow_arg)
    try:
        return load_workflow(workflow_path)
    except WorkflowConfigError as e:
        console.print_error(
            "Invalid workflow",
            f"Could not load workflow from {workflow_path}",
            details=[str(e)],
        )
        sys.exit(1)


def _event(kind: str, branch: str | None, sha: str | None) -> Event:
    try:
        return local_event(kind, branch=branch, sha=sha)
    except TriggerError as e:
        get_console().print_error("Could not build event", str(e))
        sys.exit(1)


workflow_option = click.option(
    "--workflow",
    default=None,
    envvar="BRANCHCI_WORKFLOW",
    help="Workflow file (.yml/.yaml/.py). Defaults to the only one under .github/workflows or *_workflow.py",
)
event_options = [
    click.option(
        "--event",
        "kind",
        type=click.Choice(EVENT_KINDS),
        default=PUSH,
        show_default=True,
        help="Event kind to simulate",
    ),
    click.option(
        "--branch",
        default=None,
        help="Pushed branch (push) or target branch (pull_request). Defaults to the current branch",
    ),
    click.option("--sha", default=None, help="Commit to run against. Defaults to HEAD"),
]


def with_event_options(fn):
    for opt in reversed(event_options):
        fn = opt(fn)
    return fn


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.option("--quiet", is_flag=True, default=False, help="Do not echo command output")
@click.pass_context
def cli(ctx, debug, quiet):
    """branchci: branch-filtered, fail-fast CI runner."""
    set_console(Console(debug=debug, quiet=quiet))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@workflow_option
@with_event_options
@click.option(
    "--isolated/--in-place",
    default=False,
    show_default=True,
    help="Run in a fresh clone at the commit instead of the current working tree",
)
@click.option("--work-dir", default=None, help="Parent directory for isolated clones")
@click.option("--force", is_flag=True, default=False, help="Run even if no trigger matches")
@click.pass_context
def run(ctx, workflow, kind, branch, sha, isolated, work_dir, force):
    """Match triggers for an event and run the workflow."""
    console = get_console()
    wf = _load(workflow)
    event = _event(kind, branch, sha)

    try:
        with sigterm_as_interrupt():
            result = trigger(
                wf,
                event,
                repo_root=".",
                isolated=isolated,
                work_dir=work_dir,
                force=force,
                console=console,
            )
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    if result is not None and not result.ok:
        sys.exit(1)


@cli.command()
@workflow_option
@with_event_options
def check(workflow, kind, branch, sha):
    """Report whether an event would start a run (exit 0 yes, 3 no)."""
    console = get_console()
    wf = _load(workflow)
    event = _event(kind, branch, sha)

    rule = matching_rule(wf, event)
    if rule is None:
        console.print_info(f"{wf.name}: not triggered by {event.kind} on '{event.branch}'")
        sys.exit(EXIT_NOT_TRIGGERED)

    patterns = ", ".join(rule.branches) if rule.branches is not None else "any branch"
    console.print_info(f"{wf.name}: triggered by {event.kind} on '{event.branch}' (matches {patterns})")


@cli.command()
@workflow_option
def show(workflow):
    """Print the parsed workflow."""
    get_console().print_workflow(_load(workflow))


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, type=int, show_default=True)
@click.pass_context
def serve(ctx, host, port):
    """Start the webhook receiver (settings from BRANCHCI_* environment variables)."""
    import logging

    import uvicorn

    from branchci.server import create_app

    console = get_console()
    logging.basicConfig(
        level=logging.DEBUG if ctx.obj.get("debug", False) else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        app = create_app()
    except (FileNotFoundError, WorkflowConfigError) as e:
        console.print_error("Could not start webhook receiver", str(e))
        sys.exit(1)
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    cli()
