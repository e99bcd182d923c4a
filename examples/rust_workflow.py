# rust_workflow.py
# The same workflow as examples/rust/.github/workflows/rust.yml, in Python.
from __future__ import annotations

from branchci import checkout, job, on_pull_request, on_push, wf
from branchci.step_workflows.build import build_step, test_step


def workflow():
    return wf(
        "Rust",
        job(
            "build",
            checkout("v3"),
            build_step("cargo"),   # cargo build --verbose
            test_step("cargo"),    # cargo test --verbose
            runs_on="ubuntu-latest",
        ),
        on=[
            on_push("master", "dev"),
            on_pull_request("master", "dev"),
        ],
        env={"CARGO_TERM_COLOR": "always"},
    )
