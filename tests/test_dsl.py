"""Tests for the Python workflow DSL."""

import pytest

from branchci.dsl import build, checkout, job, on_pull_request, on_push, sh, wf
from branchci.model import TriggerRule
from branchci.step_workflows import build as steps


def test_job_requires_steps():
    with pytest.raises(ValueError, match="at least one step"):
        job("empty")


def test_job_default_cwd_only_fills_missing():
    j = job("a", sh("one", "true"), sh("two", "true", cwd="other"), cwd="sub")
    assert [s.cwd for s in j.steps] == ["sub", "other"]


def test_job_steps_list_comes_first():
    j = job("a", sh("b", "true"), steps_list=[sh("a", "true")])
    assert [s.name for s in j.steps] == ["a", "b"]


def test_builder():
    j = (
        build("test")
        .checkout("v4")
        .define_step("Run tests", "cargo test --verbose")
        .with_env(RUST_BACKTRACE=1)
        .depends_on("build")
        .runs_on("ubuntu-latest")
        .timeout(30)
        .build()
    )
    assert [s.name for s in j.steps] == ["Checkout", "Run tests"]
    assert j.steps[0].uses == "actions/checkout@v4"
    assert j.env == {"RUST_BACKTRACE": "1"}
    assert j.needs == ["build"]
    assert j.runs_on == "ubuntu-latest"
    assert j.timeout_minutes == 30


def test_builder_requires_steps():
    with pytest.raises(ValueError, match="has no steps"):
        build("empty").build()


def test_trigger_helpers():
    assert on_push("master", "dev") == TriggerRule(event="push", branches=("master", "dev"))
    assert on_push() == TriggerRule(event="push")
    assert on_pull_request("main", types=["closed"]) == TriggerRule(
        event="pull_request", branches=("main",), types=("closed",)
    )


def test_wf_requires_jobs():
    with pytest.raises(ValueError, match="at least one job"):
        wf("empty")


def test_checkout_step():
    step = checkout()
    assert step.is_action
    assert step.uses == "actions/checkout@v3"
    assert step.display == "uses: actions/checkout@v3"


@pytest.mark.parametrize(
    "tool, build_cmd, test_cmd",
    [
        ("cargo", "cargo build --verbose", "cargo test --verbose"),
        ("go", "go build -v ./...", "go test -v ./..."),
        ("make", "make V=1", "make test V=1"),
    ],
)
def test_build_manager_steps(tool, build_cmd, test_cmd):
    assert steps.build_step(tool).run == build_cmd
    assert steps.test_step(tool).run == test_cmd


def test_build_manager_options():
    step = steps.build_step("cargo", verbose=False, args="--release", name="Release build")
    assert step.name == "Release build"
    assert step.run == "cargo build --release"
    assert steps.test_step().name == "Run tests"


def test_unknown_build_manager():
    with pytest.raises(ValueError, match="Unknown build manager"):
        steps.build_step("maven")
