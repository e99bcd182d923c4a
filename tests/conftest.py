from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from branchci.dsl import checkout, job, on_pull_request, on_push, sh, wf
from branchci.ui.console import Console

EXAMPLES = Path(__file__).resolve().parent.parent / "examples"


@pytest.fixture
def console():
    return Console(quiet=True)


@pytest.fixture
def rust_yaml_path() -> Path:
    return EXAMPLES / "rust" / ".github" / "workflows" / "rust.yml"


@pytest.fixture
def make_workflow():
    """Workflow shaped like the Rust one, with replaceable build/test commands."""

    def _make(build_cmd: str = "true", test_cmd: str = "true", use_checkout: bool = True):
        steps = [checkout("v3")] if use_checkout else []
        steps += [sh("Build", build_cmd), sh("Run tests", test_cmd)]
        return wf(
            "Rust",
            job("build", *steps, runs_on="ubuntu-latest"),
            on=[on_push("master", "dev"), on_pull_request("master", "dev")],
            env={"CARGO_TERM_COLOR": "always"},
        )

    return _make


def _git(args, cwd):
    subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True, text=True)


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """A small git repository on branch `dev` with one commit."""
    if shutil.which("git") is None:
        pytest.skip("git not installed")
    repo = tmp_path / "repo"
    repo.mkdir()
    _git(["init", "--quiet"], repo)
    _git(["checkout", "--quiet", "-b", "dev"], repo)
    _git(["config", "user.email", "ci@example.com"], repo)
    _git(["config", "user.name", "CI"], repo)
    (repo / "README.md").write_text("hello\n")
    _git(["add", "README.md"], repo)
    _git(["commit", "--quiet", "-m", "init"], repo)
    return repo
