"""Tests for workspace provisioning and the checkout action."""

import subprocess

import pytest

from branchci.model import Event, Step
from branchci.provision import action_pin, is_checkout, provision, run_checkout
from branchci import runner
from branchci.runner import trigger


def _sha(repo):
    return subprocess.check_output(["git", "rev-parse", "HEAD"], cwd=repo, text=True).strip()


def test_is_checkout():
    assert is_checkout(Step(name="c", uses="actions/checkout@v3"))
    assert is_checkout(Step(name="c", uses="actions/checkout"))
    assert not is_checkout(Step(name="c", uses="actions/setup-node@v3"))
    assert not is_checkout(Step(name="c", run="git checkout"))
    assert action_pin("actions/checkout@v3") == "v3"
    assert action_pin("actions/checkout") == "latest"


def test_in_place_workspace_is_the_repo(tmp_path):
    with provision(tmp_path, Event(kind="push", branch="dev")) as ws:
        assert ws.path == tmp_path.resolve()
        assert not ws.isolated
    assert tmp_path.exists()


def test_isolated_workspace_is_removed(tmp_path):
    work = tmp_path / "work"
    with provision(tmp_path, Event(kind="push", branch="dev"), isolated=True, work_dir=work) as ws:
        assert ws.isolated
        assert ws.path.is_dir()
        assert work.resolve() in ws.path.parents
        (ws.path / "artifact").write_text("x")
        created = ws.path
    assert not created.exists()
    assert list(work.iterdir()) == []


def test_isolated_workspace_is_removed_on_error(tmp_path):
    with pytest.raises(RuntimeError):
        with provision(tmp_path, Event(kind="push", branch="dev"), isolated=True, work_dir=tmp_path / "w") as ws:
            created = ws.path
            raise RuntimeError("boom")
    assert not created.exists()


def test_isolated_checkout_at_commit(git_repo, tmp_path):
    sha = _sha(git_repo)
    (git_repo / "README.md").write_text("uncommitted\n")
    event = Event(kind="push", branch="dev", sha=sha)

    with provision(git_repo, event, isolated=True, work_dir=tmp_path / "w") as ws:
        message = run_checkout(ws, Step(name="Checkout", uses="actions/checkout@v3"))
        assert sha in message
        assert (ws.path / "README.md").read_text() == "hello\n"
        assert _sha(ws.path) == sha


def test_isolated_checkout_of_unknown_ref_fails(git_repo, tmp_path):
    event = Event(kind="push", branch="dev", sha="f" * 40)
    with provision(git_repo, event, isolated=True, work_dir=tmp_path / "w") as ws:
        with pytest.raises(RuntimeError, match="failed"):
            run_checkout(ws, Step(name="Checkout", uses="actions/checkout@v3"))


def test_isolated_run_leaves_working_tree_alone(git_repo, tmp_path, make_workflow, console):
    event = Event(kind="push", branch="dev", sha=_sha(git_repo))
    workflow = make_workflow(build_cmd="touch built && test -f README.md", test_cmd="true")

    result = trigger(
        workflow, event, repo_root=git_repo, isolated=True, work_dir=tmp_path / "w", console=console
    )

    assert result.ok
    assert not (git_repo / "built").exists()
    assert list((tmp_path / "w").iterdir()) == []


def test_isolated_run_without_checkout_has_empty_tree(git_repo, tmp_path, make_workflow, console):
    event = Event(kind="push", branch="dev", sha=_sha(git_repo))
    workflow = make_workflow(build_cmd="test -f README.md", use_checkout=False)

    result = trigger(
        workflow, event, repo_root=git_repo, isolated=True, work_dir=tmp_path / "w", console=console
    )
    assert result.status == "failure"
    assert result.failed_step.name == "Build"


def test_interrupted_isolated_run_removes_workspace(tmp_path, make_workflow, console, monkeypatch):
    def interrupted(*args, **kwargs):
        raise KeyboardInterrupt

    monkeypatch.setattr(runner, "run_workflow", interrupted)
    work = tmp_path / "w"
    with pytest.raises(KeyboardInterrupt):
        trigger(
            make_workflow(), Event(kind="push", branch="dev"), repo_root=tmp_path,
            isolated=True, work_dir=work, console=console,
        )
    assert list(work.iterdir()) == []


def test_clone_source_defaults_to_repo_root(tmp_path):
    event = Event(kind="push", branch="dev", repository="https://example.com/other.git")
    with provision(tmp_path, event, isolated=True, work_dir=tmp_path / "w") as ws:
        assert ws.source == str(tmp_path.resolve())
    with provision(tmp_path, event, isolated=True, work_dir=tmp_path / "w", source="/srv/repo.git") as ws:
        assert ws.source == "/srv/repo.git"
