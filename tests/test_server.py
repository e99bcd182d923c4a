"""Tests for the webhook receiver."""

import hashlib
import hmac
import json

import pytest
from fastapi.testclient import TestClient

from branchci import server
from branchci.model import FAILURE, SUCCESS, RunResult, StepResult
from branchci.server import clone_source, create_app, verify_signature
from branchci.settings import Settings, load_settings

PUSH_DEV = {
    "ref": "refs/heads/dev",
    "after": "abc123",
    "head_commit": {"id": "abc123"},
    "repository": {"clone_url": "https://github.com/user/repo.git"},
}
PR_MASTER = {
    "action": "opened",
    "pull_request": {
        "base": {"ref": "master"},
        "head": {"ref": "feature/x", "sha": "def456"},
    },
    "repository": {"clone_url": "https://github.com/user/repo.git"},
}


@pytest.fixture
def calls(monkeypatch):
    """Replace the real runner; record what would have run."""
    recorded = []

    def fake_trigger(wf, event, **kwargs):
        recorded.append((wf.name, event, kwargs))
        status = FAILURE if event.branch == "master" else SUCCESS
        return RunResult(
            workflow=wf.name,
            event=event,
            steps=[StepResult(job="build", name="Build", status=status, exit_code=0 if status == SUCCESS else 1)],
        )

    monkeypatch.setattr(server, "trigger", fake_trigger)
    return recorded


@pytest.fixture
def client(make_workflow):
    app = create_app(Settings(work_dir="/tmp/branchci-test"), workflows=[make_workflow()])
    return TestClient(app)


def post(client, event, payload, headers=None):
    return client.post(
        "/webhooks/github",
        content=json.dumps(payload),
        headers={"X-GitHub-Event": event, **(headers or {})},
    )


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "workflows": ["Rust"]}


def test_ping(client):
    resp = post(client, "ping", {"zen": "hi"})
    assert resp.json()["status"] == "pong"


def test_push_to_dev_queues_one_run(client, calls):
    resp = post(client, "push", PUSH_DEV)
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "queued"
    assert len(body["runs"]) == 1

    # background task already ran inside TestClient
    assert len(calls) == 1
    name, event, kwargs = calls[0]
    assert name == "Rust"
    assert event.branch == "dev"
    assert event.sha == "abc123"
    assert kwargs["isolated"] is True

    run_id = body["runs"][0]["run_id"]
    record = client.get(f"/runs/{run_id}").json()
    assert record["status"] == "success"
    assert record["branch"] == "dev"
    assert record["finished_at"] is not None


def test_pull_request_to_master_records_failure(client, calls):
    body = post(client, "pull_request", PR_MASTER).json()
    assert body["status"] == "queued"
    record = client.get(f"/runs/{body['runs'][0]['run_id']}").json()
    assert record["status"] == "failure"
    assert record["event"] == "pull_request"


def test_push_to_feature_branch_is_skipped(client, calls):
    payload = dict(PUSH_DEV, ref="refs/heads/feature/x")
    body = post(client, "push", payload).json()
    assert body["status"] == "skipped"
    assert calls == []
    assert client.get("/runs").json() == []


def test_closed_pull_request_is_skipped(client, calls):
    payload = dict(PR_MASTER, action="closed")
    assert post(client, "pull_request", payload).json()["status"] == "skipped"
    assert calls == []


def test_deleted_branch_is_skipped(client, calls):
    payload = dict(PUSH_DEV, deleted=True)
    assert post(client, "push", payload).json()["status"] == "skipped"
    assert calls == []


def test_other_events_are_ignored(client, calls):
    body = post(client, "issues", {"action": "opened"}).json()
    assert body["status"] == "ignored"
    assert calls == []


def test_bad_payloads(client):
    resp = client.post("/webhooks/github", content=b"not json", headers={"X-GitHub-Event": "push"})
    assert resp.status_code == 400
    assert post(client, "push", {"no": "ref"}).status_code == 422


def test_unknown_run(client):
    assert client.get("/runs/nope").status_code == 404


def test_crashed_run_is_recorded(client, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("git clone failed")

    monkeypatch.setattr(server, "trigger", boom)
    body = post(client, "push", PUSH_DEV).json()
    record = client.get(f"/runs/{body['runs'][0]['run_id']}").json()
    assert record["status"] == "error"
    assert record["error"] == "git clone failed"


def test_signature_required_when_secret_set(make_workflow, calls):
    app = create_app(Settings(webhook_secret="s3cret"), workflows=[make_workflow()])
    client = TestClient(app)
    body = json.dumps(PUSH_DEV).encode()

    assert post(client, "push", PUSH_DEV).status_code == 401
    bad = {"X-Hub-Signature-256": "sha256=deadbeef"}
    assert post(client, "push", PUSH_DEV, bad).status_code == 401

    good = "sha256=" + hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()
    resp = client.post(
        "/webhooks/github",
        content=body,
        headers={"X-GitHub-Event": "push", "X-Hub-Signature-256": good},
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "queued"


def test_verify_signature_without_secret():
    assert verify_signature(b"payload", None, "") is True


def test_history_is_bounded(make_workflow, calls):
    app = create_app(Settings(history_size=2), workflows=[make_workflow()])
    client = TestClient(app)
    ids = [post(client, "push", PUSH_DEV).json()["runs"][0]["run_id"] for _ in range(3)]
    listed = [r["run_id"] for r in client.get("/runs").json()]
    assert listed == [ids[2], ids[1]]


def test_create_app_loads_workflow_file(rust_yaml_path):
    app = create_app(Settings(workflow=str(rust_yaml_path)))
    assert [wf.name for wf in app.state.workflows] == ["Rust"]


def test_create_app_without_workflows(tmp_path):
    with pytest.raises(FileNotFoundError):
        create_app(Settings(repo_root=str(tmp_path)))


def test_runs_clone_the_configured_repository_by_default(client, calls):
    post(client, "push", PUSH_DEV)
    _, event, kwargs = calls[0]
    assert event.repository == "https://github.com/user/repo.git"
    # None makes the run clone BRANCHCI_REPO_ROOT, never the sender's URL
    assert kwargs["source"] is None


def test_clone_source():
    event = server.event_from_payload("push", PUSH_DEV)
    assert clone_source(Settings(), event) is None
    assert clone_source(Settings(clone_from_payload=True), event) == "https://github.com/user/repo.git"
    assert clone_source(Settings(repo_url="/srv/repo.git", clone_from_payload=True), event) == "/srv/repo.git"


def test_load_settings(monkeypatch):
    monkeypatch.setenv("BRANCHCI_REPO_ROOT", "/srv/repo")
    monkeypatch.setenv("BRANCHCI_CLONE_FROM_PAYLOAD", "true")
    monkeypatch.setenv("BRANCHCI_HISTORY_SIZE", "5")
    monkeypatch.delenv("BRANCHCI_WEBHOOK_SECRET", raising=False)
    settings = load_settings()
    assert settings.repo_root == "/srv/repo"
    assert settings.clone_from_payload is True
    assert settings.history_size == 5
    assert settings.webhook_secret == ""

    monkeypatch.delenv("BRANCHCI_CLONE_FROM_PAYLOAD")
    assert load_settings().clone_from_payload is False


def test_missing_secret_is_logged(make_workflow, caplog):
    with caplog.at_level("WARNING", logger="branchci.server"):
        create_app(Settings(), workflows=[make_workflow()])
    assert "BRANCHCI_WEBHOOK_SECRET is not set" in caplog.text
