"""
Webhook receiver: GitHub push / pull_request events in, local runs out.
"""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
import threading
import uuid
from collections import OrderedDict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from fastapi import BackgroundTasks, FastAPI, Header, HTTPException, Request
from pydantic import BaseModel, Field

from .loader import discover_workflows, load_workflow
from .model import EVENT_KINDS, Event, Workflow
from .runner import trigger
from .settings import Settings, load_settings
from .triggers import TriggerError, event_from_payload, should_run
from .ui.console import Console

logger = logging.getLogger(__name__)


# -------------------- Schemas --------------------

class QueuedRun(BaseModel):
    run_id: str
    workflow: str


class WebhookResponse(BaseModel):
    status: str  # pong|queued|skipped|ignored
    event: Optional[str] = None
    reason: Optional[str] = None
    runs: list[QueuedRun] = Field(default_factory=list)


class RunRecord(BaseModel):
    run_id: str
    workflow: str
    event: str
    branch: str
    sha: Optional[str] = None
    status: str  # queued|running|success|failure|error
    created_at: datetime
    finished_at: Optional[datetime] = None
    steps: list[dict[str, Any]] = Field(default_factory=list)
    error: Optional[str] = None


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def verify_signature(payload: bytes, signature: Optional[str], secret: str) -> bool:
    """Check X-Hub-Signature-256; with no secret configured everything passes."""
    if not secret:
        return True
    if not signature:
        return False
    expected = "sha256=" + hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


class RunHistory:
    """The most recent runs, in memory only."""

    def __init__(self, size: int):
        self.size = size
        self._runs: OrderedDict[str, RunRecord] = OrderedDict()
        self._lock = threading.Lock()

    def add(self, record: RunRecord) -> None:
        with self._lock:
            self._runs[record.run_id] = record
            while len(self._runs) > self.size:
                self._runs.popitem(last=False)

    def update(self, run_id: str, **changes: Any) -> None:
        with self._lock:
            record = self._runs.get(run_id)
            if record is not None:
                self._runs[run_id] = record.model_copy(update=changes)

    def get(self, run_id: str) -> Optional[RunRecord]:
        with self._lock:
            return self._runs.get(run_id)

    def all(self) -> list[RunRecord]:
        with self._lock:
            return list(reversed(self._runs.values()))


def clone_source(settings: Settings, event: Event) -> Optional[str]:
    """
    Where an isolated run clones from.

    BRANCHCI_REPO_URL wins. The payload's clone_url is used only when
    BRANCHCI_CLONE_FROM_PAYLOAD is set; otherwise None, and the run clones
    BRANCHCI_REPO_ROOT.
    """
    if settings.repo_url:
        return settings.repo_url
    if settings.clone_from_payload and event.repository:
        return event.repository
    return None


def _load_workflows(settings: Settings) -> list[Workflow]:
    if settings.workflow:
        return [load_workflow(settings.workflow)]
    paths = discover_workflows(settings.repo_root)
    if not paths:
        raise FileNotFoundError(
            f"No workflow files under {Path(settings.repo_root).resolve()} "
            "(set BRANCHCI_WORKFLOW)"
        )
    return [load_workflow(p) for p in paths]


def create_app(
    settings: Optional[Settings] = None,
    workflows: Optional[list[Workflow]] = None,
) -> FastAPI:
    settings = settings or load_settings()
    if workflows is None:
        workflows = _load_workflows(settings)
    history = RunHistory(settings.history_size)
    if not settings.webhook_secret:
        logger.warning("BRANCHCI_WEBHOOK_SECRET is not set; webhook signatures are not checked")

    app = FastAPI(title="branchci webhook receiver")
    app.state.settings = settings
    app.state.workflows = workflows
    app.state.history = history

    def execute_run(run_id: str, wf: Workflow, event: Event) -> None:
        history.update(run_id, status="running")
        logger.info("Run %s: %s for %s %s", run_id, wf.name, event.kind, event.branch)
        try:
            result = trigger(
                wf,
                event,
                repo_root=settings.repo_root,
                isolated=True,
                work_dir=settings.work_dir,
                source=clone_source(settings, event),
                force=True,  # already matched when queued
                console=Console(quiet=True),
            )
        except Exception as e:
            logger.exception("Run %s crashed", run_id)
            history.update(run_id, status="error", error=str(e), finished_at=now_utc())
            return

        summary = result.to_dict()
        history.update(
            run_id,
            status=summary["status"],
            steps=summary["steps"],
            finished_at=now_utc(),
        )
        logger.info("Run %s finished: %s", run_id, summary["status"])

    # -------------------- Endpoints --------------------

    @app.get("/health")
    async def health():
        return {"status": "ok", "workflows": [wf.name for wf in workflows]}

    @app.get("/runs", response_model=list[RunRecord])
    async def list_runs():
        return history.all()

    @app.get("/runs/{run_id}", response_model=RunRecord)
    async def get_run(run_id: str):
        record = history.get(run_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Run not found")
        return record

    @app.post("/webhooks/github", response_model=WebhookResponse)
    async def github_webhook(
        request: Request,
        background_tasks: BackgroundTasks,
        x_hub_signature_256: Optional[str] = Header(None),
        x_github_event: Optional[str] = Header(None),
    ):
        body = await request.body()
        if not verify_signature(body, x_hub_signature_256, settings.webhook_secret):
            raise HTTPException(status_code=401, detail="Invalid signature")

        try:
            payload = json.loads(body)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid JSON payload")
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Payload must be a JSON object")

        if x_github_event == "ping":
            return WebhookResponse(status="pong", event="ping")

        if x_github_event not in EVENT_KINDS:
            return WebhookResponse(
                status="ignored",
                event=x_github_event,
                reason=f"Event type '{x_github_event}' not handled",
            )

        if payload.get("deleted"):
            return WebhookResponse(status="skipped", event=x_github_event, reason="Branch deleted")

        try:
            event = event_from_payload(x_github_event, payload)
        except TriggerError as e:
            raise HTTPException(status_code=422, detail=str(e))

        matched = [wf for wf in workflows if should_run(wf, event)]
        if not matched:
            logger.info("No workflow triggered by %s %s", event.kind, event.branch)
            return WebhookResponse(
                status="skipped",
                event=event.kind,
                reason=f"No workflow triggered by {event.kind} on '{event.branch}'",
            )

        queued: list[QueuedRun] = []
        for wf in matched:
            run_id = uuid.uuid4().hex
            history.add(
                RunRecord(
                    run_id=run_id,
                    workflow=wf.name,
                    event=event.kind,
                    branch=event.branch,
                    sha=event.sha,
                    status="queued",
                    created_at=now_utc(),
                )
            )
            background_tasks.add_task(execute_run, run_id, wf, event)
            queued.append(QueuedRun(run_id=run_id, workflow=wf.name))

        return WebhookResponse(status="queued", event=event.kind, runs=queued)

    return app
