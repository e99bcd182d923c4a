from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    """Webhook receiver configuration, read from BRANCHCI_* environment variables."""
    workflow: str | None = None
    repo_root: str = "."
    repo_url: str | None = None
    clone_from_payload: bool = False
    webhook_secret: str = ""
    work_dir: str = ".branchci/work"
    history_size: int = 50


def load_settings() -> Settings:
    return Settings(
        workflow=os.environ.get("BRANCHCI_WORKFLOW") or None,
        repo_root=os.environ.get("BRANCHCI_REPO_ROOT", "."),
        repo_url=os.environ.get("BRANCHCI_REPO_URL") or None,
        clone_from_payload=os.environ.get("BRANCHCI_CLONE_FROM_PAYLOAD", "").lower() in ("1", "true", "yes"),
        webhook_secret=os.environ.get("BRANCHCI_WEBHOOK_SECRET", ""),
        work_dir=os.environ.get("BRANCHCI_WORK_DIR", ".branchci/work"),
        history_size=int(os.environ.get("BRANCHCI_HISTORY_SIZE", "50")),
    )
