# provision.py
# Working trees for runs: either the caller's checkout, used in place, or a
# throwaway clone at the triggering commit that is removed when the run ends.

from __future__ import annotations

import shutil
import subprocess
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from .git_facts import git
from .model import Event, Step

CHECKOUT_ACTION = "actions/checkout"


@dataclass
class Workspace:
    path: Path
    isolated: bool
    source: str
    ref: Optional[str] = None


def is_checkout(step: Step) -> bool:
    return step.uses is not None and step.uses.split("@", 1)[0] == CHECKOUT_ACTION


def action_pin(uses: str) -> str:
    _, _, pin = uses.partition("@")
    return pin or "latest"


@contextmanager
def provision(
    repo_root: str | Path,
    event: Event,
    *,
    isolated: bool = False,
    work_dir: str | Path | None = None,
    source: str | None = None,
) -> Iterator[Workspace]:
    """
    Yield the working tree for one run.

    In place: `repo_root` itself. Isolated: an empty directory under a fresh
    temp dir (inside `work_dir` if given); the checkout step fills it and the
    whole temp dir is deleted afterwards, whatever the outcome.
    """
    root = Path(repo_root).resolve()
    src = source or str(root)

    if not isolated:
        yield Workspace(path=root, isolated=False, source=src, ref=event.sha)
        return

    base: Optional[Path] = None
    if work_dir is not None:
        base = Path(work_dir).expanduser().resolve()
        base.mkdir(parents=True, exist_ok=True)

    tmp = Path(tempfile.mkdtemp(prefix="branchci_", dir=str(base) if base else None))
    path = tmp / "repo"
    path.mkdir()
    try:
        yield Workspace(path=path, isolated=True, source=src, ref=event.sha or event.branch)
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


def run_checkout(workspace: Workspace, step: Step) -> str:
    """
    Materialize the tree for the checkout action.

    Returns a one-line description of what was checked out.

    Raises:
        RuntimeError: the clone or checkout failed
    """
    ref = step.with_.get("ref") or workspace.ref
    pin = action_pin(step.uses or "")

    if not workspace.isolated:
        if not workspace.path.is_dir():
            raise RuntimeError(f"Working tree not found: {workspace.path}")
        if git.is_work_tree(workspace.path):
            return f"using working tree {workspace.path} ({CHECKOUT_ACTION}@{pin})"
        return f"using directory {workspace.path}, not a git work tree ({CHECKOUT_ACTION}@{pin})"

    try:
        git.clone(workspace.source, workspace.path)
        if ref:
            git.checkout(ref, workspace.path)
        else:
            git.checkout("HEAD", workspace.path)
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or "").strip()
        raise RuntimeError(f"git {' '.join(e.cmd[1:3])} failed: {stderr or e}") from e
    except FileNotFoundError:
        raise RuntimeError("git command not found. Please install Git.")

    return f"checked out {ref or 'HEAD'} from {workspace.source} ({CHECKOUT_ACTION}@{pin})"
