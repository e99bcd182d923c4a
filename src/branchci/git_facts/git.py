# git.py
# Small wrapper around the Git CLI.
# Every git call made by the runner goes through here so event construction
# and checkout never shell out to git on their own.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Args:
        args: List of git arguments (e.g. ["rev-parse", "HEAD"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError: git exited non-zero
        FileNotFoundError: git is not installed
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        text=True,
        stderr=subprocess.PIPE,
    )
    return out.strip()


def is_work_tree(path: str | Path) -> bool:
    """True if `path` is inside a git work tree (False when git is missing)."""
    try:
        return _git(["rev-parse", "--is-inside-work-tree"], cwd=path) == "true"
    except (subprocess.CalledProcessError, FileNotFoundError):
        return False


def head_sha(cwd: Optional[str | Path] = None) -> str:
    """Full SHA of the current HEAD commit."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_branch(cwd: Optional[str | Path] = None) -> Optional[str]:
    """
    Name of the checked out branch.

    Returns None on a detached HEAD, where there is no branch for the
    trigger filters to look at.
    """
    name = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    if name == "HEAD":
        return None
    return name


def is_dirty(cwd: Optional[str | Path] = None) -> bool:
    """True if the working tree has modified, staged or untracked files."""
    return _git(["status", "--porcelain"], cwd=cwd) != ""


def clone(source: str | Path, dest: str | Path) -> None:
    """Clone `source` (URL or local path) into `dest` without checking out."""
    _git(["clone", "--no-checkout", "--quiet", str(source), str(dest)])


def checkout(ref: str, cwd: str | Path) -> None:
    """Detached checkout of `ref`, fetching it first if the clone lacks it."""
    try:
        _git(["checkout", "--quiet", "--detach", ref], cwd=cwd)
    except subprocess.CalledProcessError:
        _git(["fetch", "--quiet", "origin", ref], cwd=cwd)
        _git(["checkout", "--quiet", "--detach", "FETCH_HEAD"], cwd=cwd)
