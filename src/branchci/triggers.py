# triggers.py
from __future__ import annotations

import re
import subprocess
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from .git_facts.git import current_branch, head_sha
from .model import DEFAULT_PR_TYPES, EVENT_KINDS, PULL_REQUEST, PUSH, Event, TriggerRule, Workflow


class TriggerError(Exception):
    """Raised when an event cannot be built or is not a supported kind."""
    pass


# ----------------------------------------------------------------------
# Branch patterns
# ----------------------------------------------------------------------

@lru_cache(maxsize=256)
def _pattern_regex(pattern: str) -> re.Pattern:
    """
    Translate a branch filter pattern into a regex.

      *   any run of characters except '/'
      **  any run of characters
      ?   zero or one of the preceding character
      +   one or more of the preceding character
      [..] character class
    Anything else matches literally.
    """
    out: list[str] = []
    i = 0
    n = len(pattern)
    while i < n:
        c = pattern[i]
        if c == "*":
            if i + 1 < n and pattern[i + 1] == "*":
                out.append(".*")
                i += 2
                continue
            out.append("[^/]*")
        elif c in "?+" and out:
            out[-1] = f"(?:{out[-1]}){c}"
        elif c == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                out.append(re.escape(c))
            else:
                out.append(pattern[i:end + 1])
                i = end + 1
                continue
        elif c == "\\" and i + 1 < n:
            out.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        else:
            out.append(re.escape(c))
        i += 1
    return re.compile("".join(out))


def branch_matches(branch: str, pattern: str) -> bool:
    """True if `branch` matches a single (non-negated) filter pattern."""
    if not any(ch in pattern for ch in "*?+[\\"):
        return branch == pattern
    return _pattern_regex(pattern).fullmatch(branch) is not None


def _included(branch: str, patterns: Iterable[str]) -> bool:
    # later patterns win, so "!release/old" after "release/**" excludes it
    included = False
    for p in patterns:
        if p.startswith("!"):
            if branch_matches(branch, p[1:]):
                included = False
        elif branch_matches(branch, p):
            included = True
    return included


# ----------------------------------------------------------------------
# Rule evaluation
# ----------------------------------------------------------------------

def rule_matches(rule: TriggerRule, event: Event) -> bool:
    if rule.event != event.kind:
        return False

    if event.kind == PULL_REQUEST and event.action is not None:
        types = rule.types or DEFAULT_PR_TYPES
        if event.action not in types:
            return False

    filtered = rule.branches is not None or rule.branches_ignore is not None
    if not filtered:
        return True

    # a branch filter never lets a tag push through
    if event.ref_type != "branch":
        return False

    if rule.branches is not None and not _included(event.branch, rule.branches):
        return False
    if rule.branches_ignore is not None and any(
        branch_matches(event.branch, p) for p in rule.branches_ignore
    ):
        return False
    return True


def matching_rule(workflow: Workflow, event: Event) -> Optional[TriggerRule]:
    for rule in workflow.triggers:
        if rule_matches(rule, event):
            return rule
    return None


def should_run(workflow: Workflow, event: Event) -> bool:
    """A run starts iff at least one trigger rule matches the event."""
    return matching_rule(workflow, event) is not None


# ----------------------------------------------------------------------
# Event construction
# ----------------------------------------------------------------------

def _require(payload: Dict[str, Any], *path: str) -> Any:
    cur: Any = payload
    for key in path:
        if not isinstance(cur, dict) or key not in cur:
            raise TriggerError(f"Webhook payload missing '{'.'.join(path)}'")
        cur = cur[key]
    return cur


def event_from_payload(kind: str, payload: Dict[str, Any]) -> Event:
    """Build an Event from a GitHub webhook payload."""
    repo = (payload.get("repository") or {}).get("clone_url")

    if kind == PUSH:
        ref = _require(payload, "ref")
        if ref.startswith("refs/heads/"):
            name, ref_type = ref[len("refs/heads/"):], "branch"
        elif ref.startswith("refs/tags/"):
            name, ref_type = ref[len("refs/tags/"):], "tag"
        else:
            raise TriggerError(f"Unsupported ref in push payload: {ref}")
        sha = (payload.get("head_commit") or {}).get("id") or payload.get("after")
        return Event(kind=PUSH, branch=name, sha=sha, ref_type=ref_type, repository=repo)

    if kind == PULL_REQUEST:
        return Event(
            kind=PULL_REQUEST,
            branch=_require(payload, "pull_request", "base", "ref"),
            sha=_require(payload, "pull_request", "head", "sha"),
            action=payload.get("action"),
            head_branch=_require(payload, "pull_request", "head", "ref"),
            repository=repo,
        )

    raise TriggerError(f"Unsupported event kind: {kind!r} (expected one of {EVENT_KINDS})")


def local_event(
    kind: str,
    branch: str | None = None,
    sha: str | None = None,
    repo_root: str | Path = ".",
) -> Event:
    """
    Build an Event from the local checkout.

    For push, `branch` is the pushed branch; for pull_request it is the
    target branch. Both default to the checked out branch.
    """
    if kind not in EVENT_KINDS:
        raise TriggerError(f"Unsupported event kind: {kind!r} (expected one of {EVENT_KINDS})")

    try:
        here = current_branch(repo_root)
    except (subprocess.CalledProcessError, FileNotFoundError):
        here = None

    if branch is None:
        branch = here
    if branch is None:
        raise TriggerError(
            "Could not determine the branch (not a git checkout, or detached HEAD). "
            "Pass --branch explicitly."
        )

    if sha is None:
        try:
            sha = head_sha(repo_root)
        except (subprocess.CalledProcessError, FileNotFoundError):
            sha = None

    return Event(
        kind=kind,
        branch=branch,
        sha=sha,
        head_branch=here if kind == PULL_REQUEST else None,
    )
