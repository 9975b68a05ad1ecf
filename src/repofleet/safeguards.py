# safeguards.py
from __future__ import annotations

import enum
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, NamedTuple, Optional

from pydantic import field_validator

from .environment import Environment, RunContext
from .errors import RepofleetError
from .model import RepositoryState
from .options import Options, decode_options, normalize_key
from .worktree import filter_status_entries, parse_ignore_patterns, status_entry_path

MAX_LISTED_DIRTY_PATHS = 5

HARD_STOP_KEY = "hard_stop"
SOFT_SKIP_KEY = "soft_skip"


class SafeguardBucket(enum.Enum):
    HARD_STOP = "hard_stop"
    SOFT_SKIP = "soft_skip"


@dataclass(frozen=True)
class SafeguardSets:
    """
    One safeguard map split into its two buckets.

    hard_stop: a failure skips the repository for the rest of the run
    soft_skip: a failure skips only the current step
    """
    hard_stop: Dict[str, Any] = field(default_factory=dict)
    soft_skip: Dict[str, Any] = field(default_factory=dict)


def split_safeguards(raw: Optional[Mapping[str, Any]], default_bucket: SafeguardBucket) -> SafeguardSets:
    """
    Split a safeguard map into hard-stop and soft-skip buckets.

    Explicit `hard_stop:` / `soft_skip:` keys win. Without either, the whole
    map lands in `default_bucket`, which every call site chooses for itself.
    """
    if not raw:
        return SafeguardSets()
    hard: Optional[Dict[str, Any]] = None
    soft: Optional[Dict[str, Any]] = None
    for key, value in raw.items():
        normalized = normalize_key(key)
        if normalized == HARD_STOP_KEY:
            hard = dict(value or {})
        elif normalized == SOFT_SKIP_KEY:
            soft = dict(value or {})
    if hard is None and soft is None:
        if default_bucket == SafeguardBucket.HARD_STOP:
            return SafeguardSets(hard_stop=dict(raw))
        return SafeguardSets(soft_skip=dict(raw))
    return SafeguardSets(hard_stop=hard or {}, soft_skip=soft or {})


# ---------------------------------------------------------------------
# Directives
# ---------------------------------------------------------------------

class RequireClean(Options):
    enabled: bool = True
    ignore_dirty_paths: List[str] = []


class SafeguardOptions(Options):
    require_clean: Optional[RequireClean] = None
    require_changes: bool = False
    branch: str = ""
    branch_in: List[str] = []
    paths: List[str] = []
    file_exists: List[str] = []
    # sibling of the `require_clean: true` shorthand
    ignore_dirty_paths: List[str] = []

    @field_validator("require_clean", mode="before")
    @classmethod
    def _bool_shorthand(cls, value: Any) -> Any:
        if isinstance(value, (bool, str, int)):
            return {"enabled": value}
        return value

    @field_validator("ignore_dirty_paths", mode="before")
    @classmethod
    def _single_path(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value


class SafeguardResult(NamedTuple):
    passed: bool
    reason: str = ""


PASSED = SafeguardResult(True, "")


def _dirty_reason(entries: List[str]) -> str:
    paths = [status_entry_path(entry) for entry in entries]
    listed = ", ".join(paths[:MAX_LISTED_DIRTY_PATHS])
    extra = len(paths) - MAX_LISTED_DIRTY_PATHS
    if extra > 0:
        listed = f"{listed} (+{extra} more)"
    return f"repository not clean: {listed}"


def _status(env: Environment, repository: RepositoryState) -> List[str]:
    if env.repositories is None:
        raise RepofleetError("safeguards require a repository manager")
    return env.repositories.worktree_status(repository.path)


def evaluate_safeguards(
    ctx: Optional[RunContext],
    env: Environment,
    repository: RepositoryState,
    config: Optional[Mapping[str, Any]],
) -> SafeguardResult:
    """
    Check one bucket of safeguards against a repository.

    Directives are evaluated independently in a fixed order and the first
    failure wins. A failed check is a result; a broken check (git or stat
    failure) raises.
    """
    if not config:
        return PASSED
    if ctx is not None:
        ctx.raise_if_cancelled()

    options = decode_options(SafeguardOptions, config)

    if options.require_clean is not None and options.require_clean.enabled:
        patterns = parse_ignore_patterns([*options.require_clean.ignore_dirty_paths, *options.ignore_dirty_paths])
        dirty = filter_status_entries(_status(env, repository), patterns)
        if dirty:
            return SafeguardResult(False, _dirty_reason(dirty))

    if options.require_changes and not _status(env, repository):
        return SafeguardResult(False, "requires changes")

    branch = options.branch.strip()
    allowed = [b.strip() for b in options.branch_in if b.strip()]
    if branch or allowed:
        if env.repositories is None:
            raise RepofleetError("safeguards require a repository manager")
        current = env.repositories.current_branch(repository.path)
        if branch and current != branch:
            return SafeguardResult(False, f"requires branch {branch}")
        if allowed and current not in allowed:
            return SafeguardResult(False, f"requires branch in {', '.join(allowed)}")

    for relative in [*options.paths, *options.file_exists]:
        relative = relative.strip()
        if not relative:
            continue
        try:
            env.filesystem.stat(os.path.join(repository.path, relative))
        except FileNotFoundError:
            return SafeguardResult(False, f"missing required path {relative}")

    return PASSED
