# tasks/guards.py
from __future__ import annotations

from typing import TYPE_CHECKING, Callable

from ..errors import ActionSkipped, RepofleetError
from ..git_facts.git import GitCommandError

if TYPE_CHECKING:
    from .executor import ExecutionContext

Guard = Callable[["ExecutionContext"], None]


def clean_worktree_guard() -> Guard:
    """
    Skip when the worktree is dirty.

    The first check of a task execution is cached, so later actions of the
    same task are not refused because of files the task itself wrote.
    """
    def check(execution: "ExecutionContext") -> None:
        if not execution.plan.ensure_clean:
            return
        clean, status = execution.worktree_state()
        if clean:
            return
        fields = {"status": ", ".join(status)} if status else {}
        raise ActionSkipped("repository dirty", fields)

    return check


def branch_absence_guard(branch: str) -> Guard:
    def check(execution: "ExecutionContext") -> None:
        name = branch.strip()
        if not name:
            return
        if execution.manager.branch_exists(execution.repository.path, name):
            raise ActionSkipped("branch exists", {"branch": name})

    return check


def remote_configured_guard(remote: str) -> Guard:
    def check(execution: "ExecutionContext") -> None:
        name = remote.strip()
        if not name:
            raise ActionSkipped("push remote not configured (set task.branch.push_remote)")
        try:
            url = execution.manager.remote_url(execution.repository.path, name)
        except GitCommandError as exc:
            raise ActionSkipped("remote lookup failed", {"remote": name, "error": str(exc)}) from exc
        if not (url or "").strip():
            raise ActionSkipped("remote missing", {"remote": name})

    return check


def github_configured_guard() -> Guard:
    def check(execution: "ExecutionContext") -> None:
        if execution.env.github is None:
            raise RepofleetError("pull request actions require a GitHub client")

    return check
