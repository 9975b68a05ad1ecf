# operations/branch.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..environment import Environment, RunContext
from ..errors import OperationError
from ..git_facts.git import ORIGIN
from ..model import EventCode, EventLevel, RepositoryState
from .base import RepositoryScopedOperation

DEFAULT_BRANCH_OPERATION = "default"
DEFAULT_TARGET_BRANCH = "master"


@dataclass
class BranchTarget:
    remote_name: str = ORIGIN
    source_branch: str = ""
    target_branch: str = DEFAULT_TARGET_BRANCH
    push_to_remote: bool = True
    delete_source_branch: bool = False


class DefaultBranchOperation(RepositoryScopedOperation):
    """
    Promote a branch to be the repository default.

    The target branch is created locally from the source when missing and
    checked out. With a reachable remote it is pushed, made the GitHub
    default, and the source branch is optionally deleted from the remote.
    """

    def __init__(self, target: BranchTarget):
        self.target = target

    def name(self) -> str:
        return DEFAULT_BRANCH_OPERATION

    def _fail(self, repository: RepositoryState, message: str, code: str, cause: Optional[BaseException] = None) -> OperationError:
        return OperationError(DEFAULT_BRANCH_OPERATION, subject=repository.path, cause=cause, message=message, code=code)

    def execute_for_repository(self, ctx: RunContext, env: Environment, repository: RepositoryState) -> None:
        ctx.raise_if_cancelled()
        manager = env.repositories
        if manager is None:
            raise self._fail(repository, "repository manager not configured", "dependencies_missing")

        path = repository.path
        inspection = repository.inspection
        remote = self.target.remote_name.strip() or ORIGIN
        target = self.target.target_branch.strip() or DEFAULT_TARGET_BRANCH

        local_branch = inspection.local_branch.strip() or manager.current_branch(path)
        remote_available = manager.remote_url(path, remote) is not None
        identifier = inspection.final_owner_repo if remote_available else ""
        remote_default = inspection.remote_default_branch.strip() if remote_available else ""

        source = self.target.source_branch.strip() or remote_default or local_branch
        if not source:
            raise self._fail(repository, "default branch source not detected for promotion", "source_missing")

        if remote_available and remote_default and local_branch:
            already = target.lower() == remote_default.lower() and target.lower() == local_branch.lower()
        else:
            already = not remote_available and target.lower() == (local_branch or "").lower()
        if already:
            env.report(EventLevel.INFO, EventCode.DEFAULT_BRANCH_SKIP, f"already defaults to {target}", repository)
            return

        if env.dry_run:
            env.report(EventLevel.INFO, EventCode.PLAN, f"default {source} -> {target}", repository)
            return

        if not manager.branch_exists(path, target):
            manager.create_branch(path, target, source)
        manager.switch_branch(path, target)

        if remote_available:
            if self.target.push_to_remote:
                manager.push(path, remote, target)
            if identifier and env.github is not None:
                env.github.set_default_branch(identifier, target)
            if self.target.delete_source_branch and source.lower() != target.lower():
                manager.delete_remote_branch(path, remote, source)

        env.report(
            EventLevel.INFO, EventCode.DEFAULT_BRANCH_UPDATE,
            f"{source} -> {target}", repository,
            source=source, target=target, remote=str(remote_available).lower(),
        )
        env.refresh(repository)
