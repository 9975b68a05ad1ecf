# tasks/executor.py
from __future__ import annotations

import enum
import os
from typing import Dict, List, Optional, Sequence, Tuple

from ..environment import Environment, RunContext
from ..errors import ActionSkipped, RepofleetError, RepositorySkipped
from ..git_facts.git import GitCommandError, RepositoryManager
from ..git_facts.github import PullRequestRequest
from ..model import EventCode, EventLevel, RepositoryState
from ..safeguards import SafeguardBucket, evaluate_safeguards, split_safeguards
from .guards import (
    Guard,
    branch_absence_guard,
    clean_worktree_guard,
    github_configured_guard,
    remote_configured_guard,
)
from .planner import PlannedAction, TaskPlan


class TaskOutcome(enum.Enum):
    SKIPPED_BEFORE_START = "skipped-before-start"
    PLANNED = "planned"
    APPLIED = "applied"
    SKIPPED = "skipped"


class ExecutionContext:
    """Mutable state of one task execution against one repository."""

    def __init__(self, ctx: RunContext, env: Environment, repository: RepositoryState, plan: TaskPlan):
        self.ctx = ctx
        self.env = env
        self.repository = repository
        self.plan = plan
        self.start_point = plan.start_point
        self.original_branch = ""
        self._worktree: Optional[Tuple[bool, List[str]]] = None
        self._last_warning: Optional[Tuple[str, Tuple[Tuple[str, str], ...]]] = None

    @property
    def manager(self) -> RepositoryManager:
        if self.env.repositories is None:
            raise RepofleetError("repository manager not configured")
        return self.env.repositories

    def worktree_state(self) -> Tuple[bool, List[str]]:
        if self._worktree is None:
            status = self.manager.worktree_status(self.repository.path)
            self._worktree = (not status, status)
        return self._worktree

    def report(self, code: str, level: EventLevel, message: str, fields: Optional[Dict[str, str]] = None) -> None:
        details = {"task": self.plan.task.name}
        details.update(fields or {})
        if level == EventLevel.WARN:
            key = (message, tuple(sorted(details.items())))
            if key == self._last_warning:
                return
            self._last_warning = key
        self.env.report(level, code, message, self.repository, **details)

    def skip(self, message: str, fields: Optional[Dict[str, str]] = None) -> None:
        self.report(EventCode.TASK_SKIP, EventLevel.WARN, message, fields)


# ---------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------

class TaskAction:
    name = "task.action"

    def guards(self) -> Sequence[Guard]:
        return ()

    def execute(self, execution: ExecutionContext) -> None:
        raise NotImplementedError


class BranchPrepareAction(TaskAction):
    name = "git.branch.prepare"

    def __init__(self, branch: str):
        self.branch = branch

    def guards(self) -> Sequence[Guard]:
        return (clean_worktree_guard(), branch_absence_guard(self.branch))

    def execute(self, execution: ExecutionContext) -> None:
        manager = execution.manager
        path = execution.repository.path

        start_point = execution.start_point.strip()
        if start_point and not manager.ref_exists(path, start_point):
            execution.skip("start point missing", {"start_point": start_point})
            start_point = ""
        execution.start_point = start_point

        execution.original_branch = manager.current_branch(path)
        manager.checkout_branch(path, self.branch, start_point)


class FilesApplyAction(TaskAction):
    name = "files.apply"

    def guards(self) -> Sequence[Guard]:
        return (clean_worktree_guard(),)

    def execute(self, execution: ExecutionContext) -> None:
        filesystem = execution.env.filesystem
        written: List[str] = []
        for change in execution.plan.applying_files:
            filesystem.mkdir(os.path.dirname(change.absolute_path), parents=True)
            filesystem.write_bytes(change.absolute_path, change.content, change.permissions)
            written.append(change.path)
        execution.env.shared.record_mutated_files(execution.repository.path, written)


class StageCommitAction(TaskAction):
    name = "git.stage-commit"

    def guards(self) -> Sequence[Guard]:
        return (clean_worktree_guard(),)

    def execute(self, execution: ExecutionContext) -> None:
        manager = execution.manager
        path = execution.repository.path
        manager.stage(path, [change.path for change in execution.plan.applying_files])
        manager.commit(path, execution.plan.commit_message)


class PushAction(TaskAction):
    name = "git.push"

    def __init__(self, remote: str, branch: str):
        self.remote = remote
        self.branch = branch

    def guards(self) -> Sequence[Guard]:
        return (remote_configured_guard(self.remote),)

    def execute(self, execution: ExecutionContext) -> None:
        execution.manager.push(execution.repository.path, self.remote.strip(), self.branch)


class PullRequestCreateAction(TaskAction):
    name = "pull-request.create"

    def guards(self) -> Sequence[Guard]:
        return (github_configured_guard(),)

    def execute(self, execution: ExecutionContext) -> None:
        pr = execution.plan.pull_request
        if pr is None:
            return
        url = execution.env.github.create_pull_request(
            execution.repository.path,
            PullRequestRequest(
                title=pr.title,
                body=pr.body,
                base=pr.base,
                head=execution.plan.branch_name,
                draft=pr.draft,
            ),
        )
        execution.report(EventCode.TASK_APPLY, EventLevel.INFO, "pull request created", {"url": url})


class CustomAction(TaskAction):
    """A registered `task.action.<type>` handler with optional ad hoc safeguards."""

    def __init__(self, action: PlannedAction):
        self.action = action
        self.name = f"task.action.{action.type}"

    def guards(self) -> Sequence[Guard]:
        return (clean_worktree_guard(), self._safeguard_guard)

    def _safeguard_guard(self, execution: ExecutionContext) -> None:
        # ad hoc action safeguards default to soft-skip
        sets = split_safeguards(self.action.options.get("safeguards"), SafeguardBucket.SOFT_SKIP)
        passed, reason = evaluate_safeguards(execution.ctx, execution.env, execution.repository, sets.hard_stop)
        if not passed:
            raise RepositorySkipped(reason)
        passed, reason = evaluate_safeguards(execution.ctx, execution.env, execution.repository, sets.soft_skip)
        if not passed:
            raise ActionSkipped(reason, {"action": self.action.type})

    def execute(self, execution: ExecutionContext) -> None:
        registry = execution.env.registry
        if registry is None:
            raise RepofleetError("task action registry not configured")
        parameters = {k: v for k, v in self.action.options.items() if k != "safeguards"}
        captured = registry.run(self.action.type, execution.ctx, execution.env, execution.repository, parameters)
        if self.action.capture and captured is not None:
            execution.env.variables.set(self.action.capture, str(captured))


# ---------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------

class TaskExecutor:
    """
    Runs a TaskPlan's action list in order.

    Each action's guards are checked immediately before it runs. A guard that
    raises ActionSkipped stops the remaining actions; nothing already applied
    is rolled back.
    """

    def __init__(self, ctx: RunContext, env: Environment, repository: RepositoryState):
        self.ctx = ctx
        self.env = env
        self.repository = repository

    def build_actions(self, plan: TaskPlan) -> List[TaskAction]:
        actions: List[TaskAction] = []
        if plan.applying_files:
            actions.append(BranchPrepareAction(plan.branch_name))
            actions.append(FilesApplyAction())
            actions.append(StageCommitAction())
            actions.append(PushAction(plan.task.branch.push_remote, plan.branch_name))
            if plan.pull_request is not None:
                actions.append(PullRequestCreateAction())
        actions.extend(CustomAction(action) for action in plan.actions)
        return actions

    def execute(self, plan: TaskPlan) -> TaskOutcome:
        execution = ExecutionContext(self.ctx, self.env, self.repository, plan)

        if plan.skipped:
            execution.report(EventCode.TASK_SKIP, EventLevel.INFO, f"task has {plan.skip_reason}", {"reason": plan.skip_reason})
            return TaskOutcome.SKIPPED_BEFORE_START

        if self.env.dry_run:
            execution.report(EventCode.TASK_PLAN, EventLevel.INFO, "task planned", plan.describe())
            return TaskOutcome.PLANNED

        actions = self.build_actions(plan)
        completed = 0
        try:
            for action in actions:
                self.ctx.raise_if_cancelled()
                for guard in action.guards():
                    guard(execution)
                action.execute(execution)
                completed += 1
        except ActionSkipped as skip:
            execution.skip(skip.reason, skip.fields)
            return TaskOutcome.SKIPPED_BEFORE_START if completed == 0 else TaskOutcome.SKIPPED
        finally:
            self._restore_branch(execution)

        if plan.applying_files:
            self.env.refresh(self.repository)

        fields = {}
        if plan.applying_files:
            fields["branch"] = plan.branch_name
        if plan.actions:
            fields["actions"] = str(len(plan.actions))
        execution.report(EventCode.TASK_APPLY, EventLevel.INFO, "task applied", fields)
        return TaskOutcome.APPLIED

    def _restore_branch(self, execution: ExecutionContext) -> None:
        branch = execution.original_branch.strip()
        if not branch or branch == "HEAD" or branch == execution.plan.branch_name:
            return
        try:
            execution.manager.switch_branch(self.repository.path, branch)
        except GitCommandError as exc:
            execution.skip("failed to restore branch", {"branch": branch, "error": str(exc)})
