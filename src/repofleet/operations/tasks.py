# operations/tasks.py
from __future__ import annotations

from typing import List, Optional, Sequence

from ..environment import Environment, RunContext
from ..errors import RepofleetError, RepositorySkipped, WorkflowConfigurationError, join_errors
from ..model import EventCode, EventLevel, RepositoryState, State
from ..safeguards import SafeguardBucket, evaluate_safeguards, split_safeguards
from ..tasks.definition import TaskDefinition
from ..tasks.executor import TaskExecutor
from ..tasks.planner import TaskPlanner
from ..tasks.registry import ActionRegistry
from .base import RepositoryScopedOperation

TASKS_OPERATION = "tasks apply"


class TaskOperation(RepositoryScopedOperation):
    """
    Plan and execute declarative tasks against every repository.

    Task safeguards default to the hard-stop bucket: a failure there means
    the repository is skipped for the rest of the run. Soft-skip failures
    only skip this step.
    """

    def __init__(self, tasks: Sequence[TaskDefinition], registry: Optional[ActionRegistry] = None):
        if not tasks:
            raise WorkflowConfigurationError("tasks apply step requires at least one task entry")
        self.tasks: List[TaskDefinition] = list(tasks)
        self.registry = registry

    def name(self) -> str:
        return TASKS_OPERATION

    def _is_global_action(self, action_type: str) -> bool:
        return self.registry is not None and self.registry.is_global(action_type)

    def is_repository_scoped(self) -> bool:
        for task in self.tasks:
            if task.files or task.branch.name.strip() or task.commit_message.strip() or task.pull_request is not None:
                return True
            if any(not self._is_global_action(action.type) for action in task.actions):
                return True
        return False

    # ---- global form ----

    def execute(self, ctx: RunContext, env: Environment, state: State) -> None:
        if self.is_repository_scoped():
            super().execute(ctx, env, state)
            return
        registry = env.registry or self.registry
        if registry is None:
            raise RepofleetError("task action registry not configured")
        for task in self.tasks:
            for action in task.actions:
                ctx.raise_if_cancelled()
                captured = registry.run(action.type, ctx, env, None, dict(action.options))
                if action.capture.strip() and captured is not None:
                    env.variables.set(action.capture.strip(), str(captured))

    # ---- per repository ----

    def execute_for_repository(self, ctx: RunContext, env: Environment, repository: RepositoryState) -> None:
        errors: List[BaseException] = []
        for task in self.tasks:
            ctx.raise_if_cancelled()
            sets = split_safeguards(task.safeguards, SafeguardBucket.HARD_STOP)

            passed, reason = evaluate_safeguards(ctx, env, repository, sets.hard_stop)
            if not passed:
                env.report(EventLevel.WARN, EventCode.TASK_SKIP, reason, repository, task=task.name, reason=reason)
                raise RepositorySkipped(reason)

            passed, reason = evaluate_safeguards(ctx, env, repository, sets.soft_skip)
            if not passed:
                env.report(EventLevel.WARN, EventCode.TASK_SKIP, reason, repository, task=task.name, reason=reason)
                continue

            try:
                plan = TaskPlanner(env).plan(task, repository)
                TaskExecutor(ctx, env, repository).execute(plan)
            except (RepositorySkipped, WorkflowConfigurationError):
                raise
            except RepofleetError as exc:
                if env.log_operation_error(exc, repository):
                    continue
                errors.append(exc)

        error = join_errors(errors)
        if error is not None:
            raise error
