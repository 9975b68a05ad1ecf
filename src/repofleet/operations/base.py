# operations/base.py
from __future__ import annotations

import abc
from typing import List

from ..environment import Environment, RunContext
from ..errors import RepofleetError, RepositorySkipped, join_errors
from ..model import RepositoryState, State


class Operation(abc.ABC):
    """A unit of work scheduled by the DAG; runs once for the whole run."""

    @abc.abstractmethod
    def name(self) -> str: ...

    @abc.abstractmethod
    def execute(self, ctx: RunContext, env: Environment, state: State) -> None: ...

    def is_repository_scoped(self) -> bool:
        return False


class RepositoryScopedOperation(Operation):
    """
    An operation whose work is isolated per repository.

    The run coordinator calls `execute_for_repository` with a cloned
    Environment for each repository. `execute` remains available for callers
    that hold a whole State: it walks the repositories itself and joins the
    errors instead of stopping at the first one.
    """

    def is_repository_scoped(self) -> bool:
        return True

    @abc.abstractmethod
    def execute_for_repository(self, ctx: RunContext, env: Environment, repository: RepositoryState) -> None: ...

    def execute(self, ctx: RunContext, env: Environment, state: State) -> None:
        errors: List[BaseException] = []
        for repository in list(state.repositories):
            ctx.raise_if_cancelled()
            try:
                self.execute_for_repository(ctx, env.clone_for_repository(repository), repository)
            except RepositorySkipped:
                continue
            except (RepofleetError, OSError) as exc:
                errors.append(exc)
        error = join_errors(errors)
        if error is not None:
            raise error


def is_repository_scoped(operation: object) -> bool:
    check = getattr(operation, "is_repository_scoped", None)
    return bool(check()) if callable(check) else False
