# tasks/registry.py
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional

from ..errors import WorkflowConfigurationError
from ..model import RepositoryState

if TYPE_CHECKING:
    from ..environment import Environment, RunContext

# handler(ctx, env, repository, parameters) -> captured value or None.
# Global handlers receive repository=None and run once per step.
ActionHandler = Callable[["RunContext", "Environment", Optional[RepositoryState], Mapping[str, Any]], Optional[str]]


class UnsupportedActionError(WorkflowConfigurationError):
    def __init__(self, action_type: str):
        self.action_type = action_type
        super().__init__(f"unsupported task action {action_type}")


@dataclass(frozen=True)
class _Registration:
    handler: ActionHandler
    global_scope: bool = False


def normalize_action_type(action_type: str) -> str:
    return (action_type or "").strip().lower()


class ActionRegistry:
    """
    Maps dotted action types to handlers.

    One registry is built per run and carried on the Environment, so
    registrations made by one run never leak into another.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, _Registration] = {}

    def register(self, action_type: str, handler: ActionHandler, *, global_scope: bool = False) -> None:
        key = normalize_action_type(action_type)
        if not key:
            raise WorkflowConfigurationError("task action type must not be empty")
        self._handlers[key] = _Registration(handler, global_scope)

    def lookup(self, action_type: str) -> ActionHandler:
        registration = self._handlers.get(normalize_action_type(action_type))
        if registration is None:
            raise UnsupportedActionError(action_type)
        return registration.handler

    def is_global(self, action_type: str) -> bool:
        registration = self._handlers.get(normalize_action_type(action_type))
        return registration is not None and registration.global_scope

    def run(
        self,
        action_type: str,
        ctx: "RunContext",
        env: "Environment",
        repository: Optional[RepositoryState],
        parameters: Mapping[str, Any],
    ) -> Optional[str]:
        handler = self.lookup(action_type)
        ctx.raise_if_cancelled()
        return handler(ctx, env, repository, parameters)

    def types(self) -> List[str]:
        return sorted(self._handlers)

    def __contains__(self, action_type: str) -> bool:
        return normalize_action_type(action_type) in self._handlers


def default_registry() -> ActionRegistry:
    """A registry with every built-in action type registered."""
    from .handlers import register_builtin_actions

    registry = ActionRegistry()
    register_builtin_actions(registry)
    return registry
