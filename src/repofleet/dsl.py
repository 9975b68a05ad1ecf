# src/repofleet/dsl.py
from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from .config import StepConfiguration
from .tasks.definition import FileMode


# ---------------------------------------------------------------------
# Task helpers
# ---------------------------------------------------------------------

def file(
    path: str,
    content: str = "",
    *,
    mode: Union[FileMode, str] = FileMode.OVERWRITE,
    permissions: int = 0o644,
) -> Dict[str, Any]:
    """A templated file written by a task."""
    return {
        "path": path,
        "content": content,
        "mode": mode.value if isinstance(mode, FileMode) else mode,
        "permissions": permissions,
    }


def action(action_type: str, *, capture: str = "", **options: Any) -> Dict[str, Any]:
    """
    A custom task action.

    `from` is a keyword, so pass it as `from_="https"`; a trailing
    underscore is dropped from every option name.
    """
    cleaned = {key.rstrip("_"): value for key, value in options.items()}
    entry: Dict[str, Any] = {"type": action_type, "options": cleaned}
    if capture:
        entry["capture"] = capture
    return entry


def task(
    name: str,
    *files: Dict[str, Any],
    actions: Optional[List[Dict[str, Any]]] = None,
    branch: str = "",
    start_point: str = "",
    push_remote: str = "",
    commit_message: str = "",
    pull_request: Optional[Dict[str, Any]] = None,
    ensure_clean: bool = True,
    ensure_clean_variable: str = "",
    safeguards: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "name": name,
        "files": list(files),
        "actions": list(actions or []),
        "branch": {"name": branch, "start_point": start_point, "push_remote": push_remote},
        "commit_message": commit_message,
        "ensure_clean": ensure_clean,
        "ensure_clean_variable": ensure_clean_variable,
        "safeguards": dict(safeguards or {}),
    }
    if pull_request is not None:
        entry["pull_request"] = dict(pull_request)
    return entry


def pull_request(title: str, body: str = "", *, base: str = "", draft: bool = False) -> Dict[str, Any]:
    return {"title": title, "body": body, "base": base, "draft": draft}


# ---------------------------------------------------------------------
# Step helper
# ---------------------------------------------------------------------

def step(
    command: Union[str, List[str]],
    *,
    name: str = "",
    after: Optional[List[str]] = None,
    **options: Any,
) -> StepConfiguration:
    """
    Create a workflow step.

        step("remote update-protocol", from_="https", to="ssh")
        step("tasks apply", tasks=[task("add-license", file("LICENSE", "..."))])

    Without `after`, the step runs after the previous one.
    """
    cleaned = {key.rstrip("_"): value for key, value in options.items()}
    return StepConfiguration.model_validate(
        {"name": name, "after": after, "command": command, "with": cleaned}
    )


def tasks(*entries: Dict[str, Any], name: str = "", after: Optional[List[str]] = None) -> StepConfiguration:
    """Shorthand for step("tasks apply", tasks=[...])."""
    return step("tasks apply", name=name, after=after, tasks=list(entries))


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

class Matrix:
    """
    Minimal matrix expander.

    Example:
        matrix("owner", ["acme", "acme-labs"]).steps(
            lambda owner: step("remote update-to-canonical", name=f"canonical-{owner}", owner=owner)
        )
    """
    def __init__(self, key: str, values: Iterable[Any]):
        self.key = key
        self.values = list(values)

    def steps(self, builder: Callable[[Any], StepConfiguration]) -> List[StepConfiguration]:
        return [builder(v) for v in self.values]


def matrix(key: str, values: Iterable[Any]) -> Matrix:
    return Matrix(key, values)


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(*steps: Union[StepConfiguration, List[StepConfiguration]]) -> List[StepConfiguration]:
    """
    Workflow definition helper. Use this name so you can define your own
    def workflow(): return wf(step(...), step(...)).

    Users can write:
        from repofleet import wf, step

        def workflow():
            return wf(
                step("remote update-to-canonical"),
                step("folder rename", require_clean=True),
            )

    Or use STEPS directly:
        STEPS = wf(step(...), step(...))

    Lists (e.g. from matrix(...).steps(...)) are flattened in place.
    """
    flattened: List[StepConfiguration] = []
    for entry in steps:
        if isinstance(entry, list):
            flattened.extend(entry)
        else:
            flattened.append(entry)
    return flattened


workflow = wf  # alias (avoid naming your function workflow if you use it)
