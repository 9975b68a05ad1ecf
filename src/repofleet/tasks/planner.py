# tasks/planner.py
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from ..environment import Environment
from ..errors import RepofleetError
from ..model import RepositoryState
from .definition import ActionSpec, FileMode, TaskDefinition
from .templates import build_template_context, render_template

DEFAULT_BRANCH_PREFIX = "automation"

REASON_UNCHANGED = "unchanged"
REASON_EXISTS = "exists"
REASON_LINES_PRESENT = "lines-present"
REASON_NO_CHANGES = "no changes"

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9]+")


class TaskPlanError(RepofleetError):
    pass


def sanitize_branch_name(raw: str) -> str:
    """
    Lower-case each "/"-separated segment, collapse non-alphanumeric runs
    to a single "-" and trim; empty segments are dropped.
    """
    segments = []
    for segment in (raw or "").split("/"):
        cleaned = _NON_ALPHANUMERIC.sub("-", segment.strip().lower()).strip("-")
        if cleaned:
            segments.append(cleaned)
    return "/".join(segments)


def parse_flag(raw: Optional[str]) -> Optional[bool]:
    normalized = (raw or "").strip().lower()
    if normalized in ("true", "1", "yes"):
        return True
    if normalized in ("false", "0", "no"):
        return False
    return None


@dataclass
class FileChange:
    path: str
    absolute_path: str
    content: bytes
    mode: FileMode
    permissions: int
    apply: bool
    skip_reason: str = ""


@dataclass
class PlannedAction:
    type: str
    options: Dict[str, Any] = field(default_factory=dict)
    capture: str = ""


@dataclass
class PlannedPullRequest:
    title: str
    body: str
    base: str
    draft: bool = False


@dataclass
class TaskPlan:
    """A task resolved against one repository."""
    task: TaskDefinition
    repository: RepositoryState
    branch_name: str
    start_point: str
    commit_message: str
    files: List[FileChange] = field(default_factory=list)
    actions: List[PlannedAction] = field(default_factory=list)
    pull_request: Optional[PlannedPullRequest] = None
    ensure_clean: bool = True
    skipped: bool = False
    skip_reason: str = ""

    @property
    def applying_files(self) -> List[FileChange]:
        return [change for change in self.files if change.apply]

    def describe(self) -> Dict[str, str]:
        return {
            "task": self.task.name,
            "branch": self.branch_name,
            "start_point": self.start_point,
            "files": ", ".join(change.path for change in self.applying_files),
            "actions": ", ".join(action.type for action in self.actions),
            "pull_request": "true" if self.pull_request else "false",
        }


def _merge_missing_lines(existing: str, wanted: str) -> Optional[str]:
    present = {line.strip() for line in existing.splitlines()}
    missing = [line for line in wanted.splitlines() if line.strip() and line.strip() not in present]
    if not missing:
        return None
    prefix = existing if not existing or existing.endswith("\n") else existing + "\n"
    return prefix + "\n".join(missing) + "\n"


class TaskPlanner:
    """Renders a TaskDefinition into a concrete TaskPlan for one repository."""

    def __init__(self, env: Environment):
        self.env = env

    def plan(self, task: TaskDefinition, repository: RepositoryState) -> TaskPlan:
        variables = self.env.variables.snapshot()
        context = build_template_context(repository, task.name, variables)
        default_branch = repository.inspection.remote_default_branch

        branch_name = sanitize_branch_name(render_template("branch.name", task.branch.name, context))
        if not branch_name:
            branch_name = sanitize_branch_name(f"{DEFAULT_BRANCH_PREFIX}/{task.name}")

        start_point = render_template("branch.start_point", task.branch.start_point, context).strip()
        commit_message = render_template("commit_message", task.commit_message, context).strip()

        plan = TaskPlan(
            task=task,
            repository=repository,
            branch_name=branch_name,
            start_point=start_point or default_branch,
            commit_message=commit_message or f"Apply task {task.name}",
            ensure_clean=self._ensure_clean(task, variables),
        )
        plan.files = self._plan_files(task, repository, context)
        plan.actions = [self._plan_action(action, context) for action in task.actions]

        if task.pull_request is not None:
            pr = task.pull_request
            title = render_template("pull_request.title", pr.title, context).strip()
            if not title:
                raise TaskPlanError(f"task {task.name!r}: pull request title is empty")
            plan.pull_request = PlannedPullRequest(
                title=title,
                body=render_template("pull_request.body", pr.body, context),
                base=render_template("pull_request.base", pr.base, context).strip() or default_branch,
                draft=pr.draft,
            )

        if not plan.applying_files and not plan.actions:
            plan.skipped = True
            plan.skip_reason = REASON_NO_CHANGES
        return plan

    # ---- internals ----

    def _ensure_clean(self, task: TaskDefinition, variables: Dict[str, str]) -> bool:
        name = task.ensure_clean_variable.strip()
        if name and name in variables:
            override = parse_flag(variables[name])
            if override is not None:
                return override
        return task.ensure_clean

    def _plan_files(self, task: TaskDefinition, repository: RepositoryState, context: Dict[str, Any]) -> List[FileChange]:
        changes: List[FileChange] = []
        seen: Set[str] = set()
        for index, spec in enumerate(task.files):
            rendered = render_template(f"files[{index}].path", spec.path, context).strip()
            relative = self._validate_path(task.name, rendered)
            if relative in seen:
                raise TaskPlanError(f"task {task.name!r}: file {relative!r} declared multiple times")
            seen.add(relative)

            content = render_template(f"files[{index}].content", spec.content, context)
            changes.append(self._plan_file(repository, relative, content, spec.mode, spec.permissions))
        return sorted(changes, key=lambda change: change.path)

    @staticmethod
    def _validate_path(task_name: str, raw: str) -> str:
        if not raw:
            raise TaskPlanError(f"task {task_name!r}: file path is empty")
        if os.path.isabs(raw):
            raise TaskPlanError(f"task {task_name!r}: file path {raw!r} must be relative")
        normalized = os.path.normpath(raw).replace("\\", "/")
        if normalized in (".", "..") or normalized.startswith("../"):
            raise TaskPlanError(f"task {task_name!r}: file path {raw!r} escapes the repository")
        return normalized

    def _plan_file(self, repository: RepositoryState, relative: str, content: str, mode: FileMode, permissions: int) -> FileChange:
        absolute = os.path.join(repository.path, relative)
        wanted = content.encode("utf-8")
        try:
            existing: Optional[bytes] = self.env.filesystem.read_bytes(absolute)
        except FileNotFoundError:
            existing = None

        change = FileChange(
            path=relative,
            absolute_path=absolute,
            content=wanted,
            mode=mode,
            permissions=permissions,
            apply=True,
        )
        if existing is None:
            return change

        if mode == FileMode.SKIP_IF_EXISTS:
            change.apply, change.skip_reason = False, REASON_EXISTS
        elif mode in (FileMode.APPEND_IF_MISSING, FileMode.LINE_EDIT):
            try:
                text = existing.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise TaskPlanError(f"file {relative!r} is not UTF-8 text; {mode.value} cannot merge lines into it") from exc
            merged = _merge_missing_lines(text, content)
            if merged is None:
                change.apply, change.skip_reason = False, REASON_LINES_PRESENT
            else:
                change.content = merged.encode("utf-8")
        elif existing == wanted:
            change.apply, change.skip_reason = False, REASON_UNCHANGED
        return change

    @staticmethod
    def _plan_action(spec: ActionSpec, context: Dict[str, Any]) -> PlannedAction:
        options: Dict[str, Any] = {}
        for key, value in spec.options.items():
            name = str(key).strip().lower()
            if isinstance(value, str):
                value = render_template(f"actions.{spec.type}.{name}", value, context)
            options[name] = value
        return PlannedAction(type=spec.type, options=options, capture=spec.capture.strip())
