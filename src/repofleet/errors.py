# errors.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .model import RepositoryState, normalize_repository_path

DEFAULT_OWNER_REPOSITORY = "local-only"
UNKNOWN_REPOSITORY_PATH = "(unknown-path)"


class RepofleetError(Exception):
    """Base class for every error raised by repofleet."""


class WorkflowConfigurationError(RepofleetError):
    """Malformed steps, unknown commands or an unschedulable graph."""


class CycleError(WorkflowConfigurationError):
    def __init__(self, stuck: Sequence[str]):
        self.stuck = list(stuck)
        super().__init__(f"operation dependencies contain a cycle: {', '.join(self.stuck)}")


class CancelledError(RepofleetError):
    """The run was cancelled before the current action started."""


@dataclass(eq=False)
class RepositorySkipped(RepofleetError):
    """
    Signal that a repository must receive no further operations this run.

    Raised by hard-stop safeguards and by actions that decide a repository
    cannot be processed. The run coordinator treats it differently from an
    ordinary failure: the repository stops, the run does not.
    """
    reason: str

    def __str__(self) -> str:
        return f"repository skipped: {self.reason}"


@dataclass(eq=False)
class ActionSkipped(RepofleetError):
    """A guard refused the next task action. Remaining actions are not run."""
    reason: str
    fields: Dict[str, str] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.reason


@dataclass(eq=False)
class OperationError(RepofleetError):
    """
    An error attributed to one repository operation.

    Enough context for a single rendered line:
      <code>: <owner/repo> (<path>) <message>
    """
    operation: str
    subject: str = ""
    cause: Optional[BaseException] = None
    message: str = ""
    code: str = ""

    def __post_init__(self) -> None:
        if self.cause is not None:
            self.__cause__ = self.cause

    def __str__(self) -> str:
        detail = self.message or (str(self.cause) if self.cause is not None else "")
        if self.subject:
            return f"{self.operation}[{self.subject}]: {detail}"
        return f"{self.operation}: {detail}"

    def derived_message(self) -> str:
        raw = str(self).strip()
        for prefix in (f"{self.operation}[{self.subject}]:", f"{self.operation}:"):
            if self.operation and raw.startswith(prefix):
                return raw[len(prefix):].strip()
        return raw


class ExecutionFailures(RepofleetError):
    """Errors from several repositories, joined so none masks another."""

    def __init__(self, errors: Iterable[BaseException]):
        self.errors: List[BaseException] = list(errors)
        super().__init__(self._render())

    def _render(self) -> str:
        if not self.errors:
            return "no failures"
        first = str(self.errors[0])
        if len(self.errors) == 1:
            return first
        return f"{first} (and {len(self.errors) - 1} more failures)"


def join_errors(errors: Sequence[BaseException]) -> Optional[BaseException]:
    """Return None, the single error, or an ExecutionFailures wrapping all."""
    errors = [e for e in errors if e is not None]
    if not errors:
        return None
    if len(errors) == 1:
        return errors[0]
    return ExecutionFailures(errors)


# ----------------------------------------------------------------------
# Formatting
# ----------------------------------------------------------------------

def humanize_error_code(code: str) -> str:
    if not code:
        return "unknown error"
    return code.replace("_", " ").strip()


def _owner_of(repository: RepositoryState) -> str:
    inspection = repository.inspection
    for candidate in (inspection.final_owner_repo, inspection.canonical_owner_repo, inspection.origin_owner_repo):
        if candidate.strip():
            return candidate.strip()
    return ""


def resolve_owner_and_path(
    subject: str,
    repositories: Sequence[RepositoryState],
) -> Tuple[str, str]:
    """Attribute a subject path to the repository that contains it."""
    normalized_subject = normalize_repository_path(subject)
    selected: Optional[RepositoryState] = None
    longest = 0

    for repository in repositories:
        repository_path = normalize_repository_path(repository.path)
        if not repository_path:
            continue
        if not normalized_subject:
            if selected is None:
                selected = repository
                longest = len(repository_path)
            continue
        if normalized_subject == repository_path:
            return _owner_of(repository), repository_path
        if normalized_subject.startswith(repository_path + os.sep) and len(repository_path) > longest:
            selected = repository
            longest = len(repository_path)

    if selected is None and len(repositories) == 1:
        selected = repositories[0]
    if selected is None:
        return "", normalized_subject

    return _owner_of(selected), normalized_subject or normalize_repository_path(selected.path)


def format_operation_error(
    error: OperationError,
    repositories: Sequence[RepositoryState] = (),
) -> str:
    code = error.code.strip() or error.operation.strip() or "unknown_error"

    owner, path = resolve_owner_and_path(error.subject.strip(), repositories)
    owner = owner or DEFAULT_OWNER_REPOSITORY
    path = path or error.subject.strip() or UNKNOWN_REPOSITORY_PATH

    message = error.message.strip() or error.derived_message()
    if not message or message.lower() == code.lower():
        message = humanize_error_code(code)

    return f"{code}: {owner} ({path}) {message}"


def format_error(
    error: BaseException,
    name: str = "",
    repositories: Sequence[RepositoryState] = (),
) -> str:
    """Render any error for the console, prefixing the step name once."""
    if isinstance(error, OperationError):
        return format_operation_error(error, repositories)
    if isinstance(error, ExecutionFailures):
        return "\n".join(format_error(e, name, repositories) for e in error.errors)
    text = str(error).strip() or type(error).__name__
    if name and not text.startswith(name):
        return f"{name}: {text}"
    return text
