# model.py
from __future__ import annotations

import enum
import os
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Protocol

if TYPE_CHECKING:
    from .operations.base import Operation


# ---------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------

class EventLevel(str, enum.Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class EventCode:
    """Event codes understood by outcome classification and the console."""

    REMOTE_UPDATE = "REMOTE_UPDATE"
    REMOTE_DECLINED = "REMOTE_DECLINED"
    REMOTE_SKIP = "REMOTE_SKIP"

    PROTOCOL_UPDATE = "PROTOCOL_UPDATE"
    PROTOCOL_DECLINED = "PROTOCOL_DECLINED"
    PROTOCOL_SKIP = "PROTOCOL_SKIP"

    FOLDER_RENAME = "FOLDER_RENAME"
    FOLDER_DECLINED = "FOLDER_DECLINED"
    FOLDER_SKIP = "FOLDER_SKIP"

    DEFAULT_BRANCH_UPDATE = "DEFAULT_BRANCH_UPDATE"
    DEFAULT_BRANCH_SKIP = "DEFAULT_BRANCH_SKIP"

    NAMESPACE_APPLY = "NAMESPACE_APPLY"
    NAMESPACE_SKIP = "NAMESPACE_SKIP"
    NAMESPACE_NOOP = "NAMESPACE_NOOP"

    FILES_REPLACE = "FILES_REPLACE"
    FILES_NOOP = "FILES_NOOP"

    RELEASE_TAG = "RELEASE_TAG"
    HISTORY_PURGE = "HISTORY_PURGE"
    HISTORY_SKIP = "HISTORY_SKIP"
    BRANCH_CLEANUP = "BRANCH_CLEANUP"
    BRANCH_CLEANUP_NOOP = "BRANCH_CLEANUP_NOOP"
    REPO_SWITCHED = "REPO_SWITCHED"

    PLAN = "PLAN"

    TASK_PLAN = "TASK_PLAN"
    TASK_APPLY = "TASK_APPLY"
    TASK_SKIP = "TASK_SKIP"

    AUDIT_REPORT = "AUDIT_REPORT"
    AUDIT_SKIP = "AUDIT_SKIP"

    OPERATION_ERROR = "OPERATION_ERROR"
    WORKFLOW_STEP_SUMMARY = "WORKFLOW_STEP_SUMMARY"


@dataclass(frozen=True)
class Event:
    """A structured, repository-tagged notification pushed to a reporter."""
    level: EventLevel
    code: str
    message: str = ""
    repository_identifier: str = ""
    repository_path: str = ""
    details: Dict[str, str] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def with_details(self, **extra: str) -> "Event":
        merged = dict(self.details)
        merged.update(extra)
        return replace(self, details=merged)


class Reporter(Protocol):
    def report(self, event: Event) -> None: ...


# ---------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------

class RemoteProtocol(str, enum.Enum):
    GIT = "git"
    SSH = "ssh"
    HTTPS = "https"
    OTHER = "other"


@dataclass
class RepositoryInspection:
    """Git and remote facts gathered for one repository."""
    path: str
    folder_name: str = ""
    is_git_repository: bool = True
    origin_url: str = ""
    origin_owner_repo: str = ""
    canonical_owner_repo: str = ""
    remote_default_branch: str = ""
    local_branch: str = ""
    remote_protocol: RemoteProtocol = RemoteProtocol.OTHER
    dirty_files: List[str] = field(default_factory=list)

    @property
    def final_owner_repo(self) -> str:
        return self.canonical_owner_repo or self.origin_owner_repo

    @property
    def desired_folder_name(self) -> str:
        final = self.final_owner_repo
        if not final:
            return ""
        return final.split("/", 1)[-1]


def normalize_repository_path(path: str) -> str:
    cleaned = os.path.normpath(path.strip()) if path.strip() else ""
    return "" if cleaned == "." else cleaned


def repository_path_depth(path: str) -> int:
    return normalize_repository_path(path).replace("\\", "/").strip("/").count("/")


@dataclass
class RepositoryState:
    """
    A repository as seen by the run.

    The inspection snapshot is replaced in place by `refresh` after any
    action that changes git-visible state (remote rewrite, rename, commit).
    """
    path: str
    inspection: RepositoryInspection
    path_depth: int = 0
    initial_clean: bool = True
    has_nested_repositories: bool = False

    @classmethod
    def from_inspection(cls, inspection: RepositoryInspection) -> "RepositoryState":
        return cls(
            path=inspection.path,
            inspection=inspection,
            path_depth=repository_path_depth(inspection.path),
            initial_clean=not inspection.dirty_files,
        )

    @property
    def identifier(self) -> str:
        return self.inspection.final_owner_repo or os.path.basename(self.path)

    def refresh(self, inspect: Callable[[str], RepositoryInspection]) -> None:
        self.inspection = inspect(self.path)
        self.path = self.inspection.path
        self.path_depth = repository_path_depth(self.path)


@dataclass
class State:
    """All repositories taking part in one run."""
    repositories: List[RepositoryState] = field(default_factory=list)

    def find(self, path: str) -> Optional[RepositoryState]:
        wanted = normalize_repository_path(path)
        for repository in self.repositories:
            if normalize_repository_path(repository.path) == wanted:
                return repository
        return None


# ---------------------------------------------------------------------
# Operation graph
# ---------------------------------------------------------------------

@dataclass
class OperationNode:
    """A DAG vertex: an operation plus the names of the nodes it runs after."""
    operation: Optional["Operation"]
    name: str = ""
    dependencies: List[str] = field(default_factory=list)

    def resolved_name(self) -> str:
        name = (self.name or "").strip()
        if not name and self.operation is not None:
            name = (self.operation.name() or "").strip()
        return name


@dataclass
class OperationStage:
    """A layer of mutually independent nodes."""
    operations: List[OperationNode] = field(default_factory=list)

    def names(self) -> List[str]:
        return [node.resolved_name() for node in self.operations]
