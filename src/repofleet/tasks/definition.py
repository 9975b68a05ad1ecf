# tasks/definition.py
from __future__ import annotations

import enum
from typing import Any, Dict, List, Optional

from pydantic import field_validator

from ..options import Options


class FileMode(str, enum.Enum):
    OVERWRITE = "overwrite"
    SKIP_IF_EXISTS = "skip-if-exists"
    APPEND_IF_MISSING = "append-if-missing"
    LINE_EDIT = "line-edit"


DEFAULT_FILE_PERMISSIONS = 0o644


class BranchSpec(Options):
    name: str = ""
    start_point: str = ""
    push_remote: str = ""


class FileSpec(Options):
    path: str
    content: str = ""
    mode: FileMode = FileMode.OVERWRITE
    permissions: int = DEFAULT_FILE_PERMISSIONS

    @field_validator("mode", mode="before")
    @classmethod
    def _mode(cls, value: Any) -> Any:
        if value is None or value == "":
            return FileMode.OVERWRITE
        if isinstance(value, str):
            normalized = value.strip().lower().replace("_", "-")
            if normalized not in {m.value for m in FileMode}:
                raise ValueError(f"unsupported file mode {value!r}")
            return normalized
        return value

    @field_validator("permissions", mode="before")
    @classmethod
    def _permissions(cls, value: Any) -> Any:
        # "0644" / "644" are octal; plain integers are taken as-is
        if value is None or value == "":
            return DEFAULT_FILE_PERMISSIONS
        if isinstance(value, str):
            try:
                return int(value.strip(), 8)
            except ValueError:
                raise ValueError(f"invalid file permissions {value!r}") from None
        return value


class ActionSpec(Options):
    type: str
    options: Dict[str, Any] = {}
    capture: str = ""

    @field_validator("type")
    @classmethod
    def _type(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("task action type is required")
        return cleaned


class PullRequestSpec(Options):
    title: str = ""
    body: str = ""
    base: str = ""
    draft: bool = False


class TaskDefinition(Options):
    """A declarative, templated unit of per-repository mutation."""
    name: str
    ensure_clean: bool = True
    ensure_clean_variable: str = ""
    branch: BranchSpec = BranchSpec()
    files: List[FileSpec] = []
    actions: List[ActionSpec] = []
    commit_message: str = ""
    pull_request: Optional[PullRequestSpec] = None
    safeguards: Dict[str, Any] = {}

    @field_validator("name")
    @classmethod
    def _name(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("task name is required")
        return cleaned

    @field_validator("branch", mode="before")
    @classmethod
    def _branch_shorthand(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"name": value}
        if value is None:
            return {}
        return value
