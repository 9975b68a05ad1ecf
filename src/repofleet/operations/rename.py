# operations/rename.py
from __future__ import annotations

import os
import stat

from ..environment import Environment, RunContext
from ..errors import OperationError
from ..model import EventCode, EventLevel, RepositoryState
from .base import RepositoryScopedOperation

RENAME_OPERATION = "folder rename"
CASE_ONLY_SUFFIX = ".rename."


def _case_only(old: str, new: str) -> bool:
    return old != new and old.lower() == new.lower()


class RenameOperation(RepositoryScopedOperation):
    """
    Rename repository folders to the final GitHub repository name.

    With include_owner the target is `<parent>/<owner>/<repo>` and missing
    parent directories are created. A rename that only changes letter case
    goes through an intermediate name so it also works on case-insensitive
    filesystems.
    """

    def __init__(self, require_clean: bool = False, include_owner: bool = False, require_clean_explicit: bool = False):
        self.require_clean = require_clean
        self.include_owner = include_owner
        self.require_clean_explicit = require_clean_explicit

    def name(self) -> str:
        return RENAME_OPERATION

    def apply_require_clean_default(self, require_clean: bool) -> None:
        if self.require_clean_explicit:
            return
        self.require_clean = require_clean

    def desired_relative_name(self, repository: RepositoryState) -> str:
        inspection = repository.inspection
        if self.include_owner and inspection.final_owner_repo:
            owner, _, name = inspection.final_owner_repo.partition("/")
            return os.path.join(owner, name)
        return inspection.desired_folder_name.strip()

    def execute_for_repository(self, ctx: RunContext, env: Environment, repository: RepositoryState) -> None:
        ctx.raise_if_cancelled()
        desired = self.desired_relative_name(repository)
        if not desired:
            env.report(EventLevel.WARN, EventCode.FOLDER_SKIP, "desired folder name unknown", repository)
            return

        fs = env.filesystem
        old_path = fs.abs(repository.path)
        new_path = os.path.join(os.path.dirname(old_path), desired)

        if old_path == new_path or old_path.endswith(os.sep + desired):
            env.report(EventLevel.INFO, EventCode.FOLDER_SKIP, "already normalized", repository)
            return

        if self.require_clean:
            status = env.repositories.worktree_status(repository.path) if env.repositories is not None else []
            if status:
                env.report(EventLevel.WARN, EventCode.FOLDER_SKIP, "dirty worktree", repository, status=", ".join(status))
                return

        parent = os.path.dirname(new_path)
        if fs.exists(parent):
            if not stat.S_ISDIR(fs.stat(parent).st_mode):
                raise OperationError(
                    RENAME_OPERATION, subject=repository.path,
                    message=f"target parent is not a directory: {parent}", code="parent_not_directory",
                )
        elif not self.include_owner:
            raise OperationError(
                RENAME_OPERATION, subject=repository.path,
                message=f"target parent missing: {parent}", code="parent_missing",
            )
        if fs.exists(new_path) and not _case_only(old_path, new_path):
            raise OperationError(
                RENAME_OPERATION, subject=repository.path,
                message=f"target exists: {new_path}", code="target_exists",
            )

        if env.dry_run:
            env.report(EventLevel.INFO, EventCode.PLAN, f"rename {old_path} -> {new_path}", repository)
            return
        if not env.confirm(f"Rename '{old_path}' -> '{new_path}'?").confirmed:
            env.report(EventLevel.INFO, EventCode.FOLDER_DECLINED, "rename declined", repository)
            return

        if not fs.exists(parent):
            fs.mkdir(parent, parents=True)
        try:
            if _case_only(old_path, new_path):
                intermediate = self._intermediate_path(env, old_path)
                fs.rename(old_path, intermediate)
                fs.rename(intermediate, new_path)
            else:
                fs.rename(old_path, new_path)
        except OSError as exc:
            raise OperationError(
                RENAME_OPERATION, subject=repository.path, cause=exc,
                message=f"rename failed for {old_path} -> {new_path}", code="rename_failed",
            ) from exc

        env.report(EventLevel.INFO, EventCode.FOLDER_RENAME, f"{old_path} -> {new_path}", repository, target=new_path)

        repository.path = new_path
        repository.inspection.path = new_path
        env.refresh(repository)

    @staticmethod
    def _intermediate_path(env: Environment, old_path: str) -> str:
        counter = 0
        while True:
            candidate = f"{old_path}{CASE_ONLY_SUFFIX}{counter}"
            if not env.filesystem.exists(candidate):
                return candidate
            counter += 1
