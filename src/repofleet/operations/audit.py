# operations/audit.py
from __future__ import annotations

import csv
import io
import os
from typing import List, TextIO

from ..environment import Environment, RunContext
from ..model import EventCode, EventLevel, RepositoryInspection, State
from ..ui.console import get_console
from .base import Operation

AUDIT_OPERATION = "audit report"
REPORT_PERMISSIONS = 0o644

AUDIT_HEADER = [
    "folder_name",
    "final_github_repo",
    "name_matches",
    "remote_default_branch",
    "local_branch",
    "in_sync",
    "remote_protocol",
    "origin_matches_canonical",
    "worktree_dirty",
    "dirty_files",
]

YES = "yes"
NO = "no"
NOT_APPLICABLE = "n/a"


def _ternary(value: bool) -> str:
    return YES if value else NO


def audit_row(inspection: RepositoryInspection) -> List[str]:
    if not inspection.is_git_repository:
        return [inspection.folder_name, NOT_APPLICABLE, NOT_APPLICABLE, NOT_APPLICABLE, NOT_APPLICABLE,
                NOT_APPLICABLE, NOT_APPLICABLE, NOT_APPLICABLE, NOT_APPLICABLE, ""]

    desired = inspection.desired_folder_name
    name_matches = _ternary(bool(desired) and desired == inspection.folder_name)

    if inspection.remote_default_branch and inspection.local_branch:
        in_sync = _ternary(inspection.remote_default_branch == inspection.local_branch)
    else:
        in_sync = NOT_APPLICABLE

    if inspection.canonical_owner_repo and inspection.origin_owner_repo:
        origin_matches = _ternary(inspection.canonical_owner_repo.lower() == inspection.origin_owner_repo.lower())
    else:
        origin_matches = NOT_APPLICABLE

    return [
        inspection.folder_name,
        inspection.final_owner_repo,
        name_matches,
        inspection.remote_default_branch,
        inspection.local_branch,
        in_sync,
        inspection.remote_protocol.value,
        origin_matches,
        _ternary(bool(inspection.dirty_files)),
        "; ".join(inspection.dirty_files),
    ]


def write_audit_csv(out: TextIO, state: State) -> int:
    writer = csv.writer(out, lineterminator="\n")
    writer.writerow(AUDIT_HEADER)
    for repository in state.repositories:
        writer.writerow(audit_row(repository.inspection))
    return len(state.repositories)


class AuditReportOperation(Operation):
    """
    Write one CSV row per repository.

    Global: runs against the whole State once per run, no matter how many
    steps or task actions ask for it.
    """

    def __init__(self, output: str = ""):
        self.output = output.strip()

    def name(self) -> str:
        return AUDIT_OPERATION

    def execute(self, ctx: RunContext, env: Environment, state: State) -> None:
        ctx.raise_if_cancelled()
        if not env.shared.claim_audit_report():
            env.report(EventLevel.INFO, EventCode.AUDIT_SKIP, "audit report already written")
            return

        buffer = io.StringIO()
        count = write_audit_csv(buffer, state)
        if not self.output:
            get_console().print_raw(buffer.getvalue().rstrip("\n"))
            env.report(EventLevel.INFO, EventCode.AUDIT_REPORT, f"audited {count} repositories", destination="stdout")
            return

        directory = os.path.dirname(self.output)
        if directory:
            env.filesystem.mkdir(directory, parents=True)
        env.filesystem.write_bytes(self.output, buffer.getvalue().encode("utf-8"), REPORT_PERMISSIONS)
        env.report(
            EventLevel.INFO, EventCode.AUDIT_REPORT,
            f"wrote report to {self.output}", destination=self.output, repositories=str(count),
        )
