# operations/remotes.py
from __future__ import annotations

from typing import Optional

from ..environment import Environment, RunContext
from ..git_facts.git import ORIGIN, format_remote_url
from ..model import EventCode, EventLevel, RemoteProtocol, RepositoryState
from .base import RepositoryScopedOperation


def parse_protocol(value: object) -> Optional[RemoteProtocol]:
    """git/ssh/https (case-insensitive), else None."""
    normalized = str(value or "").strip().lower()
    for protocol in (RemoteProtocol.GIT, RemoteProtocol.SSH, RemoteProtocol.HTTPS):
        if normalized == protocol.value:
            return protocol
    return None


class CanonicalRemoteOperation(RepositoryScopedOperation):
    """Point `origin` at the canonical GitHub repository, keeping its protocol."""

    def __init__(self, owner_constraint: str = ""):
        self.owner_constraint = owner_constraint.strip()

    def name(self) -> str:
        return "remote update-to-canonical"

    def execute_for_repository(self, ctx: RunContext, env: Environment, repository: RepositoryState) -> None:
        ctx.raise_if_cancelled()
        inspection = repository.inspection

        if not inspection.origin_url:
            env.report(EventLevel.WARN, EventCode.REMOTE_SKIP, f"remote '{ORIGIN}' not configured", repository)
            return
        canonical = inspection.canonical_owner_repo
        if not canonical:
            env.report(EventLevel.WARN, EventCode.REMOTE_SKIP, f"remote metadata unavailable for remote '{ORIGIN}'", repository)
            return
        owner = canonical.split("/", 1)[0]
        if self.owner_constraint and owner.lower() != self.owner_constraint.lower():
            env.report(
                EventLevel.WARN, EventCode.REMOTE_SKIP,
                f"owner {owner} does not match {self.owner_constraint}", repository,
            )
            return
        if inspection.origin_owner_repo.lower() == canonical.lower():
            env.report(EventLevel.INFO, EventCode.REMOTE_SKIP, "already canonical", repository)
            return

        protocol = inspection.remote_protocol
        if protocol == RemoteProtocol.OTHER:
            protocol = RemoteProtocol.HTTPS
        target = format_remote_url(protocol, canonical)

        if env.dry_run:
            env.report(EventLevel.INFO, EventCode.PLAN, f"update remote {inspection.origin_url} -> {target}", repository)
            return
        if not env.confirm(f"Update '{ORIGIN}' in {repository.path} to {target}?").confirmed:
            env.report(EventLevel.INFO, EventCode.REMOTE_DECLINED, "remote update declined", repository)
            return

        env.repositories.set_remote_url(repository.path, ORIGIN, target)
        env.report(
            EventLevel.INFO, EventCode.REMOTE_UPDATE,
            f"{inspection.origin_url} -> {target}", repository,
            previous=inspection.origin_url, remote=target,
        )
        env.refresh(repository)


class ProtocolConversionOperation(RepositoryScopedOperation):
    """Rewrite `origin` from one protocol (git/ssh/https) to another."""

    def __init__(self, from_protocol: RemoteProtocol, to_protocol: RemoteProtocol):
        self.from_protocol = from_protocol
        self.to_protocol = to_protocol

    def name(self) -> str:
        return "remote update-protocol"

    def execute_for_repository(self, ctx: RunContext, env: Environment, repository: RepositoryState) -> None:
        ctx.raise_if_cancelled()
        inspection = repository.inspection

        if inspection.remote_protocol != self.from_protocol:
            return
        owner_repo = inspection.final_owner_repo
        if not owner_repo:
            env.report(EventLevel.WARN, EventCode.PROTOCOL_SKIP, "repository owner unknown", repository)
            return

        target = format_remote_url(self.to_protocol, owner_repo)
        if env.dry_run:
            env.report(
                EventLevel.INFO, EventCode.PLAN,
                f"convert {self.from_protocol.value} -> {self.to_protocol.value}: {target}", repository,
            )
            return
        prompt = f"Convert '{ORIGIN}' in {repository.path} from {self.from_protocol.value} to {self.to_protocol.value}?"
        if not env.confirm(prompt).confirmed:
            env.report(EventLevel.INFO, EventCode.PROTOCOL_DECLINED, "protocol conversion declined", repository)
            return

        env.repositories.set_remote_url(repository.path, ORIGIN, target)
        env.report(
            EventLevel.INFO, EventCode.PROTOCOL_UPDATE,
            f"{self.from_protocol.value} -> {self.to_protocol.value}", repository,
            remote=target,
        )
        env.refresh(repository)
