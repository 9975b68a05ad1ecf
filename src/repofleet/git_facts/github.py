# github.py
# Remote metadata resolver and pull-request client backed by the `gh` CLI.

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from ..errors import RepofleetError
from .git import GitCommandError, GitExecutor


class GitHubError(RepofleetError):
    pass


@dataclass(frozen=True)
class RepositoryMetadata:
    name_with_owner: str
    default_branch: str


@dataclass(frozen=True)
class PullRequestRequest:
    title: str
    body: str
    base: str
    head: str
    draft: bool = False


class GitHubClient:
    """Thin wrapper over `gh`; results of metadata lookups are memoized per run."""

    def __init__(self, executor: GitExecutor):
        self.executor = executor
        self._metadata: Dict[str, RepositoryMetadata] = {}

    def _gh(self, args: list[str], cwd: Optional[str] = None) -> str:
        try:
            return self.executor.run_command(["gh", *args], cwd).stdout
        except GitCommandError as exc:
            raise GitHubError(str(exc)) from exc
        except FileNotFoundError as exc:
            raise GitHubError("gh CLI not found (install GitHub CLI or use --skip-metadata)") from exc

    def resolve_repository_metadata(self, owner_repo: str) -> RepositoryMetadata:
        cached = self._metadata.get(owner_repo)
        if cached is not None:
            return cached
        out = self._gh(["repo", "view", owner_repo, "--json", "nameWithOwner,defaultBranchRef"])
        try:
            payload = json.loads(out)
        except json.JSONDecodeError as exc:
            raise GitHubError(f"unexpected gh output for {owner_repo}: {exc}") from exc
        metadata = RepositoryMetadata(
            name_with_owner=payload.get("nameWithOwner") or owner_repo,
            default_branch=(payload.get("defaultBranchRef") or {}).get("name", ""),
        )
        self._metadata[owner_repo] = metadata
        return metadata

    def lookup(self, owner_repo: str) -> Tuple[str, str]:
        metadata = self.resolve_repository_metadata(owner_repo)
        return metadata.name_with_owner, metadata.default_branch

    def set_default_branch(self, owner_repo: str, branch: str) -> None:
        self._gh(["api", "-X", "PATCH", f"repos/{owner_repo}", "-f", f"default_branch={branch}"])
        self._metadata.pop(owner_repo, None)

    def create_pull_request(self, repository_path: str, request: PullRequestRequest) -> str:
        args = [
            "pr", "create",
            "--title", request.title,
            "--body", request.body,
            "--base", request.base,
            "--head", request.head,
        ]
        if request.draft:
            args.append("--draft")
        return self._gh(args, repository_path).strip()
