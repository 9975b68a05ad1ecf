# git.py
# Small, focused wrapper around the Git CLI.
# This module centralizes all Git interactions so the rest of the codebase
# never needs to call subprocess("git ...") directly.

from __future__ import annotations

import os
import re
import subprocess
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..errors import RepofleetError
from ..model import RemoteProtocol, RepositoryInspection

ORIGIN = "origin"

GIT_PROTOCOL_PREFIX = "git@github.com:"
SSH_PROTOCOL_PREFIX = "ssh://git@github.com/"
HTTPS_PROTOCOL_PREFIX = "https://github.com/"


@dataclass(frozen=True)
class CommandResult:
    stdout: str
    stderr: str = ""
    exit_code: int = 0


@dataclass(eq=False)
class GitCommandError(RepofleetError):
    command: List[str]
    cwd: str
    exit_code: int
    stderr: str = ""

    def __str__(self) -> str:
        detail = self.stderr.strip().splitlines()[-1] if self.stderr.strip() else f"exit={self.exit_code}"
        return f"{' '.join(self.command)} failed in {self.cwd}: {detail}"


class GitExecutor:
    """
    Process-execution abstraction.

    This is the single low-level entry point for running git (and the few
    other tools repofleet drives, such as `gh`). Every call:
    - runs without a terminal prompt (GIT_TERMINAL_PROMPT=0)
    - captures stdout/stderr as text
    - raises GitCommandError on a non-zero exit unless check=False
    """

    def __init__(self, env: Optional[Dict[str, str]] = None):
        self.env = dict(os.environ)
        self.env["GIT_TERMINAL_PROMPT"] = "0"
        if env:
            self.env.update(env)

    def run_command(self, command: Sequence[str], cwd: Optional[str] = None, *, check: bool = True) -> CommandResult:
        proc = subprocess.run(
            list(command),
            cwd=cwd,
            env=self.env,
            text=True,
            capture_output=True,
        )
        result = CommandResult(stdout=proc.stdout, stderr=proc.stderr, exit_code=proc.returncode)
        if check and proc.returncode != 0:
            raise GitCommandError(
                command=list(command),
                cwd=cwd or os.getcwd(),
                exit_code=proc.returncode,
                stderr=proc.stderr[-4000:],
            )
        return result

    def run(self, args: Sequence[str], cwd: Optional[str] = None, *, check: bool = True) -> CommandResult:
        return self.run_command(["git", *args], cwd, check=check)


def _out(result: CommandResult) -> str:
    # Strip trailing newlines so callers can do clean string comparisons
    return result.stdout.strip()


class RepositoryManager:
    """Git porcelain used by operations, actions and safeguards."""

    def __init__(self, executor: GitExecutor):
        self.executor = executor

    def worktree_status(self, path: str) -> List[str]:
        """
        Return `git status --porcelain` entries.

        Leading spaces are significant in porcelain output (" M file"),
        so only line endings are removed.
        """
        result = self.executor.run(["status", "--porcelain"], path)
        return [line for line in result.stdout.splitlines() if line.strip()]

    def is_clean(self, path: str) -> bool:
        return not self.worktree_status(path)

    def current_branch(self, path: str) -> str:
        result = self.executor.run(["rev-parse", "--abbrev-ref", "HEAD"], path, check=False)
        if result.exit_code != 0:
            return ""
        return _out(result)

    def branch_exists(self, path: str, branch: str) -> bool:
        result = self.executor.run(["show-ref", "--verify", "--quiet", f"refs/heads/{branch}"], path, check=False)
        return result.exit_code == 0

    def ref_exists(self, path: str, ref: str) -> bool:
        result = self.executor.run(["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"], path, check=False)
        return result.exit_code == 0

    def remote_url(self, path: str, remote: str = ORIGIN) -> Optional[str]:
        """Configured URL of `remote`, or None when the remote does not exist."""
        result = self.executor.run(["config", "--get", f"remote.{remote}.url"], path, check=False)
        if result.exit_code == 1:
            return None
        if result.exit_code != 0:
            raise GitCommandError(
                command=["git", "config", "--get", f"remote.{remote}.url"],
                cwd=path,
                exit_code=result.exit_code,
                stderr=result.stderr,
            )
        return _out(result) or None

    def set_remote_url(self, path: str, remote: str, url: str) -> None:
        self.executor.run(["remote", "set-url", remote, url], path)

    def remote_default_branch(self, path: str, remote: str = ORIGIN) -> str:
        result = self.executor.run(["symbolic-ref", "--short", f"refs/remotes/{remote}/HEAD"], path, check=False)
        if result.exit_code != 0:
            return ""
        value = _out(result)
        prefix = f"{remote}/"
        return value[len(prefix):] if value.startswith(prefix) else value

    def checkout_branch(self, path: str, branch: str, start_point: str = "") -> None:
        args = ["checkout", "-B", branch]
        if start_point:
            args.append(start_point)
        self.executor.run(args, path)

    def switch_branch(self, path: str, branch: str) -> None:
        self.executor.run(["checkout", branch], path)

    def create_branch(self, path: str, branch: str, start_point: str) -> None:
        self.executor.run(["branch", branch, start_point], path)

    def stage(self, path: str, paths: Sequence[str] = ()) -> None:
        self.executor.run(["add", "--", *paths] if paths else ["add", "--all"], path)

    def commit(self, path: str, message: str, allow_empty: bool = False) -> None:
        args = ["commit", "-m", message]
        if allow_empty:
            args.append("--allow-empty")
        self.executor.run(args, path)

    def has_staged_changes(self, path: str) -> bool:
        result = self.executor.run(["diff", "--cached", "--quiet"], path, check=False)
        return result.exit_code == 1

    def push(self, path: str, remote: str, branch: str, *, set_upstream: bool = True) -> None:
        args = ["push"]
        if set_upstream:
            args.append("--set-upstream")
        self.executor.run([*args, remote, branch], path)

    def create_tag(self, path: str, tag: str, message: str) -> None:
        self.executor.run(["tag", "-a", tag, "-m", message], path)

    def push_tag(self, path: str, remote: str, tag: str) -> None:
        self.executor.run(["push", remote, f"refs/tags/{tag}"], path)

    def tag_exists(self, path: str, tag: str) -> bool:
        result = self.executor.run(["rev-parse", "--verify", "--quiet", f"refs/tags/{tag}"], path, check=False)
        return result.exit_code == 0

    def merged_branches(self, path: str, into: str) -> List[str]:
        out = _out(self.executor.run(["branch", "--merged", into, "--format=%(refname:short)"], path))
        return [line.strip() for line in out.splitlines() if line.strip()]

    def delete_branch(self, path: str, branch: str) -> None:
        self.executor.run(["branch", "-d", branch], path)

    def delete_remote_branch(self, path: str, remote: str, branch: str) -> None:
        self.executor.run(["push", remote, "--delete", branch], path)

    def tracked_files(self, path: str) -> List[str]:
        out = _out(self.executor.run(["ls-files"], path))
        return out.splitlines() if out else []

    def staged_name_status(self, path: str) -> List[Tuple[str, str]]:
        """(status letter, path) for each staged change."""
        out = _out(self.executor.run(["diff", "--cached", "--name-status"], path))
        entries = []
        for line in out.splitlines():
            status, _, name = line.partition("\t")
            if name:
                entries.append((status.strip()[:1], name.split("\t")[-1]))
        return entries

    def add_remote(self, path: str, remote: str, url: str) -> None:
        self.executor.run(["remote", "add", remote, url], path)

    def path_has_history(self, path: str, target: str) -> bool:
        return bool(_out(self.executor.run(["rev-list", "--all", "-n", "1", "--", target], path)))

    def filter_repo_remove_paths(self, path: str, targets: Sequence[str]) -> None:
        args = ["filter-repo"]
        for target in targets:
            args.extend(["--path", target])
        args.extend(["--invert-paths", "--prune-empty", "always", "--force"])
        self.executor.run(args, path)

    def expire_and_gc(self, path: str) -> None:
        self.executor.run(["reflog", "expire", "--expire=now", "--expire-unreachable=now", "--all"], path)
        self.executor.run(["gc", "--prune=now", "--quiet"], path)

    def force_push_all(self, path: str, remote: str) -> None:
        self.executor.run(["push", "--force", remote, "--all"], path)
        self.executor.run(["push", "--force", remote, "--tags"], path)


# ---------------------------------------------------------------------
# Remote URLs
# ---------------------------------------------------------------------

_OWNER_REPO = r"(?P<owner>[^/:\s]+)/(?P<repo>[^/\s]+?)(?:\.git)?/?"

_REMOTE_PATTERNS: List[Tuple[RemoteProtocol, "re.Pattern[str]"]] = [
    (RemoteProtocol.GIT, re.compile(r"^git@[^:]+:" + _OWNER_REPO + r"$")),
    (RemoteProtocol.SSH, re.compile(r"^ssh://(?:[^@/]+@)?[^/]+/" + _OWNER_REPO + r"$")),
    (RemoteProtocol.HTTPS, re.compile(r"^https?://(?:[^@/]+@)?[^/]+/" + _OWNER_REPO + r"$")),
]


def parse_remote_url(url: str) -> Tuple[RemoteProtocol, str]:
    """Return (protocol, "owner/repo") for a remote URL; owner/repo may be empty."""
    cleaned = (url or "").strip()
    for protocol, pattern in _REMOTE_PATTERNS:
        match = pattern.match(cleaned)
        if match:
            return protocol, f"{match.group('owner')}/{match.group('repo')}"
    return RemoteProtocol.OTHER, ""


def format_remote_url(protocol: RemoteProtocol, owner_repo: str) -> str:
    if protocol == RemoteProtocol.GIT:
        return f"{GIT_PROTOCOL_PREFIX}{owner_repo}.git"
    if protocol == RemoteProtocol.SSH:
        return f"{SSH_PROTOCOL_PREFIX}{owner_repo}.git"
    if protocol == RemoteProtocol.HTTPS:
        return f"{HTTPS_PROTOCOL_PREFIX}{owner_repo}.git"
    raise ValueError(f"cannot build a remote URL for protocol {protocol.value!r}")


# ---------------------------------------------------------------------
# Inspection and discovery
# ---------------------------------------------------------------------

MetadataLookup = Callable[[str], Tuple[str, str]]


def inspect_repository(
    manager: RepositoryManager,
    path: str,
    metadata: Optional[MetadataLookup] = None,
) -> RepositoryInspection:
    """
    Gather git facts for one repository.

    `metadata` maps "owner/repo" to (canonical "owner/repo", default branch)
    and is skipped when None.
    """
    origin_url = manager.remote_url(path, ORIGIN) or ""
    protocol, owner_repo = parse_remote_url(origin_url)

    inspection = RepositoryInspection(
        path=path,
        folder_name=os.path.basename(os.path.normpath(path)),
        origin_url=origin_url,
        origin_owner_repo=owner_repo,
        remote_protocol=protocol,
        local_branch=manager.current_branch(path),
        remote_default_branch=manager.remote_default_branch(path, ORIGIN),
        dirty_files=manager.worktree_status(path),
    )

    if metadata is not None and owner_repo:
        canonical, default_branch = metadata(owner_repo)
        inspection.canonical_owner_repo = canonical
        if default_branch:
            inspection.remote_default_branch = default_branch

    return inspection


def discover_repositories(roots: Sequence[str], include_nested: bool = False) -> List[str]:
    """
    Find git repositories (directories holding a `.git` entry) under `roots`.

    Without include_nested, the walk does not descend into a repository
    once found.
    """
    found: List[str] = []
    seen = set()
    for root in roots:
        start = os.path.abspath(os.path.expanduser(root))
        for current, dirs, files in os.walk(start):
            is_repository = ".git" in dirs or ".git" in files
            if is_repository and current not in seen:
                seen.add(current)
                found.append(current)
                if not include_nested:
                    dirs[:] = []
                    continue
            dirs[:] = sorted(d for d in dirs if d != ".git")
    return found
