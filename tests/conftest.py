# tests/conftest.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

from repofleet.environment import Environment, RunContext
from repofleet.git_facts.git import parse_remote_url
from repofleet.model import Event, RepositoryInspection, RepositoryState, State
from repofleet.prompt import ConfirmationResult
from repofleet.tasks.registry import default_registry


# ----------------------------------------------------------------------
# Fakes
# ----------------------------------------------------------------------

@dataclass
class FakeRepo:
    branch: str = "main"
    branches: List[str] = field(default_factory=lambda: ["main"])
    remotes: Dict[str, str] = field(default_factory=dict)
    default_branch: str = "main"
    status: List[str] = field(default_factory=list)
    refs: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    tracked: List[str] = field(default_factory=list)
    staged: List[Tuple[str, str]] = field(default_factory=list)
    merged: List[str] = field(default_factory=list)
    history: List[str] = field(default_factory=list)


class FakeManager:
    """In-memory stand-in for RepositoryManager; records every mutating call."""

    def __init__(self, repos: Optional[Dict[str, FakeRepo]] = None):
        self.repos: Dict[str, FakeRepo] = dict(repos or {})
        self.calls: List[Tuple] = []

    def repo(self, path: str) -> FakeRepo:
        return self.repos.setdefault(path, FakeRepo())

    # ---- reads ----

    def worktree_status(self, path):
        return list(self.repo(path).status)

    def is_clean(self, path):
        return not self.repo(path).status

    def current_branch(self, path):
        return self.repo(path).branch

    def branch_exists(self, path, branch):
        return branch in self.repo(path).branches

    def ref_exists(self, path, ref):
        repo = self.repo(path)
        return ref in repo.refs or ref in repo.branches

    def remote_url(self, path, remote="origin"):
        return self.repo(path).remotes.get(remote)

    def remote_default_branch(self, path, remote="origin"):
        return self.repo(path).default_branch

    def has_staged_changes(self, path):
        return bool(self.repo(path).staged)

    def tag_exists(self, path, tag):
        return tag in self.repo(path).tags

    def merged_branches(self, path, into):
        return list(self.repo(path).merged)

    def tracked_files(self, path):
        return list(self.repo(path).tracked)

    def staged_name_status(self, path):
        return list(self.repo(path).staged)

    def path_has_history(self, path, target):
        return target in self.repo(path).history

    # ---- writes ----

    def set_remote_url(self, path, remote, url):
        self.calls.append(("set_remote_url", path, remote, url))
        self.repo(path).remotes[remote] = url

    def add_remote(self, path, remote, url):
        self.calls.append(("add_remote", path, remote, url))
        self.repo(path).remotes[remote] = url

    def checkout_branch(self, path, branch, start_point=""):
        self.calls.append(("checkout_branch", path, branch, start_point))
        repo = self.repo(path)
        if branch not in repo.branches:
            repo.branches.append(branch)
        repo.branch = branch

    def switch_branch(self, path, branch):
        self.calls.append(("switch_branch", path, branch))
        self.repo(path).branch = branch

    def create_branch(self, path, branch, start_point):
        self.calls.append(("create_branch", path, branch, start_point))
        self.repo(path).branches.append(branch)

    def stage(self, path, paths: Sequence[str] = ()):
        self.calls.append(("stage", path, list(paths)))
        self.repo(path).staged.extend(("A", p) for p in paths)

    def commit(self, path, message, allow_empty=False):
        self.calls.append(("commit", path, message))
        self.repo(path).staged.clear()

    def push(self, path, remote, branch, *, set_upstream=True):
        self.calls.append(("push", path, remote, branch))

    def create_tag(self, path, tag, message):
        self.calls.append(("create_tag", path, tag, message))
        self.repo(path).tags.append(tag)

    def push_tag(self, path, remote, tag):
        self.calls.append(("push_tag", path, remote, tag))

    def delete_branch(self, path, branch):
        self.calls.append(("delete_branch", path, branch))
        self.repo(path).branches.remove(branch)

    def delete_remote_branch(self, path, remote, branch):
        self.calls.append(("delete_remote_branch", path, remote, branch))

    def filter_repo_remove_paths(self, path, targets):
        self.calls.append(("filter_repo", path, list(targets)))
        self.repo(path).remotes.pop("origin", None)

    def expire_and_gc(self, path):
        self.calls.append(("gc", path))

    def force_push_all(self, path, remote):
        self.calls.append(("force_push_all", path, remote))

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]


class RecordingReporter:
    def __init__(self):
        self.events: List[Event] = []

    def report(self, event: Event) -> None:
        self.events.append(event)

    def codes(self) -> List[str]:
        return [event.code for event in self.events]

    def by_code(self, code: str) -> List[Event]:
        return [event for event in self.events if event.code == code]


class ScriptedPrompter:
    def __init__(self, *answers: bool):
        self.answers = list(answers)
        self.prompts: List[str] = []

    def confirm(self, prompt: str) -> ConfirmationResult:
        self.prompts.append(prompt)
        return ConfirmationResult(confirmed=self.answers.pop(0) if self.answers else False)


class FakeGitHub:
    def __init__(self, url: str = "https://github.com/acme/widget/pull/1"):
        self.url = url
        self.default_branches: List[Tuple[str, str]] = []
        self.pull_requests = []

    def set_default_branch(self, owner_repo, branch):
        self.default_branches.append((owner_repo, branch))

    def create_pull_request(self, repository_path, request):
        self.pull_requests.append((repository_path, request))
        return self.url


# ----------------------------------------------------------------------
# Builders
# ----------------------------------------------------------------------

def make_repository(
    path: str,
    origin: str = "https://github.com/acme/widget.git",
    canonical: str = "",
    local_branch: str = "main",
    default_branch: str = "main",
    dirty: Optional[List[str]] = None,
) -> RepositoryState:
    protocol, owner_repo = parse_remote_url(origin)
    inspection = RepositoryInspection(
        path=path,
        folder_name=path.rstrip("/").rsplit("/", 1)[-1],
        origin_url=origin,
        origin_owner_repo=owner_repo,
        canonical_owner_repo=canonical or owner_repo,
        remote_default_branch=default_branch,
        local_branch=local_branch,
        remote_protocol=protocol,
        dirty_files=list(dirty or []),
    )
    return RepositoryState.from_inspection(inspection)


def fake_repo_for(repository: RepositoryState, **overrides) -> FakeRepo:
    inspection = repository.inspection
    repo = FakeRepo(
        branch=inspection.local_branch,
        branches=[inspection.local_branch] if inspection.local_branch else [],
        remotes={"origin": inspection.origin_url} if inspection.origin_url else {},
        default_branch=inspection.remote_default_branch,
        status=list(inspection.dirty_files),
    )
    for key, value in overrides.items():
        setattr(repo, key, value)
    return repo


def make_environment(
    repositories: Sequence[RepositoryState] = (),
    manager: Optional[FakeManager] = None,
    **kwargs,
) -> Environment:
    manager = manager or FakeManager()
    for repository in repositories:
        if repository.path not in manager.repos:
            manager.repos[repository.path] = fake_repo_for(repository)
    kwargs.setdefault("sink", RecordingReporter())
    kwargs.setdefault("registry", default_registry())
    return Environment(
        repositories=manager,
        state=State(repositories=list(repositories)),
        **kwargs,
    )


@pytest.fixture
def ctx() -> RunContext:
    return RunContext()


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()
