"""Built-in task action handlers.

Every handler has the registry signature
`(ctx, env, repository, parameters) -> Optional[str]` and decodes its
parameters with a pydantic Options model. A returned string can be captured
into the Variable Store with the action's `capture` name.

The first group delegates to the repository operations so a task can run
them as one of its actions. The rest are small git/GitHub steps and a few
maintenance sweeps (file replace, Go namespace rewrite, release tag, history
purge, merged branch cleanup).
"""

from __future__ import annotations

import fnmatch
import os
import re
import shlex
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from pydantic import Field, field_validator

from ..errors import ActionSkipped, OperationError, RepofleetError
from ..git_facts.git import ORIGIN, RepositoryManager
from ..git_facts.github import PullRequestRequest
from ..model import EventCode, EventLevel, RepositoryState
from ..operations.audit import AuditReportOperation
from ..operations.branch import BranchTarget, DefaultBranchOperation
from ..operations.remotes import CanonicalRemoteOperation, ProtocolConversionOperation, parse_protocol
from ..operations.rename import RenameOperation
from ..options import OptionValueError, Options, decode_options

if TYPE_CHECKING:
    from ..environment import Environment, RunContext
    from .registry import ActionRegistry


def _manager(env: "Environment") -> RepositoryManager:
    if env.repositories is None:
        raise RepofleetError("repository manager not configured")
    return env.repositories


def _require_repository(action_type: str, repository: Optional[RepositoryState]) -> RepositoryState:
    if repository is None:
        raise RepofleetError(f"task action {action_type} requires a repository")
    return repository


def _string_list(value: Any) -> Any:
    if isinstance(value, str):
        return [value] if value.strip() else []
    return value


# ---------------------------------------------------------------------
# Operation adapters
# ---------------------------------------------------------------------

class CanonicalRemoteOptions(Options):
    owner: str = ""


def handle_canonical_remote(ctx, env, repository, parameters):
    repository = _require_repository("repo.remote.update", repository)
    options = decode_options(CanonicalRemoteOptions, parameters)
    CanonicalRemoteOperation(options.owner).execute_for_repository(ctx, env, repository)
    return None


class ProtocolConversionOptions(Options):
    to: str = ""
    from_: str = Field("", alias="from")


def handle_protocol_conversion(ctx, env, repository, parameters):
    repository = _require_repository("repo.remote.convert-protocol", repository)
    options = decode_options(ProtocolConversionOptions, parameters)
    target = parse_protocol(options.to)
    if target is None:
        raise OptionValueError("to", "protocol conversion action requires a valid 'to' protocol")
    source = repository.inspection.remote_protocol
    if options.from_.strip():
        source = parse_protocol(options.from_)
        if source is None:
            raise OptionValueError("from", "protocol conversion action requires a valid 'from' protocol")
    if source == target:
        return None
    ProtocolConversionOperation(source, target).execute_for_repository(ctx, env, repository)
    return None


class RenameOptions(Options):
    require_clean: Optional[bool] = None
    include_owner: bool = False


def handle_rename(ctx, env, repository, parameters):
    repository = _require_repository("repo.folder.rename", repository)
    options = decode_options(RenameOptions, parameters)
    require_clean = True if options.require_clean is None else options.require_clean
    # a parent of nested repositories always looks dirty to git; trust the
    # state it had when the run started
    if require_clean and repository.has_nested_repositories and repository.initial_clean:
        require_clean = False
    operation = RenameOperation(
        require_clean=require_clean,
        include_owner=options.include_owner,
        require_clean_explicit=options.require_clean is not None,
    )
    operation.execute_for_repository(ctx, env, repository)
    return None


class BranchDefaultOptions(Options):
    target: str = ""
    source: str = ""
    remote: str = ""
    push: bool = True
    delete_source_branch: bool = False


def handle_branch_default(ctx, env, repository, parameters):
    repository = _require_repository("branch.default", repository)
    options = decode_options(BranchDefaultOptions, parameters)
    target = BranchTarget(
        remote_name=options.remote.strip() or ORIGIN,
        source_branch=options.source,
        push_to_remote=options.push,
        delete_source_branch=options.delete_source_branch,
    )
    if options.target.strip():
        target.target_branch = options.target.strip()
    DefaultBranchOperation(target).execute_for_repository(ctx, env, repository)
    return None


class AuditOptions(Options):
    output: str = ""


def handle_audit_report(ctx, env, repository, parameters):
    options = decode_options(AuditOptions, parameters)
    if env.dry_run:
        env.report(EventLevel.INFO, EventCode.PLAN, f"audit report to {options.output or 'stdout'}")
        return None
    AuditReportOperation(options.output).execute(ctx, env, env.state)
    return None


# ---------------------------------------------------------------------
# Branch switch
# ---------------------------------------------------------------------

class BranchChangeOptions(Options):
    branch: str = ""
    default_branch: str = ""
    remote: str = ""
    create_if_missing: bool = False
    require_clean: bool = True


def handle_branch_change(ctx, env, repository, parameters):
    repository = _require_repository("branch.change", repository)
    options = decode_options(BranchChangeOptions, parameters)
    manager = _manager(env)
    path = repository.path

    branch, source = options.branch.strip(), "explicit"
    if not branch and repository.inspection.remote_default_branch:
        branch, source = repository.inspection.remote_default_branch, "remote_default"
    if not branch and options.default_branch.strip():
        branch, source = options.default_branch.strip(), "configured_default"
    if not branch:
        raise OptionValueError("branch", "branch change requires a branch name")

    if options.require_clean and manager.worktree_status(path):
        raise ActionSkipped("repository dirty", {"branch": branch})

    if env.dry_run:
        env.report(EventLevel.INFO, EventCode.PLAN, f"switch to {branch}", repository, branch=branch)
        return branch

    if not manager.branch_exists(path, branch):
        remote = options.remote.strip() or ORIGIN
        remote_ref = f"{remote}/{branch}"
        if manager.ref_exists(path, remote_ref):
            manager.create_branch(path, branch, remote_ref)
        elif options.create_if_missing:
            manager.checkout_branch(path, branch)
        else:
            raise OperationError("branch.change", subject=path, message=f"branch {branch} not found", code="branch_missing")
    manager.switch_branch(path, branch)

    env.report(EventLevel.INFO, EventCode.REPO_SWITCHED, f"-> {branch}", repository, branch=branch, source=source)
    env.refresh(repository)
    return branch


# ---------------------------------------------------------------------
# File maintenance
# ---------------------------------------------------------------------

class FilesReplaceOptions(Options):
    find: str
    replace: str = ""
    patterns: List[str] = []
    pattern: str = ""

    @field_validator("patterns", mode="before")
    @classmethod
    def _patterns(cls, value: Any) -> Any:
        return _string_list(value)

    def globs(self) -> List[str]:
        globs = [p.strip() for p in self.patterns if p.strip()]
        if self.pattern.strip():
            globs.append(self.pattern.strip())
        return globs


def _matches_any(path: str, globs: List[str]) -> bool:
    if not globs:
        return True
    return any(fnmatch.fnmatch(path, glob) or fnmatch.fnmatch(os.path.basename(path), glob) for glob in globs)


def _read_text(env: "Environment", absolute: str) -> Optional[str]:
    try:
        data = env.filesystem.read_bytes(absolute)
    except FileNotFoundError:
        return None
    if b"\x00" in data:
        return None
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return None


def _write_text(env: "Environment", absolute: str, text: str) -> None:
    mode = env.filesystem.stat(absolute).st_mode & 0o777
    env.filesystem.write_bytes(absolute, text.encode("utf-8"), mode)


def handle_files_replace(ctx, env, repository, parameters):
    repository = _require_repository("repo.files.replace", repository)
    options = decode_options(FilesReplaceOptions, parameters)
    if not options.find:
        raise OptionValueError("find", "replacement requires a non-empty 'find' string")
    globs = options.globs()

    changed: Dict[str, str] = {}
    for relative in _manager(env).tracked_files(repository.path):
        if not _matches_any(relative, globs):
            continue
        absolute = os.path.join(repository.path, relative)
        text = _read_text(env, absolute)
        if text is None or options.find not in text:
            continue
        changed[absolute] = text.replace(options.find, options.replace)
        ctx.raise_if_cancelled()

    if not changed:
        env.report(EventLevel.INFO, EventCode.FILES_NOOP, f"no files contain {options.find!r}", repository)
        return None
    relative_paths = sorted(os.path.relpath(p, repository.path) for p in changed)
    if env.dry_run:
        env.report(EventLevel.INFO, EventCode.PLAN, f"replace in {len(changed)} files", repository, files=", ".join(relative_paths))
        return None

    for absolute, text in changed.items():
        _write_text(env, absolute, text)
    env.shared.record_mutated_files(repository.path, relative_paths)
    env.report(
        EventLevel.INFO, EventCode.FILES_REPLACE,
        f"replaced {options.find!r} in {len(changed)} files", repository,
        files=", ".join(relative_paths),
    )
    return str(len(changed))


GO_MOD = "go.mod"
_MODULE_LINE = re.compile(r"^module\s+(\S+)\s*$", re.MULTILINE)


class NamespaceOptions(Options):
    old: str
    new: str


def handle_namespace_rewrite(ctx, env, repository, parameters):
    """Rewrite a Go module path in go.mod and every tracked .go file."""
    repository = _require_repository("repo.namespace.rewrite", repository)
    options = decode_options(NamespaceOptions, parameters)
    old, new = options.old.strip().rstrip("/"), options.new.strip().rstrip("/")
    if not old or not new:
        raise OptionValueError("old", "namespace rewrite requires 'old' and 'new' module paths")
    if old == new:
        env.report(EventLevel.INFO, EventCode.NAMESPACE_NOOP, "namespace unchanged", repository)
        return None

    go_mod = os.path.join(repository.path, GO_MOD)
    mod_text = _read_text(env, go_mod)
    if mod_text is None:
        env.report(EventLevel.INFO, EventCode.NAMESPACE_SKIP, "go.mod not found", repository)
        return None
    match = _MODULE_LINE.search(mod_text)
    if match is None:
        env.report(EventLevel.WARN, EventCode.NAMESPACE_SKIP, "go.mod has no module directive", repository)
        return None
    module = match.group(1)
    if module != old and not module.startswith(old + "/") and module != new and not module.startswith(new + "/"):
        env.report(EventLevel.INFO, EventCode.NAMESPACE_SKIP, f"module {module} outside {old}", repository)
        return None

    prefix = re.compile(re.escape(old) + r'(?=[/"`\s]|$)', re.MULTILINE)
    changed: Dict[str, str] = {}
    candidates = [GO_MOD] + [p for p in _manager(env).tracked_files(repository.path) if p.endswith(".go")]
    for relative in candidates:
        absolute = os.path.join(repository.path, relative)
        text = mod_text if relative == GO_MOD else _read_text(env, absolute)
        if text is None:
            continue
        rewritten = prefix.sub(new, text)
        if rewritten != text:
            changed[relative] = rewritten

    if not changed:
        env.report(EventLevel.INFO, EventCode.NAMESPACE_NOOP, f"no references to {old}", repository)
        return None
    if env.dry_run:
        env.report(EventLevel.INFO, EventCode.PLAN, f"rewrite {old} -> {new} in {len(changed)} files", repository)
        return None

    for relative, text in changed.items():
        _write_text(env, os.path.join(repository.path, relative), text)
    env.shared.record_mutated_files(repository.path, sorted(changed))
    env.report(
        EventLevel.INFO, EventCode.NAMESPACE_APPLY,
        f"{old} -> {new}", repository,
        files=str(len(changed)),
    )
    return new


# ---------------------------------------------------------------------
# History
# ---------------------------------------------------------------------

class ReleaseTagOptions(Options):
    tag: str
    message: str = ""
    remote: str = ""
    push: bool = True


def handle_release_tag(ctx, env, repository, parameters):
    repository = _require_repository("repo.release.tag", repository)
    options = decode_options(ReleaseTagOptions, parameters)
    tag = options.tag.strip()
    if not tag:
        raise OptionValueError("tag", "release action requires 'tag'")
    manager = _manager(env)
    path = repository.path
    if manager.tag_exists(path, tag):
        raise OperationError("repo.release.tag", subject=path, message=f"tag {tag} already exists", code="tag_exists")

    remote = options.remote.strip()
    if env.dry_run:
        env.report(EventLevel.INFO, EventCode.PLAN, f"tag {tag}", repository, tag=tag, remote=remote)
        return tag

    manager.create_tag(path, tag, options.message.strip() or f"Release {tag}")
    if remote and options.push:
        manager.push_tag(path, remote, tag)
    env.report(EventLevel.INFO, EventCode.RELEASE_TAG, f"released {tag}", repository, tag=tag, remote=remote)
    return tag


class HistoryPurgeOptions(Options):
    paths: List[str]
    remote: str = ""
    push: bool = False

    @field_validator("paths", mode="before")
    @classmethod
    def _paths(cls, value: Any) -> Any:
        return _string_list(value)


def handle_history_purge(ctx, env, repository, parameters):
    """Remove paths from every commit with git filter-repo."""
    repository = _require_repository("repo.history.purge", repository)
    options = decode_options(HistoryPurgeOptions, parameters)
    targets = [p.strip() for p in options.paths if p.strip()]
    if not targets:
        raise OptionValueError("paths", "history purge requires at least one path")
    manager = _manager(env)
    path = repository.path

    present = [target for target in targets if manager.path_has_history(path, target)]
    if not present:
        env.report(EventLevel.INFO, EventCode.HISTORY_SKIP, f"no matching history for {', '.join(targets)}", repository)
        return None
    if env.dry_run:
        env.report(EventLevel.INFO, EventCode.PLAN, f"purge {', '.join(present)}", repository)
        return None

    remote = options.remote.strip() or ORIGIN
    remote_url = manager.remote_url(path, remote)

    manager.filter_repo_remove_paths(path, present)
    # filter-repo drops the remote to prevent accidental pushes
    if remote_url and manager.remote_url(path, remote) is None:
        manager.add_remote(path, remote, remote_url)
    manager.expire_and_gc(path)
    if options.push and remote_url:
        manager.force_push_all(path, remote)

    env.report(
        EventLevel.INFO, EventCode.HISTORY_PURGE,
        f"removed {', '.join(present)}", repository,
        remote=remote, push=str(options.push and bool(remote_url)).lower(),
    )
    env.refresh(repository)
    return None


class BranchCleanupOptions(Options):
    base: str = ""
    remote: str = ""
    delete_remote: bool = False
    protected: List[str] = []

    @field_validator("protected", mode="before")
    @classmethod
    def _protected(cls, value: Any) -> Any:
        return _string_list(value)


def handle_branch_cleanup(ctx, env, repository, parameters):
    """Delete local branches already merged into the base branch."""
    repository = _require_repository("repo.branches.cleanup", repository)
    options = decode_options(BranchCleanupOptions, parameters)
    manager = _manager(env)
    path = repository.path

    base = options.base.strip() or repository.inspection.remote_default_branch or manager.current_branch(path)
    if not base:
        raise OptionValueError("base", "branch cleanup requires a base branch")
    keep = {base, manager.current_branch(path), *(p.strip() for p in options.protected)}
    merged = [branch for branch in manager.merged_branches(path, base) if branch not in keep]

    if not merged:
        env.report(EventLevel.INFO, EventCode.BRANCH_CLEANUP_NOOP, f"no branches merged into {base}", repository)
        return None
    if env.dry_run:
        env.report(EventLevel.INFO, EventCode.PLAN, f"delete {', '.join(merged)}", repository)
        return None

    remote = options.remote.strip() or ORIGIN
    for branch in merged:
        ctx.raise_if_cancelled()
        manager.delete_branch(path, branch)
        if options.delete_remote and manager.ref_exists(path, f"{remote}/{branch}"):
            manager.delete_remote_branch(path, remote, branch)
    env.report(
        EventLevel.INFO, EventCode.BRANCH_CLEANUP,
        f"deleted {len(merged)} branches", repository,
        branches=", ".join(merged),
    )
    return str(len(merged))


# ---------------------------------------------------------------------
# Git and GitHub steps
# ---------------------------------------------------------------------

_STATUS_VERBS = {"A": "Add", "M": "Update", "D": "Remove", "R": "Rename", "C": "Copy", "T": "Update"}


class CommitMessageOptions(Options):
    prefix: str = ""
    max_files: int = 20


def generate_commit_message(entries: List[tuple], prefix: str = "", max_files: int = 20) -> str:
    """Deterministic summary of staged changes: subject plus one line per file."""
    if not entries:
        return ""
    verbs = {_STATUS_VERBS.get(status, "Update") for status, _ in entries}
    verb = verbs.pop() if len(verbs) == 1 else "Update"
    noun = "file" if len(entries) == 1 else "files"
    subject = f"{verb} {entries[0][1]}" if len(entries) == 1 else f"{verb} {len(entries)} {noun}"
    lines = [f"{prefix.strip()} {subject}".strip() if prefix.strip() else subject, ""]
    for status, name in entries[:max_files]:
        lines.append(f"- {_STATUS_VERBS.get(status, 'Update').lower()} {name}")
    if len(entries) > max_files:
        lines.append(f"- and {len(entries) - max_files} more")
    return "\n".join(lines)


def handle_commit_message(ctx, env, repository, parameters):
    repository = _require_repository("git.commit.message", repository)
    options = decode_options(CommitMessageOptions, parameters)
    message = generate_commit_message(_manager(env).staged_name_status(repository.path), options.prefix, options.max_files)
    if not message:
        raise ActionSkipped("no staged changes", {"action": "git.commit.message"})
    return message


class ShellCommandOptions(Options):
    command: Union[List[str], str]

    def argv(self) -> List[str]:
        if isinstance(self.command, str):
            return shlex.split(self.command)
        return [str(part) for part in self.command]


def handle_shell_command(ctx, env, repository, parameters):
    repository = _require_repository("shell.command", repository)
    options = decode_options(ShellCommandOptions, parameters)
    argv = options.argv()
    if not argv:
        raise OptionValueError("command", "shell command must not be empty")
    if env.dry_run:
        env.report(EventLevel.INFO, EventCode.PLAN, f"run {shlex.join(argv)}", repository)
        return None
    if env.git is None:
        raise RepofleetError("process executor not configured")
    return env.git.run_command(argv, repository.path).stdout.strip()


class StageOptions(Options):
    paths: List[str] = []

    @field_validator("paths", mode="before")
    @classmethod
    def _paths(cls, value: Any) -> Any:
        return _string_list(value)


def handle_stage(ctx, env, repository, parameters):
    repository = _require_repository("git.stage", repository)
    options = decode_options(StageOptions, parameters)
    paths = [p for p in options.paths if p.strip()] or env.shared.mutated_files(repository.path)
    _manager(env).stage(repository.path, paths)
    return None


class CommitOptions(Options):
    message: str = ""
    allow_empty: bool = False


def _commit(env: "Environment", repository: RepositoryState, options: CommitOptions) -> None:
    manager = _manager(env)
    if not options.message.strip():
        raise OptionValueError("message", "commit message not provided")
    if not options.allow_empty and not manager.has_staged_changes(repository.path):
        raise ActionSkipped("nothing to commit", {"action": "git.commit"})
    manager.commit(repository.path, options.message, allow_empty=options.allow_empty)


def handle_commit(ctx, env, repository, parameters):
    repository = _require_repository("git.commit", repository)
    _commit(env, repository, decode_options(CommitOptions, parameters))
    return None


class StageCommitOptions(StageOptions, CommitOptions):
    pass


def handle_stage_commit(ctx, env, repository, parameters):
    repository = _require_repository("git.stage-commit", repository)
    options = decode_options(StageCommitOptions, parameters)
    paths = [p for p in options.paths if p.strip()] or env.shared.mutated_files(repository.path)
    _manager(env).stage(repository.path, paths)
    _commit(env, repository, options)
    return None


class PushOptions(Options):
    remote: str = ""
    branch: str = ""


def _push(env: "Environment", repository: RepositoryState, remote: str, branch: str) -> str:
    manager = _manager(env)
    remote = remote.strip() or ORIGIN
    branch = branch.strip() or manager.current_branch(repository.path)
    if manager.remote_url(repository.path, remote) is None:
        raise ActionSkipped("remote missing", {"remote": remote})
    manager.push(repository.path, remote, branch)
    return branch


def handle_push(ctx, env, repository, parameters):
    repository = _require_repository("git.push", repository)
    options = decode_options(PushOptions, parameters)
    if env.dry_run:
        env.report(EventLevel.INFO, EventCode.PLAN, "push", repository)
        return None
    return _push(env, repository, options.remote, options.branch)


class PullRequestOpenOptions(PushOptions):
    title: str
    body: str = ""
    base: str = ""
    draft: bool = False


def handle_pull_request_open(ctx, env, repository, parameters):
    repository = _require_repository("pull-request.open", repository)
    options = decode_options(PullRequestOpenOptions, parameters)
    if not options.title.strip():
        raise OptionValueError("title", "pull request title is required")
    if env.github is None:
        raise ActionSkipped("github client not configured", {"action": "pull-request.open"})
    if env.dry_run:
        env.report(EventLevel.INFO, EventCode.PLAN, f"open pull request {options.title!r}", repository)
        return None
    head = _push(env, repository, options.remote, options.branch)
    url = env.github.create_pull_request(
        repository.path,
        PullRequestRequest(
            title=options.title.strip(),
            body=options.body,
            base=options.base.strip() or repository.inspection.remote_default_branch,
            head=head,
            draft=options.draft,
        ),
    )
    return url


def register_builtin_actions(registry: "ActionRegistry") -> None:
    registry.register("repo.remote.update", handle_canonical_remote)
    registry.register("repo.remote.convert-protocol", handle_protocol_conversion)
    registry.register("repo.folder.rename", handle_rename)
    registry.register("branch.default", handle_branch_default)
    registry.register("branch.change", handle_branch_change)
    registry.register("audit.report", handle_audit_report, global_scope=True)
    registry.register("repo.files.replace", handle_files_replace)
    registry.register("repo.namespace.rewrite", handle_namespace_rewrite)
    registry.register("repo.release.tag", handle_release_tag)
    registry.register("repo.history.purge", handle_history_purge)
    registry.register("repo.branches.cleanup", handle_branch_cleanup)
    registry.register("git.commit.message", handle_commit_message)
    registry.register("shell.command", handle_shell_command)
    registry.register("git.stage", handle_stage)
    registry.register("git.commit", handle_commit)
    registry.register("git.stage-commit", handle_stage_commit)
    registry.register("git.push", handle_push)
    registry.register("pull-request.open", handle_pull_request_open)
