# tests/test_operations.py
import csv
import os

import pytest

from repofleet.errors import OperationError
from repofleet.filesystem import OSFileSystem
from repofleet.model import EventCode, EventLevel, RemoteProtocol, RepositoryInspection, State
from repofleet.operations.audit import AUDIT_HEADER, AuditReportOperation, audit_row
from repofleet.operations.branch import BranchTarget, DefaultBranchOperation
from repofleet.operations.remotes import CanonicalRemoteOperation, ProtocolConversionOperation, parse_protocol
from repofleet.operations.rename import RenameOperation
from repofleet.prompt import PromptDispatcher, PromptState

from conftest import FakeGitHub, ScriptedPrompter, make_environment, make_repository


def declining_prompter():
    return PromptDispatcher(ScriptedPrompter(False), PromptState())


# ----------------------------------------------------------------------
# folder rename
# ----------------------------------------------------------------------

@pytest.fixture
def old_checkout(tmp_path):
    path = tmp_path / "old-name"
    path.mkdir()
    return make_repository(str(path), canonical="acme/widget")


def rename_env(repository, **kwargs):
    env = make_environment([repository], **kwargs)
    # the refreshed inspection after a rename reads the same fake repository
    shared = env.repositories.repo(repository.path)
    for candidate in ("widget", os.path.join("acme", "widget")):
        target = os.path.join(os.path.dirname(repository.path), candidate)
        env.repositories.repos[target] = shared
    return env


def test_rename_to_repository_name(ctx, old_checkout, tmp_path):
    env = rename_env(old_checkout)

    RenameOperation().execute_for_repository(ctx, env, old_checkout)

    target = str(tmp_path / "widget")
    assert os.path.isdir(target)
    assert not os.path.exists(tmp_path / "old-name")
    assert old_checkout.path == target
    assert env.sink.by_code(EventCode.FOLDER_RENAME)[0].details["target"] == target


def test_rename_with_owner_creates_parent(ctx, old_checkout, tmp_path):
    env = rename_env(old_checkout)
    RenameOperation(include_owner=True).execute_for_repository(ctx, env, old_checkout)
    assert os.path.isdir(tmp_path / "acme" / "widget")


def test_rename_already_normalized(ctx, tmp_path):
    (tmp_path / "widget").mkdir()
    repo = make_repository(str(tmp_path / "widget"))
    env = make_environment([repo])

    RenameOperation().execute_for_repository(ctx, env, repo)

    skip = env.sink.by_code(EventCode.FOLDER_SKIP)[0]
    assert (skip.level, skip.message) == (EventLevel.INFO, "already normalized")


def test_rename_case_only_change(ctx, tmp_path):
    (tmp_path / "Widget").mkdir()
    repo = make_repository(str(tmp_path / "Widget"))
    env = rename_env(repo)

    RenameOperation().execute_for_repository(ctx, env, repo)

    assert sorted(os.listdir(tmp_path)) == ["widget"]


def test_rename_unknown_name(ctx, tmp_path):
    repo = make_repository(str(tmp_path / "x"), origin="")
    env = make_environment([repo])
    RenameOperation().execute_for_repository(ctx, env, repo)
    assert env.sink.by_code(EventCode.FOLDER_SKIP)[0].message == "desired folder name unknown"


def test_rename_skips_dirty_worktree_when_clean_required(ctx, old_checkout, tmp_path):
    env = rename_env(old_checkout)
    env.repositories.repo(old_checkout.path).status = [" M a.txt"]

    RenameOperation(require_clean=True).execute_for_repository(ctx, env, old_checkout)

    skip = env.sink.by_code(EventCode.FOLDER_SKIP)[0]
    assert (skip.level, skip.message) == (EventLevel.WARN, "dirty worktree")
    assert os.path.isdir(tmp_path / "old-name")


def test_rename_target_exists(ctx, old_checkout, tmp_path):
    (tmp_path / "widget").mkdir()
    env = rename_env(old_checkout)
    with pytest.raises(OperationError) as excinfo:
        RenameOperation().execute_for_repository(ctx, env, old_checkout)
    assert excinfo.value.code == "target_exists"


def test_rename_dry_run(ctx, old_checkout, tmp_path):
    env = rename_env(old_checkout, dry_run=True)
    RenameOperation().execute_for_repository(ctx, env, old_checkout)
    assert env.sink.codes() == [EventCode.PLAN]
    assert os.path.isdir(tmp_path / "old-name")


def test_rename_declined(ctx, old_checkout, tmp_path):
    env = rename_env(old_checkout, prompter=declining_prompter())
    RenameOperation().execute_for_repository(ctx, env, old_checkout)
    assert env.sink.codes() == [EventCode.FOLDER_DECLINED]
    assert os.path.isdir(tmp_path / "old-name")


def test_require_clean_default_is_not_applied_over_explicit_value():
    explicit = RenameOperation(require_clean=False, require_clean_explicit=True)
    explicit.apply_require_clean_default(True)
    assert explicit.require_clean is False

    implicit = RenameOperation()
    implicit.apply_require_clean_default(True)
    assert implicit.require_clean is True


# ----------------------------------------------------------------------
# remotes
# ----------------------------------------------------------------------

@pytest.mark.parametrize("raw, expected", [("SSH", RemoteProtocol.SSH), (" https ", RemoteProtocol.HTTPS), ("ftp", None), (None, None)])
def test_parse_protocol(raw, expected):
    assert parse_protocol(raw) is expected


def test_canonical_remote_rewrites_origin(ctx):
    repo = make_repository("/src/widget", canonical="acme-labs/widget")
    env = make_environment([repo])

    CanonicalRemoteOperation().execute_for_repository(ctx, env, repo)

    assert env.repositories.calls == [
        ("set_remote_url", "/src/widget", "origin", "https://github.com/acme-labs/widget.git")
    ]
    update = env.sink.by_code(EventCode.REMOTE_UPDATE)[0]
    assert update.details["previous"] == "https://github.com/acme/widget.git"


def test_canonical_remote_keeps_git_protocol(ctx):
    repo = make_repository("/src/widget", origin="git@github.com:acme/widget.git", canonical="acme-labs/widget")
    env = make_environment([repo])
    CanonicalRemoteOperation().execute_for_repository(ctx, env, repo)
    assert env.repositories.calls[0][3] == "git@github.com:acme-labs/widget.git"


def test_canonical_remote_owner_constraint(ctx):
    repo = make_repository("/src/widget", canonical="acme-labs/widget")
    env = make_environment([repo])
    CanonicalRemoteOperation(owner_constraint="acme").execute_for_repository(ctx, env, repo)
    assert env.sink.by_code(EventCode.REMOTE_SKIP)[0].message == "owner acme-labs does not match acme"
    assert env.repositories.calls == []


@pytest.mark.parametrize(
    "origin, canonical, message",
    [
        ("", "", "remote 'origin' not configured"),
        ("https://github.com/acme/widget.git", "acme/widget", "already canonical"),
    ],
)
def test_canonical_remote_skips(ctx, origin, canonical, message):
    repo = make_repository("/src/widget", origin=origin, canonical=canonical)
    env = make_environment([repo])
    CanonicalRemoteOperation().execute_for_repository(ctx, env, repo)
    assert env.sink.by_code(EventCode.REMOTE_SKIP)[0].message == message


def test_canonical_remote_without_metadata(ctx):
    repo = make_repository("/src/widget")
    repo.inspection.canonical_owner_repo = ""
    env = make_environment([repo])
    CanonicalRemoteOperation().execute_for_repository(ctx, env, repo)
    assert env.sink.by_code(EventCode.REMOTE_SKIP)[0].message == "remote metadata unavailable for remote 'origin'"


def test_canonical_remote_declined(ctx):
    repo = make_repository("/src/widget", canonical="acme-labs/widget")
    env = make_environment([repo], prompter=declining_prompter())
    CanonicalRemoteOperation().execute_for_repository(ctx, env, repo)
    assert env.sink.codes() == [EventCode.REMOTE_DECLINED]
    assert env.repositories.calls == []


def test_protocol_conversion(ctx):
    repo = make_repository("/src/widget")
    env = make_environment([repo])

    ProtocolConversionOperation(RemoteProtocol.HTTPS, RemoteProtocol.SSH).execute_for_repository(ctx, env, repo)

    assert env.repositories.calls == [("set_remote_url", "/src/widget", "origin", "ssh://git@github.com/acme/widget.git")]
    assert env.sink.by_code(EventCode.PROTOCOL_UPDATE)[0].message == "https -> ssh"
    assert repo.inspection.remote_protocol == RemoteProtocol.SSH


def test_protocol_conversion_ignores_other_protocols(ctx):
    repo = make_repository("/src/widget", origin="git@github.com:acme/widget.git")
    env = make_environment([repo])
    ProtocolConversionOperation(RemoteProtocol.HTTPS, RemoteProtocol.SSH).execute_for_repository(ctx, env, repo)
    assert env.sink.events == []
    assert env.repositories.calls == []


# ----------------------------------------------------------------------
# default branch
# ----------------------------------------------------------------------

def test_default_branch_promotes_target(ctx):
    repo = make_repository("/src/widget")
    github = FakeGitHub()
    env = make_environment([repo], github=github)

    DefaultBranchOperation(BranchTarget(target_branch="trunk", delete_source_branch=True)).execute_for_repository(ctx, env, repo)

    assert env.repositories.calls == [
        ("create_branch", "/src/widget", "trunk", "main"),
        ("switch_branch", "/src/widget", "trunk"),
        ("push", "/src/widget", "origin", "trunk"),
        ("delete_remote_branch", "/src/widget", "origin", "main"),
    ]
    assert github.default_branches == [("acme/widget", "trunk")]
    update = env.sink.by_code(EventCode.DEFAULT_BRANCH_UPDATE)[0]
    assert update.message == "main -> trunk"


def test_default_branch_already_set(ctx):
    repo = make_repository("/src/widget")
    env = make_environment([repo])
    DefaultBranchOperation(BranchTarget(target_branch="main")).execute_for_repository(ctx, env, repo)
    assert env.sink.by_code(EventCode.DEFAULT_BRANCH_SKIP)[0].message == "already defaults to main"


def test_default_branch_without_remote_stays_local(ctx):
    repo = make_repository("/src/widget", origin="", default_branch="")
    env = make_environment([repo], github=FakeGitHub())
    DefaultBranchOperation(BranchTarget(target_branch="trunk")).execute_for_repository(ctx, env, repo)
    assert env.repositories.call_names() == ["create_branch", "switch_branch"]
    assert env.github.default_branches == []


def test_default_branch_without_source(ctx):
    repo = make_repository("/src/widget", origin="", default_branch="", local_branch="")
    env = make_environment([repo])
    env.repositories.repo(repo.path).branch = ""
    with pytest.raises(OperationError) as excinfo:
        DefaultBranchOperation(BranchTarget()).execute_for_repository(ctx, env, repo)
    assert excinfo.value.code == "source_missing"


# ----------------------------------------------------------------------
# audit
# ----------------------------------------------------------------------

def test_audit_row():
    repo = make_repository("/src/old-name", canonical="acme/widget", local_branch="feature", dirty=[" M a.txt"])
    assert audit_row(repo.inspection) == [
        "old-name", "acme/widget", "no", "main", "feature", "no", "https", "yes", "yes", " M a.txt",
    ]


def test_audit_row_for_non_repository():
    row = audit_row(RepositoryInspection(path="/src/x", folder_name="x", is_git_repository=False))
    assert row[0] == "x"
    assert set(row[1:9]) == {"n/a"}


def test_audit_writes_csv_once_per_run(ctx, tmp_path):
    repos = [make_repository("/src/a", origin="https://github.com/acme/a.git"),
             make_repository("/src/b", origin="https://github.com/acme/b.git")]
    env = make_environment(repos)
    output = tmp_path / "reports" / "audit.csv"
    operation = AuditReportOperation(str(output))

    operation.execute(ctx, env, State(repositories=repos))
    operation.execute(ctx, env, State(repositories=repos))

    with open(output, newline="") as handle:
        rows = list(csv.reader(handle))
    assert rows[0] == AUDIT_HEADER
    assert [row[0] for row in rows[1:]] == ["a", "b"]
    assert env.sink.codes() == [EventCode.AUDIT_REPORT, EventCode.AUDIT_SKIP]


def test_audit_to_stdout(ctx, capsys):
    repo = make_repository("/src/a", origin="https://github.com/acme/a.git")
    env = make_environment([repo])
    AuditReportOperation().execute(ctx, env, env.state)
    out = capsys.readouterr().out
    assert out.splitlines()[0] == ",".join(AUDIT_HEADER)
    assert env.sink.by_code(EventCode.AUDIT_REPORT)[0].details["destination"] == "stdout"


class RecordingFileSystem(OSFileSystem):
    def __init__(self):
        self.writes = {}
        self.directories = []

    def mkdir(self, path, parents=True):
        self.directories.append(path)

    def write_bytes(self, path, data, mode=None):
        self.writes[path] = (data, mode)


def test_audit_writes_through_the_environment_filesystem(ctx):
    repo = make_repository("/src/a", origin="https://github.com/acme/a.git")
    filesystem = RecordingFileSystem()
    env = make_environment([repo], filesystem=filesystem)

    AuditReportOperation("/reports/audit.csv").execute(ctx, env, env.state)

    assert filesystem.directories == ["/reports"]
    data, mode = filesystem.writes["/reports/audit.csv"]
    assert data.decode("utf-8").splitlines()[0] == ",".join(AUDIT_HEADER)
    assert mode == 0o644
