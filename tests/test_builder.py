# tests/test_builder.py
import pytest

from repofleet.builder import (
    OperationDefaults,
    apply_defaults,
    build_operations,
    command_key,
    resolve_command_key,
)
from repofleet.errors import WorkflowConfigurationError
from repofleet.model import RemoteProtocol
from repofleet.operations.audit import AuditReportOperation
from repofleet.operations.branch import DefaultBranchOperation
from repofleet.operations.remotes import CanonicalRemoteOperation, ProtocolConversionOperation
from repofleet.operations.rename import RenameOperation
from repofleet.operations.tasks import TaskOperation
from repofleet.options import OptionTypeError
from repofleet.tasks.registry import default_registry


def build(*steps):
    return build_operations(list(steps), default_registry())


def test_command_key_normalizes_whitespace_and_case():
    assert command_key([" Remote ", "update-PROTOCOL"]) == "remote update-protocol"
    assert command_key(["remote  update-protocol"]) == "remote update-protocol"


@pytest.mark.parametrize(
    "legacy, current",
    [
        (["branch-default"], "default"),
        (["branch", "default"], "default"),
        (["repo", "folder", "rename"], "folder rename"),
        (["workflow", "audit", "report"], "audit report"),
        (["repo", "tasks", "apply"], "tasks apply"),
    ],
)
def test_legacy_aliases(legacy, current):
    assert resolve_command_key(legacy) == current


def test_builds_each_command():
    nodes = build(
        {"command": "remote update-to-canonical", "with": {"owner": " acme "}},
        {"command": "remote update-protocol", "with": {"from": "https", "to": "SSH"}},
        {"command": "folder rename", "with": {"include_owner": True}},
        {"command": "default", "with": {"targets": [{"source_branch": "master", "target_branch": "main"}]}},
        {"command": "tasks apply", "with": {"tasks": [{"name": "t", "files": [{"path": "a"}]}]}},
        {"command": "audit report", "with": {"output": "out.csv"}},
    )
    operations = [node.operation for node in nodes]
    assert isinstance(operations[0], CanonicalRemoteOperation)
    assert operations[0].owner_constraint == "acme"
    assert isinstance(operations[1], ProtocolConversionOperation)
    assert (operations[1].from_protocol, operations[1].to_protocol) == (RemoteProtocol.HTTPS, RemoteProtocol.SSH)
    assert isinstance(operations[2], RenameOperation) and operations[2].include_owner
    assert isinstance(operations[3], DefaultBranchOperation)
    assert (operations[3].target.source_branch, operations[3].target.target_branch) == ("master", "main")
    assert isinstance(operations[4], TaskOperation)
    assert isinstance(operations[5], AuditReportOperation) and operations[5].output == "out.csv"


def test_default_names_and_sequential_dependencies():
    nodes = build({"command": "folder rename"}, {"command": ["remote", "update-to-canonical"]})
    assert [node.name for node in nodes] == ["folder-rename-1", "remote-update-to-canonical-2"]
    assert nodes[0].dependencies == []
    assert nodes[1].dependencies == ["folder-rename-1"]


def test_explicit_after_replaces_sequential_dependency():
    nodes = build(
        {"name": "a", "command": "folder rename"},
        {"name": "b", "command": "audit report", "after": []},
        {"name": "c", "command": "audit report", "after": ["a", "a"]},
    )
    assert nodes[1].dependencies == []
    assert nodes[2].dependencies == ["a"]


def test_default_branch_target_defaults():
    target = build({"command": "default", "with": {"targets": [{}]}})[0].operation.target
    assert (target.remote_name, target.target_branch, target.push_to_remote) == ("origin", "master", True)


@pytest.mark.parametrize(
    "step, message",
    [
        ({"command": "remote update-protocol", "with": {"from": "ftp", "to": "ssh"}}, "valid 'from' protocol"),
        ({"command": "remote update-protocol", "with": {"from": "https"}}, "valid 'to' protocol"),
        ({"command": "remote update-protocol", "with": {"from": "ssh", "to": "ssh"}}, "distinct source and target"),
        ({"command": "default", "with": {}}, "requires at least one target"),
        ({"command": "default", "with": {"targets": [{}, {}]}}, "requires exactly one target"),
        ({"command": "tasks apply", "with": {}}, "requires at least one task entry"),
        ({"command": "tasks apply", "with": {"tasks": []}}, "requires at least one task entry"),
        ({"command": "launch rockets"}, "unsupported workflow command: launch rockets"),
        ({"command": ""}, "missing command path"),
    ],
)
def test_invalid_steps(step, message):
    with pytest.raises(WorkflowConfigurationError, match=message):
        build(step)


def test_tasks_must_be_a_list():
    with pytest.raises(OptionTypeError, match="option tasks must be a list"):
        build({"command": "tasks apply", "with": {"tasks": {"name": "t"}}})


def test_option_type_errors_surface():
    with pytest.raises(OptionTypeError, match="option include_owner must be a boolean"):
        build({"command": "folder rename", "with": {"include_owner": "sometimes"}})


def test_empty_workflow():
    with pytest.raises(WorkflowConfigurationError, match="at least one step"):
        build_operations([])


def test_duplicate_step_names():
    with pytest.raises(WorkflowConfigurationError, match="'x' defined multiple times"):
        build({"name": "x", "command": "folder rename"}, {"name": "x", "command": "audit report"})


def test_self_dependency():
    with pytest.raises(WorkflowConfigurationError, match="'x' cannot depend on itself"):
        build({"name": "x", "command": "folder rename", "after": ["x"]})


def test_unknown_dependency():
    with pytest.raises(WorkflowConfigurationError, match="'x' depends on unknown step 'ghost'"):
        build({"name": "x", "command": "folder rename", "after": ["ghost"]})


def test_apply_defaults_respects_explicit_require_clean():
    nodes = build(
        {"name": "implicit", "command": "folder rename"},
        {"name": "explicit", "command": "folder rename", "with": {"require_clean": False}},
    )
    apply_defaults(nodes, OperationDefaults(require_clean=True))
    assert nodes[0].operation.require_clean is True
    assert nodes[1].operation.require_clean is False


def test_task_operation_scope_depends_on_actions():
    global_only = build({"command": "tasks apply", "with": {"tasks": [{"name": "a", "actions": [{"type": "audit.report"}]}]}})
    per_repo = build({"command": "tasks apply", "with": {"tasks": [{"name": "a", "actions": [{"type": "git.push"}]}]}})
    assert not global_only[0].operation.is_repository_scoped()
    assert per_repo[0].operation.is_repository_scoped()
