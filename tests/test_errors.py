# tests/test_errors.py
import os

from repofleet.errors import (
    ExecutionFailures,
    OperationError,
    RepofleetError,
    format_error,
    format_operation_error,
    join_errors,
    resolve_owner_and_path,
)

from conftest import make_repository


def test_operation_error_renders_owner_path_and_message():
    repo = make_repository("/src/widget")
    error = OperationError("folder rename", subject="/src/widget", message="target exists: /src/x", code="target_exists")
    assert format_operation_error(error, [repo]) == "target_exists: acme/widget (/src/widget) target exists: /src/x"


def test_unknown_repository_uses_placeholders():
    error = OperationError("default", message="boom", code="source_missing")
    assert format_operation_error(error) == "source_missing: local-only ((unknown-path)) boom"


def test_code_falls_back_to_operation_and_humanized_message():
    error = OperationError("rename_failed", subject="/x")
    assert format_operation_error(error) == "rename_failed: local-only (/x) rename failed"


def test_message_derived_from_cause():
    error = OperationError("default", subject="/x", cause=OSError("disk full"), code="push_failed")
    assert format_operation_error(error).endswith("(/x) disk full")


def test_subject_inside_repository_is_attributed_to_deepest_match():
    outer = make_repository("/src/outer", origin="https://github.com/acme/outer.git")
    inner = make_repository("/src/outer/inner", origin="https://github.com/acme/inner.git")
    subject = os.path.join("/src/outer/inner", "file.txt")
    assert resolve_owner_and_path(subject, [outer, inner]) == ("acme/inner", subject)


def test_canonical_name_is_preferred_owner():
    repo = make_repository("/src/widget", canonical="acme-labs/widget")
    assert resolve_owner_and_path("/src/widget", [repo]) == ("acme-labs/widget", "/src/widget")


def test_join_errors():
    first, second = RepofleetError("one"), RepofleetError("two")
    assert join_errors([]) is None
    assert join_errors([first]) is first
    joined = join_errors([first, second])
    assert isinstance(joined, ExecutionFailures)
    assert joined.errors == [first, second]
    assert str(joined) == "one (and 1 more failures)"


def test_format_error_prefixes_step_name_once():
    assert format_error(RepofleetError("boom"), "rename") == "rename: boom"
    assert format_error(RepofleetError("rename: boom"), "rename") == "rename: boom"


def test_format_error_expands_joined_failures():
    joined = ExecutionFailures([RepofleetError("a"), RepofleetError("b")])
    assert format_error(joined, "step") == "step: a\nstep: b"
