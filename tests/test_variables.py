# tests/test_variables.py
import pytest

from repofleet.config import load_variable_file, parse_variable_assignments
from repofleet.errors import WorkflowConfigurationError
from repofleet.variables import InvalidVariableName, VariableStore, variable_name


def test_seeded_value_wins_over_capture():
    store = VariableStore()
    store.seed("release", "v1")
    store.set("release", "v2")
    assert store.get("release") == "v1"
    assert store.is_seeded("release")


def test_capture_overwrites_capture():
    store = VariableStore()
    store.set("count", "1")
    store.set("count", "2")
    assert store.get("count") == "2"
    assert not store.is_seeded("count")


def test_seed_overwrites_capture_and_trims():
    store = VariableStore()
    store.set("owner", "someone")
    store.seed("owner", "  acme  ")
    assert store.get("owner") == "acme"


def test_missing_variable_is_none():
    assert VariableStore().get("nope") is None


@pytest.mark.parametrize("raw", ["", "  ", "has space", "semi;colon", "{{x}}"])
def test_invalid_names_are_rejected(raw):
    with pytest.raises(InvalidVariableName):
        variable_name(raw)


def test_name_is_trimmed():
    assert variable_name(" release.tag-1_a ") == "release.tag-1_a"


def test_clone_is_independent():
    store = VariableStore()
    store.seed("a", "1")
    copy = store.clone()
    copy.set("b", "2")
    assert store.get("b") is None
    assert copy.is_seeded("a")


def test_seeded_values_excludes_captures():
    store = VariableStore()
    store.seed("a", "1")
    store.set("b", "2")
    assert store.seeded_values() == {"a": "1"}
    assert store.snapshot() == {"a": "1", "b": "2"}
    assert len(store) == 2


def test_parse_assignments():
    assert parse_variable_assignments(["a=1", "b=x=y", "a=3", " "]) == {"a": "3", "b": "x=y"}


def test_parse_assignment_without_equals():
    with pytest.raises(WorkflowConfigurationError, match="key=value format: nope"):
        parse_variable_assignments(["nope"])


def test_parse_assignment_with_empty_key():
    with pytest.raises(WorkflowConfigurationError, match=r"cannot be empty \(=value\)"):
        parse_variable_assignments(["=value"])


def test_variable_file(tmp_path):
    path = tmp_path / "vars.json"
    path.write_text('{"year": 2026, "draft": true, "owner": "acme", "empty": null}')
    assert load_variable_file(path) == {"year": "2026", "draft": "true", "owner": "acme", "empty": ""}


def test_variable_file_rejects_nested_values(tmp_path):
    path = tmp_path / "vars.json"
    path.write_text('{"owners": ["a", "b"]}')
    with pytest.raises(WorkflowConfigurationError, match="must be a scalar"):
        load_variable_file(path)


def test_variable_file_must_hold_an_object(tmp_path):
    path = tmp_path / "vars.json"
    path.write_text("[1, 2]")
    with pytest.raises(WorkflowConfigurationError, match="must hold an object"):
        load_variable_file(path)
