# tests/test_options.py
from typing import List, Optional

import pytest

from repofleet.options import OptionTypeError, OptionValueError, Options, decode_options


class Sample(Options):
    name: str = ""
    enabled: bool = False
    paths: List[str] = []
    count: int = 0
    limit: Optional[int] = None


class Required(Options):
    title: str


def test_keys_are_case_and_whitespace_insensitive():
    decoded = decode_options(Sample, {" Name ": "x", "ENABLED": True})
    assert decoded.name == "x"
    assert decoded.enabled is True


def test_missing_map_gives_defaults():
    decoded = decode_options(Sample, None)
    assert decoded.paths == []
    assert decoded.limit is None


def test_unknown_keys_are_ignored():
    assert decode_options(Sample, {"other": 1}).name == ""


def test_wrong_scalar_type_names_the_field():
    with pytest.raises(OptionTypeError) as excinfo:
        decode_options(Sample, {"enabled": "maybe"})
    assert str(excinfo.value) == "option enabled must be a boolean"


def test_wrong_list_type():
    with pytest.raises(OptionTypeError, match="option paths must be a list"):
        decode_options(Sample, {"paths": 3})


def test_wrong_list_entry_type():
    with pytest.raises(OptionTypeError, match="option paths entries must be strings"):
        decode_options(Sample, {"paths": ["ok", 3]})


def test_wrong_integer_uses_an_article():
    with pytest.raises(OptionTypeError, match="option count must be an integer"):
        decode_options(Sample, {"count": "many"})


def test_missing_required_field():
    with pytest.raises(OptionValueError, match="option title: is required"):
        decode_options(Required, {})


def test_non_map_options():
    with pytest.raises(OptionTypeError, match="option options must be a map"):
        decode_options(Sample, ["not", "a", "map"])
