"""Typed decoding of untyped, string-keyed option maps.

Step and action options arrive as plain dictionaries loaded from a workflow
file. Each consumer declares a pydantic model; `decode_options` normalizes
the keys (case and surrounding whitespace do not matter) and converts any
validation failure into a single `OptionTypeError` naming the field and the
kind of value that was expected.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Tuple, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator

from .errors import WorkflowConfigurationError

_EXPECTED_BY_ERROR_TYPE = {
    "bool_type": "boolean",
    "bool_parsing": "boolean",
    "string_type": "string",
    "list_type": "list",
    "tuple_type": "list",
    "dict_type": "map",
    "model_type": "map",
    "model_attributes_type": "map",
    "int_type": "integer",
    "int_parsing": "integer",
    "int_from_float": "integer",
}

_ENTRY_NOUNS = {
    "map": "maps",
    "string": "strings",
    "boolean": "booleans",
    "integer": "integers",
    "list": "lists",
}


class OptionTypeError(WorkflowConfigurationError):
    """One field of an option map could not be coerced to its declared type."""

    def __init__(self, field: str, expected: str, entries: bool = False):
        self.field = field
        self.expected = expected
        self.entries = entries
        if entries:
            message = f"option {field} entries must be {_ENTRY_NOUNS.get(expected, expected)}"
        else:
            article = "an" if expected[:1] in "aeiou" else "a"
            message = f"option {field} must be {article} {expected}"
        super().__init__(message)


class OptionValueError(WorkflowConfigurationError):
    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"option {field}: {message}" if field else message)


def normalize_key(key: Any) -> str:
    return str(key).strip().lower()


def normalize_keys(raw: Optional[Mapping[Any, Any]]) -> Dict[str, Any]:
    if not raw:
        return {}
    return {normalize_key(k): v for k, v in raw.items()}


class Options(BaseModel):
    """Base model for every option map: keys are case/whitespace insensitive."""

    model_config = ConfigDict(extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _normalize_keys(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            return normalize_keys(data)
        return data


T = TypeVar("T", bound=BaseModel)


def _field_path(loc: Tuple[Union[str, int], ...]) -> str:
    path = ""
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path = f"{path}.{part}" if path else str(part)
    return path


def _coercion_error(exc: ValidationError) -> WorkflowConfigurationError:
    error = exc.errors()[0]
    loc = tuple(error.get("loc", ()))
    error_type = error.get("type", "")

    if error_type == "value_error":
        original = (error.get("ctx") or {}).get("error")
        return OptionValueError(_field_path(loc), str(original) if original else error.get("msg", ""))

    if error_type == "missing":
        return OptionValueError(_field_path(loc), "is required")

    expected = _EXPECTED_BY_ERROR_TYPE.get(error_type)
    if expected is None:
        return OptionValueError(_field_path(loc), error.get("msg", "is invalid"))

    if loc and isinstance(loc[-1], int):
        return OptionTypeError(_field_path(loc[:-1]), expected, entries=True)
    return OptionTypeError(_field_path(loc), expected)


def decode_options(model: Type[T], raw: Optional[Mapping[Any, Any]]) -> T:
    """Decode `raw` into `model`, raising a descriptive error per field."""
    if raw is not None and not isinstance(raw, Mapping):
        raise OptionTypeError("options", "map")
    try:
        return model.model_validate(dict(raw or {}))
    except ValidationError as exc:
        raise _coercion_error(exc) from exc
