# config.py
from __future__ import annotations

import json
import runpy
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from .errors import WorkflowConfigurationError
from .options import normalize_keys
from .variables import variable_name

STEP_COMMAND_MISSING = "workflow step missing command path"
WORKFLOW_EMPTY = "workflow configuration must define at least one step"


# ----------------------------------------------------------------------
# Step configuration
# ----------------------------------------------------------------------

def normalize_command_parts(command: Any) -> List[str]:
    """
    Split a command into trimmed, non-empty parts.

    "remote  update-protocol" and ["remote", " update-protocol "] both give
    ["remote", "update-protocol"].
    """
    if command is None:
        return []
    if isinstance(command, str):
        raw = command.split()
    elif isinstance(command, (list, tuple)):
        raw = []
        for part in command:
            if not isinstance(part, str):
                raise ValueError("workflow step command entries must be strings")
            raw.extend(part.split())
    else:
        raise ValueError("workflow step command must be a string or a list of strings")
    return [part.strip() for part in raw if part.strip()]


class StepConfiguration(BaseModel):
    """
    One declarative workflow step: `{name?, after?, command, with}`.

    `after=None` means "run after the previous step"; an explicit empty list
    means "no dependencies".
    """

    model_config = ConfigDict(extra="ignore")

    name: str = ""
    after: Optional[List[str]] = None
    command: List[str] = []
    options: Dict[str, Any] = {}

    @model_validator(mode="before")
    @classmethod
    def _normalize_keys(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        normalized = normalize_keys(data)
        if "with" in normalized and "options" not in normalized:
            normalized["options"] = normalized.pop("with")
        if normalized.get("options") is None:
            normalized.pop("options", None)
        return normalized

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, value: Any) -> Any:
        return "" if value is None else str(value).strip()

    @field_validator("after", mode="before")
    @classmethod
    def _after(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("command", mode="before")
    @classmethod
    def _command(cls, value: Any) -> List[str]:
        return normalize_command_parts(value)


class WorkflowConfiguration(BaseModel):
    steps: List[StepConfiguration] = []


def _coerce_step(raw: Any, index: int) -> StepConfiguration:
    if isinstance(raw, StepConfiguration):
        return raw
    if not isinstance(raw, Mapping):
        raise WorkflowConfigurationError(f"workflow step {index + 1} must be a map")
    # {"step": {...}} wrappers are accepted for files written by other tools
    if set(normalize_keys(raw)) == {"step"}:
        raw = normalize_keys(raw)["step"]
        if not isinstance(raw, Mapping):
            raise WorkflowConfigurationError(f"workflow step {index + 1} must be a map")
    try:
        return StepConfiguration.model_validate(dict(raw))
    except ValidationError as exc:
        error = exc.errors()[0]
        raise WorkflowConfigurationError(
            f"workflow step {index + 1}: {error.get('msg', 'is invalid')}"
        ) from exc


def parse_configuration(steps: Sequence[Any]) -> WorkflowConfiguration:
    """Validate raw steps (dicts or StepConfiguration) into a configuration."""
    if isinstance(steps, (str, bytes)) or not isinstance(steps, Sequence):
        raise WorkflowConfigurationError("workflow must be a list of steps")
    parsed = [_coerce_step(raw, index) for index, raw in enumerate(steps)]
    if not parsed:
        raise WorkflowConfigurationError(WORKFLOW_EMPTY)
    for step in parsed:
        if not step.command:
            raise WorkflowConfigurationError(STEP_COMMAND_MISSING)
    return WorkflowConfiguration(steps=parsed)


# ----------------------------------------------------------------------
# Workflow loading (local file)
# ----------------------------------------------------------------------

def _steps_from_json(payload: Any, path: Path) -> Sequence[Any]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, Mapping):
        normalized = normalize_keys(payload)
        for key in ("workflow", "steps"):
            if key in normalized:
                steps = normalized[key]
                if not isinstance(steps, list):
                    raise WorkflowConfigurationError(f"{key} block must be defined as a sequence of steps")
                return steps
    raise WorkflowConfigurationError(f"{path.name}: expected a list of steps or a 'workflow' block")


def load_workflow(path: Union[str, Path]) -> WorkflowConfiguration:
    """
    Load a workflow from a python or JSON file.

    A python file must define either:
      - workflow() -> list of steps
      - STEPS = [step, ...]

    A JSON file holds a list of steps, or an object with a `workflow` or
    `steps` list.
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")

    if wf_path.suffix == ".json":
        try:
            payload = json.loads(wf_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise WorkflowConfigurationError(f"failed to parse workflow configuration: {exc}") from exc
        return parse_configuration(_steps_from_json(payload, wf_path))

    if wf_path.suffix != ".py":
        raise WorkflowConfigurationError(f"Workflow must be a .py or .json file, got: {wf_path.name}")

    module_name = f"repofleet_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    steps = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        try:
            steps = globals_dict["workflow"]()
        except TypeError as e:
            if "positional arguments but" in str(e) and "was given" in str(e):
                raise TypeError(
                    "Your workflow() is being called with arguments (name collision with the helper). "
                    "Use the 'wf' helper instead: `from repofleet import wf, step` then "
                    "`def workflow(): return wf(step(...), step(...))`"
                ) from e
            raise
    elif "STEPS" in globals_dict:
        steps = globals_dict["STEPS"]

    if not isinstance(steps, list):
        raise WorkflowConfigurationError(
            "Workflow must return/define a list of steps. "
            "Define workflow() -> list or STEPS = [step(...), ...]."
        )

    return parse_configuration(steps)


# ----------------------------------------------------------------------
# Variables
# ----------------------------------------------------------------------

def parse_variable_assignments(assignments: Sequence[str]) -> Dict[str, str]:
    """`NAME=VALUE` pairs from the command line; later pairs win."""
    result: Dict[str, str] = {}
    for assignment in assignments:
        trimmed = (assignment or "").strip()
        if not trimmed:
            continue
        key, sep, value = trimmed.partition("=")
        if not sep:
            raise WorkflowConfigurationError(f"workflow variables must be in key=value format: {assignment}")
        if not key.strip():
            raise WorkflowConfigurationError(f"workflow variable key cannot be empty ({assignment})")
        result[variable_name(key)] = value
    return result


def load_variable_file(path: Union[str, Path]) -> Dict[str, str]:
    """A JSON object of variables; scalar values are stringified."""
    var_path = Path(path).expanduser()
    try:
        payload = json.loads(var_path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise WorkflowConfigurationError(f"failed to read variable file {str(var_path)!r}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise WorkflowConfigurationError(f"failed to parse variable file {str(var_path)!r}: {exc}") from exc
    if not isinstance(payload, Mapping):
        raise WorkflowConfigurationError(f"variable file {str(var_path)!r} must hold an object")

    result: Dict[str, str] = {}
    for key, value in payload.items():
        if isinstance(value, (dict, list)):
            raise WorkflowConfigurationError(f"variable {key!r} in {str(var_path)!r} must be a scalar")
        if isinstance(value, bool):
            value = "true" if value else "false"
        result[variable_name(str(key))] = "" if value is None else str(value)
    return result
