# builder.py
"""Turn declarative workflow steps into schedulable operation nodes.

Each step names a command (`remote update-protocol`, `tasks apply`, ...)
and carries an untyped option map. The builder resolves the command key,
decodes the options into the operation's typed configuration and wires the
step's `after` list into node dependencies. Nothing here touches git: every
error raised is a WorkflowConfigurationError found before the run starts.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Set

from pydantic import field_validator

from .config import StepConfiguration, WorkflowConfiguration, parse_configuration, STEP_COMMAND_MISSING
from .errors import WorkflowConfigurationError
from .git_facts.git import ORIGIN
from .model import OperationNode
from .operations.audit import AuditReportOperation
from .operations.base import Operation
from .operations.branch import DEFAULT_TARGET_BRANCH, BranchTarget, DefaultBranchOperation
from .operations.remotes import CanonicalRemoteOperation, ProtocolConversionOperation, parse_protocol
from .operations.rename import RenameOperation
from .operations.tasks import TaskOperation
from .options import Options, OptionTypeError, decode_options
from .tasks.definition import TaskDefinition
from .tasks.registry import ActionRegistry

# ----------------------------------------------------------------------
# Command keys
# ----------------------------------------------------------------------

COMMAND_AUDIT_REPORT = "audit report"
COMMAND_BRANCH_DEFAULT = "default"
COMMAND_FOLDER_RENAME = "folder rename"
COMMAND_REMOTE_CANONICAL = "remote update-to-canonical"
COMMAND_REMOTE_PROTOCOL = "remote update-protocol"
COMMAND_TASKS_APPLY = "tasks apply"

LEGACY_COMMAND_ALIASES: Dict[str, str] = {
    "branch-default": COMMAND_BRANCH_DEFAULT,
    "branch default": COMMAND_BRANCH_DEFAULT,
    "repo tasks apply": COMMAND_TASKS_APPLY,
    "repo folder rename": COMMAND_FOLDER_RENAME,
    "repo remote update-to-canonical": COMMAND_REMOTE_CANONICAL,
    "repo remote update-protocol": COMMAND_REMOTE_PROTOCOL,
    "workflow audit report": COMMAND_AUDIT_REPORT,
    "workflow tasks apply": COMMAND_TASKS_APPLY,
}


def command_key(command: Sequence[str]) -> str:
    """Lower-cased, whitespace-normalized, space-joined command path."""
    parts: List[str] = []
    for part in command or ():
        parts.extend(p for p in str(part).split() if p)
    return " ".join(parts).lower()


def resolve_command_key(command: Sequence[str]) -> str:
    key = command_key(command)
    return LEGACY_COMMAND_ALIASES.get(key, key)


# ----------------------------------------------------------------------
# Step options
# ----------------------------------------------------------------------

class ProtocolStepOptions(Options):
    from_: str = ""
    to: str = ""

    @classmethod
    def decode(cls, raw: Mapping[str, Any]) -> "ProtocolStepOptions":
        # "from" is a keyword; rename before decoding
        data = {("from_" if str(k).strip().lower() == "from" else k): v for k, v in (raw or {}).items()}
        return decode_options(cls, data)


class CanonicalStepOptions(Options):
    owner: str = ""


class RenameStepOptions(Options):
    require_clean: Optional[bool] = None
    include_owner: bool = False


class BranchTargetOptions(Options):
    remote_name: str = ""
    source_branch: str = ""
    target_branch: str = ""
    push_to_remote: bool = True
    delete_source_branch: bool = False

    def to_target(self) -> BranchTarget:
        return BranchTarget(
            remote_name=self.remote_name.strip() or ORIGIN,
            source_branch=self.source_branch.strip(),
            target_branch=self.target_branch.strip() or DEFAULT_TARGET_BRANCH,
            push_to_remote=self.push_to_remote,
            delete_source_branch=self.delete_source_branch,
        )


class BranchStepOptions(Options):
    targets: List[BranchTargetOptions] = []

    @field_validator("targets", mode="before")
    @classmethod
    def _targets(cls, value: Any) -> Any:
        return [] if value is None else value


class AuditStepOptions(Options):
    output: str = ""


class TasksStepOptions(Options):
    tasks: List[TaskDefinition] = []

    @field_validator("tasks", mode="before")
    @classmethod
    def _tasks(cls, value: Any) -> Any:
        return [] if value is None else value


# ----------------------------------------------------------------------
# Per-command builders
# ----------------------------------------------------------------------

def _build_protocol_conversion(options: Mapping[str, Any], registry: Optional[ActionRegistry]) -> Operation:
    decoded = ProtocolStepOptions.decode(options)
    source = parse_protocol(decoded.from_)
    if source is None:
        raise WorkflowConfigurationError("remote update-protocol step requires a valid 'from' protocol")
    target = parse_protocol(decoded.to)
    if target is None:
        raise WorkflowConfigurationError("remote update-protocol step requires a valid 'to' protocol")
    if source == target:
        raise WorkflowConfigurationError("remote update-protocol step requires distinct source and target protocols")
    return ProtocolConversionOperation(source, target)


def _build_canonical_remote(options: Mapping[str, Any], registry: Optional[ActionRegistry]) -> Operation:
    decoded = decode_options(CanonicalStepOptions, options)
    return CanonicalRemoteOperation(owner_constraint=decoded.owner.strip())


def _build_rename(options: Mapping[str, Any], registry: Optional[ActionRegistry]) -> Operation:
    decoded = decode_options(RenameStepOptions, options)
    return RenameOperation(
        require_clean=bool(decoded.require_clean),
        include_owner=decoded.include_owner,
        require_clean_explicit=decoded.require_clean is not None,
    )


def _build_default_branch(options: Mapping[str, Any], registry: Optional[ActionRegistry]) -> Operation:
    decoded = decode_options(BranchStepOptions, options)
    if not decoded.targets:
        raise WorkflowConfigurationError("branch default step requires at least one target")
    if len(decoded.targets) != 1:
        raise WorkflowConfigurationError("branch default step requires exactly one target")
    return DefaultBranchOperation(decoded.targets[0].to_target())


def _build_audit_report(options: Mapping[str, Any], registry: Optional[ActionRegistry]) -> Operation:
    decoded = decode_options(AuditStepOptions, options)
    return AuditReportOperation(output=decoded.output.strip())


def _build_tasks(options: Mapping[str, Any], registry: Optional[ActionRegistry]) -> Operation:
    normalized = {str(k).strip().lower(): v for k, v in (options or {}).items()}
    raw_tasks = normalized.get("tasks")
    if raw_tasks is not None and not isinstance(raw_tasks, list):
        raise OptionTypeError("tasks", "list")
    if not raw_tasks:
        raise WorkflowConfigurationError("tasks apply step requires at least one task entry")
    decoded = decode_options(TasksStepOptions, options)
    return TaskOperation(decoded.tasks, registry=registry)


OperationFactory = Callable[[Mapping[str, Any], Optional[ActionRegistry]], Operation]

BUILDERS: Dict[str, OperationFactory] = {
    COMMAND_REMOTE_PROTOCOL: _build_protocol_conversion,
    COMMAND_REMOTE_CANONICAL: _build_canonical_remote,
    COMMAND_FOLDER_RENAME: _build_rename,
    COMMAND_BRANCH_DEFAULT: _build_default_branch,
    COMMAND_AUDIT_REPORT: _build_audit_report,
    COMMAND_TASKS_APPLY: _build_tasks,
}


def build_operation(step: StepConfiguration, registry: Optional[ActionRegistry] = None) -> Operation:
    key = resolve_command_key(step.command)
    if not key:
        raise WorkflowConfigurationError(STEP_COMMAND_MISSING)
    factory = BUILDERS.get(key)
    if factory is None:
        raise WorkflowConfigurationError(f"unsupported workflow command: {command_key(step.command)}")
    return factory(step.options or {}, registry)


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def _dependencies(step: StepConfiguration, name: str, previous: Optional[str]) -> List[str]:
    if step.after is None:
        return [previous] if previous else []
    seen: Set[str] = set()
    dependencies: List[str] = []
    for raw in step.after:
        dependency = (raw or "").strip()
        if not dependency:
            continue
        if dependency == name:
            raise WorkflowConfigurationError(f"workflow step {name!r} cannot depend on itself")
        if dependency in seen:
            continue
        seen.add(dependency)
        dependencies.append(dependency)
    return dependencies


def build_operations(
    configuration: WorkflowConfiguration | Sequence[Any],
    registry: Optional[ActionRegistry] = None,
) -> List[OperationNode]:
    """
    Build one OperationNode per step, in step order.

    Unnamed steps are called `<command key with '-' for spaces>-<position>`.
    A step without `after` runs after the step before it.
    """
    if not isinstance(configuration, WorkflowConfiguration):
        configuration = parse_configuration(configuration)

    nodes: List[OperationNode] = []
    names: Set[str] = set()
    previous: Optional[str] = None

    for index, step in enumerate(configuration.steps):
        operation = build_operation(step, registry)

        name = step.name.strip()
        if not name:
            name = f"{command_key(step.command).replace(' ', '-')}-{index + 1}"
        if name in names:
            raise WorkflowConfigurationError(f"workflow step name {name!r} defined multiple times")

        nodes.append(OperationNode(operation=operation, name=name, dependencies=_dependencies(step, name, previous)))
        names.add(name)
        previous = name

    for node in nodes:
        for dependency in node.dependencies:
            if dependency not in names:
                raise WorkflowConfigurationError(
                    f"workflow step {node.name!r} depends on unknown step {dependency!r}"
                )

    return nodes


@dataclass(frozen=True)
class OperationDefaults:
    require_clean: bool = False


def apply_defaults(nodes: Sequence[OperationNode], defaults: OperationDefaults) -> None:
    """Push run-wide defaults into operations that did not set them explicitly."""
    for node in nodes:
        apply = getattr(node.operation, "apply_require_clean_default", None)
        if callable(apply):
            apply(defaults.require_clean)
