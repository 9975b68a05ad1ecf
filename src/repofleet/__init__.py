from .dsl import action, file, matrix, pull_request, step, task, tasks, wf, workflow
from .builder import build_operations
from .dag import plan_operation_stages
from .runner import RuntimeOptions, run_workflow
from .config import StepConfiguration, load_workflow

__all__ = [
    "action",
    "file",
    "matrix",
    "pull_request",
    "step",
    "task",
    "tasks",
    "wf",
    "workflow",
    "build_operations",
    "plan_operation_stages",
    "RuntimeOptions",
    "run_workflow",
    "StepConfiguration",
    "load_workflow",
]
