# tasks/templates.py
from __future__ import annotations

import os
from typing import Any, Dict, Mapping

from jinja2 import Environment, StrictUndefined, TemplateError

from ..errors import RepofleetError
from ..model import RepositoryState

_JINJA = Environment(
    undefined=StrictUndefined,
    autoescape=False,
    keep_trailing_newline=True,
)


class TemplateRenderError(RepofleetError):
    def __init__(self, field: str, cause: Exception):
        self.field = field
        super().__init__(f"failed to render {field}: {cause}")


def build_template_context(
    repository: RepositoryState,
    task_name: str,
    variables: Mapping[str, str],
) -> Dict[str, Any]:
    inspection = repository.inspection
    full_name = inspection.final_owner_repo
    owner, _, name = full_name.partition("/")
    if not name:
        owner, name = "", os.path.basename(os.path.normpath(repository.path))
    return {
        "Repository": {
            "Path": repository.path,
            "Owner": owner,
            "Name": name,
            "FullName": full_name,
            "DefaultBranch": inspection.remote_default_branch,
            "PathDepth": repository.path_depth,
            "InitialClean": repository.initial_clean,
            "HasNestedRepositories": repository.has_nested_repositories,
        },
        "Task": {"Name": task_name},
        "Environment": dict(variables),
    }


def render_template(field: str, template: str, context: Mapping[str, Any]) -> str:
    if not template or ("{{" not in template and "{%" not in template):
        return template
    try:
        return _JINJA.from_string(template).render(**context)
    # expressions can also fail with plain Python errors ({{ 1 + "x" }})
    except (TemplateError, TypeError, ValueError, ArithmeticError) as exc:
        raise TemplateRenderError(field, exc) from exc
