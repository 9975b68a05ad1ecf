# runner.py
from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple

from .builder import OperationDefaults, apply_defaults, build_operations
from .config import WorkflowConfiguration
from .dag import plan_operation_stages
from .environment import Environment, RunContext
from .errors import ExecutionFailures, RepofleetError, RepositorySkipped, format_error, join_errors
from .git_facts.git import (
    GitExecutor,
    MetadataLookup,
    RepositoryManager,
    discover_repositories,
    inspect_repository,
)
from .git_facts.github import GitHubClient, GitHubError
from .model import EventCode, EventLevel, OperationNode, OperationStage, Reporter, RepositoryState, State
from .operations.base import is_repository_scoped
from .outcomes import StepOutcome, step_summary_event, summarize_step, summary_label
from .prompt import PromptDispatcher, Prompter, PromptState
from .tasks.registry import ActionRegistry, default_registry
from .ui.console import get_console

DEFAULT_WORKERS = 1


# ----------------------------------------------------------------------
# Run configuration
# ----------------------------------------------------------------------

@dataclass
class RuntimeOptions:
    roots: List[str] = field(default_factory=lambda: ["."])
    dry_run: bool = False
    assume_yes: bool = False
    require_clean: bool = False
    include_nested: bool = False
    skip_metadata: bool = False
    workers: int = DEFAULT_WORKERS
    variables: Dict[str, str] = field(default_factory=dict)


def _metadata_lookup(github: GitHubClient) -> MetadataLookup:
    """
    Resolver that degrades to "no canonical metadata" when `gh` fails.

    Operations that need canonical names then report their own skip event
    for the repository instead of failing the whole run at load time.
    """

    def lookup(owner_repo: str) -> Tuple[str, str]:
        try:
            return github.lookup(owner_repo)
        except GitHubError as exc:
            get_console().print_debug(f"metadata lookup failed for {owner_repo}: {exc}")
            return "", ""

    return lookup


def create_environment(
    options: RuntimeOptions,
    reporter: Optional[Reporter] = None,
    prompter: Optional[Prompter] = None,
    registry: Optional[ActionRegistry] = None,
    executor: Optional[GitExecutor] = None,
) -> Environment:
    """Wire the real collaborators for one run."""
    executor = executor or GitExecutor()
    github = GitHubClient(executor)
    env = Environment(
        git=executor,
        repositories=RepositoryManager(executor),
        github=github,
        metadata=None if options.skip_metadata else _metadata_lookup(github),
        prompter=PromptDispatcher(prompter, PromptState(assume_yes=options.assume_yes)),
        sink=reporter,
        registry=registry or default_registry(),
        dry_run=options.dry_run,
    )
    for name, value in options.variables.items():
        env.variables.seed(name, value)
    return env


def load_repositories(env: Environment, roots: Sequence[str], include_nested: bool = False) -> State:
    """
    Discover and inspect every repository under `roots`, sorted by path.

    A repository that contains another discovered repository is flagged
    with has_nested_repositories.
    """
    if env.repositories is None:
        raise RepofleetError("repository manager not configured")

    paths = sorted(discover_repositories(roots, include_nested=include_nested))
    repositories: List[RepositoryState] = []
    for path in paths:
        get_console().print_debug(f"inspecting {path}")
        inspection = inspect_repository(env.repositories, path, env.metadata)
        repository = RepositoryState.from_inspection(inspection)
        prefix = path.rstrip(os.sep) + os.sep
        repository.has_nested_repositories = any(other.startswith(prefix) for other in paths if other != path)
        repositories.append(repository)

    state = State(repositories=repositories)
    env.state = state
    return state


# ----------------------------------------------------------------------
# Results
# ----------------------------------------------------------------------

@dataclass
class RunResult:
    stages: List[List[str]] = field(default_factory=list)
    # repository label -> step -> outcome label
    outcomes: Dict[str, Dict[str, str]] = field(default_factory=dict)
    errors: List[BaseException] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return bool(self.errors)

    def error(self) -> Optional[BaseException]:
        return join_errors(self.errors)


@dataclass
class _PipelineResult:
    outcomes: Dict[str, str] = field(default_factory=dict)
    errors: List[BaseException] = field(default_factory=list)
    stopped: bool = False


def _flatten(error: BaseException) -> List[BaseException]:
    if isinstance(error, ExecutionFailures):
        flattened: List[BaseException] = []
        for inner in error.errors:
            flattened.extend(_flatten(inner))
        return flattened
    return [error]


def _unique_repositories(repositories: Sequence[RepositoryState]) -> List[RepositoryState]:
    seen = set()
    unique: List[RepositoryState] = []
    for repository in repositories:
        key = repository.path.strip()
        if key and key in seen:
            continue
        seen.add(key)
        unique.append(repository)
    return unique


# ----------------------------------------------------------------------
# Executor
# ----------------------------------------------------------------------

class WorkflowExecutor:
    """
    Run planned stages over every repository of a State.

    Repository-scoped nodes of consecutive stages are grouped into one
    pipeline per repository; pipelines run concurrently on a thread pool and
    each gets its own Environment clone. A whole-run node first drains the
    pending pipelines, then runs once against the whole State. A stage that
    mixes both kinds is split the same way.

    A repository that is skipped or fails stops receiving operations for
    the rest of the run; other repositories are unaffected. A failing
    whole-run node ends the run.
    """

    def __init__(self, nodes: Sequence[OperationNode], env: Environment, workers: int = DEFAULT_WORKERS):
        self.nodes = list(nodes)
        self.env = env
        self.workers = max(1, workers or DEFAULT_WORKERS)
        self._stopped: Set[str] = set()
        self._labels: Dict[int, str] = {}

    def run(self, ctx: Optional[RunContext] = None) -> RunResult:
        ctx = ctx or RunContext()
        stages = plan_operation_stages(self.nodes)
        result = RunResult(stages=[stage.names() for stage in stages])
        repositories = _unique_repositories(self.env.state.repositories)
        for repository in repositories:
            # labels are fixed up front; a canonical rewrite changes identifiers
            self._labels[id(repository)] = repository.identifier
            result.outcomes.setdefault(repository.identifier, {})

        pending: List[OperationStage] = []
        try:
            for stage in stages:
                scoped = [node for node in stage.operations if is_repository_scoped(node.operation)]
                whole_run = [node for node in stage.operations if not is_repository_scoped(node.operation)]
                if scoped:
                    pending.append(OperationStage(operations=scoped))
                if not whole_run:
                    continue
                # nodes of one stage are independent, so the scoped part may run first
                self._run_pipelines(ctx, pending, repositories, result)
                pending = []
                if not self._run_global_nodes(ctx, whole_run, result):
                    # a failed whole-run operation halts everything after it
                    return result
            if pending:
                self._run_pipelines(ctx, pending, repositories, result)
        except KeyboardInterrupt:
            ctx.cancel()
            raise

        return result

    # ---- repository pipelines ----

    def _run_pipelines(
        self,
        ctx: RunContext,
        stages: List[OperationStage],
        repositories: List[RepositoryState],
        result: RunResult,
    ) -> None:
        active = [r for r in repositories if r.path not in self._stopped]
        if not stages or not active:
            return

        by_index: Dict[int, _PipelineResult] = {}
        workers = min(self.workers, len(active))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {
                pool.submit(self._run_pipeline, ctx, stages, repository): index
                for index, repository in enumerate(active)
            }
            try:
                for fut in as_completed(futures):
                    by_index[futures[fut]] = fut.result()
            except KeyboardInterrupt:
                # workers notice at their next action boundary
                ctx.cancel()
                raise

        # merge in repository order so results do not depend on scheduling
        for index, repository in enumerate(active):
            pipeline = by_index[index]
            result.outcomes.setdefault(self._labels[id(repository)], {}).update(pipeline.outcomes)
            result.errors.extend(pipeline.errors)
            if pipeline.stopped:
                self._stopped.add(repository.path)

    def _run_pipeline(
        self,
        ctx: RunContext,
        stages: List[OperationStage],
        repository: RepositoryState,
    ) -> _PipelineResult:
        pipeline = _PipelineResult()
        repo_env = self.env.clone_for_repository(repository)

        for stage in stages:
            if pipeline.stopped:
                break
            for node in stage.operations:
                name = node.resolved_name()
                step_env = repo_env.for_step(name)
                path_before = repository.path
                error: Optional[BaseException] = None
                skip_reason = ""

                try:
                    ctx.raise_if_cancelled()
                    node.operation.execute_for_repository(ctx, step_env, repository)
                except RepositorySkipped as exc:
                    skip_reason = exc.reason
                except Exception as exc:
                    # any failure stays with this repository
                    error = exc

                if error is not None:
                    for failure in _flatten(error):
                        self._log_failure(step_env, failure, name, repository)
                    pipeline.errors.append(error)
                    pipeline.stopped = True

                outcome = self._observed_outcome(step_env, path_before, repository, name)
                final = summarize_step(
                    outcome,
                    repository_skipped=bool(skip_reason),
                    skip_reason=skip_reason,
                    error=error,
                )
                self._report_summary(name, final, repository)
                pipeline.outcomes[name] = summary_label(final)

                if skip_reason:
                    pipeline.stopped = True
                    break

        return pipeline

    def _observed_outcome(
        self,
        env: Environment,
        path_before: str,
        repository: RepositoryState,
        step: str,
    ) -> Optional[StepOutcome]:
        # a rename reports under the old path and finishes under the new one
        outcome = env.shared.outcome(path_before, step)
        if repository.path != path_before:
            moved = env.shared.outcome(repository.path, step)
            if moved is not None:
                outcome = moved if outcome is None else outcome.merge(moved)
        return outcome

    def _report_summary(self, step: str, outcome: StepOutcome, repository: RepositoryState) -> None:
        if self.env.sink is None:
            return
        self.env.sink.report(step_summary_event(step, outcome, repository.identifier, repository.path))

    # ---- whole-run operations ----

    def _run_global_nodes(self, ctx: RunContext, nodes: List[OperationNode], result: RunResult) -> bool:
        """Run whole-run nodes in order; False after the first failure."""
        for node in nodes:
            name = node.resolved_name()
            step_env = self.env.for_step(name)
            try:
                ctx.raise_if_cancelled()
                node.operation.execute(ctx, step_env, self.env.state)
            except RepositorySkipped:
                continue
            except Exception as exc:
                for failure in _flatten(exc):
                    self._log_failure(step_env, failure, name, None)
                result.errors.append(exc)
                return False
        return True

    # ---- errors ----

    def _log_failure(
        self,
        env: Environment,
        error: BaseException,
        step: str,
        repository: Optional[RepositoryState],
    ) -> None:
        if env.log_operation_error(error, repository):
            return
        env.report(
            EventLevel.ERROR,
            EventCode.OPERATION_ERROR,
            format_error(error, step, env.state.repositories),
            repository,
        )


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def prepare_run(
    configuration: WorkflowConfiguration,
    options: RuntimeOptions,
    reporter: Optional[Reporter] = None,
    prompter: Optional[Prompter] = None,
    env: Optional[Environment] = None,
) -> Tuple[List[OperationNode], Environment]:
    """Build operations, wire the environment and load repositories."""
    env = env or create_environment(options, reporter=reporter, prompter=prompter)
    nodes = build_operations(configuration, env.registry)
    apply_defaults(nodes, OperationDefaults(require_clean=options.require_clean))
    if not env.state.repositories:
        load_repositories(env, options.roots, include_nested=options.include_nested)
    return nodes, env


def run_workflow(
    nodes: Sequence[OperationNode],
    env: Environment,
    *,
    workers: int = DEFAULT_WORKERS,
    ctx: Optional[RunContext] = None,
) -> RunResult:
    return WorkflowExecutor(nodes, env, workers=workers).run(ctx)
