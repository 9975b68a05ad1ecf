"""Per-run dependency context and per-repository isolation.

The Environment is the one place collaborators are threaded through a run:
git/process execution, repository porcelain, the GitHub metadata resolver,
the filesystem, the prompter, the reporter and the custom action registry.

Mutable state shared between worker threads lives in `SharedState` behind a
single lock. Everything else on an Environment is either immutable for the
run or private to one repository clone (the Variable Store).
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Dict, List, Optional, Set

from .errors import CancelledError, OperationError, format_operation_error
from .filesystem import FileSystem, OSFileSystem
from .git_facts.git import GitExecutor, MetadataLookup, RepositoryManager, inspect_repository
from .model import Event, EventCode, EventLevel, Reporter, RepositoryState, State, normalize_repository_path
from .outcomes import StepOutcome, StepReporter, classify_step_outcome
from .prompt import ConfirmationResult, Prompter
from .variables import VariableStore

if TYPE_CHECKING:
    from .git_facts.github import GitHubClient
    from .tasks.registry import ActionRegistry


@dataclass
class RunContext:
    """Cancellation signal shared by every operation and action of a run."""
    cancel_event: threading.Event = field(default_factory=threading.Event)

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def raise_if_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise CancelledError("run cancelled")


class SharedState:
    """Lock-guarded state visible to every repository of one run."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._step_outcomes: Dict[str, Dict[str, StepOutcome]] = {}
        self._audit_report_executed = False
        self._mutated_files: Dict[str, Set[str]] = {}

    def observe(self, repository_path: str, step: str, observed: StepOutcome) -> StepOutcome:
        key = normalize_repository_path(repository_path)
        with self._lock:
            per_step = self._step_outcomes.setdefault(key, {})
            current = per_step.get(step, StepOutcome())
            merged = current.merge(observed)
            per_step[step] = merged
            return merged

    def observe_event(self, repository_path: str, step: str, event: Event) -> None:
        if not repository_path or not step:
            return
        self.observe(repository_path, step, classify_step_outcome(event))

    def outcome(self, repository_path: str, step: str) -> Optional[StepOutcome]:
        key = normalize_repository_path(repository_path)
        with self._lock:
            return self._step_outcomes.get(key, {}).get(step)

    def claim_audit_report(self) -> bool:
        """True exactly once per run."""
        with self._lock:
            if self._audit_report_executed:
                return False
            self._audit_report_executed = True
            return True

    def record_mutated_files(self, repository_path: str, paths: List[str]) -> None:
        key = normalize_repository_path(repository_path)
        with self._lock:
            self._mutated_files.setdefault(key, set()).update(paths)

    def mutated_files(self, repository_path: str) -> List[str]:
        key = normalize_repository_path(repository_path)
        with self._lock:
            return sorted(self._mutated_files.get(key, set()))


@dataclass
class Environment:
    git: Optional[GitExecutor] = None
    repositories: Optional[RepositoryManager] = None
    github: Optional["GitHubClient"] = None
    metadata: Optional[MetadataLookup] = None
    filesystem: FileSystem = field(default_factory=OSFileSystem)
    prompter: Optional[Prompter] = None
    sink: Optional[Reporter] = None
    registry: Optional["ActionRegistry"] = None
    variables: VariableStore = field(default_factory=VariableStore)
    dry_run: bool = False
    state: State = field(default_factory=State)
    shared: SharedState = field(default_factory=SharedState)
    step_name: str = ""
    reporter: Optional[Reporter] = None

    def __post_init__(self) -> None:
        if self.reporter is None:
            self.reporter = self.sink

    # ---- derivation ----

    def clone_for_repository(self, repository: RepositoryState) -> "Environment":
        """
        Environment for one repository.

        Handles and shared state are shared by reference. The Variable Store
        is new: run-level seeds are copied in, captures are not. The clone's
        State holds only this repository.
        """
        variables = VariableStore()
        for name, value in self.variables.seeded_values().items():
            variables.seed(name, value)
        return replace(self, variables=variables, state=State(repositories=[repository]))

    def for_step(self, step_name: str) -> "Environment":
        return replace(
            self,
            step_name=step_name,
            reporter=StepReporter(self.sink, step_name, self.shared.observe_event),
        )

    # ---- events ----

    def report(
        self,
        level: EventLevel,
        code: str,
        message: str,
        repository: Optional[RepositoryState] = None,
        **details: str,
    ) -> None:
        if self.reporter is None:
            return
        event = Event(
            level=level,
            code=code,
            message=message,
            repository_identifier=repository.identifier if repository is not None else "",
            repository_path=repository.path if repository is not None else "",
            details={k: str(v) for k, v in details.items()},
        )
        self.reporter.report(event)

    def log_operation_error(self, error: BaseException, repository: Optional[RepositoryState] = None) -> bool:
        """
        Report a repository-attributed OperationError and let the caller continue.

        Returns False for any other error, which the caller must propagate.
        """
        if not isinstance(error, OperationError):
            return False
        message = format_operation_error(error, self.state.repositories)
        if repository is None:
            repository = self.state.find(error.subject)
        self.report(EventLevel.ERROR, error.code or EventCode.OPERATION_ERROR, message, repository)
        return True

    # ---- collaborators ----

    def confirm(self, prompt: str) -> ConfirmationResult:
        if self.prompter is None:
            return ConfirmationResult(confirmed=True)
        return self.prompter.confirm(prompt)

    def refresh(self, repository: RepositoryState) -> None:
        if self.repositories is None:
            return
        manager = self.repositories
        repository.refresh(lambda path: inspect_repository(manager, path, self.metadata))
