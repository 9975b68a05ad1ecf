# outcomes.py
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Callable, Optional

from .model import Event, EventCode, EventLevel, Reporter


class StepOutcomeKind(enum.IntEnum):
    """Severity order used when several events hit one (repository, step)."""
    UNKNOWN = 0
    NOOP = 1
    SKIPPED = 2
    APPLIED = 3
    FAILED = 4

    @property
    def label(self) -> str:
        return _LABELS[self]


_LABELS = {
    StepOutcomeKind.UNKNOWN: "unknown",
    StepOutcomeKind.NOOP: "no-op",
    StepOutcomeKind.SKIPPED: "skipped",
    StepOutcomeKind.APPLIED: "applied",
    StepOutcomeKind.FAILED: "failed",
}


@dataclass(frozen=True)
class StepOutcome:
    kind: StepOutcomeKind = StepOutcomeKind.UNKNOWN
    reason: str = ""

    def merge(self, observed: "StepOutcome") -> "StepOutcome":
        """
        Keep the worst observed outcome.

        A higher kind replaces the current one. On an equal kind the reason
        is only filled in when none was recorded yet.
        """
        if observed.kind > self.kind:
            return observed
        if observed.kind == self.kind and not self.reason and observed.reason:
            return StepOutcome(self.kind, observed.reason)
        return self


# ---------------------------------------------------------------------
# Classification table
# ---------------------------------------------------------------------

APPLIED_CODES = frozenset({
    EventCode.REMOTE_UPDATE,
    EventCode.PROTOCOL_UPDATE,
    EventCode.FOLDER_RENAME,
    EventCode.DEFAULT_BRANCH_UPDATE,
    EventCode.NAMESPACE_APPLY,
    EventCode.FILES_REPLACE,
    EventCode.RELEASE_TAG,
    EventCode.HISTORY_PURGE,
    EventCode.BRANCH_CLEANUP,
    EventCode.REPO_SWITCHED,
    EventCode.TASK_APPLY,
})

DECLINED_CODES = frozenset({
    EventCode.REMOTE_DECLINED,
    EventCode.PROTOCOL_DECLINED,
    EventCode.FOLDER_DECLINED,
})

SKIP_CODES = frozenset({
    EventCode.REMOTE_SKIP,
    EventCode.PROTOCOL_SKIP,
    EventCode.FOLDER_SKIP,
    EventCode.TASK_SKIP,
    EventCode.NAMESPACE_SKIP,
    EventCode.NAMESPACE_NOOP,
    EventCode.FILES_NOOP,
    EventCode.DEFAULT_BRANCH_SKIP,
    EventCode.AUDIT_SKIP,
    EventCode.HISTORY_SKIP,
    EventCode.BRANCH_CLEANUP_NOOP,
})

USER_DECLINED = "user declined"
REQUIRES_CHANGES = "requires changes"


def classify_step_outcome(event: Event) -> StepOutcome:
    message = (event.message or "").strip()
    details = event.details or {}

    if event.level == EventLevel.ERROR:
        reason = message or details.get("reason", "").strip() or event.code
        return StepOutcome(StepOutcomeKind.FAILED, reason)

    if event.code in APPLIED_CODES:
        if event.code == EventCode.TASK_APPLY:
            reason = details.get("task", "").strip() or message
        elif event.code == EventCode.REPO_SWITCHED:
            reason = details.get("branch", "").strip() or message
        else:
            reason = message
        return StepOutcome(StepOutcomeKind.APPLIED, reason)

    if event.code in DECLINED_CODES:
        return StepOutcome(StepOutcomeKind.SKIPPED, USER_DECLINED)

    if event.code in SKIP_CODES:
        lowered = message.lower()
        if "declined" in lowered:
            return StepOutcome(StepOutcomeKind.SKIPPED, USER_DECLINED)
        if REQUIRES_CHANGES in lowered:
            return StepOutcome(StepOutcomeKind.NOOP, message)
        return StepOutcome(StepOutcomeKind.NOOP, "no-op")

    if event.level == EventLevel.WARN:
        return StepOutcome(StepOutcomeKind.NOOP, message)

    return StepOutcome(StepOutcomeKind.UNKNOWN, "")


def summarize_step(
    outcome: Optional[StepOutcome],
    *,
    repository_skipped: bool = False,
    skip_reason: str = "",
    error: Optional[BaseException] = None,
) -> StepOutcome:
    """Final classification shown in the per-step summary line."""
    if error is not None:
        return StepOutcome(StepOutcomeKind.FAILED, str(error))
    if repository_skipped:
        return StepOutcome(StepOutcomeKind.SKIPPED, skip_reason or "repository skipped")
    return outcome or StepOutcome()


def summary_label(outcome: StepOutcome) -> str:
    if outcome.kind == StepOutcomeKind.UNKNOWN:
        return "ok"
    return outcome.kind.label


def step_summary_event(
    step: str,
    outcome: StepOutcome,
    repository_identifier: str,
    repository_path: str,
) -> Event:
    label = summary_label(outcome)
    return Event(
        level=EventLevel.INFO,
        code=EventCode.WORKFLOW_STEP_SUMMARY,
        message=f"{step}: {label}",
        repository_identifier=repository_identifier,
        repository_path=repository_path,
        details={
            "step": step,
            "outcome": label,
            "reason": outcome.reason,
            "executed": "true",
        },
    )


class StepReporter:
    """Reporter decorator that tags events with a step and records outcomes."""

    def __init__(
        self,
        inner: Optional[Reporter],
        step: str,
        observe: Callable[[str, str, Event], None],
    ):
        self.inner = inner
        self.step = step
        self._observe = observe

    def report(self, event: Event) -> None:
        if self.step and "step" not in event.details:
            event = event.with_details(step=self.step)
        if event.repository_path and event.code != EventCode.WORKFLOW_STEP_SUMMARY:
            self._observe(event.repository_path, self.step, event)
        if self.inner is not None:
            self.inner.report(event)
