# prompt.py
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Optional, Protocol

import click


@dataclass(frozen=True)
class ConfirmationResult:
    confirmed: bool = False
    apply_to_all: bool = False


class Prompter(Protocol):
    def confirm(self, prompt: str) -> ConfirmationResult: ...


class PromptState:
    """Shared assume-yes flag; once enabled it stays on for the rest of the run."""

    def __init__(self, assume_yes: bool = False):
        self._lock = threading.Lock()
        self._assume_yes = assume_yes

    @property
    def assume_yes(self) -> bool:
        with self._lock:
            return self._assume_yes

    def enable_assume_yes(self) -> None:
        with self._lock:
            self._assume_yes = True


class PromptDispatcher:
    """Serializes prompts from worker threads and honors assume-yes."""

    def __init__(self, base: Optional[Prompter], state: PromptState):
        self.base = base
        self.state = state
        self._lock = threading.Lock()

    def confirm(self, prompt: str) -> ConfirmationResult:
        with self._lock:
            if self.state.assume_yes:
                return ConfirmationResult(confirmed=True)
            if self.base is None:
                return ConfirmationResult(confirmed=False)
            result = self.base.confirm(prompt)
            if result.apply_to_all:
                self.state.enable_assume_yes()
            return result


class ClickPrompter:
    """Interactive [y/N/a] prompt on the terminal."""

    def confirm(self, prompt: str) -> ConfirmationResult:
        answer = click.prompt(
            f"{prompt} [y/N/a]",
            default="n",
            show_default=False,
            type=click.Choice(["y", "yes", "n", "no", "a", "all"], case_sensitive=False),
            show_choices=False,
        ).lower()
        if answer in ("a", "all"):
            return ConfirmationResult(confirmed=True, apply_to_all=True)
        return ConfirmationResult(confirmed=answer in ("y", "yes"))
