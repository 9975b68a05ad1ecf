# variables.py
from __future__ import annotations

import re
import threading
from typing import Dict, Optional, Set

from .errors import RepofleetError

_VARIABLE_NAME = re.compile(r"^[A-Za-z0-9_.-]+$")


class InvalidVariableName(RepofleetError, ValueError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"invalid variable name {name!r} (allowed: letters, digits, '_', '.', '-')")


def variable_name(raw: str) -> str:
    """Validate and normalize a variable name."""
    name = (raw or "").strip()
    if not name or not _VARIABLE_NAME.match(name):
        raise InvalidVariableName(raw)
    return name


class VariableStore:
    """
    Thread-safe name -> value mapping with seed/capture precedence.

    - seed(): set at run configuration time; always overwrites
    - set():  captured by the engine during a run; never overwrites a seeded name
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._values: Dict[str, str] = {}
        self._seeded: Set[str] = set()

    def seed(self, name: str, value: str) -> None:
        key = variable_name(name)
        with self._lock:
            self._values[key] = (value or "").strip()
            self._seeded.add(key)

    def set(self, name: str, value: str) -> None:
        key = variable_name(name)
        with self._lock:
            if key in self._seeded:
                return
            self._values[key] = (value or "").strip()

    def get(self, name: str) -> Optional[str]:
        key = (name or "").strip()
        with self._lock:
            return self._values.get(key)

    def is_seeded(self, name: str) -> bool:
        with self._lock:
            return (name or "").strip() in self._seeded

    def snapshot(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._values)

    def seeded_values(self) -> Dict[str, str]:
        with self._lock:
            return {name: self._values[name] for name in self._seeded}

    def clone(self) -> "VariableStore":
        """Independent copy carrying values and seed flags."""
        copy = VariableStore()
        with self._lock:
            copy._values = dict(self._values)
            copy._seeded = set(self._seeded)
        return copy

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)
