# worktree.py
from __future__ import annotations

from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Iterable, List

_GLOB_CHARACTERS = "*?["


@dataclass(frozen=True)
class IgnorePattern:
    """
    A dirty-path ignore rule, checked in this order.

      "*.lock"   glob (contains * ? or [): matched segment by segment, so
                 "*" never crosses "/"; "build*/" is a glob too
      "build/"   directory: matches "build" and anything below it
      "vendor"   anything else: plain path prefix
    """
    raw: str

    @property
    def is_directory(self) -> bool:
        return self.raw.endswith("/")

    @property
    def is_glob(self) -> bool:
        return any(ch in self.raw for ch in _GLOB_CHARACTERS)

    def matches(self, path: str) -> bool:
        value = self.raw.rstrip("/")
        if self.is_glob:
            return _match_segments(value, path)
        if self.is_directory:
            return path == value or path.startswith(value + "/")
        return path.startswith(self.raw)


def _match_segments(pattern: str, path: str) -> bool:
    pattern_parts = pattern.split("/")
    path_parts = path.rstrip("/").split("/")
    if len(pattern_parts) != len(path_parts):
        return False
    return all(fnmatchcase(part, glob) for part, glob in zip(path_parts, pattern_parts))


def parse_ignore_patterns(raw: Iterable[str]) -> List[IgnorePattern]:
    patterns: List[IgnorePattern] = []
    for value in raw or []:
        cleaned = (value or "").strip()
        if cleaned.startswith("./"):
            cleaned = cleaned[2:]
        if cleaned:
            patterns.append(IgnorePattern(cleaned))
    return patterns


def status_entry_path(entry: str) -> str:
    """Path of a `git status --porcelain` entry ("XY path" or "XY old -> new")."""
    path = entry[2:].strip() if len(entry) > 2 else entry.strip()
    if " -> " in path:
        path = path.split(" -> ", 1)[1].strip()
    if len(path) >= 2 and path[0] == path[-1] == '"':
        path = path[1:-1]
    return path


def filter_status_entries(entries: Iterable[str], patterns: Iterable[IgnorePattern]) -> List[str]:
    """Status entries that still count as dirty once ignore rules are applied."""
    patterns = list(patterns)
    remaining: List[str] = []
    for entry in entries:
        if not entry.strip():
            continue
        path = status_entry_path(entry)
        if patterns and any(pattern.matches(path) for pattern in patterns):
            continue
        remaining.append(entry)
    return remaining
