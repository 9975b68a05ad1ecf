# filesystem.py
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Protocol


class FileSystem(Protocol):
    def stat(self, path: str) -> os.stat_result: ...
    def exists(self, path: str) -> bool: ...
    def read_bytes(self, path: str) -> bytes: ...
    def write_bytes(self, path: str, data: bytes, mode: Optional[int] = None) -> None: ...
    def mkdir(self, path: str, parents: bool = True) -> None: ...
    def rename(self, source: str, destination: str) -> None: ...
    def abs(self, path: str) -> str: ...


class OSFileSystem:
    """FileSystem backed by the local disk."""

    def stat(self, path: str) -> os.stat_result:
        return os.stat(path)

    def exists(self, path: str) -> bool:
        return os.path.exists(path)

    def read_bytes(self, path: str) -> bytes:
        return Path(path).read_bytes()

    def write_bytes(self, path: str, data: bytes, mode: Optional[int] = None) -> None:
        target = Path(path)
        target.write_bytes(data)
        if mode is not None:
            os.chmod(target, mode)

    def mkdir(self, path: str, parents: bool = True) -> None:
        Path(path).mkdir(parents=parents, exist_ok=True)

    def rename(self, source: str, destination: str) -> None:
        os.rename(source, destination)

    def abs(self, path: str) -> str:
        return os.path.abspath(path)
