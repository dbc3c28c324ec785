"""File storage collaborator — the only place routeshot touches the filesystem for state."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class FileOperations(Protocol):
    """Storage contract consumed by the core. Paths are relative keys."""

    def read_file(self, path: str) -> str: ...

    def write_file(self, path: str, content: str) -> None: ...

    def read_bytes(self, path: str) -> bytes: ...

    def write_bytes(self, path: str, content: bytes) -> None: ...

    def file_exists(self, path: str) -> bool: ...

    def ensure_dir(self, path: str) -> None: ...

    def remove(self, path: str) -> None: ...


class FileStorage:
    """Local-disk storage rooted at a project's state directory."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        resolved = (self.root / path).resolve()
        if not resolved.is_relative_to(self.root.resolve()):
            raise ValueError(f"Path escapes storage root: {path}")
        return resolved

    def read_file(self, path: str) -> str:
        target = self._resolve(path)
        if not target.exists():
            raise FileNotFoundError(f"File not found: {path}")
        return target.read_text(encoding="utf-8")

    def write_file(self, path: str, content: str) -> None:
        self._atomic_write(self._resolve(path), content.encode("utf-8"))
        logger.debug("Wrote %s", path)

    def read_bytes(self, path: str) -> bytes:
        target = self._resolve(path)
        if not target.exists():
            raise FileNotFoundError(f"File not found: {path}")
        return target.read_bytes()

    def write_bytes(self, path: str, content: bytes) -> None:
        self._atomic_write(self._resolve(path), content)
        logger.debug("Wrote %s (%d bytes)", path, len(content))

    def file_exists(self, path: str) -> bool:
        return self._resolve(path).exists()

    def ensure_dir(self, path: str) -> None:
        self._resolve(path).mkdir(parents=True, exist_ok=True)

    def remove(self, path: str) -> None:
        target = self._resolve(path)
        if target.is_dir():
            shutil.rmtree(target)
        elif target.exists():
            target.unlink()

    @staticmethod
    def _atomic_write(target: Path, content: bytes) -> None:
        # readers never observe a half-written session manifest
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(content)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
