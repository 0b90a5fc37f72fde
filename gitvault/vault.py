"""Local store adapter.

The push core only sees :class:`FileHandle` objects; ``LocalVault`` is the
filesystem implementation used by the CLI.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Protocol

from gitvault.filters import PathFilter


logger = logging.getLogger(__name__)


class FileHandle(Protocol):
    @property
    def path(self) -> str: ...

    @property
    def extension(self) -> str: ...

    def read_bytes(self) -> bytes: ...


@dataclass(frozen=True, slots=True)
class VaultFile:
    path: str
    absolute_path: Path
    size: int
    mtime_ns: int

    @property
    def extension(self) -> str:
        return PurePosixPath(self.path).suffix.lstrip(".")

    def read_bytes(self) -> bytes:
        return self.absolute_path.read_bytes()


class LocalVault:
    def __init__(self, root: Path, path_filter: PathFilter | None = None) -> None:
        self.root = Path(root).resolve()
        self.path_filter = path_filter or PathFilter()

    def _absolute(self, relative_path: str) -> Path:
        normalized = PurePosixPath(relative_path.replace("\\", "/"))
        if normalized.is_absolute() or ".." in normalized.parts:
            raise ValueError(f"Path escapes the vault: {relative_path}")
        return self.root.joinpath(*normalized.parts)

    def enumerate_files(self) -> list[VaultFile]:
        files: list[VaultFile] = []
        for file_path in sorted(self.root.rglob("*")):
            if not file_path.is_file() or file_path.is_symlink():
                continue
            relative_path = file_path.relative_to(self.root).as_posix()
            if not self.path_filter.matches(relative_path):
                continue
            stat = file_path.stat()
            files.append(
                VaultFile(
                    path=relative_path,
                    absolute_path=file_path,
                    size=stat.st_size,
                    mtime_ns=stat.st_mtime_ns,
                )
            )
        return files

    def resolve(self, relative_path: str) -> VaultFile | None:
        """Return the live handle for ``relative_path``, or ``None`` if it is gone."""
        file_path = self._absolute(relative_path)
        try:
            stat = file_path.stat()
        except FileNotFoundError:
            return None
        if not file_path.is_file():
            return None
        return VaultFile(
            path=PurePosixPath(relative_path).as_posix(),
            absolute_path=file_path,
            size=stat.st_size,
            mtime_ns=stat.st_mtime_ns,
        )

    def write_file(self, relative_path: str, data: bytes) -> None:
        target = self._absolute(relative_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(f".{target.name}.gitvault-tmp")
        tmp.write_bytes(data)
        os.replace(tmp, target)

    def delete_file(self, relative_path: str) -> bool:
        path = self._absolute(relative_path)
        if not path.is_file():
            return False
        path.unlink()
        current = path.parent
        while current != self.root:
            try:
                current.rmdir()
            except OSError:
                break
            current = current.parent
        logger.debug("Deleted local file %s", relative_path)
        return True


class LocalStore(Protocol):
    def enumerate_files(self) -> list[VaultFile]: ...

    def resolve(self, relative_path: str) -> FileHandle | None: ...
