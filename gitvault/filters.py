from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePosixPath

from gitvault.config import CONFIG_FILENAME, STATE_DB_FILENAME


# Never part of the vault, whatever the user patterns say.
ALWAYS_EXCLUDED_NAMES = frozenset(
    {CONFIG_FILENAME, STATE_DB_FILENAME}
    | {f"{STATE_DB_FILENAME}-{suffix}" for suffix in ("journal", "wal", "shm")}
)
ALWAYS_EXCLUDED_DIRS = frozenset({".git"})


def _normalize_pattern(pattern: str) -> str:
    normalized = pattern.strip().replace("\\", "/")
    if normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized


def _match_pattern(path: str, pattern: str) -> bool:
    if not pattern:
        return False
    if pattern.endswith("/"):
        return path.startswith(pattern) or f"/{pattern}" in f"/{path}"
    path_obj = PurePosixPath(path)
    return path_obj.match(pattern) or path_obj.match(f"**/{pattern}")


def is_internal_path(path: str) -> bool:
    parts = PurePosixPath(path).parts
    if not parts:
        return True
    if parts[-1] in ALWAYS_EXCLUDED_NAMES:
        return True
    return any(part in ALWAYS_EXCLUDED_DIRS for part in parts[:-1])


@dataclass(frozen=True, slots=True)
class PathFilter:
    include_patterns: tuple[str, ...] = ()
    exclude_patterns: tuple[str, ...] = ()

    def matches(self, path: str) -> bool:
        if is_internal_path(path):
            return False
        if self.include_patterns and not any(
            _match_pattern(path, pattern) for pattern in self.include_patterns
        ):
            return False
        return not any(_match_pattern(path, pattern) for pattern in self.exclude_patterns)


def build_path_filter(
    include_patterns: list[str] | tuple[str, ...] | None = None,
    exclude_patterns: list[str] | tuple[str, ...] | None = None,
) -> PathFilter:
    include = tuple(_normalize_pattern(p) for p in (include_patterns or []) if p.strip())
    exclude = tuple(_normalize_pattern(p) for p in (exclude_patterns or []) if p.strip())
    return PathFilter(include_patterns=include, exclude_patterns=exclude)
