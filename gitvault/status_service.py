from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Literal

from gitvault.models import ChangedFile, CreatedFile, DeletedFile, FingerprintMap, LocalChange
from gitvault.vault import LocalStore


logger = logging.getLogger(__name__)

ShaStatus = Literal["added", "changed", "removed"]


def compare_fingerprints(
    current: FingerprintMap, previous: FingerprintMap
) -> list[tuple[str, ShaStatus]]:
    """Three-way diff of two fingerprint snapshots, sorted by path."""
    diff: list[tuple[str, ShaStatus]] = []
    for path, sha in current.items():
        old = previous.get(path)
        if old is None:
            diff.append((path, "added"))
        elif old != sha:
            diff.append((path, "changed"))
    for path in previous:
        if path not in current:
            diff.append((path, "removed"))
    diff.sort(key=lambda item: item[0])
    return diff


def detect_changes(
    previous: FingerprintMap | None,
    current: FingerprintMap,
    vault: LocalStore,
) -> list[LocalChange]:
    """Classify the vault changes since ``previous``.

    Without a previous snapshot every current file counts as changed, since
    there is nothing to tell new files from modified ones. Files that vanish
    before they can be resolved are dropped; the next scan reconciles them.
    """
    if previous is None:
        statuses: list[tuple[str, ShaStatus]] = [(path, "changed") for path in sorted(current)]
    else:
        statuses = compare_fingerprints(current, previous)

    changes: list[LocalChange] = []
    for path, status in statuses:
        if status == "removed":
            changes.append(DeletedFile(path=path))
            continue
        handle = vault.resolve(path)
        if handle is None:
            logger.warning("%s included in local changes (%s) but not found; skipping", path, status)
            continue
        if status == "added":
            changes.append(CreatedFile(path=path, extension=handle.extension))
        else:
            changes.append(ChangedFile(path=path, extension=handle.extension))
    return changes


@dataclass(slots=True)
class StatusResult:
    created: list[str] = field(default_factory=list)
    changed: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    snapshot_count: int = 0
    first_sync: bool = False

    @property
    def has_changes(self) -> bool:
        return bool(self.created or self.changed or self.deleted)


def summarize_changes(changes: list[LocalChange], *, snapshot_count: int, first_sync: bool) -> StatusResult:
    result = StatusResult(snapshot_count=snapshot_count, first_sync=first_sync)
    for change in changes:
        if isinstance(change, CreatedFile):
            result.created.append(change.path)
        elif isinstance(change, ChangedFile):
            result.changed.append(change.path)
        else:
            result.deleted.append(change.path)
    return result


def compute_status(
    previous: FingerprintMap | None,
    current: FingerprintMap,
    vault: LocalStore,
) -> StatusResult:
    changes = detect_changes(previous, current, vault)
    return summarize_changes(changes, snapshot_count=len(current), first_sync=previous is None)
