"""Push local vault changes to the remote branch.

A push runs hash -> detect -> staleness check -> tree -> commit/ref ->
baseline. Nothing touches the remote before the staleness check passes, and
the baseline is only written after the ref moved, in a single transaction.
Any failure in between leaves the stored baseline exactly as it was.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import Callable, TypeVar

import aiosqlite
from rich.console import Console

from gitvault.errors import BaselinePersistError, RemoteError, RemoteWriteError, StaleRemoteError
from gitvault.github_api import RemoteRepository
from gitvault.models import (
    DeletedFile,
    FileRecord,
    FingerprintMap,
    LocalChange,
    PushResult,
    RemoteTreeNode,
    SyncBaseline,
)
from gitvault.notify import Notifier, NullNotifier
from gitvault.scanner import compute_local_sha, git_blob_sha
from gitvault.state_db import load_baseline, load_records, save_baseline
from gitvault.status_service import detect_changes
from gitvault.transfer_ui import TransferProgressUI, TransferRow
from gitvault.vault import LocalVault


logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 6
NOTHING_TO_SYNC = "nothing to synchronize"
ACTION_LABELS = {"deleted": "deleted from", "created": "added to", "changed": "modified on"}
T = TypeVar("T")


@dataclass(slots=True)
class NoOp:
    reason: str = NOTHING_TO_SYNC


@dataclass(slots=True)
class Preconditions:
    changes: list[LocalChange]
    remote_commit_sha: str
    current_sha: FingerprintMap
    records: list[FileRecord] = field(default_factory=list)


@dataclass(slots=True)
class BuiltTree:
    tree_sha: str | None
    # path -> fingerprint of the pushed bytes, or None for a removed path
    applied: dict[str, str | None] = field(default_factory=dict)
    dropped_paths: list[str] = field(default_factory=list)
    node_count: int = 0


def check_preconditions(
    vault: LocalVault,
    remote: RemoteRepository,
    baseline: SyncBaseline,
    *,
    previous_records: dict[str, FileRecord] | None = None,
) -> Preconditions | NoOp:
    current_sha, records = compute_local_sha(vault, previous_records=previous_records)
    changes = detect_changes(baseline.local_sha, current_sha, vault)
    if not changes:
        return NoOp()

    remote_commit_sha = remote.get_ref_tip_commit()
    if remote_commit_sha != baseline.last_fetched_commit_sha:
        raise StaleRemoteError(baseline.last_fetched_commit_sha, remote_commit_sha)

    return Preconditions(
        changes=changes,
        remote_commit_sha=remote_commit_sha,
        current_sha=current_sha,
        records=records,
    )


def _is_inline_text(data: bytes) -> bool:
    if b"\0" in data:
        return False
    try:
        data.decode("utf-8")
    except UnicodeDecodeError:
        return False
    return True


def _node_for_change(
    change: LocalChange,
    vault: LocalVault,
    remote: RemoteRepository,
    *,
    on_staged: Callable[[int], None] | None = None,
) -> tuple[RemoteTreeNode, str | None] | None:
    if isinstance(change, DeletedFile):
        return RemoteTreeNode(path=change.path), None

    handle = vault.resolve(change.path)
    if handle is None:
        return None
    try:
        data = handle.read_bytes()
    except FileNotFoundError:
        return None

    fingerprint = git_blob_sha(data)
    if _is_inline_text(data):
        node = RemoteTreeNode(path=change.path, content=data.decode("utf-8"))
    else:
        try:
            blob_sha = remote.create_blob(data)
        except RemoteError as exc:
            raise RemoteWriteError("create_blob", exc) from exc
        node = RemoteTreeNode(path=change.path, sha=blob_sha)
    if on_staged is not None:
        on_staged(len(data))
    return node, fingerprint


def run_jobs(
    jobs: list[tuple[str, Callable[[], T]]],
    *,
    max_workers: int,
) -> dict[str, T]:
    if not jobs:
        return {}
    if max_workers <= 1 or len(jobs) == 1:
        return {label: job() for label, job in jobs}

    results: dict[str, T] = {}
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="gitvault-xfer") as executor:
        futures: dict[Future[T], str] = {executor.submit(job): label for label, job in jobs}
        try:
            for future in as_completed(futures):
                results[futures[future]] = future.result()
        except Exception:
            for future in futures:
                future.cancel()
            raise
    return results


def _tracked_node_job(
    change: LocalChange,
    vault: LocalVault,
    remote: RemoteRepository,
    ui: TransferProgressUI | None,
    row: TransferRow | None,
) -> tuple[RemoteTreeNode, str | None] | None:
    if ui is None or row is None:
        return _node_for_change(change, vault, remote)
    ui.begin(row, state="staging")
    try:
        result = _node_for_change(change, vault, remote, on_staged=lambda nbytes: ui.report(row, nbytes))
    except Exception:
        ui.fail(row)
        raise
    if result is None:
        ui.fail(row, "vanished")
    else:
        ui.finish(row, state="staged")
    return result


def build_tree_nodes(
    changes: list[LocalChange],
    vault: LocalVault,
    remote: RemoteRepository,
    *,
    max_workers: int = DEFAULT_WORKERS,
    ui: TransferProgressUI | None = None,
) -> tuple[list[RemoteTreeNode], dict[str, str | None], list[str]]:
    rows: dict[str, TransferRow] = {}
    if ui is not None:
        for change in changes:
            if not isinstance(change, DeletedFile):
                resolved = vault.resolve(change.path)
                rows[change.path] = ui.track(
                    action="PUT",
                    path=change.path,
                    size=resolved.size if resolved is not None else None,
                )

    jobs = [
        (
            change.path,
            lambda c=change: _tracked_node_job(c, vault, remote, ui, rows.get(c.path)),
        )
        for change in changes
    ]
    results = run_jobs(jobs, max_workers=max(1, max_workers))

    nodes: list[RemoteTreeNode] = []
    applied: dict[str, str | None] = {}
    dropped: list[str] = []
    for change in changes:
        result = results.get(change.path)
        if result is None:
            logger.warning("%s vanished before it could be read; not pushed", change.path)
            dropped.append(change.path)
            continue
        node, fingerprint = result
        nodes.append(node)
        applied[change.path] = fingerprint
    nodes.sort(key=lambda node: node.path)
    return nodes, applied, sorted(dropped)


def _skip_absent_deletions(
    nodes: list[RemoteTreeNode],
    remote: RemoteRepository,
    base_tree_sha: str,
) -> list[RemoteTreeNode]:
    # The trees endpoint rejects removal of a path the base tree lacks.
    if not any(node.is_deletion for node in nodes):
        return nodes
    remote_paths = {entry.path for entry in remote.list_tree(base_tree_sha)}
    kept: list[RemoteTreeNode] = []
    for node in nodes:
        if node.is_deletion and node.path not in remote_paths:
            logger.debug("%s already absent on remote", node.path)
            continue
        kept.append(node)
    return kept


def build_tree(
    changes: list[LocalChange],
    base_commit_sha: str,
    vault: LocalVault,
    remote: RemoteRepository,
    *,
    max_workers: int = DEFAULT_WORKERS,
    ui: TransferProgressUI | None = None,
) -> BuiltTree:
    nodes, applied, dropped = build_tree_nodes(
        changes, vault, remote, max_workers=max_workers, ui=ui
    )
    base_tree_sha = remote.get_commit_tree(base_commit_sha)
    nodes = _skip_absent_deletions(nodes, remote, base_tree_sha)
    if not nodes:
        return BuiltTree(tree_sha=None, applied=applied, dropped_paths=dropped)

    try:
        tree_sha = remote.create_tree(nodes, base_tree_sha)
    except RemoteError as exc:
        raise RemoteWriteError("create_tree", exc) from exc
    logger.debug("Created tree %s with %d entries on top of %s", tree_sha, len(nodes), base_tree_sha)
    return BuiltTree(tree_sha=tree_sha, applied=applied, dropped_paths=dropped, node_count=len(nodes))


def commit_and_advance(
    tree_sha: str,
    parent_commit_sha: str,
    remote: RemoteRepository,
    *,
    message: str,
) -> str:
    try:
        commit_sha = remote.create_commit(tree_sha, parent_commit_sha, message)
    except RemoteError as exc:
        raise RemoteWriteError("create_commit", exc) from exc

    try:
        updated_sha = remote.update_ref(commit_sha)
    except RemoteError as exc:
        raise RemoteWriteError("update_ref", exc) from exc
    if updated_sha != commit_sha:
        raise RemoteWriteError(
            "update_ref", f"ref points at {updated_sha}, expected {commit_sha}"
        )
    return commit_sha


def apply_changes(previous: FingerprintMap | None, applied: dict[str, str | None]) -> FingerprintMap:
    """Previous fingerprints with the pushed paths replaced or removed."""
    result = dict(previous or {})
    for path, fingerprint in applied.items():
        if fingerprint is None:
            result.pop(path, None)
        else:
            result[path] = fingerprint
    return MappingProxyType(result)


async def commit_baseline(
    db_path: Path,
    baseline: SyncBaseline,
    *,
    commit_sha: str,
    tree_sha: str | None,
    local_sha: FingerprintMap,
    records: list[FileRecord] | None = None,
    remote_advanced: bool = True,
) -> SyncBaseline:
    new_baseline = replace(
        baseline,
        local_sha=local_sha,
        last_fetched_commit_sha=commit_sha,
        last_fetched_remote_sha=tree_sha,
    )
    try:
        await save_baseline(db_path, new_baseline, records=records)
    except (aiosqlite.Error, sqlite3.Error, OSError) as exc:
        raise BaselinePersistError(commit_sha, exc, remote_advanced=remote_advanced) from exc
    return new_baseline


def _notify_changes(notifier: Notifier, changes: list[LocalChange], dropped: set[str]) -> None:
    for change in changes:
        if change.path in dropped:
            continue
        notifier.notify(f"{change.path} {ACTION_LABELS[change.kind]} remote.")


def _default_message(changes: list[LocalChange]) -> str:
    if len(changes) == 1:
        return f"gitvault push: {changes[0].path}"
    return f"gitvault push: {len(changes)} files"


def _run_remote_stages(
    pre: Preconditions,
    vault: LocalVault,
    remote: RemoteRepository,
    *,
    message: str,
    max_workers: int,
    console: Console | None,
) -> tuple[BuiltTree, str | None, str | None]:
    if console is not None:
        with TransferProgressUI(console=console) as ui:
            built = build_tree(
                pre.changes, pre.remote_commit_sha, vault, remote, max_workers=max_workers, ui=ui
            )
    else:
        built = build_tree(pre.changes, pre.remote_commit_sha, vault, remote, max_workers=max_workers)

    if built.tree_sha is None:
        return built, None, None

    commit_sha = commit_and_advance(built.tree_sha, pre.remote_commit_sha, remote, message=message)
    try:
        remote_tree_sha = remote.get_tree_for_commit(commit_sha)
    except RemoteError as exc:
        logger.warning("Could not confirm tree of %s (%s); recording the created tree", commit_sha, exc)
        remote_tree_sha = built.tree_sha
    return built, commit_sha, remote_tree_sha


async def push_to_remote(
    vault: LocalVault,
    remote: RemoteRepository,
    db_path: Path,
    *,
    notifier: Notifier | None = None,
    message: str | None = None,
    max_workers: int = DEFAULT_WORKERS,
    console: Console | None = None,
    repo_label: str = "remote",
) -> PushResult:
    notifier = notifier or NullNotifier()
    baseline = await load_baseline(db_path) or SyncBaseline()
    previous_records = await load_records(db_path)

    outcome = await asyncio.to_thread(
        check_preconditions, vault, remote, baseline, previous_records=previous_records
    )
    if isinstance(outcome, NoOp):
        notifier.notify("No local changes detected.")
        return PushResult(status="noop", reason=outcome.reason)

    built, commit_sha, remote_tree_sha = await asyncio.to_thread(
        _run_remote_stages,
        outcome,
        vault,
        remote,
        message=message or _default_message(outcome.changes),
        max_workers=max_workers,
        console=console,
    )
    local_sha = apply_changes(baseline.local_sha, built.applied)

    if commit_sha is None:
        # Every change was dropped or already matched the remote tree.
        if built.applied:
            await commit_baseline(
                db_path,
                baseline,
                commit_sha=outcome.remote_commit_sha,
                tree_sha=baseline.last_fetched_remote_sha,
                local_sha=local_sha,
                records=outcome.records,
                remote_advanced=False,
            )
        notifier.notify("No local changes left to push.")
        return PushResult(
            status="noop",
            reason=NOTHING_TO_SYNC,
            changes=outcome.changes,
            dropped_paths=built.dropped_paths,
        )

    await commit_baseline(
        db_path,
        baseline,
        commit_sha=commit_sha,
        tree_sha=remote_tree_sha,
        local_sha=local_sha,
        records=outcome.records,
    )
    dropped = set(built.dropped_paths)
    _notify_changes(notifier, outcome.changes, dropped)
    notifier.notify(f"Successfully pushed to {repo_label}")
    logger.info("Pushed %d change(s) as %s", built.node_count, commit_sha)

    return PushResult(
        status="pushed",
        commit_sha=commit_sha,
        tree_sha=remote_tree_sha,
        changes=[change for change in outcome.changes if change.path not in dropped],
        dropped_paths=built.dropped_paths,
    )
