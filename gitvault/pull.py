"""Fast-forward pull: bring the vault up to the remote branch tip.

This is the resynchronization path a rejected push asks for. It never merges:
with unpushed local changes it refuses and leaves both sides untouched.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Callable

from rich.console import Console

from gitvault.errors import LocalChangesError
from gitvault.github_api import RemoteRepository
from gitvault.models import FileRecord, LocalChange, PullResult, RemoteEntry, SyncBaseline
from gitvault.notify import Notifier, NullNotifier
from gitvault.push import DEFAULT_WORKERS, run_jobs
from gitvault.scanner import compute_local_sha, scan_vault
from gitvault.state_db import load_baseline, load_records, save_baseline
from gitvault.status_service import detect_changes
from gitvault.transfer_ui import TransferProgressUI
from gitvault.vault import LocalVault


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PullPlan:
    commit_sha: str
    tree_sha: str
    remote_entries: list[RemoteEntry]
    downloads: list[RemoteEntry]
    deletions: list[str]


def plan_pull(
    vault: LocalVault,
    remote: RemoteRepository,
    baseline: SyncBaseline,
    *,
    previous_records: dict[str, FileRecord] | None = None,
) -> PullPlan | None:
    """Work out what a pull would do, or ``None`` if already at the tip.

    A local change that already matches the remote tip is not a conflict.
    That is the state an interrupted pull leaves behind, so re-running the
    pull finishes it.
    """
    current_sha, _ = compute_local_sha(vault, previous_records=previous_records)
    changes: list[LocalChange] = []
    if baseline.local_sha is not None:
        changes = detect_changes(baseline.local_sha, current_sha, vault)

    commit_sha = remote.get_ref_tip_commit()
    if baseline.local_sha is not None and commit_sha == baseline.last_fetched_commit_sha:
        if changes:
            raise LocalChangesError([change.path for change in changes])
        return None

    tree_sha = remote.get_tree_for_commit(commit_sha)
    entries = [entry for entry in remote.list_tree(tree_sha) if vault.path_filter.matches(entry.path)]
    remote_sha = {entry.path: entry.sha for entry in entries}

    if baseline.local_sha is None:
        # Without a baseline any differing local copy might be unsaved work.
        conflicts = sorted(
            entry.path
            for entry in entries
            if entry.path in current_sha and current_sha[entry.path] != entry.sha
        )
    else:
        conflicts = [
            change.path for change in changes if current_sha.get(change.path) != remote_sha.get(change.path)
        ]
    if conflicts:
        raise LocalChangesError(conflicts)

    downloads = [entry for entry in entries if current_sha.get(entry.path) != entry.sha]
    deletions = sorted(
        path
        for path in (baseline.local_sha or {})
        if path not in remote_sha and path in current_sha
    )
    return PullPlan(
        commit_sha=commit_sha,
        tree_sha=tree_sha,
        remote_entries=entries,
        downloads=sorted(downloads, key=lambda entry: entry.path),
        deletions=deletions,
    )


def _download(
    vault: LocalVault,
    remote: RemoteRepository,
    entry: RemoteEntry,
    *,
    on_fetched: Callable[[int], None] | None = None,
) -> str:
    data = remote.get_blob(entry.sha)
    if on_fetched is not None:
        on_fetched(len(data))
    vault.write_file(entry.path, data)
    return entry.path


def apply_pull_plan(
    plan: PullPlan,
    vault: LocalVault,
    remote: RemoteRepository,
    *,
    max_workers: int = DEFAULT_WORKERS,
    console: Console | None = None,
) -> tuple[list[str], list[str]]:
    if console is not None and plan.downloads:
        with TransferProgressUI(console=console) as ui:
            rows = {
                entry.path: ui.track(action="GET", path=entry.path, size=entry.size)
                for entry in plan.downloads
            }

            def _tracked(entry: RemoteEntry) -> str:
                row = rows[entry.path]
                ui.begin(row, state="downloading")
                try:
                    path = _download(
                        vault, remote, entry, on_fetched=lambda nbytes: ui.report(row, nbytes)
                    )
                except Exception:
                    ui.fail(row)
                    raise
                ui.finish(row)
                return path

            run_jobs(
                [(entry.path, lambda e=entry: _tracked(e)) for entry in plan.downloads],
                max_workers=max(1, max_workers),
            )
    else:
        run_jobs(
            [(entry.path, lambda e=entry: _download(vault, remote, e)) for entry in plan.downloads],
            max_workers=max(1, max_workers),
        )

    deleted = [path for path in plan.deletions if vault.delete_file(path)]
    return sorted(entry.path for entry in plan.downloads), deleted


async def pull_from_remote(
    vault: LocalVault,
    remote: RemoteRepository,
    db_path: Path,
    *,
    notifier: Notifier | None = None,
    max_workers: int = DEFAULT_WORKERS,
    console: Console | None = None,
) -> PullResult:
    notifier = notifier or NullNotifier()
    baseline = await load_baseline(db_path) or SyncBaseline()
    previous_records = await load_records(db_path)

    plan = await asyncio.to_thread(
        plan_pull, vault, remote, baseline, previous_records=previous_records
    )
    if plan is None:
        notifier.notify("Local vault already matches the remote branch.")
        return PullResult(
            status="up_to_date",
            commit_sha=baseline.last_fetched_commit_sha or "",
            snapshot_count=len(baseline.local_sha or {}),
        )

    downloaded, deleted = await asyncio.to_thread(
        apply_pull_plan, plan, vault, remote, max_workers=max_workers, console=console
    )
    records = await asyncio.to_thread(scan_vault, vault, previous_records=previous_records)
    local_sha = MappingProxyType({entry.path: entry.sha for entry in plan.remote_entries})
    await save_baseline(
        db_path,
        SyncBaseline(
            local_sha=local_sha,
            last_fetched_commit_sha=plan.commit_sha,
            last_fetched_remote_sha=plan.tree_sha,
        ),
        records=records,
    )

    for path in downloaded:
        notifier.notify(f"{path} pulled from remote.")
    for path in deleted:
        notifier.notify(f"{path} deleted locally (removed on remote).")
    logger.info("Pulled %s: %d downloaded, %d deleted", plan.commit_sha, len(downloaded), len(deleted))

    return PullResult(
        status="pulled",
        commit_sha=plan.commit_sha,
        downloaded_paths=downloaded,
        deleted_local_paths=deleted,
        snapshot_count=len(local_sha),
    )
