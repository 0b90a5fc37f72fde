from __future__ import annotations

import hashlib
from types import MappingProxyType
from typing import TYPE_CHECKING, Callable

from gitvault.models import FileRecord, FingerprintMap
from gitvault.vault import LocalVault, VaultFile

if TYPE_CHECKING:
    from rich.console import Console


def git_blob_sha(data: bytes) -> str:
    """Git object id of ``data`` stored as a blob."""
    digest = hashlib.sha1(f"blob {len(data)}\0".encode("ascii"))
    digest.update(data)
    return digest.hexdigest()


def _hash_file(handle: VaultFile, *, on_chunk: Callable[[int], None] | None = None) -> str:
    # The blob header carries the length, so hash the bytes actually read
    # rather than trusting the earlier stat.
    data = handle.read_bytes()
    if on_chunk is not None:
        on_chunk(len(data))
    return git_blob_sha(data)


def _record_for(
    handle: VaultFile,
    previous_records: dict[str, FileRecord],
    *,
    on_hash_chunk: Callable[[int], None] | None = None,
) -> FileRecord:
    previous = previous_records.get(handle.path)
    if previous is not None and previous.size == handle.size and previous.mtime_ns == handle.mtime_ns:
        sha = previous.sha
    else:
        sha = _hash_file(handle, on_chunk=on_hash_chunk)
    return FileRecord(path=handle.path, sha=sha, size=handle.size, mtime_ns=handle.mtime_ns)


def fingerprint_map(records: list[FileRecord]) -> FingerprintMap:
    return MappingProxyType({record.path: record.sha for record in records})


def scan_vault(
    vault: LocalVault,
    *,
    previous_records: dict[str, FileRecord] | None = None,
) -> list[FileRecord]:
    previous_records = previous_records or {}
    return [_record_for(handle, previous_records) for handle in vault.enumerate_files()]


def compute_local_sha(
    vault: LocalVault,
    *,
    previous_records: dict[str, FileRecord] | None = None,
) -> tuple[FingerprintMap, list[FileRecord]]:
    records = scan_vault(vault, previous_records=previous_records)
    return fingerprint_map(records), records


def scan_vault_with_progress(
    vault: LocalVault,
    *,
    previous_records: dict[str, FileRecord] | None = None,
    console: "Console | None" = None,
) -> list[FileRecord]:
    from rich.progress import (
        BarColumn,
        DownloadColumn,
        Progress,
        SpinnerColumn,
        TaskProgressColumn,
        TextColumn,
    )

    previous_records = previous_records or {}

    if console is not None:
        with console.status("Discovering vault files..."):
            handles = vault.enumerate_files()
    else:
        handles = vault.enumerate_files()

    if not handles:
        return []

    total_bytes = sum(handle.size for handle in handles)
    records: list[FileRecord] = []

    with Progress(
        SpinnerColumn(),
        TextColumn("[bold]Hashing"),
        BarColumn(),
        TaskProgressColumn(),
        DownloadColumn(binary_units=True),
        TextColumn("{task.fields[file_progress]}"),
        console=console,
        transient=True,
    ) as progress:
        task_id = progress.add_task(
            "hash",
            total=max(total_bytes, 1),
            file_progress=f"0/{len(handles)} files",
        )

        def _advance(delta: int) -> None:
            progress.advance(task_id, delta)

        for index, handle in enumerate(handles, start=1):
            progress.update(task_id, file_progress=f"{index}/{len(handles)} files")
            previous = previous_records.get(handle.path)
            reused = previous is not None and previous.size == handle.size and previous.mtime_ns == handle.mtime_ns
            records.append(
                _record_for(handle, previous_records, on_hash_chunk=None if reused else _advance)
            )
            if reused:
                progress.advance(task_id, handle.size)

    return records
