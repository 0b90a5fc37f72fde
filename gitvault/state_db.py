"""Persistence of the synchronization baseline.

The baseline lives in a small SQLite database next to the vault. It is read
once at the start of a push and replaced in a single transaction at the end,
so a reader sees either the old or the new baseline, never a mix.
"""

from __future__ import annotations

import logging
from pathlib import Path
from types import MappingProxyType

import aiosqlite

from gitvault.models import FileRecord, SyncBaseline


logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS file_state (
    path TEXT PRIMARY KEY,
    sha TEXT NOT NULL,
    size INTEGER NOT NULL,
    mtime_ns INTEGER NOT NULL
);
"""

META_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS sync_meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

META_COMMIT_SHA = "last_fetched_commit_sha"
META_REMOTE_SHA = "last_fetched_remote_sha"
META_LOCAL_SHA_RECORDED = "local_sha_recorded"


async def ensure_db(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(db_path) as db:
        # Readers keep their snapshot while a save commits.
        await db.execute("PRAGMA journal_mode = WAL")
        await db.execute(SCHEMA_SQL)
        await db.execute(META_SCHEMA_SQL)
        await db.commit()


async def load_records(db_path: Path) -> dict[str, FileRecord]:
    """Hash cache of the last recorded scan, keyed by path."""
    await ensure_db(db_path)
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute("SELECT path, sha, size, mtime_ns FROM file_state ORDER BY path")
        rows = await cursor.fetchall()
        await cursor.close()

    return {
        str(row["path"]): FileRecord(
            path=str(row["path"]),
            sha=str(row["sha"]),
            size=int(row["size"]),
            mtime_ns=int(row["mtime_ns"]),
        )
        for row in rows
    }


async def _load_meta(db: aiosqlite.Connection) -> dict[str, str]:
    cursor = await db.execute("SELECT key, value FROM sync_meta")
    rows = await cursor.fetchall()
    await cursor.close()
    return {str(key): str(value) for key, value in rows}


async def load_baseline(db_path: Path) -> SyncBaseline | None:
    """Return the stored baseline, or ``None`` if nothing was ever recorded."""
    await ensure_db(db_path)
    async with aiosqlite.connect(db_path) as db:
        # Both tables come from the same snapshot.
        await db.execute("BEGIN")
        try:
            meta = await _load_meta(db)
            cursor = await db.execute("SELECT path, sha FROM file_state")
            rows = await cursor.fetchall()
            await cursor.close()
        finally:
            await db.commit()

    if not meta:
        return None

    local_sha = None
    if meta.get(META_LOCAL_SHA_RECORDED) == "1":
        local_sha = MappingProxyType({str(path): str(sha) for path, sha in rows})

    return SyncBaseline(
        local_sha=local_sha,
        last_fetched_commit_sha=meta.get(META_COMMIT_SHA),
        last_fetched_remote_sha=meta.get(META_REMOTE_SHA),
    )


async def save_baseline(
    db_path: Path,
    baseline: SyncBaseline,
    *,
    records: list[FileRecord] | None = None,
) -> None:
    """Replace the stored baseline in one transaction.

    ``records`` supplies size/mtime for the hash cache; paths without a record
    get zeroed stats so the next scan re-hashes them.
    """
    await ensure_db(db_path)
    by_path = {record.path: record for record in records or []}
    rows: list[tuple[str, str, int, int]] = []
    for path, sha in sorted((baseline.local_sha or {}).items()):
        record = by_path.get(path)
        if record is not None and record.sha == sha:
            rows.append((path, sha, record.size, record.mtime_ns))
        else:
            rows.append((path, sha, -1, -1))

    meta = {META_LOCAL_SHA_RECORDED: "1" if baseline.local_sha is not None else "0"}
    if baseline.last_fetched_commit_sha:
        meta[META_COMMIT_SHA] = baseline.last_fetched_commit_sha
    if baseline.last_fetched_remote_sha:
        meta[META_REMOTE_SHA] = baseline.last_fetched_remote_sha

    async with aiosqlite.connect(db_path) as db:
        try:
            await db.execute("BEGIN IMMEDIATE")
            await db.execute("DELETE FROM file_state")
            await db.execute("DELETE FROM sync_meta")
            if rows:
                await db.executemany(
                    """
                    INSERT INTO file_state (path, sha, size, mtime_ns)
                    VALUES (?, ?, ?, ?)
                    """,
                    rows,
                )
            await db.executemany(
                "INSERT INTO sync_meta (key, value) VALUES (?, ?)",
                sorted(meta.items()),
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
    logger.debug(
        "Saved baseline: %d file(s), commit %s", len(rows), baseline.last_fetched_commit_sha
    )
