from __future__ import annotations

from pathlib import Path

import pytest

from gitvault.errors import LocalChangesError, RemoteError, StaleRemoteError
from gitvault.models import SyncBaseline
from gitvault.pull import plan_pull, pull_from_remote
from gitvault.push import push_to_remote
from gitvault.scanner import compute_local_sha, git_blob_sha
from gitvault.state_db import load_baseline, save_baseline
from tests.conftest import FakeRemote, write_files


@pytest.mark.asyncio
async def test_pull_into_empty_vault(vault, vault_root: Path, db_path: Path):
    remote = FakeRemote({"README.md": b"# notes\n", "daily/2024-01-01.md": b"today", "img/a.png": b"\0\1"})

    result = await pull_from_remote(vault, remote, db_path)

    assert result.status == "pulled"
    assert result.downloaded_paths == ["README.md", "daily/2024-01-01.md", "img/a.png"]
    assert (vault_root / "daily" / "2024-01-01.md").read_bytes() == b"today"
    baseline = await load_baseline(db_path)
    assert baseline.last_fetched_commit_sha == remote.tip
    assert baseline.last_fetched_remote_sha == remote.commits[remote.tip][0]
    fingerprints, _ = compute_local_sha(vault)
    assert dict(baseline.local_sha) == dict(fingerprints)


@pytest.mark.asyncio
async def test_push_after_pull_is_noop(vault, db_path: Path):
    remote = FakeRemote({"a.md": b"x"})

    await pull_from_remote(vault, remote, db_path)
    result = await push_to_remote(vault, remote, db_path)

    assert result.status == "noop"


@pytest.mark.asyncio
async def test_pull_skips_files_already_matching(vault, vault_root: Path, db_path: Path):
    remote = FakeRemote({"a.md": b"same", "b.md": b"remote"})
    write_files(vault_root, {"a.md": "same"})

    result = await pull_from_remote(vault, remote, db_path)

    assert result.downloaded_paths == ["b.md"]


@pytest.mark.asyncio
async def test_pull_without_baseline_refuses_to_overwrite(vault, vault_root: Path, db_path: Path):
    remote = FakeRemote({"a.md": b"remote version"})
    write_files(vault_root, {"a.md": "local version"})

    with pytest.raises(LocalChangesError) as excinfo:
        await pull_from_remote(vault, remote, db_path)

    assert excinfo.value.paths == ["a.md"]
    assert (vault_root / "a.md").read_text(encoding="utf-8") == "local version"


@pytest.mark.asyncio
async def test_pull_refuses_with_unpushed_changes(vault, vault_root: Path, db_path: Path):
    remote = FakeRemote({"a.md": b"x"})
    await pull_from_remote(vault, remote, db_path)
    write_files(vault_root, {"a.md": "edited locally"})
    remote.advance({"b.md": b"remote"})

    with pytest.raises(LocalChangesError):
        await pull_from_remote(vault, remote, db_path)

    assert not (vault_root / "b.md").exists()


@pytest.mark.asyncio
async def test_pull_applies_remote_deletions(vault, vault_root: Path, db_path: Path):
    remote = FakeRemote({"a.md": b"x", "old/b.md": b"y"})
    await pull_from_remote(vault, remote, db_path)

    tree = dict(remote.trees[remote.commits[remote.tip][0]])
    del tree["old/b.md"]
    remote.tip = remote._store_commit(remote._store_tree(tree), [remote.tip], "remove b")

    result = await pull_from_remote(vault, remote, db_path)

    assert result.deleted_local_paths == ["old/b.md"]
    assert not (vault_root / "old").exists()
    baseline = await load_baseline(db_path)
    assert set(baseline.local_sha) == {"a.md"}


@pytest.mark.asyncio
async def test_pull_when_up_to_date(vault, db_path: Path):
    remote = FakeRemote({"a.md": b"x"})
    await pull_from_remote(vault, remote, db_path)
    calls = remote.calls["list_tree"]

    result = await pull_from_remote(vault, remote, db_path)

    assert result.status == "up_to_date"
    assert remote.calls["list_tree"] == calls


@pytest.mark.asyncio
async def test_stale_push_recovers_through_pull(vault, vault_root: Path, db_path: Path):
    remote = FakeRemote({"a.md": b"x"})
    await pull_from_remote(vault, remote, db_path)
    remote.advance({"b.md": b"from another device"})
    write_files(vault_root, {"c.md": "local note"})

    with pytest.raises(StaleRemoteError):
        await push_to_remote(vault, remote, db_path)

    # Pull refuses while c.md is an unpushed change, so set it aside first.
    with pytest.raises(LocalChangesError):
        await pull_from_remote(vault, remote, db_path)
    (vault_root / "c.md").unlink()
    await pull_from_remote(vault, remote, db_path)
    write_files(vault_root, {"c.md": "local note"})
    result = await push_to_remote(vault, remote, db_path)

    assert result.pushed
    assert remote.files_at_tip() == {"a.md": b"x", "b.md": b"from another device", "c.md": b"local note"}


def test_plan_ignores_filtered_paths(vault_root: Path):
    from gitvault.filters import build_path_filter
    from gitvault.vault import LocalVault

    remote = FakeRemote({"a.md": b"x", ".obsidian/app.json": b"{}"})
    vault = LocalVault(vault_root, build_path_filter(exclude_patterns=[".obsidian/"]))

    plan = plan_pull(vault, remote, SyncBaseline())

    assert [entry.path for entry in plan.downloads] == ["a.md"]
    assert plan.downloads[0].sha == git_blob_sha(b"x")


@pytest.mark.asyncio
async def test_pull_keeps_local_only_files_untracked(vault, vault_root: Path, db_path: Path):
    remote = FakeRemote({"a.md": b"x"})
    write_files(vault_root, {"draft.md": "local only"})
    await save_baseline(db_path, SyncBaseline(local_sha=None, last_fetched_commit_sha=None))

    await pull_from_remote(vault, remote, db_path)
    result = await push_to_remote(vault, remote, db_path)

    assert [change.path for change in result.changes] == ["draft.md"]
    assert [change.kind for change in result.changes] == ["created"]


class FailingBlobRemote(FakeRemote):
    """Fails the n-th blob download, counted over the remote's lifetime."""

    fail_at: int | None = None

    def get_blob(self, blob_sha: str) -> bytes:
        data = super().get_blob(blob_sha)
        if self.calls["get_blob"] == self.fail_at:
            raise RemoteError("get_blob", "connection reset", status_code=502)
        return data


@pytest.mark.asyncio
async def test_interrupted_pull_can_be_retried(vault, vault_root: Path, db_path: Path):
    remote = FailingBlobRemote({"a.md": b"x", "b.md": b"y"})
    await pull_from_remote(vault, remote, db_path)
    before = await load_baseline(db_path)
    remote.advance({"a.md": b"x2", "b.md": b"y2"})
    remote.fail_at = remote.calls["get_blob"] + 2

    with pytest.raises(RemoteError):
        await pull_from_remote(vault, remote, db_path, max_workers=1)

    assert (vault_root / "a.md").read_bytes() == b"x2"
    assert (vault_root / "b.md").read_bytes() == b"y"
    assert (await load_baseline(db_path)).last_fetched_commit_sha == before.last_fetched_commit_sha

    result = await pull_from_remote(vault, remote, db_path, max_workers=1)

    assert result.status == "pulled"
    assert result.downloaded_paths == ["b.md"]
    assert (vault_root / "b.md").read_bytes() == b"y2"
    assert (await push_to_remote(vault, remote, db_path)).status == "noop"


@pytest.mark.asyncio
async def test_deletion_made_on_both_sides_is_not_a_conflict(vault, vault_root: Path, db_path: Path):
    remote = FakeRemote({"a.md": b"x", "b.md": b"y"})
    await pull_from_remote(vault, remote, db_path)
    tree = dict(remote.trees[remote.commits[remote.tip][0]])
    del tree["b.md"]
    remote.tip = remote._store_commit(remote._store_tree(tree), [remote.tip], "remove b")
    (vault_root / "b.md").unlink()

    result = await pull_from_remote(vault, remote, db_path)

    assert result.status == "pulled"
    assert result.deleted_local_paths == []
    assert set((await load_baseline(db_path)).local_sha) == {"a.md"}
