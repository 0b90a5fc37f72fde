"""Shared fixtures: a temporary vault and an in-memory GitHub branch."""

from __future__ import annotations

import hashlib
import threading
from collections import Counter
from pathlib import Path

import pytest

from gitvault.errors import RemoteError
from gitvault.models import RemoteEntry, RemoteTreeNode
from gitvault.scanner import git_blob_sha
from gitvault.vault import LocalVault


class FakeRemote:
    """Git object store with one branch; records every call by name."""

    def __init__(self, files: dict[str, bytes] | None = None) -> None:
        self._lock = threading.Lock()
        self.blobs: dict[str, bytes] = {}
        self.trees: dict[str, dict[str, str]] = {}
        self.commits: dict[str, tuple[str, list[str], str]] = {}
        self.calls: Counter[str] = Counter()
        self.fail_on: set[str] = set()
        self.created_trees: list[list[RemoteTreeNode]] = []
        tree_sha = self._store_tree(self._store_files(files or {}))
        self.tip = self._store_commit(tree_sha, [], "initial")

    # helpers

    def _record(self, operation: str) -> None:
        with self._lock:
            self.calls[operation] += 1
        if operation in self.fail_on:
            raise RemoteError(operation, "simulated failure", status_code=500)

    def _store_files(self, files: dict[str, bytes]) -> dict[str, str]:
        entries = {}
        for path, data in files.items():
            sha = git_blob_sha(data)
            self.blobs[sha] = data
            entries[path] = sha
        return entries

    def _store_tree(self, entries: dict[str, str]) -> str:
        digest = hashlib.sha1(repr(sorted(entries.items())).encode("utf-8")).hexdigest()
        self.trees[digest] = dict(entries)
        return digest

    def _store_commit(self, tree_sha: str, parents: list[str], message: str) -> str:
        digest = hashlib.sha1(f"{tree_sha}|{parents}|{message}|{len(self.commits)}".encode()).hexdigest()
        self.commits[digest] = (tree_sha, parents, message)
        return digest

    def advance(self, files: dict[str, bytes], message: str = "concurrent edit") -> str:
        """Simulate another client committing on top of the tip."""
        entries = dict(self.trees[self.commits[self.tip][0]])
        entries.update(self._store_files(files))
        self.tip = self._store_commit(self._store_tree(entries), [self.tip], message)
        return self.tip

    def files_at_tip(self) -> dict[str, bytes]:
        tree = self.trees[self.commits[self.tip][0]]
        return {path: self.blobs[sha] for path, sha in tree.items()}

    @property
    def write_calls(self) -> int:
        return sum(self.calls[name] for name in ("create_blob", "create_tree", "create_commit", "update_ref"))

    # RemoteRepository

    def get_ref_tip_commit(self) -> str:
        self._record("get_ref_tip_commit")
        return self.tip

    def get_commit_tree(self, commit_sha: str) -> str:
        self._record("get_commit_tree")
        return self.commits[commit_sha][0]

    def get_tree_for_commit(self, commit_sha: str) -> str:
        self._record("get_tree_for_commit")
        return self.commits[commit_sha][0]

    def create_blob(self, data: bytes) -> str:
        self._record("create_blob")
        with self._lock:
            return next(iter(self._store_files({"_": data}).values()))

    def create_tree(self, nodes: list[RemoteTreeNode], base_tree_sha: str) -> str:
        self._record("create_tree")
        entries = dict(self.trees[base_tree_sha])
        for node in nodes:
            if node.is_deletion:
                if node.path not in entries:
                    raise RemoteError("create_tree", f"path {node.path} not in base tree", status_code=422)
                del entries[node.path]
            elif node.content is not None:
                entries.update(self._store_files({node.path: node.content.encode("utf-8")}))
            else:
                assert node.sha in self.blobs
                entries[node.path] = node.sha
        self.created_trees.append(list(nodes))
        return self._store_tree(entries)

    def create_commit(self, tree_sha: str, parent_sha: str, message: str) -> str:
        self._record("create_commit")
        return self._store_commit(tree_sha, [parent_sha], message)

    def update_ref(self, commit_sha: str) -> str:
        self._record("update_ref")
        parents = self.commits[commit_sha][1]
        if parents != [self.tip]:
            raise RemoteError("update_ref", "Update is not a fast forward", status_code=422)
        self.tip = commit_sha
        return commit_sha

    def list_tree(self, tree_sha: str) -> list[RemoteEntry]:
        self._record("list_tree")
        return [
            RemoteEntry(path=path, sha=sha, size=len(self.blobs[sha]))
            for path, sha in sorted(self.trees[tree_sha].items())
        ]

    def get_blob(self, blob_sha: str) -> bytes:
        self._record("get_blob")
        return self.blobs[blob_sha]


def write_files(root: Path, files: dict[str, str | bytes]) -> None:
    for relative_path, content in files.items():
        target = root / relative_path
        target.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            target.write_bytes(content)
        else:
            target.write_text(content, encoding="utf-8")


@pytest.fixture
def vault_root(tmp_path: Path) -> Path:
    root = tmp_path / "vault"
    root.mkdir()
    return root


@pytest.fixture
def vault(vault_root: Path) -> LocalVault:
    return LocalVault(vault_root)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "state" / "gitvault.db"


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote({"README.md": b"# notes\n"})
