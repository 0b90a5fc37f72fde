from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal, Union


FingerprintMap = Mapping[str, str]
ChangeKind = Literal["created", "changed", "deleted"]

BLOB_MODE = "100644"


@dataclass(slots=True)
class FileRecord:
    path: str
    sha: str
    size: int
    mtime_ns: int


@dataclass(frozen=True, slots=True)
class CreatedFile:
    path: str
    extension: str

    @property
    def kind(self) -> ChangeKind:
        return "created"


@dataclass(frozen=True, slots=True)
class ChangedFile:
    path: str
    extension: str

    @property
    def kind(self) -> ChangeKind:
        return "changed"


@dataclass(frozen=True, slots=True)
class DeletedFile:
    path: str

    @property
    def kind(self) -> ChangeKind:
        return "deleted"


LocalChange = Union[CreatedFile, ChangedFile, DeletedFile]


@dataclass(frozen=True, slots=True)
class SyncBaseline:
    """Last point at which the vault and the remote branch were known to agree.

    ``local_sha`` is ``None`` when no fingerprints were recorded yet; the next
    push then uploads every file.
    """

    local_sha: FingerprintMap | None = None
    last_fetched_commit_sha: str | None = None
    last_fetched_remote_sha: str | None = None


@dataclass(frozen=True, slots=True)
class RemoteTreeNode:
    path: str
    sha: str | None = None
    content: str | None = None
    mode: str = BLOB_MODE
    type: str = "blob"

    @property
    def is_deletion(self) -> bool:
        return self.sha is None and self.content is None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"path": self.path, "mode": self.mode, "type": self.type}
        if self.content is not None:
            payload["content"] = self.content
        else:
            # A null sha removes the path from the base tree.
            payload["sha"] = self.sha
        return payload


@dataclass(slots=True)
class RemoteEntry:
    path: str
    sha: str
    size: int | None = None


@dataclass(slots=True)
class PushResult:
    status: Literal["pushed", "noop"]
    reason: str = ""
    commit_sha: str | None = None
    tree_sha: str | None = None
    changes: list[LocalChange] = field(default_factory=list)
    dropped_paths: list[str] = field(default_factory=list)

    @property
    def pushed(self) -> bool:
        return self.status == "pushed"


@dataclass(slots=True)
class PullResult:
    status: Literal["pulled", "up_to_date"]
    commit_sha: str
    downloaded_paths: list[str] = field(default_factory=list)
    deleted_local_paths: list[str] = field(default_factory=list)
    snapshot_count: int = 0
