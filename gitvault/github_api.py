"""Client for the GitHub Git Data API (refs, commits, trees, blobs)."""

from __future__ import annotations

import base64
import logging
import time
from typing import Any, Callable, Protocol, TypeVar

import requests

from gitvault import __version__
from gitvault.config import GitVaultConfig
from gitvault.errors import RemoteError
from gitvault.models import RemoteEntry, RemoteTreeNode


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
T = TypeVar("T")


class RemoteRepository(Protocol):
    def get_ref_tip_commit(self) -> str: ...

    def get_commit_tree(self, commit_sha: str) -> str: ...

    def get_tree_for_commit(self, commit_sha: str) -> str: ...

    def create_blob(self, data: bytes) -> str: ...

    def create_tree(self, nodes: list[RemoteTreeNode], base_tree_sha: str) -> str: ...

    def create_commit(self, tree_sha: str, parent_sha: str, message: str) -> str: ...

    def update_ref(self, commit_sha: str) -> str: ...

    def list_tree(self, tree_sha: str) -> list[RemoteEntry]: ...

    def get_blob(self, blob_sha: str) -> bytes: ...


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, (requests.Timeout, requests.ConnectionError))


def _retry_on_timeout(
    func: Callable[[], T],
    *,
    operation: str,
    max_attempts: int = 3,
    base_delay_seconds: float = 1.0,
) -> T:
    attempt = 1
    while True:
        try:
            return func()
        except requests.RequestException as exc:
            if attempt >= max_attempts or not _is_transient(exc):
                raise
            sleep_seconds = base_delay_seconds * (2 ** (attempt - 1))
            logger.debug("%s: %s, retrying in %.1fs", operation, exc, sleep_seconds)
            time.sleep(sleep_seconds)
            attempt += 1


class GitHubRepository:
    """One branch of one GitHub repository."""

    def __init__(
        self,
        repo: str,
        *,
        branch: str = "main",
        token: str | None = None,
        api_url: str = "https://api.github.com",
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        retry_delay_seconds: float = 1.0,
    ) -> None:
        self.repo = repo
        self.branch = branch
        self.timeout = timeout
        self.retry_delay_seconds = retry_delay_seconds
        self._base = f"{api_url.rstrip('/')}/repos/{repo}"
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": f"gitvault/{__version__}",
            }
        )
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"

    @classmethod
    def from_config(cls, config: GitVaultConfig, token: str | None) -> "GitHubRepository":
        return cls(config.repo, branch=config.branch, token=token, api_url=config.api_url)

    def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        retry: bool = True,
    ) -> Any:
        url = f"{self._base}{path}"

        def _call() -> requests.Response:
            return self._session.request(method, url, json=json, params=params, timeout=self.timeout)

        try:
            if retry:
                response = _retry_on_timeout(
                    _call, operation=operation, base_delay_seconds=self.retry_delay_seconds
                )
            else:
                response = _call()
        except requests.RequestException as exc:
            raise RemoteError(operation, str(exc)) from exc

        if response.status_code >= 400:
            raise RemoteError(operation, _error_message(response), status_code=response.status_code)
        logger.debug("%s %s -> %s", method, path, response.status_code)
        return response.json()

    def get_ref_tip_commit(self) -> str:
        data = self._request("GET", f"/git/ref/heads/{self.branch}", operation="get_ref")
        return str(data["object"]["sha"])

    def get_commit_tree(self, commit_sha: str) -> str:
        data = self._request("GET", f"/git/commits/{commit_sha}", operation="get_commit")
        return str(data["tree"]["sha"])

    def get_tree_for_commit(self, commit_sha: str) -> str:
        return self.get_commit_tree(commit_sha)

    def create_blob(self, data: bytes) -> str:
        payload = {"content": base64.b64encode(data).decode("ascii"), "encoding": "base64"}
        result = self._request("POST", "/git/blobs", operation="create_blob", json=payload)
        return str(result["sha"])

    def create_tree(self, nodes: list[RemoteTreeNode], base_tree_sha: str) -> str:
        payload = {"base_tree": base_tree_sha, "tree": [node.to_payload() for node in nodes]}
        result = self._request("POST", "/git/trees", operation="create_tree", json=payload)
        return str(result["sha"])

    def create_commit(self, tree_sha: str, parent_sha: str, message: str) -> str:
        payload = {"message": message, "tree": tree_sha, "parents": [parent_sha]}
        result = self._request("POST", "/git/commits", operation="create_commit", json=payload)
        return str(result["sha"])

    def update_ref(self, commit_sha: str) -> str:
        # Not retried: a lost response followed by a resend could race a
        # concurrent writer. Non-forced updates must be fast-forwards.
        result = self._request(
            "PATCH",
            f"/git/refs/heads/{self.branch}",
            operation="update_ref",
            json={"sha": commit_sha, "force": False},
            retry=False,
        )
        return str(result["object"]["sha"])

    def list_tree(self, tree_sha: str) -> list[RemoteEntry]:
        """All blobs reachable from ``tree_sha``, with repo-relative paths."""
        data = self._request(
            "GET", f"/git/trees/{tree_sha}", operation="get_tree", params={"recursive": "1"}
        )
        if not data.get("truncated"):
            return _blob_entries(data.get("tree") or [], prefix="")
        logger.debug("Recursive listing of %s truncated, walking subtrees", tree_sha)
        return self._walk_tree(tree_sha, prefix="")

    def _walk_tree(self, tree_sha: str, *, prefix: str) -> list[RemoteEntry]:
        data = self._request("GET", f"/git/trees/{tree_sha}", operation="get_tree")
        entries = _blob_entries(data.get("tree") or [], prefix=prefix)
        for item in data.get("tree") or []:
            if item.get("type") == "tree":
                entries.extend(self._walk_tree(item["sha"], prefix=f"{prefix}{item['path']}/"))
        return entries

    def get_blob(self, blob_sha: str) -> bytes:
        data = self._request("GET", f"/git/blobs/{blob_sha}", operation="get_blob")
        if data.get("encoding") == "base64":
            return base64.b64decode(data.get("content") or "")
        return str(data.get("content") or "").encode("utf-8")


def _blob_entries(items: list[dict[str, Any]], *, prefix: str) -> list[RemoteEntry]:
    return [
        RemoteEntry(path=f"{prefix}{item['path']}", sha=str(item["sha"]), size=item.get("size"))
        for item in items
        if item.get("type") == "blob"
    ]


def _error_message(response: requests.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text.strip() or response.reason or "request failed"
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return response.reason or "request failed"
