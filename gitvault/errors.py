from __future__ import annotations


class GitVaultError(Exception):
    """Base class for every failure surfaced to callers."""


class RemoteError(GitVaultError):
    def __init__(self, operation: str, message: str, *, status_code: int | None = None) -> None:
        self.operation = operation
        self.status_code = status_code
        detail = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"{operation} failed{detail}: {message}")


class StaleRemoteError(GitVaultError):
    """The remote branch moved past the commit recorded in the baseline."""

    def __init__(self, expected: str | None, actual: str) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Remote advanced since last sync (recorded {expected or 'nothing'}, remote is at {actual}). "
            "Run `gv pull` before pushing."
        )


class RemoteWriteError(GitVaultError):
    """Creating remote objects or moving the ref failed; the baseline was not touched."""

    def __init__(self, stage: str, cause: BaseException | str) -> None:
        self.stage = stage
        super().__init__(f"Push failed at {stage}: {cause}")


class BaselinePersistError(GitVaultError):
    def __init__(self, commit_sha: str, cause: BaseException, *, remote_advanced: bool = True) -> None:
        self.commit_sha = commit_sha
        self.remote_advanced = remote_advanced
        if remote_advanced:
            message = (
                f"Remote now points at {commit_sha} but the local baseline could not be saved: {cause}. "
                "Run `gv pull` to resynchronize."
            )
        else:
            message = (
                f"The local baseline could not be saved: {cause}. "
                "The remote was not changed; run `gv push` again."
            )
        super().__init__(message)


class LocalChangesError(GitVaultError):
    def __init__(self, paths: list[str]) -> None:
        self.paths = paths
        preview = ", ".join(paths[:5])
        more = f" and {len(paths) - 5} more" if len(paths) > 5 else ""
        super().__init__(
            f"Local changes would be overwritten by pull: {preview}{more}. Push or revert them first."
        )
