from __future__ import annotations

import threading
from dataclasses import dataclass

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
)


@dataclass(slots=True)
class TransferRow:
    task_id: TaskID
    path: str
    size: int
    reported: int = 0


class TransferProgressUI:
    """Rich rows for the files a push stages or a pull downloads.

    Each path gets its own row, advanced by the bytes actually read, uploaded
    or downloaded. A summary row on top counts finished files. Worker threads
    report into it, so every Rich call goes through a lock.
    """

    def __init__(self, console: Console | None = None) -> None:
        self._lock = threading.Lock()
        self._rows: list[TransferRow] = []
        self._finished = 0
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.fields[action]}"),
            TextColumn("{task.fields[path]}"),
            BarColumn(),
            DownloadColumn(binary_units=True),
            TextColumn("{task.fields[state]}"),
            console=console,
            transient=False,
            expand=True,
        )
        self._summary = self._progress.add_task("summary", total=0, action="", path="0/0 files", state="")

    def __enter__(self) -> "TransferProgressUI":
        self._progress.__enter__()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._progress.__exit__(exc_type, exc, tb)

    @property
    def finished_count(self) -> int:
        return self._finished

    @property
    def transferred_bytes(self) -> int:
        return sum(row.reported for row in self._rows)

    def _summary_label(self) -> str:
        return f"{self._finished}/{len(self._rows)} files"

    def track(self, *, action: str, path: str, size: int | None) -> TransferRow:
        size = max(size or 0, 0)
        with self._lock:
            task_id = self._progress.add_task(
                path, total=size or None, start=False, action=action, path=path, state="queued"
            )
            row = TransferRow(task_id=task_id, path=path, size=size)
            self._rows.append(row)
            self._progress.update(
                self._summary,
                total=sum(item.size for item in self._rows),
                path=self._summary_label(),
            )
        return row

    def begin(self, row: TransferRow, state: str) -> None:
        with self._lock:
            self._progress.start_task(row.task_id)
            self._progress.update(row.task_id, state=state)

    def report(self, row: TransferRow, nbytes: int) -> None:
        """Count ``nbytes`` moved for ``row``; never past its known size."""
        with self._lock:
            delta = max(nbytes, 0)
            if row.size:
                delta = min(delta, row.size - row.reported)
            row.reported += delta
            self._progress.update(row.task_id, advance=delta)
            self._progress.update(self._summary, advance=delta)

    def finish(self, row: TransferRow, state: str = "done") -> None:
        with self._lock:
            self._finished += 1
            self._progress.update(row.task_id, state=state)
            self._progress.update(self._summary, path=self._summary_label())

    def fail(self, row: TransferRow, reason: str = "failed") -> None:
        with self._lock:
            self._progress.update(row.task_id, state=f"[red]{reason}[/red]")
