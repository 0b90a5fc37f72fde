from __future__ import annotations

from typing import Protocol

from rich.console import Console


class Notifier(Protocol):
    def notify(self, message: str) -> None: ...


class NullNotifier:
    def notify(self, message: str) -> None:
        return None


class ConsoleNotifier:
    def __init__(self, console: Console | None = None, *, style: str = "cyan") -> None:
        self._console = console or Console()
        self._style = style

    def notify(self, message: str) -> None:
        self._console.print(message, style=self._style, markup=False, highlight=False)


class RecordingNotifier:
    """Keeps every message; handy for callers that render a summary afterwards."""

    def __init__(self) -> None:
        self.messages: list[str] = []

    def notify(self, message: str) -> None:
        self.messages.append(message)
