"""Live progress view for provisioning batches."""

from __future__ import annotations

import threading
from typing import Iterable

from rich.console import Group
from rich.live import Live
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from wsops.cli.common.output import console

_TERMINAL = {"created", "skipped", "failed"}


def _style_for(message: str) -> str:
    if message in ("created", "Running"):
        return "green"
    if message in ("failed", "Failed"):
        return "red"
    if message == "skipped":
        return "dim"
    return "yellow"


class BatchProgress:
    """
    Overall bar plus one spinner row per user, fed by batch events.

    Use as a context manager and pass `on_event` to the batch controller.
    Events arrive from worker threads and are applied under one lock.
    """

    def __init__(self, users: Iterable[str]):
        self.users = list(users)
        self.failures = 0
        self._done: set[str] = set()
        self._lock = threading.Lock()

        self.overall = Progress(
            TextColumn("[bold]Overall[/]"),
            BarColumn(),
            TaskProgressColumn(),
            TextColumn("failures=[bold red]{task.fields[failures]}[/]"),
            TimeElapsedColumn(),
            console=console,
        )
        self.per_user = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.fields[user]}[/]"),
            TextColumn("[{task.fields[style]}]{task.fields[state]}[/{task.fields[style]}]"),
            TimeElapsedColumn(),
            console=console,
        )
        self._overall_id = self.overall.add_task("overall", total=max(len(self.users), 1), failures=0)
        width = max((len(u) for u in self.users), default=0)
        self._task_ids: dict[str, TaskID] = {
            u: self.per_user.add_task("", total=1, user=u.ljust(width), state="pending", style="dim")
            for u in self.users
        }
        self._live = Live(Group(self.overall, self.per_user), console=console, refresh_per_second=10, transient=True)

    def __enter__(self) -> "BatchProgress":
        self._live.__enter__()
        return self

    def __exit__(self, *exc) -> None:
        self._live.__exit__(*exc)

    def on_event(self, username: str, message: str) -> None:
        with self._lock:
            self._apply(username, message)

    def _apply(self, username: str, message: str) -> None:
        task_id = self._task_ids.get(username)
        if task_id is None or username in self._done:
            return
        if message in _TERMINAL:
            self._done.add(username)
            if message == "failed":
                self.failures += 1
                self.overall.update(self._overall_id, failures=self.failures)
            self.per_user.update(task_id, state=message, style=_style_for(message), completed=1)
            self.overall.advance(self._overall_id, 1)
            return
        self.per_user.update(task_id, state=message, style=_style_for(message))
