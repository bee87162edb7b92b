"""Output formatting utilities for the CLI."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

import questionary
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.theme import Theme

from wsops.cli.common.tui_style import QUESTIONARY_STYLE_CONFIRM

_THEME = Theme(
    {
        "ok": "bold green",
        "warn": "yellow",
        "err": "bold red",
        "title": "bold cyan",
        "meta": "dim",
    }
)

console = Console(theme=_THEME)

_STATUS_STYLE = {
    "created": "ok",
    "skipped": "meta",
    "failed": "err",
    "PASS": "ok",
    "SKIP": "warn",
    "FAIL": "err",
    "Running": "ok",
    "Starting": "warn",
    "Failed": "err",
}


def _styled(value: str) -> str:
    style = _STATUS_STYLE.get(value)
    text = escape(value)
    return f"[{style}]{text}[/{style}]" if style else text


@dataclass(frozen=True)
class Out:
    """Output formatter for CLI messages and tables."""

    def _q(self, message: str) -> str:
        """Prefix Questionary prompts to be WSOPS consistent."""
        return f"[WSOPS] {message}"

    def info(self, msg: str) -> None:
        """Print an info message."""
        console.print(f"[title]›[/] {escape(msg)}")

    @contextmanager
    def status(self, msg: str):
        """Show a transient status spinner while work is in progress."""
        with console.status(msg, spinner="dots"):
            yield

    def success(self, msg: str) -> None:
        """Print a success message."""
        console.print(f"[ok]✓[/] {escape(msg)}")

    def warn(self, msg: str) -> None:
        """Print a warning message."""
        console.print(f"[warn]⚠[/] {escape(msg)}")

    def error(self, msg: str) -> None:
        """Print an error message."""
        console.print(f"[err]✗[/] {escape(msg)}")

    def header(self, title: str) -> None:
        """Print a header message."""
        console.print(f"[title]{escape(title)}[/]")

    def kv(self, items: Mapping[str, Any]) -> None:
        """Print key-value pairs."""
        for k, v in items.items():
            console.print(f"[meta]{escape(k)}[/]: {escape(str(v))}")

    def confirm(self, message: str, *, default: bool = False) -> bool:
        """
        Ask the user for confirmation using a standardized Questionary prompt.

        Returns:
            True if the user confirms, False otherwise (including Ctrl-C).
        """
        console.print("[meta]Use y/n then Enter[/]")
        prompt = questionary.confirm(
            self._q(message),
            default=default,
            style=QUESTIONARY_STYLE_CONFIRM,
            qmark="✦",
            auto_enter=False,
        )
        return bool(prompt.ask())

    def batch_table(self, outcomes: Iterable[Any], title: str = "Provisioning results") -> None:
        """Expects objects with .username .namespace .status .readiness .error (UserOutcome)."""
        t = Table(title=title, show_lines=False)
        t.add_column("User", style="ok", no_wrap=True)
        t.add_column("Namespace", no_wrap=True)
        t.add_column("Result")
        t.add_column("Workspace")
        t.add_column("Error", style="err")

        for o in outcomes:
            readiness = o.readiness.value if o.readiness is not None else ""
            error = (o.error or "").splitlines()[0] if o.error else ""
            t.add_row(
                o.username,
                o.namespace,
                _styled(o.status.value),
                _styled(readiness),
                escape(error),
            )

        console.print(t)

    def batch_actions(self, outcomes: Iterable[Any]) -> None:
        """Print the planned or performed actions per user (used for dry runs)."""
        for o in outcomes:
            console.print(f"[title]{escape(o.username)}[/]")
            for action in o.actions:
                console.print(f"  [meta]-[/] {escape(action)}")

    def batch_summary(self, report: Any) -> None:
        """Print the aggregate counts of a BatchReport."""
        self.kv(
            {
                "Mode": report.mode.value,
                "Created": report.created_count,
                "Skipped": report.skipped_count,
                "Failed": report.failed_count,
                "Total": report.total,
            }
        )

    def cleanup_table(self, results: Iterable[Any], *, dry_run: bool, title: str = "Cleanup results") -> None:
        """Expects objects with .username .namespace .removed .error (CleanupResult)."""
        t = Table(title=title, show_lines=False)
        t.add_column("User", style="ok", no_wrap=True)
        t.add_column("Namespace", no_wrap=True)
        t.add_column("Result")
        t.add_column("Error", style="err")

        for r in results:
            if r.error:
                result = "[err]failed[/]"
            elif r.removed:
                result = "[warn]would remove[/]" if dry_run else "[ok]removed[/]"
            else:
                result = "[meta]not found[/]"
            t.add_row(r.username, r.namespace, result, escape(r.error or ""))

        console.print(t)

    def checks_table(self, results: Iterable[Any], title: str = "Validation results") -> None:
        """Expects objects with .category .name .status .details (CheckResult)."""
        t = Table(title=title, show_lines=False)
        t.add_column("Status", no_wrap=True)
        t.add_column("Category", style="meta")
        t.add_column("Check")
        t.add_column("Details", style="meta")

        for r in results:
            t.add_row(_styled(r.status.value), r.category, escape(r.name), escape(r.details))

        console.print(t)

    def status_table(self, rows: Iterable[tuple[str, str, str]], title: str = "Workshop status") -> None:
        t = Table(title=title, show_lines=False)
        t.add_column("User", style="ok", no_wrap=True)
        t.add_column("Namespace")
        t.add_column("Workspace phase")

        for user, namespace, phase in rows:
            t.add_row(user, namespace, _styled(phase))

        console.print(t)

    def access_table(self, infos: Iterable[Any], title: str = "Participant access") -> None:
        """Expects objects with .username .namespace .workspace_url (AccessInfo)."""
        t = Table(title=title, show_lines=False)
        t.add_column("User", style="ok", no_wrap=True)
        t.add_column("Namespace", no_wrap=True)
        t.add_column("Workspace URL", overflow="fold")

        for a in infos:
            t.add_row(a.username, a.namespace, escape(a.workspace_url))

        console.print(t)

    def steps(self, title: str, items: Iterable[str]) -> None:
        """Print a numbered list under a header."""
        self.header(title)
        for i, item in enumerate(items, start=1):
            console.print(f"  {i}. {escape(item)}")


out = Out()
