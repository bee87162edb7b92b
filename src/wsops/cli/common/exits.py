"""Exit handling utilities for the CLI."""

from typing import NoReturn

import typer

from wsops.cli.common.output import console, out


def ok_exit(msg: str | None = None) -> NoReturn:
    """Exit successfully with an optional informational message."""
    if msg:
        out.info(msg)
    raise typer.Exit(0)


def die(msg: str, code: int = 1) -> NoReturn:
    """Exit with an error message and optional exit code."""
    out.error(msg)
    raise typer.Exit(code)


def warn_exit(msg: str, code: int = 0) -> NoReturn:
    """Exit with a warning message and optional exit code."""
    out.warn(msg)
    raise typer.Exit(code)


def usage_error(ctx: typer.Context, msg: str) -> NoReturn:
    """Print the command usage and the problem, then exit 1 before any cluster call."""
    console.print(ctx.get_usage())
    console.print(f"Try '{ctx.command_path} --help' for help.", style="meta")
    out.error(msg)
    raise typer.Exit(1)


def exit_from_exc(exc: Exception, *, message: str, code: int = 1) -> NoReturn:
    """Print an error message and exit, chaining the original exception."""
    out.error(message)
    raise typer.Exit(code) from exc
