"""CLI application for workshop environment provisioning."""

import logging

import typer
from rich.logging import RichHandler

from wsops.cli.commands.cleanup import cleanup_cmd
from wsops.cli.commands.provision import provision_cmd
from wsops.cli.commands.setup import setup_cmd
from wsops.cli.commands.validate import validate_cmd
from wsops.cli.common.context import AppContext
from wsops.cli.common.exits import die
from wsops.cli.common.output import console
from wsops.core.settings import Settings

app = typer.Typer(
    help="wsops - provision and tear down multi-user workshop environments",
    no_args_is_help=True,
)


def _configure_logging(verbose: bool) -> None:
    logger = logging.getLogger("wsops")
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        logger.addHandler(RichHandler(console=console, show_path=False, rich_tracebacks=True))


@app.callback()
def _init(
    ctx: typer.Context,
    context: str | None = typer.Option(
        None, "--context", help="kubeconfig context to use (default: current context)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """Load settings from the environment; the cluster is contacted lazily."""
    _configure_logging(verbose)
    try:
        settings = Settings.from_env()
    except ValueError as exc:
        die(f"Invalid configuration: {exc}")
    ctx.obj = AppContext(settings=settings, kube_context=context)


app.command("provision", help="Create identities, namespaces and workspaces.")(provision_cmd)
app.command("cleanup", help="Delete user namespaces or workspaces.")(cleanup_cmd)
app.command("setup-prerequisites", help="Install Dev Spaces and a multi-user CheCluster.")(setup_cmd)
app.command("validate", help="Run post-deployment checks.")(validate_cmd)


if __name__ == "__main__":
    app()
