"""Install the workspace platform the workshop runs on."""

from __future__ import annotations

import typer
from kubernetes.client.rest import ApiException

from wsops.cli.common.context import AppContext
from wsops.cli.common.exits import die, exit_from_exc, warn_exit
from wsops.cli.common.options import DryRunOpt, NoWaitOpt
from wsops.cli.common.output import out
from wsops.core.access import PLATFORM_NAME, PLATFORM_NAMESPACE
from wsops.core.adapters.openshift import describe_api_error
from wsops.core.models import StepResult
from wsops.core.setup import SetupError, ensure_platform


def setup_cmd(
    ctx: typer.Context,
    dry_run: bool = DryRunOpt,
    no_wait: bool = NoWaitOpt,
):
    """
    Install the Dev Spaces operator and a multi-user CheCluster.
    """
    appctx: AppContext = ctx.obj
    gateway = appctx.admin_gateway()

    out.header("Setting up workshop prerequisites")
    out.kv({"Cluster": gateway.server, "User": appctx.user})

    try:
        with out.status("Installing Dev Spaces (this can take several minutes)..."):
            report = ensure_platform(gateway, dry_run=dry_run, wait=not no_wait)
    except SetupError as exc:
        exit_from_exc(exc, message=str(exc))
    except ApiException as exc:
        die(f"Cluster API error: {describe_api_error(exc)}")

    for step, result in report.steps.items():
        if result == StepResult.CREATED:
            out.success(f"{step}: {'would be created' if dry_run else 'created'}")
        else:
            out.info(f"{step}: already present")

    if dry_run:
        warn_exit("Dry-run enabled: nothing was created", code=0)
    if report.ready:
        out.success(f"CheCluster {PLATFORM_NAMESPACE}/{PLATFORM_NAME} is Active")
    else:
        out.warn(f"CheCluster phase: {report.phase or 'unknown'} (not waited for)")
