"""Remove workshop users' namespaces (and with them their workspaces)."""

from __future__ import annotations

from pathlib import Path

import typer
from kubernetes.client.rest import ApiException

from wsops.cli.commands.provision import prepare, resolve_or_exit
from wsops.cli.common.exits import die, ok_exit, warn_exit
from wsops.cli.common.options import (
    CountOpt,
    DryRunOpt,
    ForceOpt,
    NamespaceSuffixOpt,
    UseExistingOpt,
    UserPrefixOpt,
    UsersFileOpt,
    UsersOpt,
)
from wsops.cli.common.output import out
from wsops.core.adapters.openshift import describe_api_error
from wsops.core.batch import CleanupRequest, cleanup
from wsops.core.detect import detect, managed_users


def cleanup_cmd(
    ctx: typer.Context,
    count: int | None = CountOpt,
    users: str | None = UsersOpt,
    users_file: Path | None = UsersFileOpt,
    use_existing: bool = UseExistingOpt,
    prefix: str | None = UserPrefixOpt,
    namespace_suffix: str | None = NamespaceSuffixOpt,
    dry_run: bool = DryRunOpt,
    force: bool = ForceOpt,
    workspace_only: bool = typer.Option(
        False,
        "--workspace-only",
        help="Delete only the workspaces, keep namespaces, quotas and bindings",
    ),
):
    """
    Delete user namespaces. Identities stay in the htpasswd store.
    """
    appctx, source, settings = prepare(
        ctx,
        count=count,
        users=users,
        users_file=users_file,
        use_existing=use_existing,
        prefix=prefix,
        suffix=namespace_suffix,
    )
    gateway = appctx.admin_gateway()

    def _existing() -> tuple[str, ...]:
        found = detect(gateway, settings).pattern_users
        return tuple(dict.fromkeys([*found, *managed_users(gateway, settings)]))

    targets = resolve_or_exit(ctx, gateway, source, settings, existing=_existing)
    request = CleanupRequest(users=tuple(targets), dry_run=dry_run, workspace_only=workspace_only)

    what = "workspaces" if workspace_only else "namespaces"
    out.header(f"Cleaning up {what}")
    out.kv({"Cluster": gateway.server, "Users": len(targets), "Namespaces": f"<user>-{settings.namespace_suffix}"})

    if not dry_run and not force:
        names = ", ".join(settings.namespace_for(u) for u in targets[:5])
        more = f" and {len(targets) - 5} more" if len(targets) > 5 else ""
        if not out.confirm(f"Delete {what} for {len(targets)} user(s) ({names}{more})?"):
            ok_exit("Cancelled")

    try:
        with out.status(f"Deleting {what}..."):
            report = cleanup(gateway, request, settings)
    except ApiException as exc:
        die(f"Cluster API error during detection: {describe_api_error(exc)}")

    out.cleanup_table(report.results, dry_run=dry_run)
    out.kv(
        {
            "Mode": report.mode.value,
            "Removed": report.removed_count,
            "Not found": report.absent_count,
            "Failed": report.failed_count,
            "Total": report.total,
        }
    )
    out.info(
        f"Identities were left in {settings.htpasswd_namespace}/{settings.htpasswd_secret}; "
        "remove their htpasswd entries manually if needed."
    )

    if dry_run:
        warn_exit("Dry-run enabled: nothing was deleted", code=0)
    if not report.ok:
        die(f"{report.failed_count} of {report.total} user(s) could not be cleaned up", code=1)
    out.success("Cleanup complete")
