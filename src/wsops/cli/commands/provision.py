"""Provision workshop users: identities, namespaces and workspaces."""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import typer
from kubernetes.client.rest import ApiException

from wsops.cli.common.context import AppContext
from wsops.cli.common.exits import die, ok_exit, usage_error, warn_exit
from wsops.cli.common.options import (
    CountOpt,
    DryRunOpt,
    GenerateUrlsOpt,
    IncrementalOpt,
    NamespaceSuffixOpt,
    NoWaitOpt,
    ParallelOpt,
    PasswordOpt,
    UseExistingOpt,
    UserPrefixOpt,
    UsersFileOpt,
    UsersOpt,
)
from wsops.cli.common.output import out
from wsops.cli.common.progress import BatchProgress
from wsops.cli.common.user_source import build_user_source
from wsops.core.access import ONBOARDING_STEPS, build_access_summary, resolve_console_url
from wsops.core.adapters.openshift import OpenShiftGateway, describe_api_error
from wsops.core.batch import ProvisionRequest, provision
from wsops.core.detect import detect
from wsops.core.identities import CredentialStoreError
from wsops.core.models import UserStatus, check_dns_label
from wsops.core.settings import MAX_PARALLEL, Settings
from wsops.core.users import UserSource, resolve_users


def prepare(
    ctx: typer.Context,
    *,
    count: int | None,
    users: str | None,
    users_file: Path | None,
    use_existing: bool,
    prefix: str | None,
    suffix: str | None,
) -> tuple[AppContext, UserSource, Settings]:
    """Validate naming and user-source options; exits 1 on a usage error."""
    appctx: AppContext = ctx.obj
    try:
        for value, what in ((prefix, "prefix"), (suffix, "namespace suffix")):
            if value is not None:
                check_dns_label(value, what)
        source = build_user_source(
            count=count, users=users, users_file=users_file, use_existing=use_existing
        )
    except ValueError as exc:
        usage_error(ctx, str(exc))
    settings = appctx.with_naming(prefix=prefix, suffix=suffix)
    return appctx, source, settings


def resolve_or_exit(
    ctx: typer.Context,
    gateway: OpenShiftGateway,
    source: UserSource,
    settings: Settings,
    existing: Callable[[], tuple[str, ...]] | None = None,
) -> list[str]:
    """Resolve the user source against the cluster; exits 1 if it yields no users."""
    detect_existing = existing or (lambda: detect(gateway, settings).pattern_users)
    try:
        with out.status("Resolving users..."):
            return resolve_users(source, settings.user_prefix, detect_existing)
    except ValueError as exc:
        usage_error(ctx, str(exc))
    except ApiException as exc:
        die(f"Could not read existing users: {describe_api_error(exc)}")


def print_access(gateway: OpenShiftGateway, users: list[str], settings: Settings) -> bool:
    """Print the per-user access summary; returns False if no console URL was found."""
    try:
        console_url = resolve_console_url(gateway, settings)
    except (ValueError, ApiException) as exc:
        message = describe_api_error(exc) if isinstance(exc, ApiException) else str(exc)
        out.warn(f"Access summary unavailable: {message}")
        return False

    out.header("Workshop access")
    out.kv({"Console": console_url, "Repository": settings.repository_url})
    out.access_table(build_access_summary(users, console_url, settings))
    out.steps("Getting started", ONBOARDING_STEPS)
    return True


def provision_cmd(
    ctx: typer.Context,
    count: int | None = CountOpt,
    users: str | None = UsersOpt,
    users_file: Path | None = UsersFileOpt,
    use_existing: bool = UseExistingOpt,
    password: str = PasswordOpt,
    prefix: str | None = UserPrefixOpt,
    namespace_suffix: str | None = NamespaceSuffixOpt,
    dry_run: bool = DryRunOpt,
    incremental: bool = IncrementalOpt,
    parallel: int = ParallelOpt,
    generate_urls: bool = GenerateUrlsOpt,
    no_wait: bool = NoWaitOpt,
):
    """
    Create identities, namespaces and workspaces for workshop users.

    Safe to re-run: existing resources are detected and skipped.
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

    if generate_urls:
        gateway = appctx.login_gateway()
        targets = resolve_or_exit(ctx, gateway, source, settings)
        if not print_access(gateway, targets, settings):
            raise typer.Exit(1)
        ok_exit()

    if not 1 <= parallel <= MAX_PARALLEL:
        usage_error(ctx, f"--parallel must be between 1 and {MAX_PARALLEL}: got {parallel}")
    if source.creates_identities and not password:
        usage_error(ctx, "Password must not be empty")

    gateway = appctx.admin_gateway()
    targets = resolve_or_exit(ctx, gateway, source, settings)
    request = ProvisionRequest(
        users=tuple(targets),
        password=password,
        create_identities=source.creates_identities,
        incremental=incremental,
        dry_run=dry_run,
        wait=not no_wait,
        parallel=parallel,
    )

    out.header("Provisioning workshop users")
    out.kv(
        {
            "Cluster": gateway.server,
            "User": appctx.user,
            "Users": f"{len(targets)} ({targets[0]} .. {targets[-1]})",
            "Namespaces": f"<user>-{settings.namespace_suffix}",
            "Parallel": parallel,
        }
    )
    if dry_run:
        out.warn("Dry-run enabled: nothing will be changed")

    try:
        if dry_run or no_wait:
            with out.status("Provisioning..."):
                result = provision(gateway, request, settings)
        else:
            with BatchProgress(targets) as progress:
                result = provision(gateway, request, settings, on_event=progress.on_event)
    except CredentialStoreError as exc:
        die(f"Identity step failed, no user was provisioned: {exc}")
    except ApiException as exc:
        die(f"Cluster API error during detection: {describe_api_error(exc)}")

    report = result.report
    if result.identities is not None:
        ids = result.identities
        verb = "would be" if dry_run else "were"
        out.info(
            f"Identities: {len(ids.created)} {verb} created, {len(ids.updated)} updated, "
            f"{len(ids.unchanged)} unchanged"
        )

    if dry_run:
        out.header("Planned actions")
        out.batch_actions(report.outcomes)
    out.batch_table(report.outcomes)
    for outcome in report.outcomes:
        if outcome.error:
            out.error(f"{outcome.username}: {outcome.error}")
    out.batch_summary(report)

    if dry_run:
        warn_exit("Dry-run enabled: no resources were changed", code=0)

    print_access(gateway, [u.username for u in result.users if u.status != UserStatus.PENDING], settings)

    if not report.ok:
        die(f"{report.failed_count} of {report.total} user(s) failed", code=1)
    out.success(f"Provisioned {report.total} user(s)")
