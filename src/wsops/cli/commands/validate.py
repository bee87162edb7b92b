"""Validate a deployed workshop environment."""

from __future__ import annotations

from pathlib import Path

import typer
from kubernetes.client.rest import ApiException

from wsops.cli.common.context import AppContext
from wsops.cli.common.exits import die, ok_exit, usage_error
from wsops.cli.common.options import NamespaceSuffixOpt, UserPrefixOpt, UsersFileOpt, UsersOpt
from wsops.cli.common.output import out
from wsops.core.adapters.openshift import describe_api_error
from wsops.core.detect import detect
from wsops.core.models import check_dns_label
from wsops.core.users import SourceKind, UserSource, resolve_users
from wsops.core.validation import status_rows, validate, write_report


def validate_cmd(
    ctx: typer.Context,
    users: str | None = UsersOpt,
    users_file: Path | None = UsersFileOpt,
    prefix: str | None = UserPrefixOpt,
    namespace_suffix: str | None = NamespaceSuffixOpt,
    status_only: bool = typer.Option(
        False, "--status-only", help="Only print each user's workspace phase"
    ),
    probe_services: bool = typer.Option(
        False,
        "--probe-services",
        help="Also probe PostgreSQL, Kafka and the application (POSTGRES_*, KAFKA_*, QUARKUS_* env vars)",
    ),
    skip_environment: bool = typer.Option(
        False, "--skip-environment", help="Skip the cluster and platform checks"
    ),
    no_report: bool = typer.Option(
        False, "--no-report", help="Don't write the CSV and markdown report files"
    ),
):
    """
    Check identities, namespaces, bindings, quotas, workspaces and isolation.

    Without --users / --users-file, every user matching the prefix pattern is checked.
    """
    appctx: AppContext = ctx.obj
    try:
        for value, what in ((prefix, "prefix"), (namespace_suffix, "namespace suffix")):
            if value is not None:
                check_dns_label(value, what)
        if users is not None and users_file is not None:
            raise ValueError("Options --users, --users-file are mutually exclusive")
        explicit: list[str] = []
        if users is not None:
            names = tuple(u.strip() for u in users.split(","))
            explicit = resolve_users(UserSource(SourceKind.LIST, names=names), "", lambda: ())
        elif users_file is not None:
            explicit = resolve_users(UserSource(SourceKind.FILE, path=users_file), "", lambda: ())
    except ValueError as exc:
        usage_error(ctx, str(exc))

    settings = appctx.with_naming(prefix=prefix, suffix=namespace_suffix)
    gateway = appctx.login_gateway()

    try:
        if status_only:
            with out.status("Reading workshop state..."):
                snapshot = detect(gateway, settings, users=explicit)
            rows = status_rows(snapshot, explicit or snapshot.pattern_users, settings)
            if not rows:
                ok_exit("No workshop users found")
            out.status_table(rows)
            ok_exit()

        with out.status("Running validation checks..."):
            report = validate(
                gateway,
                settings,
                users=explicit,
                environment=not skip_environment,
                services=probe_services,
            )
    except ApiException as exc:
        die(f"Cluster API error: {describe_api_error(exc)}")

    out.checks_table(report.results)
    out.kv(
        {
            "Total": report.total,
            "Passed": report.passed,
            "Failed": report.failed,
            "Skipped": report.skipped,
            "Success rate": f"{report.success_rate}%",
        }
    )

    if not no_report:
        csv_path, md_path = write_report(
            report, settings.results_dir, user=appctx.user or "N/A", server=gateway.server
        )
        out.info(f"Report written: {md_path} (details: {csv_path})")

    if not report.ok:
        die(f"{report.failed} check(s) failed", code=1)
    out.success("Workshop environment is ready")
