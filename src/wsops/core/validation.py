"""Read-only post-deployment checks.

Every check is independent and ends as PASS, FAIL or SKIP; a check whose
prerequisite resource is absent is skipped rather than failed. Results are
aggregated into a `TestReport` that can be written out as a CSV file and a
markdown summary.
"""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol, Sequence

import httpx
from kubernetes.client.rest import ApiException

from wsops.core.access import PLATFORM_NAME, PLATFORM_NAMESPACE
from wsops.core.adapters.openshift import describe_api_error
from wsops.core.detect import DetectionGateway, detect
from wsops.core.health import probe_services
from wsops.core.models import CheckResult, CheckStatus, Snapshot, WorkspacePhase
from wsops.core.namespaces import role_bindings_for
from wsops.core.settings import Settings
from wsops.core.setup import OPERATOR_NAMESPACE, che_phase

log = logging.getLogger(__name__)

ENVIRONMENT = "environment"
USER = "user"
ISOLATION = "isolation"


class ValidationGateway(DetectionGateway, Protocol):
    def server_version(self) -> str:
        ...

    def list_cluster_service_versions(self, namespace: str) -> dict[str, str]:
        ...

    def get_che_cluster(self, namespace: str, name: str) -> dict[str, Any] | None:
        ...

    def route_host(self, namespace: str, name: str) -> str | None:
        ...

    def resource_quota_exists(self, namespace: str, name: str) -> bool:
        ...

    def role_binding_exists(self, namespace: str, name: str) -> bool:
        ...

    def can_user(self, user: str, verb: str, resource: str, *, namespace: str) -> bool:
        ...


@dataclass
class TestReport:
    """Aggregated validation results of one run."""

    __test__ = False

    results: list[CheckResult] = field(default_factory=list)
    started: datetime = field(default_factory=datetime.now)

    def _count(self, status: CheckStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def passed(self) -> int:
        return self._count(CheckStatus.PASS)

    @property
    def failed(self) -> int:
        return self._count(CheckStatus.FAIL)

    @property
    def skipped(self) -> int:
        return self._count(CheckStatus.SKIP)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def success_rate(self) -> int:
        """Whole-number percentage of passed checks over all checks."""
        if not self.results:
            return 0
        return self.passed * 100 // self.total

    @property
    def ok(self) -> bool:
        return self.failed == 0


def _run_check(category: str, name: str, fn: Callable[[], CheckResult]) -> CheckResult:
    try:
        return fn()
    except ApiException as exc:
        return CheckResult(category, name, CheckStatus.FAIL, describe_api_error(exc))
    except Exception as exc:  # noqa: BLE001
        return CheckResult(category, name, CheckStatus.FAIL, str(exc))


def _verdict(category: str, name: str, ok: bool, details_ok: str, details_fail: str) -> CheckResult:
    if ok:
        return CheckResult(category, name, CheckStatus.PASS, details_ok)
    return CheckResult(category, name, CheckStatus.FAIL, details_fail)


def environment_checks(gateway: ValidationGateway) -> list[CheckResult]:
    """Cluster reachability and workspace platform health."""

    def api() -> CheckResult:
        return CheckResult(ENVIRONMENT, "Cluster API", CheckStatus.PASS, gateway.server_version())

    def operator() -> CheckResult:
        csvs = gateway.list_cluster_service_versions(OPERATOR_NAMESPACE)
        found = [n for n in csvs if PLATFORM_NAME in n]
        return _verdict(
            ENVIRONMENT,
            "Dev Spaces operator",
            bool(found),
            ", ".join(f"{n} ({csvs[n] or 'unknown'})" for n in found),
            f"no {PLATFORM_NAME} ClusterServiceVersion in {OPERATOR_NAMESPACE}",
        )

    def checluster() -> CheckResult:
        doc = gateway.get_che_cluster(PLATFORM_NAMESPACE, PLATFORM_NAME)
        if doc is None:
            return CheckResult(ENVIRONMENT, "CheCluster status", CheckStatus.FAIL, "CheCluster not found")
        phase = che_phase(doc)
        return _verdict(
            ENVIRONMENT, "CheCluster status", phase == "Active", "Active", f"phase: {phase or 'unknown'}"
        )

    def route() -> CheckResult:
        host = gateway.route_host(PLATFORM_NAMESPACE, PLATFORM_NAME)
        if host is None:
            return CheckResult(ENVIRONMENT, "Dev Spaces route", CheckStatus.SKIP, "route not found")
        return CheckResult(ENVIRONMENT, "Dev Spaces route", CheckStatus.PASS, host)

    return [
        _run_check(ENVIRONMENT, "Cluster API", api),
        _run_check(ENVIRONMENT, "Dev Spaces operator", operator),
        _run_check(ENVIRONMENT, "CheCluster status", checluster),
        _run_check(ENVIRONMENT, "Dev Spaces route", route),
    ]


def user_checks(
    gateway: ValidationGateway, username: str, snapshot: Snapshot, settings: Settings
) -> list[CheckResult]:
    """Identity, namespace, bindings, quota and workspace phase for one user."""
    namespace = settings.namespace_for(username)
    results = [
        _verdict(
            USER,
            f"Identity: {username}",
            snapshot.has_identity(username),
            "present in htpasswd",
            "missing from htpasswd",
        ),
        _verdict(
            USER,
            f"Namespace: {namespace}",
            snapshot.has_namespace(namespace),
            "exists",
            "not found",
        ),
    ]

    if not snapshot.has_namespace(namespace):
        reason = f"namespace {namespace} not found"
        results += [
            CheckResult(USER, f"RoleBinding: {b.name} ({namespace})", CheckStatus.SKIP, reason)
            for b in role_bindings_for(username, settings)
        ]
        results.append(CheckResult(USER, f"Quota: {namespace}", CheckStatus.SKIP, reason))
        results.append(CheckResult(USER, f"Workspace: {namespace}", CheckStatus.SKIP, reason))
        return results

    for binding in role_bindings_for(username, settings):
        name = f"RoleBinding: {binding.name} ({namespace})"
        results.append(
            _run_check(
                USER,
                name,
                lambda b=binding, n=name: _verdict(
                    USER, n, gateway.role_binding_exists(namespace, b.name), "present", "not found"
                ),
            )
        )

    quota_name = f"Quota: {namespace}"
    results.append(
        _run_check(
            USER,
            quota_name,
            lambda: _verdict(
                USER,
                quota_name,
                gateway.resource_quota_exists(namespace, settings.quota_name),
                settings.quota_name,
                f"{settings.quota_name} not found",
            ),
        )
    )

    ws = snapshot.workspace_in(namespace)
    ws_name = f"Workspace: {namespace}"
    if ws is None:
        results.append(CheckResult(USER, ws_name, CheckStatus.SKIP, "no workspace deployed yet"))
    else:
        results.append(
            _verdict(
                USER, ws_name, ws.phase == WorkspacePhase.RUNNING, ws.phase.value, f"phase: {ws.phase.value}"
            )
        )
    return results


def isolation_pairs(users: Sequence[str]) -> list[tuple[str, str]]:
    """Each user against the next one, wrapping around; empty for fewer than two users."""
    if len(users) < 2:
        return []
    if len(users) == 2:
        return [(users[0], users[1]), (users[1], users[0])]
    return [(users[i], users[(i + 1) % len(users)]) for i in range(len(users))]


def isolation_checks(
    gateway: ValidationGateway, users: Sequence[str], snapshot: Snapshot, settings: Settings
) -> list[CheckResult]:
    """User A must not be able to read pods in user B's namespace."""
    results: list[CheckResult] = []
    for owner, other in isolation_pairs(users):
        target = settings.namespace_for(other)
        name = f"User isolation: {owner} -> {target}"
        if not snapshot.has_namespace(target):
            results.append(CheckResult(ISOLATION, name, CheckStatus.SKIP, f"namespace {target} not found"))
            continue
        results.append(
            _run_check(
                ISOLATION,
                name,
                lambda o=owner, t=target, n=name: _verdict(
                    ISOLATION,
                    n,
                    not gateway.can_user(o, "get", "pods", namespace=t),
                    "access denied",
                    f"{o} can read pods in {t}",
                ),
            )
        )
    return results


def validate(
    gateway: ValidationGateway,
    settings: Settings,
    *,
    users: Iterable[str] = (),
    environment: bool = True,
    services: bool = False,
    http_client: httpx.Client | None = None,
) -> TestReport:
    """
    Run the validation suite.

    Args:
        users: Users to check; defaults to every identity matching the
            deployment's username pattern.
        environment: Include cluster and platform checks.
        services: Include in-workspace service probes.
    """
    report = TestReport()
    explicit = tuple(users)
    snapshot = detect(gateway, settings, users=explicit)
    targets = list(explicit or snapshot.pattern_users)

    if environment:
        report.results += environment_checks(gateway)
    if not targets:
        report.results.append(CheckResult(USER, "Workshop users", CheckStatus.SKIP, "no users found"))
    for username in targets:
        report.results += user_checks(gateway, username, snapshot, settings)
    report.results += isolation_checks(gateway, targets, snapshot, settings)
    if services:
        report.results += probe_services(settings.probes, client=http_client)

    log.info(
        "Validation: %d passed, %d failed, %d skipped", report.passed, report.failed, report.skipped
    )
    return report


def status_rows(snapshot: Snapshot, users: Iterable[str], settings: Settings) -> list[tuple[str, str, str]]:
    """Return (user, namespace, workspace phase) rows; `NotFound` when absent."""
    rows = []
    for username in users:
        namespace = settings.namespace_for(username)
        ws = snapshot.workspace_in(namespace)
        if ws is not None:
            phase = ws.phase.value
        elif snapshot.has_namespace(namespace):
            phase = "NotFound"
        else:
            phase = "NotFound (no namespace)"
        rows.append((username, namespace, phase))
    return rows


def write_report(
    report: TestReport,
    directory: Path,
    *,
    user: str = "N/A",
    server: str = "N/A",
) -> tuple[Path, Path]:
    """
    Write `test_results_<ts>.csv` and `test_report_<ts>.md` into `directory`.

    Returns:
        The CSV path and the markdown path.
    """
    directory.mkdir(parents=True, exist_ok=True)
    stamp = report.started.strftime("%Y%m%d_%H%M%S")
    csv_path = directory / f"test_results_{stamp}.csv"
    md_path = directory / f"test_report_{stamp}.md"

    with csv_path.open("w", newline="", encoding="utf-8") as fh:
        writer = csv.writer(fh)
        writer.writerow(["Status", "Category", "Test Name", "Timestamp", "Details"])
        for r in report.results:
            writer.writerow([r.status.value, r.category, r.name, report.started.isoformat(), r.details])

    if report.failed:
        recommendation = (
            f"**Action Required**: {report.failed} check(s) failed. Review the detailed "
            "results and address issues before workshop delivery."
        )
    else:
        recommendation = (
            "**Ready for Workshop**: All checks passed. Environment is ready for participants."
        )

    md_path.write_text(
        "\n".join(
            [
                "# Workshop Validation Report",
                "",
                f"**Generated**: {report.started:%Y-%m-%d %H:%M:%S}  ",
                f"**Cluster User**: {user}  ",
                f"**Cluster Server**: {server}",
                "",
                "## Summary",
                "",
                f"- **Total Checks**: {report.total}",
                f"- **Passed**: {report.passed}",
                f"- **Failed**: {report.failed}",
                f"- **Skipped**: {report.skipped}",
                f"- **Success Rate**: {report.success_rate}%",
                "",
                "## Results",
                "",
                f"See detailed results in: {csv_path.name}",
                "",
                "## Recommendations",
                "",
                recommendation,
                "",
            ]
        ),
        encoding="utf-8",
    )
    return csv_path, md_path
