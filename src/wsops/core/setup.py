"""Installation of the workspace platform a workshop runs on.

Ensures the Dev Spaces operator subscription, the platform namespace and a
CheCluster tuned for many concurrent participants, then waits for the
CheCluster to become active. Each step is skipped when its resource exists.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Protocol

from wsops.core.access import PLATFORM_NAME, PLATFORM_NAMESPACE
from wsops.core.adapters.openshift import CHE_GROUP, CHE_VERSION, OLM_GROUP
from wsops.core.models import StepResult

log = logging.getLogger(__name__)

OPERATOR_NAMESPACE = "openshift-operators"
CHE_POLL_INTERVAL = 15
CHE_POLL_ATTEMPTS = 40


class SetupError(RuntimeError):
    """Raised when the workspace platform cannot be brought up."""


class PlatformGateway(Protocol):
    def list_cluster_service_versions(self, namespace: str) -> dict[str, str]:
        ...

    def create_subscription(self, namespace: str, manifest: Mapping[str, Any]) -> None:
        ...

    def namespace_exists(self, name: str) -> bool:
        ...

    def create_namespace(self, name: str, labels: Mapping[str, str]) -> None:
        ...

    def get_che_cluster(self, namespace: str, name: str) -> dict[str, Any] | None:
        ...

    def create_che_cluster(self, namespace: str, manifest: Mapping[str, Any]) -> None:
        ...


@dataclass
class SetupReport:
    """What `ensure_platform` did (or would do), step by step."""

    steps: dict[str, StepResult] = field(default_factory=dict)
    phase: str | None = None
    dry_run: bool = False

    @property
    def ready(self) -> bool:
        return self.phase == "Active"


def subscription_manifest() -> dict[str, Any]:
    return {
        "apiVersion": f"{OLM_GROUP}/v1alpha1",
        "kind": "Subscription",
        "metadata": {"name": PLATFORM_NAME, "namespace": OPERATOR_NAMESPACE},
        "spec": {
            "channel": "stable",
            "installPlanApproval": "Automatic",
            "name": PLATFORM_NAME,
            "source": "redhat-operators",
            "sourceNamespace": "openshift-marketplace",
        },
    }


def che_cluster_manifest() -> dict[str, Any]:
    """CheCluster sized for a classroom: idle timeout, per-user workspace caps."""
    return {
        "apiVersion": f"{CHE_GROUP}/{CHE_VERSION}",
        "kind": "CheCluster",
        "metadata": {
            "name": PLATFORM_NAME,
            "namespace": PLATFORM_NAMESPACE,
            "labels": {
                "app.kubernetes.io/name": PLATFORM_NAME,
                "app.kubernetes.io/component": "che-cluster",
            },
        },
        "spec": {
            "components": {
                "cheServer": {"debug": False, "logLevel": "INFO"},
                "metrics": {"enable": True},
                "pluginRegistry": {"openVSXURL": "https://open-vsx.org"},
            },
            "containerRegistry": {},
            "devEnvironments": {
                "startTimeoutSeconds": 600,
                "secondsOfRunBeforeIdling": 1800,
                "maxNumberOfWorkspacesPerUser": 5,
                "maxNumberOfRunningWorkspacesPerUser": 3,
                "containerBuildConfiguration": {
                    "openShiftSecurityContextConstraint": "container-build"
                },
                "disableContainerBuildCapabilities": False,
                "defaultEditor": "che-incubator/che-code/latest",
                "defaultNamespace": {"autoProvision": True, "template": "<username>-devspaces"},
                "storage": {"pvcStrategy": "per-workspace"},
            },
            "gitServices": {},
            "networking": {
                "auth": {
                    "gateway": {
                        "configLabels": {"app": "che", "component": "che-gateway-config"}
                    }
                }
            },
        },
    }


def che_phase(doc: Mapping[str, Any] | None) -> str | None:
    if doc is None:
        return None
    return (doc.get("status") or {}).get("chePhase") or None


def operator_installed(gateway: PlatformGateway) -> bool:
    """True if a Dev Spaces ClusterServiceVersion exists in the operator namespace."""
    csvs = gateway.list_cluster_service_versions(OPERATOR_NAMESPACE)
    return any(PLATFORM_NAME in name for name in csvs)


def await_che_cluster(
    gateway: PlatformGateway,
    *,
    attempts: int = CHE_POLL_ATTEMPTS,
    interval: float = CHE_POLL_INTERVAL,
    sleep: Callable[[float], None] = time.sleep,
) -> str | None:
    """
    Poll the CheCluster until it is Active.

    Raises:
        SetupError: If the CheCluster reports Failed or never becomes Active.
    """
    phase: str | None = None
    for attempt in range(1, attempts + 1):
        doc = gateway.get_che_cluster(PLATFORM_NAMESPACE, PLATFORM_NAME)
        phase = che_phase(doc)
        log.debug("CheCluster phase=%s (attempt %d/%d)", phase, attempt, attempts)
        if phase == "Active":
            return phase
        if phase == "Failed":
            dump = json.dumps((doc or {}).get("status") or {}, indent=2, sort_keys=True)
            raise SetupError(f"CheCluster {PLATFORM_NAME} failed:\n{dump}")
        if attempt < attempts:
            sleep(interval)
    raise SetupError(f"Timed out waiting for CheCluster {PLATFORM_NAME} (last phase: {phase or 'none'})")


def ensure_platform(
    gateway: PlatformGateway,
    *,
    dry_run: bool = False,
    wait: bool = True,
    sleep: Callable[[float], None] = time.sleep,
) -> SetupReport:
    """
    Install the operator, platform namespace and CheCluster if missing.

    In dry-run mode only reads are issued and the report lists what would
    be created.
    """
    report = SetupReport(dry_run=dry_run)

    if operator_installed(gateway):
        report.steps["operator"] = StepResult.SKIPPED
    else:
        report.steps["operator"] = StepResult.CREATED
        if not dry_run:
            log.info("Creating operator subscription %s", PLATFORM_NAME)
            gateway.create_subscription(OPERATOR_NAMESPACE, subscription_manifest())

    if gateway.namespace_exists(PLATFORM_NAMESPACE):
        report.steps["namespace"] = StepResult.SKIPPED
    else:
        report.steps["namespace"] = StepResult.CREATED
        if not dry_run:
            gateway.create_namespace(
                PLATFORM_NAMESPACE,
                {
                    "app.kubernetes.io/name": PLATFORM_NAME,
                    "app.kubernetes.io/component": "cluster-setup",
                },
            )

    existing = gateway.get_che_cluster(PLATFORM_NAMESPACE, PLATFORM_NAME)
    if existing is not None:
        report.steps["checluster"] = StepResult.SKIPPED
        report.phase = che_phase(existing)
    else:
        report.steps["checluster"] = StepResult.CREATED
        if not dry_run:
            log.info("Creating CheCluster %s/%s", PLATFORM_NAMESPACE, PLATFORM_NAME)
            gateway.create_che_cluster(PLATFORM_NAMESPACE, che_cluster_manifest())

    if not dry_run and wait and report.phase != "Active":
        report.phase = await_che_cluster(gateway, sleep=sleep)
    return report
