"""Per-user namespace provisioning: namespace, quota and access bindings.

A user's namespace is created once and never shared. Its quota and role
bindings are re-applied on every run (declarative upserts) so a namespace
left half-configured by an interrupted run heals on the next one.
"""

from __future__ import annotations

import logging
from typing import Mapping, Protocol

from wsops.core.models import NamespaceSpec, RoleBindingSpec, Snapshot, StepResult
from wsops.core.settings import Settings

log = logging.getLogger(__name__)

APP_LABEL = "app.kubernetes.io/name"
COMPONENT_LABEL = "app.kubernetes.io/component"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
USER_LABEL = "workshop.user"
MANAGED_BY = "wsops"


class NamespaceGateway(Protocol):
    """Write operations the namespace provisioner needs."""

    def create_namespace(self, name: str, labels: Mapping[str, str]) -> None:
        ...

    def apply_resource_quota(
        self,
        namespace: str,
        name: str,
        hard: Mapping[str, str],
        labels: Mapping[str, str],
    ) -> None:
        ...

    def apply_service_account(self, namespace: str, name: str) -> None:
        ...

    def apply_role_binding(self, spec: RoleBindingSpec) -> None:
        ...


def namespace_labels(username: str, settings: Settings) -> dict[str, str]:
    """Labels used later for detection and cleanup filtering."""
    return {
        APP_LABEL: settings.app_name,
        COMPONENT_LABEL: "user-environment",
        MANAGED_BY_LABEL: MANAGED_BY,
        USER_LABEL: username,
    }


def build_namespace_spec(username: str, settings: Settings) -> NamespaceSpec:
    return NamespaceSpec(
        name=settings.namespace_for(username),
        owner=username,
        labels=namespace_labels(username, settings),
        quota=settings.quota,
    )


def role_bindings_for(username: str, settings: Settings) -> list[RoleBindingSpec]:
    """
    Admin grants for one namespace: the user and the namespace's service account.

    Bindings are RoleBindings (namespace-scoped) referencing the `admin`
    ClusterRole, never ClusterRoleBindings.
    """
    namespace = settings.namespace_for(username)
    return [
        RoleBindingSpec(
            name=f"{username}-admin",
            namespace=namespace,
            subject_kind="User",
            subject_name=username,
        ),
        RoleBindingSpec(
            name=f"{settings.service_account}-admin",
            namespace=namespace,
            subject_kind="ServiceAccount",
            subject_name=settings.service_account,
        ),
    ]


def apply_namespace_policies(
    gateway: NamespaceGateway,
    username: str,
    settings: Settings,
) -> None:
    """Upsert quota, service account and role bindings for a user's namespace."""
    spec = build_namespace_spec(username, settings)
    gateway.apply_resource_quota(
        spec.name,
        settings.quota_name,
        spec.quota.hard(),
        {APP_LABEL: settings.app_name, COMPONENT_LABEL: "resources"},
    )
    gateway.apply_service_account(spec.name, settings.service_account)
    for binding in role_bindings_for(username, settings):
        gateway.apply_role_binding(binding)


def ensure_namespace(
    gateway: NamespaceGateway,
    username: str,
    snapshot: Snapshot,
    settings: Settings,
    *,
    dry_run: bool = False,
) -> StepResult:
    """
    Make sure `username` has a configured namespace.

    Returns:
        StepResult.CREATED if the namespace was created by this call,
        StepResult.SKIPPED if it already existed. Policies are applied in
        both cases unless `dry_run` is set.
    """
    spec = build_namespace_spec(username, settings)
    if snapshot.has_namespace(spec.name):
        log.info("Namespace %s already exists, skipping creation", spec.name)
        result = StepResult.SKIPPED
    else:
        result = StepResult.CREATED
        if not dry_run:
            log.info("Creating namespace %s", spec.name)
            gateway.create_namespace(spec.name, spec.labels)

    if not dry_run:
        apply_namespace_policies(gateway, username, settings)
    return result
