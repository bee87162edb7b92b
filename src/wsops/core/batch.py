"""Batch provisioning and teardown of workshop users.

This module drives the per-user chain (namespace, policies, workspace,
readiness) for a whole batch and aggregates the outcomes. It is free of
CLI concerns: confirmation prompts and rendering live in the CLI layer.

Users are independent of each other, so their chains run in a bounded
thread pool; `parallel=1` reproduces the strictly sequential behaviour.
Within one user the steps are strictly ordered. A failure in one chain is
recorded for that user and never aborts the siblings.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Protocol

from kubernetes.client.rest import ApiException

from wsops.core.adapters.openshift import describe_api_error
from wsops.core.detect import DetectionGateway, detect
from wsops.core.identities import CredentialStore, IdentityResult, ensure_usernames
from wsops.core.models import (
    BatchMode,
    BatchReport,
    CleanupReport,
    CleanupResult,
    OutcomeStatus,
    ReadinessOutcome,
    Snapshot,
    StepResult,
    User,
    UserOutcome,
    UserStatus,
    WorkspacePhase,
)
from wsops.core.namespaces import NamespaceGateway, ensure_namespace
from wsops.core.settings import MAX_PARALLEL, Settings
from wsops.core.workspaces import WorkspaceGateway, await_ready, deploy_workspace

log = logging.getLogger(__name__)

EventCallback = Callable[[str, str], None]


class ClusterGateway(DetectionGateway, CredentialStore, NamespaceGateway, WorkspaceGateway, Protocol):
    """Everything a batch needs from the cluster."""

    def delete_namespace(self, name: str) -> bool:
        ...

    def delete_workspace(self, namespace: str, name: str) -> bool:
        ...


@dataclass(frozen=True)
class ProvisionRequest:
    """
    Parameters of a provision batch.

    Attributes:
        users: Target usernames, already resolved and validated.
        password: Password for created or updated identities.
        create_identities: False when reusing identities that already exist.
        incremental: Skip users whose workspace exists without touching them.
        dry_run: Detect and plan only; issue no mutating call.
        wait: Wait for new workspaces to reach Running.
        parallel: Number of user chains processed concurrently.
    """

    users: tuple[str, ...]
    password: str = ""
    create_identities: bool = True
    incremental: bool = False
    dry_run: bool = False
    wait: bool = True
    parallel: int = 1

    def __post_init__(self) -> None:
        if not self.users:
            raise ValueError("No users specified")
        if self.parallel < 1 or self.parallel > MAX_PARALLEL:
            raise ValueError(f"parallel must be between 1 and {MAX_PARALLEL}")
        if self.create_identities and not self.password:
            raise ValueError("Password must not be empty")


@dataclass(frozen=True)
class CleanupRequest:
    """
    Parameters of a cleanup batch.

    Credential entries are never removed by a cleanup: the htpasswd file
    is shared and may hold unrelated users.
    """

    users: tuple[str, ...]
    dry_run: bool = False
    workspace_only: bool = False

    def __post_init__(self) -> None:
        if not self.users:
            raise ValueError("No users specified")


@dataclass(frozen=True)
class ProvisionResult:
    """Full result of a provision batch."""

    report: BatchReport
    snapshot: Snapshot
    identities: IdentityResult | None = None

    @property
    def users(self) -> list[User]:
        """Participants of the batch with the lifecycle status they reached."""
        hashes = self.identities.hashes if self.identities is not None else {}
        users = []
        for o in self.report.outcomes:
            if o.status == OutcomeStatus.FAILED:
                status = UserStatus.PENDING
            elif o.readiness == ReadinessOutcome.RUNNING:
                status = UserStatus.READY
            else:
                status = UserStatus.PROVISIONED
            users.append(User(o.username, o.namespace, hashes.get(o.username), status))
        return users


def _notify(on_event: EventCallback | None, username: str, message: str) -> None:
    if on_event is not None:
        on_event(username, message)


def _describe(exc: Exception) -> str:
    if isinstance(exc, ApiException):
        return describe_api_error(exc)
    return str(exc) or exc.__class__.__name__


def provision_user(
    gateway: ClusterGateway,
    username: str,
    snapshot: Snapshot,
    settings: Settings,
    request: ProvisionRequest,
    *,
    sleep: Callable[[float], None] = time.sleep,
    on_event: EventCallback | None = None,
) -> UserOutcome:
    """Run the namespace -> policies -> workspace -> readiness chain for one user."""
    namespace = settings.namespace_for(username)
    actions: list[str] = []
    existing = snapshot.workspace_in(namespace)

    if request.incremental and existing is not None:
        return UserOutcome(
            username,
            namespace,
            OutcomeStatus.SKIPPED,
            actions=(f"workspace {existing.name} exists ({existing.phase.value}), incremental skip",),
        )

    step, resource = "namespace", namespace
    try:
        _notify(on_event, username, "namespace")
        ns_result = ensure_namespace(gateway, username, snapshot, settings, dry_run=request.dry_run)
        actions.append(f"namespace {namespace}: {ns_result.value}")
        if not request.dry_run:
            actions.append("quota and role bindings applied")

        step, resource = "workspace", settings.workspace_name_for(username)
        _notify(on_event, username, "workspace")
        handle = deploy_workspace(
            gateway,
            username,
            snapshot,
            settings,
            namespace_ready=ns_result == StepResult.CREATED,
            dry_run=request.dry_run,
        )
        actions.append(f"workspace {handle.name}: {'created' if handle.created else 'skipped'}")
        created = ns_result == StepResult.CREATED or handle.created

        if not handle.created and existing is not None and existing.phase == WorkspacePhase.FAILED:
            return UserOutcome(
                username,
                namespace,
                OutcomeStatus.FAILED,
                readiness=ReadinessOutcome.FAILED,
                actions=tuple(actions),
                error=f"[workspace] {handle.name}: existing workspace is Failed; remove it to recreate",
            )

        if request.dry_run or not handle.created or not request.wait:
            status = OutcomeStatus.CREATED if created else OutcomeStatus.SKIPPED
            return UserOutcome(username, namespace, status, actions=tuple(actions))

        step = "readiness"
        _notify(on_event, username, WorkspacePhase.STARTING.value)
        readiness = await_ready(
            gateway,
            handle,
            attempts=settings.poll_attempts,
            interval=settings.poll_interval,
            sleep=sleep,
            on_phase=lambda phase: _notify(on_event, username, phase.value),
        )
    except Exception as exc:  # keep the batch going; surface per-user errors
        log.error("Provisioning %s failed at %s %s: %s", username, step, resource, exc)
        return UserOutcome(
            username,
            namespace,
            OutcomeStatus.FAILED,
            actions=tuple(actions),
            error=f"[{step}] {resource}: {_describe(exc)}",
        )

    actions.append(f"readiness: {readiness.outcome.value} after {readiness.attempts} check(s)")
    if readiness.outcome == ReadinessOutcome.RUNNING:
        return UserOutcome(
            username, namespace, OutcomeStatus.CREATED, readiness=readiness.outcome, actions=tuple(actions)
        )

    error = f"[readiness] {handle.name}: {readiness.outcome.value} (last phase {readiness.phase.value})"
    if readiness.diagnostics:
        error = f"{error}\n{readiness.diagnostics}"
    return UserOutcome(
        username,
        namespace,
        OutcomeStatus.FAILED,
        readiness=readiness.outcome,
        actions=tuple(actions),
        error=error,
    )


def provision(
    gateway: ClusterGateway,
    request: ProvisionRequest,
    settings: Settings,
    *,
    sleep: Callable[[float], None] = time.sleep,
    on_event: EventCallback | None = None,
) -> ProvisionResult:
    """
    Provision every requested user.

    The identity step runs once for the whole batch before any user chain;
    if it fails, CredentialStoreError propagates and nothing else runs.

    Returns:
        ProvisionResult whose report has one outcome per requested user,
        in request order.
    """
    snapshot = detect(gateway, settings, users=request.users)

    identities: IdentityResult | None = None
    if request.create_identities:
        identities = ensure_usernames(
            gateway,
            request.users,
            request.password,
            namespace=settings.htpasswd_namespace,
            secret=settings.htpasswd_secret,
            dry_run=request.dry_run,
        )

    def _run(username: str) -> UserOutcome:
        outcome = provision_user(
            gateway, username, snapshot, settings, request, sleep=sleep, on_event=on_event
        )
        _notify(on_event, username, outcome.status.value)
        return outcome

    with ThreadPoolExecutor(max_workers=request.parallel) as pool:
        outcomes = list(pool.map(_run, request.users))

    mode = BatchMode.DRY_RUN if request.dry_run else BatchMode.PROVISION
    report = BatchReport(mode=mode, outcomes=tuple(outcomes))
    log.info(
        "Batch %s: created=%d skipped=%d failed=%d total=%d",
        mode.value,
        report.created_count,
        report.skipped_count,
        report.failed_count,
        report.total,
    )
    return ProvisionResult(report=report, snapshot=snapshot, identities=identities)


def cleanup(
    gateway: ClusterGateway,
    request: CleanupRequest,
    settings: Settings,
) -> CleanupReport:
    """
    Remove the namespaces (or only the workspaces) of the given users.

    Deleting a namespace removes the workspace inside it. Users whose
    namespace is absent are reported as not removed, without a delete call.
    """
    snapshot = detect(gateway, settings, users=request.users)
    results: list[CleanupResult] = []

    for username in request.users:
        namespace = settings.namespace_for(username)
        present = (
            snapshot.workspace_in(namespace) is not None
            if request.workspace_only
            else snapshot.has_namespace(namespace)
        )
        if request.dry_run or not present:
            results.append(CleanupResult(username, namespace, removed=present))
            continue
        try:
            if request.workspace_only:
                removed = gateway.delete_workspace(namespace, settings.workspace_name_for(username))
            else:
                removed = gateway.delete_namespace(namespace)
            results.append(CleanupResult(username, namespace, removed=removed))
        except Exception as exc:  # keep the batch going; surface per-user errors
            log.error("Removing %s failed: %s", namespace, exc)
            results.append(CleanupResult(username, namespace, removed=False, error=_describe(exc)))

    return CleanupReport(results=tuple(results), dry_run=request.dry_run, workspace_only=request.workspace_only)


def run(
    gateway: ClusterGateway,
    request: ProvisionRequest | CleanupRequest,
    settings: Settings,
    *,
    sleep: Callable[[float], None] = time.sleep,
    on_event: EventCallback | None = None,
) -> BatchReport | CleanupReport:
    """Dispatch a batch request to provision or cleanup."""
    if isinstance(request, ProvisionRequest):
        return provision(gateway, request, settings, sleep=sleep, on_event=on_event).report
    if isinstance(request, CleanupRequest):
        return cleanup(gateway, request, settings)
    raise TypeError(f"Unsupported batch request: {type(request).__name__}")
