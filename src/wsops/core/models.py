"""Core domain models for workshop provisioning.

These models describe users, namespaces, quotas and workspaces in a simple,
immutable form. They are free of Kubernetes client types and CLI concerns;
adapters translate between them and the cluster's resource documents.
Values are validated at construction time, so a model that exists is a
model that can be applied.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping

_QUANTITY_RE = re.compile(r"^\d+(\.\d+)?(m|k|M|G|T|Ki|Mi|Gi|Ti)?$")
_DNS_LABEL_RE = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")


def _check_quantity(value: str, what: str) -> None:
    if not _QUANTITY_RE.match(value):
        raise ValueError(f"Invalid resource quantity for {what}: '{value}'")


def check_dns_label(value: str, what: str) -> None:
    """Raise ValueError unless `value` is usable as a Kubernetes object name."""
    if len(value) > 63 or not _DNS_LABEL_RE.match(value):
        raise ValueError(
            f"Invalid {what} '{value}': use lowercase letters, digits and '-' "
            "(max 63 characters)"
        )


class UserStatus(str, Enum):
    """Lifecycle of a workshop participant."""

    PENDING = "Pending"
    PROVISIONED = "Provisioned"
    READY = "Ready"
    REMOVED = "Removed"


@dataclass
class User:
    """
    A workshop participant.

    Attributes:
        username: Login name in the shared credential store.
        namespace: Namespace exclusively owned by this user.
        credential_hash: htpasswd hash of the user's password, once known.
        status: Current provisioning status.
    """

    username: str
    namespace: str
    credential_hash: str | None = None
    status: UserStatus = UserStatus.PENDING


@dataclass(frozen=True)
class Quota:
    """Hard resource limits attached to one user namespace."""

    cpu_request: str = "2"
    memory_request: str = "4Gi"
    memory_limit: str = "8Gi"
    max_pods: int = 10
    max_pvcs: int = 5
    max_services: int = 5
    max_configmaps: int = 10
    max_secrets: int = 10

    def __post_init__(self) -> None:
        _check_quantity(self.cpu_request, "requests.cpu")
        _check_quantity(self.memory_request, "requests.memory")
        _check_quantity(self.memory_limit, "limits.memory")
        if self.max_pods < 1:
            raise ValueError("Quota max_pods must be >= 1")
        if min(self.max_pvcs, self.max_services, self.max_configmaps, self.max_secrets) < 0:
            raise ValueError("Quota object counts must be >= 0")

    def hard(self) -> dict[str, str]:
        """Return the `spec.hard` mapping of a ResourceQuota."""
        return {
            "requests.cpu": self.cpu_request,
            "requests.memory": self.memory_request,
            "limits.memory": self.memory_limit,
            "pods": str(self.max_pods),
            "persistentvolumeclaims": str(self.max_pvcs),
            "services": str(self.max_services),
            "configmaps": str(self.max_configmaps),
            "secrets": str(self.max_secrets),
        }


@dataclass(frozen=True)
class NamespaceSpec:
    """Desired state of a user namespace."""

    name: str
    owner: str
    labels: Mapping[str, str]
    quota: Quota

    def __post_init__(self) -> None:
        check_dns_label(self.name, "namespace name")


@dataclass(frozen=True)
class RoleBindingSpec:
    """
    Grant of a cluster role to one subject, scoped to one namespace.

    Attributes:
        name: RoleBinding object name.
        namespace: Namespace the grant is limited to.
        subject_kind: `User` or `ServiceAccount`.
        subject_name: User name or service account name.
        role: ClusterRole referenced by the binding.
    """

    name: str
    namespace: str
    subject_kind: str
    subject_name: str
    role: str = "admin"

    def __post_init__(self) -> None:
        if self.subject_kind not in {"User", "ServiceAccount"}:
            raise ValueError(f"Unsupported subject kind: {self.subject_kind}")


class Exposure(str, Enum):
    PUBLIC = "public"
    NONE = "none"


@dataclass(frozen=True)
class Endpoint:
    """A port a container listens on."""

    name: str
    port: int
    exposure: Exposure = Exposure.NONE
    protocol: str = "tcp"

    def __post_init__(self) -> None:
        if not 0 < self.port < 65536:
            raise ValueError(f"Invalid port for endpoint {self.name}: {self.port}")


@dataclass(frozen=True)
class ContainerSpec:
    """One container of a workspace (primary tool container or sidecar)."""

    name: str
    image: str
    memory_request: str
    memory_limit: str
    cpu_request: str
    cpu_limit: str
    endpoints: tuple[Endpoint, ...] = ()
    env: tuple[tuple[str, str], ...] = ()
    volume_mounts: tuple[tuple[str, str], ...] = ()
    command: tuple[str, ...] = ()
    args: tuple[str, ...] = ()
    source_mapping: str | None = None

    def __post_init__(self) -> None:
        check_dns_label(self.name, "component name")
        if not self.image:
            raise ValueError(f"Component {self.name} has no image")
        _check_quantity(self.memory_request, f"{self.name} memoryRequest")
        _check_quantity(self.memory_limit, f"{self.name} memoryLimit")
        _check_quantity(self.cpu_request, f"{self.name} cpuRequest")
        _check_quantity(self.cpu_limit, f"{self.name} cpuLimit")

    @property
    def public_endpoints(self) -> list[Endpoint]:
        return [e for e in self.endpoints if e.exposure == Exposure.PUBLIC]


class CommandGroup(str, Enum):
    BUILD = "build"
    RUN = "run"
    TEST = "test"


@dataclass(frozen=True)
class CommandSpec:
    """A startup/developer command bound to a workspace component."""

    id: str
    label: str
    component: str
    command_line: str
    group: CommandGroup
    is_default: bool = False


@dataclass(frozen=True)
class WorkspaceSpec:
    """
    Desired state of a per-user workspace.

    The primary container is the only one allowed to expose an endpoint
    publicly; sidecars stay reachable on localhost inside the workspace.
    All volumes are ephemeral.
    """

    name: str
    namespace: str
    owner: str
    project_name: str
    repository: str
    revision: str
    primary: ContainerSpec
    sidecars: tuple[ContainerSpec, ...] = ()
    volumes: tuple[str, ...] = ()
    commands: tuple[CommandSpec, ...] = ()

    def __post_init__(self) -> None:
        check_dns_label(self.name, "workspace name")
        if len(self.primary.public_endpoints) != 1:
            raise ValueError("The primary container must expose exactly one public endpoint")
        names = [self.primary.name] + [s.name for s in self.sidecars]
        if len(set(names)) != len(names):
            raise ValueError("Workspace component names must be unique")
        for sidecar in self.sidecars:
            if sidecar.public_endpoints:
                raise ValueError(f"Sidecar {sidecar.name} must not expose a public endpoint")
        mounted = {vol for c in [self.primary, *self.sidecars] for vol, _ in c.volume_mounts}
        missing = mounted - set(self.volumes)
        if missing:
            raise ValueError(f"Volume(s) mounted but not declared: {', '.join(sorted(missing))}")
        for cmd in self.commands:
            if cmd.component not in names:
                raise ValueError(f"Command {cmd.id} targets unknown component {cmd.component}")

    @property
    def components(self) -> tuple[ContainerSpec, ...]:
        return (self.primary, *self.sidecars)


class WorkspacePhase(str, Enum):
    """Phase reported by the workspace controller."""

    STOPPED = "Stopped"
    STARTING = "Starting"
    RUNNING = "Running"
    FAILED = "Failed"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, raw: str | None) -> "WorkspacePhase":
        """Map a raw `status.phase` value; empty or unexpected values are UNKNOWN."""
        if not raw:
            return cls.UNKNOWN
        for phase in cls:
            if phase.value.lower() == raw.lower():
                return phase
        return cls.UNKNOWN


class ReadinessOutcome(str, Enum):
    """Terminal result of waiting for a workspace."""

    RUNNING = "Running"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"


@dataclass(frozen=True)
class WorkspaceRef:
    """An existing workspace as observed on the cluster."""

    name: str
    namespace: str
    phase: WorkspacePhase = WorkspacePhase.UNKNOWN


@dataclass(frozen=True)
class Snapshot:
    """
    Observed cluster state for one invocation.

    Built once by the state detector and passed explicitly to every step
    that must decide between create and skip. Never cached across runs.

    Attributes:
        identities: Every username in the credential store.
        pattern_users: Usernames matching the deployment's naming pattern.
        namespaces: Existing user namespaces, for the matched users.
        workspaces: Existing workspaces keyed by namespace.
    """

    identities: tuple[str, ...] = ()
    pattern_users: tuple[str, ...] = ()
    namespaces: frozenset[str] = frozenset()
    workspaces: Mapping[str, WorkspaceRef] = field(default_factory=dict)

    def has_identity(self, username: str) -> bool:
        return username in self.identities

    def has_namespace(self, namespace: str) -> bool:
        return namespace in self.namespaces

    def workspace_in(self, namespace: str) -> WorkspaceRef | None:
        return self.workspaces.get(namespace)


class StepResult(str, Enum):
    CREATED = "created"
    SKIPPED = "skipped"


class OutcomeStatus(str, Enum):
    CREATED = "created"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class UserOutcome:
    """
    Result of processing one user in a batch.

    Attributes:
        username: The user processed.
        namespace: The user's namespace.
        status: Aggregated outcome used for batch accounting.
        readiness: Readiness result when a workspace wait was performed.
        actions: Human-readable list of what was (or would be) done.
        error: Categorized failure message, if any.
    """

    username: str
    namespace: str
    status: OutcomeStatus
    readiness: ReadinessOutcome | None = None
    actions: tuple[str, ...] = ()
    error: str | None = None


class BatchMode(str, Enum):
    PROVISION = "provision"
    CLEANUP = "cleanup"
    DRY_RUN = "dry-run"


@dataclass(frozen=True)
class BatchReport:
    """
    Aggregated outcome of one batch invocation.

    Counts are derived from the per-user outcomes, so
    `created_count + skipped_count + failed_count == total` always holds.
    """

    mode: BatchMode
    outcomes: tuple[UserOutcome, ...] = ()

    def _count(self, status: OutcomeStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def created_count(self) -> int:
        return self._count(OutcomeStatus.CREATED)

    @property
    def skipped_count(self) -> int:
        return self._count(OutcomeStatus.SKIPPED)

    @property
    def failed_count(self) -> int:
        return self._count(OutcomeStatus.FAILED)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def ok(self) -> bool:
        return self.failed_count == 0


@dataclass(frozen=True)
class CleanupResult:
    """Result of removing one user's namespace."""

    username: str
    namespace: str
    removed: bool
    error: str | None = None


@dataclass(frozen=True)
class CleanupReport:
    """Aggregated outcome of a cleanup batch."""

    results: tuple[CleanupResult, ...] = ()
    dry_run: bool = False
    workspace_only: bool = False

    @property
    def mode(self) -> BatchMode:
        return BatchMode.DRY_RUN if self.dry_run else BatchMode.CLEANUP

    @property
    def users(self) -> list[User]:
        """
        Users after the cleanup. REMOVED once their namespace is gone, whether
        deleted now or already absent; workspace-only cleanups keep them
        PROVISIONED.
        """
        users = []
        for r in self.results:
            gone = r.error is None and not self.workspace_only and not (self.dry_run and r.removed)
            status = UserStatus.REMOVED if gone else UserStatus.PROVISIONED
            users.append(User(r.username, r.namespace, status=status))
        return users

    @property
    def removed_count(self) -> int:
        return sum(1 for r in self.results if r.removed and r.error is None)

    @property
    def absent_count(self) -> int:
        return sum(1 for r in self.results if not r.removed and r.error is None)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if r.error is not None)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def ok(self) -> bool:
        return self.failed_count == 0


class CheckStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    SKIP = "SKIP"


@dataclass(frozen=True)
class CheckResult:
    """
    Outcome of one validation check.

    Attributes:
        category: Group the check belongs to (environment, user, isolation...).
        name: Human-readable check name, including the subject it checked.
        status: PASS, FAIL or SKIP.
        details: Why it failed or was skipped, or what was observed.
    """

    category: str
    name: str
    status: CheckStatus
    details: str = ""
