"""Per-user workspace deployment and readiness polling.

A workspace is a DevWorkspace descriptor: one primary tool container with a
single public HTTP endpoint plus sidecar service containers (database and
message broker) reachable only inside the workspace. All volumes are
ephemeral.

Readiness is polled at a fixed interval for a bounded number of attempts.
The sleep function is injectable so callers (and tests) control time.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Protocol

from wsops.core.adapters.openshift import DEVWORKSPACE_GROUP, DEVWORKSPACE_VERSION
from wsops.core.models import (
    CommandGroup,
    CommandSpec,
    ContainerSpec,
    Endpoint,
    Exposure,
    ReadinessOutcome,
    Snapshot,
    WorkspacePhase,
    WorkspaceRef,
    WorkspaceSpec,
)
from wsops.core.namespaces import APP_LABEL, COMPONENT_LABEL, MANAGED_BY, MANAGED_BY_LABEL, USER_LABEL
from wsops.core.settings import Settings

log = logging.getLogger(__name__)

PROJECT_NAME = "ddd-workshop"
PROJECT_REVISION = "main"
PROJECT_DIR = f"/projects/{PROJECT_NAME}"

TOOLS_IMAGE = "registry.access.redhat.com/ubi9/openjdk-21:1.20"
POSTGRES_IMAGE = "registry.redhat.io/rhel9/postgresql-16:latest"
KAFKA_IMAGE = "bitnami/kafka:3.6"


class WorkspaceError(RuntimeError):
    """Raised when a workspace cannot be deployed for a user."""


class WorkspaceGateway(Protocol):
    """Cluster operations the orchestrator needs."""

    def create_workspace(self, namespace: str, manifest: Mapping[str, Any]) -> None:
        ...

    def get_workspace(self, namespace: str, name: str) -> WorkspaceRef | None:
        ...

    def get_workspace_document(self, namespace: str, name: str) -> dict[str, Any] | None:
        ...


def tools_container() -> ContainerSpec:
    return ContainerSpec(
        name="tools",
        image=TOOLS_IMAGE,
        memory_request="384Mi",
        memory_limit="768Mi",
        cpu_request="100m",
        cpu_limit="500m",
        endpoints=(Endpoint("http-8080", 8080, Exposure.PUBLIC, "http"),),
        env=(
            ("MAVEN_OPTS", "-Xmx384m"),
            ("QUARKUS_HTTP_HOST", "0.0.0.0"),
            ("JAVA_HOME", "/usr/lib/jvm/java-21-openjdk"),
        ),
        volume_mounts=(("m2", "/home/jboss/.m2"),),
        command=("/bin/bash",),
        args=("-c", "while true; do sleep 30; done"),
        source_mapping="/projects",
    )


def postgresql_container() -> ContainerSpec:
    return ContainerSpec(
        name="postgresql",
        image=POSTGRES_IMAGE,
        memory_request="192Mi",
        memory_limit="384Mi",
        cpu_request="100m",
        cpu_limit="200m",
        endpoints=(Endpoint("postgresql", 5432),),
        env=(
            ("POSTGRESQL_USER", "quarkus"),
            ("POSTGRESQL_PASSWORD", "quarkus"),
            ("POSTGRESQL_DATABASE", "quarkus"),
            ("POSTGRESQL_ADMIN_PASSWORD", "quarkus"),
        ),
        volume_mounts=(("postgresql-data", "/var/lib/pgsql/data"),),
    )


def kafka_container() -> ContainerSpec:
    return ContainerSpec(
        name="kafka",
        image=KAFKA_IMAGE,
        memory_request="384Mi",
        memory_limit="768Mi",
        cpu_request="150m",
        cpu_limit="300m",
        endpoints=(Endpoint("kafka", 9092),),
        env=(
            ("KAFKA_CFG_NODE_ID", "1"),
            ("KAFKA_CFG_PROCESS_ROLES", "controller,broker"),
            ("KAFKA_CFG_CONTROLLER_QUORUM_VOTERS", "1@localhost:9093"),
            ("KAFKA_CFG_LISTENERS", "PLAINTEXT://:9092,CONTROLLER://:9093"),
            ("KAFKA_CFG_ADVERTISED_LISTENERS", "PLAINTEXT://localhost:9092"),
            ("KAFKA_CFG_CONTROLLER_LISTENER_NAMES", "CONTROLLER"),
            ("KAFKA_CFG_LISTENER_SECURITY_PROTOCOL_MAP", "CONTROLLER:PLAINTEXT,PLAINTEXT:PLAINTEXT"),
            ("KAFKA_CFG_AUTO_CREATE_TOPICS_ENABLE", "true"),
            ("KAFKA_CFG_OFFSETS_TOPIC_REPLICATION_FACTOR", "1"),
            ("KAFKA_CFG_TRANSACTION_STATE_LOG_REPLICATION_FACTOR", "1"),
            ("KAFKA_CFG_TRANSACTION_STATE_LOG_MIN_ISR", "1"),
            ("KAFKA_HEAP_OPTS", "-Xmx192m -Xms192m"),
        ),
        volume_mounts=(("kafka-data", "/bitnami/kafka"),),
    )


def workshop_commands() -> tuple[CommandSpec, ...]:
    check_env = "\n".join(
        [
            'echo "=== Environment Check ==="',
            "java -version",
            'mvn -version || echo "Maven not found"',
            "timeout 3 bash -c '</dev/tcp/localhost/5432' && echo \"PostgreSQL OK\"",
            "timeout 3 bash -c '</dev/tcp/localhost/9092' && echo \"Kafka OK\"",
        ]
    )
    return (
        CommandSpec("check-env", "Check Environment", "tools", check_env, CommandGroup.RUN, True),
        CommandSpec("dev-run", "Start Quarkus Dev Mode", "tools", f"cd {PROJECT_DIR} && mvn quarkus:dev", CommandGroup.RUN),
        CommandSpec("compile", "Compile Project", "tools", f"cd {PROJECT_DIR} && mvn compile", CommandGroup.BUILD),
        CommandSpec("test", "Run Tests", "tools", f"cd {PROJECT_DIR} && mvn test", CommandGroup.TEST),
    )


def build_workspace_spec(username: str, settings: Settings) -> WorkspaceSpec:
    """Return the workspace every participant gets."""
    return WorkspaceSpec(
        name=settings.workspace_name_for(username),
        namespace=settings.namespace_for(username),
        owner=username,
        project_name=PROJECT_NAME,
        repository=settings.repository_url,
        revision=PROJECT_REVISION,
        primary=tools_container(),
        sidecars=(postgresql_container(), kafka_container()),
        volumes=("m2", "postgresql-data", "kafka-data"),
        commands=workshop_commands(),
    )


def _container_document(spec: ContainerSpec) -> dict[str, Any]:
    doc: dict[str, Any] = {
        "image": spec.image,
        "memoryLimit": spec.memory_limit,
        "memoryRequest": spec.memory_request,
        "cpuLimit": spec.cpu_limit,
        "cpuRequest": spec.cpu_request,
    }
    if spec.command:
        doc["command"] = list(spec.command)
    if spec.args:
        doc["args"] = list(spec.args)
    if spec.env:
        doc["env"] = [{"name": k, "value": v} for k, v in spec.env]
    if spec.endpoints:
        doc["endpoints"] = [
            {
                "name": e.name,
                "targetPort": e.port,
                "exposure": e.exposure.value,
                **({"protocol": e.protocol} if e.exposure == Exposure.PUBLIC else {}),
            }
            for e in spec.endpoints
        ]
    if spec.volume_mounts:
        doc["volumeMounts"] = [{"name": n, "path": p} for n, p in spec.volume_mounts]
    if spec.source_mapping:
        doc["sourceMapping"] = spec.source_mapping
    return doc


def render_manifest(spec: WorkspaceSpec, settings: Settings) -> dict[str, Any]:
    """Render a WorkspaceSpec as a DevWorkspace document."""
    components: list[dict[str, Any]] = [
        {"name": c.name, "container": _container_document(c)} for c in spec.components
    ]
    components += [{"name": v, "volume": {"ephemeral": True}} for v in spec.volumes]
    commands = [
        {
            "id": cmd.id,
            "exec": {
                "label": cmd.label,
                "component": cmd.component,
                "commandLine": cmd.command_line,
                "group": {
                    "kind": cmd.group.value,
                    **({"isDefault": True} if cmd.is_default else {}),
                },
            },
        }
        for cmd in spec.commands
    ]
    return {
        "apiVersion": f"{DEVWORKSPACE_GROUP}/{DEVWORKSPACE_VERSION}",
        "kind": "DevWorkspace",
        "metadata": {
            "name": spec.name,
            "namespace": spec.namespace,
            "labels": {
                APP_LABEL: settings.app_name,
                COMPONENT_LABEL: "devworkspace",
                MANAGED_BY_LABEL: MANAGED_BY,
                USER_LABEL: spec.owner,
            },
        },
        "spec": {
            "started": True,
            "routingClass": "che",
            "template": {
                "projects": [
                    {
                        "name": spec.project_name,
                        "git": {
                            "remotes": {"origin": spec.repository},
                            "checkoutFrom": {"revision": spec.revision},
                        },
                    }
                ],
                "components": components,
                "commands": commands,
            },
        },
    }


@dataclass(frozen=True)
class WorkspaceHandle:
    """A workspace the orchestrator deployed or found."""

    name: str
    namespace: str
    created: bool


def deploy_workspace(
    gateway: WorkspaceGateway,
    username: str,
    snapshot: Snapshot,
    settings: Settings,
    *,
    namespace_ready: bool = False,
    dry_run: bool = False,
) -> WorkspaceHandle:
    """
    Create the user's workspace unless one already exists.

    Args:
        namespace_ready: True when the namespace was created earlier in the
            same chain and is therefore absent from the snapshot.

    Raises:
        WorkspaceError: If the owning namespace does not exist.
    """
    spec = build_workspace_spec(username, settings)
    if not (namespace_ready or snapshot.has_namespace(spec.namespace)):
        raise WorkspaceError(f"Namespace {spec.namespace} does not exist; refusing to deploy {spec.name}")

    existing = snapshot.workspace_in(spec.namespace)
    if existing is not None and existing.name == spec.name:
        log.info("Workspace %s already exists (%s), skipping", spec.name, existing.phase.value)
        return WorkspaceHandle(spec.name, spec.namespace, created=False)

    if not dry_run:
        log.info("Creating workspace %s in %s", spec.name, spec.namespace)
        gateway.create_workspace(spec.namespace, render_manifest(spec, settings))
    return WorkspaceHandle(spec.name, spec.namespace, created=True)


@dataclass(frozen=True)
class Readiness:
    """
    Result of a readiness wait.

    Attributes:
        outcome: RUNNING, FAILED or TIMED_OUT.
        phase: Last phase observed.
        attempts: Number of status reads performed.
        diagnostics: Status dump captured on failure.
    """

    outcome: ReadinessOutcome
    phase: WorkspacePhase
    attempts: int
    diagnostics: str | None = None


def _diagnostics(gateway: WorkspaceGateway, handle: WorkspaceHandle) -> str | None:
    try:
        doc = gateway.get_workspace_document(handle.namespace, handle.name)
    except Exception as exc:  # noqa: BLE001
        return f"could not read workspace status: {exc}"
    if doc is None:
        return None
    return json.dumps(doc.get("status") or {}, indent=2, sort_keys=True)


def await_ready(
    gateway: WorkspaceGateway,
    handle: WorkspaceHandle,
    *,
    attempts: int,
    interval: float,
    sleep: Callable[[float], None] = time.sleep,
    on_phase: Callable[[WorkspacePhase], None] | None = None,
) -> Readiness:
    """
    Poll a workspace until it is Running, Failed, or attempts run out.

    Transitions: Starting -> Running is success; Starting -> Failed aborts
    with a diagnostic dump; exhausting the attempts yields TIMED_OUT. A
    failed workspace is never restarted here.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    phase = WorkspacePhase.UNKNOWN
    for attempt in range(1, attempts + 1):
        ref = gateway.get_workspace(handle.namespace, handle.name)
        phase = ref.phase if ref is not None else WorkspacePhase.UNKNOWN
        if on_phase is not None:
            on_phase(phase)
        log.debug("Workspace %s/%s phase=%s (attempt %d/%d)", handle.namespace, handle.name, phase.value, attempt, attempts)

        if phase == WorkspacePhase.RUNNING:
            return Readiness(ReadinessOutcome.RUNNING, phase, attempt)
        if phase == WorkspacePhase.FAILED:
            log.error("Workspace %s/%s failed", handle.namespace, handle.name)
            return Readiness(ReadinessOutcome.FAILED, phase, attempt, _diagnostics(gateway, handle))
        if attempt < attempts:
            sleep(interval)

    log.error("Timed out waiting for workspace %s/%s", handle.namespace, handle.name)
    return Readiness(ReadinessOutcome.TIMED_OUT, phase, attempts)
