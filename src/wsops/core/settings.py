"""Runtime configuration for workshop provisioning.

Every value has a default suitable for a local or lab cluster and can be
overridden through environment variables. Nothing here talks to the cluster.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from wsops.core.models import Quota

MAX_USERS = 100
MAX_PARALLEL = 20


def _env_str(name: str, default: str) -> str:
    """Return a non-empty environment value or the default."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def _env_int(name: str, default: int, *, minimum: int = 0) -> int:
    """Return an integer environment value, falling back on bad input."""
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return max(int(raw), minimum)
    except ValueError:
        return default


@dataclass(frozen=True)
class ProbeTargets:
    """Host/port pairs used by the auxiliary service health probes."""

    postgres_host: str = "localhost"
    postgres_port: int = 5432
    kafka_host: str = "localhost"
    kafka_port: int = 9092
    tool_host: str = "localhost"
    tool_port: int = 8080

    @property
    def tool_base_url(self) -> str:
        return f"http://{self.tool_host}:{self.tool_port}"


@dataclass(frozen=True)
class Settings:
    """
    Deployment-wide settings.

    Attributes:
        user_prefix: Prefix of generated usernames (`user` -> user1, user2...).
        namespace_suffix: Suffix appended to a username to form its namespace.
        app_name: Value of the app label and prefix of workspace and quota names.
        service_account: Per-namespace service account granted admin rights.
        htpasswd_secret: Name of the secret holding the shared htpasswd file.
        htpasswd_namespace: Namespace of the htpasswd secret.
        quota: Hard limits applied to every user namespace.
        poll_interval: Seconds between workspace readiness checks.
        poll_attempts: Maximum readiness checks before a wait times out.
        results_dir: Directory receiving validation report artifacts.
        console_url: Optional fixed workspace console URL (skips discovery).
        repository_url: Tutorial repository opened by each workspace.
        devfile_path: Workspace descriptor file inside the repository.
        probes: Targets for the optional service probes.
    """

    user_prefix: str = "user"
    namespace_suffix: str = "devspaces"
    app_name: str = "ddd-workshop"
    service_account: str = "workshop-sa"
    htpasswd_secret: str = "htpasswd"
    htpasswd_namespace: str = "openshift-config"
    quota: Quota = field(default_factory=Quota)
    poll_interval: int = 10
    poll_attempts: int = 30
    results_dir: Path = Path("test-results")
    console_url: str | None = None
    repository_url: str = "https://github.com/tosin2013/dddhexagonalworkshop.git"
    devfile_path: str = "devfile-complete.yaml"
    probes: ProbeTargets = field(default_factory=ProbeTargets)

    @property
    def username_pattern(self) -> str:
        """Regex recognising generated usernames for this deployment."""
        return rf"^{self.user_prefix}\d+$"

    def namespace_for(self, username: str) -> str:
        """Return the namespace owned by `username`."""
        return f"{username}-{self.namespace_suffix}"

    def workspace_name_for(self, username: str) -> str:
        """Return the name of `username`'s workspace."""
        return f"{self.app_name}-{username}"

    @property
    def quota_name(self) -> str:
        return f"{self.app_name}-quota"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from `WSOPS_*` and probe environment variables."""
        console_url = os.getenv("WSOPS_CONSOLE_URL")
        return cls(
            user_prefix=_env_str("WSOPS_USER_PREFIX", "user"),
            namespace_suffix=_env_str("WSOPS_NAMESPACE_SUFFIX", "devspaces"),
            app_name=_env_str("WSOPS_APP_NAME", "ddd-workshop"),
            service_account=_env_str("WSOPS_SERVICE_ACCOUNT", "workshop-sa"),
            htpasswd_secret=_env_str("WSOPS_HTPASSWD_SECRET", "htpasswd"),
            htpasswd_namespace=_env_str("WSOPS_HTPASSWD_NAMESPACE", "openshift-config"),
            quota=Quota(
                cpu_request=_env_str("WSOPS_QUOTA_CPU_REQUEST", "2"),
                memory_request=_env_str("WSOPS_QUOTA_MEMORY_REQUEST", "4Gi"),
                memory_limit=_env_str("WSOPS_QUOTA_MEMORY_LIMIT", "8Gi"),
                max_pods=_env_int("WSOPS_QUOTA_MAX_PODS", 10, minimum=1),
                max_pvcs=_env_int("WSOPS_QUOTA_MAX_PVCS", 5),
                max_services=_env_int("WSOPS_QUOTA_MAX_SERVICES", 5),
                max_configmaps=_env_int("WSOPS_QUOTA_MAX_CONFIGMAPS", 10),
                max_secrets=_env_int("WSOPS_QUOTA_MAX_SECRETS", 10),
            ),
            poll_interval=_env_int("WSOPS_POLL_INTERVAL", 10, minimum=1),
            poll_attempts=_env_int("WSOPS_POLL_ATTEMPTS", 30, minimum=1),
            results_dir=Path(_env_str("WSOPS_RESULTS_DIR", "test-results")),
            console_url=console_url.rstrip("/") if console_url else None,
            repository_url=_env_str(
                "WSOPS_REPOSITORY_URL",
                "https://github.com/tosin2013/dddhexagonalworkshop.git",
            ),
            devfile_path=_env_str("WSOPS_DEVFILE_PATH", "devfile-complete.yaml"),
            probes=ProbeTargets(
                postgres_host=_env_str("POSTGRES_HOST", "localhost"),
                postgres_port=_env_int("POSTGRES_PORT", 5432, minimum=1),
                kafka_host=_env_str("KAFKA_HOST", "localhost"),
                kafka_port=_env_int("KAFKA_PORT", 9092, minimum=1),
                tool_host=_env_str("QUARKUS_HOST", "localhost"),
                tool_port=_env_int("QUARKUS_PORT", 8080, minimum=1),
            ),
        )
