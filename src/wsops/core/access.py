"""Per-user access summaries for workshop participants.

The console URL is discovered from the cluster unless it is fixed in the
settings. A participant's workspace URL opens the tutorial repository with
the workshop devfile in that console.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Protocol

from wsops.core.settings import Settings

log = logging.getLogger(__name__)

PLATFORM_NAMESPACE = "openshift-devspaces"
PLATFORM_NAME = "devspaces"

ONBOARDING_STEPS = (
    "Open the workspace URL and log in with your username and password.",
    "Wait for the workspace to start (2-3 minutes on first launch).",
    "Run the 'Check Environment' task to verify Java, Maven, PostgreSQL and Kafka.",
    "Start the application with the 'Start Quarkus Dev Mode' task.",
    "Follow the tutorial modules in the repository README.",
)


class AccessGateway(Protocol):
    def route_host(self, namespace: str, name: str) -> str | None:
        ...

    def get_che_cluster(self, namespace: str, name: str) -> dict[str, Any] | None:
        ...

    def cluster_domain(self) -> str | None:
        ...


@dataclass(frozen=True)
class AccessInfo:
    """What a participant needs to start working."""

    username: str
    namespace: str
    workspace_url: str


def resolve_console_url(gateway: AccessGateway, settings: Settings) -> str:
    """
    Return the base URL of the workspace console.

    Lookup order: configured URL, the platform route, the CheCluster's
    reported URL, then `https://devspaces.<cluster domain>`.

    Raises:
        ValueError: If none of the sources yields a URL.
    """
    if settings.console_url:
        return settings.console_url

    host = gateway.route_host(PLATFORM_NAMESPACE, PLATFORM_NAME)
    if host:
        return f"https://{host}"

    che = gateway.get_che_cluster(PLATFORM_NAMESPACE, PLATFORM_NAME) or {}
    che_url = (che.get("status") or {}).get("cheURL")
    if che_url:
        return str(che_url).rstrip("/")

    domain = gateway.cluster_domain()
    if domain:
        log.debug("Console route not found; deriving URL from cluster domain %s", domain)
        return f"https://{PLATFORM_NAME}.{domain}"

    raise ValueError("Could not determine the workspace console URL; set WSOPS_CONSOLE_URL.")


def workspace_url(console_url: str, settings: Settings) -> str:
    """Return the URL that opens the tutorial repository in the console."""
    return f"{console_url.rstrip('/')}/#{settings.repository_url}&devfilePath={settings.devfile_path}"


def build_access_summary(
    users: Iterable[str], console_url: str, settings: Settings
) -> list[AccessInfo]:
    url = workspace_url(console_url, settings)
    return [AccessInfo(u, settings.namespace_for(u), url) for u in users]
