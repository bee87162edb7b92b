"""Reachability probes for the services inside a workspace.

Run from inside a workspace (or through a port-forward): the database and
the message broker are checked for an open TCP port, the tool container
additionally for a healthy `/q/health` answer.
"""

from __future__ import annotations

import logging
import socket

import httpx

from wsops.core.models import CheckResult, CheckStatus
from wsops.core.settings import ProbeTargets

log = logging.getLogger(__name__)

CATEGORY = "services"
HEALTH_PATH = "/q/health"


def tcp_open(host: str, port: int, *, timeout: float = 3.0) -> bool:
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError as exc:
        log.debug("TCP %s:%d unreachable: %s", host, port, exc)
        return False


def probe_tcp(name: str, host: str, port: int, *, timeout: float = 3.0) -> CheckResult:
    if tcp_open(host, port, timeout=timeout):
        return CheckResult(CATEGORY, f"{name} port", CheckStatus.PASS, f"{host}:{port} reachable")
    return CheckResult(CATEGORY, f"{name} port", CheckStatus.FAIL, f"{host}:{port} not reachable")


def probe_http_health(
    base_url: str, *, timeout: float = 5.0, client: httpx.Client | None = None
) -> CheckResult:
    """GET `<base_url>/q/health` and pass on HTTP 200."""
    name = "application health endpoint"
    url = f"{base_url.rstrip('/')}{HEALTH_PATH}"
    try:
        if client is None:
            with httpx.Client(timeout=timeout) as own:
                response = own.get(url)
        else:
            response = client.get(url)
    except httpx.TransportError as exc:
        return CheckResult(CATEGORY, name, CheckStatus.FAIL, f"{url}: {exc}")

    if response.status_code == 200:
        return CheckResult(CATEGORY, name, CheckStatus.PASS, f"{url} -> 200")
    return CheckResult(CATEGORY, name, CheckStatus.FAIL, f"{url} -> {response.status_code}")


def probe_services(
    targets: ProbeTargets, *, client: httpx.Client | None = None
) -> list[CheckResult]:
    """Probe the database, the message broker and the tool container."""
    results = [
        probe_tcp("PostgreSQL", targets.postgres_host, targets.postgres_port),
        probe_tcp("Kafka", targets.kafka_host, targets.kafka_port),
    ]
    app = probe_tcp("Application", targets.tool_host, targets.tool_port)
    results.append(app)
    if app.status == CheckStatus.PASS:
        results.append(probe_http_health(targets.tool_base_url, client=client))
    else:
        results.append(
            CheckResult(CATEGORY, "application health endpoint", CheckStatus.SKIP, "application port closed")
        )
    return results
