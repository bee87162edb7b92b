from __future__ import annotations

import copy
import sys
from pathlib import Path
from typing import Any, Mapping

import pytest

# Ensure tests always import the local src tree, not an older installed wheel.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

from kubernetes.client.rest import ApiException  # noqa: E402

from wsops.core.models import RoleBindingSpec, WorkspacePhase, WorkspaceRef  # noqa: E402
from wsops.core.settings import Settings  # noqa: E402


def api_error(status: int, reason: str = "", message: str = "") -> ApiException:
    exc = ApiException(status=status, reason=reason or {403: "Forbidden", 404: "Not Found", 409: "Conflict"}.get(status, "Error"))
    if message:
        exc.body = '{"message": "%s"}' % message
    return exc


class FakeCluster:
    """
    In-memory stand-in for OpenShiftGateway.

    Workspaces report phases from `phase_script[name]` one read at a time
    (the last phase repeats); without a script they are Running at once.
    `failures[(method, key)]` makes a call raise the given exception.
    """

    server = "https://api.fake.example:6443"

    def __init__(self) -> None:
        self.htpasswd: str | None = None
        self.namespaces: dict[str, dict[str, str]] = {}
        self.quotas: dict[tuple[str, str], dict[str, str]] = {}
        self.service_accounts: set[tuple[str, str]] = set()
        self.role_bindings: dict[tuple[str, str], RoleBindingSpec] = {}
        self.workspaces: dict[tuple[str, str], dict[str, Any]] = {}
        self.phase_script: dict[str, list[str]] = {}
        self.failures: dict[tuple[str, str], Exception] = {}
        self.calls: list[tuple[str, str]] = []
        self.user = "admin"
        self.admin = True
        self.csvs: dict[str, str] = {}
        self.che: dict[str, Any] | None = None
        self.routes: dict[tuple[str, str], str] = {}
        self.domain: str | None = "apps.fake.example"

    def _call(self, method: str, key: str, *, mutating: bool = False) -> None:
        if mutating:
            self.calls.append((method, key))
        exc = self.failures.get((method, key))
        if exc is not None:
            raise exc

    # session
    def whoami(self) -> str:
        self._call("whoami", "")
        return self.user

    def server_version(self) -> str:
        self._call("server_version", "")
        return "v1.29.0"

    def can_i(self, verb: str, resource: str, *, namespace: str | None = None) -> bool:
        return self.admin

    def can_user(self, user: str, verb: str, resource: str, *, namespace: str) -> bool:
        self._call("can_user", f"{user}:{namespace}")
        return any(
            b.subject_kind == "User" and b.subject_name == user and ns == namespace
            for (ns, _), b in self.role_bindings.items()
        )

    # credential store
    def read_htpasswd(self, namespace: str, secret: str) -> str | None:
        self._call("read_htpasswd", secret)
        return self.htpasswd

    def replace_htpasswd(self, namespace: str, secret: str, content: str) -> None:
        self._call("replace_htpasswd", secret, mutating=True)
        self.htpasswd = content

    # namespaces
    def list_namespaces(self, label_selector: str | None = None) -> dict[str, dict[str, str]]:
        self._call("list_namespaces", "")
        if not label_selector:
            return copy.deepcopy(self.namespaces)
        key, value = label_selector.split("=", 1)
        return {n: dict(l) for n, l in self.namespaces.items() if l.get(key) == value}

    def namespace_exists(self, name: str) -> bool:
        return name in self.namespaces

    def create_namespace(self, name: str, labels: Mapping[str, str]) -> None:
        self._call("create_namespace", name, mutating=True)
        if name in self.namespaces:
            raise api_error(409)
        self.namespaces[name] = dict(labels)

    def delete_namespace(self, name: str) -> bool:
        self._call("delete_namespace", name, mutating=True)
        if name not in self.namespaces:
            return False
        del self.namespaces[name]
        for store in (self.quotas, self.role_bindings, self.workspaces):
            for key in [k for k in store if k[0] == name]:
                del store[key]
        self.service_accounts = {k for k in self.service_accounts if k[0] != name}
        return True

    def _require_namespace(self, namespace: str) -> None:
        if namespace not in self.namespaces:
            raise api_error(404, message=f'namespaces "{namespace}" not found')

    def apply_resource_quota(self, namespace, name, hard, labels) -> None:
        self._call("apply_resource_quota", namespace, mutating=True)
        self._require_namespace(namespace)
        self.quotas[(namespace, name)] = dict(hard)

    def resource_quota_exists(self, namespace: str, name: str) -> bool:
        return (namespace, name) in self.quotas

    def apply_service_account(self, namespace: str, name: str) -> None:
        self._call("apply_service_account", namespace, mutating=True)
        self._require_namespace(namespace)
        self.service_accounts.add((namespace, name))

    def apply_role_binding(self, spec: RoleBindingSpec) -> None:
        self._call("apply_role_binding", f"{spec.namespace}/{spec.name}", mutating=True)
        self._require_namespace(spec.namespace)
        self.role_bindings[(spec.namespace, spec.name)] = spec

    def role_binding_exists(self, namespace: str, name: str) -> bool:
        return (namespace, name) in self.role_bindings

    # workspaces
    def create_workspace(self, namespace: str, manifest: Mapping[str, Any]) -> None:
        name = manifest["metadata"]["name"]
        self._call("create_workspace", name, mutating=True)
        self._require_namespace(namespace)
        if (namespace, name) in self.workspaces:
            raise api_error(409)
        self.workspaces[(namespace, name)] = {**copy.deepcopy(dict(manifest)), "status": {"phase": "Starting"}}

    def _next_phase(self, name: str) -> str:
        script = self.phase_script.get(name)
        if not script:
            return "Running"
        return script.pop(0) if len(script) > 1 else script[0]

    def get_workspace_document(self, namespace: str, name: str) -> dict[str, Any] | None:
        self._call("get_workspace", name)
        doc = self.workspaces.get((namespace, name))
        if doc is None:
            return None
        return copy.deepcopy(doc)

    def get_workspace(self, namespace: str, name: str) -> WorkspaceRef | None:
        self._call("get_workspace", name)
        doc = self.workspaces.get((namespace, name))
        if doc is None:
            return None
        doc["status"]["phase"] = self._next_phase(name)
        return WorkspaceRef(name, namespace, WorkspacePhase.parse(doc["status"]["phase"]))

    def add_workspace(self, namespace: str, name: str, phase: str = "Running") -> None:
        """Seed an existing workspace, as if created by an earlier run."""
        self.workspaces[(namespace, name)] = {"metadata": {"name": name}, "status": {"phase": phase}}
        self.phase_script[name] = [phase]

    def delete_workspace(self, namespace: str, name: str) -> bool:
        self._call("delete_workspace", name, mutating=True)
        return self.workspaces.pop((namespace, name), None) is not None

    # platform
    def cluster_domain(self) -> str | None:
        return self.domain

    def route_host(self, namespace: str, name: str) -> str | None:
        return self.routes.get((namespace, name))

    def list_cluster_service_versions(self, namespace: str) -> dict[str, str]:
        self._call("list_cluster_service_versions", namespace)
        return dict(self.csvs)

    def create_subscription(self, namespace: str, manifest: Mapping[str, Any]) -> None:
        self._call("create_subscription", manifest["metadata"]["name"], mutating=True)
        self.csvs["devspaces.v3.17.0"] = "Succeeded"

    def get_che_cluster(self, namespace: str, name: str) -> dict[str, Any] | None:
        self._call("get_che_cluster", name)
        return copy.deepcopy(self.che)

    def create_che_cluster(self, namespace: str, manifest: Mapping[str, Any]) -> None:
        self._call("create_che_cluster", manifest["metadata"]["name"], mutating=True)
        self.che = {**copy.deepcopy(dict(manifest)), "status": {"chePhase": "Active"}}


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(user_prefix="u", namespace_suffix="ws", poll_interval=10, poll_attempts=5, results_dir=tmp_path)


class FakeSleep:
    """Records requested sleeps instead of sleeping."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleep() -> FakeSleep:
    return FakeSleep()
