from __future__ import annotations

import base64
import json
from typing import Any, Mapping

from kubernetes import client
from kubernetes.client.rest import ApiException

from wsops.core.models import RoleBindingSpec, WorkspacePhase, WorkspaceRef

DEVWORKSPACE_GROUP = "workspace.devfile.io"
DEVWORKSPACE_VERSION = "v1alpha2"
DEVWORKSPACE_PLURAL = "devworkspaces"

CHE_GROUP = "org.eclipse.che"
CHE_VERSION = "v2"
CHE_PLURAL = "checlusters"

OLM_GROUP = "operators.coreos.com"


def _is_missing(exc: ApiException) -> bool:
    return exc.status == 404


def _is_conflict(exc: ApiException) -> bool:
    return exc.status == 409


class OpenShiftGateway:
    """
    Adapter around the Kubernetes client for the resources a workshop uses.

    Every method issues at most one read or one write against the API
    (declarative upserts are a create falling back to a replace). Nothing
    is retried here; callers decide what a failure means.
    """

    def __init__(self, api_client: client.ApiClient) -> None:
        self.api_client = api_client
        self.core = client.CoreV1Api(api_client)
        self.rbac = client.RbacAuthorizationV1Api(api_client)
        self.authz = client.AuthorizationV1Api(api_client)
        self.custom = client.CustomObjectsApi(api_client)
        self.version = client.VersionApi(api_client)

    # -- session ---------------------------------------------------------

    @property
    def server(self) -> str:
        """Return the API server URL this gateway talks to."""
        return str(getattr(self.api_client.configuration, "host", "") or "unknown")

    def whoami(self) -> str:
        """Return the user name of the current session."""
        me = self.custom.get_cluster_custom_object("user.openshift.io", "v1", "users", "~")
        name = (me.get("metadata") or {}).get("name")
        if not name:
            raise ValueError("Could not determine current user (metadata.name is empty).")
        return name

    def server_version(self) -> str:
        info = self.version.get_code()
        return str(getattr(info, "git_version", "") or "unknown")

    def can_i(self, verb: str, resource: str, *, namespace: str | None = None) -> bool:
        """Return True if the current session may perform `verb` on `resource`."""
        review = {
            "apiVersion": "authorization.k8s.io/v1",
            "kind": "SelfSubjectAccessReview",
            "spec": {
                "resourceAttributes": {
                    "verb": verb,
                    "resource": resource,
                    "group": "*" if resource == "*" else "",
                    **({"namespace": namespace} if namespace else {}),
                }
            },
        }
        result = self.authz.create_self_subject_access_review(review)
        return bool(getattr(result.status, "allowed", False))

    def can_user(self, user: str, verb: str, resource: str, *, namespace: str) -> bool:
        """Return True if `user` may perform `verb` on `resource` in `namespace`."""
        review = {
            "apiVersion": "authorization.k8s.io/v1",
            "kind": "SubjectAccessReview",
            "spec": {
                "user": user,
                "resourceAttributes": {
                    "verb": verb,
                    "resource": resource,
                    "namespace": namespace,
                },
            },
        }
        result = self.authz.create_subject_access_review(review)
        return bool(getattr(result.status, "allowed", False))

    # -- credential store ------------------------------------------------

    def read_htpasswd(self, namespace: str, secret: str) -> str | None:
        """Return the decoded htpasswd file, or None if the secret does not exist."""
        try:
            obj = self.core.read_namespaced_secret(secret, namespace)
        except ApiException as exc:
            if _is_missing(exc):
                return None
            raise
        raw = (obj.data or {}).get("htpasswd")
        if not raw:
            return ""
        return base64.b64decode(raw).decode("utf-8")

    def replace_htpasswd(self, namespace: str, secret: str, content: str) -> None:
        """Replace the whole htpasswd secret in one write (create it if absent)."""
        body = {
            "apiVersion": "v1",
            "kind": "Secret",
            "type": "Opaque",
            "metadata": {"name": secret, "namespace": namespace},
            "data": {"htpasswd": base64.b64encode(content.encode("utf-8")).decode("ascii")},
        }
        try:
            self.core.replace_namespaced_secret(secret, namespace, body)
        except ApiException as exc:
            if not _is_missing(exc):
                raise
            self.core.create_namespaced_secret(namespace, body)

    # -- namespaces ------------------------------------------------------

    def list_namespaces(self, label_selector: str | None = None) -> dict[str, dict[str, str]]:
        """Return namespace name -> labels for all (or label-selected) namespaces."""
        kwargs = {"label_selector": label_selector} if label_selector else {}
        out: dict[str, dict[str, str]] = {}
        for ns in self.core.list_namespace(**kwargs).items:
            name = getattr(ns.metadata, "name", None)
            if not name:
                continue
            out[name] = dict(ns.metadata.labels or {})
        return out

    def namespace_exists(self, name: str) -> bool:
        try:
            self.core.read_namespace(name)
        except ApiException as exc:
            if _is_missing(exc):
                return False
            raise
        return True

    def create_namespace(self, name: str, labels: Mapping[str, str]) -> None:
        body = {
            "apiVersion": "v1",
            "kind": "Namespace",
            "metadata": {"name": name, "labels": dict(labels)},
        }
        self.core.create_namespace(body)

    def delete_namespace(self, name: str) -> bool:
        """Delete a namespace (and everything in it). Returns False if it was absent."""
        try:
            self.core.delete_namespace(name)
        except ApiException as exc:
            if _is_missing(exc):
                return False
            raise
        return True

    def apply_resource_quota(
        self,
        namespace: str,
        name: str,
        hard: Mapping[str, str],
        labels: Mapping[str, str],
    ) -> None:
        body = {
            "apiVersion": "v1",
            "kind": "ResourceQuota",
            "metadata": {"name": name, "namespace": namespace, "labels": dict(labels)},
            "spec": {"hard": dict(hard)},
        }
        try:
            self.core.create_namespaced_resource_quota(namespace, body)
        except ApiException as exc:
            if not _is_conflict(exc):
                raise
            self.core.replace_namespaced_resource_quota(name, namespace, body)

    def resource_quota_exists(self, namespace: str, name: str) -> bool:
        try:
            self.core.read_namespaced_resource_quota(name, namespace)
        except ApiException as exc:
            if _is_missing(exc):
                return False
            raise
        return True

    def apply_service_account(self, namespace: str, name: str) -> None:
        body = {
            "apiVersion": "v1",
            "kind": "ServiceAccount",
            "metadata": {"name": name, "namespace": namespace},
        }
        try:
            self.core.create_namespaced_service_account(namespace, body)
        except ApiException as exc:
            if not _is_conflict(exc):
                raise

    def apply_role_binding(self, spec: RoleBindingSpec) -> None:
        if spec.subject_kind == "ServiceAccount":
            subject: dict[str, Any] = {
                "kind": "ServiceAccount",
                "name": spec.subject_name,
                "namespace": spec.namespace,
            }
        else:
            subject = {
                "kind": "User",
                "name": spec.subject_name,
                "apiGroup": "rbac.authorization.k8s.io",
            }
        body = {
            "apiVersion": "rbac.authorization.k8s.io/v1",
            "kind": "RoleBinding",
            "metadata": {"name": spec.name, "namespace": spec.namespace},
            "subjects": [subject],
            "roleRef": {
                "apiGroup": "rbac.authorization.k8s.io",
                "kind": "ClusterRole",
                "name": spec.role,
            },
        }
        try:
            self.rbac.create_namespaced_role_binding(spec.namespace, body)
        except ApiException as exc:
            if not _is_conflict(exc):
                raise
            self.rbac.replace_namespaced_role_binding(spec.name, spec.namespace, body)

    def role_binding_exists(self, namespace: str, name: str) -> bool:
        try:
            self.rbac.read_namespaced_role_binding(name, namespace)
        except ApiException as exc:
            if _is_missing(exc):
                return False
            raise
        return True

    # -- workspaces ------------------------------------------------------

    def get_workspace_document(self, namespace: str, name: str) -> dict[str, Any] | None:
        try:
            return self.custom.get_namespaced_custom_object(
                DEVWORKSPACE_GROUP, DEVWORKSPACE_VERSION, namespace, DEVWORKSPACE_PLURAL, name
            )
        except ApiException as exc:
            if _is_missing(exc):
                return None
            raise

    def get_workspace(self, namespace: str, name: str) -> WorkspaceRef | None:
        doc = self.get_workspace_document(namespace, name)
        if doc is None:
            return None
        phase = (doc.get("status") or {}).get("phase")
        return WorkspaceRef(name=name, namespace=namespace, phase=WorkspacePhase.parse(phase))

    def create_workspace(self, namespace: str, manifest: Mapping[str, Any]) -> None:
        self.custom.create_namespaced_custom_object(
            DEVWORKSPACE_GROUP, DEVWORKSPACE_VERSION, namespace, DEVWORKSPACE_PLURAL, dict(manifest)
        )

    def delete_workspace(self, namespace: str, name: str) -> bool:
        try:
            self.custom.delete_namespaced_custom_object(
                DEVWORKSPACE_GROUP, DEVWORKSPACE_VERSION, namespace, DEVWORKSPACE_PLURAL, name
            )
        except ApiException as exc:
            if _is_missing(exc):
                return False
            raise
        return True

    # -- platform --------------------------------------------------------

    def cluster_domain(self) -> str | None:
        try:
            obj = self.custom.get_cluster_custom_object(
                "config.openshift.io", "v1", "ingresses", "cluster"
            )
        except ApiException as exc:
            if _is_missing(exc):
                return None
            raise
        return (obj.get("spec") or {}).get("domain") or None

    def route_host(self, namespace: str, name: str) -> str | None:
        try:
            obj = self.custom.get_namespaced_custom_object(
                "route.openshift.io", "v1", namespace, "routes", name
            )
        except ApiException as exc:
            if _is_missing(exc):
                return None
            raise
        return (obj.get("spec") or {}).get("host") or None

    def list_cluster_service_versions(self, namespace: str) -> dict[str, str]:
        """Return installed operator CSV name -> phase in `namespace`."""
        resp = self.custom.list_namespaced_custom_object(
            OLM_GROUP, "v1alpha1", namespace, "clusterserviceversions"
        )
        out: dict[str, str] = {}
        for item in resp.get("items", []):
            name = (item.get("metadata") or {}).get("name")
            if name:
                out[name] = (item.get("status") or {}).get("phase") or ""
        return out

    def create_subscription(self, namespace: str, manifest: Mapping[str, Any]) -> None:
        try:
            self.custom.create_namespaced_custom_object(
                OLM_GROUP, "v1alpha1", namespace, "subscriptions", dict(manifest)
            )
        except ApiException as exc:
            if not _is_conflict(exc):
                raise

    def get_che_cluster(self, namespace: str, name: str) -> dict[str, Any] | None:
        try:
            return self.custom.get_namespaced_custom_object(
                CHE_GROUP, CHE_VERSION, namespace, CHE_PLURAL, name
            )
        except ApiException as exc:
            if _is_missing(exc):
                return None
            raise

    def create_che_cluster(self, namespace: str, manifest: Mapping[str, Any]) -> None:
        self.custom.create_namespaced_custom_object(
            CHE_GROUP, CHE_VERSION, namespace, CHE_PLURAL, dict(manifest)
        )


def describe_api_error(exc: ApiException) -> str:
    """Return `status reason: message` for an API error, using the body message when present."""
    message = ""
    body = getattr(exc, "body", None)
    if body:
        try:
            message = json.loads(body).get("message", "")
        except (TypeError, ValueError, AttributeError):
            message = ""
    head = f"{exc.status} {exc.reason}".strip()
    return f"{head}: {message}" if message else head
