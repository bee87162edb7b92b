"""Application context management for the CLI."""

from __future__ import annotations

from dataclasses import dataclass, field, replace

from kubernetes.client.rest import ApiException

from wsops.cli.common.exits import die
from wsops.core.adapters.openshift import OpenShiftGateway, describe_api_error
from wsops.core.auth import AuthError, check_cluster_admin, get_gateway, verify_login
from wsops.core.settings import Settings


@dataclass
class AppContext:
    """
    Per-invocation state shared by all commands.

    The gateway is created on first use, so usage errors are reported
    without touching the kubeconfig or the cluster.
    """

    settings: Settings
    kube_context: str | None = None
    user: str | None = None
    _gateway: OpenShiftGateway | None = field(default=None, repr=False)

    def with_naming(self, *, prefix: str | None, suffix: str | None) -> Settings:
        """Return settings with the user prefix / namespace suffix overridden."""
        changes = {}
        if prefix:
            changes["user_prefix"] = prefix
        if suffix:
            changes["namespace_suffix"] = suffix
        if changes:
            self.settings = replace(self.settings, **changes)
        return self.settings

    def gateway(self) -> OpenShiftGateway:
        if self._gateway is None:
            try:
                self._gateway = get_gateway(self.kube_context)
            except AuthError as exc:
                die(str(exc), code=1)
        return self._gateway

    def admin_gateway(self) -> OpenShiftGateway:
        """Return the gateway after checking login and cluster-admin rights."""
        gateway = self.gateway()
        try:
            user = check_cluster_admin(gateway)
        except AuthError as exc:
            die(str(exc), code=1)
        except ApiException as exc:
            die(f"Cluster API error: {describe_api_error(exc)}", code=1)
        self.user = user
        return gateway

    def login_gateway(self) -> OpenShiftGateway:
        """Return the gateway after checking that a session exists."""
        gateway = self.gateway()
        try:
            self.user = verify_login(gateway)
        except AuthError as exc:
            die(str(exc), code=1)
        except ApiException as exc:
            die(f"Cluster API error: {describe_api_error(exc)}", code=1)
        return gateway
