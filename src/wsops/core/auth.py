"""Authentication helpers for the cluster API.

This module centralizes creation of the cluster gateway from the local
kubeconfig (or the in-cluster service account) and the privilege checks
every mutating mode performs before touching anything.
"""

from __future__ import annotations

import logging

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from wsops.core.adapters.openshift import OpenShiftGateway

log = logging.getLogger(__name__)

LOGIN_HINT = "Log in with:\n  $ oc login <api-server-url>"


class AuthError(RuntimeError):
    """Raised when the session is missing, expired or under-privileged."""


def _format_auth_error(message: str, context: str | None) -> str:
    """Return a user-friendly auth error message with a remediation hint."""
    where = f" (context '{context}')" if context else ""
    return f"Cluster authentication failed{where}: {message}\n{LOGIN_HINT}"


def get_gateway(context: str | None = None) -> OpenShiftGateway:
    """
    Create and return a gateway bound to the current cluster session.

    The kubeconfig is tried first (honoring `context`); when no kubeconfig
    is available the in-cluster service account configuration is used.
    """
    configuration = client.Configuration()
    try:
        config.load_kube_config(context=context, client_configuration=configuration)
        log.debug("Loaded kubeconfig (context=%s)", context or "current")
    except ConfigException as exc:
        if context:
            raise AuthError(_format_auth_error(str(exc), context)) from exc
        try:
            config.load_incluster_config(client_configuration=configuration)
            log.debug("Loaded in-cluster configuration")
        except ConfigException as inner:
            raise AuthError(_format_auth_error(str(exc), context)) from inner
    return OpenShiftGateway(client.ApiClient(configuration))


def verify_login(gateway: OpenShiftGateway) -> str:
    """Return the logged-in user name, or raise AuthError."""
    try:
        user = gateway.whoami()
    except ApiException as exc:
        if exc.status in (401, 403):
            raise AuthError(_format_auth_error("not logged in or token expired", None)) from exc
        raise
    log.debug("Logged in as %s on %s", user, gateway.server)
    return user


def check_cluster_admin(gateway: OpenShiftGateway) -> str:
    """
    Verify the session may do anything in every namespace.

    Provisioning writes to the shared credential store and creates
    namespaces and role bindings, which needs cluster-admin or equivalent.
    Returns the current user name.
    """
    user = verify_login(gateway)
    try:
        allowed = gateway.can_i("*", "*")
    except ApiException as exc:
        raise AuthError(f"Permission check failed: {exc.status} {exc.reason}") from exc
    if not allowed:
        raise AuthError(
            f"Cluster admin permissions required (current user: {user}).\n"
            "Ask for the cluster-admin role or log in as a cluster administrator."
        )
    return user
