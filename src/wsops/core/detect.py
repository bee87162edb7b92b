"""Read-only detection of existing workshop state.

The detector compares nothing and changes nothing: it reads the shared
credential store, the namespace list and the per-user workspaces once and
returns a `Snapshot` that later steps use to decide between create and
skip.
"""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Protocol

from wsops.core.identities import parse_htpasswd
from wsops.core.models import Snapshot, WorkspaceRef
from wsops.core.namespaces import APP_LABEL, MANAGED_BY, MANAGED_BY_LABEL, USER_LABEL
from wsops.core.selectors import AndSelector, LabelSelector, NameRegexSelector
from wsops.core.settings import Settings

log = logging.getLogger(__name__)


class DetectionGateway(Protocol):
    """Read operations the detector needs from the cluster."""

    def read_htpasswd(self, namespace: str, secret: str) -> str | None:
        ...

    def list_namespaces(self, label_selector: str | None = None) -> Mapping[str, Mapping[str, str]]:
        ...

    def get_workspace(self, namespace: str, name: str) -> WorkspaceRef | None:
        ...


def detect(
    gateway: DetectionGateway,
    settings: Settings,
    *,
    pattern: str | None = None,
    users: Iterable[str] = (),
) -> Snapshot:
    """
    Build a snapshot of identities, namespaces and workspaces.

    Args:
        gateway: Cluster gateway used for reads only.
        settings: Deployment settings (naming conventions, secret location).
        pattern: Username regex; defaults to `settings.username_pattern`.
        users: Extra usernames whose namespaces and workspaces should be
            looked up even if they do not match the pattern (explicit lists).

    Returns:
        Snapshot of the observed state.
    """
    selector = NameRegexSelector(pattern or settings.username_pattern)

    content = gateway.read_htpasswd(settings.htpasswd_namespace, settings.htpasswd_secret)
    if content is None:
        log.info("No htpasswd secret found in %s", settings.htpasswd_namespace)
        identities: tuple[str, ...] = ()
    else:
        identities = tuple(parse_htpasswd(content))
    pattern_users = tuple(u for u in identities if selector.matches(u))
    log.info(
        "Found %d identities, %d matching %s",
        len(identities),
        len(pattern_users),
        selector.regex.pattern,
    )

    candidates = list(dict.fromkeys([*pattern_users, *users]))
    wanted = {settings.namespace_for(u): u for u in candidates}
    existing = set(gateway.list_namespaces()) & set(wanted)

    workspaces: dict[str, WorkspaceRef] = {}
    for namespace in sorted(existing):
        ref = gateway.get_workspace(namespace, settings.workspace_name_for(wanted[namespace]))
        if ref is not None:
            workspaces[namespace] = ref

    log.info("Found %d user namespaces and %d workspaces", len(existing), len(workspaces))
    return Snapshot(
        identities=identities,
        pattern_users=pattern_users,
        namespaces=frozenset(existing),
        workspaces=workspaces,
    )


def managed_users(gateway: DetectionGateway, settings: Settings) -> tuple[str, ...]:
    """
    Return owners of namespaces this tool created, whatever the credential store says.

    Cleanup uses this to find namespaces whose identity has already been
    removed by hand.
    """
    managed = LabelSelector(MANAGED_BY_LABEL, MANAGED_BY)
    selector = AndSelector(
        [
            NameRegexSelector(rf"{settings.user_prefix}\d+-{settings.namespace_suffix}"),
            LabelSelector(APP_LABEL, settings.app_name),
        ]
    )
    owners: list[str] = []
    for name, labels in gateway.list_namespaces(managed.as_query()).items():
        if not selector.matches(name, labels):
            continue
        owner = labels.get(USER_LABEL)
        if owner and settings.namespace_for(owner) == name:
            owners.append(owner)
    return tuple(sorted(owners, key=lambda u: (len(u), u)))
