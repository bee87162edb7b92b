"""Resolution of the target user list for a batch.

A batch names its users through exactly one source: a count of numbered
users, an explicit list, a file of names, or the users already present in
the credential store. Validation happens here, before any cluster write.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable

from wsops.core.identities import numbered_usernames
from wsops.core.models import check_dns_label
from wsops.core.settings import MAX_USERS


class SourceKind(str, Enum):
    COUNT = "count"
    LIST = "list"
    FILE = "file"
    EXISTING = "existing"


@dataclass(frozen=True)
class UserSource:
    """
    Where a batch takes its users from.

    Exactly one of the payload fields is meaningful, selected by `kind`.
    """

    kind: SourceKind
    count: int = 0
    names: tuple[str, ...] = ()
    path: Path | None = None

    @property
    def creates_identities(self) -> bool:
        """True unless the batch reuses identities that already exist."""
        return self.kind != SourceKind.EXISTING


def _clean_names(raw: list[str]) -> tuple[str, ...]:
    names = tuple(dict.fromkeys(n.strip() for n in raw if n.strip()))
    if not names:
        raise ValueError("No users specified")
    if len(names) > MAX_USERS:
        raise ValueError(f"At most {MAX_USERS} users per batch: got {len(names)}")
    for name in names:
        check_dns_label(name, "username")
    return names


def read_users_file(path: Path) -> tuple[str, ...]:
    """Read one username per line; blank lines and `#` comments are ignored."""
    if not path.is_file():
        raise ValueError(f"Users file not found: {path}")
    lines = [ln.split("#", 1)[0] for ln in path.read_text(encoding="utf-8").splitlines()]
    return _clean_names(lines)


def resolve_users(
    source: UserSource,
    prefix: str,
    detect_existing: Callable[[], tuple[str, ...]],
) -> list[str]:
    """
    Turn a user source into a concrete, ordered list of usernames.

    Args:
        source: The validated source.
        prefix: Prefix used for numbered users.
        detect_existing: Returns usernames matching the deployment pattern;
            only called for `SourceKind.EXISTING`.

    Raises:
        ValueError: If the source yields no usable users.
    """
    if source.kind == SourceKind.COUNT:
        return numbered_usernames(prefix, source.count)
    if source.kind == SourceKind.LIST:
        return list(_clean_names(list(source.names)))
    if source.kind == SourceKind.FILE:
        if source.path is None:
            raise ValueError("Users file not set")
        return list(read_users_file(source.path))

    existing = detect_existing()
    if not existing:
        raise ValueError("No existing pattern users found. Use --count to create users.")
    return list(existing)
