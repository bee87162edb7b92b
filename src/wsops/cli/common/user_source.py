"""User source construction from CLI options.

Exactly one of `--count`, `--users`, `--users-file` and `--use-existing`
names the users of a batch. This module turns those options into a
validated `UserSource`; conflicts are usage errors raised as ValueError.
"""

from __future__ import annotations

from pathlib import Path

from wsops.core.settings import MAX_USERS
from wsops.core.users import SourceKind, UserSource


def build_user_source(
    *,
    count: int | None,
    users: str | None,
    users_file: Path | None,
    use_existing: bool,
) -> UserSource:
    """
    Build a UserSource from mutually exclusive CLI options.

    Raises:
        ValueError: If no source or more than one source is given, or if
                    the count is out of range.
    """
    given = [
        name
        for name, present in (
            ("--count", count is not None),
            ("--users", users is not None),
            ("--users-file", users_file is not None),
            ("--use-existing", use_existing),
        )
        if present
    ]
    if not given:
        raise ValueError("Specify one of --count, --users, --users-file or --use-existing")
    if len(given) > 1:
        raise ValueError(f"Options {', '.join(given)} are mutually exclusive")

    if count is not None:
        if count < 1 or count > MAX_USERS:
            raise ValueError(f"--count must be between 1 and {MAX_USERS}: got {count}")
        return UserSource(SourceKind.COUNT, count=count)
    if users is not None:
        names = tuple(u.strip() for u in users.split(",") if u.strip())
        if not names:
            raise ValueError("--users is empty")
        return UserSource(SourceKind.LIST, names=names)
    if users_file is not None:
        return UserSource(SourceKind.FILE, path=users_file)
    return UserSource(SourceKind.EXISTING)
