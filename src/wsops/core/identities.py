"""Batch management of workshop identities in a shared htpasswd store.

The credential store is a single htpasswd file that may also contain
entries unrelated to the workshop. It is always read whole, changed in
memory and written back with one replace, never patched per user, so a
failure leaves the previous file untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, Protocol

import bcrypt

from wsops.core.models import check_dns_label
from wsops.core.settings import MAX_USERS

log = logging.getLogger(__name__)

_BCRYPT_ROUNDS = 10


class CredentialStoreError(RuntimeError):
    """Raised when the shared credential store cannot be read or replaced."""


class CredentialStore(Protocol):
    """Interface for the htpasswd secret used by the identity manager."""

    def read_htpasswd(self, namespace: str, secret: str) -> str | None:
        """Return the decoded file, or None if the store does not exist yet."""
        ...

    def replace_htpasswd(self, namespace: str, secret: str, content: str) -> None:
        """Replace the whole file in one write."""
        ...


def parse_htpasswd(content: str) -> dict[str, str]:
    """
    Parse htpasswd text into an ordered username -> hash mapping.

    Blank lines and `#` comments are ignored; a later duplicate wins, as
    with the htpasswd tool.
    """
    entries: dict[str, str] = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or ":" not in line:
            continue
        user, hashed = line.split(":", 1)
        if user:
            entries[user] = hashed
    return entries


def _entry_user(line: str) -> str | None:
    stripped = line.strip()
    if not stripped or stripped.startswith("#") or ":" not in stripped:
        return None
    return stripped.split(":", 1)[0] or None


def update_htpasswd(content: str, hashes: dict[str, str]) -> str:
    """
    Set the hash of each user in `hashes` and return the new file.

    Lines of matching users are rewritten in place and unknown users are
    appended. Every other line (comments, blanks, foreign entries, lines
    the parser skips) is kept verbatim.
    """
    pending = dict(hashes)
    lines: list[str] = []
    for line in content.splitlines():
        user = _entry_user(line)
        if user is not None and user in hashes:
            lines.append(f"{user}:{hashes[user]}")
            pending.pop(user, None)
        else:
            lines.append(line)
    lines += [f"{user}:{hashed}" for user, hashed in pending.items()]
    return "".join(f"{line}\n" for line in lines)


def hash_password(password: str) -> str:
    """Return an Apache-compatible (`$2y$`) bcrypt hash."""
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=_BCRYPT_ROUNDS))
    return "$2y$" + hashed.decode("ascii")[4:]


def verify_password(password: str, hashed: str) -> bool:
    """Check a password against a bcrypt htpasswd hash. Non-bcrypt hashes never verify."""
    if not hashed.startswith(("$2y$", "$2b$", "$2a$")):
        return False
    normalized = "$2b$" + hashed[4:]
    try:
        return bcrypt.checkpw(password.encode("utf-8"), normalized.encode("ascii"))
    except ValueError:
        return False


def numbered_usernames(prefix: str, count: int) -> list[str]:
    """Return `prefix1 .. prefix{count}` after validating the bounds."""
    if not prefix:
        raise ValueError("User prefix must not be empty")
    if count < 1 or count > MAX_USERS:
        raise ValueError(f"User count must be between 1 and {MAX_USERS}: {count}")
    return [f"{prefix}{i}" for i in range(1, count + 1)]


@dataclass
class IdentityResult:
    """Outcome of one identity batch."""

    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    hashes: dict[str, str] = field(default_factory=dict)
    written: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.created or self.updated)


def ensure_usernames(
    store: CredentialStore,
    usernames: Iterable[str],
    password: str,
    *,
    namespace: str,
    secret: str,
    dry_run: bool = False,
    hasher: Callable[[str], str] = hash_password,
    verifier: Callable[[str, str], bool] = verify_password,
) -> IdentityResult:
    """
    Upsert the given users with `password` and write the store back once.

    Existing entries whose hash already matches the password are kept
    byte-for-byte, so re-running with identical input writes nothing.
    Lines that belong to other users, comments and anything unparsed are
    written back unchanged.

    Raises:
        ValueError: On an empty password or an unusable username.
        CredentialStoreError: If the store cannot be read or replaced.
    """
    if not password:
        raise ValueError("Password must not be empty")
    names = list(dict.fromkeys(usernames))
    for name in names:
        check_dns_label(name, "username")

    try:
        current = store.read_htpasswd(namespace, secret)
    except Exception as exc:  # noqa: BLE001
        raise CredentialStoreError(f"Could not read credential store {namespace}/{secret}: {exc}") from exc
    entries = parse_htpasswd(current or "")

    result = IdentityResult()
    hashes: dict[str, str] = {}
    for name in names:
        existing = entries.get(name)
        if existing is not None and verifier(password, existing):
            result.unchanged.append(name)
            result.hashes[name] = existing
            continue
        if not dry_run:
            hashes[name] = hasher(password)
            result.hashes[name] = hashes[name]
        (result.updated if existing is not None else result.created).append(name)

    if dry_run or not result.changed:
        log.info(
            "Credential store unchanged (%d existing, %d planned)",
            len(result.unchanged),
            len(result.created) + len(result.updated),
        )
        return result

    try:
        store.replace_htpasswd(namespace, secret, update_htpasswd(current or "", hashes))
    except Exception as exc:  # noqa: BLE001
        raise CredentialStoreError(
            f"Failed to replace credential store {namespace}/{secret}; no user was changed: {exc}"
        ) from exc
    result.written = True
    log.info(
        "Credential store replaced: %d created, %d updated",
        len(result.created),
        len(result.updated),
    )
    return result


def ensure_users(
    store: CredentialStore,
    prefix: str,
    count: int,
    password: str,
    *,
    namespace: str,
    secret: str,
    dry_run: bool = False,
) -> list[str]:
    """Create or update `prefix1..prefix{count}`; return the newly created usernames."""
    result = ensure_usernames(
        store,
        numbered_usernames(prefix, count),
        password,
        namespace=namespace,
        secret=secret,
        dry_run=dry_run,
    )
    return result.created
