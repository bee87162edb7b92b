import pytest

from wsops.core.identities import (
    CredentialStoreError,
    ensure_usernames,
    ensure_users,
    hash_password,
    numbered_usernames,
    parse_htpasswd,
    update_htpasswd,
    verify_password,
)

from conftest import api_error

NS, SECRET = "openshift-config", "htpasswd"


def _plain_hasher(password: str) -> str:
    return f"plain:{password}"


def _plain_verifier(password: str, hashed: str) -> bool:
    return hashed == f"plain:{password}"


def _ensure(cluster, names, password="p1", **kwargs):
    return ensure_usernames(
        cluster,
        names,
        password,
        namespace=NS,
        secret=SECRET,
        hasher=_plain_hasher,
        verifier=_plain_verifier,
        **kwargs,
    )


def test_parse_htpasswd_ignores_comments_and_blank_lines():
    content = "# managed\n\nalice:$2y$10$abc\nbob:{SHA}xyz\nbroken-line\n"

    assert parse_htpasswd(content) == {"alice": "$2y$10$abc", "bob": "{SHA}xyz"}


def test_update_htpasswd_rewrites_in_place_and_appends():
    content = "b:old\na:h1\n"

    assert update_htpasswd(content, {"b": "h2", "c": "h3"}) == "b:h2\na:h1\nc:h3\n"
    assert update_htpasswd("", {"a": "h1"}) == "a:h1\n"


def test_hash_password_is_apache_bcrypt_and_verifies():
    hashed = hash_password("p1")

    assert hashed.startswith("$2y$10$")
    assert verify_password("p1", hashed) is True
    assert verify_password("p2", hashed) is False
    assert verify_password("p1", "{SHA}whatever") is False


@pytest.mark.parametrize("count", [0, -1, 101])
def test_numbered_usernames_rejects_out_of_range_count(count: int):
    with pytest.raises(ValueError, match="between 1 and 100"):
        numbered_usernames("u", count)


def test_numbered_usernames_rejects_empty_prefix():
    with pytest.raises(ValueError, match="prefix"):
        numbered_usernames("", 3)


def test_ensure_usernames_creates_missing_users_with_one_write(cluster):
    result = _ensure(cluster, ["u1", "u2", "u3"])

    assert result.created == ["u1", "u2", "u3"]
    assert result.written is True
    assert cluster.calls == [("replace_htpasswd", SECRET)]
    assert parse_htpasswd(cluster.htpasswd) == {
        "u1": "plain:p1",
        "u2": "plain:p1",
        "u3": "plain:p1",
    }


def test_ensure_usernames_is_idempotent(cluster):
    _ensure(cluster, ["u1", "u2"])
    cluster.calls.clear()

    result = _ensure(cluster, ["u1", "u2"])

    assert result.changed is False
    assert result.unchanged == ["u1", "u2"]
    assert cluster.calls == []


def test_ensure_usernames_never_removes_unrelated_entries(cluster):
    cluster.htpasswd = "instructor:$apr1$keep\nu1:plain:old\n"

    result = _ensure(cluster, ["u1", "u2"])

    entries = parse_htpasswd(cluster.htpasswd)
    assert entries["instructor"] == "$apr1$keep"
    assert entries["u1"] == "plain:p1"
    assert result.updated == ["u1"]
    assert result.created == ["u2"]


def test_ensure_usernames_dry_run_writes_nothing(cluster):
    result = _ensure(cluster, ["u1"], dry_run=True)

    assert result.created == ["u1"]
    assert cluster.htpasswd is None
    assert cluster.calls == []


def test_ensure_usernames_rejects_empty_password(cluster):
    with pytest.raises(ValueError, match="Password"):
        _ensure(cluster, ["u1"], password="")


def test_ensure_usernames_replace_failure_is_fatal_and_leaves_store(cluster):
    cluster.htpasswd = "u1:plain:p1\n"
    cluster.failures[("replace_htpasswd", SECRET)] = api_error(403)

    with pytest.raises(CredentialStoreError, match="no user was changed"):
        _ensure(cluster, ["u1", "u2"])

    assert cluster.htpasswd == "u1:plain:p1\n"


def test_ensure_users_larger_count_only_adds(cluster):
    first = ensure_users(cluster, "u", 2, "p1", namespace=NS, secret=SECRET)
    second = ensure_users(cluster, "u", 3, "p1", namespace=NS, secret=SECRET)

    assert first == ["u1", "u2"]
    assert second == ["u3"]
    assert list(parse_htpasswd(cluster.htpasswd)) == ["u1", "u2", "u3"]


def test_ensure_usernames_keeps_unrelated_lines_verbatim(cluster):
    cluster.htpasswd = "# managed by ops team\nadmin:$apr1$abc$def\n\nbroken-line-without-colon\nu1:plain:old\n"

    result = _ensure(cluster, ["u1", "u2"])

    assert result.updated == ["u1"]
    assert result.created == ["u2"]
    assert cluster.htpasswd == (
        "# managed by ops team\n"
        "admin:$apr1$abc$def\n"
        "\n"
        "broken-line-without-colon\n"
        "u1:plain:p1\n"
        "u2:plain:p1\n"
    )
