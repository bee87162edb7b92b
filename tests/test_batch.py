import pytest

from wsops.core.batch import CleanupRequest, ProvisionRequest, cleanup, provision, run
from wsops.core.identities import CredentialStoreError, numbered_usernames, parse_htpasswd
from wsops.core.models import BatchMode, BatchReport, CleanupReport, OutcomeStatus, ReadinessOutcome, UserStatus

from conftest import api_error


def _provision(cluster, settings, sleep, users, **kwargs):
    kwargs.setdefault("password", "p1")
    request = ProvisionRequest(users=tuple(users), **kwargs)
    return provision(cluster, request, settings, sleep=sleep)


def _counts(report: BatchReport) -> tuple[int, int, int]:
    return report.created_count, report.skipped_count, report.failed_count


def test_provision_empty_cluster_creates_everything(cluster, settings, sleep):
    result = _provision(cluster, settings, sleep, numbered_usernames("u", 3))

    assert _counts(result.report) == (3, 0, 0)
    assert set(cluster.namespaces) == {"u1-ws", "u2-ws", "u3-ws"}
    assert {ns for ns, _ in cluster.workspaces} == {"u1-ws", "u2-ws", "u3-ws"}
    assert all(o.readiness == ReadinessOutcome.RUNNING for o in result.report.outcomes)
    assert list(parse_htpasswd(cluster.htpasswd)) == ["u1", "u2", "u3"]


def test_provision_rerun_creates_nothing(cluster, settings, sleep):
    users = numbered_usernames("u", 3)
    _provision(cluster, settings, sleep, users)
    cluster.calls.clear()

    result = _provision(cluster, settings, sleep, users)

    assert _counts(result.report) == (0, 3, 0)
    assert not [c for c in cluster.calls if c[0] in ("create_namespace", "create_workspace", "replace_htpasswd")]


def test_provision_larger_count_adds_only_new_users(cluster, settings, sleep):
    _provision(cluster, settings, sleep, numbered_usernames("u", 3))

    result = _provision(cluster, settings, sleep, numbered_usernames("u", 5))

    assert _counts(result.report) == (2, 3, 0)
    created = [o.username for o in result.report.outcomes if o.status == OutcomeStatus.CREATED]
    assert created == ["u4", "u5"]


def test_provision_timeout_is_isolated_to_one_user(cluster, settings, sleep):
    cluster.phase_script["ddd-workshop-u2"] = ["Starting"]

    result = _provision(cluster, settings, sleep, numbered_usernames("u", 3))

    assert _counts(result.report) == (2, 0, 1)
    failed = result.report.outcomes[1]
    assert failed.username == "u2"
    assert failed.readiness == ReadinessOutcome.TIMED_OUT
    assert failed.error.startswith("[readiness] ddd-workshop-u2: TimedOut")
    assert len(sleep.calls) == settings.poll_attempts - 1


def test_provision_api_failure_is_categorized_and_isolated(cluster, settings, sleep):
    cluster.failures[("create_namespace", "u1-ws")] = api_error(403, message="forbidden by policy")

    result = _provision(cluster, settings, sleep, ["u1", "u2"])

    assert _counts(result.report) == (1, 0, 1)
    assert result.report.outcomes[0].error == "[namespace] u1-ws: 403 Forbidden: forbidden by policy"
    assert "u2-ws" in cluster.namespaces


def test_provision_quota_rejection_fails_only_that_user(cluster, settings, sleep):
    cluster.failures[("create_workspace", "ddd-workshop-u2")] = api_error(
        403, message="exceeded quota: ddd-workshop-quota, requested: pods=1"
    )

    result = _provision(cluster, settings, sleep, numbered_usernames("u", 3))

    assert _counts(result.report) == (2, 0, 1)
    u1, u2, u3 = result.report.outcomes
    assert u2.status == OutcomeStatus.FAILED
    assert u2.error.startswith("[workspace] ddd-workshop-u2: 403 Forbidden: exceeded quota")
    assert (u1.status, u3.status) == (OutcomeStatus.CREATED, OutcomeStatus.CREATED)
    assert ("u3-ws", "ddd-workshop-u3") in cluster.workspaces
    assert ("u2-ws", "ddd-workshop-u2") not in cluster.workspaces


def test_provision_credential_failure_is_fatal_for_the_batch(cluster, settings, sleep):
    cluster.failures[("replace_htpasswd", settings.htpasswd_secret)] = api_error(500)

    with pytest.raises(CredentialStoreError):
        _provision(cluster, settings, sleep, ["u1", "u2"])

    assert cluster.namespaces == {}


def test_provision_dry_run_issues_no_mutating_call(cluster, settings, sleep):
    cluster.htpasswd = "u1:h\n"
    cluster.namespaces["u1-ws"] = {}

    result = _provision(cluster, settings, sleep, ["u1", "u2"], dry_run=True)

    assert result.report.mode == BatchMode.DRY_RUN
    assert cluster.calls == []
    assert result.identities.created == ["u2"]
    assert _counts(result.report) == (2, 0, 0)
    assert any("namespace u2-ws: created" in a for a in result.report.outcomes[1].actions)


def test_provision_incremental_leaves_existing_workspaces_untouched(cluster, settings, sleep):
    cluster.namespaces["u1-ws"] = {}
    cluster.add_workspace("u1-ws", "ddd-workshop-u1", "Stopped")

    result = _provision(cluster, settings, sleep, ["u1", "u2"], incremental=True)

    assert _counts(result.report) == (1, 1, 0)
    assert not [c for c in cluster.calls if c[1] == "u1-ws"]


def test_provision_existing_failed_workspace_is_reported(cluster, settings, sleep):
    cluster.namespaces["u1-ws"] = {}
    cluster.add_workspace("u1-ws", "ddd-workshop-u1", "Failed")

    result = _provision(cluster, settings, sleep, ["u1"])

    outcome = result.report.outcomes[0]
    assert outcome.status == OutcomeStatus.FAILED
    assert "remove it to recreate" in outcome.error
    assert ("create_workspace", "ddd-workshop-u1") not in cluster.calls


def test_provision_without_wait_does_not_poll(cluster, settings, sleep):
    result = _provision(cluster, settings, sleep, ["u1"], wait=False)

    assert _counts(result.report) == (1, 0, 0)
    assert result.report.outcomes[0].readiness is None
    assert sleep.calls == []


def test_provision_existing_identities_skip_credential_store(cluster, settings, sleep):
    result = _provision(cluster, settings, sleep, ["u1"], create_identities=False, password="")

    assert result.identities is None
    assert cluster.htpasswd is None
    assert _counts(result.report) == (1, 0, 0)


def test_parallel_provisioning_keeps_input_order(cluster, settings, sleep):
    users = numbered_usernames("u", 8)
    cluster.failures[("create_workspace", "ddd-workshop-u5")] = api_error(409)
    events = []

    request = ProvisionRequest(users=tuple(users), password="p1", parallel=4)
    report = provision(cluster, request, settings, sleep=sleep, on_event=lambda u, m: events.append((u, m))).report

    assert [o.username for o in report.outcomes] == users
    assert report.created_count + report.skipped_count + report.failed_count == report.total == 8
    assert report.outcomes[4].status == OutcomeStatus.FAILED
    final = [m for u, m in events if m in ("created", "skipped", "failed")]
    assert len(final) == 8


@pytest.mark.parametrize("kwargs", [{"users": ()}, {"users": ("u1",), "parallel": 0}, {"users": ("u1",), "parallel": 21}])
def test_provision_request_rejects_bad_shapes(kwargs):
    with pytest.raises(ValueError):
        ProvisionRequest(password="p1", **kwargs)


def test_cleanup_removes_namespace_and_keeps_identity(cluster, settings, sleep):
    _provision(cluster, settings, sleep, ["u1", "u2"])

    report = cleanup(cluster, CleanupRequest(users=("u1",)), settings)

    assert report.removed_count == 1
    assert "u1-ws" not in cluster.namespaces
    assert ("u1-ws", "ddd-workshop-u1") not in cluster.workspaces
    assert "u1" in parse_htpasswd(cluster.htpasswd)
    assert "u2-ws" in cluster.namespaces


def test_cleanup_absent_user_issues_no_delete(cluster, settings):
    report = cleanup(cluster, CleanupRequest(users=("u9",)), settings)

    assert report.absent_count == 1
    assert cluster.calls == []


def test_cleanup_dry_run_and_workspace_only(cluster, settings, sleep):
    _provision(cluster, settings, sleep, ["u1"])
    cluster.calls.clear()

    dry = cleanup(cluster, CleanupRequest(users=("u1",), dry_run=True), settings)
    assert dry.results[0].removed is True
    assert cluster.calls == []

    report = cleanup(cluster, CleanupRequest(users=("u1",), workspace_only=True), settings)
    assert report.removed_count == 1
    assert "u1-ws" in cluster.namespaces
    assert cluster.workspaces == {}


def test_cleanup_failure_is_isolated(cluster, settings, sleep):
    _provision(cluster, settings, sleep, ["u1", "u2"])
    cluster.failures[("delete_namespace", "u1-ws")] = api_error(500, reason="Internal Server Error")

    report = cleanup(cluster, CleanupRequest(users=("u1", "u2")), settings)

    assert report.failed_count == 1
    assert report.removed_count == 1
    assert report.results[0].error == "500 Internal Server Error"


def test_run_dispatches_on_request_type(cluster, settings, sleep):
    provisioned = run(cluster, ProvisionRequest(users=("u1",), password="p1"), settings, sleep=sleep)
    cleaned = run(cluster, CleanupRequest(users=("u1",)), settings)

    assert isinstance(provisioned, BatchReport)
    assert isinstance(cleaned, CleanupReport)
    assert cleaned.removed_count == 1


def test_provision_result_exposes_user_lifecycle(cluster, settings, sleep):
    cluster.phase_script["ddd-workshop-u2"] = ["Failed"]

    result = _provision(cluster, settings, sleep, ["u1", "u2", "u3"], parallel=3)
    skipped = _provision(cluster, settings, sleep, ["u1"], wait=False)

    assert [u.status for u in result.users] == [UserStatus.READY, UserStatus.PENDING, UserStatus.READY]
    assert skipped.users[0].status == UserStatus.PROVISIONED
    assert skipped.users[0].namespace == "u1-ws"


def test_provision_result_carries_credential_hashes(cluster, settings, sleep):
    cluster.htpasswd = "u1:existing\n"

    result = _provision(cluster, settings, sleep, ["u1", "u2"], wait=False)

    users = {u.username: u for u in result.users}
    assert users["u2"].credential_hash == parse_htpasswd(cluster.htpasswd)["u2"]
    assert users["u1"].credential_hash.startswith("$2y$")


def test_cleanup_report_marks_users_removed(cluster, settings, sleep):
    _provision(cluster, settings, sleep, ["u1", "u2"], wait=False)
    cluster.failures[("delete_namespace", "u2-ws")] = api_error(500)

    dry = cleanup(cluster, CleanupRequest(users=("u1", "u3"), dry_run=True), settings)
    assert dry.mode == BatchMode.DRY_RUN
    assert [u.status for u in dry.users] == [UserStatus.PROVISIONED, UserStatus.REMOVED]

    report = cleanup(cluster, CleanupRequest(users=("u1", "u2")), settings)
    assert report.mode == BatchMode.CLEANUP
    assert [u.status for u in report.users] == [UserStatus.REMOVED, UserStatus.PROVISIONED]

    ws_only = cleanup(cluster, CleanupRequest(users=("u2",), workspace_only=True), settings)
    assert ws_only.users[0].status == UserStatus.PROVISIONED
