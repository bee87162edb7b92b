from wsops.core.models import Snapshot, StepResult
from wsops.core.namespaces import ensure_namespace, role_bindings_for


def test_ensure_namespace_creates_namespace_with_policies(cluster, settings):
    result = ensure_namespace(cluster, "u1", Snapshot(), settings)

    assert result == StepResult.CREATED
    assert cluster.namespaces["u1-ws"]["workshop.user"] == "u1"
    assert cluster.namespaces["u1-ws"]["app.kubernetes.io/managed-by"] == "wsops"
    assert cluster.quotas[("u1-ws", "ddd-workshop-quota")]["limits.memory"] == "8Gi"
    assert ("u1-ws", "workshop-sa") in cluster.service_accounts
    assert set(cluster.role_bindings) == {("u1-ws", "u1-admin"), ("u1-ws", "workshop-sa-admin")}


def test_ensure_namespace_skips_existing_but_reapplies_policies(cluster, settings):
    cluster.namespaces["u1-ws"] = {}
    snapshot = Snapshot(namespaces=frozenset({"u1-ws"}))

    result = ensure_namespace(cluster, "u1", snapshot, settings)

    assert result == StepResult.SKIPPED
    assert ("create_namespace", "u1-ws") not in cluster.calls
    assert ("apply_resource_quota", "u1-ws") in cluster.calls
    assert ("u1-ws", "u1-admin") in cluster.role_bindings


def test_ensure_namespace_dry_run_issues_no_writes(cluster, settings):
    result = ensure_namespace(cluster, "u1", Snapshot(), settings, dry_run=True)

    assert result == StepResult.CREATED
    assert cluster.calls == []


def test_role_bindings_are_namespace_scoped_admin_grants(settings):
    user, sa = role_bindings_for("u3", settings)

    assert (user.subject_kind, user.subject_name, user.namespace, user.role) == ("User", "u3", "u3-ws", "admin")
    assert (sa.subject_kind, sa.subject_name, sa.namespace) == ("ServiceAccount", "workshop-sa", "u3-ws")
