from pathlib import Path

import pytest

from wsops.core.models import Quota
from wsops.core.settings import Settings


def test_defaults_follow_naming_conventions():
    settings = Settings()

    assert settings.namespace_for("user3") == "user3-devspaces"
    assert settings.workspace_name_for("user3") == "ddd-workshop-user3"
    assert settings.quota_name == "ddd-workshop-quota"
    assert settings.username_pattern == r"^user\d+$"


def test_from_env_reads_overrides(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("WSOPS_USER_PREFIX", "u")
    monkeypatch.setenv("WSOPS_NAMESPACE_SUFFIX", "ws")
    monkeypatch.setenv("WSOPS_POLL_ATTEMPTS", "3")
    monkeypatch.setenv("WSOPS_CONSOLE_URL", "https://console.example/")
    monkeypatch.setenv("WSOPS_RESULTS_DIR", "out")
    monkeypatch.setenv("KAFKA_HOST", "broker")
    monkeypatch.setenv("KAFKA_PORT", "19092")

    settings = Settings.from_env()

    assert settings.namespace_for("u1") == "u1-ws"
    assert settings.poll_attempts == 3
    assert settings.console_url == "https://console.example"
    assert settings.results_dir == Path("out")
    assert (settings.probes.kafka_host, settings.probes.kafka_port) == ("broker", 19092)


def test_from_env_falls_back_on_invalid_numbers(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("WSOPS_POLL_INTERVAL", "soon")
    monkeypatch.setenv("WSOPS_POLL_ATTEMPTS", "0")
    monkeypatch.setenv("QUARKUS_PORT", "")

    settings = Settings.from_env()

    assert settings.poll_interval == 10
    assert settings.poll_attempts == 1
    assert settings.probes.tool_port == 8080
    assert settings.probes.tool_base_url == "http://localhost:8080"


def test_quota_rejects_invalid_quantities():
    with pytest.raises(ValueError, match="requests.cpu"):
        Quota(cpu_request="two")


def test_quota_hard_limits():
    assert Quota().hard() == {
        "requests.cpu": "2",
        "requests.memory": "4Gi",
        "limits.memory": "8Gi",
        "pods": "10",
        "persistentvolumeclaims": "5",
        "services": "5",
        "configmaps": "10",
        "secrets": "10",
    }


def test_quota_object_caps_from_env(monkeypatch):
    monkeypatch.setenv("WSOPS_QUOTA_MAX_CONFIGMAPS", "25")
    monkeypatch.setenv("WSOPS_QUOTA_MAX_SECRETS", "oops")

    hard = Settings.from_env().quota.hard()

    assert hard["configmaps"] == "25"
    assert hard["secrets"] == "10"


def test_quota_rejects_negative_object_caps():
    with pytest.raises(ValueError, match="object counts"):
        Quota(max_secrets=-1)
