"""Tests for loading health checks and building the config snapshot."""

import pytest

from readiness import HttpProbe, load_health_checks, snapshot_from_env
from readiness.checks import HealthCheckSpec, snapshot_keys
from utils.errors import ConfigurationError


def _config(*checks):
    return {"diagnostics": {"checks": list(checks)}}


def test_checks_load_in_config_order():
    checks = load_health_checks(
        _config(
            {"name": "openrouter", "key": "OPENROUTER_API_KEY", "rules": ["prefix=sk-or-"],
             "probe": {"url": "https://openrouter.ai/api/v1/auth/key", "evidence": "field:data.label"}},
            {"key": "DISCORD_BOT_TOKEN", "rules": "non_empty"},
        )
    )
    assert [c.name for c in checks] == ["openrouter", "DISCORD_BOT_TOKEN"]
    assert isinstance(checks[0].probe, HttpProbe)
    assert checks[0].probe.method == "GET"
    assert checks[1].probe is None


def test_check_without_rules_is_refused():
    with pytest.raises(ConfigurationError, match="rule"):
        load_health_checks(_config({"name": "notion", "key": "NOTION_API_KEY"}))


def test_check_without_validator_object_is_refused():
    with pytest.raises(ConfigurationError):
        HealthCheckSpec(name="x", key="X", validator=None)


@pytest.mark.parametrize(
    "probe",
    [
        {"method": "GET"},
        {"url": "https://x", "auth": "basic"},
        {"url": "https://x", "evidence": "sum:data"},
        "https://x",
    ],
)
def test_bad_probe_configuration(probe):
    with pytest.raises(ConfigurationError):
        load_health_checks(_config({"name": "a", "key": "A", "rules": ["non_empty"], "probe": probe}))


def test_duplicate_check_names():
    with pytest.raises(ConfigurationError, match="duplicate"):
        load_health_checks(_config({"key": "A", "rules": ["non_empty"]}, {"key": "A", "rules": ["url"]}))


def test_snapshot_prefers_environment_over_env_file(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("A=from-file\nB=file-only\n")

    snapshot = snapshot_from_env(["A", "B", "C"], env_file=str(env_file), environ={"A": "from-env"})
    assert snapshot == {"A": "from-env", "B": "file-only", "C": None}


def test_snapshot_without_env_file(monkeypatch):
    monkeypatch.setenv("WARDEN_SNAPSHOT_KEY", "value")
    snapshot = snapshot_from_env(["WARDEN_SNAPSHOT_KEY"], env_file="/nonexistent/.env")
    assert snapshot == {"WARDEN_SNAPSHOT_KEY": "value"}


def test_snapshot_keys_include_probe_placeholders():
    checks = load_health_checks(
        _config(
            {"name": "notion", "key": "NOTION_API_KEY", "rules": ["prefix=ntn_"],
             "probe": {"url": "https://api.notion.com/v1/blocks/{env:NOTION_HQ_PAGE_ID|abc}/children"}},
        )
    )
    assert snapshot_keys(checks) == ["NOTION_API_KEY", "NOTION_HQ_PAGE_ID"]
