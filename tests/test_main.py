"""Tests for the operator CLI."""

import json

import pytest
import yaml

import main


@pytest.fixture
def write_config(tmp_path):
    def _write(checks, processes=None):
        config = {
            "logging": {"file": "", "level": "WARNING"},
            "output": {"directory": str(tmp_path / "out"), "json_format": True, "text_format": True},
            "supervisor": {"processes": processes or [], "control": {"port": 1}},
            "diagnostics": {"env_file": str(tmp_path / ".env"), "checks": checks},
        }
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(config))
        return path

    return _write


def test_diagnose_ok_exit_code_and_reports(write_config, tmp_path, monkeypatch):
    monkeypatch.setenv("WARDEN_CLI_TOKEN", "sk-or-v1-abcdef")
    path = write_config([{"name": "token", "key": "WARDEN_CLI_TOKEN", "rules": ["prefix=sk-or-"]}])

    assert main.main(["-c", str(path), "diagnose"]) == main.EXIT_OK

    latest = json.loads((tmp_path / "out" / "diagnostics_latest.json").read_text())
    assert latest["ok"] is True
    assert latest["results"][0]["evidence"] == "sk-or-v1..."
    assert list((tmp_path / "out").glob("diagnostics_*.txt"))


def test_diagnose_reads_env_file(write_config, tmp_path, monkeypatch):
    monkeypatch.delenv("WARDEN_CLI_FILE_ONLY", raising=False)
    (tmp_path / ".env").write_text("WARDEN_CLI_FILE_ONLY=ntn_123456\n")
    path = write_config([{"key": "WARDEN_CLI_FILE_ONLY", "rules": ["prefix=ntn_"]}])
    assert main.main(["-c", str(path), "diagnose"]) == main.EXIT_OK


def test_diagnose_failure_exit_code(write_config, monkeypatch):
    monkeypatch.delenv("WARDEN_CLI_MISSING", raising=False)
    path = write_config([{"key": "WARDEN_CLI_MISSING", "rules": ["non_empty"]}])
    assert main.main(["-c", str(path), "diagnose"]) == main.EXIT_NOT_READY


def test_configuration_error_exit_code(write_config):
    path = write_config([{"key": "NO_RULES"}])
    assert main.main(["-c", str(path), "diagnose"]) == main.EXIT_CONFIG_ERROR


def test_supervise_refuses_when_diagnostics_fail(write_config, monkeypatch):
    monkeypatch.delenv("WARDEN_CLI_MISSING", raising=False)
    path = write_config(
        [{"key": "WARDEN_CLI_MISSING", "rules": ["non_empty"]}],
        processes=[{"name": "w", "command": ["sleep", "60"]}],
    )
    assert main.main(["-c", str(path), "supervise"]) == main.EXIT_NOT_READY


def test_supervise_without_processes(write_config):
    path = write_config([])
    assert main.main(["-c", str(path), "supervise", "--skip-diagnostics"]) == main.EXIT_CONFIG_ERROR


def test_status_without_running_supervisor(write_config):
    path = write_config([])
    assert main.main(["-c", str(path), "status"]) == main.EXIT_NOT_READY
