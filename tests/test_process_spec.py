"""Tests for process configuration parsing."""

import sys
from pathlib import Path

import pytest

from supervision import ProcessSpec, RestartPolicy, load_process_specs, parse_duration, parse_memory
from supervision.spec import build_process_spec
from utils.errors import ConfigurationError


@pytest.mark.parametrize(
    "raw, expected",
    [
        (5000, 5.0),
        ("10s", 10.0),
        ("5m", 300.0),
        ("1h", 3600.0),
        ("250ms", 0.25),
        ("1500", 1.5),
        (0, 0.0),
    ],
)
def test_parse_duration(raw, expected):
    assert parse_duration(raw) == pytest.approx(expected)


def test_parse_duration_bare_seconds():
    assert parse_duration(30, bare_unit="s") == 30.0


@pytest.mark.parametrize("raw", ["soon", "-5s", -1, True, None, [1]])
def test_parse_duration_rejects(raw):
    with pytest.raises(ConfigurationError):
        parse_duration(raw)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("300M", 300 * 1024 * 1024),
        ("1G", 1024 ** 3),
        ("512K", 512 * 1024),
        ("200MB", 200 * 1024 * 1024),
        (1048576, 1048576),
        (None, None),
    ],
)
def test_parse_memory(raw, expected):
    assert parse_memory(raw) == expected


@pytest.mark.parametrize("raw", ["lots", "0M", -5, "3T"])
def test_parse_memory_rejects(raw):
    with pytest.raises(ConfigurationError):
        parse_memory(raw)


def test_restart_policy_invariants():
    with pytest.raises(ConfigurationError):
        RestartPolicy(max_restarts=-1)
    with pytest.raises(ConfigurationError):
        RestartPolicy(window=-1.0)
    with pytest.raises(ConfigurationError):
        RestartPolicy(restart_delay=-0.5)
    assert RestartPolicy(max_restarts=0).max_restarts == 0


def test_process_spec_is_immutable():
    spec = ProcessSpec(name="w", command=("python", "w.py"), env={"A": 1})
    assert spec.env == {"A": "1"}
    with pytest.raises(Exception):
        spec.name = "other"
    with pytest.raises(TypeError):
        spec.env["B"] = "2"


def test_pm2_style_entry():
    spec = build_process_spec(
        {
            "name": "discord_bot",
            "script": "src/discord_bot.py",
            "cwd": "/srv/fleet",
            "max_memory_restart": "300M",
            "env": {"APP_ENV": "production"},
            "max_restarts": 5,
            "min_uptime": "10s",
            "restart_delay": 5000,
        }
    )
    assert spec.command == (sys.executable, "src/discord_bot.py")
    assert spec.working_dir == Path("/srv/fleet")
    assert spec.max_memory_bytes == 300 * 1024 * 1024
    assert spec.env["APP_ENV"] == "production"
    assert spec.restart_policy == RestartPolicy(max_restarts=5, window=300.0, min_uptime=10.0, restart_delay=5.0)


def test_command_string_and_args():
    spec = build_process_spec({"name": "w", "command": "node src/worker.js --verbose", "args": ["--port", 8080]})
    assert spec.command == ("node", "src/worker.js", "--verbose", "--port", "8080")


def test_interpreter_by_extension_and_override():
    assert build_process_spec({"name": "a", "script": "x.js"}).command == ("node", "x.js")
    assert build_process_spec({"name": "b", "script": "./run", "interpreter": "none"}).command == ("./run",)
    assert build_process_spec({"name": "c", "script": "x.py", "interpreter": "python3.12"}).command[0] == "python3.12"


def test_entry_without_command_is_rejected():
    with pytest.raises(ConfigurationError):
        build_process_spec({"name": "w"})


def test_load_process_specs_applies_defaults_and_skips_disabled(tmp_path):
    config = {
        "supervisor": {
            "log_directory": str(tmp_path),
            "defaults": {"max_restarts": 2, "restart_window": "1m"},
            "processes": [
                {"name": "a", "script": "a.py"},
                {"name": "b", "script": "b.py", "max_restarts": 7},
                {"name": "c", "script": "c.py", "enabled": False},
            ],
        }
    }
    specs = load_process_specs(config)
    assert [s.name for s in specs] == ["a", "b"]
    assert specs[0].restart_policy.max_restarts == 2
    assert specs[0].restart_policy.window == 60.0
    assert specs[1].restart_policy.max_restarts == 7
    assert specs[0].log_dir == tmp_path


def test_duplicate_names_are_rejected():
    config = {"supervisor": {"processes": [{"name": "a", "script": "a.py"}, {"name": "a", "script": "b.py"}]}}
    with pytest.raises(ConfigurationError, match="duplicate"):
        load_process_specs(config)


@pytest.mark.parametrize(
    "entry",
    [
        {"script": "a.py"},
        {"name": "a", "script": "a.py", "max_restarts": -1},
        {"name": "a", "script": "a.py", "max_restarts": "many"},
        {"name": "a", "script": "a.py", "min_uptime": "forever"},
        {"name": "a", "script": "a.py", "env": ["A=1"]},
        "a.py",
    ],
)
def test_malformed_entries_are_rejected(entry):
    with pytest.raises(ConfigurationError):
        load_process_specs({"supervisor": {"processes": [entry]}})
