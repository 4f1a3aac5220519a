"""Shared test fixtures."""

import sys

import pytest

from supervision import ProcessSpec, RestartPolicy


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def python_command(code: str):
    return (sys.executable, "-c", code)


SLEEPER = "import time; time.sleep(60)"
CRASHER = "import sys; sys.exit(3)"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_spec():
    def _make(name="worker", code=SLEEPER, **policy_kwargs):
        extra = {
            key: policy_kwargs.pop(key)
            for key in ("working_dir", "env", "max_memory_bytes", "log_dir")
            if key in policy_kwargs
        }
        policy = RestartPolicy(
            max_restarts=policy_kwargs.pop("max_restarts", 3),
            window=policy_kwargs.pop("window", 60.0),
            min_uptime=policy_kwargs.pop("min_uptime", 10.0),
            restart_delay=policy_kwargs.pop("restart_delay", 0.05),
        )
        return ProcessSpec(name=name, command=python_command(code), restart_policy=policy, **extra)

    return _make
