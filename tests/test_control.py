"""Tests for the supervisor control API and its client."""

import asyncio

import pytest

from supervision import ProcessState, Supervisor, SupervisorControlServer, call_control
from supervision.control import ControlClientError


@pytest.fixture
def control(make_spec):
    supervisor = Supervisor([make_spec(name="a"), make_spec(name="b")], poll_interval=0.05, grace_period=2.0)
    server = SupervisorControlServer(supervisor, "127.0.0.1", 0)
    server.start()
    assert server.wait_ready()
    yield supervisor, server
    supervisor.stop_all()
    server.stop()


@pytest.mark.asyncio
async def test_status_endpoint(control):
    _, server = control
    host, port = server.address
    payload = await call_control(host, port, "GET", "/status")
    assert [p["name"] for p in payload["processes"]] == ["a", "b"]
    assert {p["state"] for p in payload["processes"]} == {"stopped"}
    assert "timestamp" in payload


@pytest.mark.asyncio
async def test_start_and_stop_commands(control):
    supervisor, server = control
    host, port = server.address

    started = await call_control(host, port, "POST", "/processes/a/start")
    assert started["ok"]
    assert started["results"][0]["changed"] is True
    ready = await asyncio.to_thread(supervisor.wait_for_state, "a", [ProcessState.RUNNING], 10)
    assert ready

    again = await call_control(host, port, "POST", "/start-all")
    assert again["ok"]
    by_name = {r["name"]: r for r in again["results"]}
    assert by_name["a"]["changed"] is False
    assert by_name["b"]["changed"] is True

    stopped = await call_control(host, port, "POST", "/stop-all")
    assert stopped["ok"]
    assert {s.state for s in supervisor.status()} == {ProcessState.STOPPED}


@pytest.mark.asyncio
async def test_unknown_process_is_an_error(control):
    _, server = control
    host, port = server.address
    with pytest.raises(ControlClientError, match="unknown process"):
        await call_control(host, port, "POST", "/processes/nope/start")


@pytest.mark.asyncio
async def test_unknown_route(control):
    _, server = control
    host, port = server.address
    with pytest.raises(ControlClientError):
        await call_control(host, port, "DELETE", "/status")


@pytest.mark.asyncio
async def test_unreachable_supervisor():
    with pytest.raises(ControlClientError, match="unreachable"):
        await call_control("127.0.0.1", 1, "GET", "/status", timeout=2.0)
