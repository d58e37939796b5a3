from datetime import datetime, timedelta, timezone

import aiohttp
import pytest

from tello_driver.config import DroneConfig
from tello_driver.health import HealthReporter, HealthServer
from tello_driver.listeners import ListenerState, ResponseListener
from tello_driver.telemetry import TelemetryStore
from tello_driver.transport import bind_channels

from fakes import wait_until


class FakeListener:
    def __init__(self, name, state=ListenerState.RUNNING, received=0, errors=0):
        self.name = name
        self.state = state
        self.received_count = received
        self.error_count = errors


def _connected_reporter(store=None, stale_after=2.0):
    reporter = HealthReporter(stale_after_seconds=stale_after)
    reporter.set_client_state("connected", connected=True)
    reporter.set_transport(True, "command->127.0.0.1:8889")
    reporter.watch_listener(FakeListener("response-listener", received=3))
    reporter.watch_listener(FakeListener("state-listener", received=10))
    if store is not None:
        reporter.watch_telemetry(store)
    return reporter


def _age_store(store, seconds):
    store.replace(
        store.snapshot().values,
        received_at=datetime.now(timezone.utc) - timedelta(seconds=seconds),
    )


def test_reporter_ok_while_connected_and_telemetry_fresh():
    store = TelemetryStore()
    store.replace({"bat": 87, "time": 3})
    reporter = _connected_reporter(store)

    snapshot = reporter.snapshot()

    assert snapshot["status"] == "ok"
    assert snapshot["problems"] == []
    listeners = {item["name"]: item for item in snapshot["listeners"]}
    assert listeners["state-listener"]["received"] == 10
    assert listeners["state-listener"]["state"] == "running"
    assert snapshot["telemetry"]["fresh"] is True
    assert snapshot["telemetry"]["sequence"] == 1


def test_reporter_degrades_when_telemetry_goes_stale():
    store = TelemetryStore()
    store.replace({"bat": 87, "time": 3})
    store.record_discard()
    _age_store(store, 5.0)
    reporter = _connected_reporter(store, stale_after=2.0)

    snapshot = reporter.snapshot()

    assert snapshot["status"] == "degraded"
    assert snapshot["telemetry"]["fresh"] is False
    assert snapshot["telemetry"]["discarded"] == 1
    assert snapshot["problems"] == ["telemetry: stale for 5.0s"]


def test_reporter_degrades_before_first_telemetry():
    reporter = _connected_reporter(TelemetryStore())

    snapshot = reporter.snapshot()

    assert snapshot["status"] == "degraded"
    assert snapshot["telemetry"]["ageSeconds"] is None
    assert snapshot["problems"] == ["telemetry: nothing received yet"]


def test_reporter_degrades_on_listener_problems():
    reporter = _connected_reporter()
    reporter.watch_listener(
        FakeListener("state-listener", state=ListenerState.STOPPED, errors=1)
    )
    reporter.record_status("response-listener", False, "receive error: refused")

    problems = reporter.snapshot()["problems"]

    assert "response-listener: receive error: refused" in problems
    assert "state-listener: stopped" in problems

    reporter.record_status("response-listener", True, None)
    assert "response-listener: receive error: refused" not in reporter.snapshot()[
        "problems"
    ]


def test_reporter_degrades_while_not_connected():
    reporter = HealthReporter()
    reporter.set_client_state("handshaking", connected=False)

    snapshot = reporter.snapshot()

    assert snapshot["status"] == "degraded"
    assert snapshot["client"] == {"state": "handshaking", "connected": False}
    assert "client handshaking" in snapshot["problems"]
    assert "transport: not bound" in snapshot["problems"]
    assert snapshot["telemetry"] is None


@pytest.mark.asyncio
async def test_listener_recovery_clears_receive_error(monkeypatch):
    channels = bind_channels(
        DroneConfig(
            host="127.0.0.1",
            command_port=8889,
            local_command_port=0,
            state_port=0,
            bind_host="127.0.0.1",
        )
    )
    reporter = _connected_reporter()
    listener = ResponseListener(
        channels.command, receive_timeout=0.05, status_callback=reporter.record_status
    )
    reporter.watch_listener(listener)
    real_receive = channels.command.receive
    failures = {"left": 1}

    async def flaky_receive(bufsize, timeout):
        if failures["left"]:
            failures["left"] -= 1
            raise ConnectionRefusedError("port unreachable")
        return await real_receive(bufsize, timeout)

    monkeypatch.setattr(channels.command, "receive", flaky_receive)
    listener.start()
    try:
        await wait_until(lambda: listener.error_count == 1)
        assert reporter.snapshot()["status"] == "degraded"

        channels.command.socket.sendto(
            b"ok", ("127.0.0.1", channels.command.local_port)
        )
        await wait_until(lambda: listener.received_count == 1)
        assert reporter.snapshot()["status"] == "ok"
    finally:
        await listener.stop()
        channels.close()


@pytest.mark.asyncio
async def test_health_server_returns_503_when_telemetry_stale(unused_tcp_port):
    store = TelemetryStore()
    store.replace({"bat": 87, "time": 3})
    reporter = _connected_reporter(store)

    host = "127.0.0.1"
    port = unused_tcp_port
    server = HealthServer(reporter, host, port)
    await server.start()

    try:
        async with aiohttp.ClientSession() as session:
            async with session.get(f"http://{host}:{port}/healthz") as response:
                payload = await response.json()
                assert response.status == 200
                assert payload["status"] == "ok"

            async with session.get(f"http://{host}:{port}/telemetry") as response:
                payload = await response.json()
                assert response.status == 200
                assert payload["values"] == {"bat": 87, "time": 3}

            _age_store(store, 10.0)
            async with session.get(f"http://{host}:{port}/healthz") as response:
                payload = await response.json()
                assert response.status == 503
                assert payload["telemetry"]["fresh"] is False
    finally:
        await server.stop()


@pytest.mark.asyncio
async def test_health_server_telemetry_missing(unused_tcp_port):
    reporter = _connected_reporter(TelemetryStore())
    server = HealthServer(reporter, "127.0.0.1", unused_tcp_port)
    await server.start()

    try:
        async with aiohttp.ClientSession() as session:
            url = f"http://127.0.0.1:{unused_tcp_port}/telemetry"
            async with session.get(url) as response:
                assert response.status == 404
    finally:
        await server.stop()
