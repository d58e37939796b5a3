"""Link health of a running Tello client.

The reporter does not keep its own copy of the link state. It reads the
listener counters and the telemetry store on demand, so a ``/healthz`` request
always reflects what the background tasks are doing right now. The link is
``ok`` only while the client is connected, every listener is running without a
pending receive error, and the last telemetry record is younger than
``stale_after_seconds``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Tuple

from aiohttp import web

from .telemetry import TelemetryStore

LOGGER = logging.getLogger(__name__)


class ListenerStats(Protocol):
    """What the reporter reads from a background listener."""

    name: str

    @property
    def state(self) -> object: ...

    @property
    def received_count(self) -> int: ...

    @property
    def error_count(self) -> int: ...


@dataclass(slots=True)
class ListenerReport:
    name: str
    state: str
    received: int
    errors: int
    detail: Optional[str] = None

    @property
    def healthy(self) -> bool:
        return self.state == "running" and self.detail is None

    def as_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "state": self.state,
            "received": self.received,
            "errors": self.errors,
            "detail": self.detail,
        }


@dataclass(slots=True)
class TelemetryReport:
    sequence: int
    discarded: int
    age_seconds: Optional[float]
    stale_after_seconds: float

    @property
    def fresh(self) -> bool:
        return (
            self.age_seconds is not None
            and self.age_seconds <= self.stale_after_seconds
        )

    def as_dict(self) -> Dict[str, object]:
        return {
            "fresh": self.fresh,
            "sequence": self.sequence,
            "discarded": self.discarded,
            "ageSeconds": (
                None if self.age_seconds is None else round(self.age_seconds, 3)
            ),
        }


class HealthReporter:
    """Aggregate client state, listener counters and telemetry freshness."""

    def __init__(self, *, stale_after_seconds: float = 2.0) -> None:
        self._stale_after = stale_after_seconds
        self._client_state = "disconnected"
        self._connected = False
        self._transport: Tuple[bool, Optional[str]] = (False, "not bound")
        self._listeners: Dict[str, ListenerStats] = {}
        self._statuses: Dict[str, Tuple[bool, Optional[str]]] = {}
        self._store: Optional[TelemetryStore] = None

    @property
    def stale_after_seconds(self) -> float:
        return self._stale_after

    def set_client_state(self, state: str, *, connected: bool) -> None:
        self._client_state = state
        self._connected = connected

    def set_transport(self, healthy: bool, detail: Optional[str] = None) -> None:
        self._transport = (healthy, detail)

    def watch_listener(self, listener: ListenerStats) -> None:
        self._listeners[listener.name] = listener

    def watch_telemetry(self, store: TelemetryStore) -> None:
        self._store = store

    def record_status(self, name: str, healthy: bool, detail: Optional[str]) -> None:
        """Listener status callback; a healthy report clears the last problem."""

        self._statuses[name] = (healthy, None if healthy else detail)
        if not healthy:
            LOGGER.debug("%s reported %s", name, detail)

    def listener_reports(self) -> List[ListenerReport]:
        reports = []
        for name, listener in self._listeners.items():
            state = getattr(listener.state, "value", listener.state)
            _, detail = self._statuses.get(name, (True, None))
            reports.append(
                ListenerReport(
                    name=name,
                    state=str(state),
                    received=listener.received_count,
                    errors=listener.error_count,
                    detail=detail,
                )
            )
        return reports

    def telemetry_report(self) -> Optional[TelemetryReport]:
        if self._store is None:
            return None
        snapshot = self._store.snapshot()
        return TelemetryReport(
            sequence=self._store.sequence,
            discarded=self._store.discarded,
            age_seconds=None if snapshot is None else snapshot.age_seconds(),
            stale_after_seconds=self._stale_after,
        )

    def latest_telemetry(self) -> Optional[Dict[str, object]]:
        if self._store is None:
            return None
        snapshot = self._store.snapshot()
        if snapshot is None:
            return None
        return {
            "sequence": snapshot.sequence,
            "receivedAt": snapshot.received_at.isoformat(timespec="milliseconds"),
            "values": dict(snapshot.values),
        }

    def snapshot(self) -> Dict[str, object]:
        listeners = self.listener_reports()
        telemetry = self.telemetry_report()

        problems: List[str] = []
        if not self._connected:
            problems.append(f"client {self._client_state}")
        transport_ok, transport_detail = self._transport
        if not transport_ok:
            problems.append(f"transport: {transport_detail}")
        for report in listeners:
            if not report.healthy:
                problems.append(f"{report.name}: {report.detail or report.state}")
        if telemetry is not None and not telemetry.fresh:
            if telemetry.age_seconds is None:
                problems.append("telemetry: nothing received yet")
            else:
                problems.append(f"telemetry: stale for {telemetry.age_seconds:.1f}s")

        return {
            "status": "degraded" if problems else "ok",
            "problems": problems,
            "client": {"state": self._client_state, "connected": self._connected},
            "transport": {"healthy": transport_ok, "detail": transport_detail},
            "listeners": [report.as_dict() for report in listeners],
            "telemetry": None if telemetry is None else telemetry.as_dict(),
        }


class HealthServer:
    """Serve ``/healthz`` and the latest ``/telemetry`` record over HTTP."""

    def __init__(self, reporter: HealthReporter, host: str, port: int) -> None:
        self._reporter = reporter
        self._host = host
        self._port = port
        self._runner: Optional[web.AppRunner] = None

    async def start(self) -> None:
        app = web.Application()
        app.add_routes(
            [
                web.get("/healthz", self._handle_health),
                web.get("/telemetry", self._handle_telemetry),
            ]
        )
        runner = web.AppRunner(app)
        await runner.setup()
        await web.TCPSite(runner, self._host, self._port).start()
        self._runner = runner
        LOGGER.info("Health endpoint on http://%s:%s/healthz", self._host, self._port)

    async def stop(self) -> None:
        runner, self._runner = self._runner, None
        if runner is not None:
            await runner.cleanup()

    async def _handle_health(self, request: web.Request) -> web.Response:
        payload = self._reporter.snapshot()
        status = 200 if payload["status"] == "ok" else 503
        return web.json_response(payload, status=status)

    async def _handle_telemetry(self, request: web.Request) -> web.Response:
        latest = self._reporter.latest_telemetry()
        if latest is None:
            return web.json_response({"error": "no telemetry received"}, status=404)
        return web.json_response(latest)
