"""Background tasks draining the command, telemetry and video sockets.

Each listener owns one channel exclusively. The receive loop never blocks for
longer than ``receive_timeout`` so that :meth:`DatagramListener.stop` can
signal, join and only then close the socket.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Awaitable, Callable, Iterable, Optional

from . import constants
from .errors import TelemetryParseError
from .telemetry import TelemetryStore, parse_state
from .transport import Channel

LOGGER = logging.getLogger(__name__)

ERROR_BACKOFF_SECONDS = 0.1

StatusCallback = Callable[[str, bool, Optional[str]], Awaitable[None] | None]


class ListenerState(str, Enum):
    """Lifecycle of a background listener."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class DatagramListener(ABC):
    """Receive loop shared by the concrete listeners."""

    name = "listener"
    bufsize = constants.RESPONSE_BUFFER_SIZE

    def __init__(
        self,
        channel: Channel,
        *,
        receive_timeout: float = 0.5,
        status_callback: Optional[StatusCallback] = None,
    ) -> None:
        self._channel = channel
        self._receive_timeout = receive_timeout
        self._status_callback = status_callback
        self._state = ListenerState.IDLE
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task[None]] = None
        self._received = 0
        self._errors = 0

    @property
    def state(self) -> ListenerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == ListenerState.RUNNING

    @property
    def received_count(self) -> int:
        return self._received

    @property
    def error_count(self) -> int:
        return self._errors

    def start(self) -> None:
        """Spawn the receive loop on the running event loop."""

        if self._state == ListenerState.RUNNING:
            LOGGER.warning("%s already running", self.name)
            return
        if self._state == ListenerState.STOPPED:
            raise RuntimeError(f"{self.name} cannot be restarted once stopped")

        self._stop_event.clear()
        self._state = ListenerState.RUNNING
        self._task = asyncio.create_task(self._receive_loop(), name=self.name)
        LOGGER.debug("%s started on port %s", self.name, self._channel.local_port)

    async def stop(self) -> None:
        """Stop the loop, wait for it to exit, then close the socket.

        Safe to call more than once.
        """

        if self._state == ListenerState.STOPPED:
            return
        self._state = ListenerState.STOPPED
        self._stop_event.set()

        task, self._task = self._task, None
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                LOGGER.exception("%s exited with an error", self.name)

        self._channel.close()
        await self._report(False, "stopped")
        LOGGER.debug("%s stopped", self.name)

    async def _receive_loop(self) -> None:
        await self._report(True, None)
        failing = False
        while not self._stop_event.is_set():
            try:
                data = await self._channel.receive(self.bufsize, self._receive_timeout)
            except (BlockingIOError, InterruptedError):
                continue
            except OSError as exc:
                if self._stop_event.is_set():
                    break
                self._errors += 1
                failing = True
                LOGGER.warning("%s receive failed: %s", self.name, exc)
                await self._report(False, f"receive error: {exc}")
                await asyncio.sleep(ERROR_BACKOFF_SECONDS)
                continue

            if data is None:
                continue

            self._received += 1
            if failing:
                failing = False
                await self._report(True, None)
            try:
                await self._handle_datagram(data)
            except Exception:
                LOGGER.exception("%s failed to handle datagram %r", self.name, data)

    @abstractmethod
    async def _handle_datagram(self, data: bytes) -> None:
        """Consume one received datagram."""

    async def _report(self, healthy: bool, detail: Optional[str]) -> None:
        callback = self._status_callback
        if callback is None:
            return
        try:
            result = callback(self.name, healthy, detail)
            if asyncio.iscoroutine(result):
                await result
        except Exception:
            LOGGER.warning("%s status callback failed", self.name, exc_info=True)


class ResponseListener(DatagramListener):
    """Queue every trimmed command response in arrival order."""

    name = "response-listener"
    bufsize = constants.RESPONSE_BUFFER_SIZE

    def __init__(
        self,
        channel: Channel,
        *,
        receive_timeout: float = 0.5,
        status_callback: Optional[StatusCallback] = None,
    ) -> None:
        super().__init__(
            channel,
            receive_timeout=receive_timeout,
            status_callback=status_callback,
        )
        self._queue: asyncio.Queue[str] = asyncio.Queue()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def _handle_datagram(self, data: bytes) -> None:
        text = data.decode("utf-8", errors="replace").rstrip()
        if not text:
            LOGGER.debug("Dropped blank response datagram")
            return
        self._queue.put_nowait(text)

    def get_nowait(self) -> Optional[str]:
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    async def get(self, timeout: float) -> Optional[str]:
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    def drain(self) -> list[str]:
        stale: list[str] = []
        while True:
            item = self.get_nowait()
            if item is None:
                return stale
            stale.append(item)


class StateListener(DatagramListener):
    """Parse telemetry datagrams into the shared :class:`TelemetryStore`."""

    name = "state-listener"
    bufsize = constants.STATE_BUFFER_SIZE

    def __init__(
        self,
        channel: Channel,
        store: TelemetryStore,
        *,
        required_fields: Iterable[str] = (),
        receive_timeout: float = 0.5,
        status_callback: Optional[StatusCallback] = None,
    ) -> None:
        super().__init__(
            channel,
            receive_timeout=receive_timeout,
            status_callback=status_callback,
        )
        self._store = store
        self._required = tuple(required_fields)

    @property
    def store(self) -> TelemetryStore:
        return self._store

    async def _handle_datagram(self, data: bytes) -> None:
        raw = data.decode("utf-8", errors="replace")
        try:
            values = parse_state(raw, required=self._required)
        except TelemetryParseError as exc:
            self._store.record_discard()
            LOGGER.debug("Discarded telemetry datagram: %s", exc)
            return
        self._store.replace(values)


FrameCallback = Callable[[bytes], Awaitable[None] | None]


class VideoListener(DatagramListener):
    """Hand raw video payloads to a consumer; decoding is the consumer's job."""

    name = "video-listener"
    bufsize = constants.VIDEO_BUFFER_SIZE

    def __init__(
        self,
        channel: Channel,
        on_payload: FrameCallback,
        *,
        receive_timeout: float = 0.5,
        status_callback: Optional[StatusCallback] = None,
    ) -> None:
        super().__init__(
            channel,
            receive_timeout=receive_timeout,
            status_callback=status_callback,
        )
        self._on_payload = on_payload

    async def _handle_datagram(self, data: bytes) -> None:
        result = self._on_payload(data)
        if asyncio.iscoroutine(result):
            await result
