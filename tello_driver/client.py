"""Tello client: binds the channels, runs the listeners and the handshake."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, Optional

from .commands import CommandDispatcher
from .config import TelloConfig, load_config
from .core.models import (
    CommandResponse,
    DeviceInfo,
    Endpoint,
    RetryPolicy,
    TelemetrySnapshot,
)
from .errors import TelloError
from .handshake import perform_handshake
from .health import HealthReporter
from .listeners import FrameCallback, ResponseListener, StateListener, VideoListener
from .telemetry import TelemetryStore
from .transport import TransportChannels, bind_channels

LOGGER = logging.getLogger(__name__)

DEVICE_INFO_QUERIES = (
    ("serial_number", "sn?", "Serial Number"),
    ("sdk_version", "sdk?", "Tello SDK"),
    ("wifi_snr", "wifi?", "Wi-Fi Signal"),
    ("battery", "battery?", "Battery"),
)


class ClientState(str, Enum):
    DISCONNECTED = "disconnected"
    BINDING = "binding"
    OPEN = "open"
    HANDSHAKING = "handshaking"
    CONNECTED = "connected"
    STOPPING = "stopping"
    CLOSED = "closed"


class TelloClient:
    """Drive one Tello over UDP.

    Typical use::

        async with TelloClient(config) as tello:
            await tello.send_command_await_response("takeoff")
            snapshot = tello.get_state()

    Shutdown stops every listener (signal, join, close) before any socket the
    listeners read from is closed.
    """

    def __init__(
        self,
        config: Optional[TelloConfig] = None,
        *,
        health: Optional[HealthReporter] = None,
        on_video_payload: Optional[FrameCallback] = None,
    ) -> None:
        self._config = config or load_config()
        self._health = health or HealthReporter(
            stale_after_seconds=self._config.telemetry.stale_after_seconds
        )
        self._on_video_payload = on_video_payload
        self._store = TelemetryStore()
        self._channels: Optional[TransportChannels] = None
        self._response_listener: Optional[ResponseListener] = None
        self._state_listener: Optional[StateListener] = None
        self._video_listener: Optional[VideoListener] = None
        self._dispatcher: Optional[CommandDispatcher] = None
        self._state = ClientState.DISCONNECTED
        self._device_info: Optional[DeviceInfo] = None
        self._health.watch_telemetry(self._store)

    @property
    def config(self) -> TelloConfig:
        return self._config

    @property
    def health(self) -> HealthReporter:
        return self._health

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ClientState.CONNECTED

    @property
    def command_endpoint(self) -> Optional[Endpoint]:
        if self._channels is None:
            return None
        return self._channels.command_endpoint

    @property
    def command_port(self) -> Optional[int]:
        if self._channels is None:
            return None
        return self._channels.command.local_port

    @property
    def state_port(self) -> Optional[int]:
        if self._channels is None:
            return None
        return self._channels.state.local_port

    @property
    def video_port(self) -> Optional[int]:
        if self._channels is None or self._channels.video is None:
            return None
        return self._channels.video.local_port

    @property
    def pending_responses(self) -> int:
        if self._response_listener is None:
            return 0
        return self._response_listener.pending

    @property
    def device_info(self) -> Optional[DeviceInfo]:
        return self._device_info

    @property
    def telemetry(self) -> TelemetryStore:
        return self._store

    async def __aenter__(self) -> "TelloClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _transition_state(self, state: ClientState) -> None:
        if state == self._state:
            return
        previous = self._state
        self._state = state
        LOGGER.debug("Client state %s -> %s", previous.value, state.value)
        self._health.set_client_state(
            state.value, connected=state == ClientState.CONNECTED
        )

    async def open(self) -> None:
        """Bind the channels and start the listeners without a handshake."""

        if self._state == ClientState.CLOSED:
            raise RuntimeError("A closed Tello client cannot be reopened")
        if self._channels is not None:
            return

        drone = self._config.drone
        commands = self._config.commands

        self._transition_state(ClientState.BINDING)
        try:
            channels = bind_channels(drone)
        except TelloError as exc:
            self._health.set_transport(False, str(exc))
            self._transition_state(ClientState.DISCONNECTED)
            raise
        self._channels = channels
        self._health.set_transport(True, f"command->{channels.command_endpoint}")

        receive_timeout = commands.receive_timeout_seconds
        self._response_listener = ResponseListener(
            channels.command,
            receive_timeout=receive_timeout,
            status_callback=self._health.record_status,
        )
        self._state_listener = StateListener(
            channels.state,
            self._store,
            required_fields=self._config.telemetry.required_fields,
            receive_timeout=receive_timeout,
            status_callback=self._health.record_status,
        )
        if channels.video is not None:
            if self._on_video_payload is None:
                LOGGER.warning("Video channel bound but no payload consumer given")
            else:
                self._video_listener = VideoListener(
                    channels.video,
                    self._on_video_payload,
                    receive_timeout=receive_timeout,
                    status_callback=self._health.record_status,
                )

        self._dispatcher = CommandDispatcher(
            channels.command,
            self._response_listener,
            default_policy=commands.retry_policy,
            discard_stale=commands.discard_stale_responses,
        )

        for listener in self._listeners():
            self._health.watch_listener(listener)
            listener.start()
        self._transition_state(ClientState.OPEN)

    async def connect(self) -> None:
        """Open the channels and enter SDK mode.

        Raises:
            BindError: A local port is taken.
            ResolveError: The drone address does not resolve.
            HandshakeError: The drone never answered ``command``.
        """

        if self._state == ClientState.CONNECTED:
            return

        try:
            await self.open()
            self._transition_state(ClientState.HANDSHAKING)
            assert self._dispatcher is not None
            assert self._response_listener is not None
            await perform_handshake(
                self._dispatcher,
                self._response_listener,
                self._config.handshake.retry_policy,
            )
            self._transition_state(ClientState.CONNECTED)

            if self._config.drone.query_info_on_connect:
                info = await self.fetch_device_info()
                for attr, _, label in DEVICE_INFO_QUERIES:
                    LOGGER.info("%-14s %s", f"{label}:", getattr(info, attr))
        except BaseException:
            await self.close()
            raise

    async def close(self) -> None:
        """Stop the listeners, then close every channel. Idempotent."""

        if self._state == ClientState.CLOSED:
            return
        self._transition_state(ClientState.STOPPING)

        for listener in self._listeners():
            await listener.stop()

        if self._channels is not None:
            self._channels.close()
            self._health.set_transport(False, "closed")
        self._transition_state(ClientState.CLOSED)
        LOGGER.info("Tello client closed")

    def _listeners(self) -> list:
        return [
            listener
            for listener in (
                self._response_listener,
                self._state_listener,
                self._video_listener,
            )
            if listener is not None
        ]

    def _require_dispatcher(self) -> CommandDispatcher:
        if self._dispatcher is None or self._state in (
            ClientState.STOPPING,
            ClientState.CLOSED,
        ):
            raise RuntimeError("Tello client is not open")
        return self._dispatcher

    async def send_command(self, text: str) -> None:
        """Send a command without waiting for the reply."""
        await self._require_dispatcher().send_command(text)

    async def send_command_await_response(
        self, text: str, policy: Optional[RetryPolicy] = None
    ) -> CommandResponse:
        """Send a command and return its reply (see :class:`CommandDispatcher`)."""
        return await self._require_dispatcher().send_command_await_response(
            text, policy
        )

    def get_response_nowait(self) -> Optional[CommandResponse]:
        return self._require_dispatcher().get_response_nowait()

    def get_state(self) -> Optional[TelemetrySnapshot]:
        """Return the latest complete telemetry snapshot, if one arrived yet."""
        return self._store.snapshot()

    async def fetch_device_info(
        self, policy: Optional[RetryPolicy] = None
    ) -> DeviceInfo:
        """Query serial number, SDK version, Wi-Fi SNR and battery level."""

        values: Dict[str, str] = {}
        for attr, command, _ in DEVICE_INFO_QUERIES:
            response = await self.send_command_await_response(command, policy)
            values[attr] = response.text
        self._device_info = DeviceInfo(**values)
        return self._device_info
