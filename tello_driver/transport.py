"""UDP channel binding for the command, telemetry and video sockets."""

from __future__ import annotations

import asyncio
import logging
import socket
from dataclasses import dataclass
from typing import Optional

from .config import DroneConfig
from .core.models import Endpoint
from .errors import BindError, ResolveError, SendError
from .logging import WIRE_LOGGER_NAME

LOGGER = logging.getLogger(__name__)
WIRE_LOGGER = logging.getLogger(WIRE_LOGGER_NAME)


class Channel:
    """A UDP socket bound to a local port, optionally tied to one remote endpoint."""

    def __init__(
        self, name: str, sock: socket.socket, remote: Optional[Endpoint] = None
    ) -> None:
        self.name = name
        self.remote = remote
        self._sock = sock
        self._closed = False
        self.local_port: int = sock.getsockname()[1]

    @property
    def socket(self) -> socket.socket:
        return self._sock

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, payload: bytes) -> None:
        """Send one datagram to the remote endpoint.

        Raises:
            SendError: If the channel has no remote, is closed, or the write fails.
        """

        if self.remote is None:
            raise SendError(f"{self.name} channel has no remote endpoint")
        if self._closed:
            raise SendError(f"{self.name} channel is closed")

        loop = asyncio.get_running_loop()
        try:
            await loop.sock_sendto(self._sock, payload, self.remote.as_address())
        except OSError as exc:
            raise SendError(
                f"Failed to send {len(payload)} bytes to {self.remote}: {exc}"
            ) from exc
        WIRE_LOGGER.debug("%s -> %s: %r", self.name, self.remote, payload)

    async def receive(self, bufsize: int, timeout: float) -> Optional[bytes]:
        """Receive one datagram, or None when ``timeout`` elapses first."""

        loop = asyncio.get_running_loop()
        try:
            data, address = await asyncio.wait_for(
                loop.sock_recvfrom(self._sock, bufsize), timeout=timeout
            )
        except asyncio.TimeoutError:
            return None
        WIRE_LOGGER.debug("%s <- %s:%s: %r", self.name, address[0], address[1], data)
        return data

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._sock.close()
        LOGGER.debug("Closed %s channel (local port %s)", self.name, self.local_port)


@dataclass(slots=True)
class TransportChannels:
    command: Channel
    state: Channel
    video: Optional[Channel] = None

    @property
    def command_endpoint(self) -> Endpoint:
        assert self.command.remote is not None
        return self.command.remote

    def close(self) -> None:
        for channel in (self.command, self.state, self.video):
            if channel is not None:
                channel.close()


def _open_bound_socket(bind_host: str, port: int, name: str) -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.bind((bind_host, port))
    except OSError as exc:
        sock.close()
        raise BindError(
            f"Cannot bind {name} socket to port {port}: {exc}", port=port
        ) from exc
    sock.setblocking(False)
    return sock


def resolve_endpoint(host: str, port: int) -> Endpoint:
    """Resolve ``host:port`` to an IPv4 datagram endpoint."""

    try:
        results = socket.getaddrinfo(
            host, port, family=socket.AF_INET, type=socket.SOCK_DGRAM
        )
    except (socket.gaierror, UnicodeError) as exc:
        raise ResolveError(f"Cannot resolve {host}:{port}: {exc}", host=host) from exc

    if not results:
        raise ResolveError(f"No address found for {host}:{port}", host=host)

    address = results[0][4]
    return Endpoint(host=address[0], port=address[1])


def bind_channels(config: DroneConfig) -> TransportChannels:
    """Open and bind every channel the driver needs.

    Raises:
        BindError: If a local port cannot be bound.
        ResolveError: If the drone address cannot be resolved.
    """

    opened: list[socket.socket] = []
    try:
        command_sock = _open_bound_socket(
            config.bind_host, config.local_command_port, "command"
        )
        opened.append(command_sock)
        remote = resolve_endpoint(config.host, config.command_port)
        command = Channel("command", command_sock, remote)

        state_sock = _open_bound_socket(config.bind_host, config.state_port, "state")
        opened.append(state_sock)
        state = Channel("state", state_sock)

        video: Optional[Channel] = None
        if config.video_enabled:
            video_sock = _open_bound_socket(
                config.bind_host, config.video_port, "video"
            )
            opened.append(video_sock)
            video = Channel("video", video_sock)
    except (BindError, ResolveError):
        for sock in opened:
            sock.close()
        raise

    LOGGER.info(
        "Bound command port %s (remote %s) and state port %s",
        command.local_port,
        remote,
        state.local_port,
    )
    return TransportChannels(command=command, state=state, video=video)
