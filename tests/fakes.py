"""Test doubles for the drone side of the protocol."""

import asyncio
import socket
import time
from pathlib import Path
from typing import Callable, Optional, Union

from tello_driver.config import TelloConfig, load_config

SDK_STATE_LINE = (
    "mid:-1;x:0;y:0;z:0;mpry:0,0,0;pitch:0;roll:0;yaw:0;vgx:0;vgy:0;vgz:0;"
    "templ:60;temph:62;tof:10;h:0;bat:87;baro:12.34;time:12;agx:-3.00;"
    "agy:1.00;agz:-999.00;\r\n"
)

DEFAULT_REPLIES = {
    "command": "ok",
    "sn?": "0TQDG2KEDB4YZ3",
    "sdk?": "20",
    "wifi?": "90",
    "battery?": "87",
}

Reply = Union[None, str, tuple[str, float]]


class FakeTelloProtocol(asyncio.DatagramProtocol):
    """Loopback stand-in for the drone's command port."""

    def __init__(self, responder: Callable[[str], Reply]) -> None:
        self.responder = responder
        self.commands: list[str] = []
        self.timestamps: list[float] = []
        self.client_address: Optional[tuple[str, int]] = None
        self.transport: Optional[asyncio.DatagramTransport] = None

    def connection_made(self, transport) -> None:
        self.transport = transport

    def datagram_received(self, data: bytes, addr) -> None:
        text = data.decode("utf-8")
        self.commands.append(text)
        self.timestamps.append(time.monotonic())
        self.client_address = addr

        reply = self.responder(text)
        if reply is None or self.transport is None:
            return
        if isinstance(reply, tuple):
            payload, delay = reply
            asyncio.get_running_loop().call_later(
                delay, self.transport.sendto, payload.encode("utf-8"), addr
            )
        else:
            self.transport.sendto(reply.encode("utf-8"), addr)


class FakeTello:
    def __init__(self) -> None:
        self.silent = False
        self.replies: dict[str, Reply] = dict(DEFAULT_REPLIES)
        self.protocol = FakeTelloProtocol(self._respond)
        self.port = 0
        self._transport: Optional[asyncio.DatagramTransport] = None
        self._state_sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)

    def _respond(self, text: str) -> Reply:
        if self.silent:
            return None
        return self.replies.get(text, "ok")

    @property
    def commands(self) -> list[str]:
        return self.protocol.commands

    @property
    def timestamps(self) -> list[float]:
        return self.protocol.timestamps

    async def start(self) -> None:
        loop = asyncio.get_running_loop()
        transport, _ = await loop.create_datagram_endpoint(
            lambda: self.protocol, local_addr=("127.0.0.1", 0)
        )
        self._transport = transport
        self.port = transport.get_extra_info("sockname")[1]

    def push_state(self, line: str, port: int) -> None:
        self._state_sock.sendto(line.encode("utf-8"), ("127.0.0.1", port))

    def close(self) -> None:
        if self._transport is not None:
            self._transport.close()
        self._state_sock.close()


def make_config(tmp_path: Path, command_port: int) -> TelloConfig:
    config = load_config(tmp_path / "tello-driver.cfg", environ={})
    config.drone.host = "127.0.0.1"
    config.drone.command_port = command_port
    config.drone.local_command_port = 0
    config.drone.state_port = 0
    config.drone.query_info_on_connect = False
    config.commands.max_attempts = 10
    config.commands.delay_seconds = 0.05
    config.commands.receive_timeout_seconds = 0.05
    config.handshake.max_attempts = 3
    config.handshake.interval_seconds = 0.05
    return config


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)
