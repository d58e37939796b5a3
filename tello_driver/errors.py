"""Error types raised by the Tello driver."""

from __future__ import annotations


class TelloError(Exception):
    """Base class for every error raised by tello-driver."""


class BindError(TelloError):
    """A local UDP port could not be bound."""

    def __init__(self, reason: str, *, port: int | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.port = port


class ResolveError(TelloError):
    """The remote command address could not be resolved."""

    def __init__(self, reason: str, *, host: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.host = host


class SendError(TelloError):
    """Writing a command datagram failed at the transport level."""


class CommandTimeoutError(TelloError, TimeoutError):
    """No response arrived within the retry budget of a command."""

    def __init__(self, command: str, attempts: int) -> None:
        super().__init__(
            f"No response to {command!r} after {attempts} attempt(s)"
        )
        self.command = command
        self.attempts = attempts


class HandshakeError(TelloError):
    """The drone never acknowledged the SDK mode command.

    Unlike :class:`CommandTimeoutError` this means the device is unreachable.
    """

    def __init__(self, attempts: int) -> None:
        super().__init__(
            f"Drone did not answer the SDK handshake after {attempts} attempt(s)"
        )
        self.attempts = attempts


class TelemetryParseError(TelloError, ValueError):
    """A telemetry datagram could not be turned into a record."""

    def __init__(self, reason: str, *, field: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.field = field
