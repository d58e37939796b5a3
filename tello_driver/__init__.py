"""Asyncio driver for the Tello UDP text protocol."""

from .client import ClientState, TelloClient
from .config import TelloConfig, load_config
from .core.models import (
    CommandResponse,
    DeviceInfo,
    Endpoint,
    RetryPolicy,
    TelemetrySnapshot,
)
from .errors import (
    BindError,
    CommandTimeoutError,
    HandshakeError,
    ResolveError,
    SendError,
    TelemetryParseError,
    TelloError,
)
from .telemetry import parse_state
from .version import __version__

__all__ = [
    "BindError",
    "ClientState",
    "CommandResponse",
    "CommandTimeoutError",
    "DeviceInfo",
    "Endpoint",
    "HandshakeError",
    "ResolveError",
    "RetryPolicy",
    "SendError",
    "TelemetryParseError",
    "TelemetrySnapshot",
    "TelloClient",
    "TelloConfig",
    "TelloError",
    "__version__",
    "load_config",
    "parse_state",
]
