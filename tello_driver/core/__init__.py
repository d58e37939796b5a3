"""Core primitives for tello-driver."""

from .models import (
    CommandResponse,
    DeviceInfo,
    Endpoint,
    RetryPolicy,
    TelemetrySnapshot,
    TelemetryValue,
    is_ok_response,
)
from .protocols import DatagramSender, ResponseSource

__all__ = [
    "CommandResponse",
    "DatagramSender",
    "DeviceInfo",
    "Endpoint",
    "ResponseSource",
    "RetryPolicy",
    "TelemetrySnapshot",
    "TelemetryValue",
    "is_ok_response",
]
