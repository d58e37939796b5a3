"""Domain models for commands and telemetry."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterator, Mapping, Optional, Union

TelemetryValue = Union[int, float, str]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class Endpoint:
    host: str
    port: int

    def as_address(self) -> tuple[str, int]:
        return (self.host, self.port)

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """How long to wait for a reply: ``max_attempts`` windows of ``delay`` seconds."""

    max_attempts: int
    delay: float

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delay < 0:
            raise ValueError("delay must not be negative")

    @property
    def budget_seconds(self) -> float:
        return self.max_attempts * self.delay


def is_ok_response(text: str) -> bool:
    """Return True when a response reports success.

    The drone answers ``ok`` on success and ``error``/an error code otherwise.
    Blank text never counts as success.
    """

    trimmed = text.strip()
    if not trimmed:
        return False
    return "ok" in trimmed.lower()


@dataclass(frozen=True, slots=True)
class CommandResponse:
    text: str
    received_at: datetime = field(default_factory=_utcnow)

    @property
    def ok(self) -> bool:
        return is_ok_response(self.text)

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True, slots=True)
class TelemetrySnapshot:
    """The most recent complete telemetry record pushed by the drone."""

    values: Mapping[str, TelemetryValue]
    sequence: int
    received_at: datetime = field(default_factory=_utcnow)

    def __getitem__(self, key: str) -> TelemetryValue:
        return self.values[key]

    def __contains__(self, key: object) -> bool:
        return key in self.values

    def __iter__(self) -> Iterator[str]:
        return iter(self.values)

    def __len__(self) -> int:
        return len(self.values)

    def get(
        self, key: str, default: Optional[TelemetryValue] = None
    ) -> Optional[TelemetryValue]:
        return self.values.get(key, default)

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        reference = now or _utcnow()
        return (reference - self.received_at).total_seconds()


@dataclass(slots=True)
class DeviceInfo:
    serial_number: str
    sdk_version: str
    wifi_snr: str
    battery: str

    def as_dict(self) -> dict[str, str]:
        return {
            "serial_number": self.serial_number,
            "sdk_version": self.sdk_version,
            "wifi_snr": self.wifi_snr,
            "battery": self.battery,
        }
