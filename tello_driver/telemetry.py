"""Telemetry parsing and the shared snapshot store.

The drone pushes its state unsolicited, roughly ten times per second, as a
single line of ``key:value;`` pairs::

    mid:-1;x:0;y:0;z:0;mpry:0,0,0;pitch:0;roll:0;yaw:0;vgx:0;vgy:0;vgz:0;
    templ:60;temph:62;tof:10;h:0;bat:87;baro:12.34;time:12;agx:-3.00;...

Parsing is atomic: either every segment converts and a full record is
returned, or :class:`TelemetryParseError` is raised and nothing is returned.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from threading import Lock
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional

from .core.models import TelemetrySnapshot, TelemetryValue
from .errors import TelemetryParseError

LOGGER = logging.getLogger(__name__)

INTEGER_FIELDS = frozenset(
    {
        "mid",
        "x",
        "y",
        "z",
        "pitch",
        "roll",
        "yaw",
        "vgx",
        "vgy",
        "vgz",
        "templ",
        "temph",
        "tof",
        "h",
        "bat",
        "time",
    }
)

FLOAT_FIELDS = frozenset({"baro", "agx", "agy", "agz"})

# Comma separated pad coordinates; kept verbatim.
STRING_FIELDS = frozenset({"mpry"})

DEFAULT_REQUIRED_FIELDS: tuple[str, ...] = ("bat", "time")


def _infer_value(raw: str) -> TelemetryValue:
    try:
        return int(raw)
    except ValueError:
        pass
    try:
        value = float(raw)
    except ValueError:
        return raw
    return value if math.isfinite(value) else raw


def _finite_float(key: str, raw: str) -> float:
    value = float(raw)
    if not math.isfinite(value):
        raise TelemetryParseError(
            f"Field {key!r} has non-finite value {raw!r}", field=key
        )
    return value


def _coerce_value(key: str, raw: str) -> TelemetryValue:
    if key in STRING_FIELDS:
        return raw
    try:
        if key in INTEGER_FIELDS:
            # Some firmware revisions print integers with a decimal part.
            try:
                return int(raw)
            except ValueError:
                return int(_finite_float(key, raw))
        if key in FLOAT_FIELDS:
            return _finite_float(key, raw)
    except TelemetryParseError:
        raise
    except ValueError as exc:
        raise TelemetryParseError(
            f"Field {key!r} has non-numeric value {raw!r}", field=key
        ) from exc
    return _infer_value(raw)


def parse_state(
    raw: str, *, required: Iterable[str] = ()
) -> Dict[str, TelemetryValue]:
    """Parse one telemetry datagram into a field mapping.

    Args:
        raw: Decoded datagram text, e.g. ``"bat:87;h:10;baro:12.5;"``.
        required: Field names that must be present for the record to count.

    Raises:
        TelemetryParseError: If a segment is malformed, a typed field does not
            convert, or a required field is missing.
    """

    text = raw.strip()
    if not text:
        raise TelemetryParseError("Empty telemetry datagram")

    record: Dict[str, TelemetryValue] = {}
    for segment in text.split(";"):
        segment = segment.strip()
        if not segment:
            continue
        key, separator, value = segment.partition(":")
        key = key.strip()
        if not separator:
            raise TelemetryParseError(
                f"Segment {segment!r} has no ':' separator", field=key or None
            )
        if not key:
            raise TelemetryParseError(f"Segment {segment!r} has an empty key")
        record[key] = _coerce_value(key, value.strip())

    if not record:
        raise TelemetryParseError("Telemetry datagram contained no fields")

    missing = [name for name in required if name not in record]
    if missing:
        raise TelemetryParseError(
            f"Missing required field(s): {', '.join(missing)}", field=missing[0]
        )

    return record


def format_state_table(values: Mapping[str, TelemetryValue], padding: int = 10) -> str:
    """Render a snapshot as the two-column table used by the CLI."""

    width = max([padding, *(len(str(key)) + 2 for key in values)])
    value_width = max([padding, *(len(str(value)) + 2 for value in values.values())])
    border = f"+{'-' * (width + 2)}+{'-' * (value_width + 2)}+"
    lines = [border]
    for key, value in values.items():
        lines.append(f"|  {key:<{width}}|  {value!s:<{value_width}}|")
    lines.append(border)
    return "\n".join(lines)


class TelemetryStore:
    """Hold the latest telemetry snapshot for readers on any thread.

    The state listener is the only writer; it swaps in a new immutable
    snapshot under the lock, so readers see either the previous or the new
    record, never a mix.
    """

    def __init__(self) -> None:
        self._snapshot: Optional[TelemetrySnapshot] = None
        self._sequence = 0
        self._discarded = 0
        self._lock = Lock()

    def replace(
        self,
        values: Mapping[str, TelemetryValue],
        *,
        received_at: Optional[datetime] = None,
    ) -> TelemetrySnapshot:
        extra = {} if received_at is None else {"received_at": received_at}
        frozen = MappingProxyType(dict(values))
        with self._lock:
            self._sequence += 1
            snapshot = TelemetrySnapshot(
                values=frozen, sequence=self._sequence, **extra
            )
            self._snapshot = snapshot
        return snapshot

    def record_discard(self) -> None:
        with self._lock:
            self._discarded += 1

    def snapshot(self) -> Optional[TelemetrySnapshot]:
        with self._lock:
            return self._snapshot

    @property
    def sequence(self) -> int:
        with self._lock:
            return self._sequence

    @property
    def discarded(self) -> int:
        with self._lock:
            return self._discarded
