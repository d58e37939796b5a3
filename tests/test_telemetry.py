import threading

import pytest

from tello_driver.errors import TelemetryParseError
from tello_driver.telemetry import TelemetryStore, format_state_table, parse_state

from fakes import SDK_STATE_LINE


def test_parse_state_infers_types_for_unknown_fields():
    record = parse_state("a:1;b:2.5;c:text;")

    assert record == {"a": 1, "b": 2.5, "c": "text"}
    assert isinstance(record["a"], int)
    assert isinstance(record["b"], float)
    assert "" not in record


def test_parse_state_mission_pad_line():
    record = parse_state("mid:-1;x:0;y:0;z:0;bat:87;time:12;")

    assert record["mid"] == -1
    assert record["bat"] == 87
    assert record["time"] == 12
    assert record["x"] == 0 and record["y"] == 0 and record["z"] == 0
    assert len(record) == 6


def test_parse_state_full_sdk_line_uses_declared_types():
    record = parse_state(SDK_STATE_LINE)

    assert record["mpry"] == "0,0,0"
    assert record["baro"] == pytest.approx(12.34)
    assert isinstance(record["baro"], float)
    assert record["agz"] == pytest.approx(-999.0)
    assert isinstance(record["templ"], int)
    assert record["tof"] == 10


def test_parse_state_float_declared_field_keeps_float_type():
    record = parse_state("agx:3;bat:50;")

    assert record["agx"] == 3.0
    assert isinstance(record["agx"], float)


def test_parse_state_integer_field_with_decimal_part():
    assert parse_state("h:10.0;")["h"] == 10


def test_parse_state_keeps_colons_in_value():
    assert parse_state("note:a:b;")["note"] == "a:b"


@pytest.mark.parametrize(
    "raw",
    [
        "",
        "   \r\n",
        ";;;",
        "bat87;",
        ":5;",
        "bat:inf;time:1;",
        "h:1e400;bat:1;time:1;",
        "baro:nan;bat:1;time:1;",
        "baro:-inf;bat:1;time:1;",
    ],
)
def test_parse_state_rejects_malformed_datagrams(raw):
    with pytest.raises(TelemetryParseError):
        parse_state(raw)


def test_parse_state_fails_atomically_on_bad_numeric_field():
    with pytest.raises(TelemetryParseError) as excinfo:
        parse_state("h:12;bat:full;time:3;")

    assert excinfo.value.field == "bat"


def test_parse_state_reports_missing_required_fields():
    with pytest.raises(TelemetryParseError) as excinfo:
        parse_state("h:12;time:3;", required=("bat", "time"))

    assert excinfo.value.field == "bat"
    assert "bat" in str(excinfo.value)


def test_store_replaces_snapshot_whole():
    store = TelemetryStore()
    assert store.snapshot() is None

    first = store.replace({"bat": 90, "h": 0})
    second = store.replace({"bat": 89})

    assert first.sequence == 1
    assert second.sequence == 2
    current = store.snapshot()
    assert current is second
    assert dict(current.values) == {"bat": 89}
    assert "h" not in current
    # The earlier snapshot is left untouched.
    assert dict(first.values) == {"bat": 90, "h": 0}


def test_store_snapshot_is_read_only():
    store = TelemetryStore()
    snapshot = store.replace({"bat": 90})

    with pytest.raises(TypeError):
        snapshot.values["bat"] = 1  # type: ignore[index]


def test_store_readers_never_see_mixed_records():
    store = TelemetryStore()
    store.replace({"a": 0, "b": 0})
    stop = threading.Event()
    mismatches: list[tuple] = []

    def reader() -> None:
        while not stop.is_set():
            snapshot = store.snapshot()
            if snapshot["a"] != snapshot["b"]:
                mismatches.append((snapshot["a"], snapshot["b"]))

    threads = [threading.Thread(target=reader) for _ in range(4)]
    for thread in threads:
        thread.start()
    for value in range(1, 2000):
        store.replace({"a": value, "b": value})
    stop.set()
    for thread in threads:
        thread.join()

    assert mismatches == []
    assert store.sequence == 2000


def test_format_state_table_lists_every_field():
    table = format_state_table({"bat": 87, "baro": 12.34})
    lines = table.splitlines()

    assert lines[0].startswith("+") and lines[-1] == lines[0]
    assert "bat" in lines[1] and "87" in lines[1]
    assert "baro" in lines[2] and "12.34" in lines[2]


def test_parse_state_names_field_with_infinite_value():
    with pytest.raises(TelemetryParseError) as excinfo:
        parse_state("h:1e400;bat:1;time:1;")

    assert excinfo.value.field == "h"
    assert "non-finite" in str(excinfo.value)


def test_parse_state_keeps_non_finite_unknown_field_as_text():
    assert parse_state("extra:inf;bat:1;time:1;")["extra"] == "inf"
