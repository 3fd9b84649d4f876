import calendar
import logging
import random
import time
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from clinic_calendar.codec import CivilInstant, decode, decode_or_none, encode
from clinic_calendar.errors import MalformedTimestamp

SAMPLES = [
    CivilInstant(year=2025, month=8, day=25, hour=16, minute=0),
    CivilInstant(year=2025, month=1, day=1, hour=0, minute=0),
    CivilInstant(year=2024, month=12, day=31, hour=23, minute=59),
    CivilInstant(year=2024, month=2, day=29, hour=12, minute=30),
    # inside the US spring-forward gap and the EU fall-back overlap
    CivilInstant(year=2025, month=3, day=9, hour=2, minute=30),
    CivilInstant(year=2025, month=10, day=26, hour=2, minute=15),
]

OFFSETS = range(-12, 15)


def test_scenario_a_decode_and_reencode():
    wire = "2025-08-25T16:00:00Z"
    civil = decode(wire)
    assert civil == CivilInstant(year=2025, month=8, day=25, hour=16, minute=0)
    assert encode(civil) == wire


def test_decode_store_format_with_milliseconds():
    assert decode("2025-08-25T16:00:00.000Z") == CivilInstant(year=2025, month=8, day=25, hour=16)


def test_decode_naive_value_is_read_as_typed():
    assert decode("2025-08-25T16:00") == CivilInstant(year=2025, month=8, day=25, hour=16)


def test_decode_offset_value_uses_utc_fields():
    assert decode("2025-08-25T13:00:00-03:00") == CivilInstant(year=2025, month=8, day=25, hour=16)


def test_decode_drops_seconds():
    assert decode("2025-08-25T16:00:59Z").minute == 0


def test_decode_accepts_datetime_and_instant():
    civil = CivilInstant(year=2025, month=8, day=25, hour=16)
    assert decode(datetime(2025, 8, 25, 16, 0, tzinfo=timezone.utc)) == civil
    assert decode(civil) is civil


@pytest.mark.parametrize(
    "value",
    ["", "   ", "not-a-date", "2025-02-30T10:00:00Z", "2025-13-01T10:00:00Z", "25/08/2025 16:00", None, 1724601600],
)
def test_decode_rejects_malformed(value):
    with pytest.raises(MalformedTimestamp) as excinfo:
        decode(value)
    assert excinfo.value.value == value


def test_decode_or_none_logs_warning(caplog):
    with caplog.at_level(logging.WARNING, logger="clinic_calendar.codec"):
        assert decode_or_none("garbage", record_id="appt-9") is None
    assert "appt-9" in caplog.text


def test_civil_instant_rejects_impossible_day():
    with pytest.raises(ValueError):
        CivilInstant(year=2025, month=2, day=29)


@pytest.mark.parametrize("offset", OFFSETS)
@pytest.mark.parametrize("civil", SAMPLES, ids=str)
def test_round_trip_for_fixed_offset_observers(civil, offset):
    observer = timezone(timedelta(hours=offset))
    shown = civil.as_observer(observer)
    assert (shown.hour, shown.minute, shown.day) == (civil.hour, civil.minute, civil.day)
    # what the viewer's picker hands back goes out and comes back unchanged
    assert decode(encode(CivilInstant.from_datetime(shown))) == civil


@pytest.mark.parametrize("zone", ["America/New_York", "America/Sao_Paulo", "Europe/Berlin", "Pacific/Kiritimati", "Etc/GMT+12"])
@pytest.mark.parametrize("civil", SAMPLES, ids=str)
def test_round_trip_for_named_zones(civil, zone):
    shown = civil.as_observer(ZoneInfo(zone))
    assert CivilInstant.from_datetime(shown) == civil
    assert decode(encode(civil)) == civil


@pytest.mark.skipif(not hasattr(time, "tzset"), reason="time.tzset is POSIX only")
@pytest.mark.parametrize("offset", OFFSETS)
def test_round_trip_ignores_process_timezone(monkeypatch, offset):
    # POSIX TZ strings invert the sign: "XXX+3" is UTC-3
    monkeypatch.setenv("TZ", f"XXX{-offset:+d}")
    time.tzset()
    try:
        for civil in SAMPLES:
            assert decode(encode(civil)) == civil
        assert decode("2025-08-25T16:00:00Z").hour == 16
    finally:
        monkeypatch.undo()
        time.tzset()


def test_plus_minutes_crosses_day_without_zone_shift():
    late = CivilInstant(year=2025, month=12, day=31, hour=23, minute=30)
    assert late.plus_minutes(45) == CivilInstant(year=2026, month=1, day=1, hour=0, minute=15)


def test_instants_order_by_fields():
    assert sorted(reversed(SAMPLES))[0] == CivilInstant(year=2024, month=2, day=29, hour=12, minute=30)


def _random_instants(seed, count=200):
    rng = random.Random(seed)
    instants = []
    for _ in range(count):
        year = rng.choice([rng.randint(1, 999), rng.randint(1000, 9999)])
        month = rng.randint(1, 12)
        last = calendar.monthrange(year, month)[1]
        day = rng.choice([1, last, rng.randint(1, last)])
        instants.append(
            CivilInstant(year=year, month=month, day=day, hour=rng.randint(0, 23), minute=rng.randint(0, 59))
        )
    return instants


@pytest.mark.parametrize(
    "civil, wire",
    [
        (CivilInstant(year=1, month=1, day=1), "0001-01-01T00:00:00Z"),
        (CivilInstant(year=999, month=3, day=4, hour=5, minute=6), "0999-03-04T05:06:00Z"),
        (CivilInstant(year=9999, month=12, day=31, hour=23, minute=59), "9999-12-31T23:59:00Z"),
    ],
    ids=str,
)
def test_wire_year_is_always_four_digits(civil, wire):
    assert encode(civil) == wire
    assert decode(wire) == civil


@pytest.mark.parametrize("offset", OFFSETS)
@pytest.mark.parametrize("seed", [1, 7, 42])
def test_round_trip_over_whole_domain(seed, offset):
    observer = timezone(timedelta(hours=offset))
    for civil in _random_instants(seed):
        shown = civil.as_observer(observer)
        assert decode(encode(CivilInstant.from_datetime(shown))) == civil
