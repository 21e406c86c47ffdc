from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest
from factories import at

from activity_correlator.errors import InvalidRangeError, ValidationError
from activity_correlator.timeutil import parse_timestamp, resolve_period, resolve_timezone

NOW = at(15, 30, day=datetime(2024, 3, 6, tzinfo=timezone.utc))  # Wednesday


@pytest.mark.parametrize(
    ("period", "expected_start", "expected_end"),
    [
        ("today", datetime(2024, 3, 6, tzinfo=timezone.utc), NOW),
        ("yesterday", datetime(2024, 3, 5, tzinfo=timezone.utc), datetime(2024, 3, 6, tzinfo=timezone.utc)),
        ("this_week", datetime(2024, 3, 4, tzinfo=timezone.utc), NOW),
        ("last_week", datetime(2024, 2, 26, tzinfo=timezone.utc), datetime(2024, 3, 4, tzinfo=timezone.utc)),
        ("last_7_days", datetime(2024, 2, 28, tzinfo=timezone.utc), NOW),
        ("last_30_days", datetime(2024, 2, 5, tzinfo=timezone.utc), NOW),
    ],
)
def test_named_periods(period, expected_start, expected_end):
    assert resolve_period(period, timezone.utc, now=NOW) == (expected_start, expected_end)


def test_today_in_a_local_timezone():
    tz = ZoneInfo("America/New_York")
    start, end = resolve_period("today", tz, now=NOW)
    assert start == datetime(2024, 3, 6, tzinfo=tz)
    assert end == NOW


def test_custom_period_validates_range():
    with pytest.raises(ValidationError):
        resolve_period("custom", timezone.utc, custom_start=NOW)
    with pytest.raises(InvalidRangeError):
        resolve_period("custom", timezone.utc, custom_start=NOW, custom_end=NOW)
    with pytest.raises(ValidationError):
        resolve_period("fortnight", timezone.utc, now=NOW)


def test_parse_timestamp_variants():
    assert parse_timestamp("2024-03-04T09:00:00Z") == at(9)
    assert parse_timestamp("2024-03-04T10:00:00+01:00") == at(9)
    assert parse_timestamp(date(2024, 3, 4)) == at(0)
    assert parse_timestamp("2024-03-04 09:00:00") == at(9)
    assert parse_timestamp("yesterday") is None
    assert parse_timestamp(None) is None


def test_unknown_timezone():
    assert resolve_timezone(None) is timezone.utc
    with pytest.raises(ValidationError):
        resolve_timezone("Nowhere/Special")
