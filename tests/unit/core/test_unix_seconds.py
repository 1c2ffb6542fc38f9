from datetime import UTC, datetime, timedelta, timezone

from switchboard.core.utils.time import unix_seconds


def test_aware_datetime():
    assert unix_seconds(datetime(2024, 1, 1, tzinfo=UTC)) == 1704067200


def test_naive_datetime_is_utc():
    assert unix_seconds(datetime(2024, 1, 1)) == 1704067200


def test_other_timezone():
    tz = timezone(timedelta(hours=2))
    assert unix_seconds(datetime(2024, 1, 1, 2, tzinfo=tz)) == 1704067200


def test_numbers_and_none():
    assert unix_seconds(1700000000.9) == 1700000000
    assert unix_seconds(None) == 0
