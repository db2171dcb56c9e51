"""Tests for time reference parsing."""

from datetime import datetime, timedelta, timezone

import pytest

from brainstore.timeutil import format_relative_time, parse_cutoff, parse_time_reference

NOW = datetime(2025, 3, 15, 12, 30, 0, tzinfo=timezone.utc)


def test_named_references():
    assert parse_time_reference("now", NOW) == NOW
    assert parse_time_reference("today", NOW) == datetime(2025, 3, 15, tzinfo=timezone.utc)
    assert parse_time_reference("yesterday", NOW) == datetime(2025, 3, 14, tzinfo=timezone.utc)
    assert parse_time_reference("last week", NOW) == NOW - timedelta(weeks=1)
    assert parse_time_reference("last month", NOW) == datetime(2025, 2, 15, 12, 30, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "ref, expected",
    [
        ("30 seconds ago", NOW - timedelta(seconds=30)),
        ("1 hour ago", NOW - timedelta(hours=1)),
        ("2 days ago", NOW - timedelta(days=2)),
        ("3 weeks ago", NOW - timedelta(weeks=3)),
        ("1 month ago", datetime(2025, 2, 15, 12, 30, tzinfo=timezone.utc)),
        ("2 years ago", datetime(2023, 3, 15, 12, 30, tzinfo=timezone.utc)),
        ("  5 Minutes Ago ", NOW - timedelta(minutes=5)),
    ],
)
def test_relative_references(ref, expected):
    assert parse_time_reference(ref, NOW) == expected


def test_iso_dates_are_utc():
    assert parse_time_reference("2025-01-15") == datetime(2025, 1, 15, tzinfo=timezone.utc)
    assert parse_time_reference("2025-01-15T14:30:00") == datetime(2025, 1, 15, 14, 30, tzinfo=timezone.utc)


def test_unparseable_reference():
    with pytest.raises(ValueError):
        parse_time_reference("whenever", NOW)


def test_parse_cutoff():
    assert parse_cutoff(7, NOW) == NOW - timedelta(days=7)
    assert parse_cutoff("0.5", NOW) == NOW - timedelta(hours=12)
    assert parse_cutoff("2 days ago", NOW) == NOW - timedelta(days=2)
    with pytest.raises(ValueError):
        parse_cutoff(-1, NOW)
    with pytest.raises(ValueError):
        parse_cutoff(True, NOW)


def test_format_relative_time():
    assert format_relative_time(NOW - timedelta(seconds=5), NOW) == "5 seconds ago"
    assert format_relative_time(NOW - timedelta(minutes=1), NOW) == "1 minute ago"
    assert format_relative_time(NOW - timedelta(hours=3), NOW) == "3 hours ago"
    assert format_relative_time(NOW - timedelta(days=2), NOW) == "2 days ago"
    assert format_relative_time(NOW - timedelta(days=400), NOW) == "1 year ago"
    assert format_relative_time(NOW + timedelta(days=1), NOW) == "in the future"
