"""Tests for timestamp formatting and parsing."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from kbindex import timestamps

UTC = timezone.utc


def test_to_sql_converts_to_utc():
    cest = timezone(timedelta(hours=2))
    assert timestamps.to_sql(datetime(2024, 5, 15, 14, 30, 5, 999, tzinfo=cest)) == (
        "2024-05-15 12:30:05"
    )


def test_to_sql_naive_taken_as_utc():
    assert timestamps.to_sql(datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02 03:04:05"


@pytest.mark.parametrize(
    "value,expected",
    [
        ("2024-05-15 12:00:00", datetime(2024, 5, 15, 12, tzinfo=UTC)),
        ("2024-05-15T14:00:00+02:00", datetime(2024, 5, 15, 12, tzinfo=UTC)),
        ("Wed, 15 May 2024 12:00:00 GMT", datetime(2024, 5, 15, 12, tzinfo=UTC)),
        (datetime(2024, 5, 15, 12), datetime(2024, 5, 15, 12, tzinfo=UTC)),
    ],
)
def test_parse_formats(value, expected):
    assert timestamps.parse(value) == expected


@pytest.mark.parametrize("value", [None, "", "   ", "yesterday"])
def test_parse_unusable_is_none(value):
    assert timestamps.parse(value) is None


def test_utcnow_is_aware():
    assert timestamps.utcnow().tzinfo is not None
