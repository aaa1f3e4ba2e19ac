"""
Unit tests for the store clock.
"""

import re
from datetime import datetime, timedelta, timezone

from learnstore.store.clock import (
    ManualClock,
    SystemClock,
    format_timestamp,
    parse_timestamp,
)

TIMESTAMP_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{6}Z$")


class TestTimestamps:
    """Tests for timestamp formatting and parsing."""

    def test_format_aware(self):
        """Aware datetimes are converted to UTC."""
        moment = datetime(2024, 1, 1, 9, 0, tzinfo=timezone(timedelta(hours=9)))
        assert format_timestamp(moment) == "2024-01-01T00:00:00.000000Z"

    def test_format_naive_is_utc(self):
        """Naive datetimes are taken as UTC."""
        assert format_timestamp(datetime(2024, 5, 6, 7, 8, 9, 10)) == "2024-05-06T07:08:09.000010Z"

    def test_parse_z_suffix(self):
        """Z and offset forms parse to the same instant."""
        assert parse_timestamp("2024-01-01T00:00:00Z") == parse_timestamp(
            "2024-01-01T09:00:00+09:00"
        )

    def test_lexicographic_order_matches_time(self):
        """Fixed-width timestamps sort in time order."""
        earlier = format_timestamp(datetime(2024, 1, 1, 23, 59, 59, 999999))
        later = format_timestamp(datetime(2024, 1, 2))
        assert earlier < later


class TestClocks:
    """Tests for SystemClock and ManualClock."""

    def test_system_clock_format(self):
        """System clock produces store timestamps."""
        assert TIMESTAMP_RE.match(SystemClock().now())

    def test_manual_clock_advance(self):
        """Manual clock moves only when told to."""
        clock = ManualClock("2024-01-01T00:00:00.000000Z")
        assert clock.now() == "2024-01-01T00:00:00.000000Z"

        clock.advance(seconds=5)
        assert clock.now() == "2024-01-01T00:00:05.000000Z"

        clock.advance(days=-1)
        assert clock.now() == "2023-12-31T00:00:05.000000Z"

    def test_manual_clock_set(self):
        """Manual clock can jump to any instant."""
        clock = ManualClock()
        clock.set("2030-01-01T00:00:00Z")
        assert clock.now() == "2030-01-01T00:00:00.000000Z"
