"""
Wall-clock capability for the store.

Every timestamp the store writes comes from an injected Clock so tests can
control time. Timestamps are ISO-8601 UTC text with microseconds and a
trailing ``Z``; at fixed width they sort lexicographically in time order.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Protocol

from ..schema.timestamps import (
    TIMESTAMP_FORMAT,
    format_timestamp,
    normalize_timestamp,
    parse_timestamp,
)

__all__ = [
    "TIMESTAMP_FORMAT",
    "Clock",
    "ManualClock",
    "SystemClock",
    "format_timestamp",
    "normalize_timestamp",
    "parse_timestamp",
]


class Clock(Protocol):
    def now(self) -> str:
        """Current time as store timestamp text."""
        ...


class SystemClock:
    """Clock backed by the system's UTC time."""

    def now(self) -> str:
        return format_timestamp(datetime.now(timezone.utc))


class ManualClock:
    """Clock that only moves when told to.

    Example:
        >>> clock = ManualClock("2024-01-01T00:00:00.000000Z")
        >>> clock.advance(seconds=5)
        >>> clock.now()
        '2024-01-01T00:00:05.000000Z'
    """

    def __init__(self, start: str | datetime = "2024-01-01T00:00:00.000000Z") -> None:
        self._current = parse_timestamp(start) if isinstance(start, str) else start
        if self._current.tzinfo is None:
            self._current = self._current.replace(tzinfo=timezone.utc)
        self._lock = threading.Lock()

    def now(self) -> str:
        with self._lock:
            return format_timestamp(self._current)

    def advance(self, seconds: float = 0.0, **kwargs: float) -> None:
        """Move the clock by a timedelta; negative values move it backwards."""
        with self._lock:
            self._current += timedelta(seconds=seconds, **kwargs)

    def set(self, value: str | datetime) -> None:
        with self._lock:
            moment = parse_timestamp(value) if isinstance(value, str) else value
            if moment.tzinfo is None:
                moment = moment.replace(tzinfo=timezone.utc)
            self._current = moment
