"""
Store timestamp text.

Every timestamp the store holds is ISO-8601 UTC with microseconds and a
trailing ``Z``. At that fixed width, text order is time order, so SQL
comparisons and ORDER BY work on the raw column.
"""

from __future__ import annotations

from datetime import datetime, timezone

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def format_timestamp(moment: datetime) -> str:
    """Render a datetime as store timestamp text (naive values are taken as UTC)."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """Parse store timestamp text (or any ISO-8601 form) into an aware UTC datetime.

    Raises:
        ValueError: If value is not an ISO-8601 timestamp
    """
    if not isinstance(value, str):
        raise ValueError(f"Timestamp must be a string, got {type(value).__name__}")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def normalize_timestamp(value: str) -> str:
    """Rewrite any ISO-8601 timestamp as store timestamp text.

    Raises:
        ValueError: If value is not an ISO-8601 timestamp
    """
    return format_timestamp(parse_timestamp(value))
