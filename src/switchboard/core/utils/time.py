"""Shared time helpers.

Messages carry integer Unix seconds on the wire; ``unix_seconds`` keeps the
conversion from the client libraries' datetimes in one place.
"""

from __future__ import annotations

from datetime import UTC, datetime


def unix_seconds(value: datetime | int | float | None) -> int:
    """Convert a datetime (naive values are treated as UTC) to Unix seconds."""
    if value is None:
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return int(value.timestamp())
