"""Tolerant timestamp parsing for recency signals."""

from datetime import UTC, datetime
from typing import Any

# Epoch values above this are treated as milliseconds
_MILLISECOND_THRESHOLD = 1e11

SECONDS_PER_DAY = 24 * 60 * 60


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a datetime, epoch seconds/milliseconds, or ISO-8601 string.

    Naive datetimes are assumed to be UTC. Unparseable values give None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        seconds = value / 1000 if value > _MILLISECOND_THRESHOLD else value
        try:
            return datetime.fromtimestamp(seconds, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return None


def age_in_days(value: Any, now: datetime | None = None) -> float | None:
    """Age of ``value`` in fractional days, or None if it cannot be parsed."""
    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    reference = now or datetime.now(UTC)
    return (reference - parsed).total_seconds() / SECONDS_PER_DAY
