"""UTC datetime helpers.

All timestamps in the database are **naive** UTC datetimes (no tzinfo) so the
same columns work on SQLite and on PostgreSQL without ``timezone=True``.
Anything arriving from the outside world (ISO strings from the API, event
payloads) is folded into that representation with :func:`to_naive_utc`.
"""

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime."""
    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed to be UTC already."""
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def parse_timestamp(raw: str) -> datetime:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed) into naive UTC."""
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    return to_naive_utc(datetime.fromisoformat(raw))
