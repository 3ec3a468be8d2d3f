"""
Timestamp utilities (stdlib-only).

SQLite stores naive datetimes, so everything written to the local store
is naive UTC; everything sent over the wire is ISO 8601 with a ``Z``
suffix.
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


def utc_now_naive() -> datetime:
    """Current UTC time without tzinfo, for SQLite ``DATETIME`` columns."""
    return utc_now().replace(tzinfo=None)


def to_iso8601(dt: datetime | None) -> str | None:
    """Convert datetime to ISO 8601 string; naive values are taken as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat().replace("+00:00", "Z")
