"""UTC datetime utilities.

Timestamps are stored and compared as **naive** UTC datetimes (no tzinfo),
compatible with SQLAlchemy ``DateTime`` columns and with the ISO strings kept
in document payloads.
"""

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime."""
    return datetime.now(UTC).replace(tzinfo=None)


def to_iso(value: datetime | None) -> str | None:
    """Serialize a naive UTC datetime for a document payload."""
    if value is None:
        return None
    return value.isoformat()


def from_iso(value: str | datetime | None) -> datetime | None:
    """Parse a document timestamp back into a naive UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(UTC).replace(tzinfo=None)
    return parsed
