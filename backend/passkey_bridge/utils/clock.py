"""Time helpers.

Timestamps are stored as naive UTC so they compare cleanly on every
backend (SQLite drops tzinfo on the way back out).
"""

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(UTC).replace(tzinfo=None)


def isoformat_z(value: datetime) -> str:
    """Render a naive-UTC timestamp as ISO 8601 with a ``Z`` suffix."""
    return value.isoformat(timespec="milliseconds") + "Z"
