"""Last-write-wins conflict rule shared by every entity category."""

from __future__ import annotations

from datetime import UTC, datetime


def as_utc(value: datetime) -> datetime:
    """Return *value* as an aware datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def is_remote_newer(local: datetime | None, remote: datetime | None) -> bool:
    """Decide whether an incoming version beats the local one.

    An absent remote timestamp never wins, an absent local one always loses,
    otherwise the strictly later instant wins and ties keep the local copy.
    """
    if remote is None:
        return False
    if local is None:
        return True
    return as_utc(remote) > as_utc(local)


def latest(*values: datetime | None) -> datetime | None:
    """Return the latest of the given timestamps, ignoring ``None``."""
    present = [as_utc(v) for v in values if v is not None]
    return max(present) if present else None
