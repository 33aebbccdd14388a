from __future__ import annotations

from datetime import datetime, timezone


def to_utc(value: datetime) -> datetime:
    # Naive timestamps are taken to be UTC already.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def resolve_event_time(value: datetime | None) -> datetime:
    """Timestamp sent by the caller, or the server clock when none was sent.

    Only the HTTP layer calls this; services always receive explicit times.
    """
    if value is None:
        return datetime.now(timezone.utc)
    return to_utc(value)
