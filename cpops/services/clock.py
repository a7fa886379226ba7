# cpops/services/clock.py
from datetime import datetime, timezone
from typing import Optional, Union


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Union[datetime, str, None]) -> Optional[datetime]:
    """
    Normalise a timestamp read through text() SQL.
    PostgreSQL hands back aware datetimes; SQLite hands back naive UTC strings.
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def elapsed_seconds(start: datetime, end: datetime) -> int:
    """Whole seconds from start to end, floored at zero."""
    return max(0, int((end - start).total_seconds()))
