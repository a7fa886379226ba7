from datetime import datetime, timezone

from sqlalchemy import DateTime, bindparam
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC timestamp on every backend.

    PostgreSQL stores TIMESTAMP WITH TIME ZONE. SQLite has no timezone
    support, so values are stored as naive UTC and re-tagged on the way out.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, str):
            value = datetime.fromisoformat(value)
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def utc_param(key: str):
    """Typed bind parameter for text() statements that write timestamps."""
    return bindparam(key, type_=UTCDateTime())
