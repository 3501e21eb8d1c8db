from datetime import datetime, timezone
from typing import Optional


# Timestamps are stored as naive UTC so SQLite and Postgres columns agree.
def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None
