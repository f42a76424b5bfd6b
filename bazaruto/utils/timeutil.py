"""Small datetime helpers shared by entities, repositories and services."""

import itertools
from datetime import datetime, timezone
from typing import Any, Optional

DAYS_PER_YEAR = 365.0
SECONDS_PER_DAY = 86400.0

_number_sequence = itertools.count(1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_datetime(value: Any) -> Optional[datetime]:
    """Accept a datetime or an ISO string (as written by ``json.dumps(default=str)``)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    return ensure_aware(datetime.fromisoformat(str(value).replace("Z", "+00:00")))


def days_between(start: datetime, end: datetime) -> float:
    return (ensure_aware(end) - ensure_aware(start)).total_seconds() / SECONDS_PER_DAY


def years_between(start: datetime, end: datetime) -> float:
    return days_between(start, end) / DAYS_PER_YEAR


def make_number(prefix: str, now: Optional[datetime] = None) -> str:
    """Human-readable business key, e.g. ``P-20240315103000-0001``."""
    now = now or utcnow()
    seq = next(_number_sequence) % 10000
    return f"{prefix}-{now.strftime('%Y%m%d%H%M%S')}-{seq:04d}"
