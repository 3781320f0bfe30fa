"""Time helpers shared by the services."""

from datetime import date, datetime, timezone
from typing import Optional

from booking_engine.core.config import settings
from booking_engine.core.errors import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resolve_now(now: Optional[datetime]) -> datetime:
    """Services accept an explicit ``now`` so callers and tests control the clock."""
    if now is None:
        return utcnow()
    return ensure_aware(now, "now")


def ensure_aware(value: datetime, field: str) -> datetime:
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        raise ValidationError(f"{field} must be timezone-aware", code="NAIVE_DATETIME")
    return value.astimezone(timezone.utc)


def local_date(value: datetime) -> date:
    """Calendar date of an instant in the business timezone."""
    return value.astimezone(settings.tz).date()
