"""SQLAlchemy models."""

from booking_engine.models.organization import (
    Business,
    Branch,
    Staff,
    Service,
    Client,
    PaymentMode,
    EntityType,
)
from booking_engine.models.booking import (
    Booking,
    BookingStatus,
    ACTIVE_STATUSES,
    TERMINAL_ATTENDANCE_STATUSES,
)
from booking_engine.models.promotion import (
    Promotion,
    PromotionType,
    PROMOTION_PRECEDENCE,
    ClientPromotionUsage,
    ClientReferral,
)
from booking_engine.models.shift import Shift, ShiftItem, ShiftStatus
from booking_engine.models.rating import (
    RatingConfig,
    EntityDayMetric,
    RatingScore,
    RatingRecalcError,
)

__all__ = [
    "Business",
    "Branch",
    "Staff",
    "Service",
    "Client",
    "PaymentMode",
    "EntityType",
    "Booking",
    "BookingStatus",
    "ACTIVE_STATUSES",
    "TERMINAL_ATTENDANCE_STATUSES",
    "Promotion",
    "PromotionType",
    "PROMOTION_PRECEDENCE",
    "ClientPromotionUsage",
    "ClientReferral",
    "Shift",
    "ShiftItem",
    "ShiftStatus",
    "RatingConfig",
    "EntityDayMetric",
    "RatingScore",
    "RatingRecalcError",
]
