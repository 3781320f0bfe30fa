"""Per-entity repositories: intention-revealing queries over the ORM models."""

from booking_engine.repositories.booking_repository import BookingRepository
from booking_engine.repositories.promotion_repository import PromotionRepository
from booking_engine.repositories.shift_repository import ShiftRepository
from booking_engine.repositories.rating_repository import RatingRepository

__all__ = [
    "BookingRepository",
    "PromotionRepository",
    "ShiftRepository",
    "RatingRepository",
]
