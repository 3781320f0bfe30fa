# Services module

from booking_engine.services.slot_guard import SlotAvailabilityGuard
from booking_engine.services.booking_state_machine import BookingStateMachine
from booking_engine.services.promotion_engine import PromotionEngine
from booking_engine.services.promotion_catalog import PromotionCatalog
from booking_engine.services.shift_settlement import (
    ShiftSettlementCalculator,
    ShiftFinancials,
    calculate_shift_financials,
)
from booking_engine.services.rating_aggregator import (
    RatingAggregator,
    BatchReport,
    interpret_rating_score,
)
from booking_engine.services.notifications import NotificationDispatcher, build_notifier

__all__ = [
    "SlotAvailabilityGuard",
    "BookingStateMachine",
    "PromotionEngine",
    "PromotionCatalog",
    "ShiftSettlementCalculator",
    "ShiftFinancials",
    "calculate_shift_financials",
    "RatingAggregator",
    "BatchReport",
    "interpret_rating_score",
    "NotificationDispatcher",
    "build_notifier",
]
