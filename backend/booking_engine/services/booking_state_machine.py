"""Booking State Machine - guarded status transitions.

    hold ──confirm──▶ confirmed ──attended──▶ paid
      │                   │      └─no show──▶ no_show
      └──────cancel───────┴────────────────▶ cancelled

Attendance on a booking that is already paid/no_show is a no-op success.
Marking a booking paid applies at most one promotion inside a savepoint of
the same transaction: if the promotion step fails only its writes are rolled
back, the booking still becomes paid and the failure is reported alongside.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from booking_engine.core.errors import (
    FutureBookingError,
    InvalidTransitionError,
    NotFoundError,
    PromotionEvaluationError,
)
from booking_engine.core.metrics import metrics
from booking_engine.core.timeutils import resolve_now
from booking_engine.models import Booking, BookingStatus, TERMINAL_ATTENDANCE_STATUSES
from booking_engine.repositories.booking_repository import BookingRepository
from booking_engine.repositories.promotion_repository import PromotionRepository
from booking_engine.schemas.bookings import AttendanceResult
from booking_engine.services.notifications import NotificationDispatcher
from booking_engine.services.promotion_engine import PromotionEngine

logger = logging.getLogger(__name__)


def _notification_payload(booking: Booking) -> Dict[str, Any]:
    return {
        "booking_id": booking.id,
        "branch_id": booking.branch_id,
        "staff_id": booking.staff_id,
        "client_id": booking.client_id,
        "start_at": booking.start_at.isoformat(),
        "status": booking.status,
    }


class BookingStateMachine:
    """Moves bookings between statuses, enforcing the transition guards."""

    def __init__(
        self,
        db: Session,
        promotion_engine: Optional[PromotionEngine] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
    ):
        self.db = db
        self.bookings = BookingRepository(db)
        self.referrals = PromotionRepository(db)
        self.promotions = promotion_engine or PromotionEngine(db)
        self.dispatcher = dispatcher or NotificationDispatcher()

    def get(self, booking_id: str) -> Booking:
        booking = self.bookings.get(booking_id)
        if booking is None:
            raise NotFoundError("Booking", booking_id)
        return booking

    def _get_locked(self, booking_id: str) -> Booking:
        booking = self.bookings.get_for_update(booking_id)
        if booking is None:
            raise NotFoundError("Booking", booking_id)
        return booking

    def confirm(self, booking_id: str, now: Optional[datetime] = None) -> Booking:
        """hold -> confirmed. An expired hold is released and cannot be confirmed."""
        now = resolve_now(now)
        booking = self._get_locked(booking_id)

        if booking.hold_expired(now):
            booking.status = BookingStatus.CANCELLED.value
            booking.cancelled_at = now
            self.db.commit()
            metrics.inc("booking_holds_released_total")
            logger.info("Hold %s expired at %s, released", booking.id, booking.hold_expires_at.isoformat())
            raise InvalidTransitionError(
                "Hold has expired, reserve the slot again",
                current_status=BookingStatus.HOLD.value,
                target_status=BookingStatus.CONFIRMED.value,
                code="HOLD_EXPIRED",
            )

        if booking.status != BookingStatus.HOLD.value:
            self.db.rollback()
            raise InvalidTransitionError(
                f"Cannot confirm a booking in status '{booking.status}'",
                current_status=booking.status,
                target_status=BookingStatus.CONFIRMED.value,
            )

        booking.status = BookingStatus.CONFIRMED.value
        booking.confirmed_at = now
        booking.hold_expires_at = None
        self.db.commit()
        logger.info("Booking %s confirmed", booking.id)

        self.dispatcher.publish("booking.confirmed", _notification_payload(booking))
        return booking

    def mark_attendance(self, booking_id: str, attended: bool, now: Optional[datetime] = None) -> AttendanceResult:
        """confirmed -> paid (attended) or no_show.

        Raises:
            InvalidTransitionError: booking is not confirmed.
            FutureBookingError: the booking has not started yet.
        """
        now = resolve_now(now)
        booking = self._get_locked(booking_id)

        if booking.status in TERMINAL_ATTENDANCE_STATUSES:
            self.db.rollback()
            logger.debug("Attendance for booking %s already recorded as %s", booking.id, booking.status)
            return AttendanceResult(
                booking_id=booking.id,
                status=BookingStatus(booking.status),
                promotion_applied=booking.promotion_applied,
                changed=False,
            )

        if booking.status != BookingStatus.CONFIRMED.value:
            self.db.rollback()
            target = BookingStatus.PAID if attended else BookingStatus.NO_SHOW
            raise InvalidTransitionError(
                f"Cannot mark attendance for a booking in status '{booking.status}'",
                current_status=booking.status,
                target_status=target.value,
            )

        if booking.start_at > now:
            self.db.rollback()
            raise FutureBookingError("Attendance cannot be marked before the booking starts")

        if not attended:
            booking.status = BookingStatus.NO_SHOW.value
            booking.attended_at = now
            self.db.commit()
            logger.info("Booking %s marked as no-show", booking.id)
            return AttendanceResult(booking_id=booking.id, status=BookingStatus.NO_SHOW)

        booking.status = BookingStatus.PAID.value
        booking.attended_at = now
        if booking.client_id:
            for referral in self.referrals.pending_referrals_for_referred(booking.client_id):
                referral.referred_booking_id = booking.id
        # Status must reach the database before the savepoint opens
        self.db.flush()

        applied = None
        promotion_error = None
        savepoint = self.db.begin_nested()
        try:
            result = self.promotions.apply(booking, now)
            savepoint.commit()
            if result is not None:
                applied = result.to_record()
        except Exception as e:
            savepoint.rollback()
            error = PromotionEvaluationError(f"Promotion evaluation failed: {e.__class__.__name__}")
            promotion_error = error.message
            metrics.inc("promotion_failures_total")
            logger.error("Promotion evaluation failed for booking %s: %s", booking.id, e, exc_info=True)

        self.db.commit()
        logger.info("Booking %s marked as paid (promotion: %s)", booking.id, applied["promotion_type"] if applied else None)
        return AttendanceResult(
            booking_id=booking.id,
            status=BookingStatus.PAID,
            promotion_applied=applied,
            promotion_error=promotion_error,
        )

    def cancel(self, booking_id: str, now: Optional[datetime] = None) -> Booking:
        """hold|confirmed -> cancelled. Cancelling twice is a no-op."""
        now = resolve_now(now)
        booking = self._get_locked(booking_id)

        if booking.status == BookingStatus.CANCELLED.value:
            self.db.rollback()
            return booking

        if booking.status in TERMINAL_ATTENDANCE_STATUSES:
            self.db.rollback()
            raise InvalidTransitionError(
                f"Cannot cancel a booking in status '{booking.status}'",
                current_status=booking.status,
                target_status=BookingStatus.CANCELLED.value,
            )

        booking.status = BookingStatus.CANCELLED.value
        booking.cancelled_at = now
        booking.hold_expires_at = None
        self.db.commit()
        logger.info("Booking %s cancelled", booking.id)

        self.dispatcher.publish("booking.cancelled", _notification_payload(booking))
        return booking
