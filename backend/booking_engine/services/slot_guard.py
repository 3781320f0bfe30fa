"""Slot Availability Guard - exclusive reservation of a staff member's time.

A hold is created by one conditional INSERT that only writes the row when no
hold/confirmed booking of the same staff member overlaps the requested
interval. On PostgreSQL the ``bookings_staff_no_overlap`` exclusion constraint
backs the same rule, so two instances racing for one slot cannot both win:
the loser sees zero inserted rows or an IntegrityError and gets a
SlotConflictError with nothing written.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from booking_engine.core.config import Settings, settings
from booking_engine.core.errors import NotFoundError, SlotConflictError, ValidationError
from booking_engine.core.metrics import metrics
from booking_engine.core.money import to_money
from booking_engine.core.timeutils import ensure_aware, resolve_now
from booking_engine.db.base import new_id
from booking_engine.models import Booking, BookingStatus, Client, Service, Staff
from booking_engine.repositories.booking_repository import BookingRepository
from booking_engine.services.schedule import AlwaysOpenSchedule, WorkingHoursProvider

logger = logging.getLogger(__name__)


class SlotAvailabilityGuard:
    """Reserves (staff, interval) slots as bookings in ``hold``."""

    def __init__(
        self,
        db: Session,
        schedule: Optional[WorkingHoursProvider] = None,
        config: Settings = settings,
    ):
        self.db = db
        self.bookings = BookingRepository(db)
        self.schedule = schedule or AlwaysOpenSchedule()
        self.config = config

    def reserve(
        self,
        staff_id: str,
        branch_id: str,
        service_id: str,
        start: datetime,
        duration_minutes: Optional[int] = None,
        client_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """Reserve a slot and return the new booking id.

        Raises:
            ValidationError: naive or past start, bad duration, staff not
                working at the branch or outside working hours.
            NotFoundError: unknown staff, service or client.
            SlotConflictError: the interval overlaps an active booking.
        """
        now = resolve_now(now)
        start = ensure_aware(start, "start")
        if start < now:
            raise ValidationError("Cannot reserve a slot in the past", code="START_IN_PAST")

        staff = self.db.get(Staff, staff_id)
        if staff is None:
            raise NotFoundError("Staff", staff_id)
        if not staff.is_active:
            raise ValidationError("Staff member is not active", code="STAFF_INACTIVE")
        if staff.branch_id != branch_id:
            raise ValidationError("Staff member does not work at this branch", code="STAFF_NOT_IN_BRANCH")

        service = self.db.get(Service, service_id)
        if service is None or service.branch_id != branch_id or not service.is_active:
            raise NotFoundError("Service", service_id)

        if client_id is not None and self.db.get(Client, client_id) is None:
            raise NotFoundError("Client", client_id)

        duration = duration_minutes if duration_minutes is not None else service.duration_min
        if duration < 1 or duration > self.config.max_booking_duration_minutes:
            raise ValidationError(
                f"Duration must be between 1 and {self.config.max_booking_duration_minutes} minutes",
                code="INVALID_DURATION",
            )
        end = start + timedelta(minutes=duration)

        if not self.schedule.is_within_working_hours(staff_id, branch_id, start, end):
            raise ValidationError("Requested time is outside the staff working hours", code="OUTSIDE_WORKING_HOURS")

        booking_id = new_id()
        values = {
            "id": booking_id,
            "business_id": staff.business_id,
            "branch_id": branch_id,
            "service_id": service_id,
            "staff_id": staff_id,
            "client_id": client_id,
            "start_at": start,
            "end_at": end,
            "status": BookingStatus.HOLD.value,
            "price": to_money(service.price),
            "hold_expires_at": now + timedelta(minutes=self.config.hold_ttl_minutes),
        }

        try:
            released = self.bookings.release_expired_holds(now, staff_id=staff_id)
            inserted = self.bookings.insert_hold_if_free(values)
            if not inserted:
                self.db.rollback()
                self._conflict(staff_id, start, end)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            self._conflict(staff_id, start, end)

        if released:
            metrics.inc("booking_holds_released_total", released)
        metrics.inc("bookings_reserved_total")
        logger.info(
            "Reserved slot for staff %s %s-%s as booking %s",
            staff_id, start.isoformat(), end.isoformat(), booking_id,
        )
        return booking_id

    def _conflict(self, staff_id: str, start: datetime, end: datetime):
        metrics.inc("booking_slot_conflicts_total")
        logger.info("Slot conflict for staff %s %s-%s", staff_id, start.isoformat(), end.isoformat())
        raise SlotConflictError(staff_id)

    def find_conflicts(self, staff_id: str, start: datetime, end: datetime) -> List[Booking]:
        """Active bookings of the staff member overlapping [start, end)."""
        start = ensure_aware(start, "start")
        end = ensure_aware(end, "end")
        if end <= start:
            raise ValidationError("end must be after start", code="INVALID_INTERVAL")
        return self.bookings.find_active_for_staff_in_range(staff_id, start, end)

    def release_expired_holds(self, now: Optional[datetime] = None) -> int:
        """Cancel every hold whose TTL has passed. Safe to run from several cron hosts."""
        now = resolve_now(now)
        released = self.bookings.release_expired_holds(now)
        self.db.commit()
        if released:
            metrics.inc("booking_holds_released_total", released)
            logger.info("Released %d expired holds", released)
        return released
