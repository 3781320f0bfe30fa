"""Booking repository - database operations for bookings."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, insert, literal, select, update
from sqlalchemy.orm import Session

from booking_engine.models import ACTIVE_STATUSES, Booking, BookingStatus


class BookingRepository:
    """Queries and writes against the ``bookings`` table."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, booking_id: str) -> Optional[Booking]:
        return self.db.get(Booking, booking_id)

    def get_for_update(self, booking_id: str) -> Optional[Booking]:
        """Load a booking with a row lock (no-op on SQLite)."""
        return (
            self.db.query(Booking)
            .filter(Booking.id == booking_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def _overlap_query(self, staff_id: str, start_at: datetime, end_at: datetime):
        # Half-open intervals: back-to-back bookings do not overlap
        return select(Booking.id).where(
            Booking.staff_id == staff_id,
            Booking.status.in_(ACTIVE_STATUSES),
            Booking.start_at < end_at,
            Booking.end_at > start_at,
        )

    def find_active_for_staff_in_range(self, staff_id: str, start_at: datetime, end_at: datetime) -> List[Booking]:
        """Hold/confirmed bookings of the staff member overlapping [start_at, end_at)."""
        return (
            self.db.query(Booking)
            .filter(
                Booking.staff_id == staff_id,
                Booking.status.in_(ACTIVE_STATUSES),
                Booking.start_at < end_at,
                Booking.end_at > start_at,
            )
            .order_by(Booking.start_at)
            .all()
        )

    def insert_hold_if_free(self, values: Dict[str, Any]) -> bool:
        """Insert a booking row only when no active booking overlaps it.

        Check and insert are one ``INSERT ... SELECT ... WHERE NOT EXISTS``
        statement, so two concurrent attempts cannot both see a free slot.
        Returns False when the slot was taken.
        """
        table = Booking.__table__
        columns = list(values)
        overlap = self._overlap_query(values["staff_id"], values["start_at"], values["end_at"])
        row = select(
            *[literal(values[name], table.c[name].type).label(name) for name in columns]
        ).where(~overlap.exists())
        result = self.db.execute(insert(table).from_select(columns, row))
        return result.rowcount == 1

    def release_expired_holds(self, now: datetime, staff_id: Optional[str] = None) -> int:
        """Cancel holds whose TTL has passed. Returns the number released."""
        stmt = (
            update(Booking)
            .where(
                Booking.status == BookingStatus.HOLD.value,
                Booking.hold_expires_at.is_not(None),
                Booking.hold_expires_at <= now,
            )
            .values(status=BookingStatus.CANCELLED.value, cancelled_at=now)
            .execution_options(synchronize_session=False)
        )
        if staff_id is not None:
            stmt = stmt.where(Booking.staff_id == staff_id)
        result = self.db.execute(stmt)
        return result.rowcount or 0

    def count_paid_visits(self, client_id: str, branch_id: str, exclude_booking_id: Optional[str] = None) -> int:
        """Completed (paid) visits of a client at a branch."""
        query = self.db.query(func.count(Booking.id)).filter(
            Booking.client_id == client_id,
            Booking.branch_id == branch_id,
            Booking.status == BookingStatus.PAID.value,
        )
        if exclude_booking_id is not None:
            query = query.filter(Booking.id != exclude_booking_id)
        return query.scalar() or 0

    def list_paid_for_staff_between(self, staff_id: str, start_at: datetime, end_at: datetime) -> List[Booking]:
        """Paid bookings of a staff member that started within [start_at, end_at)."""
        return (
            self.db.query(Booking)
            .filter(
                Booking.staff_id == staff_id,
                Booking.status == BookingStatus.PAID.value,
                Booking.start_at >= start_at,
                Booking.start_at < end_at,
            )
            .order_by(Booking.start_at)
            .all()
        )
