"""Booking model and its slot-exclusivity constraint."""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import DDL, JSON, ForeignKey, Index, Numeric, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from booking_engine.db.base import Base, TimestampMixin, UTCDateTime, UUIDPrimaryKeyMixin
from booking_engine.models.validators import non_negative, validate_dict


class BookingStatus(str, Enum):
    """Booking lifecycle states."""
    HOLD = "hold"
    CONFIRMED = "confirmed"
    PAID = "paid"
    NO_SHOW = "no_show"
    CANCELLED = "cancelled"


# Statuses that occupy the staff member's calendar
ACTIVE_STATUSES = (BookingStatus.HOLD.value, BookingStatus.CONFIRMED.value)
TERMINAL_ATTENDANCE_STATUSES = (BookingStatus.PAID.value, BookingStatus.NO_SHOW.value)


class Booking(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """A reservation of one staff member for one service over [start_at, end_at)."""

    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_staff_status_start", "staff_id", "status", "start_at"),
        Index("ix_bookings_client_branch_status", "client_id", "branch_id", "status"),
        Index("ix_bookings_status_hold_expires", "status", "hold_expires_at"),
    )

    business_id: Mapped[str] = mapped_column(ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False)
    branch_id: Mapped[str] = mapped_column(ForeignKey("branches.id", ondelete="CASCADE"), nullable=False)
    service_id: Mapped[str] = mapped_column(ForeignKey("services.id", ondelete="RESTRICT"), nullable=False)
    staff_id: Mapped[str] = mapped_column(ForeignKey("staff.id", ondelete="RESTRICT"), nullable=False)
    client_id: Mapped[Optional[str]] = mapped_column(ForeignKey("clients.id", ondelete="SET NULL"), nullable=True)

    start_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=BookingStatus.HOLD.value, nullable=False)

    # Price snapshot taken from the service when the slot was reserved
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)

    hold_expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    attended_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Single promotion outcome, never a list
    promotion_applied: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    staff = relationship("Staff")
    service = relationship("Service")
    client = relationship("Client")

    @validates("price")
    def _validate_price(self, key, value):
        return non_negative(key, value)

    @validates("promotion_applied")
    def _validate_promotion(self, key, value):
        return validate_dict(key, value)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def hold_expired(self, now: datetime) -> bool:
        return (
            self.status == BookingStatus.HOLD.value
            and self.hold_expires_at is not None
            and self.hold_expires_at <= now
        )


# PostgreSQL enforces exclusivity itself; other dialects rely on the
# conditional insert in SlotAvailabilityGuard.
BTREE_GIST_EXTENSION = DDL("CREATE EXTENSION IF NOT EXISTS btree_gist")
BOOKING_NO_OVERLAP = DDL(
    "ALTER TABLE bookings ADD CONSTRAINT bookings_staff_no_overlap "
    "EXCLUDE USING gist (staff_id WITH =, tstzrange(start_at, end_at, '[)') WITH &&) "
    "WHERE (status IN ('hold', 'confirmed'))"
)

event.listen(Booking.__table__, "before_create", BTREE_GIST_EXTENSION.execute_if(dialect="postgresql"))
event.listen(Booking.__table__, "after_create", BOOKING_NO_OVERLAP.execute_if(dialect="postgresql"))
