"""Staff shift and its settlement line items."""

from __future__ import annotations
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import Boolean, Date, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from booking_engine.db.base import Base, TimestampMixin, UTCDateTime, UUIDPrimaryKeyMixin
from booking_engine.models.organization import PaymentMode
from booking_engine.models.validators import non_negative, percentage

ZERO = Decimal("0")


class ShiftStatus(str, Enum):
    """Shift status."""
    OPEN = "open"
    CLOSED = "closed"


class Shift(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """A staff member's working day, reconciled into master/salon shares on close."""

    __tablename__ = "staff_shifts"
    __table_args__ = (
        UniqueConstraint("staff_id", "shift_date", name="uq_staff_shift_date"),
    )

    staff_id: Mapped[str] = mapped_column(ForeignKey("staff.id", ondelete="CASCADE"), nullable=False)
    branch_id: Mapped[str] = mapped_column(ForeignKey("branches.id", ondelete="CASCADE"), nullable=False, index=True)
    shift_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), default=ShiftStatus.OPEN.value, nullable=False)
    opened_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    closed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    hours_worked: Mapped[Decimal] = mapped_column(Numeric(6, 2), default=ZERO, nullable=False)
    hours_overridden: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=ZERO, nullable=False)
    consumables_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=ZERO, nullable=False)

    # Finance settings snapshotted from Staff when the shift opens
    percent_master: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("60"), nullable=False)
    percent_salon: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("40"), nullable=False)
    hourly_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    payment_mode: Mapped[str] = mapped_column(
        String(30), default=PaymentMode.PERCENT_WITH_GUARANTEE.value, nullable=False
    )

    master_share: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=ZERO, nullable=False)
    salon_share: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=ZERO, nullable=False)
    guaranteed_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=ZERO, nullable=False)
    topup_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=ZERO, nullable=False)

    items: Mapped[List["ShiftItem"]] = relationship(
        "ShiftItem", back_populates="shift", cascade="all, delete-orphan", order_by="ShiftItem.created_at"
    )

    @validates("percent_master", "percent_salon")
    def _validate_percentage(self, key, value):
        return percentage(key, value)

    @validates("hours_worked", "hourly_rate", "total_amount", "consumables_amount")
    def _validate_non_negative(self, key, value):
        return non_negative(key, value)

    @property
    def is_closed(self) -> bool:
        return self.status == ShiftStatus.CLOSED.value


class ShiftItem(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """One served client within a shift. Frozen once the shift closes."""

    __tablename__ = "staff_shift_items"

    shift_id: Mapped[str] = mapped_column(ForeignKey("staff_shifts.id", ondelete="CASCADE"), nullable=False, index=True)
    # A paid booking is folded into at most one shift item
    booking_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True, unique=True
    )
    client_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    service_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    service_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=ZERO, nullable=False)
    consumables_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=ZERO, nullable=False)

    shift = relationship("Shift", back_populates="items")

    @validates("service_amount", "consumables_amount")
    def _validate_amount(self, key, value):
        return non_negative(key, value)
