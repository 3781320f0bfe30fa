"""Tenant reference data: businesses, branches, staff, services and clients."""

from __future__ import annotations
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, Date, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from booking_engine.db.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from booking_engine.models.validators import non_negative, percentage, positive


class PaymentMode(str, Enum):
    """How a staff member is paid for a shift."""
    PERCENT_WITH_GUARANTEE = "percent_with_guarantee"
    PERCENT_ONLY = "percent_only"


class EntityType(str, Enum):
    """Entities that carry a rating."""
    BUSINESS = "business"
    BRANCH = "branch"
    STAFF = "staff"


class Business(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """A tenant: one salon or clinic brand."""

    __tablename__ = "businesses"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    branches = relationship("Branch", back_populates="business")


class Branch(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """A physical location of a business."""

    __tablename__ = "branches"

    business_id: Mapped[str] = mapped_column(ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    business = relationship("Business", back_populates="branches")
    staff = relationship("Staff", back_populates="branch")


class Staff(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Staff member (master) with the finance settings used by shift settlement."""

    __tablename__ = "staff"

    business_id: Mapped[str] = mapped_column(ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    branch_id: Mapped[str] = mapped_column(ForeignKey("branches.id", ondelete="CASCADE"), nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    percent_master: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("60"), nullable=False)
    percent_salon: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("40"), nullable=False)
    hourly_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    payment_mode: Mapped[str] = mapped_column(
        String(30), default=PaymentMode.PERCENT_WITH_GUARANTEE.value, nullable=False
    )

    branch = relationship("Branch", back_populates="staff")

    @validates("percent_master", "percent_salon")
    def _validate_percentage(self, key, value):
        return percentage(key, value)

    @validates("hourly_rate")
    def _validate_hourly_rate(self, key, value):
        return non_negative(key, value)


class Service(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """A bookable service offered at a branch."""

    __tablename__ = "services"

    branch_id: Mapped[str] = mapped_column(ForeignKey("branches.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    duration_min: Mapped[int] = mapped_column(Integer, default=60, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @validates("duration_min")
    def _validate_duration(self, key, value):
        return positive(key, value)

    @validates("price")
    def _validate_price(self, key, value):
        return non_negative(key, value)


class Client(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """End customer. Birth date drives the birthday promotion."""

    __tablename__ = "clients"

    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    birth_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
