"""Branch promotions, per-client usage counters and referral relationships."""

from __future__ import annotations
from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, Boolean, Date, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from booking_engine.db.base import Base, TimestampMixin, UTCDateTime, UUIDPrimaryKeyMixin
from booking_engine.models.validators import non_negative, validate_dict


class PromotionType(str, Enum):
    """Supported promotion kinds."""
    FREE_AFTER_N_VISITS = "free_after_n_visits"
    REFERRAL_FREE = "referral_free"
    REFERRAL_DISCOUNT_50 = "referral_discount_50"
    BIRTHDAY_DISCOUNT = "birthday_discount"
    FIRST_VISIT_DISCOUNT = "first_visit_discount"


# Highest priority first. Exactly one eligible promotion is applied per booking.
PROMOTION_PRECEDENCE = (
    PromotionType.REFERRAL_FREE,
    PromotionType.REFERRAL_DISCOUNT_50,
    PromotionType.BIRTHDAY_DISCOUNT,
    PromotionType.FIRST_VISIT_DISCOUNT,
    PromotionType.FREE_AFTER_N_VISITS,
)


class Promotion(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Branch-scoped promotion. ``params`` holds the type-specific settings."""

    __tablename__ = "promotions"

    branch_id: Mapped[str] = mapped_column(ForeignKey("branches.id", ondelete="CASCADE"), nullable=False, index=True)
    promotion_type: Mapped[str] = mapped_column(String(40), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    params: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    valid_from: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    valid_to: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    usages = relationship("ClientPromotionUsage", back_populates="promotion")

    @validates("params")
    def _validate_params(self, key, value):
        return validate_dict(key, value)


class ClientPromotionUsage(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """How many times a client has benefited from a promotion."""

    __tablename__ = "client_promotion_usage"
    __table_args__ = (
        UniqueConstraint("client_id", "promotion_id", name="uq_client_promotion_usage"),
    )

    client_id: Mapped[str] = mapped_column(ForeignKey("clients.id", ondelete="CASCADE"), nullable=False)
    promotion_id: Mapped[str] = mapped_column(ForeignKey("promotions.id", ondelete="CASCADE"), nullable=False, index=True)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_used_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    last_booking_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True
    )

    promotion = relationship("Promotion", back_populates="usages")

    @validates("usage_count")
    def _validate_usage_count(self, key, value):
        return non_negative(key, value)


class ClientReferral(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Referrer brought the referred client in.

    The referrer's bonus becomes available once ``referred_booking_id`` is set,
    i.e. after the referred client's first paid visit, and is spent once.
    """

    __tablename__ = "client_referrals"
    __table_args__ = (
        UniqueConstraint("referrer_id", "referred_id", name="uq_client_referral_pair"),
    )

    referrer_id: Mapped[str] = mapped_column(ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True)
    referred_id: Mapped[str] = mapped_column(ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True)
    referred_booking_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True
    )
    referrer_booking_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True
    )
    referrer_bonus_used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
