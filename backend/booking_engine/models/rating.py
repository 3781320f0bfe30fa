"""Rating configuration, day-level metrics, computed scores and batch errors."""

from __future__ import annotations
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, Date, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, validates

from booking_engine.db.base import Base, TimestampMixin, UTCDateTime, UUIDPrimaryKeyMixin
from booking_engine.models.validators import day_window, percentage


class RatingConfig(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Global weighting of the four sub-scores. Exactly one row is active."""

    __tablename__ = "rating_configs"
    __table_args__ = (
        Index(
            "uq_rating_configs_single_active",
            "is_active",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    reviews_weight: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    productivity_weight: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    loyalty_weight: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    discipline_weight: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    window_days: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    valid_from: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @validates("reviews_weight", "productivity_weight", "loyalty_weight", "discipline_weight")
    def _validate_weight(self, key, value):
        return percentage(key, value)

    @validates("window_days")
    def _validate_window(self, key, value):
        return day_window(key, value)


class EntityDayMetric(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Normalised 0-100 sub-scores for one entity on one day."""

    __tablename__ = "entity_day_metrics"
    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", "metric_date", name="uq_entity_day_metric"),
    )

    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False)
    metric_date: Mapped[date] = mapped_column(Date, nullable=False)
    reviews_score: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"), nullable=False)
    productivity_score: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"), nullable=False)
    loyalty_score: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"), nullable=False)
    discipline_score: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"), nullable=False)

    @validates("reviews_score", "productivity_score", "loyalty_score", "discipline_score")
    def _validate_score(self, key, value):
        return percentage(key, value)


class RatingScore(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Derived score for an entity as of ``metric_date``."""

    __tablename__ = "rating_scores"
    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", "metric_date", name="uq_rating_score_entity_date"),
    )

    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False)
    metric_date: Mapped[date] = mapped_column(Date, nullable=False)
    score: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    config_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("rating_configs.id", ondelete="SET NULL"), nullable=True
    )
    days_with_metrics: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    computed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class RatingRecalcError(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """One failed entity in a recalculation batch."""

    __tablename__ = "rating_recalc_errors"

    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    metric_date: Mapped[date] = mapped_column(Date, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
