"""Collaborator ports the engine consumes: working hours and day metrics."""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import List, Protocol

from sqlalchemy.orm import Session

from booking_engine.core.money import to_decimal
from booking_engine.repositories.rating_repository import RatingRepository


class WorkingHoursProvider(Protocol):
    def is_within_working_hours(self, staff_id: str, branch_id: str, start_at: datetime, end_at: datetime) -> bool:
        ...


class AlwaysOpenSchedule:
    """Accepts every interval. Branch schedules are managed elsewhere."""

    def is_within_working_hours(self, staff_id: str, branch_id: str, start_at: datetime, end_at: datetime) -> bool:
        return True


@dataclass(frozen=True)
class DayMetrics:
    """Normalised 0-100 sub-scores for one day."""
    metric_date: date
    reviews: Decimal
    productivity: Decimal
    loyalty: Decimal
    discipline: Decimal


class MetricsProvider(Protocol):
    def day_metrics(self, entity_type: str, entity_id: str, start: date, end: date) -> List[DayMetrics]:
        ...


class TableMetricsProvider:
    """Reads day metrics from the ``entity_day_metrics`` table."""

    def __init__(self, db: Session):
        self.repo = RatingRepository(db)

    def day_metrics(self, entity_type: str, entity_id: str, start: date, end: date) -> List[DayMetrics]:
        return [
            DayMetrics(
                metric_date=row.metric_date,
                reviews=to_decimal(row.reviews_score),
                productivity=to_decimal(row.productivity_score),
                loyalty=to_decimal(row.loyalty_score),
                discipline=to_decimal(row.discipline_score),
            )
            for row in self.repo.metrics_between(entity_type, entity_id, start, end)
        ]
