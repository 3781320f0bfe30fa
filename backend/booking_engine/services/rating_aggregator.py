"""Rating Aggregator - weighted entity scores from day-level metrics.

For an entity and a date the score is computed over the inclusive window
[as_of - window_days, as_of]: each of the four sub-scores (reviews,
productivity, loyalty, discipline) is averaged over the days that have
metrics, the averages are weighted by the active RatingConfig and divided
by 100. Entities without any metrics get the neutral default score.

Batch recalculation commits each entity separately. A failing entity is
rolled back, written to the recalculation error log and skipped; the batch
carries on with the next one.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Callable, List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from booking_engine.core.config import Settings, settings
from booking_engine.core.errors import BatchPartialFailure, BookingEngineError, NotFoundError, ValidationError
from booking_engine.core.metrics import metrics
from booking_engine.core.money import HUNDRED, ZERO, to_decimal, to_money
from booking_engine.core.timeutils import local_date, resolve_now
from booking_engine.models import EntityType, RatingConfig, RatingRecalcError
from booking_engine.repositories.rating_repository import RatingRepository
from booking_engine.schemas.ratings import RatingWeights
from booking_engine.services.schedule import DayMetrics, MetricsProvider, TableMetricsProvider

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS = RatingWeights(reviews=35, productivity=25, loyalty=20, discipline=20)
WEIGHT_TOLERANCE = 0.01
MAX_DAYS_BACK = 365


@dataclass
class RatingState:
    """How a stored score should be read by callers."""
    state: str  # "uninitialized" | "default" | "value"
    score: Optional[float] = None


def interpret_rating_score(raw, default: Optional[float] = None) -> RatingState:
    """Classify a stored score: missing, the neutral default, or a real value."""
    default = settings.default_rating if default is None else default
    if raw is None:
        return RatingState("uninitialized")
    value = float(raw)
    if abs(value - default) < 0.005:
        return RatingState("default", value)
    return RatingState("value", value)


def compute_weighted_score(
    day_metrics: Sequence[DayMetrics],
    weights: Tuple[Decimal, Decimal, Decimal, Decimal],
    default: Decimal,
) -> Decimal:
    """Weighted score of a window of day metrics, clamped to 0-100."""
    if not day_metrics:
        return to_money(default)
    count = Decimal(len(day_metrics))
    averages = (
        sum((m.reviews for m in day_metrics), ZERO) / count,
        sum((m.productivity for m in day_metrics), ZERO) / count,
        sum((m.loyalty for m in day_metrics), ZERO) / count,
        sum((m.discipline for m in day_metrics), ZERO) / count,
    )
    raw = sum((avg * to_decimal(w) for avg, w in zip(averages, weights)), ZERO) / HUNDRED
    return to_money(min(HUNDRED, max(ZERO, raw)))


@dataclass
class BatchReport:
    entities_processed: int = 0
    days_processed: int = 0
    stopped: bool = False
    errors: List[dict] = field(default_factory=list)

    def raise_for_errors(self) -> None:
        """Raise BatchPartialFailure when any entity failed."""
        if self.errors:
            raise BatchPartialFailure(self.errors, self.entities_processed)


def _public_message(error: Exception) -> str:
    if isinstance(error, BookingEngineError):
        return error.message
    if isinstance(error, SQLAlchemyError):
        return "Database error while recalculating"
    return (str(error) or error.__class__.__name__)[:500]


class RatingAggregator:
    """Computes and stores rating scores, and manages the rating config."""

    def __init__(
        self,
        db: Session,
        metrics_provider: Optional[MetricsProvider] = None,
        config: Settings = settings,
    ):
        self.db = db
        self.repo = RatingRepository(db)
        self.metrics_provider = metrics_provider or TableMetricsProvider(db)
        self.config = config

    # Config

    def get_active_config(self) -> Optional[RatingConfig]:
        return self.repo.get_active_config()

    def ensure_active_config(self, now: Optional[datetime] = None) -> RatingConfig:
        """The active config, creating the built-in default on first use."""
        active = self.repo.get_active_config()
        if active is not None:
            return active
        active = RatingConfig(
            reviews_weight=Decimal(str(DEFAULT_WEIGHTS.reviews)),
            productivity_weight=Decimal(str(DEFAULT_WEIGHTS.productivity)),
            loyalty_weight=Decimal(str(DEFAULT_WEIGHTS.loyalty)),
            discipline_weight=Decimal(str(DEFAULT_WEIGHTS.discipline)),
            window_days=self.config.rating_default_window_days,
            valid_from=resolve_now(now),
            is_active=True,
        )
        self.db.add(active)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            active = self.repo.get_active_config()
        return active

    def save_config(
        self,
        weights: RatingWeights,
        window_days: int,
        recalculate_history: bool = False,
        recalculate_days_back: int = 30,
        now: Optional[datetime] = None,
    ) -> Tuple[RatingConfig, Optional[BatchReport]]:
        """Activate a new config, deactivating the previous one.

        Raises:
            ValidationError: weights outside 0-100 or not summing to 100,
                window_days or recalculate_days_back outside 1-365.
        """
        now = resolve_now(now)
        for name in ("reviews", "productivity", "loyalty", "discipline"):
            value = getattr(weights, name)
            if value < 0 or value > 100:
                raise ValidationError(f"Weight '{name}' must be between 0 and 100", code="INVALID_WEIGHTS")
        if abs(weights.total - 100) > WEIGHT_TOLERANCE:
            raise ValidationError(
                f"Weights must sum to 100, got {weights.total:g}",
                code="INVALID_WEIGHTS",
            )
        if not 1 <= window_days <= 365:
            raise ValidationError("window_days must be between 1 and 365", code="INVALID_WINDOW")
        if recalculate_history and not 1 <= recalculate_days_back <= MAX_DAYS_BACK:
            raise ValidationError("recalculate_days_back must be between 1 and 365", code="INVALID_DAYS_BACK")

        self.repo.deactivate_configs()
        # Deactivation must hit the database before the new active row
        self.db.flush()
        new_config = RatingConfig(
            reviews_weight=Decimal(str(weights.reviews)),
            productivity_weight=Decimal(str(weights.productivity)),
            loyalty_weight=Decimal(str(weights.loyalty)),
            discipline_weight=Decimal(str(weights.discipline)),
            window_days=window_days,
            valid_from=now,
            is_active=True,
        )
        self.db.add(new_config)
        self.db.commit()
        logger.info(
            "Activated rating config %s (weights %s/%s/%s/%s, window %d days)",
            new_config.id, weights.reviews, weights.productivity, weights.loyalty,
            weights.discipline, window_days,
        )

        report = None
        if recalculate_history:
            report = self.initialize_all_ratings(recalculate_days_back, today=local_date(now), now=now)
        return new_config, report

    # Scores

    def _weights(self, config: RatingConfig) -> Tuple[Decimal, Decimal, Decimal, Decimal]:
        return (
            to_decimal(config.reviews_weight),
            to_decimal(config.productivity_weight),
            to_decimal(config.loyalty_weight),
            to_decimal(config.discipline_weight),
        )

    def _compute_and_store(self, entity_type: str, entity_id: str, as_of: date, config: RatingConfig,
                           now: datetime) -> Decimal:
        start = as_of - timedelta(days=config.window_days)
        window = self.metrics_provider.day_metrics(entity_type, entity_id, start, as_of)
        score = compute_weighted_score(window, self._weights(config), to_decimal(self.config.default_rating))
        self.repo.upsert_score(
            entity_type=entity_type,
            entity_id=entity_id,
            metric_date=as_of,
            score=score,
            config_id=config.id,
            days_with_metrics=len(window),
            computed_at=now,
        )
        return score

    def recalculate(
        self,
        entity_type: str,
        entity_id: str,
        as_of: date,
        config: Optional[RatingConfig] = None,
        now: Optional[datetime] = None,
    ) -> Decimal:
        """Recompute and store one entity's score for ``as_of``. Idempotent."""
        try:
            entity_type = EntityType(entity_type).value
        except ValueError as e:
            raise ValidationError(f"Unknown entity type '{entity_type}'", code="INVALID_ENTITY_TYPE") from e
        now = resolve_now(now)
        config = config or self.ensure_active_config(now)
        try:
            score = self._compute_and_store(entity_type, entity_id, as_of, config, now)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return score

    def get_current_score(self, entity_type: str, entity_id: str) -> Tuple[Optional[date], RatingState]:
        try:
            entity_type = EntityType(entity_type).value
        except ValueError as e:
            raise ValidationError(f"Unknown entity type '{entity_type}'", code="INVALID_ENTITY_TYPE") from e
        if not self.repo.entity_exists(entity_type, entity_id):
            raise NotFoundError(entity_type.capitalize(), entity_id)
        latest = self.repo.latest_score(entity_type, entity_id)
        if latest is None:
            return None, interpret_rating_score(None, self.config.default_rating)
        return latest.metric_date, interpret_rating_score(latest.score, self.config.default_rating)

    def list_errors(self, limit: int = 100) -> List[RatingRecalcError]:
        return self.repo.list_errors(limit)

    # Batches

    def initialize_all_ratings(
        self,
        days_back: int,
        today: Optional[date] = None,
        should_stop: Optional[Callable[[], bool]] = None,
        now: Optional[datetime] = None,
    ) -> BatchReport:
        """Recalculate every active entity for the last ``days_back`` days (today included)."""
        if not 1 <= days_back <= MAX_DAYS_BACK:
            raise ValidationError("days_back must be between 1 and 365", code="INVALID_DAYS_BACK")
        now = resolve_now(now)
        today = today or local_date(now)
        dates = [today - timedelta(days=offset) for offset in range(days_back - 1, -1, -1)]
        return self._run_batch(dates, should_stop, now)

    def recalculate_date_range(
        self,
        start_date: date,
        end_date: date,
        should_stop: Optional[Callable[[], bool]] = None,
        now: Optional[datetime] = None,
    ) -> BatchReport:
        """Recalculate every active entity for each date in [start_date, end_date]."""
        if end_date < start_date:
            raise ValidationError("end_date must not be before start_date", code="INVALID_RANGE")
        span = (end_date - start_date).days + 1
        if span > self.config.rating_range_chunk_days_max:
            raise ValidationError(
                f"At most {self.config.rating_range_chunk_days_max} days per call, got {span}",
                code="RANGE_TOO_LARGE",
            )
        dates = [start_date + timedelta(days=offset) for offset in range(span)]
        return self._run_batch(dates, should_stop, resolve_now(now))

    def _run_batch(self, dates: List[date], should_stop: Optional[Callable[[], bool]], now: datetime) -> BatchReport:
        config = self.ensure_active_config(now)
        entities = list(self.repo.iter_active_entities())
        report = BatchReport(days_processed=len(dates))
        logger.info("Rating batch started: %d entities x %d days", len(entities), len(dates))

        for entity_type, entity_id in entities:
            if should_stop is not None and should_stop():
                report.stopped = True
                logger.info("Rating batch stopped after %d entities", report.entities_processed)
                break
            current = dates[0]
            try:
                for current in dates:
                    self._compute_and_store(entity_type, entity_id, current, config, now)
                self.db.commit()
            except Exception as e:
                self.db.rollback()
                message = _public_message(e)
                logger.error(
                    "Rating recalculation failed for %s %s on %s: %s",
                    entity_type, entity_id, current, e, exc_info=True,
                )
                self.repo.add_error(entity_type, entity_id, current, message)
                self.db.commit()
                metrics.inc("rating_recalc_errors_total")
                report.errors.append({
                    "entity_type": entity_type,
                    "entity_id": entity_id,
                    "metric_date": current,
                    "message": message,
                })
            report.entities_processed += 1

        logger.info(
            "Rating batch finished: %d entities processed, %d failed",
            report.entities_processed, len(report.errors),
        )
        return report
