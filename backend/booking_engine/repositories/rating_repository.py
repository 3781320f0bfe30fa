"""Rating repository - configs, metrics, scores and the recalculation error log."""

from datetime import date, datetime
from decimal import Decimal
from typing import Iterator, List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from booking_engine.db.base import new_id
from booking_engine.models import (
    Branch,
    Business,
    EntityDayMetric,
    EntityType,
    RatingConfig,
    RatingRecalcError,
    RatingScore,
    Staff,
)

_UPSERT_INSERTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


class RatingRepository:
    """Queries and writes for rating aggregation."""

    def __init__(self, db: Session):
        self.db = db

    def get_active_config(self) -> Optional[RatingConfig]:
        return (
            self.db.query(RatingConfig)
            .filter(RatingConfig.is_active.is_(True))
            .order_by(RatingConfig.valid_from.desc())
            .first()
        )

    def deactivate_configs(self) -> None:
        self.db.execute(
            update(RatingConfig)
            .where(RatingConfig.is_active.is_(True))
            .values(is_active=False)
            .execution_options(synchronize_session="fetch")
        )

    def metrics_between(self, entity_type: str, entity_id: str, start: date, end: date) -> List[EntityDayMetric]:
        """Day metrics of an entity for ``start <= metric_date <= end``."""
        return (
            self.db.query(EntityDayMetric)
            .filter(
                EntityDayMetric.entity_type == entity_type,
                EntityDayMetric.entity_id == entity_id,
                EntityDayMetric.metric_date >= start,
                EntityDayMetric.metric_date <= end,
            )
            .order_by(EntityDayMetric.metric_date)
            .all()
        )

    def upsert_score(
        self,
        *,
        entity_type: str,
        entity_id: str,
        metric_date: date,
        score: Decimal,
        config_id: Optional[str],
        days_with_metrics: int,
        computed_at: datetime,
    ) -> None:
        """Write the score for (entity, metric_date), replacing any previous value."""
        values = {
            "score": score,
            "config_id": config_id,
            "days_with_metrics": days_with_metrics,
            "computed_at": computed_at,
        }
        insert_fn = _UPSERT_INSERTS.get(self.db.get_bind().dialect.name)
        if insert_fn is not None:
            stmt = insert_fn(RatingScore).values(
                id=new_id(),
                entity_type=entity_type,
                entity_id=entity_id,
                metric_date=metric_date,
                **values,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["entity_type", "entity_id", "metric_date"],
                set_=values,
            )
            self.db.execute(stmt)
            return

        existing = self.get_score(entity_type, entity_id, metric_date)
        if existing is None:
            self.db.add(RatingScore(
                entity_type=entity_type,
                entity_id=entity_id,
                metric_date=metric_date,
                **values,
            ))
        else:
            for key, value in values.items():
                setattr(existing, key, value)
        self.db.flush()

    def get_score(self, entity_type: str, entity_id: str, metric_date: date) -> Optional[RatingScore]:
        return (
            self.db.query(RatingScore)
            .filter(
                RatingScore.entity_type == entity_type,
                RatingScore.entity_id == entity_id,
                RatingScore.metric_date == metric_date,
            )
            .populate_existing()
            .first()
        )

    def latest_score(self, entity_type: str, entity_id: str) -> Optional[RatingScore]:
        return (
            self.db.query(RatingScore)
            .filter(RatingScore.entity_type == entity_type, RatingScore.entity_id == entity_id)
            .order_by(RatingScore.metric_date.desc())
            .populate_existing()
            .first()
        )

    def add_error(self, entity_type: str, entity_id: str, metric_date: date, message: str) -> RatingRecalcError:
        error = RatingRecalcError(
            entity_type=entity_type,
            entity_id=entity_id,
            metric_date=metric_date,
            message=message,
        )
        self.db.add(error)
        return error

    def list_errors(self, limit: int = 100) -> List[RatingRecalcError]:
        return (
            self.db.query(RatingRecalcError)
            .order_by(RatingRecalcError.created_at.desc())
            .limit(limit)
            .all()
        )

    def iter_active_entities(self) -> Iterator[Tuple[str, str]]:
        """(entity_type, entity_id) for every active business, branch and staff member."""
        sources = (
            (EntityType.BUSINESS.value, Business),
            (EntityType.BRANCH.value, Branch),
            (EntityType.STAFF.value, Staff),
        )
        for entity_type, model in sources:
            ids = [
                row[0]
                for row in self.db.query(model.id).filter(model.is_active.is_(True)).order_by(model.id).all()
            ]
            for entity_id in ids:
                yield entity_type, entity_id

    def entity_exists(self, entity_type: str, entity_id: str) -> bool:
        model = {
            EntityType.BUSINESS.value: Business,
            EntityType.BRANCH.value: Branch,
            EntityType.STAFF.value: Staff,
        }.get(entity_type)
        return model is not None and self.db.get(model, entity_id) is not None
