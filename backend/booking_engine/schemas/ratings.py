"""Rating schemas."""

from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from booking_engine.models.organization import EntityType


class RatingWeights(BaseModel):
    reviews: float = Field(..., ge=0, le=100)
    productivity: float = Field(..., ge=0, le=100)
    loyalty: float = Field(..., ge=0, le=100)
    discipline: float = Field(..., ge=0, le=100)

    @property
    def total(self) -> float:
        return self.reviews + self.productivity + self.loyalty + self.discipline


class RatingConfigRequest(BaseModel):
    """Save a new active rating configuration."""
    weights: RatingWeights
    window_days: int = 30
    recalculate_history: bool = False
    recalculate_days_back: int = 30


class RatingConfigResponse(BaseModel):
    id: str
    reviews_weight: float
    productivity_weight: float
    loyalty_weight: float
    discipline_weight: float
    window_days: int
    valid_from: datetime
    is_active: bool

    model_config = {"from_attributes": True}


class RecalcErrorItem(BaseModel):
    entity_type: EntityType
    entity_id: str
    metric_date: date
    message: str


class RecalculateRequest(BaseModel):
    days_back: int = Field(30, ge=1, le=365)


class RecalculateRangeRequest(BaseModel):
    start_date: date
    end_date: date


class RecalculateResponse(BaseModel):
    entities_processed: int
    days_processed: int = 0
    stopped: bool = False
    errors: List[RecalcErrorItem] = []


class SaveRatingConfigResponse(BaseModel):
    config: RatingConfigResponse
    recalculate_triggered: bool
    report: Optional[RecalculateResponse] = None


class RatingScoreResponse(BaseModel):
    entity_type: EntityType
    entity_id: str
    metric_date: Optional[date] = None
    score: Optional[float] = None
    state: str


class RecalcErrorResponse(RecalcErrorItem):
    id: str
    created_at: datetime

    model_config = {"from_attributes": True}
