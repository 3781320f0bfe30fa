"""Promotion schemas.

``params`` is a tagged union keyed by ``promotion_type``: each promotion kind
has its own params model carrying only the fields it uses.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator, model_validator

from booking_engine.core.config import settings
from booking_engine.core.errors import ValidationError
from booking_engine.models.promotion import PromotionType


# Params variants

class FreeAfterNVisitsParams(BaseModel):
    """Every ``visit_count``-th completed visit is free."""
    model_config = ConfigDict(extra="forbid")

    visit_count: int = Field(..., ge=1, le=1000)


class DiscountParams(BaseModel):
    """Flat percentage discount (first visit)."""
    model_config = ConfigDict(extra="forbid")

    discount_percent: float = Field(..., ge=0, le=100)


class ReferralDiscountParams(BaseModel):
    """The referrer gets a fixed 50% off once the referred client has paid."""
    model_config = ConfigDict(extra="forbid")


class BirthdayParams(BaseModel):
    """Discount granted within ``window_days`` either side of the birthday."""
    model_config = ConfigDict(extra="forbid")

    discount_percent: float = Field(..., ge=0, le=100)
    window_days: int = Field(default_factory=lambda: settings.birthday_window_days, ge=0, le=31)


class ReferralFreeParams(BaseModel):
    """The referrer's next visit is free once the referred client has paid."""
    model_config = ConfigDict(extra="forbid")


PromotionParams = Union[
    FreeAfterNVisitsParams,
    DiscountParams,
    ReferralDiscountParams,
    BirthdayParams,
    ReferralFreeParams,
]

PARAMS_BY_TYPE: Dict[PromotionType, Type[BaseModel]] = {
    PromotionType.FREE_AFTER_N_VISITS: FreeAfterNVisitsParams,
    PromotionType.FIRST_VISIT_DISCOUNT: DiscountParams,
    PromotionType.REFERRAL_DISCOUNT_50: ReferralDiscountParams,
    PromotionType.BIRTHDAY_DISCOUNT: BirthdayParams,
    PromotionType.REFERRAL_FREE: ReferralFreeParams,
}


def parse_params(promotion_type: Union[PromotionType, str], raw: Optional[Dict[str, Any]]) -> PromotionParams:
    """Validate raw params against the variant for ``promotion_type``."""
    try:
        kind = PromotionType(promotion_type)
    except ValueError as e:
        raise ValidationError(f"Unknown promotion type '{promotion_type}'", code="INVALID_PROMOTION_TYPE") from e
    try:
        return PARAMS_BY_TYPE[kind].model_validate(raw or {})
    except PydanticValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) or "params" for err in e.errors())
        raise ValidationError(
            f"Invalid params for {kind.value}: {fields}",
            code="INVALID_PROMOTION_PARAMS",
        ) from e


# Evaluation result

class PromotionResult(BaseModel):
    """Outcome of applying one promotion to one booking."""

    promotion_id: str
    promotion_type: PromotionType
    title: str
    original_amount: Decimal
    discount_percent: float
    discount_amount: Decimal
    final_amount: Decimal

    def to_record(self) -> Dict[str, Any]:
        """Plain JSON form stored on ``Booking.promotion_applied``."""
        return {
            "promotion_id": self.promotion_id,
            "promotion_type": self.promotion_type.value,
            "title": self.title,
            "original_amount": float(self.original_amount),
            "discount_percent": self.discount_percent,
            "discount_amount": float(self.discount_amount),
            "final_amount": float(self.final_amount),
        }


class PromotionResultResponse(BaseModel):
    promotion_id: str
    promotion_type: PromotionType
    title: str
    original_amount: float
    discount_percent: float
    discount_amount: float
    final_amount: float


# Management

class PromotionCreate(BaseModel):
    """Create promotion schema."""
    promotion_type: PromotionType
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict)
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    is_active: bool = True

    @model_validator(mode="after")
    def check_dates(self) -> "PromotionCreate":
        if self.valid_from and self.valid_to and self.valid_from > self.valid_to:
            raise ValueError("valid_from must not be after valid_to")
        return self


class PromotionUpdate(BaseModel):
    """Update promotion schema."""
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    params: Optional[Dict[str, Any]] = None
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    is_active: Optional[bool] = None

    @field_validator("title", "is_active", "params")
    @classmethod
    def reject_explicit_null(cls, v):
        # omit the field to leave it unchanged; these columns are not nullable
        if v is None:
            raise ValueError("must not be null")
        return v


class PromotionResponse(BaseModel):
    """Promotion response schema."""
    id: str
    branch_id: str
    promotion_type: PromotionType
    title: str
    description: Optional[str] = None
    params: Dict[str, Any]
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    is_active: bool
    usage_count: int = 0
    created_at: datetime

    model_config = {"from_attributes": True}
