"""Booking lifecycle schemas."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import AwareDatetime, BaseModel, Field

from booking_engine.models.booking import BookingStatus
from booking_engine.schemas.promotions import PromotionResultResponse


class HoldRequest(BaseModel):
    """Reserve a slot for a staff member."""
    staff_id: str
    branch_id: str
    service_id: str
    start_at: AwareDatetime
    duration_minutes: Optional[int] = Field(None, ge=1, le=24 * 60)
    client_id: Optional[str] = None


class HoldResponse(BaseModel):
    booking_id: str
    status: BookingStatus = BookingStatus.HOLD
    hold_expires_at: Optional[datetime] = None


class StatusResponse(BaseModel):
    status: BookingStatus


class AttendanceRequest(BaseModel):
    attended: bool


class AttendanceResponse(BaseModel):
    status: BookingStatus
    promotion_applied: Optional[PromotionResultResponse] = None
    promotion_error: Optional[str] = None


class ExpireHoldsResponse(BaseModel):
    released: int


class BookingResponse(BaseModel):
    """Booking response schema."""
    id: str
    business_id: str
    branch_id: str
    service_id: str
    staff_id: str
    client_id: Optional[str] = None
    start_at: datetime
    end_at: datetime
    status: BookingStatus
    price: float
    hold_expires_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    attended_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    promotion_applied: Optional[PromotionResultResponse] = None

    model_config = {"from_attributes": True}


@dataclass
class AttendanceResult:
    """Outcome of marking attendance.

    ``changed`` is False when the booking was already paid/no_show and the
    call was a no-op. ``promotion_error`` carries a promotion failure that
    did not block the transition.
    """
    booking_id: str
    status: BookingStatus
    promotion_applied: Optional[Dict[str, Any]] = None
    promotion_error: Optional[str] = None
    changed: bool = True
