"""Shift settlement schemas."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from booking_engine.models.organization import PaymentMode
from booking_engine.models.shift import ShiftStatus


class ShiftItemInput(BaseModel):
    """One served client to add to a shift."""
    client_name: Optional[str] = Field(None, max_length=255)
    service_name: Optional[str] = Field(None, max_length=255)
    service_amount: Decimal = Field(..., ge=0)
    consumables_amount: Decimal = Field(Decimal("0"), ge=0)


class ShiftItemResponse(BaseModel):
    id: str
    booking_id: Optional[str] = None
    client_name: Optional[str] = None
    service_name: Optional[str] = None
    service_amount: float
    consumables_amount: float

    model_config = {"from_attributes": True}


class OpenShiftRequest(BaseModel):
    staff_id: str
    shift_date: Optional[date] = None


class CloseShiftRequest(BaseModel):
    """Close a shift, optionally replacing its item set first."""
    items: Optional[List[ShiftItemInput]] = None


class FoldBookingRequest(BaseModel):
    booking_id: str


class HoursOverrideRequest(BaseModel):
    hours_worked: Decimal = Field(..., ge=0, le=24)


class CloseStaleRequest(BaseModel):
    before: Optional[date] = None


class SettlementResponse(BaseModel):
    master_share: float
    salon_share: float
    topup_amount: float
    guaranteed_amount: float = 0
    total_amount: float = 0
    consumables_amount: float = 0
    hours_worked: float = 0


class ShiftResponse(BaseModel):
    """Shift response schema."""
    id: str
    staff_id: str
    branch_id: str
    shift_date: date
    status: ShiftStatus
    opened_at: datetime
    closed_at: Optional[datetime] = None
    hours_worked: float
    total_amount: float
    consumables_amount: float
    percent_master: float
    percent_salon: float
    hourly_rate: Optional[float] = None
    payment_mode: PaymentMode
    master_share: float
    salon_share: float
    guaranteed_amount: float
    topup_amount: float
    items: List[ShiftItemResponse] = []

    model_config = {"from_attributes": True}


class StaleShiftsResponse(BaseModel):
    closed: List[str]
    errors: List[dict]
