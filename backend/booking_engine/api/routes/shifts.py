"""Staff shift settlement API routes."""

from fastapi import APIRouter, Request, status

from booking_engine.core.rate_limit import CRITICAL_LIMIT, NORMAL_LIMIT, limiter
from booking_engine.db.session import DbSession
from booking_engine.schemas.shifts import (
    CloseShiftRequest,
    CloseStaleRequest,
    FoldBookingRequest,
    HoursOverrideRequest,
    OpenShiftRequest,
    SettlementResponse,
    ShiftItemInput,
    ShiftItemResponse,
    ShiftResponse,
    StaleShiftsResponse,
)
from booking_engine.services.shift_settlement import ShiftFinancials, ShiftSettlementCalculator

router = APIRouter()


def _settlement(financials: ShiftFinancials) -> SettlementResponse:
    return SettlementResponse(
        master_share=financials.master_share,
        salon_share=financials.salon_share,
        topup_amount=financials.topup_amount,
        guaranteed_amount=financials.guaranteed_amount,
        total_amount=financials.total_amount,
        consumables_amount=financials.consumables_amount,
        hours_worked=financials.hours_worked,
    )


@router.post("/open", response_model=ShiftResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(NORMAL_LIMIT)
def open_shift(request: Request, payload: OpenShiftRequest, db: DbSession):
    calculator = ShiftSettlementCalculator(db)
    shift = calculator.open_shift(payload.staff_id, payload.shift_date)
    return calculator.get(shift.id)


@router.post("/close-stale", response_model=StaleShiftsResponse)
@limiter.limit(CRITICAL_LIMIT)
def close_stale_shifts(request: Request, payload: CloseStaleRequest, db: DbSession):
    report = ShiftSettlementCalculator(db).close_stale_shifts(before=payload.before)
    return StaleShiftsResponse(closed=report.closed, errors=report.errors)


@router.get("/{shift_id}", response_model=ShiftResponse)
def get_shift(shift_id: str, db: DbSession):
    return ShiftSettlementCalculator(db).get(shift_id)


@router.post("/{shift_id}/items", response_model=ShiftItemResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(NORMAL_LIMIT)
def add_shift_item(request: Request, shift_id: str, payload: ShiftItemInput, db: DbSession):
    return ShiftSettlementCalculator(db).add_item(shift_id, payload)


@router.delete("/{shift_id}/items/{item_id}", response_model=ShiftResponse)
@limiter.limit(NORMAL_LIMIT)
def remove_shift_item(request: Request, shift_id: str, item_id: str, db: DbSession):
    calculator = ShiftSettlementCalculator(db)
    calculator.remove_item(shift_id, item_id)
    return calculator.get(shift_id)


@router.post("/{shift_id}/fold-booking", response_model=ShiftItemResponse)
@limiter.limit(NORMAL_LIMIT)
def fold_booking(request: Request, shift_id: str, payload: FoldBookingRequest, db: DbSession):
    """Add a paid booking to the shift. Folding the same booking again is a no-op."""
    return ShiftSettlementCalculator(db).fold_paid_booking(shift_id, payload.booking_id)


@router.post("/{shift_id}/close", response_model=SettlementResponse)
@limiter.limit(NORMAL_LIMIT)
def close_shift(request: Request, shift_id: str, db: DbSession, payload: CloseShiftRequest = CloseShiftRequest()):
    """Settle and freeze the shift. Returns master share, salon share and top-up."""
    financials = ShiftSettlementCalculator(db).close_shift(shift_id, items=payload.items)
    return _settlement(financials)


@router.post("/{shift_id}/hours", response_model=SettlementResponse)
@limiter.limit(CRITICAL_LIMIT)
def override_hours(request: Request, shift_id: str, payload: HoursOverrideRequest, db: DbSession):
    """Administrative correction of hours worked, recomputing the guarantee."""
    financials = ShiftSettlementCalculator(db).override_hours(shift_id, payload.hours_worked)
    return _settlement(financials)
