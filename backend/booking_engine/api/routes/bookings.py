"""Booking lifecycle API routes."""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Request, status

from booking_engine.core.rate_limit import CRITICAL_LIMIT, NORMAL_LIMIT, limiter
from booking_engine.db.session import DbSession
from booking_engine.schemas.bookings import (
    AttendanceRequest,
    AttendanceResponse,
    BookingResponse,
    ExpireHoldsResponse,
    HoldRequest,
    HoldResponse,
    StatusResponse,
)
from booking_engine.schemas.promotions import PromotionResultResponse
from booking_engine.services.booking_state_machine import BookingStateMachine
from booking_engine.services.notifications import NotificationDispatcher
from booking_engine.services.promotion_engine import PromotionEngine
from booking_engine.services.slot_guard import SlotAvailabilityGuard

router = APIRouter()


def _state_machine(db, background_tasks: BackgroundTasks) -> BookingStateMachine:
    return BookingStateMachine(db, dispatcher=NotificationDispatcher(background_tasks=background_tasks))


@router.post("/hold", response_model=HoldResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(CRITICAL_LIMIT)
def reserve_slot(request: Request, payload: HoldRequest, db: DbSession):
    """Reserve a staff member's slot. Returns 409 SLOT_CONFLICT when it is taken."""
    guard = SlotAvailabilityGuard(db)
    booking_id = guard.reserve(
        staff_id=payload.staff_id,
        branch_id=payload.branch_id,
        service_id=payload.service_id,
        start=payload.start_at,
        duration_minutes=payload.duration_minutes,
        client_id=payload.client_id,
    )
    booking = BookingStateMachine(db).get(booking_id)
    return HoldResponse(booking_id=booking.id, hold_expires_at=booking.hold_expires_at)


@router.post("/expire-holds", response_model=ExpireHoldsResponse)
@limiter.limit(NORMAL_LIMIT)
def expire_holds(request: Request, db: DbSession):
    """Release every hold whose TTL has passed."""
    return ExpireHoldsResponse(released=SlotAvailabilityGuard(db).release_expired_holds())


@router.get("/{booking_id}", response_model=BookingResponse)
def get_booking(booking_id: str, db: DbSession):
    return BookingStateMachine(db).get(booking_id)


@router.post("/{booking_id}/confirm", response_model=StatusResponse)
@limiter.limit(NORMAL_LIMIT)
def confirm_booking(request: Request, booking_id: str, db: DbSession, background_tasks: BackgroundTasks):
    booking = _state_machine(db, background_tasks).confirm(booking_id)
    return StatusResponse(status=booking.status)


@router.post("/{booking_id}/mark-attendance", response_model=AttendanceResponse)
@limiter.limit(NORMAL_LIMIT)
def mark_attendance(
    request: Request,
    booking_id: str,
    payload: AttendanceRequest,
    db: DbSession,
    background_tasks: BackgroundTasks,
):
    """Record whether the client came. A promotion failure is reported, never raised."""
    result = _state_machine(db, background_tasks).mark_attendance(booking_id, payload.attended)
    return AttendanceResponse(
        status=result.status,
        promotion_applied=result.promotion_applied,
        promotion_error=result.promotion_error,
    )


@router.post("/{booking_id}/cancel", response_model=StatusResponse)
@limiter.limit(NORMAL_LIMIT)
def cancel_booking(request: Request, booking_id: str, db: DbSession, background_tasks: BackgroundTasks):
    booking = _state_machine(db, background_tasks).cancel(booking_id)
    return StatusResponse(status=booking.status)


@router.get("/{booking_id}/promotion-preview", response_model=Optional[PromotionResultResponse])
def preview_promotion(booking_id: str, db: DbSession):
    """Dry run of the promotion that attendance would apply. Writes nothing."""
    booking = BookingStateMachine(db).get(booking_id)
    result = PromotionEngine(db).evaluate(booking)
    if result is None:
        return None
    return PromotionResultResponse(**result.to_record())
