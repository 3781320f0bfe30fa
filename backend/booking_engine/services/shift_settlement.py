"""Shift Settlement Calculator - master/salon split with guaranteed pay.

    net        = max(0, total - consumables)
    master     = net * percent_master / 100
    salon      = net - master
    guarantee  = hours_worked * hourly_rate

When the guarantee exceeds the master share the difference is the top-up:
the master is raised to the guarantee and the top-up is taken out of the
salon share (never below zero). ``percent_only`` staff get no guarantee.

All amounts are Decimal rounded to cents. Totals are always re-summed from
the item set, so recomputing an unchanged shift gives identical numbers.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from booking_engine.core.config import Settings, settings
from booking_engine.core.errors import (
    BookingEngineError,
    InvalidTransitionError,
    NotFoundError,
    SettlementInvariantError,
    ValidationError,
)
from booking_engine.core.metrics import metrics
from booking_engine.core.money import HUNDRED, ZERO, Number, percent_of, to_decimal, to_money
from booking_engine.core.timeutils import local_date, resolve_now
from booking_engine.models import (
    Booking,
    BookingStatus,
    Client,
    PaymentMode,
    Service,
    Shift,
    ShiftItem,
    ShiftStatus,
    Staff,
)
from booking_engine.repositories.booking_repository import BookingRepository
from booking_engine.repositories.shift_repository import ShiftRepository
from booking_engine.schemas.shifts import ShiftItemInput

logger = logging.getLogger(__name__)

SPLIT_TOLERANCE = Decimal("0.01")


@dataclass(frozen=True)
class ShiftFinancials:
    total_amount: Decimal
    consumables_amount: Decimal
    net_amount: Decimal
    base_master_share: Decimal
    base_salon_share: Decimal
    guaranteed_amount: Decimal
    topup_amount: Decimal
    master_share: Decimal
    salon_share: Decimal
    hours_worked: Decimal = ZERO


def check_split(percent_master: Number, percent_salon: Number) -> None:
    """Raise SettlementInvariantError unless the split covers exactly 100%."""
    pm, ps = to_decimal(percent_master), to_decimal(percent_salon)
    if pm < 0 or ps < 0 or pm > HUNDRED or ps > HUNDRED:
        raise SettlementInvariantError(f"Percentages must be within 0-100, got {pm}/{ps}")
    if abs(pm + ps - HUNDRED) > SPLIT_TOLERANCE:
        raise SettlementInvariantError(f"percent_master + percent_salon must equal 100, got {pm + ps}")


def calculate_shift_financials(
    total_amount: Number,
    consumables_amount: Number,
    percent_master: Number,
    percent_salon: Number,
    hours_worked: Optional[Number] = None,
    hourly_rate: Optional[Number] = None,
    payment_mode: str = PaymentMode.PERCENT_WITH_GUARANTEE.value,
) -> ShiftFinancials:
    """Pure settlement of one shift. No database access."""
    check_split(percent_master, percent_salon)

    total = to_money(total_amount)
    consumables = to_money(consumables_amount)
    if total < 0 or consumables < 0:
        raise ValidationError("Shift amounts cannot be negative", code="NEGATIVE_AMOUNT")

    net = max(ZERO, total - consumables)
    base_master = percent_of(net, percent_master)
    base_salon = net - base_master
    hours = to_money(hours_worked) if hours_worked is not None else ZERO

    guaranteed = ZERO
    topup = ZERO
    master, salon = base_master, base_salon
    if payment_mode != PaymentMode.PERCENT_ONLY.value and hourly_rate is not None and hours > 0:
        guaranteed = to_money(hours * to_decimal(hourly_rate))
        if guaranteed > base_master:
            topup = guaranteed - base_master
            master = guaranteed
            salon = max(ZERO, base_salon - topup)

    return ShiftFinancials(
        total_amount=total,
        consumables_amount=consumables,
        net_amount=net,
        base_master_share=base_master,
        base_salon_share=base_salon,
        guaranteed_amount=guaranteed,
        topup_amount=topup,
        master_share=master,
        salon_share=salon,
        hours_worked=hours,
    )


def hours_between(start: datetime, end: datetime) -> Decimal:
    """Elapsed hours rounded to two decimals, never negative."""
    seconds = max(0.0, (end - start).total_seconds())
    return to_money(Decimal(str(seconds)) / Decimal("3600"))


@dataclass
class StaleShiftReport:
    closed: List[str] = field(default_factory=list)
    errors: List[dict] = field(default_factory=list)


class ShiftSettlementCalculator:
    """Opens, fills, settles and closes staff shifts."""

    def __init__(self, db: Session, config: Settings = settings):
        self.db = db
        self.config = config
        self.shifts = ShiftRepository(db)
        self.bookings = BookingRepository(db)

    # Lifecycle

    def open_shift(self, staff_id: str, shift_date: Optional[date] = None, now: Optional[datetime] = None) -> Shift:
        """Open the staff member's shift for a day. Re-opening an open shift returns it."""
        now = resolve_now(now)
        staff = self.db.get(Staff, staff_id)
        if staff is None:
            raise NotFoundError("Staff", staff_id)
        if not staff.is_active:
            raise ValidationError("Staff member is not active", code="STAFF_INACTIVE")
        shift_date = shift_date or local_date(now)

        existing = self.shifts.get_by_staff_and_date(staff_id, shift_date)
        if existing is not None:
            self._ensure_open(existing)
            return existing

        check_split(staff.percent_master, staff.percent_salon)
        shift = Shift(
            staff_id=staff.id,
            branch_id=staff.branch_id,
            shift_date=shift_date,
            status=ShiftStatus.OPEN.value,
            opened_at=now,
            percent_master=staff.percent_master,
            percent_salon=staff.percent_salon,
            hourly_rate=staff.hourly_rate,
            payment_mode=staff.payment_mode,
        )
        self.db.add(shift)
        try:
            self.db.commit()
        except IntegrityError:
            # Another request opened the same (staff, date) first
            self.db.rollback()
            existing = self.shifts.get_by_staff_and_date(staff_id, shift_date)
            if existing is None:
                raise
            self._ensure_open(existing)
            return existing
        logger.info("Opened shift %s for staff %s on %s", shift.id, staff_id, shift_date)
        return shift

    def get(self, shift_id: str) -> Shift:
        shift = self.shifts.get(shift_id)
        if shift is None:
            raise NotFoundError("Shift", shift_id)
        return shift

    def _get_open_locked(self, shift_id: str) -> Shift:
        shift = self.shifts.get_for_update(shift_id)
        if shift is None:
            raise NotFoundError("Shift", shift_id)
        self._ensure_open(shift)
        return shift

    @staticmethod
    def _ensure_open(shift: Shift) -> None:
        if shift.is_closed:
            raise InvalidTransitionError(
                "Shift is already closed",
                current_status=shift.status,
                code="SHIFT_CLOSED",
            )

    # Items

    def add_item(self, shift_id: str, item: ShiftItemInput, booking_id: Optional[str] = None) -> ShiftItem:
        """Add an item and refresh the shift totals in one transaction."""
        try:
            shift = self._get_open_locked(shift_id)
            new_item = self._build_item(shift, item, booking_id)
            shift.items.append(new_item)
            self.db.flush()
            self.recompute(shift)
            self.db.commit()
        except BookingEngineError:
            self.db.rollback()
            raise
        return new_item

    def remove_item(self, shift_id: str, item_id: str) -> Shift:
        try:
            shift = self._get_open_locked(shift_id)
            item = self.shifts.get_item(item_id)
            if item is None or item.shift_id != shift.id:
                raise NotFoundError("ShiftItem", item_id)
            shift.items.remove(item)
            self.db.flush()
            self.recompute(shift)
            self.db.commit()
        except BookingEngineError:
            self.db.rollback()
            raise
        return shift

    def fold_paid_booking(self, shift_id: str, booking_id: str) -> ShiftItem:
        """Turn a paid booking into a shift item. Folding the same booking twice returns the first item."""
        existing = self.shifts.get_item_by_booking(booking_id)
        if existing is not None:
            return existing

        booking = self.bookings.get(booking_id)
        if booking is None:
            raise NotFoundError("Booking", booking_id)
        if booking.status != BookingStatus.PAID.value:
            raise ValidationError("Only paid bookings can be folded into a shift", code="BOOKING_NOT_PAID")
        shift = self.get(shift_id)
        if booking.staff_id != shift.staff_id:
            raise ValidationError("Booking belongs to another staff member", code="STAFF_MISMATCH")

        try:
            item = self.add_item(shift_id, self._item_for_booking(booking), booking_id=booking.id)
        except IntegrityError:
            self.db.rollback()
            item = self.shifts.get_item_by_booking(booking_id)
            if item is None:
                raise
        return item

    def _build_item(self, shift: Shift, item: ShiftItemInput, booking_id: Optional[str]) -> ShiftItem:
        service_amount = to_money(item.service_amount)
        consumables = to_money(item.consumables_amount)
        if service_amount < 0 or consumables < 0:
            raise ValidationError("Item amounts cannot be negative", code="NEGATIVE_AMOUNT")
        return ShiftItem(
            shift_id=shift.id,
            booking_id=booking_id,
            client_name=item.client_name,
            service_name=item.service_name,
            service_amount=service_amount,
            consumables_amount=consumables,
        )

    def _item_for_booking(self, booking: Booking) -> ShiftItemInput:
        amount = booking.price
        if booking.promotion_applied:
            amount = to_decimal(booking.promotion_applied["final_amount"])
        client = self.db.get(Client, booking.client_id) if booking.client_id else None
        service = self.db.get(Service, booking.service_id)
        return ShiftItemInput(
            client_name=client.full_name if client else None,
            service_name=service.name if service else None,
            service_amount=to_money(amount),
            consumables_amount=ZERO,
        )

    # Settlement

    def recompute(self, shift: Shift) -> ShiftFinancials:
        """Re-sum the items and rewrite the shift's money fields. Does not commit."""
        total = sum((to_decimal(i.service_amount) for i in shift.items), ZERO)
        consumables = sum((to_decimal(i.consumables_amount) for i in shift.items), ZERO)
        financials = calculate_shift_financials(
            total,
            consumables,
            shift.percent_master,
            shift.percent_salon,
            hours_worked=shift.hours_worked,
            hourly_rate=shift.hourly_rate,
            payment_mode=shift.payment_mode,
        )
        shift.total_amount = financials.total_amount
        shift.consumables_amount = financials.consumables_amount
        shift.master_share = financials.master_share
        shift.salon_share = financials.salon_share
        shift.guaranteed_amount = financials.guaranteed_amount
        shift.topup_amount = financials.topup_amount
        return financials

    def close_shift(
        self,
        shift_id: str,
        items: Optional[Iterable[ShiftItemInput]] = None,
        now: Optional[datetime] = None,
    ) -> ShiftFinancials:
        """Settle and freeze a shift.

        ``items``, when given, replaces the manually entered items (items folded
        from bookings are kept). Hours worked run from ``opened_at`` to ``now``
        unless an administrator has overridden them.
        """
        now = resolve_now(now)
        try:
            shift = self._get_open_locked(shift_id)
            if items is not None:
                for existing in [i for i in shift.items if i.booking_id is None]:
                    shift.items.remove(existing)
                for item in items:
                    shift.items.append(self._build_item(shift, item, None))
                self.db.flush()
            financials = self._settle_and_close(shift, now)
            self.db.commit()
        except BookingEngineError:
            # shift stays open with its previous totals
            self.db.rollback()
            raise

        metrics.inc("shifts_closed_total")
        logger.info(
            "Closed shift %s: total=%s master=%s salon=%s topup=%s",
            shift.id, financials.total_amount, financials.master_share,
            financials.salon_share, financials.topup_amount,
        )
        return financials

    def _settle_and_close(self, shift: Shift, closed_at: datetime) -> ShiftFinancials:
        if shift.hourly_rate is not None and not shift.hours_overridden:
            shift.hours_worked = hours_between(shift.opened_at, closed_at)
        financials = self.recompute(shift)
        shift.status = ShiftStatus.CLOSED.value
        shift.closed_at = closed_at
        return financials

    def override_hours(self, shift_id: str, hours_worked: Number) -> ShiftFinancials:
        """Administrative correction of hours worked; allowed on closed shifts."""
        hours = to_money(hours_worked)
        if hours < 0 or hours > 24:
            raise ValidationError("hours_worked must be between 0 and 24", code="INVALID_HOURS")
        shift = self.shifts.get_for_update(shift_id)
        if shift is None:
            raise NotFoundError("Shift", shift_id)
        try:
            shift.hours_worked = hours
            shift.hours_overridden = True
            financials = self.recompute(shift)
            self.db.commit()
        except BookingEngineError:
            self.db.rollback()
            raise
        logger.info("Hours of shift %s overridden to %s", shift.id, hours)
        return financials

    def close_stale_shifts(self, before: Optional[date] = None, now: Optional[datetime] = None) -> StaleShiftReport:
        """Close open shifts dated before ``before`` (default: today).

        Shifts without items get the day's paid bookings folded in first.
        Hours are counted up to the end of the shift's day. Each shift is
        committed on its own; a failing shift is reported and skipped.
        """
        now = resolve_now(now)
        before = before or local_date(now)
        report = StaleShiftReport()

        stale_ids = [shift.id for shift in self.shifts.list_open_before(before)]
        for shift_id in stale_ids:
            try:
                shift = self._get_open_locked(shift_id)
                day_start = datetime.combine(shift.shift_date, time.min, tzinfo=self.config.tz)
                day_end = day_start + timedelta(days=1)
                if not shift.items:
                    for booking in self.bookings.list_paid_for_staff_between(shift.staff_id, day_start, day_end):
                        if self.shifts.get_item_by_booking(booking.id) is None:
                            shift.items.append(
                                self._build_item(shift, self._item_for_booking(booking), booking.id)
                            )
                    self.db.flush()
                self._settle_and_close(shift, min(now, day_end))
                self.db.commit()
                metrics.inc("shifts_closed_total")
                report.closed.append(shift_id)
            except Exception as e:
                self.db.rollback()
                logger.error("Failed to close stale shift %s: %s", shift_id, e, exc_info=True)
                message = e.message if isinstance(e, BookingEngineError) else "Internal error while closing shift"
                report.errors.append({"shift_id": shift_id, "message": message})

        logger.info("Closed %d stale shifts, %d failed", len(report.closed), len(report.errors))
        return report
