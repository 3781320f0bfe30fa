"""Tests for shift settlement: master/salon split, guarantee top-up and shift lifecycle."""

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from booking_engine.core.errors import (
    InvalidTransitionError,
    NotFoundError,
    SettlementInvariantError,
    ValidationError,
)
from booking_engine.core.metrics import metrics
from booking_engine.models import BookingStatus, PaymentMode, Shift, ShiftStatus, Staff
from booking_engine.schemas.shifts import ShiftItemInput
from booking_engine.services.shift_settlement import (
    ShiftSettlementCalculator,
    calculate_shift_financials,
    check_split,
    hours_between,
)

from tests.conftest import NOW


def _item(amount, consumables="0", name="Haircut"):
    return ShiftItemInput(service_name=name, service_amount=Decimal(amount), consumables_amount=Decimal(consumables))


class TestCalculateShiftFinancials:
    """Pure settlement arithmetic."""

    def test_percent_split_without_topup(self):
        result = calculate_shift_financials(5000, 500, 60, 40, hours_worked=8, hourly_rate=300)

        assert result.net_amount == Decimal("4500.00")
        assert result.master_share == Decimal("2700.00")
        assert result.salon_share == Decimal("1800.00")
        assert result.guaranteed_amount == Decimal("2400.00")
        assert result.topup_amount == Decimal("0")

    def test_guarantee_tops_up_master(self):
        result = calculate_shift_financials(1000, 0, 60, 40, hours_worked=8, hourly_rate=300)

        assert result.base_master_share == Decimal("600.00")
        assert result.topup_amount == Decimal("1800.00")
        assert result.master_share == Decimal("2400.00")
        # the salon never goes negative
        assert result.salon_share == Decimal("0")

    def test_partial_topup_comes_out_of_salon_share(self):
        result = calculate_shift_financials(4000, 0, 60, 40, hours_worked=9, hourly_rate=300)

        assert result.master_share == Decimal("2700.00")
        assert result.topup_amount == Decimal("300.00")
        assert result.salon_share == Decimal("1300.00")
        assert result.master_share + result.salon_share == result.net_amount

    def test_percent_only_has_no_guarantee(self):
        result = calculate_shift_financials(
            1000, 0, 60, 40, hours_worked=8, hourly_rate=300, payment_mode=PaymentMode.PERCENT_ONLY.value,
        )

        assert result.master_share == Decimal("600.00")
        assert result.salon_share == Decimal("400.00")
        assert result.guaranteed_amount == Decimal("0")
        assert result.topup_amount == Decimal("0")

    def test_no_hourly_rate_means_no_guarantee(self):
        result = calculate_shift_financials(1000, 0, 60, 40, hours_worked=8, hourly_rate=None)
        assert result.master_share == Decimal("600.00")

    def test_consumables_above_total_floor_net_at_zero(self):
        result = calculate_shift_financials(100, 250, 60, 40)
        assert result.net_amount == Decimal("0")
        assert result.master_share == Decimal("0.00")
        assert result.salon_share == Decimal("0.00")

    def test_rounding_to_cents_keeps_sum(self):
        result = calculate_shift_financials("100.01", 0, "33.33", "66.67")
        assert result.master_share == Decimal("33.33")
        assert result.master_share + result.salon_share == Decimal("100.01")

    @pytest.mark.parametrize("pm,ps", [(60, 50), (99, 0), (50, 49.98), (-10, 110), (110, -10)])
    def test_invalid_split_rejected(self, pm, ps):
        with pytest.raises(SettlementInvariantError):
            calculate_shift_financials(1000, 0, pm, ps)

    def test_split_within_tolerance_accepted(self):
        check_split(Decimal("60.005"), Decimal("40"))
        check_split(100, 0)

    def test_negative_amount_rejected(self):
        with pytest.raises(ValidationError):
            calculate_shift_financials(-1, 0, 60, 40)

    def test_hours_between(self):
        start = datetime(2024, 1, 26, 3, 0, tzinfo=timezone.utc)
        assert hours_between(start, start + timedelta(hours=7, minutes=20)) == Decimal("7.33")
        assert hours_between(start, start - timedelta(hours=1)) == Decimal("0")


@pytest.fixture
def calculator(db_session):
    return ShiftSettlementCalculator(db_session)


@pytest.fixture
def shift(calculator, staff):
    return calculator.open_shift(staff.id, date(2024, 1, 26), now=NOW)


class TestShiftLifecycle:
    """Opening, filling and closing a shift."""

    def test_open_snapshots_staff_settings(self, db_session, calculator, staff, shift):
        assert shift.status == ShiftStatus.OPEN.value
        assert shift.percent_master == Decimal("60")
        assert shift.hourly_rate == Decimal("300")
        assert shift.opened_at == NOW

        staff.percent_master = Decimal("70")
        staff.percent_salon = Decimal("30")
        db_session.commit()
        db_session.refresh(shift)
        assert shift.percent_master == Decimal("60")

    def test_reopen_returns_existing(self, calculator, staff, shift):
        assert calculator.open_shift(staff.id, date(2024, 1, 26), now=NOW).id == shift.id

    def test_open_with_invalid_staff_split(self, db_session, calculator, staff):
        staff.percent_salon = Decimal("50")
        db_session.commit()
        with pytest.raises(SettlementInvariantError):
            calculator.open_shift(staff.id, date(2024, 1, 26), now=NOW)

    def test_open_unknown_staff(self, calculator):
        with pytest.raises(NotFoundError):
            calculator.open_shift("ghost", date(2024, 1, 26), now=NOW)

    def test_add_item_recomputes_totals(self, calculator, shift):
        calculator.add_item(shift.id, _item("1500", "100"))
        calculator.add_item(shift.id, _item("500"))

        refreshed = calculator.get(shift.id)
        assert refreshed.total_amount == Decimal("2000.00")
        assert refreshed.consumables_amount == Decimal("100.00")
        assert refreshed.master_share == Decimal("1140.00")
        assert refreshed.salon_share == Decimal("760.00")
        assert len(refreshed.items) == 2

    def test_remove_item(self, calculator, shift):
        kept = calculator.add_item(shift.id, _item("1500"))
        dropped = calculator.add_item(shift.id, _item("500"))

        calculator.remove_item(shift.id, dropped.id)

        refreshed = calculator.get(shift.id)
        assert [i.id for i in refreshed.items] == [kept.id]
        assert refreshed.total_amount == Decimal("1500.00")

    def test_remove_unknown_item(self, calculator, shift):
        with pytest.raises(NotFoundError):
            calculator.remove_item(shift.id, "nope")

    def test_close_counts_hours_and_tops_up(self, calculator, shift):
        calculator.add_item(shift.id, _item("1000"))

        financials = calculator.close_shift(shift.id, now=NOW + timedelta(hours=8))

        assert financials.hours_worked == Decimal("8.00")
        assert financials.guaranteed_amount == Decimal("2400.00")
        assert financials.topup_amount == Decimal("1800.00")
        assert financials.master_share == Decimal("2400.00")
        assert financials.salon_share == Decimal("0")
        closed = calculator.get(shift.id)
        assert closed.status == ShiftStatus.CLOSED.value
        assert closed.closed_at == NOW + timedelta(hours=8)
        assert metrics.counters["shifts_closed_total"] == 1

    def test_close_replaces_manual_items(self, calculator, shift):
        calculator.add_item(shift.id, _item("9999"))

        financials = calculator.close_shift(
            shift.id,
            items=[_item("3000", "200"), _item("2000")],
            now=NOW + timedelta(hours=1),
        )

        assert financials.total_amount == Decimal("5000.00")
        assert financials.consumables_amount == Decimal("200.00")
        assert len(calculator.get(shift.id).items) == 2

    def test_closed_shift_rejects_changes(self, calculator, shift):
        calculator.close_shift(shift.id, now=NOW + timedelta(hours=1))

        with pytest.raises(InvalidTransitionError) as exc_info:
            calculator.add_item(shift.id, _item("100"))
        assert exc_info.value.code == "SHIFT_CLOSED"
        with pytest.raises(InvalidTransitionError):
            calculator.close_shift(shift.id, now=NOW + timedelta(hours=2))
        with pytest.raises(InvalidTransitionError):
            calculator.open_shift(shift.staff_id, shift.shift_date, now=NOW)

    def test_failed_close_leaves_shift_open(self, db_session, calculator, shift):
        calculator.add_item(shift.id, _item("1000"))
        shift.percent_salon = Decimal("50")
        db_session.commit()

        with pytest.raises(SettlementInvariantError):
            calculator.close_shift(shift.id, now=NOW + timedelta(hours=1))

        reloaded = calculator.get(shift.id)
        assert reloaded.status == ShiftStatus.OPEN.value
        assert reloaded.closed_at is None

    def test_recompute_is_idempotent(self, db_session, calculator, shift):
        calculator.add_item(shift.id, _item("2500", "300"))
        first = calculator.close_shift(shift.id, now=NOW + timedelta(hours=6))

        again = calculator.recompute(calculator.get(shift.id))
        db_session.rollback()

        assert again == first

    def test_percent_only_staff(self, db_session, calculator, staff):
        staff.payment_mode = PaymentMode.PERCENT_ONLY.value
        db_session.commit()
        shift = calculator.open_shift(staff.id, date(2024, 1, 27), now=NOW)
        calculator.add_item(shift.id, _item("1000"))

        financials = calculator.close_shift(shift.id, now=NOW + timedelta(hours=8))

        assert financials.topup_amount == Decimal("0")
        assert financials.master_share == Decimal("600.00")


class TestHoursOverride:
    def test_override_on_closed_shift(self, calculator, shift):
        calculator.add_item(shift.id, _item("1000"))
        calculator.close_shift(shift.id, now=NOW + timedelta(hours=8))

        financials = calculator.override_hours(shift.id, Decimal("2"))

        assert financials.guaranteed_amount == Decimal("600.00")
        assert financials.master_share == Decimal("600.00")
        assert financials.topup_amount == Decimal("0")
        assert calculator.get(shift.id).hours_overridden is True

    def test_override_survives_close(self, calculator, shift):
        calculator.override_hours(shift.id, Decimal("3"))
        financials = calculator.close_shift(shift.id, now=NOW + timedelta(hours=10))
        assert financials.hours_worked == Decimal("3.00")

    @pytest.mark.parametrize("hours", ["-1", "24.5"])
    def test_override_out_of_range(self, calculator, shift, hours):
        with pytest.raises(ValidationError):
            calculator.override_hours(shift.id, Decimal(hours))


class TestFoldPaidBooking:
    """Paid bookings become shift items exactly once."""

    def test_fold_uses_price(self, calculator, shift, make_booking):
        booking = make_booking(status=BookingStatus.PAID.value)

        item = calculator.fold_paid_booking(shift.id, booking.id)

        assert item.booking_id == booking.id
        assert item.service_amount == Decimal("1000.00")
        assert item.client_name == "Bermet K."
        assert item.service_name == "Haircut"

    def test_fold_uses_discounted_amount(self, db_session, calculator, shift, make_booking):
        booking = make_booking(status=BookingStatus.PAID.value)
        booking.promotion_applied = {
            "promotion_id": "p1",
            "promotion_type": "first_visit_discount",
            "title": "Welcome",
            "original_amount": 1000.0,
            "discount_percent": 20.0,
            "discount_amount": 200.0,
            "final_amount": 800.0,
        }
        db_session.commit()

        item = calculator.fold_paid_booking(shift.id, booking.id)

        assert item.service_amount == Decimal("800.00")

    def test_fold_twice_is_noop(self, calculator, shift, make_booking):
        booking = make_booking(status=BookingStatus.PAID.value)

        first = calculator.fold_paid_booking(shift.id, booking.id)
        second = calculator.fold_paid_booking(shift.id, booking.id)

        assert first.id == second.id
        assert calculator.get(shift.id).total_amount == Decimal("1000.00")

    def test_fold_unpaid_rejected(self, calculator, shift, make_booking):
        booking = make_booking(status=BookingStatus.CONFIRMED.value)
        with pytest.raises(ValidationError) as exc_info:
            calculator.fold_paid_booking(shift.id, booking.id)
        assert exc_info.value.code == "BOOKING_NOT_PAID"

    def test_fold_other_staff_rejected(self, db_session, calculator, staff, make_booking):
        colleague = Staff(business_id=staff.business_id, branch_id=staff.branch_id, full_name="Other")
        db_session.add(colleague)
        db_session.commit()
        other_shift = calculator.open_shift(colleague.id, date(2024, 1, 26), now=NOW)
        booking = make_booking(status=BookingStatus.PAID.value)

        with pytest.raises(ValidationError) as exc_info:
            calculator.fold_paid_booking(other_shift.id, booking.id)
        assert exc_info.value.code == "STAFF_MISMATCH"


class TestCloseStaleShifts:
    """Shifts left open on earlier days are closed by the sweep."""

    def test_closes_yesterday_and_folds_bookings(self, db_session, calculator, staff, make_booking):
        # 2024-01-25 09:00 local
        opened = datetime(2024, 1, 25, 3, 0, tzinfo=timezone.utc)
        stale = calculator.open_shift(staff.id, date(2024, 1, 25), now=opened)
        today = calculator.open_shift(staff.id, date(2024, 1, 26), now=NOW)
        paid = make_booking(start=opened + timedelta(hours=2), status=BookingStatus.PAID.value)
        make_booking(start=opened + timedelta(hours=4), status=BookingStatus.NO_SHOW.value)

        report = calculator.close_stale_shifts(now=NOW)

        assert report.closed == [stale.id]
        assert report.errors == []
        closed = calculator.get(stale.id)
        assert closed.status == ShiftStatus.CLOSED.value
        assert [i.booking_id for i in closed.items] == [paid.id]
        # hours run to the end of the local day (midnight Bishkek = 18:00 UTC)
        assert closed.closed_at == datetime(2024, 1, 25, 18, 0, tzinfo=timezone.utc)
        assert closed.hours_worked == Decimal("15.00")
        assert closed.master_share == Decimal("4500.00")
        assert closed.salon_share == Decimal("0.00")
        assert calculator.get(today.id).status == ShiftStatus.OPEN.value

    def test_failing_shift_is_reported_and_skipped(self, db_session, calculator, staff):
        broken = calculator.open_shift(staff.id, date(2024, 1, 24), now=datetime(2024, 1, 24, 3, 0, tzinfo=timezone.utc))
        fine = calculator.open_shift(staff.id, date(2024, 1, 25), now=datetime(2024, 1, 25, 3, 0, tzinfo=timezone.utc))
        broken.percent_salon = Decimal("10")
        db_session.commit()

        report = calculator.close_stale_shifts(now=NOW)

        assert report.closed == [fine.id]
        assert report.errors[0]["shift_id"] == broken.id
        assert db_session.get(Shift, broken.id).status == ShiftStatus.OPEN.value
