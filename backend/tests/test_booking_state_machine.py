"""Tests for booking status transitions."""

import pytest
from datetime import timedelta

from booking_engine.core.errors import FutureBookingError, InvalidTransitionError, NotFoundError
from booking_engine.core.metrics import metrics
from booking_engine.models import Booking, BookingStatus, ClientPromotionUsage, PromotionType
from booking_engine.services.booking_state_machine import BookingStateMachine
from booking_engine.services.notifications import NotificationDispatcher
from booking_engine.services.slot_guard import SlotAvailabilityGuard

from tests.conftest import NOW


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.events = []
        self.fail = fail

    def notify(self, event, payload):
        if self.fail:
            raise RuntimeError("webhook down")
        self.events.append((event, payload))


class ExplodingPromotionEngine:
    """Writes something, then fails half-way through."""

    def __init__(self, db):
        self.db = db

    def apply(self, booking, now=None):
        booking.notes = "half-applied"
        self.db.flush()
        raise RuntimeError("boom")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def machine(db_session, notifier):
    return BookingStateMachine(db_session, dispatcher=NotificationDispatcher(notifier=notifier))


def _hold(db_session, staff, service, customer, start=NOW + timedelta(hours=1)):
    guard = SlotAvailabilityGuard(db_session)
    return guard.reserve(staff.id, staff.branch_id, service.id, start, client_id=customer.id, now=NOW)


class TestConfirm:
    """hold -> confirmed."""

    def test_confirm_hold(self, db_session, machine, notifier, staff, service, customer):
        booking_id = _hold(db_session, staff, service, customer)
        booking = machine.confirm(booking_id, now=NOW + timedelta(minutes=5))

        assert booking.status == BookingStatus.CONFIRMED.value
        assert booking.confirmed_at == NOW + timedelta(minutes=5)
        assert booking.hold_expires_at is None
        assert [e for e, _ in notifier.events] == ["booking.confirmed"]
        assert notifier.events[0][1]["booking_id"] == booking_id

    def test_confirm_expired_hold_releases_slot(self, db_session, machine, notifier, staff, service, customer):
        booking_id = _hold(db_session, staff, service, customer)

        with pytest.raises(InvalidTransitionError) as exc_info:
            machine.confirm(booking_id, now=NOW + timedelta(minutes=15))

        assert exc_info.value.code == "HOLD_EXPIRED"
        db_session.expire_all()
        assert db_session.get(Booking, booking_id).status == BookingStatus.CANCELLED.value
        assert notifier.events == []

    def test_confirm_twice_rejected(self, db_session, machine, staff, service, customer):
        booking_id = _hold(db_session, staff, service, customer)
        machine.confirm(booking_id, now=NOW)

        with pytest.raises(InvalidTransitionError) as exc_info:
            machine.confirm(booking_id, now=NOW)
        assert exc_info.value.current_status == BookingStatus.CONFIRMED.value
        assert exc_info.value.status_code == 409

    def test_confirm_cancelled_rejected(self, machine, make_booking):
        booking = make_booking(status=BookingStatus.CANCELLED.value)
        with pytest.raises(InvalidTransitionError):
            machine.confirm(booking.id, now=NOW)

    def test_confirm_unknown_booking(self, machine):
        with pytest.raises(NotFoundError):
            machine.confirm("does-not-exist", now=NOW)

    def test_failing_notifier_does_not_undo_confirm(self, db_session, staff, service, customer):
        machine = BookingStateMachine(db_session, dispatcher=NotificationDispatcher(notifier=RecordingNotifier(fail=True)))
        booking_id = _hold(db_session, staff, service, customer)

        booking = machine.confirm(booking_id, now=NOW)

        assert booking.status == BookingStatus.CONFIRMED.value
        assert metrics.counters["notifications_failed_total"] == 1


class TestMarkAttendance:
    """confirmed -> paid | no_show."""

    def test_attended_becomes_paid(self, machine, make_booking):
        booking = make_booking()
        result = machine.mark_attendance(booking.id, attended=True, now=NOW)

        assert result.status == BookingStatus.PAID
        assert result.changed is True
        assert result.promotion_applied is None
        assert result.promotion_error is None

    def test_not_attended_becomes_no_show(self, db_session, machine, make_booking):
        booking = make_booking()
        result = machine.mark_attendance(booking.id, attended=False, now=NOW)

        assert result.status == BookingStatus.NO_SHOW
        db_session.expire_all()
        assert db_session.get(Booking, booking.id).attended_at == NOW

    def test_repeat_attendance_is_noop(self, machine, make_booking):
        booking = make_booking()
        machine.mark_attendance(booking.id, attended=True, now=NOW)

        again = machine.mark_attendance(booking.id, attended=False, now=NOW)

        assert again.status == BookingStatus.PAID
        assert again.changed is False

    def test_repeat_paid_does_not_reapply_promotion(self, db_session, machine, make_booking, make_promotion,
                                                    customer):
        promotion = make_promotion(PromotionType.FIRST_VISIT_DISCOUNT, {"discount_percent": 20})
        booking = make_booking()

        first = machine.mark_attendance(booking.id, attended=True, now=NOW)
        second = machine.mark_attendance(booking.id, attended=True, now=NOW + timedelta(minutes=5))

        assert second.changed is False
        assert second.promotion_applied == first.promotion_applied
        usage = db_session.query(ClientPromotionUsage).filter_by(client_id=customer.id, promotion_id=promotion.id).one()
        assert usage.usage_count == 1
        assert metrics.counters["promotions_applied_total"] == 1

    def test_hold_cannot_be_marked(self, machine, make_booking):
        booking = make_booking(status=BookingStatus.HOLD.value)
        with pytest.raises(InvalidTransitionError) as exc_info:
            machine.mark_attendance(booking.id, attended=True, now=NOW)
        assert exc_info.value.target_status == BookingStatus.PAID.value

    def test_cancelled_cannot_be_marked(self, machine, make_booking):
        booking = make_booking(status=BookingStatus.CANCELLED.value)
        with pytest.raises(InvalidTransitionError):
            machine.mark_attendance(booking.id, attended=False, now=NOW)

    def test_future_booking_rejected(self, db_session, machine, make_booking):
        booking = make_booking(start=NOW + timedelta(minutes=1))
        with pytest.raises(FutureBookingError):
            machine.mark_attendance(booking.id, attended=True, now=NOW)
        db_session.expire_all()
        assert db_session.get(Booking, booking.id).status == BookingStatus.CONFIRMED.value

    def test_booking_starting_now_can_be_marked(self, machine, make_booking):
        booking = make_booking(start=NOW)
        assert machine.mark_attendance(booking.id, attended=True, now=NOW).status == BookingStatus.PAID

    def test_promotion_failure_does_not_block_payment(self, db_session, make_booking):
        machine = BookingStateMachine(
            db_session,
            promotion_engine=ExplodingPromotionEngine(db_session),
            dispatcher=NotificationDispatcher(notifier=RecordingNotifier()),
        )
        booking = make_booking()

        result = machine.mark_attendance(booking.id, attended=True, now=NOW)

        assert result.status == BookingStatus.PAID
        assert result.promotion_applied is None
        assert result.promotion_error == "Promotion evaluation failed: RuntimeError"
        assert metrics.counters["promotion_failures_total"] == 1

        db_session.expire_all()
        stored = db_session.get(Booking, booking.id)
        assert stored.status == BookingStatus.PAID.value
        # writes made inside the failed promotion step are rolled back
        assert stored.notes is None
        assert stored.promotion_applied is None

    def test_paid_applies_promotion(self, db_session, machine, make_booking, make_promotion, customer):
        promotion = make_promotion(PromotionType.FIRST_VISIT_DISCOUNT, {"discount_percent": 20})
        booking = make_booking()

        result = machine.mark_attendance(booking.id, attended=True, now=NOW)

        assert result.promotion_applied["promotion_id"] == promotion.id
        assert result.promotion_applied["final_amount"] == 800.0
        usage = db_session.query(ClientPromotionUsage).filter_by(client_id=customer.id).one()
        assert usage.usage_count == 1


class TestCancel:
    """hold|confirmed -> cancelled."""

    def test_cancel_confirmed(self, machine, notifier, make_booking):
        booking = make_booking(start=NOW + timedelta(days=1))
        cancelled = machine.cancel(booking.id, now=NOW)

        assert cancelled.status == BookingStatus.CANCELLED.value
        assert cancelled.cancelled_at == NOW
        assert [e for e, _ in notifier.events] == ["booking.cancelled"]

    def test_cancel_twice_is_noop(self, machine, notifier, make_booking):
        booking = make_booking(status=BookingStatus.HOLD.value)
        machine.cancel(booking.id, now=NOW)
        machine.cancel(booking.id, now=NOW + timedelta(hours=1))

        assert len(notifier.events) == 1

    @pytest.mark.parametrize("status", [BookingStatus.PAID.value, BookingStatus.NO_SHOW.value])
    def test_cancel_after_attendance_rejected(self, machine, make_booking, status):
        booking = make_booking(status=status)
        with pytest.raises(InvalidTransitionError):
            machine.cancel(booking.id, now=NOW)

    def test_cancel_frees_slot(self, db_session, machine, staff, service, customer):
        start = NOW + timedelta(hours=1)
        booking_id = _hold(db_session, staff, service, customer, start=start)
        machine.cancel(booking_id, now=NOW)

        assert _hold(db_session, staff, service, customer, start=start) != booking_id
