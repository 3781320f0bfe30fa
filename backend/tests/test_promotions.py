"""Tests for promotion selection, application and the promotion catalog."""

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from pydantic import ValidationError as PydanticValidationError

from booking_engine.core.errors import NotFoundError, ValidationError
from booking_engine.models import (
    Booking,
    BookingStatus,
    Branch,
    Client,
    ClientPromotionUsage,
    ClientReferral,
    PromotionType,
)
from booking_engine.schemas.promotions import PromotionCreate, PromotionUpdate, parse_params
from booking_engine.services.booking_state_machine import BookingStateMachine
from booking_engine.services.notifications import LoggingNotifier, NotificationDispatcher
from booking_engine.services.promotion_catalog import PromotionCatalog
from booking_engine.services.promotion_engine import (
    PromotionEngine,
    birthday_in_year,
    is_within_birthday_window,
)

from tests.conftest import NOW


@pytest.fixture
def machine(db_session):
    return BookingStateMachine(db_session, dispatcher=NotificationDispatcher(notifier=LoggingNotifier()))


def _pay(machine, booking):
    return machine.mark_attendance(booking.id, attended=True, now=NOW)


class TestBirthdayWindow:
    """Pure birthday window helpers."""

    def test_same_day(self):
        assert is_within_birthday_window(date(1990, 6, 15), date(2024, 6, 15), 3)

    def test_window_edges(self):
        birth = date(1990, 6, 15)
        assert is_within_birthday_window(birth, date(2024, 6, 12), 3)
        assert is_within_birthday_window(birth, date(2024, 6, 18), 3)
        assert not is_within_birthday_window(birth, date(2024, 6, 19), 3)
        assert not is_within_birthday_window(birth, date(2024, 6, 11), 3)

    def test_window_crosses_new_year(self):
        assert is_within_birthday_window(date(1990, 1, 2), date(2023, 12, 30), 3)
        assert is_within_birthday_window(date(1990, 12, 30), date(2024, 1, 1), 3)

    def test_feb_29_in_non_leap_year(self):
        assert birthday_in_year(date(2000, 2, 29), 2023) == date(2023, 2, 28)
        assert birthday_in_year(date(2000, 2, 29), 2024) == date(2024, 2, 29)
        assert is_within_birthday_window(date(2000, 2, 29), date(2023, 3, 3), 3)

    def test_zero_window(self):
        assert is_within_birthday_window(date(1990, 6, 15), date(2024, 6, 15), 0)
        assert not is_within_birthday_window(date(1990, 6, 15), date(2024, 6, 16), 0)


class TestFreeAfterNVisits:
    """Every N-th paid visit at the branch is free."""

    def test_every_fifth_visit_is_free(self, db_session, machine, make_booking, make_promotion):
        make_promotion(PromotionType.FREE_AFTER_N_VISITS, {"visit_count": 5})

        outcomes = []
        for i in range(10):
            booking = make_booking(start=NOW - timedelta(hours=20 - i))
            result = _pay(machine, booking)
            outcomes.append(result.promotion_applied["final_amount"] if result.promotion_applied else None)

        assert outcomes == [None, None, None, None, 0.0, None, None, None, None, 0.0]

    def test_visits_at_other_branch_do_not_count(self, db_session, machine, make_booking, make_promotion, business):
        other = Branch(business_id=business.id, name="Uptown")
        db_session.add(other)
        db_session.commit()
        make_promotion(PromotionType.FREE_AFTER_N_VISITS, {"visit_count": 2})

        elsewhere = make_booking(start=NOW - timedelta(hours=5), status=BookingStatus.PAID.value)
        elsewhere.branch_id = other.id
        db_session.commit()

        result = _pay(machine, make_booking())
        assert result.promotion_applied is None

    def test_no_shows_do_not_count(self, machine, make_booking, make_promotion):
        make_promotion(PromotionType.FREE_AFTER_N_VISITS, {"visit_count": 2})
        make_booking(start=NOW - timedelta(hours=5), status=BookingStatus.NO_SHOW.value)

        assert _pay(machine, make_booking()).promotion_applied is None


class TestPrecedence:
    """Exactly one promotion, picked by priority."""

    def test_birthday_beats_first_visit(self, db_session, machine, make_booking, make_promotion, customer):
        customer.birth_date = date(1995, 1, 27)
        db_session.commit()
        make_promotion(PromotionType.FIRST_VISIT_DISCOUNT, {"discount_percent": 10})
        birthday = make_promotion(PromotionType.BIRTHDAY_DISCOUNT, {"discount_percent": 25})

        result = _pay(machine, make_booking())

        assert result.promotion_applied["promotion_id"] == birthday.id
        assert result.promotion_applied["final_amount"] == 750.0
        assert db_session.query(ClientPromotionUsage).count() == 1

    def test_first_visit_beats_free_after_n(self, machine, make_booking, make_promotion):
        make_promotion(PromotionType.FREE_AFTER_N_VISITS, {"visit_count": 1})
        first = make_promotion(PromotionType.FIRST_VISIT_DISCOUNT, {"discount_percent": 10})

        result = _pay(machine, make_booking())

        assert result.promotion_applied["promotion_id"] == first.id
        assert result.promotion_applied["discount_amount"] == 100.0

    def test_misconfigured_promotion_is_skipped(self, db_session, machine, make_booking, make_promotion):
        broken = make_promotion(PromotionType.BIRTHDAY_DISCOUNT, {"discount_percent": 10})
        broken.params = {"discount_percent": "lots"}
        db_session.commit()
        first = make_promotion(PromotionType.FIRST_VISIT_DISCOUNT, {"discount_percent": 10})

        assert _pay(machine, make_booking()).promotion_applied["promotion_id"] == first.id

    def test_inactive_and_expired_promotions_ignored(self, machine, make_booking, make_promotion):
        make_promotion(PromotionType.FIRST_VISIT_DISCOUNT, {"discount_percent": 10}, is_active=False)
        make_promotion(
            PromotionType.FIRST_VISIT_DISCOUNT,
            {"discount_percent": 15},
            valid_to=date(2024, 1, 25),
        )
        make_promotion(
            PromotionType.FIRST_VISIT_DISCOUNT,
            {"discount_percent": 20},
            valid_from=date(2024, 1, 27),
        )

        assert _pay(machine, make_booking()).promotion_applied is None

    def test_booking_without_client_gets_nothing(self, machine, make_booking, make_promotion):
        make_promotion(PromotionType.FREE_AFTER_N_VISITS, {"visit_count": 1})
        assert _pay(machine, make_booking(client_id=None)).promotion_applied is None


class TestFirstVisit:
    def test_only_first_paid_visit(self, machine, make_booking, make_promotion):
        make_promotion(PromotionType.FIRST_VISIT_DISCOUNT, {"discount_percent": 10})

        first = _pay(machine, make_booking(start=NOW - timedelta(hours=3)))
        second = _pay(machine, make_booking(start=NOW - timedelta(hours=1)))

        assert first.promotion_applied is not None
        assert second.promotion_applied is None


class TestBirthday:
    def _pay_on(self, machine, booking, when):
        return machine.mark_attendance(booking.id, attended=True, now=when)

    def test_window_across_new_year_grants_one_discount(self, db_session, machine, make_booking, make_promotion,
                                                        customer):
        customer.birth_date = date(1990, 1, 1)
        db_session.commit()
        make_promotion(PromotionType.BIRTHDAY_DISCOUNT, {"discount_percent": 20, "window_days": 3})

        before = self._pay_on(machine, make_booking(start=datetime(2023, 12, 30, 5, 0, tzinfo=timezone.utc)),
                              datetime(2023, 12, 30, 9, 0, tzinfo=timezone.utc))
        after = self._pay_on(machine, make_booking(start=datetime(2024, 1, 2, 5, 0, tzinfo=timezone.utc)),
                             datetime(2024, 1, 2, 9, 0, tzinfo=timezone.utc))
        next_year = self._pay_on(machine, make_booking(start=datetime(2024, 12, 31, 5, 0, tzinfo=timezone.utc)),
                                 datetime(2024, 12, 31, 9, 0, tzinfo=timezone.utc))

        assert before.promotion_applied["promotion_type"] == "birthday_discount"
        assert after.promotion_applied is None
        assert next_year.promotion_applied["promotion_type"] == "birthday_discount"

    def test_late_attendance_counts_by_visit_date(self, db_session, machine, make_booking, make_promotion, customer):
        customer.birth_date = date(1990, 1, 1)
        db_session.commit()
        make_promotion(PromotionType.BIRTHDAY_DISCOUNT, {"discount_percent": 20, "window_days": 3})

        # Dec 30 visit is only marked on Jan 3
        first = self._pay_on(machine, make_booking(start=datetime(2023, 12, 30, 5, 0, tzinfo=timezone.utc)),
                             datetime(2024, 1, 3, 9, 0, tzinfo=timezone.utc))
        # the next birthday window opens on Dec 29, 2024
        second = self._pay_on(machine, make_booking(start=datetime(2024, 12, 31, 5, 0, tzinfo=timezone.utc)),
                              datetime(2024, 12, 31, 9, 0, tzinfo=timezone.utc))

        assert first.promotion_applied is not None
        assert second.promotion_applied["promotion_type"] == "birthday_discount"

    def test_once_per_birthday(self, db_session, machine, make_booking, make_promotion, customer):
        customer.birth_date = date(1990, 1, 25)
        db_session.commit()
        make_promotion(PromotionType.BIRTHDAY_DISCOUNT, {"discount_percent": 20})

        first = _pay(machine, make_booking(start=NOW - timedelta(hours=3)))
        second = _pay(machine, make_booking(start=NOW - timedelta(hours=1)))

        assert first.promotion_applied["promotion_type"] == "birthday_discount"
        assert second.promotion_applied is None

    def test_outside_window(self, db_session, machine, make_booking, make_promotion, customer):
        customer.birth_date = date(1990, 2, 10)
        db_session.commit()
        make_promotion(PromotionType.BIRTHDAY_DISCOUNT, {"discount_percent": 20, "window_days": 3})

        assert _pay(machine, make_booking()).promotion_applied is None

    def test_client_without_birth_date(self, db_session, machine, make_booking, make_promotion, customer):
        customer.birth_date = None
        db_session.commit()
        make_promotion(PromotionType.BIRTHDAY_DISCOUNT, {"discount_percent": 20})

        assert _pay(machine, make_booking()).promotion_applied is None


class TestReferral:
    """The referrer's bonus unlocks after the referred client's first paid visit."""

    @pytest.fixture
    def friend(self, db_session):
        friend = Client(full_name="Referred Friend")
        db_session.add(friend)
        db_session.commit()
        return friend

    def test_referral_free_after_friend_pays(self, db_session, machine, make_booking, make_promotion, customer, friend):
        referral = ClientReferral(referrer_id=customer.id, referred_id=friend.id)
        db_session.add(referral)
        db_session.commit()
        promotion = make_promotion(PromotionType.REFERRAL_FREE)

        # before the friend has paid, nothing is redeemable
        early = _pay(machine, make_booking(start=NOW - timedelta(hours=6)))
        assert early.promotion_applied is None

        friend_booking = make_booking(start=NOW - timedelta(hours=4), client_id=friend.id)
        _pay(machine, friend_booking)
        db_session.refresh(referral)
        assert referral.referred_booking_id == friend_booking.id

        bonus_booking = make_booking(start=NOW - timedelta(hours=2))
        bonus = _pay(machine, bonus_booking)
        assert bonus.promotion_applied["promotion_id"] == promotion.id
        assert bonus.promotion_applied["final_amount"] == 0.0

        db_session.refresh(referral)
        assert referral.referrer_bonus_used is True
        assert referral.referrer_booking_id == bonus_booking.id

        # the bonus is spent once
        assert _pay(machine, make_booking(start=NOW - timedelta(minutes=30))).promotion_applied is None

    def test_referral_discount_is_fixed_at_50(self, db_session, machine, make_booking, make_promotion,
                                              customer, friend):
        db_session.add(ClientReferral(referrer_id=customer.id, referred_id=friend.id))
        db_session.commit()
        make_promotion(PromotionType.REFERRAL_DISCOUNT_50)
        _pay(machine, make_booking(start=NOW - timedelta(hours=4), client_id=friend.id))

        result = _pay(machine, make_booking(start=NOW - timedelta(hours=2)))

        assert result.promotion_applied["discount_percent"] == 50
        assert result.promotion_applied["final_amount"] == 500.0

    def test_referral_discount_percent_cannot_be_overridden(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_params(PromotionType.REFERRAL_DISCOUNT_50, {"discount_percent": 20})
        assert exc_info.value.code == "INVALID_PROMOTION_PARAMS"

    def test_stored_override_never_changes_the_discount(self, db_session, machine, make_booking, make_promotion,
                                                        customer, friend):
        db_session.add(ClientReferral(referrer_id=customer.id, referred_id=friend.id))
        db_session.commit()
        make_promotion(PromotionType.REFERRAL_DISCOUNT_50, {"discount_percent": 20})
        _pay(machine, make_booking(start=NOW - timedelta(hours=4), client_id=friend.id))

        result = _pay(machine, make_booking(start=NOW - timedelta(hours=2)))

        # the row fails params validation and is skipped
        assert result.promotion_applied is None


class TestEngine:
    """Direct engine behaviour."""

    def test_evaluate_writes_nothing(self, db_session, make_booking, make_promotion):
        make_promotion(PromotionType.FIRST_VISIT_DISCOUNT, {"discount_percent": 10})
        booking = make_booking()

        result = PromotionEngine(db_session).evaluate(booking, now=NOW)

        assert result.final_amount == Decimal("900.00")
        db_session.rollback()
        assert db_session.query(ClientPromotionUsage).count() == 0
        assert db_session.get(Booking, booking.id).promotion_applied is None

    def test_apply_is_idempotent(self, db_session, make_booking, make_promotion, customer):
        make_promotion(PromotionType.FIRST_VISIT_DISCOUNT, {"discount_percent": 10})
        booking = make_booking()
        engine = PromotionEngine(db_session)

        first = engine.apply(booking, now=NOW)
        second = engine.apply(booking, now=NOW)
        db_session.commit()

        assert first == second
        usage = db_session.query(ClientPromotionUsage).filter_by(client_id=customer.id).one()
        assert usage.usage_count == 1
        assert usage.last_booking_id == booking.id

    def test_discount_rounds_to_cents(self, db_session, make_booking, make_promotion):
        make_promotion(PromotionType.FIRST_VISIT_DISCOUNT, {"discount_percent": 33.33})
        booking = make_booking(price=Decimal("99.99"))

        result = PromotionEngine(db_session).evaluate(booking, now=NOW)

        assert result.discount_amount == Decimal("33.33")
        assert result.final_amount == Decimal("66.66")


class TestParams:
    def test_unknown_type(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_params("half_price_tuesday", {})
        assert exc_info.value.code == "INVALID_PROMOTION_TYPE"

    def test_extra_fields_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_params(PromotionType.FREE_AFTER_N_VISITS, {"visit_count": 5, "discount_percent": 10})
        assert exc_info.value.code == "INVALID_PROMOTION_PARAMS"

    def test_birthday_window_defaults(self):
        assert parse_params(PromotionType.BIRTHDAY_DISCOUNT, {"discount_percent": 10}).window_days == 3


class TestPromotionCatalog:
    def test_create_validates_params(self, db_session, branch):
        catalog = PromotionCatalog(db_session)
        with pytest.raises(ValidationError):
            catalog.create(branch.id, PromotionCreate(
                promotion_type=PromotionType.FREE_AFTER_N_VISITS,
                title="Fifth free",
                params={"visit_count": 0},
            ))

    def test_create_for_unknown_branch(self, db_session):
        with pytest.raises(NotFoundError):
            PromotionCatalog(db_session).create("nope", PromotionCreate(
                promotion_type=PromotionType.REFERRAL_FREE, title="Bring a friend",
            ))

    def test_update_and_deactivate(self, db_session, branch):
        catalog = PromotionCatalog(db_session)
        promotion = catalog.create(branch.id, PromotionCreate(
            promotion_type=PromotionType.FREE_AFTER_N_VISITS,
            title="Fifth free",
            params={"visit_count": 5},
        ))

        catalog.update(branch.id, promotion.id, PromotionUpdate(params={"visit_count": 6}))
        assert promotion.params == {"visit_count": 6}

        catalog.deactivate(branch.id, promotion.id)
        assert [p.id for p, _ in catalog.list(branch.id, include_inactive=False)] == []
        assert [p.id for p, _ in catalog.list(branch.id)] == [promotion.id]

    def test_update_rejects_inverted_dates(self, db_session, branch):
        catalog = PromotionCatalog(db_session)
        promotion = catalog.create(branch.id, PromotionCreate(
            promotion_type=PromotionType.REFERRAL_FREE, title="Bring a friend", valid_from=date(2024, 2, 1),
        ))
        with pytest.raises(ValidationError):
            catalog.update(branch.id, promotion.id, PromotionUpdate(valid_to=date(2024, 1, 1)))

    @pytest.mark.parametrize("field", ["title", "is_active", "params"])
    def test_update_rejects_explicit_null(self, field):
        with pytest.raises(PydanticValidationError):
            PromotionUpdate(**{field: None})
        assert PromotionUpdate().model_dump(exclude_unset=True) == {}

    def test_promotion_of_other_branch_not_found(self, db_session, branch):
        catalog = PromotionCatalog(db_session)
        promotion = catalog.create(branch.id, PromotionCreate(
            promotion_type=PromotionType.REFERRAL_FREE, title="Bring a friend",
        ))
        with pytest.raises(NotFoundError):
            catalog.get("other-branch", promotion.id)

    def test_list_reports_usage(self, db_session, machine, branch, make_booking):
        catalog = PromotionCatalog(db_session)
        promotion = catalog.create(branch.id, PromotionCreate(
            promotion_type=PromotionType.FREE_AFTER_N_VISITS,
            title="Every visit free",
            params={"visit_count": 1},
        ))
        _pay(machine, make_booking(start=NOW - timedelta(hours=2)))
        _pay(machine, make_booking(start=NOW - timedelta(hours=1)))

        assert catalog.list(branch.id) == [(promotion, 2)]
