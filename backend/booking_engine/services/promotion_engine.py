"""Promotion Engine - picks and applies at most one promotion per paid visit.

Selection:
1. Collect the branch promotions active today (business timezone).
2. Walk them in precedence order: referral_free, referral_discount_50,
   birthday_discount, first_visit_discount, free_after_n_visits.
3. The first eligible promotion wins. Promotions never stack.

Applying writes the outcome onto ``Booking.promotion_applied``, bumps the
client's usage counter and spends the referral bonus if one was used. The
engine never commits: the caller owns the transaction so the status change
and the promotion outcome land together.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from booking_engine.core.config import Settings, settings
from booking_engine.core.errors import ValidationError
from booking_engine.core.metrics import metrics
from booking_engine.core.money import ZERO, percent_of, to_money
from booking_engine.core.timeutils import local_date, resolve_now
from booking_engine.models import (
    PROMOTION_PRECEDENCE,
    Booking,
    Client,
    ClientReferral,
    Promotion,
    PromotionType,
)
from booking_engine.repositories.booking_repository import BookingRepository
from booking_engine.repositories.promotion_repository import PromotionRepository
from booking_engine.schemas.promotions import (
    PromotionResult,
    parse_params,
)

logger = logging.getLogger(__name__)

# The referral discount is fixed, not configurable per promotion
REFERRAL_DISCOUNT_PERCENT = 50.0


def birthday_in_year(birth_date: date, year: int) -> date:
    """The client's birthday in ``year``; Feb 29 falls back to Feb 28 in non-leap years."""
    try:
        return birth_date.replace(year=year)
    except ValueError:
        return date(year, 2, 28)


def birthday_occurrence(birth_date: date, day: date, window_days: int) -> Optional[date]:
    """The birthday whose window contains ``day``, or None.

    Neighbouring years are checked too, so Dec 30 belongs to the window of the
    following Jan 2 birthday.
    """
    for year in (day.year - 1, day.year, day.year + 1):
        birthday = birthday_in_year(birth_date, year)
        if abs((day - birthday).days) <= window_days:
            return birthday
    return None


def is_within_birthday_window(birth_date: date, day: date, window_days: int) -> bool:
    """True when ``day`` is at most ``window_days`` away from a birthday."""
    return birthday_occurrence(birth_date, day, window_days) is not None


@dataclass
class _Candidate:
    promotion: Promotion
    discount_percent: float
    referral: Optional[ClientReferral] = None


class PromotionEngine:
    """Evaluates and applies branch promotions to bookings."""

    def __init__(self, db: Session, config: Settings = settings):
        self.db = db
        self.config = config
        self.promotions = PromotionRepository(db)
        self.bookings = BookingRepository(db)

    def evaluate(self, booking: Booking, now: Optional[datetime] = None) -> Optional[PromotionResult]:
        """Dry run: the promotion that would apply, without writing anything."""
        if booking.promotion_applied:
            return PromotionResult(**booking.promotion_applied)
        candidate = self._select(booking, resolve_now(now))
        if candidate is None:
            return None
        return self._build_result(booking, candidate)

    def apply(self, booking: Booking, now: Optional[datetime] = None) -> Optional[PromotionResult]:
        """Apply the winning promotion to ``booking``. Returns None when nothing is eligible.

        A booking that already carries a promotion outcome is returned as is,
        so a retried call never applies a second promotion.
        """
        if booking.promotion_applied:
            return PromotionResult(**booking.promotion_applied)

        now = resolve_now(now)
        candidate = self._select(booking, now)
        if candidate is None:
            logger.debug("No eligible promotion for booking %s", booking.id)
            return None

        result = self._build_result(booking, candidate)

        usage = self.promotions.get_or_create_usage(booking.client_id, candidate.promotion.id)
        usage.usage_count = (usage.usage_count or 0) + 1
        usage.last_used_at = now
        usage.last_booking_id = booking.id

        if candidate.referral is not None:
            candidate.referral.referrer_bonus_used = True
            candidate.referral.referrer_booking_id = booking.id

        booking.promotion_applied = result.to_record()
        self.db.flush()

        metrics.inc("promotions_applied_total")
        logger.info(
            "Applied promotion %s (%s) to booking %s: %s -> %s",
            candidate.promotion.id,
            candidate.promotion.promotion_type,
            booking.id,
            result.original_amount,
            result.final_amount,
        )
        return result

    def _build_result(self, booking: Booking, candidate: _Candidate) -> PromotionResult:
        original = to_money(booking.price)
        discount = percent_of(original, candidate.discount_percent)
        final = max(ZERO, original - discount)
        return PromotionResult(
            promotion_id=candidate.promotion.id,
            promotion_type=PromotionType(candidate.promotion.promotion_type),
            title=candidate.promotion.title,
            original_amount=original,
            discount_percent=candidate.discount_percent,
            discount_amount=original - final,
            final_amount=final,
        )

    def _select(self, booking: Booking, now: datetime) -> Optional[_Candidate]:
        if not booking.client_id:
            return None
        client = self.db.get(Client, booking.client_id)
        if client is None:
            return None

        active = self.promotions.active_for_branch(booking.branch_id, local_date(now))
        if not active:
            return None

        by_type: Dict[PromotionType, List[Promotion]] = {}
        for promotion in active:
            try:
                kind = PromotionType(promotion.promotion_type)
            except ValueError:
                logger.warning("Skipping promotion %s with unknown type %r", promotion.id, promotion.promotion_type)
                continue
            by_type.setdefault(kind, []).append(promotion)

        visits = self.bookings.count_paid_visits(client.id, booking.branch_id, exclude_booking_id=booking.id) + 1
        booking_day = local_date(booking.start_at)

        for kind in PROMOTION_PRECEDENCE:
            for promotion in by_type.get(kind, []):
                try:
                    params = parse_params(kind, promotion.params)
                except ValidationError as e:
                    logger.warning("Skipping misconfigured promotion %s: %s", promotion.id, e.message)
                    continue
                candidate = self._check(kind, promotion, params, client, visits, booking_day)
                if candidate is not None:
                    return candidate
        return None

    def _check(self, kind, promotion, params, client, visits, booking_day) -> Optional[_Candidate]:
        if kind in (PromotionType.REFERRAL_FREE, PromotionType.REFERRAL_DISCOUNT_50):
            referral = self.promotions.find_redeemable_referral(client.id)
            if referral is None:
                return None
            percent = 100.0 if kind == PromotionType.REFERRAL_FREE else REFERRAL_DISCOUNT_PERCENT
            return _Candidate(promotion, percent, referral)

        if kind == PromotionType.BIRTHDAY_DISCOUNT:
            if client.birth_date is None:
                return None
            birthday = birthday_occurrence(client.birth_date, booking_day, params.window_days)
            if birthday is None:
                return None
            # once per birthday, even when the window spans New Year
            last_day = self._last_used_day(client.id, promotion.id)
            if last_day is not None and birthday_occurrence(client.birth_date, last_day, params.window_days) == birthday:
                return None
            return _Candidate(promotion, params.discount_percent)

        if kind == PromotionType.FIRST_VISIT_DISCOUNT:
            if visits != 1:
                return None
            usage = self.promotions.get_usage(client.id, promotion.id)
            if usage and usage.usage_count > 0:
                return None
            return _Candidate(promotion, params.discount_percent)

        if kind == PromotionType.FREE_AFTER_N_VISITS:
            if visits % params.visit_count != 0:
                return None
            return _Candidate(promotion, 100.0)

        return None

    def _last_used_day(self, client_id: str, promotion_id: str) -> Optional[date]:
        """Local date of the visit that last used the promotion."""
        usage = self.promotions.get_usage(client_id, promotion_id)
        if usage is None:
            return None
        if usage.last_booking_id:
            last_booking = self.bookings.get(usage.last_booking_id)
            if last_booking is not None:
                return local_date(last_booking.start_at)
        return local_date(usage.last_used_at) if usage.last_used_at else None
