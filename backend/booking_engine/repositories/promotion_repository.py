"""Promotion repository - promotions, usage counters and referrals."""

from datetime import date
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from booking_engine.models import ClientPromotionUsage, ClientReferral, Promotion


class PromotionRepository:
    """Queries and writes for promotion eligibility and bookkeeping."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, promotion_id: str) -> Optional[Promotion]:
        return self.db.get(Promotion, promotion_id)

    def list_for_branch(self, branch_id: str, include_inactive: bool = True) -> List[Promotion]:
        query = self.db.query(Promotion).filter(Promotion.branch_id == branch_id)
        if not include_inactive:
            query = query.filter(Promotion.is_active.is_(True))
        return query.order_by(Promotion.created_at).all()

    def active_for_branch(self, branch_id: str, day: date) -> List[Promotion]:
        """Promotions of the branch that are active on ``day`` (bounds inclusive)."""
        return (
            self.db.query(Promotion)
            .filter(
                Promotion.branch_id == branch_id,
                Promotion.is_active.is_(True),
                (Promotion.valid_from.is_(None)) | (Promotion.valid_from <= day),
                (Promotion.valid_to.is_(None)) | (Promotion.valid_to >= day),
            )
            .order_by(Promotion.created_at)
            .all()
        )

    def get_usage(self, client_id: str, promotion_id: str) -> Optional[ClientPromotionUsage]:
        return (
            self.db.query(ClientPromotionUsage)
            .filter(
                ClientPromotionUsage.client_id == client_id,
                ClientPromotionUsage.promotion_id == promotion_id,
            )
            .first()
        )

    def get_or_create_usage(self, client_id: str, promotion_id: str) -> ClientPromotionUsage:
        usage = self.get_usage(client_id, promotion_id)
        if usage is None:
            usage = ClientPromotionUsage(client_id=client_id, promotion_id=promotion_id, usage_count=0)
            self.db.add(usage)
        return usage

    def usage_totals_for_branch(self, branch_id: str) -> Dict[str, int]:
        """promotion_id -> total usage across clients."""
        rows = (
            self.db.query(ClientPromotionUsage.promotion_id, func.sum(ClientPromotionUsage.usage_count))
            .join(Promotion, Promotion.id == ClientPromotionUsage.promotion_id)
            .filter(Promotion.branch_id == branch_id)
            .group_by(ClientPromotionUsage.promotion_id)
            .all()
        )
        return {promotion_id: int(total or 0) for promotion_id, total in rows}

    def find_redeemable_referral(self, referrer_id: str) -> Optional[ClientReferral]:
        """Oldest referral whose referred client has paid and whose bonus is unspent."""
        return (
            self.db.query(ClientReferral)
            .filter(
                ClientReferral.referrer_id == referrer_id,
                ClientReferral.referred_booking_id.is_not(None),
                ClientReferral.referrer_bonus_used.is_(False),
            )
            .order_by(ClientReferral.created_at)
            .first()
        )

    def pending_referrals_for_referred(self, referred_id: str) -> List[ClientReferral]:
        """Referrals where the client was referred and has not completed a paid visit yet."""
        return (
            self.db.query(ClientReferral)
            .filter(
                ClientReferral.referred_id == referred_id,
                ClientReferral.referred_booking_id.is_(None),
            )
            .all()
        )
