"""Branch promotion management."""

import logging
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from booking_engine.core.errors import NotFoundError, ValidationError
from booking_engine.models import Branch, Promotion
from booking_engine.repositories.promotion_repository import PromotionRepository
from booking_engine.schemas.promotions import PromotionCreate, PromotionUpdate, parse_params

logger = logging.getLogger(__name__)


class PromotionCatalog:
    """Create, edit and list promotions of a branch."""

    def __init__(self, db: Session):
        self.db = db
        self.repo = PromotionRepository(db)

    def _get_branch_promotion(self, branch_id: str, promotion_id: str) -> Promotion:
        promotion = self.repo.get(promotion_id)
        if promotion is None or promotion.branch_id != branch_id:
            raise NotFoundError("Promotion", promotion_id)
        return promotion

    def create(self, branch_id: str, data: PromotionCreate) -> Promotion:
        if self.db.get(Branch, branch_id) is None:
            raise NotFoundError("Branch", branch_id)
        params = parse_params(data.promotion_type, data.params)
        promotion = Promotion(
            branch_id=branch_id,
            promotion_type=data.promotion_type.value,
            title=data.title,
            description=data.description,
            params=params.model_dump(),
            valid_from=data.valid_from,
            valid_to=data.valid_to,
            is_active=data.is_active,
        )
        self.db.add(promotion)
        self.db.commit()
        self.db.refresh(promotion)
        logger.info("Created %s promotion %s for branch %s", promotion.promotion_type, promotion.id, branch_id)
        return promotion

    def update(self, branch_id: str, promotion_id: str, data: PromotionUpdate) -> Promotion:
        promotion = self._get_branch_promotion(branch_id, promotion_id)
        updates = data.model_dump(exclude_unset=True)
        if "params" in updates:
            updates["params"] = parse_params(promotion.promotion_type, updates["params"]).model_dump()
        valid_from = updates.get("valid_from", promotion.valid_from)
        valid_to = updates.get("valid_to", promotion.valid_to)
        if valid_from and valid_to and valid_from > valid_to:
            raise ValidationError("valid_from must not be after valid_to", code="INVALID_VALIDITY_RANGE")
        for key, value in updates.items():
            setattr(promotion, key, value)
        self.db.commit()
        self.db.refresh(promotion)
        return promotion

    def deactivate(self, branch_id: str, promotion_id: str) -> Promotion:
        promotion = self._get_branch_promotion(branch_id, promotion_id)
        promotion.is_active = False
        self.db.commit()
        logger.info("Deactivated promotion %s", promotion_id)
        return promotion

    def list(self, branch_id: str, include_inactive: bool = True) -> List[Tuple[Promotion, int]]:
        """Promotions of the branch with their total usage count."""
        totals = self.repo.usage_totals_for_branch(branch_id)
        return [
            (promotion, totals.get(promotion.id, 0))
            for promotion in self.repo.list_for_branch(branch_id, include_inactive=include_inactive)
        ]

    def get(self, branch_id: str, promotion_id: str) -> Tuple[Promotion, Optional[int]]:
        promotion = self._get_branch_promotion(branch_id, promotion_id)
        return promotion, self.repo.usage_totals_for_branch(branch_id).get(promotion.id, 0)
