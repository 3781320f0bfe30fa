"""Branch promotion management API routes."""

from fastapi import APIRouter, Query, Request, status

from booking_engine.core.rate_limit import NORMAL_LIMIT, limiter
from booking_engine.core.responses import list_response
from booking_engine.db.session import DbSession
from booking_engine.schemas.promotions import PromotionCreate, PromotionResponse, PromotionUpdate
from booking_engine.services.promotion_catalog import PromotionCatalog

router = APIRouter()


def _serialize(promotion, usage_count: int) -> dict:
    data = PromotionResponse.model_validate(promotion).model_dump(mode="json")
    data["usage_count"] = usage_count
    return data


@router.get("/{branch_id}/promotions")
def list_promotions(branch_id: str, db: DbSession, include_inactive: bool = Query(True)):
    rows = PromotionCatalog(db).list(branch_id, include_inactive=include_inactive)
    return list_response([_serialize(p, count) for p, count in rows])


@router.post("/{branch_id}/promotions", response_model=PromotionResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(NORMAL_LIMIT)
def create_promotion(request: Request, branch_id: str, payload: PromotionCreate, db: DbSession):
    promotion = PromotionCatalog(db).create(branch_id, payload)
    return _serialize(promotion, 0)


@router.get("/{branch_id}/promotions/{promotion_id}", response_model=PromotionResponse)
def get_promotion(branch_id: str, promotion_id: str, db: DbSession):
    promotion, usage_count = PromotionCatalog(db).get(branch_id, promotion_id)
    return _serialize(promotion, usage_count)


@router.patch("/{branch_id}/promotions/{promotion_id}", response_model=PromotionResponse)
@limiter.limit(NORMAL_LIMIT)
def update_promotion(request: Request, branch_id: str, promotion_id: str, payload: PromotionUpdate, db: DbSession):
    catalog = PromotionCatalog(db)
    catalog.update(branch_id, promotion_id, payload)
    promotion, usage_count = catalog.get(branch_id, promotion_id)
    return _serialize(promotion, usage_count)


@router.delete("/{branch_id}/promotions/{promotion_id}", response_model=PromotionResponse)
@limiter.limit(NORMAL_LIMIT)
def deactivate_promotion(request: Request, branch_id: str, promotion_id: str, db: DbSession):
    """Promotions are deactivated, never deleted: usage history keeps pointing at them."""
    catalog = PromotionCatalog(db)
    catalog.deactivate(branch_id, promotion_id)
    promotion, usage_count = catalog.get(branch_id, promotion_id)
    return _serialize(promotion, usage_count)
