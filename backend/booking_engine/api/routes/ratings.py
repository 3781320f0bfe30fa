"""Rating configuration and recalculation API routes."""

from fastapi import APIRouter, Query, Request

from booking_engine.core.errors import NotFoundError
from booking_engine.core.rate_limit import CRITICAL_LIMIT, NORMAL_LIMIT, limiter
from booking_engine.core.responses import list_response
from booking_engine.db.session import DbSession
from booking_engine.schemas.ratings import (
    RatingConfigRequest,
    RatingConfigResponse,
    RatingScoreResponse,
    RecalcErrorResponse,
    RecalculateRangeRequest,
    RecalculateRequest,
    RecalculateResponse,
    SaveRatingConfigResponse,
)
from booking_engine.services.rating_aggregator import BatchReport, RatingAggregator

router = APIRouter()


def _report(report: BatchReport) -> RecalculateResponse:
    return RecalculateResponse(
        entities_processed=report.entities_processed,
        days_processed=report.days_processed,
        stopped=report.stopped,
        errors=report.errors,
    )


@router.get("/config", response_model=RatingConfigResponse)
def get_rating_config(db: DbSession):
    config = RatingAggregator(db).get_active_config()
    if config is None:
        raise NotFoundError("RatingConfig", "active")
    return config


@router.post("/config", response_model=SaveRatingConfigResponse)
@limiter.limit(NORMAL_LIMIT)
def save_rating_config(request: Request, payload: RatingConfigRequest, db: DbSession):
    """Activate new weights. Optionally recalculates history synchronously."""
    config, report = RatingAggregator(db).save_config(
        payload.weights,
        payload.window_days,
        recalculate_history=payload.recalculate_history,
        recalculate_days_back=payload.recalculate_days_back,
    )
    return SaveRatingConfigResponse(
        config=RatingConfigResponse.model_validate(config),
        recalculate_triggered=report is not None,
        report=_report(report) if report is not None else None,
    )


@router.post("/recalculate", response_model=RecalculateResponse)
@limiter.limit(CRITICAL_LIMIT)
def recalculate_ratings(request: Request, payload: RecalculateRequest, db: DbSession):
    """Recalculate all active entities. Failed entities are listed in ``errors``."""
    return _report(RatingAggregator(db).initialize_all_ratings(payload.days_back))


@router.post("/recalculate-range", response_model=RecalculateResponse)
@limiter.limit(CRITICAL_LIMIT)
def recalculate_range(request: Request, payload: RecalculateRangeRequest, db: DbSession):
    return _report(RatingAggregator(db).recalculate_date_range(payload.start_date, payload.end_date))


@router.get("/errors")
def list_recalc_errors(db: DbSession, limit: int = Query(100, ge=1, le=1000)):
    errors = RatingAggregator(db).list_errors(limit)
    return list_response([RecalcErrorResponse.model_validate(e).model_dump(mode="json") for e in errors])


@router.get("/{entity_type}/{entity_id}", response_model=RatingScoreResponse)
def get_entity_rating(entity_type: str, entity_id: str, db: DbSession):
    metric_date, state = RatingAggregator(db).get_current_score(entity_type, entity_id)
    return RatingScoreResponse(
        entity_type=entity_type,
        entity_id=entity_id,
        metric_date=metric_date,
        score=state.score,
        state=state.state,
    )
