"""API routes."""

from fastapi import APIRouter

from booking_engine.api.routes import bookings, promotions, ratings, shifts

api_router = APIRouter()

api_router.include_router(bookings.router, prefix="/bookings", tags=["bookings"])
api_router.include_router(promotions.router, prefix="/branches", tags=["promotions"])
api_router.include_router(shifts.router, prefix="/shifts", tags=["shifts"])
api_router.include_router(ratings.router, prefix="/ratings", tags=["ratings"])
