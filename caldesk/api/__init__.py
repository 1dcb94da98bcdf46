"""API endpoints module."""

from fastapi import APIRouter

from caldesk.api.calendar import router as calendar_router

api_router = APIRouter(prefix="/api")

api_router.include_router(calendar_router)

__all__ = ["api_router"]
