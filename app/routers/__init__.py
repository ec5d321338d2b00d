"""API routers for the milestone escrow backend."""
from fastapi import APIRouter

from . import alerts, health, milestones


def get_api_router() -> APIRouter:
    """Return the root API router."""

    api_router = APIRouter()
    api_router.include_router(health.router)
    api_router.include_router(milestones.router)
    api_router.include_router(alerts.router)
    return api_router
