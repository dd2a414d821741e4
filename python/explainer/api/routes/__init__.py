"""API route definitions.

Uses a factory pattern to avoid import-time settings loading.
"""

from fastapi import APIRouter

from explainer.api.routes.explanations import router as explanations_router
from explainer.api.routes.health import router as health_router
from explainer.api.routes.me import router as me_router
from explainer.api.routes.uploads import router as uploads_router


def create_api_router() -> APIRouter:
    """Create the API router with every route module registered."""
    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])
    api_router.include_router(me_router, tags=["user"])
    api_router.include_router(explanations_router, tags=["explanations"])
    api_router.include_router(uploads_router, tags=["uploads"])
    return api_router


__all__ = ["create_api_router"]
