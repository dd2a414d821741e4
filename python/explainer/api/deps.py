"""FastAPI dependencies for route handlers.

Long-lived collaborators (pipeline, object store, rate limiter) are built once
in the app lifespan and read from app.state here.
"""

from fastapi import Request

from explainer.db.session import get_db, get_session_factory
from explainer.services.pipeline import ExplanationPipeline
from explainer.services.rate_limit import RateLimiter
from explainer.storage.client import ObjectStore

__all__ = [
    "get_db",
    "get_object_store",
    "get_pipeline",
    "get_rate_limiter",
    "get_session_factory",
]


def get_pipeline(request: Request) -> ExplanationPipeline:
    return request.app.state.pipeline


def get_object_store(request: Request) -> ObjectStore:
    return request.app.state.object_store


def get_rate_limiter(request: Request) -> RateLimiter:
    """Shared rate limiter; a no-op limiter if the app was built without Redis."""
    limiter = getattr(request.app.state, "rate_limiter", None)
    return limiter if limiter is not None else RateLimiter(redis_client=None)
