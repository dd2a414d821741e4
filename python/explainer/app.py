"""FastAPI application creation and configuration.

This module creates and configures the FastAPI application instance.
It registers exception handlers, auth middleware, request-id middleware, and routes.

Token Verification:
- Every environment uses SupabaseJwksVerifier; only the env values differ
- Tests pass their own verifier to create_app

Middleware Ordering:
- Middleware runs in reverse order of registration
- RequestIDMiddleware is added LAST (add_request_id_middleware) so it runs FIRST
- Every response, auth failures included, carries X-Request-ID

Collaborator Lifecycle:
- httpx.AsyncClient, the LLM router and the vision analyzer are built at startup
- The explanation pipeline, object store and rate limiter live on app.state
- The HTTP client and Redis connection are closed at shutdown
"""

from contextlib import asynccontextmanager

import httpx
import redis
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from explainer.api.routes import create_api_router
from explainer.auth.middleware import AuthMiddleware
from explainer.auth.verifier import SupabaseJwksVerifier
from explainer.config import get_settings
from explainer.db.session import get_session_factory
from explainer.errors import ApiError
from explainer.logging import configure_logging, get_logger
from explainer.middleware.request_id import RequestIDMiddleware
from explainer.responses import (
    api_error_handler,
    http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from explainer.services.analysis_cache import InMemoryAnalysisCache, RedisAnalysisCache
from explainer.services.bootstrap import create_bootstrap_callback
from explainer.services.llm import LLMRouter, RouterVisionProvider
from explainer.services.pipeline import ExplanationPipeline
from explainer.services.rate_limit import RateLimiter
from explainer.services.usage import UsageGate
from explainer.services.vision import VisionAnalyzer
from explainer.storage.client import get_object_store
from explainer.tasks.cleanup_storage import StorageCleanup

# Configure structured logging at import time
configure_logging()

logger = get_logger(__name__)


def create_token_verifier() -> SupabaseJwksVerifier:
    """Create the token verifier from the Supabase settings."""
    settings = get_settings()

    return SupabaseJwksVerifier(
        jwks_url=settings.supabase_jwks_url,  # type: ignore
        issuer=settings.normalized_issuer,  # type: ignore
        audiences=settings.audience_list,
    )


def connect_redis(redis_url: str | None):
    """Connect to Redis, or return None when unset or unreachable."""
    if not redis_url:
        return None
    try:
        client = redis.Redis.from_url(redis_url, decode_responses=True, socket_timeout=5)
        client.ping()
    except redis.RedisError as e:
        logger.warning("redis_client_init_failed", error=str(e))
        return None
    logger.info("redis_client_initialized")
    return client


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the pipeline and its collaborators, and release them at shutdown."""
    settings = get_settings()

    app.state.httpx_client = httpx.AsyncClient(
        timeout=httpx.Timeout(float(settings.llm_timeout_s), connect=10.0),
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
    )
    llm_router = LLMRouter(app.state.httpx_client, enable_openai=bool(settings.openai_api_key))
    provider = RouterVisionProvider(
        llm_router,
        settings.openai_api_key or "",
        vision_model=settings.vision_model,
        chat_model=settings.chat_model,
        timeout_s=settings.llm_timeout_s,
    )

    redis_client = connect_redis(settings.redis_url)
    app.state.redis_client = redis_client
    cache = RedisAnalysisCache(redis_client) if redis_client else InMemoryAnalysisCache()

    analyzer = VisionAnalyzer(
        provider,
        cache,
        cache_ttl_s=settings.analysis_cache_ttl_s,
        chat_window=settings.chat_context_window,
    )

    store = get_object_store()
    app.state.object_store = store
    app.state.rate_limiter = RateLimiter(redis_client=redis_client, rpm_limit=settings.rpm_limit)
    app.state.pipeline = ExplanationPipeline(
        get_session_factory(),
        store,
        analyzer,
        UsageGate(settings.tier_limits),
        cleanup=StorageCleanup(store),
        max_page_size=settings.max_page_size,
    )

    logger.info(
        "pipeline_initialized",
        vision_model=settings.vision_model,
        cache="redis" if redis_client else "memory",
        rate_limiter_enabled=app.state.rate_limiter.enabled,
    )

    yield

    await app.state.httpx_client.aclose()
    if redis_client is not None:
        try:
            redis_client.close()
        except redis.RedisError as e:
            logger.warning("redis_client_close_failed", error=str(e))
    logger.info("httpx_client_closed")


def create_app(
    skip_auth_middleware: bool = False,
    token_verifier=None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        skip_auth_middleware: If True, skip adding auth middleware (for testing).
        token_verifier: Optional custom token verifier (for testing).

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Photo Explainer API",
        description="Explains photographed images and answers follow-up questions about them",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # Use router factory to avoid import-time settings loading
    app.include_router(create_api_router())

    if not skip_auth_middleware:
        verifier = token_verifier or create_token_verifier()
        app.add_middleware(
            AuthMiddleware,
            verifier=verifier,
            bootstrap_callback=create_bootstrap_callback(get_session_factory()),
        )
        logger.info("auth_middleware_enabled", env=settings.explainer_env.value)

    return app


def add_request_id_middleware(app: FastAPI, log_requests: bool = True) -> None:
    """Add request-id middleware to the app.

    Call this AFTER all other middleware is added so it runs FIRST.

    Args:
        app: The FastAPI application.
        log_requests: Whether to log access entries for each request.
    """
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)
    logger.info("request_id_middleware_enabled")
