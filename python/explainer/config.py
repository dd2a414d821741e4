"""Application settings loaded from environment variables.

Environment Configuration:
    EXPLAINER_ENV: Deployment environment (local | test | staging | prod)
    DATABASE_URL: SQLAlchemy connection string (defaults to a local SQLite file)

Redis / Celery Configuration:
    REDIS_URL: Redis connection string (analysis cache, rate limiter, worker)
    CELERY_BROKER_URL: Celery broker URL (defaults to REDIS_URL)
    CELERY_RESULT_BACKEND: Celery result backend URL (defaults to REDIS_URL)

Auth Configuration (required in staging/prod):
    SUPABASE_JWKS_URL, SUPABASE_ISSUER, SUPABASE_AUDIENCES

Vision model:
    OPENAI_API_KEY, VISION_MODEL, CHAT_MODEL, LLM_TIMEOUT_S

Quota tiers:
    TIER_LIMIT_FREE / TIER_LIMIT_PRO / TIER_LIMIT_DEVELOPER
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Application configuration.

    Validation rules:
    - Supabase auth settings are required in staging and prod
    - OPENAI_API_KEY is required in staging and prod
    """

    explainer_env: Environment = Field(default=Environment.LOCAL, alias="EXPLAINER_ENV")
    database_url: str = Field(default="sqlite+pysqlite:///./explainer.db", alias="DATABASE_URL")

    # Redis / Celery settings
    redis_url: str | None = Field(default=None, alias="REDIS_URL")
    celery_broker_url: str | None = Field(default=None, alias="CELERY_BROKER_URL")
    celery_result_backend: str | None = Field(default=None, alias="CELERY_RESULT_BACKEND")

    # Supabase auth settings
    supabase_jwks_url: str | None = Field(default=None, alias="SUPABASE_JWKS_URL")
    supabase_issuer: str | None = Field(default=None, alias="SUPABASE_ISSUER")
    supabase_audiences: str | None = Field(default=None, alias="SUPABASE_AUDIENCES")

    # Supabase Storage settings
    supabase_url: str | None = Field(default=None, alias="SUPABASE_URL")
    supabase_service_key: str | None = Field(default=None, alias="SUPABASE_SERVICE_KEY")
    storage_bucket: str = Field(default="images", alias="STORAGE_BUCKET")
    signed_url_expiry_s: int = Field(default=300, alias="SIGNED_URL_EXPIRY_S")

    # Vision model provider
    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    vision_model: str = Field(default="gpt-4o", alias="VISION_MODEL")
    chat_model: str = Field(default="gpt-4o-mini", alias="CHAT_MODEL")
    llm_timeout_s: int = Field(default=30, alias="LLM_TIMEOUT_S")

    # Analysis cache and chat
    analysis_cache_ttl_s: int = Field(default=7 * 24 * 3600, alias="ANALYSIS_CACHE_TTL_S")
    chat_context_window: int = Field(default=10, alias="CHAT_CONTEXT_WINDOW")

    # Listing and request limits
    max_page_size: int = Field(default=100, alias="MAX_PAGE_SIZE")
    rpm_limit: int = Field(default=30, alias="RPM_LIMIT")

    # Daily quota per subscription tier
    tier_limit_free: int = Field(default=10, alias="TIER_LIMIT_FREE")
    tier_limit_pro: int = Field(default=1000, alias="TIER_LIMIT_PRO")
    tier_limit_developer: int = Field(default=10000, alias="TIER_LIMIT_DEVELOPER")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
    }

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        """Ensure deployed environments carry auth and provider credentials."""
        if self.explainer_env not in (Environment.STAGING, Environment.PROD):
            return self

        missing = []
        if not self.supabase_jwks_url:
            missing.append("SUPABASE_JWKS_URL")
        if not self.supabase_issuer:
            missing.append("SUPABASE_ISSUER")
        if not self.supabase_audiences:
            missing.append("SUPABASE_AUDIENCES")
        if not self.openai_api_key:
            missing.append("OPENAI_API_KEY")

        if missing:
            raise ValueError(
                f"Missing required settings for EXPLAINER_ENV={self.explainer_env.value}: "
                f"{', '.join(missing)}"
            )
        return self

    @property
    def is_deployed(self) -> bool:
        return self.explainer_env in (Environment.STAGING, Environment.PROD)

    @property
    def audience_list(self) -> list[str]:
        """Parse comma-separated audiences into a list."""
        if self.supabase_audiences:
            return [a.strip() for a in self.supabase_audiences.split(",") if a.strip()]
        return []

    @property
    def normalized_issuer(self) -> str | None:
        """Return issuer with trailing slash stripped."""
        if self.supabase_issuer:
            return self.supabase_issuer.rstrip("/")
        return None

    @property
    def tier_limits(self) -> dict[str, int]:
        """Daily quota keyed by subscription tier name."""
        return {
            "free": self.tier_limit_free,
            "pro": self.tier_limit_pro,
            "developer": self.tier_limit_developer,
        }

    @property
    def effective_celery_broker_url(self) -> str | None:
        """Return Celery broker URL, falling back to REDIS_URL if not set."""
        return self.celery_broker_url or self.redis_url

    @property
    def effective_celery_result_backend(self) -> str | None:
        """Return Celery result backend URL, falling back to REDIS_URL if not set."""
        return self.celery_result_backend or self.redis_url


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Raises:
        ValidationError: If required settings are missing or invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()
