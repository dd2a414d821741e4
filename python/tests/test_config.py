"""Tests for application configuration."""

import pytest
from pydantic import ValidationError

from explainer.config import Environment, Settings


def _make_settings(**overrides) -> Settings:
    """Build a Settings instance with test defaults + overrides."""
    defaults = {
        "DATABASE_URL": "sqlite+pysqlite:///:memory:",
        "EXPLAINER_ENV": "test",
    }
    defaults.update(overrides)
    return Settings(**defaults)


DEPLOYED = {
    "SUPABASE_JWKS_URL": "https://project.supabase.co/auth/v1/.well-known/jwks.json",
    "SUPABASE_ISSUER": "https://project.supabase.co/auth/v1/",
    "SUPABASE_AUDIENCES": "authenticated, service ",
    "OPENAI_API_KEY": "sk-test",
}


class TestDefaults:
    def test_quota_and_pipeline_defaults(self):
        s = _make_settings()

        assert s.tier_limits == {"free": 10, "pro": 1000, "developer": 10000}
        assert s.chat_context_window == 10
        assert s.max_page_size == 100
        assert s.analysis_cache_ttl_s == 7 * 24 * 3600
        assert s.vision_model == "gpt-4o"
        assert s.chat_model == "gpt-4o-mini"

    def test_tier_overrides(self):
        s = _make_settings(TIER_LIMIT_FREE=3, TIER_LIMIT_PRO=50)

        assert s.tier_limits["free"] == 3
        assert s.tier_limits["pro"] == 50

    def test_celery_falls_back_to_redis(self):
        s = _make_settings(REDIS_URL="redis://localhost:6379/0")

        assert s.effective_celery_broker_url == "redis://localhost:6379/0"
        assert s.effective_celery_result_backend == "redis://localhost:6379/0"

    def test_explicit_broker_wins(self):
        s = _make_settings(
            REDIS_URL="redis://localhost:6379/0", CELERY_BROKER_URL="redis://broker:6379/1"
        )

        assert s.effective_celery_broker_url == "redis://broker:6379/1"


class TestDeployedValidation:
    def test_local_and_test_need_no_credentials(self):
        assert _make_settings(EXPLAINER_ENV="local").explainer_env == Environment.LOCAL
        assert not _make_settings().is_deployed

    @pytest.mark.parametrize("env", ["staging", "prod"])
    def test_deployed_requires_credentials(self, env):
        with pytest.raises(ValidationError, match="SUPABASE_JWKS_URL"):
            _make_settings(EXPLAINER_ENV=env)

    def test_deployed_requires_provider_key(self):
        values = {k: v for k, v in DEPLOYED.items() if k != "OPENAI_API_KEY"}

        with pytest.raises(ValidationError, match="OPENAI_API_KEY"):
            _make_settings(EXPLAINER_ENV="prod", **values)

    def test_complete_deployed_settings(self):
        s = _make_settings(EXPLAINER_ENV="prod", **DEPLOYED)

        assert s.is_deployed
        assert s.audience_list == ["authenticated", "service"]
        assert s.normalized_issuer == "https://project.supabase.co/auth/v1"

    def test_unknown_environment_rejected(self):
        with pytest.raises(ValidationError):
            _make_settings(EXPLAINER_ENV="production")
