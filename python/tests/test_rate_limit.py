"""Tests for the per-user burst limiter."""

from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from explainer.errors import ApiError, ApiErrorCode
from explainer.services.rate_limit import RPM_WINDOW_SECONDS, RateLimiter
from tests.helpers import auth_headers


def make_redis(count: int) -> MagicMock:
    """Redis mock whose pipeline reports `count` requests in the window."""
    mock_redis = MagicMock()
    # Pipeline is used directly (not as context manager)
    mock_redis.pipeline.return_value = MagicMock(
        execute=MagicMock(return_value=[0, 1, count, True]),
    )
    return mock_redis


class TestRateLimiter:
    def test_disabled_without_redis(self):
        limiter = RateLimiter(redis_client=None)

        assert not limiter.enabled
        limiter.check_rpm_limit(uuid4())

    def test_disabled_with_zero_limit(self):
        assert not RateLimiter(redis_client=make_redis(1), rpm_limit=0).enabled

    def test_under_limit_passes(self):
        mock_redis = make_redis(5)
        limiter = RateLimiter(redis_client=mock_redis, rpm_limit=5)

        limiter.check_rpm_limit(uuid4())

        pipe = mock_redis.pipeline.return_value
        pipe.zadd.assert_called_once()
        pipe.expire.assert_called_once()

    def test_window_key_is_per_user(self):
        mock_redis = make_redis(1)
        user_id = uuid4()

        RateLimiter(redis_client=mock_redis).check_rpm_limit(user_id)

        key = mock_redis.pipeline.return_value.zcount.call_args.args[0]
        assert key == f"rate:rpm:{user_id}"

    def test_over_limit_raises(self):
        limiter = RateLimiter(redis_client=make_redis(6), rpm_limit=5)

        with pytest.raises(ApiError) as exc_info:
            limiter.check_rpm_limit(uuid4())

        assert exc_info.value.code == ApiErrorCode.E_RATE_LIMITED
        assert exc_info.value.details == {"retry_after_s": RPM_WINDOW_SECONDS}

    def test_redis_failure_fails_open(self):
        mock_redis = MagicMock()
        mock_redis.pipeline.side_effect = ConnectionError("redis down")

        RateLimiter(redis_client=mock_redis).check_rpm_limit(uuid4())


class TestRateLimitedRoutes:
    def test_creation_is_rejected_before_analysis(self, app, client, user, provider):
        app.state.rate_limiter = RateLimiter(redis_client=make_redis(31), rpm_limit=30)

        response = client.post(
            "/explanations",
            json={"image": "data:image/jpeg;base64,AAAA"},
            headers=auth_headers(user.id),
        )

        assert response.status_code == 429
        assert response.json()["error"]["code"] == "E_RATE_LIMITED"
        assert provider.analyze_calls == []

    def test_reads_are_not_limited(self, app, client, user):
        app.state.rate_limiter = RateLimiter(redis_client=make_redis(31), rpm_limit=30)

        response = client.get("/explanations", headers=auth_headers(user.id))

        assert response.status_code == 200
