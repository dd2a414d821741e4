"""Per-user request burst limiting using Redis.

Sits in front of the endpoints that reach the vision model (creation and
chat). The daily quota is the UsageGate's job; this only smooths bursts.

Redis keys:
- rate:rpm:{user_id} - sorted set of request timestamps (sliding window)

Fail mode: open. A missing or broken Redis never blocks a request.
"""

from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

from explainer.errors import ApiError, ApiErrorCode
from explainer.logging import get_logger
from explainer.services.redact import safe_kv

logger = get_logger(__name__)

DEFAULT_RPM_LIMIT = 30
RPM_WINDOW_SECONDS = 60


class RateLimiter:
    """Sliding-window requests-per-minute limiter.

    Thread-safe for use in FastAPI endpoints.
    """

    def __init__(self, redis_client=None, rpm_limit: int = DEFAULT_RPM_LIMIT):
        """Initialize rate limiter.

        Args:
            redis_client: Redis client instance (sync). If None, limits are not enforced.
            rpm_limit: Maximum requests per minute per user.
        """
        self._redis = redis_client
        self._rpm_limit = rpm_limit

    @property
    def enabled(self) -> bool:
        return self._redis is not None and self._rpm_limit > 0

    def check_rpm_limit(self, user_id: UUID) -> None:
        """Record a request and reject it if the window is full.

        Raises:
            ApiError(E_RATE_LIMITED): If RPM limit exceeded.
        """
        if not self.enabled:
            return

        try:
            key = f"rate:rpm:{user_id}"
            now = datetime.now(UTC)
            window_start_ts = (now - timedelta(seconds=RPM_WINDOW_SECONDS)).timestamp()
            now_ts = now.timestamp()

            pipe = self._redis.pipeline()
            pipe.zremrangebyscore(key, 0, window_start_ts)
            pipe.zadd(key, {f"{now_ts}:{uuid4().hex}": now_ts})
            pipe.zcount(key, window_start_ts, now_ts)
            pipe.expire(key, RPM_WINDOW_SECONDS * 2)
            count = pipe.execute()[2]
        except Exception as e:
            logger.warning("rate_limit_check_failed", check="rpm", error=str(e))
            return

        if count > self._rpm_limit:
            logger.warning("rate_limit.blocked", **safe_kv(limit_type="rpm"))
            raise ApiError(
                ApiErrorCode.E_RATE_LIMITED,
                f"Rate limit exceeded: {self._rpm_limit} requests per minute",
                details={"retry_after_s": RPM_WINDOW_SECONDS},
            )
