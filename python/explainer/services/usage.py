"""Daily quota gate and usage log.

The quota is a per-user counter embedded in the users row:
- daily_usage_count: explanations created in the current window
- daily_usage_reset_at: end of the current window (NULL = no window yet)
- total_explanations: lifetime count

Check early, commit late:
- check_and_reserve() runs before the model call. It resets an expired window
  and rejects over-limit users, but never increments.
- commit() runs after the explanation is persisted. It increments with a
  single conditional UPDATE so concurrent commits cannot push the counter
  past the tier limit.

A failed analysis therefore never consumes quota.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from explainer.db.models import SubscriptionTier, UsageAction, UsageLog, User, utcnow
from explainer.errors import ApiErrorCode, NotFoundError, QuotaExceeded
from explainer.logging import get_logger
from explainer.schemas.usage import UsageOut

logger = get_logger(__name__)

RESET_WINDOW = timedelta(hours=24)
COST_PER_TOKEN_USD = Decimal("0.00001")

DEFAULT_TIER_LIMITS = {
    SubscriptionTier.free.value: 10,
    SubscriptionTier.pro.value: 1000,
    SubscriptionTier.developer.value: 10000,
}


@dataclass(frozen=True)
class Reservation:
    """Quota state observed by a successful check_and_reserve()."""

    user_id: UUID
    tier: str
    count: int
    limit: int
    reset_at: datetime

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)


class UsageGate:
    """Tier-aware daily quota enforcement."""

    def __init__(self, tier_limits: dict[str, int] | None = None):
        self._limits = dict(DEFAULT_TIER_LIMITS)
        if tier_limits:
            self._limits.update(tier_limits)

    def limit_for(self, tier: SubscriptionTier | str) -> int:
        key = tier.value if isinstance(tier, SubscriptionTier) else str(tier)
        return self._limits.get(key, self._limits[SubscriptionTier.free.value])

    def _limit_expr(self):
        """SQL expression evaluating to the limit of the row's tier."""
        return case(
            *(
                (User.subscription_tier == tier, self.limit_for(tier))
                for tier in SubscriptionTier
            ),
            else_=self.limit_for(SubscriptionTier.free),
        )

    def check_and_reserve(self, db: Session, user_id: UUID) -> Reservation:
        """Reset an expired window, then reject the user if they are at the limit.

        Does not increment the counter.

        Raises:
            NotFoundError: If the user row does not exist.
            QuotaExceeded: If the daily count is at or above the tier limit.
        """
        now = utcnow()

        # Reset is a single conditional UPDATE: of two concurrent callers only
        # one observes the expired window.
        reset = db.execute(
            update(User)
            .where(
                User.id == user_id,
                or_(User.daily_usage_reset_at.is_(None), User.daily_usage_reset_at <= now),
            )
            .values(daily_usage_count=0, daily_usage_reset_at=now + RESET_WINDOW)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        if reset.rowcount:
            logger.info("usage.window_reset", user_id=str(user_id))

        user = db.execute(
            select(User).where(User.id == user_id).execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if user is None:
            raise NotFoundError(ApiErrorCode.E_NOT_FOUND, "User not found")

        limit = self.limit_for(user.subscription_tier)
        if user.daily_usage_count >= limit:
            logger.info(
                "usage.quota_exceeded",
                user_id=str(user_id),
                tier=user.subscription_tier.value,
                limit=limit,
            )
            raise QuotaExceeded(
                limit=limit,
                tier=user.subscription_tier.value,
                reset_at=user.daily_usage_reset_at,
            )

        return Reservation(
            user_id=user_id,
            tier=user.subscription_tier.value,
            count=user.daily_usage_count,
            limit=limit,
            reset_at=user.daily_usage_reset_at,
        )

    def commit(self, db: Session, user_id: UUID) -> bool:
        """Count one successful explanation against today's quota.

        Returns False when a concurrent request already took the last slot; the
        counter is left at the limit rather than pushed past it.
        """
        result = db.execute(
            update(User)
            .where(User.id == user_id, User.daily_usage_count < self._limit_expr())
            .values(
                daily_usage_count=User.daily_usage_count + 1,
                total_explanations=User.total_explanations + 1,
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()

        if result.rowcount != 1:
            logger.warning("usage.commit_over_limit", user_id=str(user_id))
            return False
        return True

    def get_summary(self, db: Session, user_id: UUID) -> UsageOut:
        """Current quota snapshot without mutating the counter."""
        user = db.execute(
            select(User).where(User.id == user_id).execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if user is None:
            raise NotFoundError(ApiErrorCode.E_NOT_FOUND, "User not found")

        limit = self.limit_for(user.subscription_tier)
        reset_at = user.daily_usage_reset_at
        expired = reset_at is None or reset_at <= utcnow()
        count = 0 if expired else user.daily_usage_count

        return UsageOut(
            tier=user.subscription_tier.value,
            daily_count=count,
            daily_limit=limit,
            remaining=max(0, limit - count),
            reset_at=None if expired else reset_at,
            total_explanations=user.total_explanations,
        )


def cost_for_tokens(tokens_used: int) -> Decimal:
    return (Decimal(max(tokens_used, 0)) * COST_PER_TOKEN_USD).quantize(Decimal("0.000001"))


def record_usage(
    db: Session,
    user_id: UUID,
    action: UsageAction,
    resource_id: UUID | None,
    tokens_used: int,
) -> bool:
    """Write one cost-accounting row.

    Idempotent per (action, resource_id): a replayed write is a no-op and
    returns False.
    """
    db.add(
        UsageLog(
            user_id=user_id,
            action=action,
            resource_id=resource_id,
            tokens_used=tokens_used,
            cost_usd=cost_for_tokens(tokens_used),
        )
    )
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.debug(
            "usage_log.duplicate",
            action=action.value,
            resource_id=str(resource_id) if resource_id else None,
        )
        return False
    return True
