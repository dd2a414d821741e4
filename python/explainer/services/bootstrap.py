"""User bootstrap on first authenticated request.

The auth provider owns identities; the users row (tier + usage counter) is
created lazily the first time a token for a new subject is seen.
"""

from collections.abc import Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from explainer.db.models import SubscriptionTier, User
from explainer.logging import get_logger

logger = get_logger(__name__)


def ensure_user(db: Session, user_id: UUID, email: str | None = None) -> User:
    """Return the user row, creating it on first sight.

    Race-safe and idempotent: a concurrent insert of the same id is caught
    and the winner's row is returned.
    """
    user = db.get(User, user_id)
    if user is not None:
        if email and user.email != email:
            user.email = email
            db.commit()
        return user

    db.add(User(id=user_id, email=email, subscription_tier=SubscriptionTier.free))
    try:
        db.commit()
    except IntegrityError:
        # Lost race: another request created it
        db.rollback()
        user = db.execute(select(User).where(User.id == user_id)).scalar_one_or_none()
        if user is None:
            raise
        return user

    logger.info("user.bootstrapped", user_id=str(user_id))
    return db.get(User, user_id)


def create_bootstrap_callback(session_factory: Callable[[], Session]):
    """Bootstrap callback for the auth middleware.

    Opens its own session per call and returns the user's subscription tier.
    """

    def bootstrap(user_id: UUID, email: str | None = None) -> str:
        db = session_factory()
        try:
            return ensure_user(db, user_id, email).subscription_tier.value
        finally:
            db.close()

    return bootstrap
