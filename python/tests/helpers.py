"""Test helpers for authentication and common test operations.

Provides:
- Token minting for test authentication
- Header generation for test requests
- Direct seeding of users and explanations
"""

import time
from datetime import datetime
from uuid import UUID, uuid4

import jwt
from sqlalchemy.orm import Session

from explainer.db.models import Explanation, SubscriptionTier, User
from tests.support.test_verifier import MockJwtVerifier

# Default test token settings
DEFAULT_ISSUER = "test-issuer"
DEFAULT_AUDIENCE = "test-audience"
DEFAULT_EXPIRES_IN = 3600  # 1 hour


def mint_test_token(
    user_id: UUID | str,
    expires_in: int = DEFAULT_EXPIRES_IN,
    issuer: str = DEFAULT_ISSUER,
    audience: str = DEFAULT_AUDIENCE,
    **extra_claims,
) -> str:
    """Mint a valid RS256 test JWT for the given subject."""
    now = int(time.time())
    payload = {
        "sub": str(user_id),
        "iss": issuer,
        "aud": audience,
        "iat": now,
        "exp": now + expires_in,
        **extra_claims,
    }
    return jwt.encode(payload, MockJwtVerifier.get_private_key(), algorithm="RS256")


def mint_expired_token(user_id: UUID | str) -> str:
    """Mint a token that expired 1 hour ago."""
    return mint_test_token(user_id, expires_in=-3600)


def auth_headers(user_id: UUID | str, **token_kwargs) -> dict[str, str]:
    """Return headers dict with valid Authorization for the given user."""
    token = mint_test_token(user_id, **token_kwargs)
    return {"Authorization": f"Bearer {token}"}


def create_test_user_id() -> UUID:
    return uuid4()


def create_user(
    db: Session,
    user_id: UUID | None = None,
    *,
    tier: SubscriptionTier = SubscriptionTier.free,
    daily_usage_count: int = 0,
    daily_usage_reset_at: datetime | None = None,
) -> User:
    """Insert a user row with the given quota state and commit."""
    user = User(
        id=user_id or uuid4(),
        subscription_tier=tier,
        daily_usage_count=daily_usage_count,
        daily_usage_reset_at=daily_usage_reset_at,
    )
    db.add(user)
    db.commit()
    return user


def create_explanation_row(
    db: Session,
    user_id: UUID,
    *,
    image_hash: str | None = None,
    text: str = "A red bicycle leaning against a brick wall.",
    category: str = "identification",
    tags: list[str] | None = None,
    is_favorite: bool = False,
    created_at: datetime | None = None,
    deleted_at: datetime | None = None,
) -> Explanation:
    """Insert an explanation row directly, bypassing the pipeline."""
    image_hash = image_hash or uuid4().hex + uuid4().hex
    explanation = Explanation(
        user_id=user_id,
        image_url=f"https://fake-storage.test/images/{user_id}/{image_hash[:8]}.jpg",
        thumbnail_url=f"https://fake-storage.test/images/{user_id}/thumbnails/{image_hash[:8]}.jpg",
        image_hash=image_hash,
        explanation_text=text,
        model_used="gpt-4o",
        processing_time_ms=100,
        confidence_score=0.9,
        category=category,
        is_favorite=is_favorite,
        deleted_at=deleted_at,
    )
    if created_at is not None:
        explanation.created_at = created_at
        explanation.updated_at = created_at
    explanation.tags.extend(tags or [])
    db.add(explanation)
    db.commit()
    return explanation
