"""Database module: engine creation, session management, and ORM models."""

from explainer.db.engine import create_db_engine, get_engine
from explainer.db.models import (
    Base,
    Explanation,
    ExplanationMessage,
    ExplanationTag,
    MessageRole,
    SubscriptionTier,
    UsageAction,
    UsageLog,
    User,
)
from explainer.db.session import get_db, get_session_factory, transaction

__all__ = [
    "create_db_engine",
    "get_engine",
    "get_db",
    "get_session_factory",
    "transaction",
    "Base",
    "SubscriptionTier",
    "MessageRole",
    "UsageAction",
    "User",
    "Explanation",
    "ExplanationTag",
    "ExplanationMessage",
    "UsageLog",
]
