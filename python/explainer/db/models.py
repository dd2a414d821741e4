"""SQLAlchemy ORM models for the explainer service.

Defines all database tables using SQLAlchemy 2.x declarative patterns.
Enums are Python enums mapped to database enum types. Column types are kept
portable so the same models run against Postgres and SQLite.
"""

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum as PyEnum
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.ext.associationproxy import AssociationProxy, association_proxy
from sqlalchemy.ext.orderinglist import ordering_list
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that always round-trips as UTC.

    SQLite drops tzinfo on storage; values read back are re-tagged as UTC so
    comparisons against datetime.now(UTC) stay valid on every backend.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(UTC)
            if dialect.name == "sqlite":
                value = value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# =============================================================================
# Enums
# =============================================================================


class SubscriptionTier(str, PyEnum):
    """Subscription tiers. Only the daily quota differs between them."""

    free = "free"
    pro = "pro"
    developer = "developer"


class MessageRole(str, PyEnum):
    """Author of a chat turn."""

    user = "user"
    assistant = "assistant"


class UsageAction(str, PyEnum):
    """Billable actions recorded in the usage log."""

    explanation = "explanation"
    chat_message = "chat_message"


# =============================================================================
# Models
# =============================================================================


class User(Base):
    """User account with its embedded daily usage counter.

    The user ID matches the auth provider's user ID (sub claim).
    A NULL daily_usage_reset_at means the window was never opened and is
    treated as expired.
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    subscription_tier: Mapped[SubscriptionTier] = mapped_column(
        Enum(SubscriptionTier, name="subscription_tier"),
        default=SubscriptionTier.free,
        nullable=False,
    )
    daily_usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    daily_usage_reset_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    total_explanations: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    explanations: Mapped[list["Explanation"]] = relationship(
        "Explanation", back_populates="owner", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("daily_usage_count >= 0", name="ck_users_daily_usage_nonneg"),
        CheckConstraint("total_explanations >= 0", name="ck_users_total_nonneg"),
    )


class Explanation(Base):
    """One user-owned analysis of one captured image.

    (user_id, image_hash) is the dedup key among live rows; a partial unique
    index enforces it so concurrent duplicate creations converge on one row.
    """

    __tablename__ = "explanations"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    image_url: Mapped[str] = mapped_column(Text, nullable=False)
    thumbnail_url: Mapped[str] = mapped_column(Text, nullable=False)
    image_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    explanation_text: Mapped[str] = mapped_column(Text, nullable=False)
    model_used: Mapped[str] = mapped_column(Text, nullable=False)
    processing_time_ms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False)
    category: Mapped[str] = mapped_column(String(32), default="other", nullable=False)
    language: Mapped[str] = mapped_column(String(8), default="en", nullable=False)
    is_developer_mode: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_favorite: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    view_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    next_message_seq: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False
    )
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    owner: Mapped["User"] = relationship("User", back_populates="explanations")
    tag_rows: Mapped[list["ExplanationTag"]] = relationship(
        "ExplanationTag",
        order_by="ExplanationTag.position",
        collection_class=ordering_list("position"),
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    messages: Mapped[list["ExplanationMessage"]] = relationship(
        "ExplanationMessage",
        back_populates="explanation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ExplanationMessage.seq",
    )

    tags: AssociationProxy[list[str]] = association_proxy(
        "tag_rows", "tag", creator=lambda tag: ExplanationTag(tag=tag)
    )

    __table_args__ = (
        CheckConstraint(
            "confidence_score >= 0 AND confidence_score <= 1",
            name="ck_explanations_confidence_range",
        ),
        CheckConstraint("view_count >= 0", name="ck_explanations_view_count_nonneg"),
        CheckConstraint("processing_time_ms >= 0", name="ck_explanations_processing_nonneg"),
        Index(
            "uq_explanations_live_user_hash",
            "user_id",
            "image_hash",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
        Index("ix_explanations_user_created", "user_id", "created_at"),
    )


class ExplanationTag(Base):
    """Ordered tag attached to an explanation."""

    __tablename__ = "explanation_tags"

    explanation_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("explanations.id", ondelete="CASCADE"), primary_key=True
    )
    position: Mapped[int] = mapped_column(Integer, primary_key=True)
    tag: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (Index("ix_explanation_tags_tag", "tag"),)


class ExplanationMessage(Base):
    """One chat turn scoped to an explanation. Never mutated."""

    __tablename__ = "explanation_messages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    explanation_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("explanations.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    role: Mapped[MessageRole] = mapped_column(
        Enum(MessageRole, name="message_role"), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    model: Mapped[str | None] = mapped_column(Text, nullable=True)
    tokens_used: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    explanation: Mapped["Explanation"] = relationship("Explanation", back_populates="messages")

    __table_args__ = (
        CheckConstraint("seq >= 1", name="ck_explanation_messages_seq_positive"),
        CheckConstraint("length(content) > 0", name="ck_explanation_messages_content_nonempty"),
        UniqueConstraint("explanation_id", "seq", name="uq_explanation_messages_seq"),
    )


class UsageLog(Base):
    """Cost accounting row written after each billable model call."""

    __tablename__ = "usage_logs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    action: Mapped[UsageAction] = mapped_column(
        Enum(UsageAction, name="usage_action"), nullable=False
    )
    resource_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    tokens_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cost_usd: Mapped[Decimal] = mapped_column(Numeric(12, 6), default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("action", "resource_id", name="uq_usage_logs_action_resource"),
        Index("ix_usage_logs_user_created", "user_id", "created_at"),
    )
