"""Explanation repository.

All reads and mutations are scoped to the owning user and to live rows
(deleted_at IS NULL). A row that is missing, soft-deleted or owned by someone
else is indistinguishable to the caller: every case raises
ExplanationNotFound.

The (user_id, image_hash) pair is the dedup key. A partial unique index over
live rows backs it, so a losing concurrent insert returns the winner's row
instead of surfacing a conflict.
"""

import math
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import exists, func, not_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from explainer.db.models import Explanation, ExplanationTag, utcnow
from explainer.errors import ExplanationNotFound
from explainer.logging import get_logger
from explainer.schemas.explanation import (
    DEFAULT_PAGE_SIZE,
    ExplanationListOut,
    ExplanationOut,
)

logger = get_logger(__name__)

MAX_PAGE_SIZE = 100


@dataclass
class NewExplanation:
    """Fields derived by the pipeline for one new explanation."""

    image_url: str
    thumbnail_url: str
    image_hash: str
    explanation_text: str
    model_used: str
    processing_time_ms: int
    confidence_score: float
    category: str = "other"
    tags: list[str] = field(default_factory=list)
    prompt: str | None = None
    language: str = "en"
    is_developer_mode: bool = False


# =============================================================================
# Helper Functions
# =============================================================================


def explanation_to_out(explanation: Explanation) -> ExplanationOut:
    """Convert Explanation ORM model to ExplanationOut schema."""
    return ExplanationOut(
        id=explanation.id,
        image_url=explanation.image_url,
        thumbnail_url=explanation.thumbnail_url,
        image_hash=explanation.image_hash,
        prompt=explanation.prompt,
        explanation=explanation.explanation_text,
        model_used=explanation.model_used,
        processing_time_ms=explanation.processing_time_ms,
        confidence_score=explanation.confidence_score,
        category=explanation.category,
        tags=list(explanation.tags),
        language=explanation.language,
        is_developer_mode=explanation.is_developer_mode,
        is_favorite=explanation.is_favorite,
        view_count=explanation.view_count,
        created_at=explanation.created_at,
        updated_at=explanation.updated_at,
    )


def clamp_page_size(limit: int, max_page_size: int = MAX_PAGE_SIZE) -> int:
    return min(max(limit, 1), max_page_size)


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _live_owned(user_id: UUID, explanation_id: UUID):
    return (
        Explanation.id == explanation_id,
        Explanation.user_id == user_id,
        Explanation.deleted_at.is_(None),
    )


def get_explanation_for_viewer_or_404(
    db: Session, viewer_id: UUID, explanation_id: UUID
) -> Explanation:
    """Load a live explanation owned by the viewer, without counting a view.

    Raises:
        ExplanationNotFound: If it doesn't exist, is deleted, or isn't the viewer's.
    """
    explanation = db.execute(
        select(Explanation).where(*_live_owned(viewer_id, explanation_id))
    ).scalar_one_or_none()
    if explanation is None:
        raise ExplanationNotFound()
    return explanation


# =============================================================================
# Service Functions
# =============================================================================


def find_duplicate(db: Session, user_id: UUID, image_hash: str) -> Explanation | None:
    """Most recent live explanation of this user for this image hash."""
    return db.execute(
        select(Explanation)
        .where(
            Explanation.user_id == user_id,
            Explanation.image_hash == image_hash,
            Explanation.deleted_at.is_(None),
        )
        .order_by(Explanation.created_at.desc())
        .limit(1)
    ).scalar_one_or_none()


def create_explanation(
    db: Session, user_id: UUID, fields: NewExplanation
) -> tuple[Explanation, bool]:
    """Insert an explanation.

    Returns:
        (explanation, created). created is False when a concurrent request
        already inserted a live row for the same image; that row is returned.
    """
    explanation = Explanation(
        user_id=user_id,
        image_url=fields.image_url,
        thumbnail_url=fields.thumbnail_url,
        image_hash=fields.image_hash,
        prompt=fields.prompt,
        explanation_text=fields.explanation_text,
        model_used=fields.model_used,
        processing_time_ms=max(0, fields.processing_time_ms),
        confidence_score=min(1.0, max(0.0, fields.confidence_score)),
        category=fields.category,
        language=fields.language,
        is_developer_mode=fields.is_developer_mode,
    )
    explanation.tags.extend(fields.tags)

    db.add(explanation)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = find_duplicate(db, user_id, fields.image_hash)
        if existing is None:
            raise
        logger.info("explanation.create_lost_race", explanation_id=str(existing.id))
        return existing, False

    return explanation, True


def list_explanations(
    db: Session,
    viewer_id: UUID,
    *,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    category: str | None = None,
    search: str | None = None,
    favorites_only: bool = False,
    max_page_size: int = MAX_PAGE_SIZE,
) -> ExplanationListOut:
    """List the viewer's live explanations, newest first.

    search matches the explanation text case-insensitively (substring) or any
    tag exactly (ignoring case). Pagination is offset based with page >= 1.
    """
    page = max(page, 1)
    limit = clamp_page_size(limit, max_page_size)

    conditions = [Explanation.user_id == viewer_id, Explanation.deleted_at.is_(None)]
    if category:
        conditions.append(Explanation.category == category)
    if favorites_only:
        conditions.append(Explanation.is_favorite.is_(True))
    term = (search or "").strip()
    if term:
        tag_match = exists().where(
            ExplanationTag.explanation_id == Explanation.id,
            func.lower(ExplanationTag.tag) == term.lower(),
        )
        conditions.append(
            or_(
                Explanation.explanation_text.ilike(f"%{_escape_like(term)}%", escape="\\"),
                tag_match,
            )
        )

    total = db.scalar(select(func.count()).select_from(Explanation).where(*conditions)) or 0
    rows = (
        db.execute(
            select(Explanation)
            .where(*conditions)
            .order_by(Explanation.created_at.desc(), Explanation.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        .scalars()
        .all()
    )

    return ExplanationListOut(
        items=[explanation_to_out(row) for row in rows],
        total=total,
        page=page,
        limit=limit,
        total_pages=math.ceil(total / limit) if total else 0,
    )


def get_explanation(db: Session, viewer_id: UUID, explanation_id: UUID) -> ExplanationOut:
    """Fetch one explanation and count the view.

    The view counter is only incremented when the fetch succeeds.

    Raises:
        ExplanationNotFound: If it doesn't exist, is deleted, or isn't the viewer's.
    """
    result = db.execute(
        update(Explanation)
        .where(*_live_owned(viewer_id, explanation_id))
        # views are not edits: keep updated_at
        .values(view_count=Explanation.view_count + 1, updated_at=Explanation.updated_at)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise ExplanationNotFound()
    db.commit()

    explanation = db.execute(
        select(Explanation)
        .where(Explanation.id == explanation_id)
        .execution_options(populate_existing=True)
    ).scalar_one()
    return explanation_to_out(explanation)


def toggle_favorite(db: Session, viewer_id: UUID, explanation_id: UUID) -> bool:
    """Flip the favorite flag and return its new value.

    Raises:
        ExplanationNotFound: If it doesn't exist, is deleted, or isn't the viewer's.
    """
    result = db.execute(
        update(Explanation)
        .where(*_live_owned(viewer_id, explanation_id))
        .values(is_favorite=not_(Explanation.is_favorite), updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise ExplanationNotFound()
    db.commit()

    return bool(
        db.scalar(select(Explanation.is_favorite).where(Explanation.id == explanation_id))
    )


def soft_delete(db: Session, viewer_id: UUID, explanation_id: UUID) -> list[str]:
    """Mark an explanation deleted.

    Returns:
        The storage URLs (main image, thumbnail) the caller should remove.

    Raises:
        ExplanationNotFound: If it doesn't exist, is already deleted, or isn't
            the viewer's.
    """
    explanation = get_explanation_for_viewer_or_404(db, viewer_id, explanation_id)
    urls = [explanation.image_url, explanation.thumbnail_url]

    now = utcnow()
    result = db.execute(
        update(Explanation)
        .where(*_live_owned(viewer_id, explanation_id))
        .values(deleted_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise ExplanationNotFound()
    db.commit()

    logger.info("explanation.soft_deleted", explanation_id=str(explanation_id))
    return urls
