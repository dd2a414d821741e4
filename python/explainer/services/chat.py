"""Follow-up chat scoped to an explanation.

Flow for send_message():
1. Verify the viewer owns the live explanation (404 otherwise)
2. Persist the user's message (its own transaction, so the question survives
   a failed model call)
3. Load the last N earlier messages, oldest first, as model context
4. Call VisionAnalyzer.chat() with no DB transaction held
5. Persist the assistant reply with its token usage
6. Record a chat_message usage log entry (best-effort)

Messages are ordered by a per-explanation seq handed out from
explanations.next_message_seq under a row lock.
"""

from collections.abc import Callable
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from explainer.db.models import Explanation, ExplanationMessage, MessageRole, UsageAction
from explainer.logging import get_logger
from explainer.schemas.explanation import ChatExchangeOut, MessageListOut, MessageOut
from explainer.services.explanations import get_explanation_for_viewer_or_404
from explainer.services.usage import record_usage
from explainer.services.vision import ChatContext, ChatTurn, VisionAnalyzer

logger = get_logger(__name__)


def message_to_out(message: ExplanationMessage) -> MessageOut:
    """Convert ExplanationMessage ORM model to MessageOut schema."""
    return MessageOut(
        id=message.id,
        explanation_id=message.explanation_id,
        seq=message.seq,
        role=message.role.value,
        content=message.content,
        model=message.model,
        tokens_used=message.tokens_used,
        created_at=message.created_at,
    )


def assign_next_message_seq(db: Session, explanation_id: UUID) -> int:
    """Reserve the next message seq for an explanation.

    Must run inside the caller's transaction; the explanation row stays
    locked until it commits.
    """
    current = db.execute(
        select(Explanation.next_message_seq)
        .where(Explanation.id == explanation_id)
        .with_for_update()
    ).scalar_one_or_none()
    if current is None:
        raise ValueError(f"Explanation {explanation_id} not found")

    db.execute(
        update(Explanation)
        .where(Explanation.id == explanation_id)
        .values(next_message_seq=Explanation.next_message_seq + 1)
        .execution_options(synchronize_session=False)
    )
    return current


def append_message(
    db: Session,
    viewer_id: UUID,
    explanation_id: UUID,
    role: MessageRole,
    content: str,
    *,
    model: str | None = None,
    tokens_used: int | None = None,
) -> ExplanationMessage:
    """Persist one chat turn and commit."""
    message = ExplanationMessage(
        explanation_id=explanation_id,
        user_id=viewer_id,
        seq=assign_next_message_seq(db, explanation_id),
        role=role,
        content=content,
        model=model,
        tokens_used=tokens_used,
    )
    db.add(message)
    db.commit()
    return message


def recent_turns(
    db: Session, explanation_id: UUID, *, before_seq: int, limit: int
) -> list[ChatTurn]:
    """The last `limit` messages preceding before_seq, oldest first."""
    if limit <= 0:
        return []
    rows = (
        db.execute(
            select(ExplanationMessage)
            .where(
                ExplanationMessage.explanation_id == explanation_id,
                ExplanationMessage.seq < before_seq,
            )
            .order_by(ExplanationMessage.seq.desc())
            .limit(limit)
        )
        .scalars()
        .all()
    )
    return [ChatTurn(role=row.role.value, content=row.content) for row in reversed(rows)]


def _prepare_turn(
    db: Session, viewer_id: UUID, explanation_id: UUID, content: str, window: int
) -> tuple[ExplanationMessage, ChatContext, list[ChatTurn]]:
    explanation = get_explanation_for_viewer_or_404(db, viewer_id, explanation_id)
    context = ChatContext(
        explanation=explanation.explanation_text,
        category=explanation.category,
        is_developer_mode=explanation.is_developer_mode,
    )
    user_message = append_message(db, viewer_id, explanation_id, MessageRole.user, content)
    history = recent_turns(db, explanation_id, before_seq=user_message.seq, limit=window)
    return user_message, context, history


async def send_message(
    db_factory: Callable[[], Session],
    analyzer: VisionAnalyzer,
    viewer_id: UUID,
    explanation_id: UUID,
    content: str,
) -> ChatExchangeOut:
    """Ask a follow-up question about an explanation.

    Raises:
        ExplanationNotFound: If the explanation isn't a live one owned by the viewer.
        AnalysisFailed: If the model fails or replies with nothing. The user's
            message stays persisted.
    """
    db = db_factory()
    try:
        user_message, context, history = await run_in_threadpool(
            _prepare_turn, db, viewer_id, explanation_id, content, analyzer.chat_window
        )

        reply = await analyzer.chat(history, content, context)

        assistant_message = await run_in_threadpool(
            append_message,
            db,
            viewer_id,
            explanation_id,
            MessageRole.assistant,
            reply.response,
            model=reply.model,
            tokens_used=reply.tokens_used,
        )

        try:
            await run_in_threadpool(
                record_usage,
                db,
                viewer_id,
                UsageAction.chat_message,
                assistant_message.id,
                reply.tokens_used,
            )
        except Exception as e:
            logger.warning("usage_log.write_failed", action="chat_message", error=str(e))

        logger.info(
            "chat.message.finished",
            explanation_id=str(explanation_id),
            context_turns=len(history),
            tokens_used=reply.tokens_used,
        )
        return ChatExchangeOut(
            user_message=message_to_out(user_message),
            assistant_message=message_to_out(assistant_message),
        )
    finally:
        db.close()


def get_history(db: Session, viewer_id: UUID, explanation_id: UUID) -> MessageListOut:
    """All messages of an owned explanation, oldest first.

    Unbounded: the model context window does not apply to display.
    """
    get_explanation_for_viewer_or_404(db, viewer_id, explanation_id)
    rows = (
        db.execute(
            select(ExplanationMessage)
            .where(ExplanationMessage.explanation_id == explanation_id)
            .order_by(ExplanationMessage.seq.asc())
        )
        .scalars()
        .all()
    )
    return MessageListOut(items=[message_to_out(row) for row in rows], total=len(rows))


def clear_history(db: Session, viewer_id: UUID, explanation_id: UUID) -> int:
    """Delete every message of an owned explanation. Returns the count removed."""
    get_explanation_for_viewer_or_404(db, viewer_id, explanation_id)
    removed = db.scalar(
        select(func.count())
        .select_from(ExplanationMessage)
        .where(ExplanationMessage.explanation_id == explanation_id)
    )
    db.execute(
        delete(ExplanationMessage)
        .where(ExplanationMessage.explanation_id == explanation_id)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    logger.info("chat.history_cleared", explanation_id=str(explanation_id), removed=removed)
    return removed or 0
