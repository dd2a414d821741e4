"""Tests for follow-up chat on an explanation.

Covers:
- Context window: only the last N prior messages reach the model
- History is unbounded for display, ordered by seq
- A failed model call keeps the user's question
- Usage logging per assistant reply
"""

import pytest
from sqlalchemy import select

from explainer.db.models import MessageRole, UsageAction, UsageLog
from explainer.errors import AnalysisFailed, ExplanationNotFound
from explainer.services import chat
from explainer.services.llm.errors import LLMError, LLMErrorClass
from explainer.services.vision import VisionAnalyzer
from tests.helpers import create_explanation_row, create_user


@pytest.fixture
def explanation(db_session, user):
    return create_explanation_row(db_session, user.id, text="A red bicycle.")


def seed_messages(db, user_id, explanation_id, count: int) -> None:
    for i in range(count):
        role = MessageRole.user if i % 2 == 0 else MessageRole.assistant
        chat.append_message(db, user_id, explanation_id, role, f"message {i}")


class TestSendMessage:
    async def test_persists_exchange(self, session_factory, analyzer, user, explanation):
        exchange = await chat.send_message(
            session_factory, analyzer, user.id, explanation.id, "What brand is it?"
        )

        assert exchange.user_message.role == "user"
        assert exchange.user_message.content == "What brand is it?"
        assert exchange.user_message.seq == 1
        assert exchange.assistant_message.role == "assistant"
        assert exchange.assistant_message.seq == 2
        assert exchange.assistant_message.content == "It is a city bike with a steel frame."
        assert exchange.assistant_message.model == "gpt-4o-mini"
        assert exchange.assistant_message.tokens_used == 55

    async def test_context_window_is_last_ten(
        self, session_factory, db_session, analyzer, provider, user, explanation
    ):
        seed_messages(db_session, user.id, explanation.id, 12)

        await chat.send_message(session_factory, analyzer, user.id, explanation.id, "And now?")

        messages = provider.chat_calls[0]["messages"]
        assert messages[0].role == "system"
        assert "A red bicycle." in messages[0].content
        assert [m.content for m in messages[1:-1]] == [f"message {i}" for i in range(2, 12)]
        assert messages[-1].content == "And now?"

        history = chat.get_history(db_session, user.id, explanation.id)
        assert history.total == 14
        assert [m.seq for m in history.items] == list(range(1, 15))

    async def test_window_is_configurable(
        self, session_factory, db_session, provider, cache, user, explanation
    ):
        analyzer = VisionAnalyzer(provider, cache, chat_window=2)
        seed_messages(db_session, user.id, explanation.id, 5)

        await chat.send_message(session_factory, analyzer, user.id, explanation.id, "q")

        messages = provider.chat_calls[0]["messages"]
        assert [m.content for m in messages[1:-1]] == ["message 3", "message 4"]

    async def test_first_message_has_no_history(
        self, session_factory, analyzer, provider, user, explanation
    ):
        await chat.send_message(session_factory, analyzer, user.id, explanation.id, "hi")

        messages = provider.chat_calls[0]["messages"]
        assert [m.role for m in messages] == ["system", "user"]

    async def test_model_failure_keeps_question(
        self, session_factory, db_session, analyzer, provider, user, explanation
    ):
        provider.script_chat(LLMError(LLMErrorClass.PROVIDER_DOWN, "down"))

        with pytest.raises(AnalysisFailed):
            await chat.send_message(session_factory, analyzer, user.id, explanation.id, "hello?")

        history = chat.get_history(db_session, user.id, explanation.id)
        assert [(m.role, m.content) for m in history.items] == [("user", "hello?")]

    async def test_records_usage_for_reply(
        self, session_factory, db_session, analyzer, user, explanation
    ):
        exchange = await chat.send_message(
            session_factory, analyzer, user.id, explanation.id, "q"
        )

        row = db_session.execute(select(UsageLog)).scalar_one()
        assert row.action == UsageAction.chat_message
        assert row.resource_id == exchange.assistant_message.id
        assert row.tokens_used == 55

    async def test_does_not_consume_quota(
        self, session_factory, db_session, analyzer, user, explanation
    ):
        await chat.send_message(session_factory, analyzer, user.id, explanation.id, "q")

        db_session.refresh(user)
        assert user.daily_usage_count == 0

    async def test_foreign_explanation_is_not_found(
        self, session_factory, db_session, analyzer, provider, user
    ):
        other = create_user(db_session)
        foreign = create_explanation_row(db_session, other.id)

        with pytest.raises(ExplanationNotFound):
            await chat.send_message(session_factory, analyzer, user.id, foreign.id, "q")

        assert provider.chat_calls == []


class TestHistory:
    def test_empty(self, db_session, user, explanation):
        history = chat.get_history(db_session, user.id, explanation.id)

        assert history.items == []
        assert history.total == 0

    def test_clear_removes_all_messages(self, db_session, user, explanation):
        seed_messages(db_session, user.id, explanation.id, 3)

        removed = chat.clear_history(db_session, user.id, explanation.id)

        assert removed == 3
        assert chat.get_history(db_session, user.id, explanation.id).total == 0

        # seq keeps climbing after a clear
        message = chat.append_message(
            db_session, user.id, explanation.id, MessageRole.user, "again"
        )
        assert message.seq == 4

    def test_foreign_history_is_not_found(self, db_session, user):
        foreign = create_explanation_row(db_session, create_user(db_session).id)

        with pytest.raises(ExplanationNotFound):
            chat.get_history(db_session, user.id, foreign.id)
        with pytest.raises(ExplanationNotFound):
            chat.clear_history(db_session, user.id, foreign.id)

    def test_recent_turns_are_oldest_first(self, db_session, user, explanation):
        seed_messages(db_session, user.id, explanation.id, 4)

        turns = chat.recent_turns(db_session, explanation.id, before_seq=4, limit=2)

        assert [t.content for t in turns] == ["message 1", "message 2"]
        assert [t.role for t in turns] == ["assistant", "user"]
