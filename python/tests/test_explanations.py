"""Tests for the explanation repository.

All tests run against the in-memory database; explanations are seeded
directly so the pipeline is not involved.
"""

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select

from explainer.db.models import Explanation, utcnow
from explainer.errors import ExplanationNotFound
from explainer.services import explanations
from explainer.services.explanations import NewExplanation, clamp_page_size
from tests.helpers import create_explanation_row, create_user

HASH_A = "a" * 64


def new_fields(image_hash: str = HASH_A, **overrides) -> NewExplanation:
    values = {
        "image_url": f"https://fake-storage.test/images/{image_hash[:8]}.jpg",
        "thumbnail_url": f"https://fake-storage.test/images/thumbnails/{image_hash[:8]}.jpg",
        "image_hash": image_hash,
        "explanation_text": "A red bicycle.",
        "model_used": "gpt-4o",
        "processing_time_ms": 1200,
        "confidence_score": 0.9,
        "category": "identification",
        "tags": ["bicycle", "red"],
    }
    values.update(overrides)
    return NewExplanation(**values)


def seed_history(db, user_id, count: int) -> list[Explanation]:
    """Seed `count` explanations one minute apart, oldest first."""
    start = utcnow() - timedelta(hours=1)
    return [
        create_explanation_row(
            db, user_id, text=f"Explanation {i}", created_at=start + timedelta(minutes=i)
        )
        for i in range(count)
    ]


class TestCreateAndDedup:
    def test_create_persists_fields_and_tags(self, db_session, user):
        explanation, created = explanations.create_explanation(
            db_session, user.id, new_fields()
        )

        assert created
        out = explanations.explanation_to_out(explanation)
        assert out.explanation == "A red bicycle."
        assert out.tags == ["bicycle", "red"]
        assert out.view_count == 0
        assert not out.is_favorite

    def test_out_of_range_scores_are_clamped(self, db_session, user):
        explanation, _ = explanations.create_explanation(
            db_session, user.id, new_fields(confidence_score=1.4, processing_time_ms=-3)
        )

        assert explanation.confidence_score == 1.0
        assert explanation.processing_time_ms == 0

    def test_find_duplicate_matches_live_rows_only(self, db_session, user):
        row = create_explanation_row(db_session, user.id, image_hash=HASH_A)

        assert explanations.find_duplicate(db_session, user.id, HASH_A).id == row.id
        assert explanations.find_duplicate(db_session, user.id, "b" * 64) is None

        row.deleted_at = utcnow()
        db_session.commit()

        assert explanations.find_duplicate(db_session, user.id, HASH_A) is None

    def test_dedup_is_per_user(self, db_session, user):
        other = create_user(db_session)
        create_explanation_row(db_session, other.id, image_hash=HASH_A)

        assert explanations.find_duplicate(db_session, user.id, HASH_A) is None

    def test_concurrent_insert_returns_existing_row(self, db_session, user):
        winner = create_explanation_row(db_session, user.id, image_hash=HASH_A)

        explanation, created = explanations.create_explanation(
            db_session, user.id, new_fields(HASH_A)
        )

        assert not created
        assert explanation.id == winner.id
        count = len(db_session.execute(select(Explanation)).scalars().all())
        assert count == 1

    def test_deleted_row_does_not_block_recreation(self, db_session, user):
        create_explanation_row(db_session, user.id, image_hash=HASH_A, deleted_at=utcnow())

        _, created = explanations.create_explanation(db_session, user.id, new_fields(HASH_A))

        assert created


class TestList:
    def test_newest_first(self, db_session, user):
        seed_history(db_session, user.id, 3)

        page = explanations.list_explanations(db_session, user.id)

        assert [item.explanation for item in page.items] == [
            "Explanation 2",
            "Explanation 1",
            "Explanation 0",
        ]
        assert page.total == 3
        assert page.total_pages == 1

    def test_pagination(self, db_session, user):
        seed_history(db_session, user.id, 25)

        first = explanations.list_explanations(db_session, user.id, page=1, limit=10)
        third = explanations.list_explanations(db_session, user.id, page=3, limit=10)

        assert first.total == 25
        assert first.total_pages == 3
        assert first.items[0].explanation == "Explanation 24"
        assert len(third.items) == 5
        assert third.items[-1].explanation == "Explanation 0"

    def test_page_past_the_end_is_empty(self, db_session, user):
        seed_history(db_session, user.id, 2)

        page = explanations.list_explanations(db_session, user.id, page=5, limit=10)

        assert page.items == []
        assert page.total == 2

    def test_empty_history(self, db_session, user):
        page = explanations.list_explanations(db_session, user.id)

        assert page.total == 0
        assert page.total_pages == 0

    def test_limit_is_clamped(self, db_session, user):
        assert clamp_page_size(500) == 100
        assert clamp_page_size(0) == 1
        assert explanations.list_explanations(db_session, user.id, limit=1000).limit == 100

    def test_other_users_and_deleted_rows_are_hidden(self, db_session, user):
        other = create_user(db_session)
        create_explanation_row(db_session, other.id)
        create_explanation_row(db_session, user.id, deleted_at=utcnow())
        mine = create_explanation_row(db_session, user.id)

        page = explanations.list_explanations(db_session, user.id)

        assert [item.id for item in page.items] == [mine.id]

    def test_category_filter(self, db_session, user):
        create_explanation_row(db_session, user.id, category="education")
        create_explanation_row(db_session, user.id, category="identification")

        page = explanations.list_explanations(db_session, user.id, category="education")

        assert [item.category for item in page.items] == ["education"]

    def test_favorites_only(self, db_session, user):
        create_explanation_row(db_session, user.id, is_favorite=True, text="fav")
        create_explanation_row(db_session, user.id, text="plain")

        page = explanations.list_explanations(db_session, user.id, favorites_only=True)

        assert [item.explanation for item in page.items] == ["fav"]

    def test_search_matches_text_case_insensitively(self, db_session, user):
        create_explanation_row(db_session, user.id, text="Photosynthesis in leaves")
        create_explanation_row(db_session, user.id, text="A red bicycle")

        page = explanations.list_explanations(db_session, user.id, search="PHOTO")

        assert [item.explanation for item in page.items] == ["Photosynthesis in leaves"]

    def test_search_matches_whole_tags(self, db_session, user):
        create_explanation_row(db_session, user.id, text="one", tags=["Biology", "plants"])
        create_explanation_row(db_session, user.id, text="two", tags=["biologyish"])

        page = explanations.list_explanations(db_session, user.id, search="biology")

        assert [item.explanation for item in page.items] == ["one"]

    def test_search_treats_wildcards_literally(self, db_session, user):
        create_explanation_row(db_session, user.id, text="100% cotton")
        create_explanation_row(db_session, user.id, text="100 percent wool")

        page = explanations.list_explanations(db_session, user.id, search="100%")

        assert [item.explanation for item in page.items] == ["100% cotton"]

    def test_blank_search_is_ignored(self, db_session, user):
        seed_history(db_session, user.id, 2)

        assert explanations.list_explanations(db_session, user.id, search="   ").total == 2


class TestGet:
    def test_counts_views(self, db_session, user):
        row = create_explanation_row(db_session, user.id)

        explanations.get_explanation(db_session, user.id, row.id)
        out = explanations.get_explanation(db_session, user.id, row.id)

        assert out.view_count == 2

    def test_view_does_not_touch_updated_at(self, db_session, user):
        created_at = utcnow() - timedelta(days=1)
        row = create_explanation_row(db_session, user.id, created_at=created_at)

        out = explanations.get_explanation(db_session, user.id, row.id)

        assert abs(out.updated_at - created_at) < timedelta(seconds=1)

    def test_other_users_row_is_not_found_and_not_counted(self, db_session, user):
        other = create_user(db_session)
        row = create_explanation_row(db_session, other.id)

        with pytest.raises(ExplanationNotFound):
            explanations.get_explanation(db_session, user.id, row.id)

        db_session.expire_all()
        assert db_session.get(Explanation, row.id).view_count == 0

    def test_missing_and_deleted_are_not_found(self, db_session, user):
        deleted = create_explanation_row(db_session, user.id, deleted_at=utcnow())

        with pytest.raises(ExplanationNotFound):
            explanations.get_explanation(db_session, user.id, deleted.id)
        with pytest.raises(ExplanationNotFound):
            explanations.get_explanation(db_session, user.id, uuid4())


class TestFavorite:
    def test_toggle_flips_and_returns_new_value(self, db_session, user):
        row = create_explanation_row(db_session, user.id)

        assert explanations.toggle_favorite(db_session, user.id, row.id) is True
        assert explanations.toggle_favorite(db_session, user.id, row.id) is False

    def test_toggle_on_foreign_row_is_not_found(self, db_session, user):
        row = create_explanation_row(db_session, create_user(db_session).id)

        with pytest.raises(ExplanationNotFound):
            explanations.toggle_favorite(db_session, user.id, row.id)


class TestSoftDelete:
    def test_returns_storage_urls_and_hides_row(self, db_session, user):
        row = create_explanation_row(db_session, user.id)

        urls = explanations.soft_delete(db_session, user.id, row.id)

        assert urls == [row.image_url, row.thumbnail_url]
        with pytest.raises(ExplanationNotFound):
            explanations.get_explanation(db_session, user.id, row.id)
        db_session.expire_all()
        assert db_session.get(Explanation, row.id).deleted_at is not None

    def test_second_delete_is_not_found(self, db_session, user):
        row = create_explanation_row(db_session, user.id)
        explanations.soft_delete(db_session, user.id, row.id)

        with pytest.raises(ExplanationNotFound):
            explanations.soft_delete(db_session, user.id, row.id)

    def test_foreign_row_is_untouched(self, db_session, user):
        row = create_explanation_row(db_session, create_user(db_session).id)

        with pytest.raises(ExplanationNotFound):
            explanations.soft_delete(db_session, user.id, row.id)

        db_session.expire_all()
        assert db_session.get(Explanation, row.id).deleted_at is None
