"""Tests for best-effort storage cleanup."""

from unittest.mock import MagicMock

import pytest

from explainer.storage.client import FakeObjectStore
from explainer.tasks import cleanup_storage
from explainer.tasks.cleanup_storage import StorageCleanup, delete_storage_objects


@pytest.fixture
def urls(store: FakeObjectStore) -> list[str]:
    return [
        store.upload(b"main", "u/1.jpg", "image/jpeg"),
        store.upload(b"thumb", "u/thumbnails/1.jpg", "image/jpeg"),
    ]


class TestDeleteStorageObjects:
    def test_counts_deleted(self, store, urls):
        assert delete_storage_objects(store, urls) == {"deleted": 2, "failed": 0}
        assert store.paths() == []

    def test_empty_urls_are_skipped(self, store, urls):
        assert delete_storage_objects(store, ["", *urls]) == {"deleted": 2, "failed": 0}

    def test_failures_are_counted_not_raised(self, store, urls):
        store.fail_deletes = True

        assert delete_storage_objects(store, urls) == {"deleted": 0, "failed": 2}

    def test_raising_store_is_contained(self, urls):
        exploding = MagicMock()
        exploding.delete.side_effect = RuntimeError("boom")

        assert delete_storage_objects(exploding, urls) == {"deleted": 0, "failed": 2}


class TestStorageCleanup:
    def test_inline_without_broker(self, store, urls):
        StorageCleanup(store, use_broker=False)(urls)

        assert store.paths() == []

    def test_nothing_to_do(self, store, monkeypatch):
        apply_async = MagicMock()
        monkeypatch.setattr(cleanup_storage.cleanup_storage_objects, "apply_async", apply_async)

        StorageCleanup(store, use_broker=True)(["", ""])

        apply_async.assert_not_called()

    def test_enqueued_with_broker(self, store, urls, monkeypatch):
        apply_async = MagicMock()
        monkeypatch.setattr(cleanup_storage.cleanup_storage_objects, "apply_async", apply_async)

        StorageCleanup(store, use_broker=True)(urls, request_id="req-1")

        apply_async.assert_called_once_with(
            args=[urls], kwargs={"request_id": "req-1"}, queue="cleanup"
        )
        assert len(store.paths()) == 2

    def test_enqueue_failure_falls_back_inline(self, store, urls, monkeypatch):
        apply_async = MagicMock(side_effect=ConnectionError("broker down"))
        monkeypatch.setattr(cleanup_storage.cleanup_storage_objects, "apply_async", apply_async)

        StorageCleanup(store, use_broker=True)(urls)

        assert store.paths() == []


class TestCleanupTask:
    def test_task_runs_against_configured_store(self, store, urls, monkeypatch):
        monkeypatch.setattr(cleanup_storage, "get_object_store", lambda: store)

        result = cleanup_storage.cleanup_storage_objects.apply(args=[urls]).get()

        assert result == {"deleted": 2, "failed": 0}
        assert store.paths() == []
