"""Best-effort removal of storage objects.

Runs after a soft delete (the explanation's image and thumbnail) and after a
creation that uploaded objects it ended up not using (dedup short-circuit or
a later failure). A failed delete is logged and never raised: the database
side of the operation has already committed.
"""

from collections.abc import Iterable

from explainer.celery import broker_configured, celery_app
from explainer.logging import clear_task_context, configure_task_logging, get_logger
from explainer.storage.client import ObjectStore, get_object_store

logger = get_logger(__name__)


def delete_storage_objects(store: ObjectStore, urls: Iterable[str]) -> dict:
    """Delete each URL, counting outcomes. Never raises."""
    deleted = failed = 0
    for url in urls:
        if not url:
            continue
        try:
            ok = store.delete(url)
        except Exception as e:
            logger.warning("storage.cleanup_failed", error=type(e).__name__)
            ok = False
        if ok:
            deleted += 1
        else:
            failed += 1

    if failed:
        logger.warning("storage.cleanup_incomplete", deleted=deleted, failed=failed)
    return {"deleted": deleted, "failed": failed}


@celery_app.task(bind=True, max_retries=0, name="cleanup_storage_objects")
def cleanup_storage_objects(self, urls: list[str], request_id: str | None = None) -> dict:
    """Worker entry point for storage cleanup."""
    configure_task_logging(
        request_id=request_id, task_name="cleanup_storage_objects", task_id=self.request.id
    )
    try:
        result = delete_storage_objects(get_object_store(), urls)
        logger.info("cleanup_storage_objects_completed", **result)
        return result
    finally:
        clear_task_context()


class StorageCleanup:
    """Schedules storage cleanup: enqueued when a broker exists, inline otherwise."""

    def __init__(self, store: ObjectStore, *, use_broker: bool | None = None):
        self._store = store
        self._use_broker = broker_configured() if use_broker is None else use_broker

    def __call__(self, urls: list[str], request_id: str | None = None) -> None:
        urls = [url for url in urls if url]
        if not urls:
            return
        if self._use_broker:
            try:
                cleanup_storage_objects.apply_async(
                    args=[urls], kwargs={"request_id": request_id}, queue="cleanup"
                )
                return
            except Exception as e:
                logger.warning("storage.cleanup_enqueue_failed", error=str(e))
        delete_storage_objects(self._store, urls)
