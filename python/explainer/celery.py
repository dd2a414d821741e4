"""Celery application configuration.

Shared by the API (enqueuing) and the worker (executing).

Usage:
    from explainer.tasks import cleanup_storage_objects
    cleanup_storage_objects.apply_async(args=[urls], queue="cleanup")
"""

from celery import Celery

from explainer.config import get_settings

settings = get_settings()

celery_app = Celery("explainer")

celery_app.conf.broker_url = settings.effective_celery_broker_url
celery_app.conf.result_backend = settings.effective_celery_result_backend

celery_app.conf.task_serializer = "json"
celery_app.conf.result_serializer = "json"
celery_app.conf.accept_content = ["json"]
celery_app.conf.timezone = "UTC"
celery_app.conf.enable_utc = True

celery_app.conf.task_routes = {
    "cleanup_storage_objects": {"queue": "cleanup"},
}
celery_app.conf.task_default_queue = "default"


def broker_configured() -> bool:
    """True when tasks can be enqueued rather than run inline."""
    return bool(celery_app.conf.broker_url)
