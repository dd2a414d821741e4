"""Celery tasks for the explainer service.

Tasks are explicitly imported here to register them with Celery.
No autodiscovery - all tasks must be imported in this module.
"""

from explainer.tasks.cleanup_storage import (
    StorageCleanup,
    cleanup_storage_objects,
    delete_storage_objects,
)

__all__ = ["StorageCleanup", "cleanup_storage_objects", "delete_storage_objects"]
