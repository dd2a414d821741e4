"""Object storage for captured images and thumbnails."""

from explainer.storage.client import (
    FakeObjectStore,
    ObjectStore,
    SignedUpload,
    StorageError,
    SupabaseObjectStore,
    compute_sha256,
    get_object_store,
)
from explainer.storage.paths import ImagePaths, build_image_paths

__all__ = [
    "ObjectStore",
    "SupabaseObjectStore",
    "FakeObjectStore",
    "SignedUpload",
    "StorageError",
    "get_object_store",
    "compute_sha256",
    "ImagePaths",
    "build_image_paths",
]
