"""Storage path building utilities.

All object paths are built here so the main image and its thumbnail stay
paired and test runs can be isolated under a prefix.

Path Invariant:
    - Main image: {user_id}/{timestamp_ms}-{hash_prefix}.jpg
    - Thumbnail:  {user_id}/thumbnails/{timestamp_ms}-{hash_prefix}.jpg
    - Test runs:  test_runs/{run_id}/ prepended to both

Rules:
    - No leading slash
    - Prefix applied exactly once in build_image_paths()
"""

import os
import time
from dataclasses import dataclass
from uuid import UUID

TEST_PREFIX_ENV_VAR = "STORAGE_TEST_PREFIX"
HASH_PREFIX_LENGTH = 8
THUMBNAIL_DIR = "thumbnails"


@dataclass(frozen=True)
class ImagePaths:
    """Storage paths for one processed capture."""

    main: str
    thumbnail: str


def _get_test_prefix() -> str:
    prefix = os.environ.get(TEST_PREFIX_ENV_VAR, "")
    if prefix and not prefix.endswith("/"):
        prefix = f"{prefix}/"
    return prefix


def build_image_paths(
    user_id: UUID | str,
    content_hash: str,
    *,
    timestamp_ms: int | None = None,
) -> ImagePaths:
    """Build the main and thumbnail paths for a user's processed image.

    Args:
        user_id: Owner of the image.
        content_hash: SHA-256 hex digest of the main image bytes.
        timestamp_ms: Upload time in epoch milliseconds (defaults to now).

    Example:
        >>> build_image_paths(uid, "ab12cd34ef...", timestamp_ms=1700000000000).main
        '<uid>/1700000000000-ab12cd34.jpg'
    """
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    prefix = _get_test_prefix()
    filename = f"{timestamp_ms}-{content_hash[:HASH_PREFIX_LENGTH]}.jpg"
    return ImagePaths(
        main=f"{prefix}{user_id}/{filename}",
        thumbnail=f"{prefix}{user_id}/{THUMBNAIL_DIR}/{filename}",
    )

