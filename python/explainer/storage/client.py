"""Object storage client abstraction.

Images are stored in a public bucket and referenced by URL from explanation
rows. The store supports:
- Uploading bytes to a path and returning the public URL
- Best-effort deletion by public URL (errors are logged, never raised)
- Signed upload URLs for clients uploading directly

The production implementation talks to Supabase Storage over httpx; the fake
keeps objects in memory for local development and tests.
"""

import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from urllib.parse import unquote, urlparse
from uuid import uuid4

import httpx

from explainer.config import get_settings
from explainer.logging import get_logger

logger = get_logger(__name__)

CACHE_CONTROL_SECONDS = 31536000


@dataclass(frozen=True)
class SignedUpload:
    """Signed upload target handed to a client for a direct upload."""

    path: str
    url: str
    token: str


class StorageError(Exception):
    """Storage operation error."""

    def __init__(self, message: str, code: str = "E_STORAGE_ERROR"):
        super().__init__(message)
        self.message = message
        self.code = code


class ObjectStore(ABC):
    """Durable blob storage with public URL issuance."""

    @abstractmethod
    def upload(self, data: bytes, path: str, content_type: str) -> str:
        """Store bytes at path and return the object's public URL.

        Raises:
            StorageError: If the store rejects the upload.
        """
        ...

    @abstractmethod
    def delete(self, url: str) -> bool:
        """Delete the object behind a public URL.

        Best-effort: failures are logged and reported as False, never raised.
        """
        ...

    @abstractmethod
    def sign_upload_url(self, path: str, *, expires_in: int = 300) -> SignedUpload:
        """Create a signed URL a client can PUT the object to.

        Raises:
            StorageError: If signing fails.
        """
        ...

    @abstractmethod
    def public_url(self, path: str) -> str:
        """Public URL for an object path."""
        ...

    @abstractmethod
    def path_from_url(self, url: str) -> str | None:
        """Inverse of public_url; None if the URL is not from this store."""
        ...


class SupabaseObjectStore(ObjectStore):
    """Supabase Storage client for a public bucket."""

    def __init__(
        self,
        supabase_url: str,
        service_key: str,
        bucket: str = "images",
        *,
        client: httpx.Client | None = None,
    ):
        """Initialize the storage client.

        Args:
            supabase_url: Supabase project URL (e.g., https://xxx.supabase.co).
            service_key: Supabase service role key.
            bucket: Storage bucket name.
            client: Optional shared httpx.Client.
        """
        self._base_url = supabase_url.rstrip("/")
        self._bucket = bucket
        self._storage_url = f"{self._base_url}/storage/v1"
        self._public_prefix = f"{self._storage_url}/object/public/{bucket}/"
        self._headers = {
            "Authorization": f"Bearer {service_key}",
            "apikey": service_key,
        }
        self._client = client or httpx.Client(timeout=30.0)

    def upload(self, data: bytes, path: str, content_type: str) -> str:
        url = f"{self._storage_url}/object/{self._bucket}/{path}"
        headers = {
            **self._headers,
            "Content-Type": content_type,
            "Cache-Control": f"max-age={CACHE_CONTROL_SECONDS}",
            "x-upsert": "false",
        }
        try:
            response = self._client.post(url, headers=headers, content=data)
        except httpx.HTTPError as e:
            raise StorageError(f"Upload request failed: {type(e).__name__}") from e

        if response.status_code not in (200, 201):
            raise StorageError(
                f"Failed to upload object: {response.status_code}",
                code="E_UPLOAD_FAILED",
            )

        logger.info("storage.upload.finished", path=path, size_bytes=len(data))
        return self.public_url(path)

    def delete(self, url: str) -> bool:
        path = self.path_from_url(url)
        if path is None:
            logger.warning("storage.delete.skipped", reason="foreign_url")
            return False

        try:
            response = self._client.delete(
                f"{self._storage_url}/object/{self._bucket}/{path}",
                headers=self._headers,
            )
        except httpx.HTTPError as e:
            logger.warning("storage.delete.failed", path=path, error=type(e).__name__)
            return False

        if response.status_code not in (200, 204, 404):
            logger.warning("storage.delete.failed", path=path, status_code=response.status_code)
            return False
        return True

    def sign_upload_url(self, path: str, *, expires_in: int = 300) -> SignedUpload:
        """Create signed upload URL via POST /object/upload/sign/{bucket}/{path}."""
        url = f"{self._storage_url}/object/upload/sign/{self._bucket}/{path}"
        try:
            response = self._client.post(
                url, headers=self._headers, json={"expiresIn": expires_in}
            )
        except httpx.HTTPError as e:
            raise StorageError(
                f"Sign upload request failed: {type(e).__name__}", code="E_SIGN_UPLOAD_FAILED"
            ) from e

        if response.status_code != 200:
            raise StorageError(
                f"Failed to sign upload: {response.status_code}",
                code="E_SIGN_UPLOAD_FAILED",
            )

        data = response.json()
        signed = data.get("url", "")
        token = data.get("token", "")
        if not token and "token=" in signed:
            token = signed.split("token=")[1].split("&")[0]
        if signed.startswith("/"):
            signed = f"{self._storage_url}{signed}"
        return SignedUpload(path=path, url=signed, token=token)

    def public_url(self, path: str) -> str:
        return f"{self._public_prefix}{path}"

    def path_from_url(self, url: str) -> str | None:
        if not url.startswith(self._public_prefix):
            return None
        path = unquote(urlparse(url).path)
        marker = f"/object/public/{self._bucket}/"
        return path.split(marker, 1)[1] if marker in path else None


class FakeObjectStore(ObjectStore):
    """In-memory object store for local development and tests."""

    BASE_URL = "https://fake-storage.test/images/"

    def __init__(self):
        self._objects: dict[str, tuple[bytes, str]] = {}
        self.fail_uploads = False
        self.fail_deletes = False
        self.deleted: list[str] = []

    def upload(self, data: bytes, path: str, content_type: str) -> str:
        if self.fail_uploads:
            raise StorageError("Simulated upload failure", code="E_UPLOAD_FAILED")
        self._objects[path] = (data, content_type)
        return self.public_url(path)

    def delete(self, url: str) -> bool:
        path = self.path_from_url(url)
        if path is None or self.fail_deletes:
            logger.warning("storage.delete.failed", path=path)
            return False
        self._objects.pop(path, None)
        self.deleted.append(path)
        return True

    def sign_upload_url(self, path: str, *, expires_in: int = 300) -> SignedUpload:
        token = f"fake-token-{uuid4()}"
        url = f"{self.BASE_URL}upload/{path}?token={token}"
        return SignedUpload(path=path, url=url, token=token)

    def public_url(self, path: str) -> str:
        return f"{self.BASE_URL}{path}"

    def path_from_url(self, url: str) -> str | None:
        if not url.startswith(self.BASE_URL):
            return None
        return url[len(self.BASE_URL) :]

    # Test helper methods

    def get_object(self, path: str) -> bytes | None:
        """Get object content directly (test helper)."""
        entry = self._objects.get(path)
        return entry[0] if entry else None

    def paths(self) -> list[str]:
        """All stored object paths (test helper)."""
        return sorted(self._objects)

    def clear(self) -> None:
        """Clear all stored objects (test helper)."""
        self._objects.clear()
        self.deleted.clear()


def get_object_store() -> ObjectStore:
    """Build the configured object store.

    Returns:
        SupabaseObjectStore if SUPABASE_URL and SUPABASE_SERVICE_KEY are set,
        FakeObjectStore otherwise.
    """
    settings = get_settings()
    if settings.supabase_url and settings.supabase_service_key:
        return SupabaseObjectStore(
            supabase_url=settings.supabase_url,
            service_key=settings.supabase_service_key,
            bucket=settings.storage_bucket,
        )
    logger.info("storage.fake_store_in_use")
    return FakeObjectStore()


def compute_sha256(data: bytes) -> str:
    """Hex-encoded SHA-256 of a byte string."""
    return hashlib.sha256(data).hexdigest()
