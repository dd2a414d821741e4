"""Signed direct-upload URLs.

Lets clients PUT a capture straight to object storage under their own
prefix instead of streaming it through the API.
"""

from typing import Annotated
from uuid import uuid4

from fastapi import APIRouter, Body, Depends
from starlette.concurrency import run_in_threadpool

from explainer.api.deps import get_object_store
from explainer.auth.middleware import Viewer, get_viewer
from explainer.config import get_settings
from explainer.errors import ApiError, ApiErrorCode
from explainer.logging import get_logger
from explainer.responses import success_response
from explainer.schemas.usage import SignUploadOut, SignUploadRequest
from explainer.storage.client import ObjectStore, StorageError
from explainer.storage.paths import build_image_paths

logger = get_logger(__name__)

router = APIRouter(tags=["uploads"])


@router.post("/uploads/sign")
async def sign_upload(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    store: Annotated[ObjectStore, Depends(get_object_store)],
    body: Annotated[SignUploadRequest | None, Body()] = None,
) -> dict:
    """Issue a signed upload URL for a new object in the viewer's folder.

    Errors:
        E_SIGN_UPLOAD_FAILED (502): Object storage refused to sign.
    """
    expires_in = get_settings().signed_url_expiry_s
    # No content hash exists before upload; a random token stands in for it
    path = build_image_paths(viewer.user_id, uuid4().hex).main

    try:
        signed = await run_in_threadpool(store.sign_upload_url, path, expires_in=expires_in)
    except StorageError as e:
        logger.error("storage.sign_upload.failed", code=e.code)
        raise ApiError(ApiErrorCode.E_SIGN_UPLOAD_FAILED, "Could not sign upload") from e

    out = SignUploadOut(
        path=signed.path, url=signed.url, token=signed.token, expires_in=expires_in
    )
    return success_response(out.model_dump())
