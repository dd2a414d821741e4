"""Explanation and chat API routes.

Routes are transport-only: each decodes its input, applies the request rate
limit where the model may be reached, and calls one pipeline operation.

Creation returns 201 with a new explanation, or 200 with the existing one
when the same image was already explained for this user.

All routes require authentication.
Response envelope: {"data": ...}
Error envelope: {"error": {"code": "...", "message": "...", "request_id": "..."}}
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from explainer.api.deps import get_pipeline, get_rate_limiter
from explainer.auth.middleware import Viewer, get_viewer
from explainer.errors import (
    ApiErrorCode,
    ImageConstraintViolation,
    InvalidImage,
    InvalidRequestError,
)
from explainer.responses import success_response
from explainer.schemas.explanation import (
    DEFAULT_PAGE_SIZE,
    CreateExplanationRequest,
    ExplanationOptions,
    FavoriteOut,
    SendMessageRequest,
)
from explainer.services.image_processing import MAX_IMAGE_BYTES
from explainer.services.pipeline import CreationResult, ExplanationPipeline
from explainer.services.rate_limit import RateLimiter

router = APIRouter(tags=["explanations"])

PipelineDep = Annotated[ExplanationPipeline, Depends(get_pipeline)]
ViewerDep = Annotated[Viewer, Depends(get_viewer)]
LimiterDep = Annotated[RateLimiter, Depends(get_rate_limiter)]


def _created_response(result: CreationResult) -> JSONResponse:
    return JSONResponse(
        status_code=201 if result.created else 200,
        content=success_response(result.explanation.model_dump(mode="json")),
    )


# =============================================================================
# Creation
# =============================================================================


@router.post("/explanations")
async def create_explanation(
    body: CreateExplanationRequest,
    viewer: ViewerDep,
    pipeline: PipelineDep,
    limiter: LimiterDep,
) -> JSONResponse:
    """Explain an image sent as a base64 data URL.

    Errors:
        E_INVALID_IMAGE (400), E_IMAGE_CONSTRAINT (400), E_IMAGE_TOO_LARGE (413),
        E_QUOTA_EXCEEDED (429), E_RATE_LIMITED (429), E_UPLOAD_FAILED (502),
        E_ANALYSIS_FAILED (503)
    """
    await run_in_threadpool(limiter.check_rpm_limit, viewer.user_id)
    try:
        image_bytes = body.image_bytes()
    except ValueError as e:
        raise InvalidImage(str(e)) from e

    result = await pipeline.create(
        viewer.user_id,
        image_bytes,
        body.prompt,
        is_developer_mode=body.is_developer_mode,
        language=body.language,
    )
    return _created_response(result)


@router.post("/explanations/upload")
async def upload_explanation(
    viewer: ViewerDep,
    pipeline: PipelineDep,
    limiter: LimiterDep,
    image: UploadFile = File(...),
    prompt: str | None = Form(default=None),
    language: str = Form(default="en"),
    is_developer_mode: bool = Form(default=False),
) -> JSONResponse:
    """Explain an image sent as a multipart file upload."""
    await run_in_threadpool(limiter.check_rpm_limit, viewer.user_id)

    try:
        options = ExplanationOptions.model_validate(
            {
                "prompt": prompt,
                "language": language,
                "is_developer_mode": is_developer_mode,
            }
        )
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"])
        raise InvalidRequestError(message=f"{field}: {first['msg']}") from e

    data = await image.read(MAX_IMAGE_BYTES + 1)
    if len(data) > MAX_IMAGE_BYTES:
        raise ImageConstraintViolation(
            f"Image exceeds the {MAX_IMAGE_BYTES} byte limit",
            code=ApiErrorCode.E_IMAGE_TOO_LARGE,
        )

    result = await pipeline.create(
        viewer.user_id,
        data,
        options.prompt,
        is_developer_mode=options.is_developer_mode,
        language=options.language,
    )
    return _created_response(result)


# =============================================================================
# Read / mutate
# =============================================================================


@router.get("/explanations")
async def list_explanations(
    viewer: ViewerDep,
    pipeline: PipelineDep,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, description="Clamped to 1..100"),
    category: str | None = Query(default=None, max_length=32),
    search: str | None = Query(default=None, max_length=200),
    favorites_only: bool = Query(default=False),
) -> dict:
    """List the viewer's explanations, newest first, with offset pagination."""
    result = await pipeline.list_explanations(
        viewer.user_id,
        page=page,
        limit=limit,
        category=category,
        search=search,
        favorites_only=favorites_only,
    )
    return success_response(result.model_dump(mode="json"))


@router.get("/explanations/{explanation_id}")
async def get_explanation(explanation_id: UUID, viewer: ViewerDep, pipeline: PipelineDep) -> dict:
    """Fetch one explanation. Counts as a view."""
    result = await pipeline.get(viewer.user_id, explanation_id)
    return success_response(result.model_dump(mode="json"))


@router.post("/explanations/{explanation_id}/favorite")
async def toggle_favorite(explanation_id: UUID, viewer: ViewerDep, pipeline: PipelineDep) -> dict:
    is_favorite = await pipeline.toggle_favorite(viewer.user_id, explanation_id)
    return success_response(FavoriteOut(is_favorite=is_favorite).model_dump())


@router.delete("/explanations/{explanation_id}", status_code=204)
async def delete_explanation(
    explanation_id: UUID, viewer: ViewerDep, pipeline: PipelineDep
) -> Response:
    """Soft-delete an explanation. Storage objects are removed in the background."""
    await pipeline.delete(viewer.user_id, explanation_id)
    return Response(status_code=204)


# =============================================================================
# Chat
# =============================================================================


@router.post("/explanations/{explanation_id}/messages", status_code=201)
async def send_message(
    explanation_id: UUID,
    body: SendMessageRequest,
    viewer: ViewerDep,
    pipeline: PipelineDep,
    limiter: LimiterDep,
) -> dict:
    """Ask a follow-up question. Returns the stored question and answer."""
    await run_in_threadpool(limiter.check_rpm_limit, viewer.user_id)
    result = await pipeline.send_message(viewer.user_id, explanation_id, body.content)
    return success_response(result.model_dump(mode="json"))


@router.get("/explanations/{explanation_id}/messages")
async def get_messages(explanation_id: UUID, viewer: ViewerDep, pipeline: PipelineDep) -> dict:
    """Full chat history, oldest first."""
    result = await pipeline.get_history(viewer.user_id, explanation_id)
    return success_response(result.model_dump(mode="json"))


@router.delete("/explanations/{explanation_id}/messages", status_code=204)
async def clear_messages(
    explanation_id: UUID, viewer: ViewerDep, pipeline: PipelineDep
) -> Response:
    await pipeline.clear_history(viewer.user_id, explanation_id)
    return Response(status_code=204)
