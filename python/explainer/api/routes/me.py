"""Current user endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends

from explainer.api.deps import get_pipeline
from explainer.auth.middleware import Viewer, get_viewer
from explainer.responses import success_response
from explainer.schemas.usage import MeOut
from explainer.services.pipeline import ExplanationPipeline

router = APIRouter()


@router.get("/me")
async def get_me(viewer: Annotated[Viewer, Depends(get_viewer)]) -> dict:
    """The authenticated viewer's id, email and subscription tier."""
    out = MeOut(
        user_id=viewer.user_id,
        email=viewer.email,
        subscription_tier=viewer.subscription_tier,
    )
    return success_response(out.model_dump(mode="json"))


@router.get("/me/usage")
async def get_usage(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    pipeline: Annotated[ExplanationPipeline, Depends(get_pipeline)],
) -> dict:
    """Today's quota: count, limit, remaining and when the window resets."""
    usage = await pipeline.usage(viewer.user_id)
    return success_response(usage.model_dump(mode="json"))
