"""Viewer, usage and upload signing schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class MeOut(BaseModel):
    user_id: UUID
    email: str | None = None
    subscription_tier: str


class UsageOut(BaseModel):
    """Daily quota snapshot for the viewer.

    `daily_count` reads 0 once the window has expired, even before the next
    creation resets the stored counter.
    """

    tier: str
    daily_count: int
    daily_limit: int
    remaining: int
    reset_at: datetime | None = None
    total_explanations: int


class SignUploadRequest(BaseModel):
    content_type: str = Field(default="image/jpeg", pattern=r"^image/(jpeg|png|webp)$")


class SignUploadOut(BaseModel):
    path: str
    url: str
    token: str
    expires_in: int
