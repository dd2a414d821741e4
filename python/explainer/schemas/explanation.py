"""Explanation and chat message Pydantic schemas.

Request models validate the creation/chat payloads; response models are what
the routes wrap in the success envelope.
"""

import base64
import binascii
import re
from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

SUPPORTED_LANGUAGES = Literal["en", "es", "fr", "de", "zh", "hi"]

MAX_PROMPT_LENGTH = 500
MAX_CHAT_MESSAGE_LENGTH = 1000
DEFAULT_PAGE_SIZE = 20

_DATA_URL = re.compile(r"^data:image/([\w.+-]+);base64,(.+)$", re.DOTALL)


def decode_data_url(value: str) -> bytes:
    """Decode a `data:image/...;base64,...` URL into raw bytes.

    Raises:
        ValueError: If the value is not a base64 image data URL.
    """
    match = _DATA_URL.match(value.strip())
    if match is None:
        raise ValueError("image must be a base64 data URL (data:image/...;base64,...)")
    try:
        return base64.b64decode(match.group(2), validate=False)
    except (binascii.Error, ValueError) as e:
        raise ValueError("image data URL is not valid base64") from e


# =============================================================================
# Response Schemas
# =============================================================================


class ExplanationOut(BaseModel):
    """Response schema for an explanation."""

    id: UUID
    image_url: str
    thumbnail_url: str
    image_hash: str
    prompt: str | None = None
    explanation: str
    model_used: str
    processing_time_ms: int
    confidence_score: float
    category: str
    tags: list[str]
    language: str
    is_developer_mode: bool
    is_favorite: bool
    view_count: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ExplanationListOut(BaseModel):
    """One page of explanations, newest first."""

    items: list[ExplanationOut]
    total: int
    page: int
    limit: int
    total_pages: int


class FavoriteOut(BaseModel):
    is_favorite: bool


class MessageOut(BaseModel):
    """Response schema for a chat message.

    Messages are immutable and ordered by seq within an explanation.
    """

    id: UUID
    explanation_id: UUID
    seq: int
    role: Literal["user", "assistant"]
    content: str
    model: str | None = None
    tokens_used: int | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MessageListOut(BaseModel):
    items: list[MessageOut]
    total: int


class ChatExchangeOut(BaseModel):
    """The persisted question and the assistant's reply."""

    user_message: MessageOut
    assistant_message: MessageOut


# =============================================================================
# Request Schemas
# =============================================================================


class ExplanationOptions(BaseModel):
    """Analysis options shared by the JSON and multipart creation routes."""

    prompt: str | None = Field(default=None, max_length=MAX_PROMPT_LENGTH)
    language: SUPPORTED_LANGUAGES = "en"
    is_developer_mode: bool = False

    model_config = ConfigDict(str_strip_whitespace=True)

    @field_validator("prompt")
    @classmethod
    def _blank_prompt_is_none(cls, value: str | None) -> str | None:
        return value or None


class CreateExplanationRequest(ExplanationOptions):
    """JSON creation payload: the image travels as a base64 data URL."""

    image: str = Field(min_length=1)

    @field_validator("image")
    @classmethod
    def _check_data_url(cls, value: str) -> str:
        if _DATA_URL.match(value) is None:
            raise ValueError("image must be a base64 data URL (data:image/...;base64,...)")
        return value

    def image_bytes(self) -> bytes:
        return decode_data_url(self.image)


class SendMessageRequest(BaseModel):
    content: str = Field(min_length=1, max_length=MAX_CHAT_MESSAGE_LENGTH)

    model_config = ConfigDict(str_strip_whitespace=True)
