"""Pydantic schemas for request/response validation."""

from explainer.schemas.explanation import (
    ChatExchangeOut,
    CreateExplanationRequest,
    ExplanationListOut,
    ExplanationOptions,
    ExplanationOut,
    FavoriteOut,
    MessageListOut,
    MessageOut,
    SendMessageRequest,
)
from explainer.schemas.usage import MeOut, SignUploadOut, SignUploadRequest, UsageOut

__all__ = [
    "ChatExchangeOut",
    "CreateExplanationRequest",
    "ExplanationListOut",
    "ExplanationOptions",
    "ExplanationOut",
    "FavoriteOut",
    "MeOut",
    "MessageListOut",
    "MessageOut",
    "SendMessageRequest",
    "SignUploadOut",
    "SignUploadRequest",
    "UsageOut",
]
