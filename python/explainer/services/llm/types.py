"""Shared type definitions for the LLM adapter layer.

- Turn: Provider-agnostic conversation turn, optionally carrying an image
- LLMRequest: Request to LLM adapter
- LLMUsage: Token usage from provider response
- LLMResponse: Complete response from a non-streaming call
- LLMOperation: What a call is for, used to label log events
"""

from dataclasses import dataclass
from enum import Enum
from typing import Literal


class LLMOperation(str, Enum):
    VISION_ANALYZE = "vision_analyze"
    VISION_FALLBACK = "vision_fallback"
    CHAT = "chat"
    OTHER = "other"


@dataclass(frozen=True)
class Turn:
    """Provider-agnostic conversation turn.

    Attributes:
        role: One of "system", "user", or "assistant"
        content: The text content of the turn
        image_url: Image attached to a user turn (public URL or data URL)
        image_detail: Fidelity hint for the attached image ("high" | "low" | "auto")
    """

    role: Literal["system", "user", "assistant"]
    content: str
    image_url: str | None = None
    image_detail: Literal["high", "low", "auto"] = "auto"


@dataclass(frozen=True)
class LLMUsage:
    """Token usage from provider response. Providers may omit any field."""

    prompt_tokens: int | None
    completion_tokens: int | None
    total_tokens: int | None


@dataclass(frozen=True)
class LLMRequest:
    """Request to LLM adapter.

    Attributes:
        model_name: The model identifier (e.g., "gpt-4o")
        messages: List of Turn objects (system turn first if present)
        max_tokens: Maximum tokens in the completion
        temperature: Sampling temperature, None uses provider default
    """

    model_name: str
    messages: list[Turn]
    max_tokens: int
    temperature: float | None = None


@dataclass(frozen=True)
class LLMResponse:
    """Complete response from non-streaming call."""

    text: str
    usage: LLMUsage | None
    provider_request_id: str | None

    @property
    def total_tokens(self) -> int:
        if self.usage is None or self.usage.total_tokens is None:
            return 0
        return self.usage.total_tokens
