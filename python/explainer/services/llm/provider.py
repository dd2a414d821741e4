"""Vision model provider boundary.

The vision analyzer only needs two capabilities from a model provider:
- analyze(image, system_prompt, user_prompt) -> text
- chat(messages) -> text

Anything exposing this shape can back the analyzer; tests use a scripted fake.
"""

from dataclasses import dataclass
from typing import Literal, Protocol

from explainer.services.llm.router import DEFAULT_TIMEOUT_S, LLMRouter
from explainer.services.llm.types import LLMOperation, LLMRequest, Turn

ImageDetail = Literal["high", "low", "auto"]


@dataclass(frozen=True)
class ProviderReply:
    """Model output plus the accounting the pipeline records."""

    text: str
    tokens_used: int
    model: str


class VisionModelProvider(Protocol):
    async def analyze(
        self,
        image_url: str,
        system_prompt: str,
        user_prompt: str,
        *,
        detail: ImageDetail = "high",
        max_tokens: int = 1500,
        temperature: float | None = None,
        fallback: bool = False,
    ) -> ProviderReply: ...

    async def chat(
        self,
        messages: list[Turn],
        *,
        max_tokens: int = 1000,
        temperature: float | None = None,
    ) -> ProviderReply: ...


class RouterVisionProvider:
    """VisionModelProvider backed by the LLM router.

    Raises LLMError (normalized) on any provider failure.
    """

    def __init__(
        self,
        router: LLMRouter,
        api_key: str,
        *,
        provider: str = "openai",
        vision_model: str = "gpt-4o",
        chat_model: str = "gpt-4o-mini",
        timeout_s: int = DEFAULT_TIMEOUT_S,
    ):
        self._router = router
        self._api_key = api_key
        self._provider = provider
        self.vision_model = vision_model
        self.chat_model = chat_model
        self._timeout_s = timeout_s

    async def analyze(
        self,
        image_url: str,
        system_prompt: str,
        user_prompt: str,
        *,
        detail: ImageDetail = "high",
        max_tokens: int = 1500,
        temperature: float | None = None,
        fallback: bool = False,
    ) -> ProviderReply:
        messages = [Turn(role="system", content=system_prompt)] if system_prompt else []
        messages.append(
            Turn(role="user", content=user_prompt, image_url=image_url, image_detail=detail)
        )
        req = LLMRequest(
            model_name=self.vision_model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        operation = LLMOperation.VISION_FALLBACK if fallback else LLMOperation.VISION_ANALYZE
        response = await self._router.generate(
            self._provider, req, self._api_key, timeout_s=self._timeout_s, operation=operation
        )
        return ProviderReply(
            text=response.text, tokens_used=response.total_tokens, model=self.vision_model
        )

    async def chat(
        self,
        messages: list[Turn],
        *,
        max_tokens: int = 1000,
        temperature: float | None = None,
    ) -> ProviderReply:
        req = LLMRequest(
            model_name=self.chat_model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        response = await self._router.generate(
            self._provider,
            req,
            self._api_key,
            timeout_s=self._timeout_s,
            operation=LLMOperation.CHAT,
        )
        return ProviderReply(
            text=response.text, tokens_used=response.total_tokens, model=self.chat_model
        )
