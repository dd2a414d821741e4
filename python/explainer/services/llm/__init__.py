"""LLM adapter layer for provider-agnostic model calls.

Usage:
    from explainer.services.llm import LLMRouter, RouterVisionProvider

    router = LLMRouter(httpx_client)
    provider = RouterVisionProvider(router, api_key="sk-...", vision_model="gpt-4o")
    reply = await provider.analyze(image_url, system_prompt, user_prompt, detail="high")

- Adapters are async using httpx.AsyncClient
- No retries inside adapters; the vision analyzer owns its single fallback
- Raw provider errors are normalized by the router into LLMError
"""

from explainer.services.llm.adapter import LLMAdapter
from explainer.services.llm.errors import LLMError, LLMErrorClass, classify_provider_error
from explainer.services.llm.provider import ProviderReply, RouterVisionProvider, VisionModelProvider
from explainer.services.llm.router import LLMRouter
from explainer.services.llm.types import LLMOperation, LLMRequest, LLMResponse, LLMUsage, Turn

__all__ = [
    "Turn",
    "LLMRequest",
    "LLMResponse",
    "LLMUsage",
    "LLMOperation",
    "LLMAdapter",
    "LLMRouter",
    "LLMError",
    "LLMErrorClass",
    "classify_provider_error",
    "ProviderReply",
    "VisionModelProvider",
    "RouterVisionProvider",
]
