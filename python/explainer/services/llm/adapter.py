"""Abstract base class for LLM adapters.

Rules for adapters:
- Async, sharing one httpx.AsyncClient for connection pooling
- No retries inside adapters
- No DB access
- No logging of request/response bodies
- Raw provider errors bubble up to the router for classification
"""

from abc import ABC, abstractmethod

import httpx

from explainer.services.llm.types import LLMRequest, LLMResponse


class LLMAdapter(ABC):
    """Provider-specific HTTP communication and Turn conversion."""

    provider_name: str = "unknown"

    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    @abstractmethod
    async def generate(
        self,
        req: LLMRequest,
        *,
        api_key: str,
        timeout_s: int,
    ) -> LLMResponse:
        """Non-streaming generation. Returns complete response.

        Raises:
            httpx.HTTPStatusError: On non-2xx HTTP response.
            httpx.TimeoutException: On request timeout.
            httpx.NetworkError: On network failure.
        """
        ...
