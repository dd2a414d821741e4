"""LLM router for adapter selection and error normalization.

- Resolves the adapter for a provider name, honoring feature flags
- Wraps adapter calls with error normalization (one place, not per adapter)
- Emits llm.request.started / llm.request.finished / llm.request.failed
  events through safe_kv() so prompts and keys never reach the logs

Error handling:
- Provider 401/403 → E_LLM_INVALID_KEY
- Provider 429 → E_LLM_RATE_LIMIT
- Provider 400 → E_LLM_INVALID_REQUEST (or CONTEXT_TOO_LARGE)
- Timeout → E_LLM_TIMEOUT
- Other → E_LLM_PROVIDER_DOWN
"""

import time

import httpx

from explainer.logging import get_logger
from explainer.services.llm.adapter import LLMAdapter
from explainer.services.llm.errors import LLMError, LLMErrorClass, classify_provider_error
from explainer.services.llm.openai_adapter import OpenAIAdapter
from explainer.services.llm.types import LLMOperation, LLMRequest, LLMResponse
from explainer.services.redact import safe_kv

logger = get_logger(__name__)

DEFAULT_TIMEOUT_S = 30


class LLMRouter:
    """Routes LLM requests to provider adapters and normalizes failures."""

    def __init__(self, client: httpx.AsyncClient, *, enable_openai: bool = True):
        """Initialize router with shared HTTP client and feature flags."""
        self._feature_flags = {"openai": enable_openai}
        self._adapters: dict[str, LLMAdapter] = {"openai": OpenAIAdapter(client)}

    def resolve_adapter(self, provider: str) -> LLMAdapter:
        """Get adapter for provider, checking feature flags.

        Raises:
            LLMError: If provider is unknown or disabled.
        """
        if provider not in self._adapters:
            raise LLMError(
                LLMErrorClass.MODEL_NOT_AVAILABLE,
                f"Unknown provider: {provider}",
                provider=provider,
            )
        if not self._feature_flags.get(provider, False):
            raise LLMError(
                LLMErrorClass.MODEL_NOT_AVAILABLE,
                f"Provider {provider} is disabled",
                provider=provider,
            )
        return self._adapters[provider]

    def is_provider_available(self, provider: str) -> bool:
        return provider in self._adapters and self._feature_flags.get(provider, False)

    async def generate(
        self,
        provider: str,
        req: LLMRequest,
        api_key: str,
        *,
        timeout_s: int = DEFAULT_TIMEOUT_S,
        operation: LLMOperation = LLMOperation.OTHER,
    ) -> LLMResponse:
        """Non-streaming generation with error normalization.

        Raises:
            LLMError: With normalized error class on failure.
        """
        adapter = self.resolve_adapter(provider)
        base = {
            "provider": provider,
            "model_name": req.model_name,
            "llm_operation": operation.value,
        }

        logger.info(
            "llm.request.started",
            **safe_kv(
                **base,
                message_chars=sum(len(m.content) for m in req.messages),
                num_messages=len(req.messages),
                has_image=any(m.image_url for m in req.messages),
                max_tokens=req.max_tokens,
            ),
        )

        start = time.monotonic()

        def failed(error_class: LLMErrorClass, **extra) -> None:
            logger.error(
                "llm.request.failed",
                **safe_kv(
                    **base,
                    outcome="error",
                    error_class=error_class.value,
                    latency_ms=int((time.monotonic() - start) * 1000),
                    **extra,
                ),
            )

        try:
            response = await adapter.generate(req, api_key=api_key, timeout_s=timeout_s)
        except httpx.TimeoutException as e:
            failed(LLMErrorClass.TIMEOUT)
            raise LLMError(LLMErrorClass.TIMEOUT, "Request timed out", provider=provider) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            error_class = classify_provider_error(
                provider, status, self._safe_parse_json(e.response), None
            )
            failed(
                error_class,
                status_code=status,
                provider_request_id=e.response.headers.get("x-request-id"),
            )
            raise LLMError(
                error_class,
                f"Provider returned HTTP {status}",
                provider=provider,
                status_code=status,
            ) from e
        except httpx.NetworkError as e:
            failed(LLMErrorClass.PROVIDER_DOWN)
            raise LLMError(LLMErrorClass.PROVIDER_DOWN, "Network error", provider=provider) from e
        except LLMError as e:
            failed(e.error_class)
            raise
        except Exception as e:
            failed(LLMErrorClass.PROVIDER_DOWN)
            raise LLMError(
                LLMErrorClass.PROVIDER_DOWN,
                f"Unexpected error: {type(e).__name__}",
                provider=provider,
            ) from e

        usage = response.usage
        logger.info(
            "llm.request.finished",
            **safe_kv(
                **base,
                outcome="success",
                latency_ms=int((time.monotonic() - start) * 1000),
                tokens_input=usage.prompt_tokens if usage else None,
                tokens_output=usage.completion_tokens if usage else None,
                tokens_total=usage.total_tokens if usage else None,
                provider_request_id=response.provider_request_id,
            ),
        )
        return response

    @staticmethod
    def _safe_parse_json(response: httpx.Response) -> dict | None:
        try:
            data = response.json()
        except ValueError:
            return None
        return data if isinstance(data, dict) else None
