"""OpenAI chat completions adapter.

- Endpoint: POST https://api.openai.com/v1/chat/completions
- Headers: Authorization: Bearer <key>, Content-Type: application/json

Turns carrying an image are sent as multi-part content:
{
  "role": "user",
  "content": [
    {"type": "text", "text": "..."},
    {"type": "image_url", "image_url": {"url": "...", "detail": "high"}}
  ]
}

Response extraction:
- text = choices[0].message.content
- usage = direct mapping
- provider_request_id = response header x-request-id or body id
"""

from typing import Any

import httpx

from explainer.services.llm.adapter import LLMAdapter
from explainer.services.llm.errors import LLMError, LLMErrorClass
from explainer.services.llm.types import LLMRequest, LLMResponse, LLMUsage, Turn

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"


class OpenAIAdapter(LLMAdapter):
    """OpenAI API adapter for (vision) chat completions."""

    provider_name = "openai"

    async def generate(
        self,
        req: LLMRequest,
        *,
        api_key: str,
        timeout_s: int,
    ) -> LLMResponse:
        response = await self._client.post(
            OPENAI_CHAT_URL,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            json=self._build_request_body(req),
            timeout=httpx.Timeout(timeout_s, connect=10.0),
        )
        response.raise_for_status()
        return self._parse_response(response.json(), response.headers)

    def _build_request_body(self, req: LLMRequest) -> dict:
        body: dict = {
            "model": req.model_name,
            "messages": [self._turn_to_message(turn) for turn in req.messages],
            "max_tokens": req.max_tokens,
        }
        if req.temperature is not None:
            body["temperature"] = req.temperature
        return body

    def _turn_to_message(self, turn: Turn) -> dict[str, Any]:
        if turn.image_url is None:
            return {"role": turn.role, "content": turn.content}
        return {
            "role": turn.role,
            "content": [
                {"type": "text", "text": turn.content},
                {
                    "type": "image_url",
                    "image_url": {"url": turn.image_url, "detail": turn.image_detail},
                },
            ],
        }

    def _parse_response(self, data: dict, headers: httpx.Headers) -> LLMResponse:
        choices = data.get("choices") or []
        if not choices:
            raise LLMError(
                LLMErrorClass.PROVIDER_DOWN,
                "OpenAI response missing choices",
                provider=self.provider_name,
            )

        text = (choices[0].get("message") or {}).get("content") or ""

        usage = None
        usage_data = data.get("usage")
        if usage_data:
            usage = LLMUsage(
                prompt_tokens=usage_data.get("prompt_tokens"),
                completion_tokens=usage_data.get("completion_tokens"),
                total_tokens=usage_data.get("total_tokens"),
            )

        return LLMResponse(
            text=text,
            usage=usage,
            provider_request_id=headers.get("x-request-id") or data.get("id"),
        )
