"""LLM error classification and normalization.

Provider failures are classified once, in the router, into a small set of
normalized classes:
- INVALID_KEY: Authentication failure (401/403)
- RATE_LIMIT: Rate limit exceeded (429)
- INVALID_REQUEST: Provider rejected the request as malformed (400)
- CONTEXT_TOO_LARGE: Context length exceeded
- TIMEOUT: Request timed out
- PROVIDER_DOWN: Provider unavailable (5xx, network error)
- MODEL_NOT_AVAILABLE: Model not found or disabled

INVALID_REQUEST is the caller-side class: it is the only one for which the
vision analyzer retries at reduced fidelity.
"""

from enum import Enum

from explainer.logging import get_logger

logger = get_logger(__name__)


class LLMErrorClass(str, Enum):
    INVALID_KEY = "E_LLM_INVALID_KEY"
    RATE_LIMIT = "E_LLM_RATE_LIMIT"
    INVALID_REQUEST = "E_LLM_INVALID_REQUEST"
    CONTEXT_TOO_LARGE = "E_LLM_CONTEXT_TOO_LARGE"
    TIMEOUT = "E_LLM_TIMEOUT"
    PROVIDER_DOWN = "E_LLM_PROVIDER_DOWN"
    MODEL_NOT_AVAILABLE = "E_MODEL_NOT_AVAILABLE"


class LLMError(Exception):
    """Exception for LLM-related errors.

    Attributes:
        error_class: The normalized error classification
        message: Human-readable error message
        provider: The provider that returned the error (if known)
        status_code: Provider HTTP status (if any)
    """

    def __init__(
        self,
        error_class: LLMErrorClass,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
    ):
        self.error_class = error_class
        self.message = message
        self.provider = provider
        self.status_code = status_code
        super().__init__(message)

    @property
    def is_bad_request(self) -> bool:
        return self.error_class == LLMErrorClass.INVALID_REQUEST


def classify_provider_error(
    provider: str,
    status_code: int | None,
    json_body: dict | None,
    exception: Exception | None,
) -> LLMErrorClass:
    """Classify a provider error into a normalized error class."""
    if exception is not None:
        exception_type = type(exception).__name__
        if "Timeout" in exception_type or "timeout" in str(exception).lower():
            return LLMErrorClass.TIMEOUT
        if "Network" in exception_type or "Connection" in exception_type:
            return LLMErrorClass.PROVIDER_DOWN

    if status_code is None:
        return LLMErrorClass.PROVIDER_DOWN

    if provider == "openai":
        return _classify_openai_error(status_code, json_body)

    logger.warning("unknown_provider_for_error_classification", provider=provider)
    return LLMErrorClass.PROVIDER_DOWN


def _classify_openai_error(status_code: int, json_body: dict | None) -> LLMErrorClass:
    """Classify OpenAI errors.

    - 401 or 403 → INVALID_KEY
    - 429 → RATE_LIMIT
    - 404 → MODEL_NOT_AVAILABLE
    - 5xx → PROVIDER_DOWN
    - 400 + context_length_exceeded → CONTEXT_TOO_LARGE
    - 400 + model not found → MODEL_NOT_AVAILABLE
    - any other 400/422 → INVALID_REQUEST
    """
    if status_code in (401, 403):
        return LLMErrorClass.INVALID_KEY

    if status_code == 429:
        return LLMErrorClass.RATE_LIMIT

    if status_code == 404:
        return LLMErrorClass.MODEL_NOT_AVAILABLE

    if status_code >= 500:
        return LLMErrorClass.PROVIDER_DOWN

    if status_code in (400, 422):
        error = (json_body or {}).get("error") or {}
        if not isinstance(error, dict):
            error = {}
        error_code = error.get("code") or ""
        error_message = (error.get("message") or "").lower()

        if error_code == "context_length_exceeded" or "maximum context length" in error_message:
            return LLMErrorClass.CONTEXT_TOO_LARGE
        if "model" in error_message and "not found" in error_message:
            return LLMErrorClass.MODEL_NOT_AVAILABLE
        return LLMErrorClass.INVALID_REQUEST

    return LLMErrorClass.PROVIDER_DOWN
