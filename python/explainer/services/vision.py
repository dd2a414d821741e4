"""Vision analysis: prompts, response parsing, caching and fallback.

VisionAnalyzer.analyze() is the only place the pipeline talks to the vision
model. It:
1. Looks up a cached result keyed by (image, prompt, mode, language)
2. On a miss, calls the provider at high image fidelity
3. If the provider rejects the request as malformed, retries exactly once at
   low fidelity with a smaller token budget and a plain prompt
4. Any other provider failure becomes AnalysisFailed
5. Writes full-fidelity results back to the cache (best-effort)

The reply parser is a pure function so it can be tested without a provider.
"""

import hashlib
import json
import math
import re
import time
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from typing import Any

from starlette.concurrency import run_in_threadpool

from explainer.errors import AnalysisFailed
from explainer.logging import get_logger
from explainer.services.analysis_cache import DEFAULT_TTL_S, AnalysisCache
from explainer.services.llm.errors import LLMError
from explainer.services.llm.provider import VisionModelProvider
from explainer.services.llm.types import Turn
from explainer.services.redact import hash_text, safe_kv

logger = get_logger(__name__)

CACHE_KEY_PREFIX = "vision:analysis:"

DEVELOPER_CATEGORIES = ("code", "error", "architecture", "documentation", "other")
STANDARD_CATEGORIES = ("education", "translation", "identification", "instructions", "other")

LANGUAGE_NAMES = {
    "en": "English",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "zh": "Chinese",
    "hi": "Hindi",
}

PRIMARY_MAX_TOKENS = 1500
PRIMARY_TEMPERATURE = 0.7
FALLBACK_MAX_TOKENS = 800
FALLBACK_PROMPT = "Briefly explain what you see in this image."
CHAT_MAX_TOKENS = 1000
CHAT_TEMPERATURE = 0.8
DEFAULT_CHAT_WINDOW = 10

DEFAULT_CONFIDENCE = 0.8
UNPARSED_CONFIDENCE = 0.7
FALLBACK_CONFIDENCE = 0.5

_FENCED_JSON = re.compile(r"```json\s*\n(.*?)\n\s*```", re.DOTALL)
_FENCED_ANY = re.compile(r"```\s*\n(.*?)\n\s*```", re.DOTALL)

BASE_SYSTEM_PROMPT = "You are an expert AI assistant that explains things clearly and accurately."

DEVELOPER_SYSTEM_PROMPT = """{base}

You are in DEVELOPER MODE. When analyzing images:
- If it's code: explain the syntax, logic, algorithms, time complexity
- If it's an error: provide debugging steps and solutions
- If it's architecture: explain system design, data flow, trade-offs
- If it's documentation: summarize key technical points
- Use technical terminology appropriate for experienced developers
- Include code examples when relevant

Always structure your response as JSON:
{{
  "explanation": "detailed technical explanation in {language}",
  "category": "code|error|architecture|documentation|other",
  "tags": ["relevant", "technical", "tags"],
  "confidence": 0.0-1.0
}}"""

STANDARD_SYSTEM_PROMPT = """{base}

When analyzing images, provide clear, simple explanations that anyone can understand.

- For educational content (homework, textbooks): break down step-by-step
- For foreign text: translate and explain cultural context
- For objects/plants/animals: identify and provide interesting facts
- For instructions/manuals: simplify into easy steps
- For diagrams: explain what it represents and how it works

Use simple language. Avoid jargon.

Always structure your response as JSON:
{{
  "explanation": "clear, simple explanation in {language}",
  "category": "education|translation|identification|instructions|other",
  "tags": ["relevant", "tags"],
  "confidence": 0.0-1.0
}}"""

CHAT_SYSTEM_PROMPT = """You are a {persona} helping someone understand an image.

Original explanation: {explanation}
Category: {category}

Continue the conversation by:
- Answering follow-up questions clearly
- Building on previous explanations
- Staying focused on the image and topic
- {depth}"""


# =============================================================================
# Value types
# =============================================================================


@dataclass(frozen=True)
class ImageRef:
    """What the model is shown and what identifies it for caching.

    The content hash, when known, identifies the image independently of the
    URL it happens to be stored under.
    """

    url: str
    content_hash: str | None = None

    @property
    def cache_identity(self) -> str:
        return self.content_hash or self.url


@dataclass(frozen=True)
class ParsedAnalysis:
    explanation: str
    category: str
    tags: list[str]
    confidence: float


@dataclass(frozen=True)
class AnalysisResult:
    explanation: str
    category: str
    tags: list[str]
    confidence: float
    tokens_used: int
    processing_time_ms: int
    model: str
    cached: bool = False
    degraded: bool = False

    def to_cache(self) -> dict[str, Any]:
        payload = asdict(self)
        for transient in ("processing_time_ms", "cached", "degraded"):
            payload.pop(transient)
        return payload

    @classmethod
    def from_cache(cls, payload: dict[str, Any], processing_time_ms: int) -> "AnalysisResult":
        return cls(
            explanation=payload["explanation"],
            category=payload["category"],
            tags=list(payload.get("tags") or []),
            confidence=float(payload["confidence"]),
            tokens_used=int(payload.get("tokens_used") or 0),
            processing_time_ms=processing_time_ms,
            model=payload.get("model") or "",
            cached=True,
        )


@dataclass(frozen=True)
class ChatTurn:
    role: str
    content: str


@dataclass(frozen=True)
class ChatContext:
    """The explanation a follow-up conversation is anchored to."""

    explanation: str
    category: str
    is_developer_mode: bool = False


@dataclass(frozen=True)
class ChatReply:
    response: str
    tokens_used: int
    model: str
    context_turns: list[ChatTurn] = field(default_factory=list)


# =============================================================================
# Pure helpers
# =============================================================================


def categories_for_mode(is_developer_mode: bool) -> tuple[str, ...]:
    return DEVELOPER_CATEGORIES if is_developer_mode else STANDARD_CATEGORIES


def build_cache_key(
    image: ImageRef, prompt: str | None, is_developer_mode: bool, language: str
) -> str:
    """Deterministic cache key over the four inputs that shape an analysis."""
    material = json.dumps(
        {
            "image": image.cache_identity,
            "prompt": prompt or "",
            "developer_mode": bool(is_developer_mode),
            "language": language,
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    return CACHE_KEY_PREFIX + hashlib.sha256(material.encode("utf-8")).hexdigest()


def build_system_prompt(is_developer_mode: bool, language: str) -> str:
    template = DEVELOPER_SYSTEM_PROMPT if is_developer_mode else STANDARD_SYSTEM_PROMPT
    return template.format(
        base=BASE_SYSTEM_PROMPT, language=LANGUAGE_NAMES.get(language, language)
    )


def build_user_prompt(prompt: str | None, is_developer_mode: bool) -> str:
    if prompt and prompt.strip():
        return f"{prompt.strip()}\n\nPlease analyze this image and respond in JSON format."
    if is_developer_mode:
        return (
            "Analyze this image from a technical/developer perspective "
            "and respond in JSON format."
        )
    return "What is this? Please explain it clearly and respond in JSON format."


def build_chat_system_prompt(context: ChatContext) -> str:
    if context.is_developer_mode:
        persona, depth = "technical developer", "Using appropriate technical depth"
    else:
        persona, depth = "helpful teacher", "Keeping language simple and accessible"
    return CHAT_SYSTEM_PROMPT.format(
        persona=persona,
        explanation=context.explanation,
        category=context.category,
        depth=depth,
    )


def _coerce_confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_CONFIDENCE
    if math.isnan(value):
        return DEFAULT_CONFIDENCE
    return max(0.0, min(1.0, float(value)))


def _coerce_tags(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    tags = []
    for item in value:
        if isinstance(item, (str, int, float)) and not isinstance(item, bool):
            tag = str(item).strip()
            if tag:
                tags.append(tag)
    return tags


def parse_analysis_response(
    text: str, allowed_categories: Sequence[str] | None = None
) -> ParsedAnalysis:
    """Parse a model reply into an analysis. Never raises.

    Looks for a ```json fenced block, then any fenced block, then treats the
    whole reply as JSON. Replies that still do not parse as a JSON object
    degrade to the raw text with category "other", no tags and confidence 0.7.
    """
    match = _FENCED_JSON.search(text) or _FENCED_ANY.search(text)
    candidate = match.group(1) if match else text.strip()

    try:
        data = json.loads(candidate)
    except (ValueError, TypeError, RecursionError):
        data = None

    if not isinstance(data, dict):
        return ParsedAnalysis(
            explanation=text, category="other", tags=[], confidence=UNPARSED_CONFIDENCE
        )

    explanation = data.get("explanation")
    if not isinstance(explanation, str) or not explanation.strip():
        explanation = text

    category = data.get("category")
    if not isinstance(category, str) or not category.strip():
        category = "other"
    category = category.strip().lower()
    if allowed_categories is not None and category not in allowed_categories:
        category = "other"

    return ParsedAnalysis(
        explanation=explanation,
        category=category,
        tags=_coerce_tags(data.get("tags")),
        confidence=_coerce_confidence(data.get("confidence")),
    )


# =============================================================================
# Analyzer
# =============================================================================


class VisionAnalyzer:
    """Cache-then-model analysis of images plus follow-up chat."""

    def __init__(
        self,
        provider: VisionModelProvider,
        cache: AnalysisCache | None = None,
        *,
        cache_ttl_s: int = DEFAULT_TTL_S,
        chat_window: int = DEFAULT_CHAT_WINDOW,
    ):
        self._provider = provider
        self._cache = cache
        self._cache_ttl_s = cache_ttl_s
        self.chat_window = chat_window

    async def analyze(
        self,
        image: ImageRef,
        prompt: str | None = None,
        *,
        is_developer_mode: bool = False,
        language: str = "en",
    ) -> AnalysisResult:
        """Analyze an image, serving repeats from the cache.

        Raises:
            AnalysisFailed: If the model call (and its single fallback) fails.
        """
        start = time.monotonic()
        key = build_cache_key(image, prompt, is_developer_mode, language)

        cached = await self._cache_get(key)
        if cached is not None:
            try:
                result = AnalysisResult.from_cache(cached, _elapsed_ms(start))
            except (KeyError, TypeError, ValueError):
                logger.warning("vision.cache.corrupt_entry", cache_key_hash=hash_text(key))
            else:
                logger.info("vision.cache.hit", cache_key_hash=hash_text(key))
                return result

        try:
            reply = await self._provider.analyze(
                image.url,
                build_system_prompt(is_developer_mode, language),
                build_user_prompt(prompt, is_developer_mode),
                detail="high",
                max_tokens=PRIMARY_MAX_TOKENS,
                temperature=PRIMARY_TEMPERATURE,
            )
        except LLMError as e:
            if e.is_bad_request:
                logger.warning(
                    "vision.analyze.fallback",
                    **safe_kv(error_class=e.error_class.value, status_code=e.status_code),
                )
                return await self._fallback(image, start)
            logger.error("vision.analyze.failed", **safe_kv(error_class=e.error_class.value))
            raise AnalysisFailed() from e

        if not reply.text.strip():
            logger.error("vision.analyze.empty_response", model_name=reply.model)
            raise AnalysisFailed()

        parsed = parse_analysis_response(reply.text, categories_for_mode(is_developer_mode))
        result = AnalysisResult(
            explanation=parsed.explanation,
            category=parsed.category,
            tags=parsed.tags,
            confidence=parsed.confidence,
            tokens_used=reply.tokens_used,
            processing_time_ms=_elapsed_ms(start),
            model=reply.model,
        )
        await self._cache_set(key, result)

        logger.info(
            "vision.analyze.finished",
            **safe_kv(
                category=result.category,
                tokens_used=result.tokens_used,
                processing_time_ms=result.processing_time_ms,
                prompt_chars=len(prompt or ""),
            ),
        )
        return result

    async def _fallback(self, image: ImageRef, start: float) -> AnalysisResult:
        """Single retry at low fidelity; its result is never cached."""
        try:
            reply = await self._provider.analyze(
                image.url,
                "",
                FALLBACK_PROMPT,
                detail="low",
                max_tokens=FALLBACK_MAX_TOKENS,
                temperature=PRIMARY_TEMPERATURE,
                fallback=True,
            )
        except LLMError as e:
            logger.error(
                "vision.analyze.fallback_failed", **safe_kv(error_class=e.error_class.value)
            )
            raise AnalysisFailed() from e

        if not reply.text.strip():
            raise AnalysisFailed()

        return AnalysisResult(
            explanation=reply.text.strip(),
            category="other",
            tags=[],
            confidence=FALLBACK_CONFIDENCE,
            tokens_used=reply.tokens_used,
            processing_time_ms=_elapsed_ms(start),
            model=reply.model,
            degraded=True,
        )

    async def chat(
        self,
        history: Sequence[ChatTurn],
        message: str,
        context: ChatContext,
    ) -> ChatReply:
        """Answer a follow-up question about an explanation.

        Only the last `chat_window` history turns are sent to the model. The
        reply is returned as raw text.

        Raises:
            AnalysisFailed: On provider failure or an empty reply.
        """
        window = list(history)[-self.chat_window :] if self.chat_window > 0 else []
        turns = [Turn(role="system", content=build_chat_system_prompt(context))]
        turns.extend(Turn(role=t.role, content=t.content) for t in window)
        turns.append(Turn(role="user", content=message))

        try:
            reply = await self._provider.chat(
                turns, max_tokens=CHAT_MAX_TOKENS, temperature=CHAT_TEMPERATURE
            )
        except LLMError as e:
            logger.error("vision.chat.failed", **safe_kv(error_class=e.error_class.value))
            raise AnalysisFailed() from e

        if not reply.text.strip():
            logger.error("vision.chat.empty_response", model_name=reply.model)
            raise AnalysisFailed("Empty chat response, please try again")

        return ChatReply(
            response=reply.text,
            tokens_used=reply.tokens_used,
            model=reply.model,
            context_turns=window,
        )

    async def _cache_get(self, key: str) -> dict[str, Any] | None:
        if self._cache is None:
            return None
        try:
            return await run_in_threadpool(self._cache.get, key)
        except Exception as e:
            logger.warning("vision.cache.read_failed", error=type(e).__name__)
            return None

    async def _cache_set(self, key: str, result: AnalysisResult) -> None:
        if self._cache is None:
            return
        try:
            await run_in_threadpool(self._cache.set, key, result.to_cache(), self._cache_ttl_s)
        except Exception as e:
            logger.warning("vision.cache.write_failed", error=type(e).__name__)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
