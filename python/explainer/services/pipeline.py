"""Explanation creation pipeline.

create() runs these steps in order:
1. Validate and normalize the image (no side effects on failure)
2. Upload main image + thumbnail to the object store
3. Dedup by (user, content hash): an existing live explanation is returned
   unchanged. No quota check, no model call, no view counted.
4. UsageGate.check_and_reserve: over-limit users stop here, before the model
5. VisionAnalyzer.analyze: a failure here costs the user nothing
6. Persist the explanation
7. UsageGate.commit: the only step that consumes quota
8. Best-effort follow-ups (usage log, creation listeners). Their failures
   are logged and never unwind the committed explanation.

Objects uploaded in step 2 but not referenced by a persisted row (dedup
short-circuit, quota rejection, analysis failure, lost insert race) are handed
to the storage cleanup, which runs in the threadpool with the request id.

DB work is synchronous SQLAlchemy run via run_in_threadpool; no transaction
is held across the model call.
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from explainer.db.models import UsageAction
from explainer.errors import UploadFailed
from explainer.logging import get_logger, get_request_id, set_explanation_context
from explainer.schemas.explanation import (
    DEFAULT_PAGE_SIZE,
    ExplanationListOut,
    ExplanationOut,
    MessageListOut,
)
from explainer.schemas.usage import UsageOut
from explainer.services import chat, explanations, image_processing
from explainer.services.explanations import NewExplanation, explanation_to_out
from explainer.services.usage import UsageGate, record_usage
from explainer.services.vision import ImageRef, VisionAnalyzer
from explainer.storage.client import ObjectStore, StorageError
from explainer.storage.paths import build_image_paths

logger = get_logger(__name__)

# Called as cleanup(urls, request_id=...)
StorageCleanupFn = Callable[..., None]


class CreationListener(Protocol):
    """Downstream consumer of new explanations (analytics, notifications)."""

    def explanation_created(self, user_id: UUID, explanation: ExplanationOut) -> None: ...


@dataclass(frozen=True)
class CreationResult:
    explanation: ExplanationOut
    created: bool


class ExplanationPipeline:
    """Composes image processing, storage, dedup, quota and analysis."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        store: ObjectStore,
        analyzer: VisionAnalyzer,
        usage_gate: UsageGate,
        *,
        cleanup: StorageCleanupFn | None = None,
        listeners: Sequence[CreationListener] = (),
        max_page_size: int = explanations.MAX_PAGE_SIZE,
    ):
        self._session_factory = session_factory
        self._store = store
        self.analyzer = analyzer
        self.usage_gate = usage_gate
        self._cleanup = cleanup
        self._listeners = list(listeners)
        self._max_page_size = max_page_size

    # =========================================================================
    # Creation
    # =========================================================================

    async def create(
        self,
        user_id: UUID,
        image_bytes: bytes,
        prompt: str | None = None,
        *,
        is_developer_mode: bool = False,
        language: str = "en",
    ) -> CreationResult:
        """Create an explanation for a captured image, or return its duplicate.

        Raises:
            InvalidImage / ImageConstraintViolation: Bad input. Nothing was stored.
            UploadFailed: Object store rejected the upload. No record, no quota.
            QuotaExceeded: Daily limit reached. The model was not called.
            AnalysisFailed: The model failed. Quota was not consumed.
        """
        processed = await run_in_threadpool(image_processing.process, image_bytes)
        content_hash = processed.content_hash

        uploaded = await self._upload(user_id, processed)
        # URLs held by the row returned to the caller; never discarded
        referenced: set[str] = set()

        db = self._session_factory()
        try:
            duplicate = await run_in_threadpool(
                explanations.find_duplicate, db, user_id, content_hash
            )
            if duplicate is not None:
                logger.info("explanation.dedup_hit", explanation_id=str(duplicate.id))
                referenced.update((duplicate.image_url, duplicate.thumbnail_url))
                return CreationResult(explanation_to_out(duplicate), created=False)

            await run_in_threadpool(self.usage_gate.check_and_reserve, db, user_id)

            main_url, thumbnail_url = uploaded
            result = await self.analyzer.analyze(
                ImageRef(url=main_url, content_hash=content_hash),
                prompt,
                is_developer_mode=is_developer_mode,
                language=language,
            )

            explanation, created = await run_in_threadpool(
                explanations.create_explanation,
                db,
                user_id,
                NewExplanation(
                    image_url=main_url,
                    thumbnail_url=thumbnail_url,
                    image_hash=content_hash,
                    explanation_text=result.explanation,
                    model_used=result.model,
                    processing_time_ms=result.processing_time_ms,
                    confidence_score=result.confidence,
                    category=result.category,
                    tags=result.tags,
                    prompt=prompt,
                    language=language,
                    is_developer_mode=is_developer_mode,
                ),
            )
            referenced.update((explanation.image_url, explanation.thumbnail_url))
            if not created:
                return CreationResult(explanation_to_out(explanation), created=False)

            set_explanation_context(str(explanation.id))

            await run_in_threadpool(self.usage_gate.commit, db, user_id)
            out = explanation_to_out(explanation)

            logger.info(
                "explanation.created",
                category=result.category,
                cached=result.cached,
                degraded=result.degraded,
                processing_time_ms=result.processing_time_ms,
            )

            await self._after_create(
                db, user_id, out, tokens_used=0 if result.cached else result.tokens_used
            )
            return CreationResult(out, created=True)
        finally:
            db.close()
            await self._discard([url for url in uploaded if url not in referenced])

    async def _upload(self, user_id: UUID, processed) -> tuple[str, str]:
        paths = build_image_paths(user_id, processed.content_hash)
        uploaded: list[str] = []
        try:
            for asset, path in (
                (processed.main, paths.main),
                (processed.thumbnail, paths.thumbnail),
            ):
                url = await run_in_threadpool(
                    self._store.upload, asset.data, path, asset.content_type
                )
                uploaded.append(url)
        except StorageError as e:
            logger.error("storage.upload.failed", code=e.code, error=e.message)
            await self._discard(uploaded)
            raise UploadFailed() from e
        return uploaded[0], uploaded[1]

    async def _discard(self, urls: list[str]) -> None:
        if not urls or self._cleanup is None:
            return
        try:
            await run_in_threadpool(self._cleanup, urls, request_id=get_request_id())
        except Exception as e:
            logger.warning("storage.cleanup_schedule_failed", error=str(e))

    async def _after_create(
        self, db: Session, user_id: UUID, out: ExplanationOut, *, tokens_used: int
    ) -> None:
        try:
            await run_in_threadpool(
                record_usage, db, user_id, UsageAction.explanation, out.id, tokens_used
            )
        except Exception as e:
            logger.warning("usage_log.write_failed", action="explanation", error=str(e))

        for listener in self._listeners:
            try:
                listener.explanation_created(user_id, out)
            except Exception as e:
                logger.warning(
                    "explanation.listener_failed",
                    listener=type(listener).__name__,
                    error=str(e),
                )

    # =========================================================================
    # Reads and mutations
    # =========================================================================

    async def _run(self, fn, *args, **kwargs):
        db = self._session_factory()
        try:
            return await run_in_threadpool(fn, db, *args, **kwargs)
        finally:
            db.close()

    async def list_explanations(
        self,
        user_id: UUID,
        *,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        category: str | None = None,
        search: str | None = None,
        favorites_only: bool = False,
    ) -> ExplanationListOut:
        return await self._run(
            explanations.list_explanations,
            user_id,
            page=page,
            limit=limit,
            category=category,
            search=search,
            favorites_only=favorites_only,
            max_page_size=self._max_page_size,
        )

    async def get(self, user_id: UUID, explanation_id: UUID) -> ExplanationOut:
        return await self._run(explanations.get_explanation, user_id, explanation_id)

    async def toggle_favorite(self, user_id: UUID, explanation_id: UUID) -> bool:
        return await self._run(explanations.toggle_favorite, user_id, explanation_id)

    async def delete(self, user_id: UUID, explanation_id: UUID) -> None:
        """Soft-delete, then schedule removal of the two storage objects."""
        urls = await self._run(explanations.soft_delete, user_id, explanation_id)
        await self._discard(urls)

    async def usage(self, user_id: UUID) -> UsageOut:
        return await self._run(self.usage_gate.get_summary, user_id)

    # =========================================================================
    # Chat
    # =========================================================================

    async def send_message(self, user_id: UUID, explanation_id: UUID, content: str):
        return await chat.send_message(
            self._session_factory, self.analyzer, user_id, explanation_id, content
        )

    async def get_history(self, user_id: UUID, explanation_id: UUID) -> MessageListOut:
        return await self._run(chat.get_history, user_id, explanation_id)

    async def clear_history(self, user_id: UUID, explanation_id: UUID) -> int:
        return await self._run(chat.clear_history, user_id, explanation_id)
