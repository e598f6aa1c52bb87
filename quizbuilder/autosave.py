"""Debounced persistence and publish transitions for one editing session.

The coordinator subscribes to the store's change signal and owns the save
timer and state machine::

    IDLE -> DIRTY -> SAVING -> IDLE
                            -> ERROR -> DIRTY ...

At most one write is in flight. A save captures the document when it is
requested; edits made while it runs leave the session DIRTY for the next
cycle. Writes are never cancelled once started.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Literal
from urllib.parse import urlparse

from .builder_store import BuilderStore
from .config import (
    AUTOSAVE_DEBOUNCE_SECONDS,
    IMMEDIATE_SAVE_HOSTS,
    NEW_QUIZ_DEBOUNCE_SECONDS,
)
from .converters import apply_document_to_quiz
from .document_helpers import extract_cover_image, has_meaningful_content
from .models.document import VisualBuilderDocument
from .models.legacy import LegacyQuiz
from .plan_limits import PlanLimits, limit_reached
from .storage import BuilderError, NotFoundError, QuizStorage

logger = logging.getLogger(__name__)


class SaveState(str, Enum):
    IDLE = "idle"
    DIRTY = "dirty"
    SAVING = "saving"
    ERROR = "error"


class SaveResult(str, Enum):
    SAVED = "saved"
    SKIPPED = "skipped"
    FAILED = "failed"
    LIMIT_REACHED = "limit-reached"


@dataclass(frozen=True)
class PublishResult:
    status: Literal["ok", "limit-reached"]
    limit: int | None = None
    # "drafts" or "published" when status is "limit-reached"
    reason: str | None = None


class SaveFailedError(BuilderError):
    """A save that the caller depends on did not reach storage."""


def is_immediate_save_host(url: str, hosts: tuple[str, ...]) -> bool:
    host = (urlparse(url).hostname or "").lower()
    return any(host == h or host.endswith("." + h) for h in hosts)


class AutosaveCoordinator:
    def __init__(
        self,
        store: BuilderStore,
        storage: QuizStorage,
        plan_limits: PlanLimits,
        quiz: LegacyQuiz,
        owner_id: str,
        *,
        is_new: bool = False,
        needs_persist: bool = False,
        debounce_seconds: float = AUTOSAVE_DEBOUNCE_SECONDS,
        new_quiz_debounce_seconds: float = NEW_QUIZ_DEBOUNCE_SECONDS,
        immediate_save_hosts: tuple[str, ...] = IMMEDIATE_SAVE_HOSTS,
    ) -> None:
        self.store = store
        self.storage = storage
        self.plan_limits = plan_limits
        self.quiz_id = quiz.id
        self.owner_id = owner_id
        self.is_new = is_new
        self.debounce_seconds = debounce_seconds
        self.new_quiz_debounce_seconds = new_quiz_debounce_seconds
        self.immediate_save_hosts = immediate_save_hosts

        self.state = SaveState.IDLE
        self.last_error: Exception | None = None
        self.last_result: SaveResult | None = None
        self.last_saved_at: datetime | None = None
        self.draft_limit: int | None = None
        self.write_count = 0

        self._loop = asyncio.get_running_loop()
        self._base_quiz = quiz
        self._saved_snapshot: str | None = None
        self._saved_document: VisualBuilderDocument | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._in_flight: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()
        self._closed = False
        self._cover = extract_cover_image(store.document)
        self._unsubscribe = store.subscribe(self._on_change)

        if not is_new and not needs_persist:
            self._saved_document = store.export_document()
            self._saved_snapshot = self._saved_document.snapshot()
        elif needs_persist:
            # Converted or migrated on load; write it back on the next cycle.
            self.state = SaveState.DIRTY
            self._reset_timer()

    @property
    def effective_debounce(self) -> float:
        if self.is_new:
            return min(self.debounce_seconds, self.new_quiz_debounce_seconds)
        return self.debounce_seconds

    @property
    def is_published(self) -> bool:
        return self._base_quiz.is_published

    @property
    def has_pending_timer(self) -> bool:
        return self._timer is not None

    # -- Triggers --------------------------------------------------------
    def _on_change(self, operation: str) -> None:
        if self._closed:
            return
        if self.state is not SaveState.SAVING:
            self.state = SaveState.DIRTY

        cover = extract_cover_image(self.store.document)
        if cover != self._cover:
            self._cover = cover
            if cover and is_immediate_save_host(cover, self.immediate_save_hosts):
                logger.info("Cover image changed for quiz %s; saving now", self.quiz_id)
                self._cancel_timer()
                self._schedule_save("cover-image")
                return
        self._reset_timer()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _reset_timer(self) -> None:
        self._cancel_timer()
        self._timer = self._loop.call_later(self.effective_debounce, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self._schedule_save("debounce")

    def _schedule_save(
        self, reason: str, document: VisualBuilderDocument | None = None
    ) -> asyncio.Task:
        task = self._loop.create_task(self.save(reason, document))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # -- Saving ----------------------------------------------------------
    async def force_save(self) -> SaveResult:
        """Save now, bypassing the debounce. Await this for a durable save."""
        self._cancel_timer()
        return await self.save("forced")

    async def save(
        self, reason: str = "manual", document: VisualBuilderDocument | None = None
    ) -> SaveResult:
        if document is None:
            document = self.store.export_document()

        while self._in_flight is not None and not self._in_flight.done():
            await asyncio.shield(self._in_flight)

        task = self._loop.create_task(self._write(reason, document))
        self._in_flight = task
        task.add_done_callback(self._clear_in_flight)
        return await asyncio.shield(task)

    def _clear_in_flight(self, task: asyncio.Task) -> None:
        if self._in_flight is task:
            self._in_flight = None

    def _settle(self) -> None:
        if self._closed:
            self.state = SaveState.IDLE
        elif self.store.snapshot() != self._saved_snapshot:
            self.state = SaveState.DIRTY
        else:
            self.state = SaveState.IDLE

    async def _write(self, reason: str, document: VisualBuilderDocument) -> SaveResult:
        snapshot = document.snapshot()
        if snapshot == self._saved_snapshot:
            logger.debug("Skipped %s save of quiz %s: no changes", reason, self.quiz_id)
            self._settle()
            self.last_result = SaveResult.SKIPPED
            return SaveResult.SKIPPED
        if not has_meaningful_content(document):
            logger.debug("Skipped %s save of quiz %s: nothing to save", reason, self.quiz_id)
            self.last_result = SaveResult.SKIPPED
            return SaveResult.SKIPPED

        self.state = SaveState.SAVING
        try:
            if self.is_new:
                limits = await self.plan_limits.limits_for(self.owner_id)
                drafts = await self.plan_limits.get_draft_count(self.owner_id)
                if limit_reached(drafts, limits.max_drafts):
                    logger.info(
                        "Draft limit reached for %s (%d/%s); not creating quiz %s",
                        self.owner_id,
                        drafts,
                        limits.max_drafts,
                        self.quiz_id,
                    )
                    # Remember the payload so it is not retried until it changes
                    self._saved_snapshot = snapshot
                    self.draft_limit = limits.max_drafts
                    self.state = SaveState.ERROR
                    self.last_result = SaveResult.LIMIT_REACHED
                    return SaveResult.LIMIT_REACHED

            quiz = apply_document_to_quiz(self._base_quiz, document, self.owner_id)
            await self.storage.save_quiz(quiz, self.owner_id)
        except Exception as exc:
            logger.error(
                "Failed %s save of quiz %s", reason, self.quiz_id, exc_info=True
            )
            self.last_error = exc
            self.state = SaveState.ERROR
            self.last_result = SaveResult.FAILED
            return SaveResult.FAILED

        self.write_count += 1
        self._base_quiz = quiz
        self._saved_snapshot = snapshot
        self._saved_document = document
        self.is_new = False
        self.draft_limit = None
        self.last_error = None
        self.last_saved_at = datetime.now(timezone.utc)
        self.last_result = SaveResult.SAVED
        self._settle()
        logger.info("Saved quiz %s (%s)", self.quiz_id, reason)
        return SaveResult.SAVED

    # -- Publishing ------------------------------------------------------
    async def publish(self) -> PublishResult:
        """Force a save, check the published limit, then publish.

        Raises :class:`SaveFailedError` when the save does not reach storage.
        """
        result = await self.force_save()
        if result is SaveResult.FAILED:
            raise SaveFailedError(f"Could not save quiz {self.quiz_id}") from self.last_error
        if result is SaveResult.LIMIT_REACHED or (self.is_new and self.draft_limit is not None):
            return PublishResult("limit-reached", limit=self.draft_limit, reason="drafts")
        if self.is_new:
            raise SaveFailedError(f"Quiz {self.quiz_id} has no content to publish")

        if not self._base_quiz.is_published:
            limits = await self.plan_limits.limits_for(self.owner_id)
            published = await self.plan_limits.get_published_count(self.owner_id)
            if limit_reached(published, limits.max_published):
                logger.info(
                    "Publish limit reached for %s (%d/%s)",
                    self.owner_id,
                    published,
                    limits.max_published,
                )
                return PublishResult(
                    "limit-reached", limit=limits.max_published, reason="published"
                )

        status = await self.storage.set_published(self.quiz_id, True)
        if status == "limit-reached":
            return PublishResult("limit-reached", reason="published")
        self._base_quiz = self._base_quiz.model_copy(update={"is_published": True})
        logger.info("Published quiz %s", self.quiz_id)
        return PublishResult("ok")

    async def unpublish(self) -> PublishResult:
        if self.is_new:
            raise NotFoundError(f"Quiz {self.quiz_id} not found")
        await self.storage.set_published(self.quiz_id, False)
        self._base_quiz = self._base_quiz.model_copy(update={"is_published": False})
        logger.info("Unpublished quiz %s", self.quiz_id)
        return PublishResult("ok")

    # -- Teardown --------------------------------------------------------
    def teardown(self) -> asyncio.Task:
        """Stop listening and start a best-effort final save.

        The returned task is not awaited here; await :meth:`force_save`
        beforehand when the save must be durable.
        """
        document = self.store.export_document()
        self.stop()
        return self._schedule_save("teardown", document)

    def stop(self) -> None:
        """Stop listening for changes without saving."""
        self._cancel_timer()
        self._unsubscribe()
        self._closed = True

    def discard(self) -> None:
        """Drop unsaved edits, restoring the last saved document."""
        self._cancel_timer()
        if self._saved_document is not None:
            self.store.initialize(self._saved_document)
        else:
            self.store.reset()
        self._cover = extract_cover_image(self.store.document)
        self.state = SaveState.IDLE
        self.last_error = None
        logger.info("Discarded unsaved edits for quiz %s", self.quiz_id)

    async def wait_for_pending(self) -> None:
        """Wait for every scheduled save (debounce, cover, teardown)."""
        while self._background:
            await asyncio.gather(*list(self._background))

    def status(self) -> dict:
        return {
            "state": self.state.value,
            "isNew": self.is_new,
            "isPublished": self.is_published,
            "lastResult": self.last_result.value if self.last_result else None,
            "lastError": str(self.last_error) if self.last_error else None,
            "lastSavedAt": self.last_saved_at.isoformat() if self.last_saved_at else None,
        }
