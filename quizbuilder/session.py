"""Editing session: one user, one quiz, one store and its coordinator."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .autosave import AutosaveCoordinator
from .builder_store import BuilderStore
from .converters import create_default_document, load_document
from .models.legacy import LegacyQuiz
from .plan_limits import PlanLimits
from .storage import OwnershipError, QuizStorage

logger = logging.getLogger(__name__)


class EditingSession:
    """Context object passed to every builder operation.

    Built by :meth:`open` when the editor loads a quiz and torn down by
    :meth:`close` when it navigates away.
    """

    def __init__(
        self,
        quiz_id: str,
        user_id: str,
        store: BuilderStore,
        coordinator: AutosaveCoordinator,
    ) -> None:
        self.quiz_id = quiz_id
        self.user_id = user_id
        self.store = store
        self.coordinator = coordinator

    @classmethod
    async def open(
        cls,
        storage: QuizStorage,
        plan_limits: PlanLimits,
        quiz_id: str,
        user_id: str,
        **coordinator_options: Any,
    ) -> EditingSession:
        quiz = await storage.load_quiz(quiz_id)
        if quiz is None:
            quiz = LegacyQuiz(id=quiz_id, owner_id=user_id)
            document = create_default_document()
            is_new, needs_persist = True, False
        else:
            if quiz.owner_id and quiz.owner_id != user_id:
                raise OwnershipError(f"Quiz {quiz_id} belongs to another user")
            document, needs_persist = load_document(quiz)
            is_new = False

        store = BuilderStore(document)
        coordinator = AutosaveCoordinator(
            store,
            storage,
            plan_limits,
            quiz,
            user_id,
            is_new=is_new,
            needs_persist=needs_persist,
            **coordinator_options,
        )
        logger.info(
            "Opened session for quiz %s (user=%s, new=%s, needs_persist=%s)",
            quiz_id,
            user_id,
            is_new,
            needs_persist,
        )
        return cls(quiz_id, user_id, store, coordinator)

    def close(self, flush: bool = True) -> asyncio.Task | None:
        """Tear down; returns the final save task when ``flush`` is set."""
        task = self.coordinator.teardown() if flush else None
        if not flush:
            self.coordinator.stop()
        self.store.reset()
        logger.info("Closed session for quiz %s (flush=%s)", self.quiz_id, flush)
        return task
