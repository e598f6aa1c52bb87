"""Simple in-memory quiz storage for tests and local runs."""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Dict, List

from .models.legacy import LegacyQuiz
from .storage import NotFoundError, PublishStatus, QuizStorage


class MemoryQuizStorage(QuizStorage):
    """Simple in-memory storage keyed by quiz id."""

    def __init__(self) -> None:
        self._quizzes: Dict[str, LegacyQuiz] = {}
        # Number of save_quiz calls, for tests that count writes
        self.save_count = 0

    async def load_quiz(self, quiz_id: str) -> LegacyQuiz | None:
        quiz = self._quizzes.get(quiz_id)
        if quiz is None:
            return None
        return quiz.model_copy(deep=True)

    async def save_quiz(self, quiz: LegacyQuiz, owner_id: str) -> str:
        stored = quiz.model_copy(update={"owner_id": owner_id}, deep=True)
        existing = self._quizzes.get(quiz.id)
        if existing is not None:
            # Publish state is owned by set_published
            stored.is_published = existing.is_published
            stored.published_version = existing.published_version
            stored.published_at = existing.published_at
        self._quizzes[quiz.id] = stored
        self.save_count += 1
        return quiz.id

    async def delete_quiz(self, quiz_id: str) -> None:
        self._quizzes.pop(quiz_id, None)

    async def set_published(self, quiz_id: str, published: bool) -> PublishStatus:
        quiz = self._quizzes.get(quiz_id)
        if quiz is None:
            raise NotFoundError(f"Quiz {quiz_id} not found")
        quiz.is_published = published
        if published:
            quiz.published_version = (
                copy.deepcopy(quiz.visual_builder_data) if quiz.visual_builder_data else None
            )
            quiz.published_at = datetime.now(timezone.utc)
        return "ok"

    async def list_quizzes(self, owner_id: str) -> List[LegacyQuiz]:
        quizzes = [q for q in self._quizzes.values() if q.owner_id == owner_id]
        return [
            q.model_copy(deep=True)
            for q in sorted(
                quizzes,
                key=lambda q: q.created_at or datetime.min.replace(tzinfo=timezone.utc),
            )
        ]
