"""Storage interface the builder persists quizzes through."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Literal

from .models.legacy import LegacyQuiz

PublishStatus = Literal["ok", "limit-reached"]


class BuilderError(Exception):
    """Base class for builder failures surfaced to callers."""


class NotFoundError(BuilderError):
    pass


class OwnershipError(BuilderError):
    """The acting user does not own the quiz."""


class QuizStorage(ABC):
    """Async persistence for quiz records.

    Records are :class:`LegacyQuiz` models; the canonical visual builder
    content travels in ``visual_builder_data``. Implementations hand out
    copies, never their internal state.
    """

    @abstractmethod
    async def load_quiz(self, quiz_id: str) -> LegacyQuiz | None:
        ...

    @abstractmethod
    async def save_quiz(self, quiz: LegacyQuiz, owner_id: str) -> str:
        """Insert or replace ``quiz`` and return its id."""

    @abstractmethod
    async def delete_quiz(self, quiz_id: str) -> None:
        ...

    @abstractmethod
    async def set_published(self, quiz_id: str, published: bool) -> PublishStatus:
        """Flip the published flag.

        Publishing also stores a ``publishedVersion`` snapshot of the current
        ``visualBuilderData`` and ``publishedAt``; unpublishing keeps them.
        """

    @abstractmethod
    async def list_quizzes(self, owner_id: str) -> list[LegacyQuiz]:
        ...

    async def count_quizzes(self, owner_id: str, published: bool | None = None) -> int:
        quizzes = await self.list_quizzes(owner_id)
        if published is None:
            return len(quizzes)
        return sum(1 for quiz in quizzes if quiz.is_published == published)
