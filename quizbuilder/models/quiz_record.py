"""Quiz document model for MongoDB."""

from datetime import datetime, timezone
from typing import Any

from beanie import Document, Indexed
from pydantic import Field


class QuizRecord(Document):
    """One stored quiz.

    ``data`` holds the camelCase quiz payload; ``owner_id`` and
    ``is_published`` are lifted out of it so limit counts are index queries.
    """

    quiz_id: Indexed(str, unique=True)
    owner_id: Indexed(str)
    is_published: bool = False
    data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "quizzes"
