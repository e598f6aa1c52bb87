"""Quiz storage backed by MongoDB through beanie."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from .models.legacy import LegacyQuiz
from .models.quiz_record import QuizRecord
from .storage import NotFoundError, PublishStatus, QuizStorage

logger = logging.getLogger(__name__)


def _to_quiz(record: QuizRecord) -> LegacyQuiz:
    data = {**record.data, "id": record.quiz_id, "ownerId": record.owner_id}
    data["isPublished"] = record.is_published
    return LegacyQuiz.model_validate(data)


class MongoQuizStorage(QuizStorage):
    """Stores each quiz as a ``QuizRecord``. Requires ``init_database()``."""

    async def _record(self, quiz_id: str) -> QuizRecord | None:
        return await QuizRecord.find_one(QuizRecord.quiz_id == quiz_id)

    async def load_quiz(self, quiz_id: str) -> LegacyQuiz | None:
        record = await self._record(quiz_id)
        return _to_quiz(record) if record else None

    async def save_quiz(self, quiz: LegacyQuiz, owner_id: str) -> str:
        now = datetime.now(timezone.utc)
        payload = quiz.to_payload()
        record = await self._record(quiz.id)
        if record is None:
            record = QuizRecord(
                quiz_id=quiz.id,
                owner_id=owner_id,
                data=payload,
                created_at=quiz.created_at or now,
                updated_at=now,
            )
            await record.insert()
            logger.info("Created quiz %s for %s", quiz.id, owner_id)
            return quiz.id

        # Publish state is owned by set_published
        for key in ("publishedVersion", "publishedAt"):
            if key in record.data:
                payload[key] = record.data[key]
            else:
                payload.pop(key, None)
        record.owner_id = owner_id
        record.data = payload
        record.updated_at = now
        await record.save()
        return quiz.id

    async def delete_quiz(self, quiz_id: str) -> None:
        record = await self._record(quiz_id)
        if record is not None:
            await record.delete()

    async def set_published(self, quiz_id: str, published: bool) -> PublishStatus:
        record = await self._record(quiz_id)
        if record is None:
            raise NotFoundError(f"Quiz {quiz_id} not found")
        record.is_published = published
        if published:
            data = dict(record.data)
            data["publishedVersion"] = data.get("visualBuilderData")
            data["publishedAt"] = datetime.now(timezone.utc).isoformat()
            record.data = data
        await record.save()
        return "ok"

    async def list_quizzes(self, owner_id: str) -> list[LegacyQuiz]:
        records = await QuizRecord.find(QuizRecord.owner_id == owner_id).to_list()
        return [_to_quiz(record) for record in records]

    async def count_quizzes(self, owner_id: str, published: bool | None = None) -> int:
        query = QuizRecord.find(QuizRecord.owner_id == owner_id)
        if published is not None:
            query = query.find(QuizRecord.is_published == published)
        return await query.count()
