"""BuilderServer: storage, plan limits and the open editing sessions."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Tuple

from .config import STORAGE_BACKEND
from .memory_store import MemoryQuizStorage
from .mongo_store import MongoQuizStorage
from .plan_limits import PlanLimits, UserPlanLimits
from .request_context import RequestContext
from .session import EditingSession
from .storage import NotFoundError, OwnershipError, QuizStorage

logger = logging.getLogger(__name__)


class BuilderServer:
    """Owns one editing session per ``(user_id, quiz_id)``."""

    def __init__(
        self,
        storage: QuizStorage,
        plan_limits: PlanLimits | None = None,
        **coordinator_options: Any,
    ) -> None:
        self.storage = storage
        self.plan_limits = plan_limits or PlanLimits(storage)
        self.coordinator_options = coordinator_options
        self.sessions: Dict[Tuple[str, str], EditingSession] = {}
        self._closing: set[asyncio.Task] = set()
        self._opening: Dict[Tuple[str, str], asyncio.Lock] = {}

    @staticmethod
    def _key(quiz_id: str, context: RequestContext) -> Tuple[str, str]:
        return (context.user_id or "anonymous", quiz_id)

    async def open_session(self, quiz_id: str, context: RequestContext) -> EditingSession:
        """Return the open session for this user and quiz, opening it if needed."""
        key = self._key(quiz_id, context)
        session = self.sessions.get(key)
        if session is not None:
            return session

        # Concurrent opens of the same key wait here and share one session
        lock = self._opening.setdefault(key, asyncio.Lock())
        try:
            async with lock:
                session = self.sessions.get(key)
                if session is None:
                    # A reopened quiz must see the final save of its previous session
                    if self._closing:
                        await asyncio.gather(*list(self._closing))
                    session = await EditingSession.open(
                        self.storage,
                        self.plan_limits,
                        quiz_id,
                        key[0],
                        **self.coordinator_options,
                    )
                    self.sessions[key] = session
        finally:
            if self._opening.get(key) is lock and not lock.locked():
                del self._opening[key]
        return session

    def get_session(self, quiz_id: str, context: RequestContext) -> EditingSession:
        session = self.sessions.get(self._key(quiz_id, context))
        if session is None:
            raise NotFoundError(f"No open session for quiz {quiz_id}")
        return session

    def close_session(self, quiz_id: str, context: RequestContext) -> asyncio.Task | None:
        """Close the session; its final save keeps running in the background."""
        session = self.sessions.pop(self._key(quiz_id, context), None)
        if session is None:
            return None
        task = session.close()
        if task is not None:
            self._closing.add(task)
            task.add_done_callback(self._closing.discard)
        return task

    async def delete_quiz(self, quiz_id: str, context: RequestContext) -> None:
        quiz = await self.storage.load_quiz(quiz_id)
        if quiz is None:
            raise NotFoundError(f"Quiz {quiz_id} not found")
        if quiz.owner_id and quiz.owner_id != context.user_id:
            raise OwnershipError(f"Quiz {quiz_id} belongs to another user")

        session = self.sessions.pop(self._key(quiz_id, context), None)
        if session is not None:
            session.close(flush=False)
        await self.storage.delete_quiz(quiz_id)
        logger.info("Deleted quiz %s", quiz_id)

    async def close_all(self) -> None:
        """Close every session and wait for the final saves."""
        sessions = list(self.sessions.values())
        self.sessions.clear()
        for session in sessions:
            task = session.close()
            if task is not None:
                self._closing.add(task)
                task.add_done_callback(self._closing.discard)
        if self._closing:
            await asyncio.gather(*list(self._closing))
        logger.info("Closed %d editing sessions", len(sessions))


def create_builder_server() -> BuilderServer:
    """Return a server wired to the configured storage backend."""
    if STORAGE_BACKEND == "mongo":
        storage: QuizStorage = MongoQuizStorage()
        return BuilderServer(storage, UserPlanLimits(storage))
    if STORAGE_BACKEND != "memory":
        logger.warning("Unknown STORAGE_BACKEND %r; using memory", STORAGE_BACKEND)
    return BuilderServer(MemoryQuizStorage())
