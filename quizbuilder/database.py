"""MongoDB database connection and configuration."""

from __future__ import annotations

import logging

from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from .config import DATABASE_NAME, MONGODB_URL
from .models.quiz_record import QuizRecord
from .models.user import User

logger = logging.getLogger(__name__)

# Global client instance
_client: AsyncIOMotorClient | None = None


async def init_database() -> None:
    """Initialize MongoDB connection and Beanie ODM."""
    global _client

    _client = AsyncIOMotorClient(MONGODB_URL)
    await init_beanie(
        database=_client[DATABASE_NAME],
        document_models=[QuizRecord, User],
    )
    logger.info("Connected to MongoDB database %s", DATABASE_NAME)


async def close_database() -> None:
    """Close MongoDB connection."""
    global _client
    if _client:
        _client.close()
        _client = None
        logger.info("Closed MongoDB connection")
