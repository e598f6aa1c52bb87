"""User model, read for plan tier lookups."""

from __future__ import annotations

from datetime import datetime, timezone

from beanie import Document
from pydantic import EmailStr, Field


class User(Document):
    """User document model for MongoDB.

    Accounts are created by the auth service; the builder only reads the
    subscription tier.
    """

    email: EmailStr
    tier: str = "free"
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "users"
        indexes = [
            "email",
        ]
