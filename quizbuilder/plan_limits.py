"""Plan tiers and the draft/published counts checked against them."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from beanie import PydanticObjectId
from bson.errors import InvalidId

from .models.user import User
from .storage import QuizStorage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TierLimits:
    """``None`` means unlimited."""

    max_drafts: int | None
    max_published: int | None


TIER_LIMITS: dict[str, TierLimits] = {
    "free": TierLimits(max_drafts=3, max_published=1),
    "pro": TierLimits(max_drafts=None, max_published=None),
}

DEFAULT_TIER = "free"


def limit_reached(count: int, limit: int | None) -> bool:
    return limit is not None and count >= limit


class PlanLimits:
    """Counts quizzes in storage; every user is on a fixed tier.

    Subclasses override :meth:`get_tier` to look the tier up somewhere real.
    """

    def __init__(
        self,
        storage: QuizStorage,
        tiers: dict[str, str] | None = None,
        default_tier: str = DEFAULT_TIER,
    ) -> None:
        self.storage = storage
        self.tiers = dict(tiers or {})
        self.default_tier = default_tier

    async def get_tier(self, user_id: str) -> str:
        return self.tiers.get(user_id, self.default_tier)

    async def get_draft_count(self, user_id: str) -> int:
        return await self.storage.count_quizzes(user_id, published=False)

    async def get_published_count(self, user_id: str) -> int:
        return await self.storage.count_quizzes(user_id, published=True)

    def get_limits(self, tier: str) -> TierLimits:
        limits = TIER_LIMITS.get(tier)
        if limits is None:
            logger.warning("Unknown plan tier %r; using %s limits", tier, DEFAULT_TIER)
            return TIER_LIMITS[DEFAULT_TIER]
        return limits

    async def limits_for(self, user_id: str) -> TierLimits:
        return self.get_limits(await self.get_tier(user_id))


class UserPlanLimits(PlanLimits):
    """Reads the tier from the ``User`` document."""

    async def get_tier(self, user_id: str) -> str:
        try:
            object_id = PydanticObjectId(user_id)
        except InvalidId:
            return self.default_tier
        user = await User.get(object_id)
        if user is None:
            return self.default_tier
        return user.tier
