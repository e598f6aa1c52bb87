"""Legacy flat quiz format (questions + outcomes).

This is the record shape kept by storage and read by the quiz player. Every
field except ``id`` has a fallback so partially written records still load.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from .blocks import CamelModel

LeadGenField = Literal["name", "email", "phone"]


def _uuid() -> str:
    return str(uuid.uuid4())


class _LegacyModel(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        """Treat an explicit ``null`` on a declared field as absent."""
        if not isinstance(data, dict):
            return data
        declared = set(cls.model_fields)
        declared.update(f.alias for f in cls.model_fields.values() if f.alias)
        return {k: v for k, v in data.items() if v is not None or k not in declared}


class AnswerOption(_LegacyModel):
    id: str = Field(default_factory=_uuid)
    text: str = ""
    icon: str | None = None
    target_outcome_id: str | None = None


class Question(_LegacyModel):
    id: str = Field(default_factory=_uuid)
    text: str = ""
    image_url: str | None = None
    options: list[AnswerOption] = Field(default_factory=list)
    allow_multiple: bool = False


class LegacyOutcome(_LegacyModel):
    id: str = Field(default_factory=_uuid)
    title: str = ""
    description: str = ""
    image_url: str | None = None
    cta_text: str | None = None
    cta_url: str | None = None


class LeadGenConfig(_LegacyModel):
    enabled: bool = False
    title: str | None = None
    description: str | None = None
    fields: list[str] | None = None
    cta_text: str | None = None


class QuizStats(_LegacyModel):
    views: int = 0
    starts: int = 0
    completions: int = 0


class LegacyQuiz(_LegacyModel):
    id: str
    title: str = ""
    description: str = ""
    cover_image_url: str | None = None
    cta_text: str | None = None
    cta_url: str | None = None
    primary_color: str | None = None
    questions: list[Question] = Field(default_factory=list)
    outcomes: list[LegacyOutcome] = Field(default_factory=list)
    lead_gen: LeadGenConfig | None = None
    is_published: bool = False
    stats: QuizStats = Field(default_factory=QuizStats)
    owner_id: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    published_version: dict[str, Any] | None = None
    published_at: datetime | None = None
    # Raw ``visualBuilderData`` payload; parsed through the schema migration.
    visual_builder_data: dict[str, Any] | None = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
