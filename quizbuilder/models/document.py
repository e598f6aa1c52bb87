"""Visual builder document: ordered steps plus a set of outcomes."""

from __future__ import annotations

from typing import Literal

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..data.block_defaults import default_blocks_for_step_type, default_outcome_blocks
from .blocks import Block, CamelModel, new_id

CURRENT_SCHEMA_VERSION = 1

StepType = Literal["intro", "question", "lead-gen", "promo", "result"]

STEP_TYPES: tuple[str, ...] = ("intro", "question", "lead-gen", "promo", "result")

# Steps of these types are anchored: intro first, result last.
FIXED_STEP_TYPES: tuple[str, ...] = ("intro", "result")

STEP_TYPE_LABELS: dict[str, str] = {
    "intro": "Intro",
    "question": "Pergunta",
    "lead-gen": "Captura",
    "promo": "Promoção",
    "result": "Resultado",
}


class _DocumentModel(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )


class StepSettings(_DocumentModel):
    show_progress: bool = True
    allow_back: bool = True


class Step(_DocumentModel):
    id: str
    type: str
    label: str = ""
    is_fixed: bool = False
    subtitle: str | None = None
    blocks: list[Block] = Field(default_factory=list)
    settings: StepSettings = Field(default_factory=StepSettings)


class Outcome(_DocumentModel):
    id: str
    name: str = ""
    blocks: list[Block] = Field(default_factory=list)


class VisualBuilderDocument(_DocumentModel):
    schema_version: int = CURRENT_SCHEMA_VERSION
    steps: list[Step] = Field(default_factory=list)
    outcomes: list[Outcome] = Field(default_factory=list)

    def to_payload(self) -> dict:
        """Return the camelCase JSON-ready form stored as ``visualBuilderData``."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def snapshot(self) -> str:
        """Canonical serialization used to detect structural changes."""
        return self.model_dump_json(by_alias=True, exclude_none=True)

    def find_step(self, step_id: str) -> Step | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def find_outcome(self, outcome_id: str) -> Outcome | None:
        for outcome in self.outcomes:
            if outcome.id == outcome_id:
                return outcome
        return None

    def step_index(self, step_type: str) -> int:
        """Index of the first step of ``step_type``, or -1."""
        for index, step in enumerate(self.steps):
            if step.type == step_type:
                return index
        return -1


def default_step_settings(step_type: str) -> StepSettings:
    if step_type in FIXED_STEP_TYPES:
        return StepSettings(show_progress=False, allow_back=False)
    return StepSettings(show_progress=True, allow_back=True)


def default_step_label(step_type: str, steps: list[Step]) -> str:
    """Label for a new step: "Pergunta", then "Pergunta 2", "Pergunta 3", ..."""
    base = STEP_TYPE_LABELS.get(step_type, step_type.capitalize())
    if step_type in FIXED_STEP_TYPES:
        return base
    existing = sum(1 for s in steps if s.type == step_type and not s.is_fixed)
    return base if existing == 0 else f"{base} {existing + 1}"


def create_step(step_type: str, steps: list[Step]) -> Step:
    """Create an unanchored step with default label, blocks and settings."""
    return Step(
        id=new_id("step"),
        type=step_type,
        label=default_step_label(step_type, steps),
        is_fixed=False,
        blocks=default_blocks_for_step_type(step_type),
        settings=default_step_settings(step_type),
    )


def create_outcome(name: str = "", with_default_blocks: bool = False) -> Outcome:
    blocks = default_outcome_blocks() if with_default_blocks else []
    return Outcome(id=new_id("outcome"), name=name, blocks=blocks)


def intro_step(blocks: list[Block] | None = None) -> Step:
    return Step(
        id="intro",
        type="intro",
        label=STEP_TYPE_LABELS["intro"],
        is_fixed=True,
        blocks=default_blocks_for_step_type("intro") if blocks is None else blocks,
        settings=default_step_settings("intro"),
    )


def result_step() -> Step:
    return Step(
        id="result",
        type="result",
        label=STEP_TYPE_LABELS["result"],
        is_fixed=True,
        blocks=[],
        settings=default_step_settings("result"),
    )


def skeleton_document() -> VisualBuilderDocument:
    """Intro, result and a single default outcome."""
    return VisualBuilderDocument(
        steps=[intro_step(), result_step()],
        outcomes=[
            Outcome(
                id=new_id("outcome"),
                name="Resultado 1",
                blocks=default_outcome_blocks(),
            )
        ],
    )
