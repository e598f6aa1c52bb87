"""Conversion between the legacy quiz record and the visual builder document.

Only the legacy -> document direction exists. Once a quiz carries
``visualBuilderData`` that payload is canonical; the legacy arrays are a
read-compatibility projection written elsewhere.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from .data.block_defaults import default_outcome_blocks
from .document_helpers import (
    extract_cover_image,
    extract_description,
    extract_title,
    iter_block_containers,
)
from .models.blocks import Block, create_block, new_id
from .models.document import (
    CURRENT_SCHEMA_VERSION,
    FIXED_STEP_TYPES,
    Outcome,
    Step,
    VisualBuilderDocument,
    create_step,
    default_step_settings,
    intro_step,
    result_step,
    skeleton_document,
)
from .models.legacy import LeadGenConfig, LegacyOutcome, LegacyQuiz, Question

logger = logging.getLogger(__name__)

DEFAULT_OUTCOME_NAME = "Resultado 1"

_LEAD_GEN_FIELDS = {
    "name": ("Nome", "text"),
    "email": ("Email", "email"),
    "phone": ("Telefone", "phone"),
}


# -- Legacy quiz -> document -------------------------------------------------


def _intro_from_quiz(quiz: LegacyQuiz) -> Step:
    blocks: list[Block] = [
        create_block(
            "header",
            id="intro-block-header",
            config={"title": quiz.title or "Bem-vindo!", "description": quiz.description or ""},
        )
    ]
    if quiz.cover_image_url:
        blocks.append(
            create_block(
                "media",
                id="intro-block-media",
                config={"type": "image", "url": quiz.cover_image_url},
            )
        )
    blocks.append(
        create_block(
            "button",
            id="intro-block-button",
            config={"text": "Começar", "action": "next_step"},
        )
    )
    return intro_step(blocks)


def _unique_id(candidate: str, used: set[str]) -> str:
    """``candidate``, or ``candidate-2``, ``candidate-3``... if taken. Marks it used."""
    unique = candidate
    suffix = 2
    while unique in used:
        unique = f"{candidate}-{suffix}"
        suffix += 1
    used.add(unique)
    return unique


def _question_to_step(question: Question, index: int, step_id: str) -> Step:
    blocks: list[Block] = [
        create_block("header", id=f"{step_id}-header", config={"title": question.text})
    ]
    if question.image_url:
        blocks.append(
            create_block(
                "media",
                id=f"{step_id}-media",
                config={"type": "image", "url": question.image_url},
            )
        )
    blocks.append(
        create_block(
            "options",
            id=f"{step_id}-options",
            config={
                "items": [
                    {
                        "id": option.id,
                        "text": option.text,
                        "emoji": option.icon,
                        "outcome_id": option.target_outcome_id,
                    }
                    for option in question.options
                ],
                "selection_type": "multiple" if question.allow_multiple else "single",
            },
        )
    )
    return Step(
        id=step_id,
        type="question",
        label=f"P{index + 1}",
        subtitle=question.text or None,
        blocks=blocks,
        settings=default_step_settings("question"),
    )


def _lead_gen_step(lead_gen: LeadGenConfig | None) -> Step | None:
    if lead_gen is None or not lead_gen.enabled:
        return None

    field_names = lead_gen.fields if lead_gen.fields is not None else ["email"]
    items = []
    for index, field_name in enumerate(field_names):
        label, field_type = _LEAD_GEN_FIELDS.get(field_name, (field_name, "text"))
        items.append(
            {
                "id": f"lead-gen-field-{index}",
                "label": label,
                "type": field_type,
                "required": True,
            }
        )

    blocks = [
        create_block(
            "header",
            id="lead-gen-header",
            config={
                "title": lead_gen.title or "Quase lá!",
                "description": lead_gen.description
                or "Preencha seus dados para ver o resultado.",
            },
        ),
        create_block("fields", id="lead-gen-fields", config={"items": items}),
        create_block(
            "button",
            id="lead-gen-button",
            config={"text": lead_gen.cta_text or "Ver resultado", "action": "next_step"},
        ),
    ]
    return Step(
        id="lead-gen",
        type="lead-gen",
        label="Captura",
        blocks=blocks,
        settings=default_step_settings("lead-gen"),
    )


def _legacy_outcome_to_outcome(outcome: LegacyOutcome) -> Outcome:
    outcome_id = outcome.id
    blocks: list[Block] = [
        create_block(
            "header",
            id=f"{outcome_id}-header",
            config={"title": outcome.title or "Seu resultado"},
        )
    ]
    if outcome.image_url:
        blocks.append(
            create_block(
                "media",
                id=f"{outcome_id}-media",
                config={"type": "image", "url": outcome.image_url},
            )
        )
    blocks.append(
        create_block(
            "text",
            id=f"{outcome_id}-text",
            config={"content": outcome.description or ""},
        )
    )
    if outcome.cta_text or outcome.cta_url:
        blocks.append(
            create_block(
                "button",
                id=f"{outcome_id}-button",
                config={
                    "text": outcome.cta_text or "Saber mais",
                    "action": "url" if outcome.cta_url else "next_step",
                    "url": outcome.cta_url,
                },
            )
        )
    return Outcome(id=outcome_id, name=outcome.title or "", blocks=blocks)


def default_outcome() -> Outcome:
    return Outcome(
        id=new_id("outcome"),
        name=DEFAULT_OUTCOME_NAME,
        blocks=default_outcome_blocks(),
    )


def quiz_to_visual_builder(quiz: LegacyQuiz) -> VisualBuilderDocument:
    """Migrate a legacy quiz into a visual builder document.

    Produces intro, one step per question, an optional lead-gen step and
    the result step, plus one outcome per legacy outcome (or a single
    default outcome when there are none).
    """
    lead_gen = _lead_gen_step(quiz.lead_gen)
    used = {"intro", "result"}
    if lead_gen is not None:
        used.add(lead_gen.id)

    steps = [_intro_from_quiz(quiz)]
    for index, question in enumerate(quiz.questions):
        step_id = _unique_id(question.id, used)
        steps.append(_question_to_step(question, index, step_id))
    if lead_gen is not None:
        steps.append(lead_gen)
    steps.append(result_step())

    if quiz.outcomes:
        outcome_ids: set[str] = set()
        outcomes = []
        for legacy_outcome in quiz.outcomes:
            outcome_id = _unique_id(legacy_outcome.id, outcome_ids)
            if outcome_id != legacy_outcome.id:
                legacy_outcome = legacy_outcome.model_copy(update={"id": outcome_id})
            outcomes.append(_legacy_outcome_to_outcome(legacy_outcome))
    else:
        outcomes = [default_outcome()]

    logger.info(
        "Converted legacy quiz %s: %d steps, %d outcomes",
        quiz.id,
        len(steps),
        len(outcomes),
    )
    return VisualBuilderDocument(
        schema_version=CURRENT_SCHEMA_VERSION, steps=steps, outcomes=outcomes
    )


def create_default_document() -> VisualBuilderDocument:
    """Starting document for a brand new quiz: intro, P1, result, one outcome."""
    document = skeleton_document()
    question = create_step("question", [])
    question.label = "P1"
    document.steps.insert(1, question)
    return document


# -- Stored payloads ---------------------------------------------------------


def is_valid_visual_builder_payload(data: Any) -> bool:
    return (
        isinstance(data, dict)
        and isinstance(data.get("steps"), list)
        and isinstance(data.get("outcomes"), list)
    )


def _schema_version(data: dict[str, Any]) -> int:
    version = data.get("schemaVersion", data.get("schema_version", 0))
    try:
        return int(version)
    except (TypeError, ValueError):
        return 0


def _normalize_anchors(document: VisualBuilderDocument) -> bool:
    """Keep exactly one intro first and one result last.

    Missing anchors are synthesized. Surplus anchors are dropped when empty
    and otherwise demoted to unanchored ``promo`` steps.
    """
    changed = False
    steps = document.steps

    for anchor_type in FIXED_STEP_TYPES:
        seen = False
        for step in list(steps):
            if step.type != anchor_type:
                continue
            if not seen:
                seen = True
                continue
            if step.blocks:
                step.type = "promo"
                step.is_fixed = False
                action = "demoted to promo"
            else:
                steps.remove(step)
                action = "removed"
            logger.warning("Surplus %s step %s %s", anchor_type, step.id, action)
            changed = True

    intro_index = document.step_index("intro")
    if intro_index < 0:
        steps.insert(0, intro_step())
        changed = True
    elif intro_index != 0:
        steps.insert(0, steps.pop(intro_index))
        changed = True

    result_index = document.step_index("result")
    if result_index < 0:
        steps.append(result_step())
        changed = True
    elif result_index != len(steps) - 1:
        steps.append(steps.pop(result_index))
        changed = True

    for step in steps:
        should_be_fixed = step.type in FIXED_STEP_TYPES
        if step.is_fixed != should_be_fixed:
            step.is_fixed = should_be_fixed
            changed = True
    return changed


def _dedupe_step_and_outcome_ids(document: VisualBuilderDocument) -> bool:
    changed = False
    for items, prefix in ((document.steps, "step"), (document.outcomes, "outcome")):
        seen: set[str] = set()
        for item in items:
            if item.id in seen:
                item.id = new_id(prefix)
                changed = True
            seen.add(item.id)
    return changed


def _dedupe_block_ids(document: VisualBuilderDocument) -> bool:
    changed = False
    for container in iter_block_containers(document):
        seen: set[str] = set()
        for block in container.blocks:
            if block.id in seen:
                block.id = new_id("block")
                changed = True
            seen.add(block.id)
    return changed


def migrate_document_payload(data: dict[str, Any]) -> tuple[VisualBuilderDocument, bool]:
    """Parse a stored payload, upgrading it to the current schema.

    Returns the document and whether anything had to change (in which case
    the caller should persist it).
    """
    version = _schema_version(data)
    if version > CURRENT_SCHEMA_VERSION:
        logger.warning(
            "visualBuilderData has schemaVersion %d, newer than %d; loading as-is",
            version,
            CURRENT_SCHEMA_VERSION,
        )

    document = VisualBuilderDocument.model_validate(data)
    changed = False

    if version < CURRENT_SCHEMA_VERSION:
        # Version 0 documents predate step settings on anchored steps.
        for step, raw in zip(document.steps, data.get("steps", [])):
            if isinstance(raw, dict) and "settings" not in raw:
                step.settings = default_step_settings(step.type)
        document.schema_version = CURRENT_SCHEMA_VERSION
        changed = True

    changed = _normalize_anchors(document) or changed
    changed = _dedupe_step_and_outcome_ids(document) or changed
    changed = _dedupe_block_ids(document) or changed
    if not document.outcomes:
        document.outcomes.append(default_outcome())
        changed = True
    return document, changed


def load_document(quiz: LegacyQuiz) -> tuple[VisualBuilderDocument, bool]:
    """Document for ``quiz`` plus whether it differs from what is stored.

    Stored ``visualBuilderData`` wins; otherwise the legacy arrays are
    converted.
    """
    payload = quiz.visual_builder_data
    if is_valid_visual_builder_payload(payload):
        try:
            return migrate_document_payload(payload)
        except ValidationError:
            logger.warning(
                "Stored visualBuilderData for quiz %s is unreadable; converting legacy fields",
                quiz.id,
                exc_info=True,
            )
    return quiz_to_visual_builder(quiz), True


# -- Document -> persisted record --------------------------------------------


def apply_document_to_quiz(
    quiz: LegacyQuiz, document: VisualBuilderDocument, owner_id: str
) -> LegacyQuiz:
    """Return ``quiz`` updated with ``document`` as its canonical content.

    Title, description and cover are projected from the intro step so list
    views keep working; questions and outcomes are left untouched.
    """
    now = datetime.now(timezone.utc)
    return quiz.model_copy(
        update={
            "title": extract_title(document) or quiz.title or "Sem título",
            "description": extract_description(document) or quiz.description or "",
            "cover_image_url": extract_cover_image(document) or quiz.cover_image_url,
            "owner_id": owner_id,
            "created_at": quiz.created_at or now,
            "updated_at": now,
            "visual_builder_data": document.to_payload(),
        },
        deep=True,
    )
