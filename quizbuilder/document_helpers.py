"""Read-side projections over a visual builder document.

These replace reading the legacy ``questions``/``outcomes`` arrays: the
document is the source of truth, and anything the dashboard, reports or
player need is derived from it here.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable

from .models.blocks import (
    Block,
    ButtonBlock,
    FieldsBlock,
    HeaderBlock,
    MediaBlock,
    OptionsBlock,
)
from .models.document import Outcome, Step, VisualBuilderDocument
from .models.legacy import LeadGenConfig

_YOUTUBE_PATTERNS = (
    re.compile(r"(?:youtube\.com/watch\?v=|youtu\.be/|youtube\.com/embed/)([a-zA-Z0-9_-]{11})"),
    re.compile(r"youtube\.com/shorts/([a-zA-Z0-9_-]{11})"),
)


def _first_enabled(blocks: Iterable[Block], block_cls: type) -> Any:
    for block in blocks:
        if isinstance(block, block_cls) and block.enabled:
            return block
    return None


def _intro(document: VisualBuilderDocument) -> Step | None:
    index = document.step_index("intro")
    return document.steps[index] if index >= 0 else None


def extract_title(document: VisualBuilderDocument) -> str:
    intro = _intro(document)
    header = _first_enabled(intro.blocks, HeaderBlock) if intro else None
    return header.config.title if header else ""


def extract_description(document: VisualBuilderDocument) -> str:
    intro = _intro(document)
    header = _first_enabled(intro.blocks, HeaderBlock) if intro else None
    return header.config.description if header else ""


def extract_cover_image(document: VisualBuilderDocument) -> str | None:
    """URL of the enabled intro image, if there is one."""
    intro = _intro(document)
    media = _first_enabled(intro.blocks, MediaBlock) if intro else None
    if media is None or media.config.type != "image":
        return None
    return media.config.url or None


def video_thumbnail(url: str) -> str | None:
    for pattern in _YOUTUBE_PATTERNS:
        match = pattern.search(url)
        if match:
            return f"https://img.youtube.com/vi/{match.group(1)}/hqdefault.jpg"
    return None


def extract_intro_media_preview(document: VisualBuilderDocument) -> str | None:
    """Preview image for dashboards: the intro image or a video thumbnail."""
    intro = _intro(document)
    media = _first_enabled(intro.blocks, MediaBlock) if intro else None
    if media is None or not media.config.url:
        return None
    if media.config.type == "image":
        return media.config.url
    return media.config.video_thumbnail or video_thumbnail(media.config.url)


def question_metadata(document: VisualBuilderDocument) -> list[dict[str, str]]:
    """Question ids, ``P{n}`` labels and texts, in funnel order."""
    result = []
    questions = [s for s in document.steps if s.type == "question"]
    for index, step in enumerate(questions):
        header = _first_enabled(step.blocks, HeaderBlock)
        result.append(
            {
                "id": step.id,
                "label": f"P{index + 1}",
                "text": header.config.title if header else "",
            }
        )
    return result


def outcome_metadata(document: VisualBuilderDocument) -> list[dict[str, str]]:
    result = []
    for outcome in document.outcomes:
        header = _first_enabled(outcome.blocks, HeaderBlock)
        title = (header.config.title if header else "") or outcome.name or "Resultado"
        result.append({"id": outcome.id, "title": title})
    return result


def field_metadata(document: VisualBuilderDocument) -> list[dict[str, Any]]:
    """Every form field across all steps, in quiz order."""
    fields = []
    for step in document.steps:
        block = _first_enabled(step.blocks, FieldsBlock)
        if block is None:
            continue
        for item in block.config.items:
            fields.append(
                {
                    "id": item.id,
                    "label": item.label,
                    "type": item.type,
                    "stepId": step.id,
                    "stepLabel": step.label,
                    "stepType": step.type,
                    "required": item.required,
                }
            )
    return fields


def has_lead_gen_step(document: VisualBuilderDocument) -> bool:
    return any(step.type == "lead-gen" for step in document.steps)


def extract_lead_gen_config(document: VisualBuilderDocument) -> LeadGenConfig | None:
    index = document.step_index("lead-gen")
    if index < 0:
        return None
    step = document.steps[index]
    header = _first_enabled(step.blocks, HeaderBlock)
    fields_block = _first_enabled(step.blocks, FieldsBlock)
    button = _first_enabled(step.blocks, ButtonBlock)

    fields: list[str] = []
    for item in fields_block.config.items if fields_block else []:
        if item.type == "text" and "nome" in item.label.lower():
            fields.append("name")
        elif item.type == "email":
            fields.append("email")
        elif item.type == "phone":
            fields.append("phone")

    return LeadGenConfig(
        enabled=True,
        title=header.config.title if header else None,
        description=header.config.description if header else None,
        fields=fields or ["email"],
        cta_text=button.config.text if button else None,
    )


def has_meaningful_content(document: VisualBuilderDocument) -> bool:
    """False for an untouched skeleton with nothing worth persisting."""
    if any(step.type in ("question", "lead-gen", "promo") for step in document.steps):
        return True
    if document.outcomes:
        return True
    intro = _intro(document)
    header = _first_enabled(intro.blocks, HeaderBlock) if intro else None
    return bool(header and (header.config.title or header.config.description))


@dataclass(frozen=True)
class BrokenReference:
    """An option routing to an outcome id that is not in the document."""

    step_id: str
    block_id: str
    option_id: str
    outcome_id: str


def find_broken_references(document: VisualBuilderDocument) -> list[BrokenReference]:
    """Advisory check for dangling option -> outcome routing.

    Deleting an outcome never cleans these up; the player falls back to its
    default routing. This only reports them.
    """
    outcome_ids = {outcome.id for outcome in document.outcomes}
    broken = []
    for step in document.steps:
        for block in step.blocks:
            if not isinstance(block, OptionsBlock):
                continue
            for item in block.config.items:
                if item.outcome_id and item.outcome_id not in outcome_ids:
                    broken.append(
                        BrokenReference(
                            step_id=step.id,
                            block_id=block.id,
                            option_id=item.id,
                            outcome_id=item.outcome_id,
                        )
                    )
    return broken


def iter_block_containers(
    document: VisualBuilderDocument,
) -> Iterable[Step | Outcome]:
    yield from document.steps
    yield from document.outcomes


def duplicate_block_ids(document: VisualBuilderDocument) -> list[str]:
    """Block ids that appear more than once within the same container."""
    duplicates = []
    for container in iter_block_containers(document):
        seen: set[str] = set()
        for block in container.blocks:
            if block.id in seen:
                duplicates.append(block.id)
            seen.add(block.id)
    return duplicates
