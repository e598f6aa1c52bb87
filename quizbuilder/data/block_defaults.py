"""Default block sets for new steps and outcomes."""

from __future__ import annotations

from ..models.blocks import Block, create_block


def default_blocks_for_step_type(step_type: str) -> list[Block]:
    """Return the blocks a newly added step of ``step_type`` starts with."""
    if step_type == "intro":
        return [
            create_block("header", config={"title": "Bem-vindo!", "description": ""}),
            create_block("media", enabled=False),
            create_block("button", config={"text": "Começar", "action": "next_step"}),
        ]
    if step_type == "question":
        return [
            create_block("header", config={"title": "Nova pergunta"}),
            create_block(
                "options",
                config={
                    "items": [{"text": "Opção 1"}, {"text": "Opção 2"}],
                    "selectionType": "single",
                },
            ),
        ]
    if step_type == "lead-gen":
        return [
            create_block(
                "header",
                config={
                    "title": "Quase lá!",
                    "description": "Preencha seus dados para ver o resultado.",
                },
            ),
            create_block("fields"),
            create_block("button", config={"text": "Ver resultado"}),
        ]
    if step_type == "promo":
        return [
            create_block("header", config={"title": "Oferta especial"}),
            create_block("price"),
            create_block("button", config={"action": "selected_price"}),
        ]
    # Result steps carry no blocks of their own; each outcome has its own.
    return []


def default_outcome_blocks() -> list[Block]:
    """Return the blocks a newly created outcome starts with."""
    return [
        create_block("header", config={"title": "Seu resultado"}),
        create_block("text", config={"content": "Descreva aqui o resultado."}),
        create_block("button", enabled=False, config={"text": "Saber mais"}),
    ]
