"""Session-scoped editable state for the visual builder.

``BuilderStore`` owns one :class:`VisualBuilderDocument` for the lifetime of
an editing session and exposes the structural operations the editor needs.
Mutators never raise for illegal requests: they leave the document untouched
and return a :class:`Rejection` instead.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Iterable

from pydantic import ValidationError

from .document_helpers import BrokenReference, find_broken_references
from .models.blocks import Block, copy_block_with_new_id, merge_block_config, new_id
from .models.document import (
    FIXED_STEP_TYPES,
    Outcome,
    Step,
    StepSettings,
    VisualBuilderDocument,
    skeleton_document,
)

logger = logging.getLogger(__name__)

ChangeListener = Callable[[str], None]


class Rejection(str, Enum):
    NOT_FOUND = "not_found"
    FIXED_STEP = "fixed_step"
    OUT_OF_RANGE = "out_of_range"
    ANCHOR_VIOLATION = "anchor_violation"
    LAST_OUTCOME = "last_outcome"
    DUPLICATE_ID = "duplicate_id"
    INVALID_VALUE = "invalid_value"


class BuilderStore:
    """Mutable document plus editor selection state.

    Listeners registered with :meth:`subscribe` are called with the name of
    the operation after every applied structural change. Selection changes do
    not notify.
    """

    def __init__(self, document: VisualBuilderDocument | None = None) -> None:
        self._listeners: list[ChangeListener] = []
        self.last_rejection: Rejection | None = None
        self._load(document.model_copy(deep=True) if document else skeleton_document())

    def _load(self, document: VisualBuilderDocument) -> None:
        self._document = document
        self.active_step_id: str | None = document.steps[0].id if document.steps else None
        self.selected_outcome_id: str | None = None
        self.selected_block_id: str | None = None

    @property
    def document(self) -> VisualBuilderDocument:
        return self._document

    @property
    def steps(self) -> list[Step]:
        return self._document.steps

    @property
    def outcomes(self) -> list[Outcome]:
        return self._document.outcomes

    # -- Change signal ---------------------------------------------------
    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _changed(self, operation: str) -> None:
        self.last_rejection = None
        for listener in list(self._listeners):
            try:
                listener(operation)
            except Exception:
                logger.exception("Change listener failed after %s", operation)

    def _reject(self, rejection: Rejection, operation: str, **detail: Any) -> Rejection:
        self.last_rejection = rejection
        logger.info("Rejected %s: %s %s", operation, rejection.value, detail)
        return rejection

    # -- Lifecycle -------------------------------------------------------
    def initialize(self, document: VisualBuilderDocument) -> None:
        """Replace all state with ``document``; the first step becomes active."""
        self.last_rejection = None
        self._load(document.model_copy(deep=True))

    def reset(self) -> None:
        self.last_rejection = None
        self._load(skeleton_document())

    def snapshot(self) -> str:
        return self._document.snapshot()

    def export_document(self) -> VisualBuilderDocument:
        return self._document.model_copy(deep=True)

    def find_step(self, step_id: str) -> Step | None:
        return self._document.find_step(step_id)

    def find_outcome(self, outcome_id: str) -> Outcome | None:
        return self._document.find_outcome(outcome_id)

    def broken_references(self) -> list[BrokenReference]:
        return find_broken_references(self._document)

    def _index_of_step(self, step_id: str) -> int:
        for index, step in enumerate(self.steps):
            if step.id == step_id:
                return index
        return -1

    # -- Wholesale replacement -------------------------------------------
    def set_steps(self, steps: list[Step]) -> Rejection | None:
        steps = [step.model_copy(deep=True) for step in steps]
        if _has_duplicates(step.id for step in steps):
            return self._reject(Rejection.DUPLICATE_ID, "set_steps")
        types = [step.type for step in steps]
        if (
            types.count("intro") != 1
            or types.count("result") != 1
            or types[0] != "intro"
            or types[-1] != "result"
        ):
            return self._reject(Rejection.ANCHOR_VIOLATION, "set_steps", types=types)

        for step in steps:
            step.is_fixed = step.type in FIXED_STEP_TYPES
        self._document.steps = steps
        if self.active_step_id is None or self.find_step(self.active_step_id) is None:
            self.active_step_id = steps[0].id
            self.selected_block_id = None
        self._changed("set_steps")
        return None

    def set_outcomes(self, outcomes: list[Outcome]) -> Rejection | None:
        if not outcomes:
            return self._reject(Rejection.LAST_OUTCOME, "set_outcomes")
        if _has_duplicates(outcome.id for outcome in outcomes):
            return self._reject(Rejection.DUPLICATE_ID, "set_outcomes")

        self._document.outcomes = [outcome.model_copy(deep=True) for outcome in outcomes]
        if self.selected_outcome_id and self.find_outcome(self.selected_outcome_id) is None:
            self.selected_outcome_id = None
        self._changed("set_outcomes")
        return None

    # -- Selection -------------------------------------------------------
    def set_active_step_id(self, step_id: str | None) -> Rejection | None:
        if step_id is None:
            self.active_step_id = None
            self.selected_block_id = None
            return None
        step = self.find_step(step_id)
        if step is None:
            return self._reject(Rejection.NOT_FOUND, "set_active_step_id", step_id=step_id)

        self.active_step_id = step_id
        self.selected_block_id = None
        if step.type != "result":
            self.selected_outcome_id = None
        elif self.selected_outcome_id is None and self.outcomes:
            self.selected_outcome_id = self.outcomes[0].id
        return None

    def set_selected_outcome_id(self, outcome_id: str | None) -> Rejection | None:
        if outcome_id is not None and self.find_outcome(outcome_id) is None:
            return self._reject(
                Rejection.NOT_FOUND, "set_selected_outcome_id", outcome_id=outcome_id
            )
        self.selected_outcome_id = outcome_id
        return None

    def set_selected_block_id(self, block_id: str | None) -> None:
        self.selected_block_id = block_id

    # -- Steps -----------------------------------------------------------
    def add_step(self, step: Step, insert_after_step_id: str | None = None) -> Rejection | None:
        """Insert ``step`` after the given step, or just before ``result``."""
        if step.type in FIXED_STEP_TYPES:
            return self._reject(Rejection.ANCHOR_VIOLATION, "add_step", type=step.type)
        if self.find_step(step.id) is not None:
            return self._reject(Rejection.DUPLICATE_ID, "add_step", step_id=step.id)

        step = step.model_copy(deep=True)
        step.is_fixed = False
        result_index = self._document.step_index("result")

        insert_at = result_index if result_index >= 0 else len(self.steps)
        if insert_after_step_id is not None:
            after_index = self._index_of_step(insert_after_step_id)
            if 0 <= after_index and (result_index < 0 or after_index < result_index):
                insert_at = after_index + 1

        self.steps.insert(insert_at, step)
        self.active_step_id = step.id
        self.selected_block_id = None
        self._changed("add_step")
        return None

    def update_step(
        self,
        step_id: str,
        label: str | None = None,
        subtitle: str | None = None,
    ) -> Rejection | None:
        step = self.find_step(step_id)
        if step is None:
            return self._reject(Rejection.NOT_FOUND, "update_step", step_id=step_id)
        if label is not None:
            step.label = label
        if subtitle is not None:
            step.subtitle = subtitle
        self._changed("update_step")
        return None

    def update_step_settings(self, step_id: str, **settings: Any) -> Rejection | None:
        step = self.find_step(step_id)
        if step is None:
            return self._reject(Rejection.NOT_FOUND, "update_step_settings", step_id=step_id)
        merged = {**step.settings.model_dump(), **settings}
        try:
            step.settings = StepSettings.model_validate(merged)
        except ValidationError as exc:
            return self._reject(
                Rejection.INVALID_VALUE,
                "update_step_settings",
                step_id=step_id,
                fields=sorted(str(e["loc"][0]) for e in exc.errors() if e.get("loc")),
            )
        self._changed("update_step_settings")
        return None

    def delete_step(self, step_id: str) -> Rejection | None:
        index = self._index_of_step(step_id)
        if index < 0:
            return self._reject(Rejection.NOT_FOUND, "delete_step", step_id=step_id)
        if self.steps[index].is_fixed:
            return self._reject(Rejection.FIXED_STEP, "delete_step", step_id=step_id)

        del self.steps[index]
        if self.active_step_id == step_id:
            if index > 0:
                self.active_step_id = self.steps[index - 1].id
            else:
                self.active_step_id = self.steps[0].id if self.steps else None
            self.selected_block_id = None
        self._changed("delete_step")
        return None

    def duplicate_step(self, step_id: str) -> Rejection | None:
        """Copy a step (fresh step and block ids) right after the original."""
        index = self._index_of_step(step_id)
        if index < 0:
            return self._reject(Rejection.NOT_FOUND, "duplicate_step", step_id=step_id)
        original = self.steps[index]
        if original.is_fixed:
            return self._reject(Rejection.FIXED_STEP, "duplicate_step", step_id=step_id)

        copy = original.model_copy(deep=True)
        copy.id = new_id("step")
        copy.label = f"{original.label} (cópia)"
        copy.blocks = [copy_block_with_new_id(block) for block in original.blocks]
        self.steps.insert(index + 1, copy)
        self.active_step_id = copy.id
        self.selected_block_id = None
        self._changed("duplicate_step")
        return None

    def move_step(self, from_index: int, to_index: int) -> Rejection | None:
        """Splice-move the step at ``from_index`` to ``to_index``.

        Anchored steps cannot move and nothing may land on or before the
        intro, or on or after the result.
        """
        steps = self.steps
        if not (0 <= from_index < len(steps) and 0 <= to_index < len(steps)):
            return self._reject(
                Rejection.OUT_OF_RANGE, "move_step", from_index=from_index, to_index=to_index
            )
        if from_index == to_index:
            return None
        if steps[from_index].is_fixed:
            return self._reject(Rejection.FIXED_STEP, "move_step", from_index=from_index)

        intro_index = self._document.step_index("intro")
        result_index = self._document.step_index("result")
        if to_index <= intro_index or (result_index >= 0 and to_index >= result_index):
            return self._reject(Rejection.ANCHOR_VIOLATION, "move_step", to_index=to_index)

        steps.insert(to_index, steps.pop(from_index))
        self._changed("move_step")
        return None

    # -- Outcomes --------------------------------------------------------
    def add_outcome(self, outcome: Outcome) -> Rejection | None:
        if self.find_outcome(outcome.id) is not None:
            return self._reject(Rejection.DUPLICATE_ID, "add_outcome", outcome_id=outcome.id)

        self.outcomes.append(outcome.model_copy(deep=True))
        result_index = self._document.step_index("result")
        if result_index >= 0:
            self.active_step_id = self.steps[result_index].id
        self.selected_outcome_id = outcome.id
        self.selected_block_id = None
        self._changed("add_outcome")
        return None

    def update_outcome(self, outcome_id: str, name: str | None = None) -> Rejection | None:
        outcome = self.find_outcome(outcome_id)
        if outcome is None:
            return self._reject(Rejection.NOT_FOUND, "update_outcome", outcome_id=outcome_id)
        if name is not None:
            outcome.name = name
        self._changed("update_outcome")
        return None

    def delete_outcome(self, outcome_id: str) -> Rejection | None:
        """Remove an outcome. Options routing to it are left dangling."""
        outcome = self.find_outcome(outcome_id)
        if outcome is None:
            return self._reject(Rejection.NOT_FOUND, "delete_outcome", outcome_id=outcome_id)
        if len(self.outcomes) <= 1:
            return self._reject(Rejection.LAST_OUTCOME, "delete_outcome", outcome_id=outcome_id)

        self.outcomes.remove(outcome)
        if self.selected_outcome_id == outcome_id:
            self.selected_outcome_id = self.outcomes[0].id
            self.selected_block_id = None
        self._changed("delete_outcome")
        return None

    def move_outcome(self, from_index: int, to_index: int) -> Rejection | None:
        outcomes = self.outcomes
        if not (0 <= from_index < len(outcomes) and 0 <= to_index < len(outcomes)):
            return self._reject(
                Rejection.OUT_OF_RANGE, "move_outcome", from_index=from_index, to_index=to_index
            )
        if from_index == to_index:
            return None
        outcomes.insert(to_index, outcomes.pop(from_index))
        self._changed("move_outcome")
        return None

    # -- Blocks (shared by steps and outcomes) ---------------------------
    def _add_block(
        self, operation: str, container: Step | Outcome | None, block: Block, index: int | None
    ) -> Rejection | None:
        if container is None:
            return self._reject(Rejection.NOT_FOUND, operation)
        if any(existing.id == block.id for existing in container.blocks):
            return self._reject(Rejection.DUPLICATE_ID, operation, block_id=block.id)
        if index is None:
            index = len(container.blocks)
        elif not 0 <= index <= len(container.blocks):
            return self._reject(Rejection.OUT_OF_RANGE, operation, index=index)

        container.blocks.insert(index, block.model_copy(deep=True))
        self.selected_block_id = block.id
        self._changed(operation)
        return None

    def _block_index(self, container: Step | Outcome, block_id: str) -> int:
        for index, block in enumerate(container.blocks):
            if block.id == block_id:
                return index
        return -1

    def _update_block(
        self,
        operation: str,
        container: Step | Outcome | None,
        block_id: str,
        config: dict[str, Any] | None,
        enabled: bool | None,
    ) -> Rejection | None:
        index = self._block_index(container, block_id) if container is not None else -1
        if index < 0:
            return self._reject(Rejection.NOT_FOUND, operation, block_id=block_id)

        block = container.blocks[index]
        if config:
            block = merge_block_config(block, config)
        if enabled is not None:
            block = block.model_copy(update={"enabled": enabled})
        container.blocks[index] = block
        self._changed(operation)
        return None

    def _delete_block(
        self, operation: str, container: Step | Outcome | None, block_id: str
    ) -> Rejection | None:
        index = self._block_index(container, block_id) if container is not None else -1
        if index < 0:
            return self._reject(Rejection.NOT_FOUND, operation, block_id=block_id)

        del container.blocks[index]
        if self.selected_block_id == block_id:
            self.selected_block_id = None
        self._changed(operation)
        return None

    def _toggle_block(
        self, operation: str, container: Step | Outcome | None, block_id: str
    ) -> Rejection | None:
        index = self._block_index(container, block_id) if container is not None else -1
        if index < 0:
            return self._reject(Rejection.NOT_FOUND, operation, block_id=block_id)

        block = container.blocks[index]
        container.blocks[index] = block.model_copy(update={"enabled": not block.enabled})
        self._changed(operation)
        return None

    def _duplicate_block(
        self, operation: str, container: Step | Outcome | None, block_id: str
    ) -> Rejection | None:
        index = self._block_index(container, block_id) if container is not None else -1
        if index < 0:
            return self._reject(Rejection.NOT_FOUND, operation, block_id=block_id)

        copy = copy_block_with_new_id(container.blocks[index])
        container.blocks.insert(index + 1, copy)
        self.selected_block_id = copy.id
        self._changed(operation)
        return None

    def _move_block(
        self, operation: str, container: Step | Outcome | None, from_index: int, to_index: int
    ) -> Rejection | None:
        if container is None:
            return self._reject(Rejection.NOT_FOUND, operation)
        blocks = container.blocks
        if not (0 <= from_index < len(blocks) and 0 <= to_index < len(blocks)):
            return self._reject(
                Rejection.OUT_OF_RANGE, operation, from_index=from_index, to_index=to_index
            )
        if from_index == to_index:
            return None
        blocks.insert(to_index, blocks.pop(from_index))
        self._changed(operation)
        return None

    # -- Step blocks -----------------------------------------------------
    def add_block(self, step_id: str, block: Block, index: int | None = None) -> Rejection | None:
        return self._add_block("add_block", self.find_step(step_id), block, index)

    def update_block(
        self,
        step_id: str,
        block_id: str,
        config: dict[str, Any] | None = None,
        enabled: bool | None = None,
    ) -> Rejection | None:
        return self._update_block(
            "update_block", self.find_step(step_id), block_id, config, enabled
        )

    def delete_block(self, step_id: str, block_id: str) -> Rejection | None:
        return self._delete_block("delete_block", self.find_step(step_id), block_id)

    def toggle_block(self, step_id: str, block_id: str) -> Rejection | None:
        return self._toggle_block("toggle_block", self.find_step(step_id), block_id)

    def duplicate_block(self, step_id: str, block_id: str) -> Rejection | None:
        return self._duplicate_block("duplicate_block", self.find_step(step_id), block_id)

    def move_block(self, step_id: str, from_index: int, to_index: int) -> Rejection | None:
        return self._move_block("move_block", self.find_step(step_id), from_index, to_index)

    # -- Outcome blocks --------------------------------------------------
    def add_outcome_block(
        self, outcome_id: str, block: Block, index: int | None = None
    ) -> Rejection | None:
        return self._add_block("add_outcome_block", self.find_outcome(outcome_id), block, index)

    def update_outcome_block(
        self,
        outcome_id: str,
        block_id: str,
        config: dict[str, Any] | None = None,
        enabled: bool | None = None,
    ) -> Rejection | None:
        return self._update_block(
            "update_outcome_block", self.find_outcome(outcome_id), block_id, config, enabled
        )

    def delete_outcome_block(self, outcome_id: str, block_id: str) -> Rejection | None:
        return self._delete_block(
            "delete_outcome_block", self.find_outcome(outcome_id), block_id
        )

    def toggle_outcome_block(self, outcome_id: str, block_id: str) -> Rejection | None:
        return self._toggle_block(
            "toggle_outcome_block", self.find_outcome(outcome_id), block_id
        )

    def duplicate_outcome_block(self, outcome_id: str, block_id: str) -> Rejection | None:
        return self._duplicate_block(
            "duplicate_outcome_block", self.find_outcome(outcome_id), block_id
        )

    def move_outcome_block(
        self, outcome_id: str, from_index: int, to_index: int
    ) -> Rejection | None:
        return self._move_block(
            "move_outcome_block", self.find_outcome(outcome_id), from_index, to_index
        )


def _has_duplicates(ids: Iterable[str]) -> bool:
    seen: set[str] = set()
    for item in ids:
        if item in seen:
            return True
        seen.add(item)
    return False
