"""Tests for BuilderStore structural operations and rejections."""

import random

import pytest

from quizbuilder.builder_store import BuilderStore, Rejection
from quizbuilder.models.blocks import create_block
from quizbuilder.models.document import create_outcome, create_step


@pytest.fixture
def store():
    return BuilderStore()


@pytest.fixture
def changes(store):
    seen = []
    store.subscribe(seen.append)
    return seen


def add_questions(store, count):
    steps = []
    for _ in range(count):
        step = create_step("question", store.steps)
        assert store.add_step(step) is None
        steps.append(step)
    return steps


def step_types(store):
    return [step.type for step in store.steps]


class TestLifecycle:
    def test_default_state(self, store):
        assert step_types(store) == ["intro", "result"]
        assert store.active_step_id == "intro"
        assert len(store.outcomes) == 1

    def test_initialize_copies_and_does_not_notify(self, store, changes):
        other = BuilderStore()
        add_questions(other, 2)
        document = other.export_document()
        store.initialize(document)
        document.steps.clear()
        assert step_types(store) == ["intro", "question", "question", "result"]
        assert store.active_step_id == "intro"
        assert changes == []

    def test_reset(self, store):
        add_questions(store, 2)
        store.reset()
        assert step_types(store) == ["intro", "result"]

    def test_export_is_a_deep_copy(self, store):
        exported = store.export_document()
        exported.steps[0].label = "changed"
        assert store.steps[0].label == "Intro"


class TestSteps:
    def test_add_step_goes_before_result_and_becomes_active(self, store, changes):
        step = create_step("question", store.steps)
        assert store.add_step(step) is None
        assert step_types(store) == ["intro", "question", "result"]
        assert store.active_step_id == step.id
        assert changes == ["add_step"]

    def test_add_step_after_given_step(self, store):
        first, second = add_questions(store, 2)
        promo = create_step("promo", store.steps)
        store.add_step(promo, insert_after_step_id=first.id)
        assert [s.id for s in store.steps][1:4] == [first.id, promo.id, second.id]

    def test_add_step_after_result_falls_back(self, store):
        promo = create_step("promo", store.steps)
        store.add_step(promo, insert_after_step_id="result")
        assert step_types(store) == ["intro", "promo", "result"]

    def test_add_anchor_step_rejected(self, store, changes):
        intro = create_step("intro", store.steps)
        assert store.add_step(intro) is Rejection.ANCHOR_VIOLATION
        assert store.last_rejection is Rejection.ANCHOR_VIOLATION
        assert changes == []

    def test_add_duplicate_id_rejected(self, store):
        (step,) = add_questions(store, 1)
        assert store.add_step(step) is Rejection.DUPLICATE_ID

    def test_update_step(self, store):
        (step,) = add_questions(store, 1)
        assert store.update_step(step.id, label="Idade", subtitle="Qual sua idade?") is None
        updated = store.find_step(step.id)
        assert (updated.label, updated.subtitle) == ("Idade", "Qual sua idade?")
        assert store.update_step("missing", label="x") is Rejection.NOT_FOUND

    def test_update_step_settings_merges(self, store):
        (step,) = add_questions(store, 1)
        store.update_step_settings(step.id, allow_back=False)
        settings = store.find_step(step.id).settings
        assert settings.allow_back is False
        assert settings.show_progress is True

    def test_invalid_step_setting_is_rejected(self, store, changes):
        (step,) = add_questions(store, 1)
        changes.clear()
        assert store.update_step_settings(step.id, show_progress="x") is Rejection.INVALID_VALUE
        assert store.find_step(step.id).settings.show_progress is True
        assert store.last_rejection is Rejection.INVALID_VALUE
        assert changes == []

    def test_delete_fixed_step_rejected(self, store, changes):
        assert store.delete_step("intro") is Rejection.FIXED_STEP
        assert store.delete_step("result") is Rejection.FIXED_STEP
        assert store.delete_step("nope") is Rejection.NOT_FOUND
        assert step_types(store) == ["intro", "result"]
        assert changes == []

    def test_delete_active_step_selects_previous(self, store):
        first, second = add_questions(store, 2)
        store.set_active_step_id(second.id)
        assert store.delete_step(second.id) is None
        assert store.active_step_id == first.id

    def test_duplicate_step(self, store):
        (step,) = add_questions(store, 1)
        assert store.duplicate_step(step.id) is None
        copy = store.steps[2]
        assert copy.label == "Pergunta (cópia)"
        assert copy.id != step.id
        assert [b.type for b in copy.blocks] == [b.type for b in step.blocks]
        assert not {b.id for b in copy.blocks} & {b.id for b in step.blocks}
        assert store.active_step_id == copy.id
        assert store.duplicate_step("intro") is Rejection.FIXED_STEP


class TestMoveStep:
    def test_splice_semantics(self, store):
        a, b, c = add_questions(store, 3)
        assert store.move_step(1, 3) is None
        assert [s.id for s in store.steps] == ["intro", b.id, c.id, a.id, "result"]

    @pytest.mark.parametrize(
        "from_index, to_index, rejection",
        [
            (0, 2, Rejection.FIXED_STEP),
            (4, 2, Rejection.FIXED_STEP),
            (2, 0, Rejection.ANCHOR_VIOLATION),
            (2, 4, Rejection.ANCHOR_VIOLATION),
            (2, 9, Rejection.OUT_OF_RANGE),
            (-1, 2, Rejection.OUT_OF_RANGE),
        ],
    )
    def test_rejections(self, store, changes, from_index, to_index, rejection):
        add_questions(store, 3)
        changes.clear()
        before = [s.id for s in store.steps]
        assert store.move_step(from_index, to_index) is rejection
        assert [s.id for s in store.steps] == before
        assert changes == []

    def test_same_index_is_a_no_op(self, store, changes):
        add_questions(store, 2)
        changes.clear()
        assert store.move_step(1, 1) is None
        assert changes == []

    def test_anchors_hold_under_random_moves(self, store):
        add_questions(store, 5)
        rng = random.Random(7)
        for _ in range(200):
            store.move_step(rng.randrange(-1, 8), rng.randrange(-1, 8))
            assert store.steps[0].type == "intro"
            assert store.steps[-1].type == "result"
        assert len(store.steps) == 7


class TestWholesale:
    def test_set_steps_requires_anchors(self, store):
        question = create_step("question", [])
        intro, result = store.steps[0], store.steps[-1]
        assert store.set_steps([question, intro, result]) is Rejection.ANCHOR_VIOLATION
        assert store.set_steps([intro, question]) is Rejection.ANCHOR_VIOLATION
        assert store.set_steps([intro, question, question, result]) is Rejection.DUPLICATE_ID
        assert store.set_steps([intro, question, result]) is None
        assert step_types(store) == ["intro", "question", "result"]

    def test_set_outcomes(self, store):
        assert store.set_outcomes([]) is Rejection.LAST_OUTCOME
        outcomes = [create_outcome("A"), create_outcome("B")]
        assert store.set_outcomes(outcomes) is None
        assert [o.name for o in store.outcomes] == ["A", "B"]


class TestSelection:
    def test_selecting_result_selects_first_outcome(self, store, changes):
        store.set_active_step_id("result")
        assert store.selected_outcome_id == store.outcomes[0].id
        store.set_active_step_id("intro")
        assert store.selected_outcome_id is None
        assert changes == []

    def test_unknown_ids_rejected(self, store):
        assert store.set_active_step_id("missing") is Rejection.NOT_FOUND
        assert store.set_selected_outcome_id("missing") is Rejection.NOT_FOUND


class TestOutcomes:
    def test_add_outcome_selects_it(self, store):
        outcome = create_outcome("Pele oleosa", with_default_blocks=True)
        assert store.add_outcome(outcome) is None
        assert store.active_step_id == "result"
        assert store.selected_outcome_id == outcome.id
        assert store.add_outcome(outcome) is Rejection.DUPLICATE_ID

    def test_cannot_delete_last_outcome(self, store):
        only = store.outcomes[0]
        assert store.delete_outcome(only.id) is Rejection.LAST_OUTCOME
        assert len(store.outcomes) == 1

    def test_delete_selected_outcome_falls_back_to_first(self, store):
        first = store.outcomes[0]
        second = create_outcome("B")
        store.add_outcome(second)
        assert store.delete_outcome(second.id) is None
        assert store.selected_outcome_id == first.id

    def test_deleting_referenced_outcome_leaves_dangling_reference(self, store):
        target = create_outcome("B")
        store.add_outcome(target)
        (step,) = add_questions(store, 1)
        options = step.blocks[1]
        store.update_block(
            step.id,
            options.id,
            config={"items": [{"id": "opt", "text": "Sim", "outcomeId": target.id}]},
        )
        assert store.broken_references() == []
        assert store.delete_outcome(target.id) is None
        (broken,) = store.broken_references()
        assert broken.outcome_id == target.id
        assert broken.option_id == "opt"

    def test_update_and_move_outcome(self, store):
        a = store.outcomes[0]
        b = create_outcome("B")
        store.add_outcome(b)
        store.update_outcome(a.id, name="A")
        assert store.move_outcome(0, 1) is None
        assert [o.name for o in store.outcomes] == ["B", "A"]
        assert store.move_outcome(0, 5) is Rejection.OUT_OF_RANGE


class TestBlocks:
    def test_add_update_toggle_delete(self, store, changes):
        block = create_block("text", config={"content": "Oi"})
        assert store.add_block("intro", block, index=0) is None
        assert store.steps[0].blocks[0].id == block.id
        assert store.selected_block_id == block.id

        store.update_block("intro", block.id, config={"content": "Olá"})
        assert store.steps[0].blocks[0].config.content == "Olá"

        store.toggle_block("intro", block.id)
        assert store.steps[0].blocks[0].enabled is False

        assert store.delete_block("intro", block.id) is None
        assert all(b.id != block.id for b in store.steps[0].blocks)
        assert store.selected_block_id is None
        assert changes == ["add_block", "update_block", "toggle_block", "delete_block"]

    def test_block_rejections(self, store):
        block = create_block("text")
        assert store.add_block("missing", block) is Rejection.NOT_FOUND
        assert store.add_block("intro", block, index=99) is Rejection.OUT_OF_RANGE
        store.add_block("intro", block)
        assert store.add_block("intro", block) is Rejection.DUPLICATE_ID
        assert store.update_block("intro", "missing", enabled=False) is Rejection.NOT_FOUND
        assert store.move_block("intro", 0, 42) is Rejection.OUT_OF_RANGE

    def test_duplicate_and_move_block(self, store):
        intro_blocks = store.steps[0].blocks
        header = intro_blocks[0]
        store.duplicate_block("intro", header.id)
        assert intro_blocks[1].type == "header"
        assert intro_blocks[1].id != header.id
        store.move_block("intro", 0, len(intro_blocks) - 1)
        assert intro_blocks[-1].id == header.id

    def test_outcome_blocks(self, store):
        outcome = store.outcomes[0]
        block = create_block("banner", config={"text": "Últimas vagas"})
        assert store.add_outcome_block(outcome.id, block) is None
        store.update_outcome_block(outcome.id, block.id, config={"urgency": "danger"})
        assert outcome.blocks[-1].config.urgency == "danger"
        store.toggle_outcome_block(outcome.id, block.id)
        assert outcome.blocks[-1].enabled is False
        store.move_outcome_block(outcome.id, len(outcome.blocks) - 1, 0)
        assert outcome.blocks[0].id == block.id
        assert store.delete_outcome_block(outcome.id, block.id) is None
        assert store.delete_outcome_block("missing", block.id) is Rejection.NOT_FOUND


def test_listener_errors_do_not_undo_mutation(store, caplog):
    def broken(_operation):
        raise RuntimeError("boom")

    store.subscribe(broken)
    step = create_step("question", store.steps)
    assert store.add_step(step) is None
    assert store.find_step(step.id) is not None
    assert "Change listener failed" in caplog.text


def test_unsubscribe(store):
    seen = []
    unsubscribe = store.subscribe(seen.append)
    unsubscribe()
    add_questions(store, 1)
    assert seen == []
