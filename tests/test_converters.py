"""Tests for legacy conversion, payload migration and record projection."""

import pytest

from quizbuilder.builder_store import BuilderStore
from quizbuilder.converters import (
    apply_document_to_quiz,
    create_default_document,
    is_valid_visual_builder_payload,
    load_document,
    migrate_document_payload,
    quiz_to_visual_builder,
)
from quizbuilder.models.blocks import MediaBlock, OpaqueBlock
from quizbuilder.models.document import CURRENT_SCHEMA_VERSION


def question(qid, text, options, allow_multiple=False, **extra):
    return {
        "id": qid,
        "text": text,
        "options": [{"id": f"{qid}-{i}", "text": t} for i, t in enumerate(options)],
        "allowMultiple": allow_multiple,
        **extra,
    }


def blocks_by_type(container):
    return {block.type: block for block in container.blocks}


class TestQuizToVisualBuilder:
    def test_skincare_scenario(self, skincare_quiz):
        document = quiz_to_visual_builder(skincare_quiz)
        assert len(document.steps) == 2
        intro = document.steps[0]
        assert intro.type == "intro"
        assert intro.is_fixed is True

        blocks = blocks_by_type(intro)
        assert blocks["header"].config.title == "Skincare Quiz"
        assert blocks["header"].config.description == "Find your perfect routine"
        assert blocks["media"].config.url == "https://x/cover.jpg"
        assert blocks["media"].enabled is True
        assert blocks["button"].config.text == "Começar"
        assert document.steps[-1].type == "result"

    def test_two_option_question(self, make_quiz):
        quiz = make_quiz(questions=[question("q1", "Tipo de pele?", ["Seca", "Oleosa"])])
        document = quiz_to_visual_builder(quiz)
        step = document.steps[1]
        assert (step.id, step.type, step.label, step.is_fixed) == ("q1", "question", "P1", False)
        options = blocks_by_type(step)["options"]
        assert [item.text for item in options.config.items] == ["Seca", "Oleosa"]
        assert [item.id for item in options.config.items] == ["q1-0", "q1-1"]
        assert options.config.selection_type == "single"

    @pytest.mark.parametrize("questions, outcomes", [(0, 0), (1, 0), (3, 2), (5, 4)])
    def test_step_and_outcome_counts(self, make_quiz, questions, outcomes):
        quiz = make_quiz(
            questions=[question(f"q{i}", f"Q{i}", ["a", "b", "c"]) for i in range(questions)],
            outcomes=[{"id": f"o{i}", "title": f"O{i}"} for i in range(outcomes)],
        )
        document = quiz_to_visual_builder(quiz)
        assert len(document.steps) == questions + 2
        assert len(document.outcomes) == max(outcomes, 1)
        assert [s.label for s in document.steps[1:-1]] == [f"P{i + 1}" for i in range(questions)]

    def test_zero_outcomes_synthesizes_default(self, make_quiz):
        document = quiz_to_visual_builder(make_quiz())
        (outcome,) = document.outcomes
        assert outcome.name == "Resultado 1"
        assert outcome.blocks

    def test_missing_title_and_optional_fields(self, make_quiz):
        document = quiz_to_visual_builder(make_quiz())
        intro = document.steps[0]
        assert blocks_by_type(intro)["header"].config.title == "Bem-vindo!"
        assert not any(isinstance(b, MediaBlock) for b in intro.blocks)

    def test_question_media_and_multiple_selection(self, make_quiz):
        quiz = make_quiz(
            questions=[
                question(
                    "q1",
                    "Quais?",
                    ["A", "B"],
                    allow_multiple=True,
                    imageUrl="https://img/q1.png",
                )
            ]
        )
        step = quiz_to_visual_builder(quiz).steps[1]
        assert [b.id for b in step.blocks] == ["q1-header", "q1-media", "q1-options"]
        assert step.blocks[1].config.url == "https://img/q1.png"
        assert step.blocks[2].config.selection_type == "multiple"

    def test_option_routing_is_copied(self, make_quiz):
        quiz = make_quiz(
            questions=[
                {
                    "id": "q1",
                    "text": "?",
                    "options": [{"id": "a", "text": "A", "targetOutcomeId": "o1", "icon": "🌞"}],
                }
            ],
            outcomes=[{"id": "o1", "title": "Sol"}],
        )
        item = quiz_to_visual_builder(quiz).steps[1].blocks[-1].config.items[0]
        assert item.outcome_id == "o1"
        assert item.emoji == "🌞"

    def test_lead_gen_step(self, make_quiz):
        quiz = make_quiz(
            questions=[question("q1", "?", ["a"])],
            leadGen={"enabled": True, "fields": ["name", "email", "phone"], "ctaText": "Enviar"},
        )
        document = quiz_to_visual_builder(quiz)
        assert [s.type for s in document.steps] == ["intro", "question", "lead-gen", "result"]
        lead_gen = document.steps[2]
        assert lead_gen.label == "Captura"
        blocks = blocks_by_type(lead_gen)
        assert blocks["header"].config.title == "Quase lá!"
        fields = blocks["fields"].config.items
        assert [(f.label, f.type) for f in fields] == [
            ("Nome", "text"),
            ("Email", "email"),
            ("Telefone", "phone"),
        ]
        assert blocks["button"].config.text == "Enviar"

    def test_lead_gen_defaults_to_email_field(self, make_quiz):
        document = quiz_to_visual_builder(make_quiz(leadGen={"enabled": True}))
        fields = blocks_by_type(document.steps[1])["fields"].config.items
        assert [f.type for f in fields] == ["email"]

    def test_disabled_lead_gen_is_skipped(self, make_quiz):
        document = quiz_to_visual_builder(make_quiz(leadGen={"enabled": False}))
        assert [s.type for s in document.steps] == ["intro", "result"]

    def test_outcome_blocks(self, make_quiz):
        quiz = make_quiz(
            outcomes=[
                {
                    "id": "o1",
                    "title": "Pele seca",
                    "description": "Hidrate.",
                    "imageUrl": "https://img/o1.png",
                    "ctaText": "Comprar",
                    "ctaUrl": "https://shop",
                },
                {"id": "o2", "title": "Pele mista"},
            ]
        )
        first, second = quiz_to_visual_builder(quiz).outcomes
        assert [b.type for b in first.blocks] == ["header", "media", "text", "button"]
        button = first.blocks[-1].config
        assert (button.text, button.action, button.url) == ("Comprar", "url", "https://shop")
        assert [b.type for b in second.blocks] == ["header", "text"]

    def test_null_fields_fall_back(self, make_quiz):
        quiz = make_quiz(
            title=None,
            description=None,
            questions=[{"id": "q1", "text": None, "options": [{"id": "a", "text": None}]}],
            outcomes=[{"id": "o1", "title": None, "description": None}],
            isPublished=None,
        )
        assert (quiz.title, quiz.is_published) == ("", False)

        document = quiz_to_visual_builder(quiz)
        assert document.steps[0].blocks[0].config.title == "Bem-vindo!"
        question_blocks = blocks_by_type(document.steps[1])
        assert question_blocks["header"].config.title == ""
        assert [o.text for o in question_blocks["options"].config.items] == [""]
        outcome_blocks = blocks_by_type(document.outcomes[0])
        assert outcome_blocks["header"].config.title == "Seu resultado"
        assert outcome_blocks["text"].config.content == ""

    def test_colliding_question_ids_are_made_unique(self, make_quiz):
        quiz = make_quiz(
            questions=[
                question("same", "A?", ["a"]),
                question("same", "B?", ["b"]),
                question("result", "C?", ["c"]),
                question("lead-gen", "D?", ["d"]),
            ],
            leadGen={"enabled": True},
        )
        document = quiz_to_visual_builder(quiz)
        assert [s.id for s in document.steps] == [
            "intro",
            "same",
            "same-2",
            "result-2",
            "lead-gen-2",
            "lead-gen",
            "result",
        ]
        assert document.steps[2].blocks[0].id == "same-2-header"
        assert [s.type for s in document.steps][-2:] == ["lead-gen", "result"]

    def test_duplicate_outcome_ids_are_made_unique(self, make_quiz):
        quiz = make_quiz(outcomes=[{"id": "o1", "title": "A"}, {"id": "o1", "title": "B"}])
        outcomes = quiz_to_visual_builder(quiz).outcomes
        assert [(o.id, o.name) for o in outcomes] == [("o1", "A"), ("o1-2", "B")]
        assert outcomes[1].blocks[0].id == "o1-2-header"

    def test_deterministic_content(self, make_quiz):
        quiz = make_quiz(
            title="T",
            questions=[question("q1", "?", ["a", "b"])],
            outcomes=[{"id": "o1", "title": "O"}],
        )
        assert quiz_to_visual_builder(quiz).snapshot() == quiz_to_visual_builder(quiz).snapshot()


def test_create_default_document():
    document = create_default_document()
    assert [s.type for s in document.steps] == ["intro", "question", "result"]
    assert document.steps[1].label == "P1"
    assert [o.name for o in document.outcomes] == ["Resultado 1"]


class TestMigration:
    def test_payload_shape_check(self):
        assert is_valid_visual_builder_payload({"steps": [], "outcomes": []})
        assert not is_valid_visual_builder_payload({"steps": []})
        assert not is_valid_visual_builder_payload(None)

    def test_current_version_is_unchanged(self):
        payload = create_default_document().to_payload()
        document, changed = migrate_document_payload(payload)
        assert changed is False
        assert document.to_payload() == payload

    def test_version_zero_is_upgraded(self):
        raw = {
            "steps": [
                {"id": "q", "type": "question", "label": "P1", "blocks": []},
                {"id": "intro", "type": "intro", "label": "Intro", "blocks": []},
            ],
            "outcomes": [],
        }
        document, changed = migrate_document_payload(raw)
        assert changed is True
        assert document.schema_version == CURRENT_SCHEMA_VERSION
        assert [s.type for s in document.steps] == ["intro", "question", "result"]
        assert document.steps[0].is_fixed is True
        assert document.steps[0].settings.show_progress is False
        assert document.steps[1].settings.show_progress is True
        assert [o.name for o in document.outcomes] == ["Resultado 1"]

    def test_newer_version_loads_as_is(self, caplog):
        payload = create_default_document().to_payload()
        payload["schemaVersion"] = CURRENT_SCHEMA_VERSION + 1
        document, changed = migrate_document_payload(payload)
        assert document.schema_version == CURRENT_SCHEMA_VERSION + 1
        assert changed is False
        assert "newer than" in caplog.text

    def test_duplicate_block_ids_are_reassigned(self):
        payload = create_default_document().to_payload()
        blocks = payload["steps"][0]["blocks"]
        blocks[1]["id"] = blocks[0]["id"]
        document, changed = migrate_document_payload(payload)
        ids = [b.id for b in document.steps[0].blocks]
        assert changed is True
        assert len(ids) == len(set(ids))

    def test_surplus_anchors_are_demoted_or_dropped(self, caplog):
        payload = create_default_document().to_payload()
        steps = payload["steps"]
        steps.insert(2, {**steps[0], "id": "intro2"})
        steps.insert(1, {"id": "old-result", "type": "result", "isFixed": True, "blocks": []})

        document, changed = migrate_document_payload(payload)
        assert changed is True
        assert [s.type for s in document.steps] == ["intro", "question", "promo", "result"]
        demoted = document.find_step("intro2")
        assert demoted.is_fixed is False
        assert document.find_step("old-result") is None
        assert "Surplus intro step intro2" in caplog.text

        store = BuilderStore(document)
        assert store.set_steps(store.steps) is None
        assert store.delete_step("intro2") is None

    def test_duplicate_step_and_outcome_ids_are_reassigned(self):
        payload = create_default_document().to_payload()
        payload["steps"][1]["id"] = "intro"
        payload["outcomes"].append(dict(payload["outcomes"][0]))

        document, changed = migrate_document_payload(payload)
        assert changed is True
        step_ids = [s.id for s in document.steps]
        outcome_ids = [o.id for o in document.outcomes]
        assert step_ids[0] == "intro"
        assert len(set(step_ids)) == 3
        assert len(set(outcome_ids)) == 2

    def test_unknown_blocks_survive(self):
        payload = create_default_document().to_payload()
        payload["steps"][0]["blocks"].append(
            {"id": "x", "type": "quiz-timer", "enabled": True, "config": {"seconds": 5}}
        )
        document, _ = migrate_document_payload(payload)
        block = document.steps[0].blocks[-1]
        assert isinstance(block, OpaqueBlock)
        assert document.to_payload()["steps"][0]["blocks"][-1] == payload["steps"][0]["blocks"][-1]


class TestLoadDocument:
    def test_stored_payload_wins(self, make_quiz):
        stored = create_default_document()
        quiz = make_quiz(
            questions=[question("q1", "?", ["a"]), question("q2", "?", ["b"])],
            visualBuilderData=stored.to_payload(),
        )
        document, needs_persist = load_document(quiz)
        assert needs_persist is False
        assert document.snapshot() == stored.snapshot()

    def test_legacy_quiz_is_converted(self, make_quiz):
        quiz = make_quiz(questions=[question("q1", "?", ["a"])])
        document, needs_persist = load_document(quiz)
        assert needs_persist is True
        assert document.steps[1].id == "q1"

    def test_malformed_payload_falls_back_to_conversion(self, make_quiz):
        quiz = make_quiz(
            title="T",
            visualBuilderData={"steps": [{"type": "intro"}], "outcomes": []},
        )
        document, needs_persist = load_document(quiz)
        assert needs_persist is True
        assert document.steps[0].blocks[0].config.title == "T"


def test_apply_document_projects_intro_and_keeps_publish_state(make_quiz):
    quiz = make_quiz(
        title="Old",
        isPublished=True,
        publishedVersion={"steps": []},
        stats={"views": 12},
    )
    document = create_default_document()
    document.steps[0].blocks[0] = document.steps[0].blocks[0].model_copy(
        update={"config": document.steps[0].blocks[0].config.model_copy(update={"title": "New"})}
    )
    saved = apply_document_to_quiz(quiz, document, "user-1")
    assert saved.title == "New"
    assert saved.owner_id == "user-1"
    assert saved.is_published is True
    assert saved.published_version == {"steps": []}
    assert saved.stats.views == 12
    assert saved.visual_builder_data == document.to_payload()
    assert saved.created_at is not None
    assert quiz.title == "Old"
