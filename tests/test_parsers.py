"""Tests for strict plan and producer response decoding."""

from __future__ import annotations

import json

from deckweaver.agents.parsers import parse_finalizer_response, parse_plan_response, parse_producer_response
from deckweaver.agents.results import BatchInvalid, BatchOk, PlanConflict, PlanInvalid, PlanOk
from deckweaver.models.briefing import Lod, lod_config
from deckweaver.models.plan import Plan
from deckweaver.utils.text import SOURCE_NOT_FOUND

from fakes import DOC, QUESTIONS, card_body, plan_json, plan_payload

STANDARD = lod_config(Lod.STANDARD)


def test_valid_plan_is_accepted() -> None:
    result = parse_plan_response(plan_json(3, questions=QUESTIONS), [DOC])

    assert isinstance(result, PlanOk)
    plan = result.plan
    assert [c.number for c in plan.cards] == [1, 2, 3]
    assert plan.cards[0].guidance.emphasis == "figures"
    assert plan.questions[0].recommended_key == "a"
    assert plan.questions[0].answer is None
    assert plan.metadata is not None and plan.metadata.card_count == 3


def test_fenced_plan_with_prose_is_accepted() -> None:
    raw = "Here is the plan:\n```json\n" + plan_json(2) + "\n```\nLet me know."
    assert isinstance(parse_plan_response(raw, [DOC]), PlanOk)


def test_bare_card_array_is_accepted() -> None:
    raw = json.dumps(plan_payload(2)["cards"])
    result = parse_plan_response(raw, [DOC])
    assert isinstance(result, PlanOk)
    assert len(result.plan.cards) == 2


def test_document_name_is_normalized_to_id() -> None:
    result = parse_plan_response(plan_json(2, doc="report.md"), [DOC])
    assert isinstance(result, PlanOk)
    assert {s.document for c in result.plan.cards for s in c.sources} == {"doc-1"}


def test_question_text_alias_is_accepted() -> None:
    payload = plan_payload(2)
    payload["questions"] = [{"id": "q1", "text": "Which angle?", "answer": "x"}]
    result = parse_plan_response(json.dumps(payload), [DOC])
    assert isinstance(result, PlanOk)
    assert result.plan.questions[0].question == "Which angle?"
    assert result.plan.questions[0].answer is None


def test_non_contiguous_numbering_is_rejected() -> None:
    payload = plan_payload(3)
    payload["cards"][2]["number"] = 5
    result = parse_plan_response(json.dumps(payload), [DOC])
    assert isinstance(result, PlanInvalid)
    assert any("1..N" in p for p in result.problems)


def test_dangling_source_reference_is_rejected() -> None:
    result = parse_plan_response(plan_json(2, doc="missing-doc"), [DOC])
    assert isinstance(result, PlanInvalid)
    assert any("missing-doc" in p for p in result.problems)


def test_missing_required_field_is_rejected() -> None:
    payload = plan_payload(2)
    del payload["cards"][1]["description"]
    result = parse_plan_response(json.dumps(payload), [DOC])
    assert isinstance(result, PlanInvalid)
    assert any("description" in p for p in result.problems)


def test_source_without_location_is_rejected() -> None:
    payload = plan_payload(1)
    payload["cards"][0]["sources"] = [{"document": "doc-1"}]
    assert isinstance(parse_plan_response(json.dumps(payload), [DOC]), PlanInvalid)


def test_invalid_json_and_empty_cards_are_rejected() -> None:
    assert isinstance(parse_plan_response("I could not do it.", [DOC]), PlanInvalid)
    assert isinstance(parse_plan_response('{"status": "ok", "cards": []}', [DOC]), PlanInvalid)


def test_conflict_report_is_returned() -> None:
    raw = json.dumps(
        {
            "status": "conflict",
            "conflicts": [
                {
                    "description": "Q3 revenue growth differs",
                    "sourceA": {"document": "doc-1", "section": "Growth"},
                    "sourceB": {"document": "doc-2", "section": "Summary"},
                    "severity": "high",
                }
            ],
        }
    )
    result = parse_plan_response(raw, [DOC])
    assert isinstance(result, PlanConflict)
    assert result.conflicts[0].source_b.document == "doc-2"
    assert result.conflicts[0].severity == "high"


def test_finalizer_drops_questions() -> None:
    result = parse_finalizer_response(plan_json(2, questions=QUESTIONS), [DOC])
    assert isinstance(result, PlanOk)
    assert result.plan.questions == []


def _batch(n: int):
    return Plan.model_validate(plan_payload(n)).cards


def _reply(cards: list[dict], status: str = "ok") -> str:
    return json.dumps({"status": status, "cards": cards})


def _card(number: int, words: int = 225, *, title: str | None = None, extra: str = "") -> dict:
    content = card_body(words - len(extra.split())) + (f" {extra}" if extra else "")
    return {"number": number, "title": title or f"Topic {number}", "content": content, "wordCount": words}


def test_producer_batch_is_accepted() -> None:
    result = parse_producer_response(_reply([_card(2), _card(1)]), _batch(2), STANDARD)
    assert isinstance(result, BatchOk)
    assert [c.number for c in result.cards] == [1, 2]
    assert all(c.word_count == 225 for c in result.cards)
    assert result.warnings == []


def test_backticks_inside_card_content_survive_parsing() -> None:
    card = _card(1, extra="Run ```pip install deckweaver``` first.")
    result = parse_producer_response(_reply([card]), _batch(1), STANDARD)
    assert isinstance(result, BatchOk)
    assert "```pip install deckweaver```" in result.cards[0].content


def test_counted_words_override_reported_word_count() -> None:
    card = _card(1, words=120)
    card["wordCount"] = 225
    result = parse_producer_response(_reply([card]), _batch(1), STANDARD)
    assert isinstance(result, BatchInvalid)
    assert any("120 words" in p for p in result.problems)


def test_producer_rejects_title_change_duplicates_and_omissions() -> None:
    batch = _batch(3)
    renamed = parse_producer_response(_reply([_card(1, title="Other"), _card(2), _card(3)]), batch, STANDARD)
    assert isinstance(renamed, BatchInvalid)

    duplicated = parse_producer_response(_reply([_card(1), _card(1), _card(2), _card(3)]), batch, STANDARD)
    assert isinstance(duplicated, BatchInvalid)
    assert any("more than once" in p for p in duplicated.problems)

    missing = parse_producer_response(_reply([_card(1), _card(3)]), batch, STANDARD)
    assert isinstance(missing, BatchInvalid)
    assert any("card 2: missing" in p for p in missing.problems)

    foreign = parse_producer_response(_reply([_card(1), _card(2), _card(3), _card(9)]), batch, STANDARD)
    assert isinstance(foreign, BatchInvalid)


def test_producer_error_status_is_rejected() -> None:
    result = parse_producer_response(json.dumps({"status": "error", "error": "no sources"}), _batch(1), STANDARD)
    assert isinstance(result, BatchInvalid)
    assert result.problems == ["no sources"]


def test_missing_data_points_and_markers_only_warn() -> None:
    payload = plan_payload(1)
    payload["cards"][0]["keyDataPoints"] = ["Revenue grew 12%"]
    batch = Plan.model_validate(payload).cards

    result = parse_producer_response(_reply([_card(1, extra=SOURCE_NOT_FOUND)]), batch, STANDARD)

    assert isinstance(result, BatchOk)
    assert len(result.warnings) == 2
    assert any("key data point" in w for w in result.warnings)
    assert any(SOURCE_NOT_FOUND in w for w in result.warnings)
