"""Strict decoding of planner and producer responses.

Model output is never trusted: each parser validates the JSON against the contract and returns
a tagged result instead of guessing at a shape.
"""

from __future__ import annotations

from typing import Any, Sequence

from pydantic import ValidationError

from deckweaver.agents.results import BatchInvalid, BatchOk, BatchResult, PlanConflict, PlanInvalid, PlanOk, PlanResult
from deckweaver.logging import get_logger
from deckweaver.models.briefing import LodConfig
from deckweaver.models.card import ProducedCard
from deckweaver.models.document import SourceDocument
from deckweaver.models.plan import Conflict, Plan, PlannedCard
from deckweaver.utils.json_extract import parse_json_object
from deckweaver.utils.text import count_words, grounding_markers, missing_data_points

logger = get_logger(__name__)


def _validation_problems(e: ValidationError) -> list[str]:
    problems = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        problems.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return problems


def _load(raw: str) -> tuple[Any, list[str]]:
    try:
        return parse_json_object(raw), []
    except ValueError as e:
        return None, [str(e)]


def _document_index(documents: Sequence[SourceDocument]) -> dict[str, str]:
    """Map both document ids and names to the document id."""

    index: dict[str, str] = {}
    for d in documents:
        index.setdefault(d.name, d.id)
    for d in documents:
        index[d.id] = d.id
    return index


def _check_plan(plan: Plan, documents: Sequence[SourceDocument]) -> tuple[Plan, list[str]]:
    """Check numbering and source references; normalize references to document ids."""

    problems: list[str] = []
    for pos, card in enumerate(plan.cards, start=1):
        if card.number != pos:
            problems.append(f"cards[{pos - 1}]: number {card.number} breaks the 1..N sequence (expected {pos})")

    index = _document_index(documents)
    cards: list[PlannedCard] = []
    for card in plan.cards:
        sources = []
        for s in card.sources:
            doc_id = index.get(s.document.strip())
            if doc_id is None:
                problems.append(f"card {card.number}: source references unknown document {s.document!r}")
                sources.append(s)
            else:
                sources.append(s.model_copy(update={"document": doc_id}))
        # Inclusion is a reviewer decision; whatever the model said is discarded.
        cards.append(card.model_copy(update={"sources": sources, "included": True}))

    questions = []
    seen: set[str] = set()
    for q in plan.questions:
        if q.id in seen:
            problems.append(f"question {q.id!r}: duplicate id")
            continue
        seen.add(q.id)
        keys = {o.key for o in q.options}
        recommended = q.recommended_key if q.recommended_key in keys else None
        if q.recommended_key is not None and recommended is None:
            logger.warning("Dropping unknown recommendedKey", extra={"question": q.id, "key": q.recommended_key})
        questions.append(q.model_copy(update={"recommended_key": recommended, "answer": None}))

    return plan.model_copy(update={"cards": cards, "questions": questions}), problems


def _decode_plan(data: Any, documents: Sequence[SourceDocument]) -> PlanOk | PlanInvalid:
    if isinstance(data, list):
        data = {"cards": data}
    if not isinstance(data, dict):
        return PlanInvalid([f"expected a JSON object, got {type(data).__name__}"])

    status = data.get("status", "ok")
    if status != "ok":
        return PlanInvalid([f"unexpected status {status!r}"])
    cards = data.get("cards")
    if not isinstance(cards, list) or not cards:
        return PlanInvalid(["cards: missing or empty"])

    payload = {k: v for k, v in data.items() if k not in ("status", "generalComment", "general_comment")}
    try:
        plan = Plan.model_validate(payload)
    except ValidationError as e:
        return PlanInvalid(_validation_problems(e))

    plan, problems = _check_plan(plan, documents)
    if problems:
        return PlanInvalid(problems)
    return PlanOk(plan)


def parse_plan_response(raw: str, documents: Sequence[SourceDocument]) -> PlanResult:
    """Decode a planner (or revision) response.

    Accepts a plan object, a bare array of cards, or a conflict report.
    """

    data, problems = _load(raw)
    if problems:
        return PlanInvalid(problems)

    if isinstance(data, dict) and data.get("status") == "conflict":
        items = data.get("conflicts")
        if not isinstance(items, list) or not items:
            return PlanInvalid(["conflicts: missing or empty in a conflict response"])
        try:
            conflicts = [Conflict.model_validate(c) for c in items]
        except ValidationError as e:
            return PlanInvalid(_validation_problems(e))
        return PlanConflict(conflicts)

    return _decode_plan(data, documents)


def parse_finalizer_response(raw: str, documents: Sequence[SourceDocument]) -> PlanOk | PlanInvalid:
    """Decode a finalizer response. Any questions the model returns are dropped."""

    data, problems = _load(raw)
    if problems:
        return PlanInvalid(problems)
    result = _decode_plan(data, documents)
    if isinstance(result, PlanOk) and result.plan.questions:
        logger.debug("Finalizer returned questions; dropping them", extra={"count": len(result.plan.questions)})
        return PlanOk(result.plan.model_copy(update={"questions": []}))
    return result


def parse_producer_response(raw: str, batch: Sequence[PlannedCard], cfg: LodConfig) -> BatchResult:
    """Decode and validate one producer batch.

    Hard failures: bad JSON, ``status == "error"``, a card number missing, duplicated or outside
    the batch, a changed title, a word count outside the LOD range. Missing key data points and
    grounding markers only produce warnings.
    """

    data, problems = _load(raw)
    if problems:
        return BatchInvalid(problems)
    if not isinstance(data, dict):
        return BatchInvalid([f"expected a JSON object, got {type(data).__name__}"])

    status = data.get("status", "ok")
    if status == "error":
        reason = data.get("error") or data.get("message") or "producer reported an error"
        return BatchInvalid([str(reason)])
    if status != "ok":
        return BatchInvalid([f"unexpected status {status!r}"])

    items = data.get("cards")
    if not isinstance(items, list) or not items:
        return BatchInvalid(["cards: missing or empty"])

    planned = {c.number: c for c in batch}
    produced: dict[int, ProducedCard] = {}
    seen: set[int] = set()
    warnings: list[str] = []

    for i, item in enumerate(items):
        if not isinstance(item, dict):
            problems.append(f"cards[{i}]: expected an object")
            continue
        content = item.get("content")
        if isinstance(content, str):
            # The reported wordCount is advisory; the counted one is authoritative.
            item = {**item, "wordCount": count_words(content)}
        try:
            card = ProducedCard.model_validate(item)
        except ValidationError as e:
            problems.extend(f"cards[{i}].{p}" for p in _validation_problems(e))
            continue

        plan_card = planned.get(card.number)
        if plan_card is None:
            problems.append(f"card {card.number}: not part of this batch")
            continue
        if card.number in seen:
            problems.append(f"card {card.number}: appears more than once")
            continue
        seen.add(card.number)
        if card.title.strip() != plan_card.title.strip():
            problems.append(f"card {card.number}: title {card.title!r} does not match plan title {plan_card.title!r}")
        if not cfg.contains(card.word_count):
            problems.append(f"card {card.number}: {card.word_count} words is outside {cfg.range_text}")

        missing = missing_data_points(card.content, plan_card.key_data_points)
        if missing:
            logger.warning(
                "Key data points missing from card", extra={"card": card.number, "missing": missing}
            )
            warnings.append(f"Card {card.number}: {len(missing)} key data point(s) not found in content")
        markers = grounding_markers(card.content)
        if markers:
            warnings.append(f"Card {card.number} ({card.title}): {', '.join(markers)}")

        produced[card.number] = card.model_copy(update={"title": plan_card.title})

    for number in planned:
        if number not in seen:
            problems.append(f"card {number}: missing from response")

    if problems:
        return BatchInvalid(problems)
    return BatchOk(cards=[produced[n] for n in sorted(produced)], warnings=warnings)
