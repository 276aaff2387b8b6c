"""Planner and finalizer prompts."""

from __future__ import annotations

import json
from typing import Sequence

from deckweaver.llm.messages import ModelMessage, ModelRequest, SystemBlock
from deckweaver.models.briefing import Briefing, Lod, lod_config
from deckweaver.models.document import SourceDocument
from deckweaver.models.plan import Plan, PlanFeedback
from deckweaver.prompts.common import (
    GROUNDING_CONSTRAINT,
    briefing_block,
    document_context_block,
    lod_block,
    provider_document_refs,
    with_priming,
)

PLANNER_ROLE = """You are a senior information architect who decomposes source documents into card plans for visual communication.

Your plan is executed by a separate content writer who:
- cannot see your reasoning, only the plan
- must locate the exact source sections you reference
- has strict word limits per card

Make the plan precise enough to execute without guessing. Reference ONLY content that exists in the provided source documents. Never invent topics, infer data, or suggest content the sources do not contain. Every fact a card will carry must be traceable to a specific section of a specific document.

Your output MUST be a single valid JSON object with no text before or after it."""

PLANNER_INSTRUCTIONS = """Work through these steps in order:

1. CONFLICT CHECK (always first)
   Look for sources that state incompatible facts about the same thing (different figures for one metric, opposite conclusions about one subject). Differences of emphasis, perspective or scope are NOT conflicts. If you find conflicts, output only a conflict report and stop.

2. DOCUMENT RELATIONSHIPS
   Choose a document strategy: "dissolve" (same broad topic, blend freely), "preserve" (distinct sub-topics, keep document boundaries) or "hybrid".

3. CONTENT INVENTORY
   List every major topic and which documents cover it. Topics covered by several documents become ONE card. Sub-points nest under their parent card.

4. CARD COUNT
   Let the volume and structure of the sources, the briefing and the word range decide. Never split one idea across cards. Minimum 3 and maximum 40 content cards; cover, section title and closing cards do not count.

5. CARDS. For each card give:
   - number: 1, 2, 3, ... in deck order with no gaps
   - title: at most 5 words, specific (no "Overview" or "Introduction")
   - description: one sentence
   - wordTarget: a target inside the word range, higher for dense material
   - sources: the document id plus the EXACT heading text, or a fallbackDescription when there is no heading
   - keyDataPoints: 2-5 VERBATIM quotes or figures copied character for character from the source
   - guidance: {emphasis, tone, exclude}; exclude names nearby content that belongs to another card
   - crossReferences: how the card relates to others, or null
   Cards are written in batches of up to 12, so keep each card's guidance self-contained.

6. DEDUPLICATION
   No two cards may cover the same topic, statistic or argument. Consolidate or split explicitly through guidance.exclude.

7. DECISION QUESTIONS
   Ask 3-8 questions where the reviewer's choice would change the produced content (emphasis, scope, structure, tone). Each has 2-4 mutually exclusive options, a recommendedKey, and per option a producerInstruction: a concrete directive that can be pasted into the writer's prompt. Do not ask whether to include a card, about formatting, or about topics absent from the sources."""

REVISION_INSTRUCTIONS = """This is a REVISION. You produced a plan earlier and the reviewer has responded.
- Honour all feedback: the general comment and every answered question. Fold answers into the affected cards' guidance.
- Keep the numbering of unchanged cards. New cards are appended at the end.
- Do NOT reintroduce excluded cards unless the general comment asks for them.
- Ask new questions only about decisions the revision itself introduced; never re-ask answered ones.
- Add a "revisionNotes" field describing what changed and why.
- Renumber the final card list 1..N in deck order."""

FINALIZER_INSTRUCTIONS = """You receive a card plan the reviewer has finished reviewing. Excluded cards are already removed; do not reintroduce them.

Produce the FINALIZED plan:
- Merge every resolved decision directive into the guidance (emphasis, tone or exclude) of the card(s) it affects. Adjust ordering, crossReferences or structure if a directive requires it.
- Apply the reviewer's general comment, if any.
- Re-run the deduplication check.
- Output NO questions array. The writer will never see the questions, so each card's guidance must carry every decision that affects it.

You are restructuring a plan, not writing content. Do not invent topics or cards.

Your output MUST be a single valid JSON object with no text before or after it."""

_CARD_SCHEMA = """{
      "number": 1,
      "title": "string, at most 5 words",
      "description": "string, one sentence",
      "sources": [
        {"document": "doc id", "heading": "EXACT heading text", "fallbackDescription": "only when there is no heading"}
      ],
      "wordTarget": 0,
      "keyDataPoints": ["verbatim quote or figure from the source"],
      "guidance": {"emphasis": "string", "tone": "string", "exclude": "string"},
      "crossReferences": "string or null"
    }"""

_METADATA_SCHEMA = """{
    "category": "presentation type from the briefing",
    "lod": "string",
    "sourceWordCount": 0,
    "cardCount": 0,
    "documentStrategy": "dissolve | preserve | hybrid",
    "documentRelationships": "string"
  }"""


def planner_output_schema(is_revision: bool) -> str:
    revision_field = ',\n  "revisionNotes": "what changed from the previous plan and why"' if is_revision else ""
    return f"""Respond with EXACTLY one of these JSON structures.

CONFLICT RESPONSE:
{{
  "status": "conflict",
  "conflicts": [
    {{
      "description": "what the contradiction is",
      "sourceA": {{"document": "doc id", "section": "section name"}},
      "sourceB": {{"document": "doc id", "section": "section name"}},
      "severity": "high | medium | low"
    }}
  ]
}}

PLAN RESPONSE:
{{
  "status": "ok",
  "metadata": {_METADATA_SCHEMA},
  "cards": [
    {_CARD_SCHEMA}
  ],
  "questions": [
    {{
      "id": "q1",
      "question": "string",
      "options": [{{"key": "a", "label": "string", "producerInstruction": "string"}}],
      "recommendedKey": "a",
      "context": "optional one sentence"
    }}
  ]{revision_field}
}}

Rules:
- Do NOT add extra fields. Do NOT omit required fields.
- Every source "document" must be one of the provided document ids.
- Every source has a "heading" or a "fallbackDescription".
- keyDataPoints are VERBATIM text from the sources, never paraphrased.
- guidance is the object shown above, never a plain string."""


def finalizer_output_schema() -> str:
    return f"""Respond with EXACTLY this JSON structure:
{{
  "status": "ok",
  "metadata": {_METADATA_SCHEMA},
  "cards": [
    {_CARD_SCHEMA}
  ]
}}

Rules:
- Do NOT include a questions array.
- Do NOT add extra fields. Do NOT omit required fields.
- Number the cards 1..N in deck order.
- keyDataPoints stay VERBATIM."""


def _document_listing(documents: Sequence[SourceDocument]) -> str:
    lines = []
    for i, d in enumerate(documents, start=1):
        size = f"{d.word_count} words" if d.is_inline else "provider-hosted file"
        lines.append(f"  {i}. {d.name} ({d.id}, {size})")
    return "\n".join(lines)


def _feedback_block(previous: Plan, feedback: PlanFeedback) -> str:
    answers: list[str] = []
    for qid, key in feedback.question_answers.items():
        q = previous.question(qid)
        label = ""
        if q is not None:
            for opt in q.options:
                if opt.key == key:
                    label = f" ({opt.label})" if opt.label else ""
        answers.append(f"  {qid}: {key}{label}")

    lines = [
        f"General comment: {feedback.general_comment.strip() or '(none)'}",
        (
            "Question answers (resolved decisions, incorporate into card guidance):\n" + "\n".join(answers)
            if answers
            else "Question answers: (none)"
        ),
    ]
    if feedback.excluded_cards:
        lines.append(
            "Excluded cards (do NOT reintroduce): " + ", ".join(str(n) for n in sorted(feedback.excluded_cards))
        )
    return "\n".join(lines)


def build_planner_request(
    *,
    briefing: Briefing,
    lod: Lod,
    documents: Sequence[SourceDocument],
    subject: str | None = None,
    previous_plan: Plan | None = None,
    feedback: PlanFeedback | None = None,
    max_tokens: int = 16384,
    temperature: float | None = 0.1,
) -> ModelRequest:
    """Build the planning (or revision) request.

    Documents are kept in the caller's order; the model is told to respect it.
    """

    cfg = lod_config(lod)
    is_revision = previous_plan is not None

    instructions = [with_priming(PLANNER_ROLE, subject), PLANNER_INSTRUCTIONS]
    if is_revision:
        instructions.append(REVISION_INSTRUCTIONS)
    instructions.append(planner_output_schema(is_revision))
    system = [SystemBlock(text="\n\n".join(instructions))]

    doc_block = document_context_block(documents, with_word_counts=True)
    if doc_block is not None:
        system.append(doc_block)

    total_words = sum(d.word_count for d in documents)
    brief = briefing_block(briefing)

    if previous_plan is None:
        user = f"""{brief}

{lod_block(cfg)}

Source metadata:
- Total word count: {total_words}
- Document count: {len(documents)}
- Documents (in the user's priority order; respect this sequence):
{_document_listing(documents)}

{GROUNDING_CONSTRAINT}

Produce the card plan now."""
    else:
        fb = feedback or PlanFeedback.from_plan(previous_plan)
        previous_json = json.dumps(previous_plan.to_prompt_json(), indent=2, ensure_ascii=False)
        user = f"""This is a REVISION of the previous plan.

Previous plan:
{previous_json}

Reviewer feedback:
{_feedback_block(previous_plan, fb)}

{brief}

{lod_block(cfg)}

Documents:
{_document_listing(documents)}

{GROUNDING_CONSTRAINT}

Revise the plan based on the feedback above."""

    request = ModelRequest(
        max_tokens=max_tokens,
        temperature=temperature,
        system=system,
        messages=[ModelMessage(role="user", content=user)],
        json_output=True,
    )
    return request.with_documents(provider_document_refs(documents)).with_cached_tail()


def build_finalizer_request(
    *,
    briefing: Briefing,
    lod: Lod,
    plan: Plan,
    subject: str | None = None,
    max_tokens: int = 16384,
    temperature: float | None = 0.1,
) -> ModelRequest:
    """Build the request that folds reviewer decisions into card guidance.

    ``plan`` is the reviewer-filtered plan; its questions carry the chosen answers. The finalizer
    restructures the plan only, so source documents are not sent.
    """

    cfg = lod_config(lod)
    system = [
        SystemBlock(text="\n\n".join([with_priming(FINALIZER_INSTRUCTIONS, subject), finalizer_output_schema()]))
    ]

    decisions: list[str] = []
    for q in plan.questions:
        opt = q.chosen_option()
        if opt is None:
            continue
        directive = opt.producer_instruction or opt.label
        decisions.append(f"- {q.question}\n  Decision: {opt.label or opt.key}\n  Directive: {directive}")

    cards_json = json.dumps(
        plan.model_copy(update={"questions": [], "general_comment": None}).to_prompt_json(),
        indent=2,
        ensure_ascii=False,
    )
    comment = (plan.general_comment or "").strip()

    user = f"""{briefing_block(briefing, include_deck_options=False)}

{lod_block(cfg)}

Reviewed plan:
{cards_json}

Resolved decisions:
{chr(10).join(decisions) if decisions else "(none)"}

General feedback: {comment or "(none)"}

Produce the finalized plan now."""

    return ModelRequest(
        max_tokens=max_tokens,
        temperature=temperature,
        system=system,
        messages=[ModelMessage(role="user", content=user)],
        json_output=True,
    )
