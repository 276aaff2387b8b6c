"""Producer prompts."""

from __future__ import annotations

import math
from typing import Sequence

from deckweaver.llm.messages import ModelMessage, ModelRequest, SystemBlock
from deckweaver.models.briefing import Briefing, Lod, LodConfig, lod_config
from deckweaver.models.card import ProducedCard
from deckweaver.models.document import SourceDocument
from deckweaver.models.plan import PlannedCard
from deckweaver.prompts.common import (
    GROUNDING_CONSTRAINT,
    briefing_block,
    document_context_block,
    lod_block,
    provider_document_refs,
    with_priming,
)
from deckweaver.utils.text import INSUFFICIENT_SOURCE, SOURCE_NOT_FOUND

PRODUCER_ROLE = f"""You are a presentation content writer. You receive a card plan with source references and key data points, and you write the content of each card.

CRITICAL RULES:
- Write ONLY the cards the plan specifies. Do not reorder, skip or add cards.
- Every sentence must be directly traceable to the source documents.
- Do NOT infer, extrapolate, assume or add information the sources do not contain: no background, industry norms, definitions, implications, predictions or commentary.
- When a card lists keyDataPoints, those exact figures and quotes MUST appear in its content.
- When a source reference matches nothing in the documents, write "{SOURCE_NOT_FOUND}" for it and move on.
- Never fill gaps from general knowledge. When the sources cannot support the word count, write what they support and add "{INSUFFICIENT_SOURCE}".

Your output MUST be a single valid JSON object with no text before or after it."""

PRODUCER_PROCESS = """Work through each card of the plan in order:

1. LOCATE SOURCES
   Find the referenced sections by heading text or fallback description. Use the closest match when a heading differs slightly; note it when nothing matches.

2. EXTRACT KEY DATA
   Identify the relevant passages before writing and anchor the content to them. Every listed keyDataPoint appears verbatim.

3. WRITE
   Using only the located sources and the card's guidance:
   - lead with what the emphasis says to lead with
   - match the card's tone
   - leave out whatever the exclusions assign to another card
   - stay inside the word range; count your words
   - make implied relationships explicit (cause and effect, sequence, hierarchy, comparison)
   - keep phrasing concise, without filler or repetition

4. DEDUPLICATE
   Before finalizing a card, check it against the cards already written. Remove any repeated statistic, fact or argument, or replace it with a short back-reference. Use crossReferences to relate cards without repeating them."""

_HEADING_RULES = """
   Heading hierarchy:
   - No "# Card Title" heading; write the body only
   - ## for main sections, ### for subsections when the word count allows
   - Never skip a level and never use #
   - Number headings only for inherently sequential content (steps, phases, ranked items)"""

_FORMAT_RULES: dict[Lod, str] = {
    Lod.EXECUTIVE: """5. FORMAT (Executive level, strict):
   - Bold for one or two key metrics or terms only
   - At most one ## heading
   - No tables, no ###, no blockquotes
   - One tight paragraph or two to three bullets""",
    Lod.STANDARD: """5. FORMAT (Standard level):
   - Bullets for non-sequential items, numbered lists for ordered ones
   - Tables only when comparing three or more items across several dimensions
   - Bold for key terms and metrics
   - Pick the structure that fits the data instead of flattening it into paragraphs""",
    Lod.DETAILED: """5. FORMAT (Detailed level, full markdown range):
   - Bullets for non-sequential items, numbered lists for ordered ones
   - Tables for multi-dimensional comparisons and structured data
   - Bold for key terms and metrics
   - Blockquotes for notable quotes and callouts
   - Pick the structure that fits the data instead of flattening it into paragraphs""",
}

PRODUCER_OUTPUT_SCHEMA = """6. OUTPUT exactly this JSON structure:
{
  "status": "ok",
  "cards": [
    {
      "number": 1,
      "title": "the card title from the plan, unchanged",
      "content": "markdown body without the # title heading",
      "wordCount": 0
    }
  ]
}

Do NOT add extra fields. Do NOT omit cards. Do NOT change card titles.
Every card's wordCount MUST be within the specified range."""

# Words per token, with headroom for markdown and JSON escaping.
_TOKENS_PER_WORD = 1.5
_OUTPUT_HEADROOM = 1.3
_ENVELOPE_TOKENS = 500


def formatting_rules(lod: Lod | str) -> str:
    """LOD-specific formatting rules, including the shared heading rules."""

    return _FORMAT_RULES[Lod(lod)] + "\n   - Never add data, facts or claims the sources do not state" + _HEADING_RULES


def format_plan_for_producer(cards: Sequence[PlannedCard]) -> str:
    """Render planned cards as readable narrative rather than raw JSON."""

    blocks: list[str] = []
    for card in cards:
        sources = "\n".join(f"    - {s.location} (from document: {s.document})" for s in card.sources)
        key_data = "\n".join(f'    - "{p}"' for p in card.key_data_points) or "    (none specified)"
        target = f"\n  Word target: ~{card.word_target} words" if card.word_target else ""
        g = card.guidance
        blocks.append(
            f"Card {card.number}: {card.title}\n"
            f"  Description: {card.description}{target}\n"
            f"  Sources:\n{sources}\n"
            f"  Key data points to include:\n{key_data}\n"
            f"  Guidance:\n"
            f"    Emphasis: {g.emphasis or '-'}\n"
            f"    Tone: {g.tone or '-'}\n"
            f"    Exclude: {g.exclude or '-'}\n"
            f"  Cross-references: {card.cross_references or 'none'}"
        )
    return "\n\n".join(blocks)


def other_cards_context(all_cards: Sequence[PlannedCard], batch: Sequence[PlannedCard]) -> str:
    """Titles of the deck's cards outside ``batch`` so the batch stays in its lane."""

    in_batch = {c.number for c in batch}
    others = [c for c in all_cards if c.number not in in_batch]
    if not others:
        return ""
    lines = "\n".join(f"  - Card {c.number}: {c.title} ({c.description})" for c in others)
    return (
        f"This is part of a larger deck of {len(all_cards)} cards. Other cards in the deck "
        f"(written separately, do not cover their topics):\n{lines}"
    )


def covered_summary(completed: Sequence[ProducedCard], plan_cards: Sequence[PlannedCard]) -> str:
    """Short extractive summary of cards already produced by completed batches."""

    if not completed:
        return ""
    by_number = {c.number: c for c in plan_cards}
    lines: list[str] = []
    for card in sorted(completed, key=lambda c: c.number):
        planned = by_number.get(card.number)
        points = ", ".join(f'"{p}"' for p in planned.key_data_points[:3]) if planned else ""
        lines.append(f"  - Card {card.number}: {card.title}" + (f" (uses {points})" if points else ""))
    return (
        "Already covered by cards written earlier (do not repeat these statistics or arguments):\n"
        + "\n".join(lines)
    )


def batch_max_tokens(batch_size: int, cfg: LodConfig, cap: int) -> int:
    """Output token budget for one batch."""

    per_card = math.ceil(cfg.word_count_max * _TOKENS_PER_WORD * _OUTPUT_HEADROOM)
    return min(cap, batch_size * per_card + _ENVELOPE_TOKENS)


def build_producer_request(
    *,
    briefing: Briefing,
    lod: Lod,
    cards: Sequence[PlannedCard],
    documents: Sequence[SourceDocument],
    subject: str | None = None,
    batch_context: str = "",
    max_tokens_cap: int = 64000,
    temperature: float | None = None,
) -> ModelRequest:
    """Build the production request for one batch of cards."""

    cfg = lod_config(lod)
    instructions = "\n\n".join(
        [
            with_priming(PRODUCER_ROLE, subject),
            PRODUCER_PROCESS,
            formatting_rules(lod),
            PRODUCER_OUTPUT_SCHEMA,
        ]
    )
    system = [SystemBlock(text=instructions)]
    doc_block = document_context_block(documents, with_word_counts=False)
    if doc_block is not None:
        system.append(doc_block)

    context = f"\n{batch_context}\n" if batch_context else ""
    user = f"""{briefing_block(briefing, include_deck_options=False)}

{lod_block(cfg, strict=True)}
{context}
Card plan to execute:

{format_plan_for_producer(cards)}

{GROUNDING_CONSTRAINT}

Write the content for each card now."""

    request = ModelRequest(
        max_tokens=batch_max_tokens(len(cards), cfg, max_tokens_cap),
        temperature=temperature,
        system=system,
        messages=[ModelMessage(role="user", content=user)],
        json_output=True,
    )
    return request.with_documents(provider_document_refs(documents))
