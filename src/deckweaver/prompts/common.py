"""Prompt fragments shared by the planner, finalizer and producer."""

from __future__ import annotations

from html import escape
from typing import Sequence

from deckweaver.llm.messages import DocumentBlock, SystemBlock
from deckweaver.models.briefing import Briefing, LodConfig
from deckweaver.models.document import SourceDocument

GROUNDING_CONSTRAINT = (
    "ABSOLUTE CONSTRAINT: All content must come exclusively from the provided source documents. "
    "Do not infer, extrapolate, assume, or add any information, context, examples, definitions, "
    "or claims that are not explicitly present in the sources."
)


def expert_priming(subject: str | None) -> str:
    """Domain priming paragraph; empty when no subject is known."""

    if not subject or not subject.strip():
        return ""
    return (
        f"You are a domain expert on the following subject: {subject.strip()}. Use accurate "
        "terminology and professional judgment to organize and present the source material. "
        "Do NOT add facts, claims, data, or context from your own knowledge; work exclusively "
        "with what the source documents provide."
    )


def with_priming(role: str, subject: str | None) -> str:
    priming = expert_priming(subject)
    return f"{priming}\n\n{role}" if priming else role


def briefing_block(briefing: Briefing, *, include_deck_options: bool = True) -> str:
    lines = [
        f"Audience: {briefing.audience}",
        f"Presentation type: {briefing.presentation_type}",
        f"Objective: {briefing.objective}",
    ]
    if briefing.tone:
        lines.append(f"Tone: {briefing.tone}")
    if briefing.focus:
        lines.append(f"Focus: {briefing.focus}")
    if not include_deck_options:
        return "\n".join(lines)

    if briefing.min_cards is not None and briefing.max_cards is not None:
        lines.append(f"Card count: between {briefing.min_cards} and {briefing.max_cards} cards")
    elif briefing.min_cards is not None:
        lines.append(f"Card count: at least {briefing.min_cards} cards")
    elif briefing.max_cards is not None:
        lines.append(f"Card count: at most {briefing.max_cards} cards")

    options: list[str] = []
    if briefing.include_cover:
        options.append("- Include a cover card (title slide with deck overview)")
    if briefing.include_section_titles:
        options.append("- Include section title cards (divider cards for main sections)")
    if briefing.include_closing:
        options.append("- Include a closing card (takeaway or conclusion slide)")
    if options:
        lines.append("Deck structure:\n" + "\n".join(options))
    return "\n".join(lines)


def lod_block(cfg: LodConfig, *, strict: bool = False) -> str:
    line = f"Word count range per card: {cfg.word_count_min}-{cfg.word_count_max} words"
    if strict:
        line += " (STRICT: every card must fall within this range)"
    return f"Level of Detail: {cfg.label}\n{line}"


def document_context_block(documents: Sequence[SourceDocument], *, with_word_counts: bool) -> SystemBlock | None:
    """Inline documents wrapped in ``<document>`` tags, marked cacheable."""

    inline = [d for d in documents if d.is_inline]
    if not inline:
        return None
    parts: list[str] = []
    for d in inline:
        attrs = f'id="{escape(d.id)}" name="{escape(d.name)}"'
        if with_word_counts:
            attrs += f' wordCount="{d.word_count}"'
        parts.append(f"<document {attrs}>\n{d.content}\n</document>")
    text = "Source documents are provided in <document> tags. Reference them by their id attribute.\n\n" + "\n\n".join(parts)
    return SystemBlock(text=text, cacheable=True)


def provider_document_refs(documents: Sequence[SourceDocument]) -> list[DocumentBlock]:
    """Document blocks for documents hosted by the provider rather than inlined."""

    return [
        DocumentBlock(file_ref=d.provider_file_ref, title=d.name, cacheable=True)
        for d in documents
        if d.provider_file_ref and not d.is_inline
    ]
