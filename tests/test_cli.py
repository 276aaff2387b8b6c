"""Tests for CLI helpers."""

from __future__ import annotations

import asyncio

import pytest

from deckweaver.cli import _apply_review_command, render_deck
from deckweaver.errors import OperationRejected
from deckweaver.models.briefing import Lod
from deckweaver.models.card import ProducedCard

from fakes import BRIEFING, DOC, QUESTIONS, PipelineTransport, make_session, plan_json


def test_render_deck_orders_cards() -> None:
    cards = [
        ProducedCard(number=2, title="Costs", content="Costs fell.", word_count=2),
        ProducedCard(number=1, title="Growth", content="Revenue grew.\n", word_count=2),
    ]

    deck = render_deck(cards)

    assert deck.startswith("# Growth\n\nRevenue grew.\n")
    assert deck.index("# Growth") < deck.index("# Costs")
    assert "\n---\n" in deck


def test_review_commands_edit_the_draft() -> None:
    session = make_session(PipelineTransport(planner=lambda r: plan_json(3, questions=QUESTIONS)))
    asyncio.run(session.start_planning(BRIEFING, [DOC], Lod.STANDARD))

    assert _apply_review_command(session, "x 2") is None
    assert session.plan.excluded_numbers == [2]
    assert _apply_review_command(session, "a q1 b") is None
    assert session.plan.question("q1").answer == "b"
    assert _apply_review_command(session, "c  keep it short ") is None
    assert session.plan.general_comment == "keep it short"
    assert _apply_review_command(session, "approve") == "approve"
    assert _apply_review_command(session, "bogus") is None

    with pytest.raises(OperationRejected):
        _apply_review_command(session, "x 9")
