from __future__ import annotations

from deckweaver.prompts.common import GROUNDING_CONSTRAINT, expert_priming
from deckweaver.prompts.planner import (
    FINALIZER_INSTRUCTIONS,
    PLANNER_ROLE,
    build_finalizer_request,
    build_planner_request,
)
from deckweaver.prompts.producer import (
    PRODUCER_ROLE,
    batch_max_tokens,
    build_producer_request,
    covered_summary,
    format_plan_for_producer,
    other_cards_context,
)

__all__ = [
    "GROUNDING_CONSTRAINT",
    "expert_priming",
    "FINALIZER_INSTRUCTIONS",
    "PLANNER_ROLE",
    "build_finalizer_request",
    "build_planner_request",
    "PRODUCER_ROLE",
    "batch_max_tokens",
    "build_producer_request",
    "covered_summary",
    "format_plan_for_producer",
    "other_cards_context",
]
