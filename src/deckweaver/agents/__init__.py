"""Agents."""

from __future__ import annotations

from deckweaver.agents.batching import BatchOutcome, BatchScheduler, batch_plan
from deckweaver.agents.planner import PlanGenerator
from deckweaver.agents.producer import DeckProducer, ProductionInputs, ProductionResult
from deckweaver.agents.results import BatchInvalid, BatchOk, PlanConflict, PlanInvalid, PlanOk

__all__ = [
    "BatchOutcome",
    "BatchScheduler",
    "batch_plan",
    "PlanGenerator",
    "DeckProducer",
    "ProductionInputs",
    "ProductionResult",
    "BatchInvalid",
    "BatchOk",
    "PlanConflict",
    "PlanInvalid",
    "PlanOk",
]
