"""Pydantic models used across the project."""

from __future__ import annotations

from deckweaver.models.briefing import LOD_LEVELS, Briefing, Lod, LodConfig, estimate_card_count, lod_config
from deckweaver.models.card import ProducedCard
from deckweaver.models.document import DocumentProvider, SourceDocument
from deckweaver.models.plan import (
    CardGuidance,
    Conflict,
    Plan,
    PlanFeedback,
    PlanMetadata,
    PlannedCard,
    PlanQuestion,
    QuestionOption,
    SourceRef,
)
from deckweaver.models.usage import TokenUsage, UsageEntry, UsageSink, UsageTracker

__all__ = [
    "LOD_LEVELS",
    "Briefing",
    "Lod",
    "LodConfig",
    "estimate_card_count",
    "lod_config",
    "ProducedCard",
    "DocumentProvider",
    "SourceDocument",
    "CardGuidance",
    "Conflict",
    "Plan",
    "PlanFeedback",
    "PlanMetadata",
    "PlannedCard",
    "PlanQuestion",
    "QuestionOption",
    "SourceRef",
    "TokenUsage",
    "UsageEntry",
    "UsageSink",
    "UsageTracker",
]
