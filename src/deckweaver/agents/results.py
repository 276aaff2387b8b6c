"""Tagged results returned by the planner and producer parsers."""

from __future__ import annotations

from dataclasses import dataclass, field

from deckweaver.models.card import ProducedCard
from deckweaver.models.plan import Conflict, Plan


@dataclass(frozen=True)
class PlanOk:
    """The model returned a valid plan."""

    plan: Plan


@dataclass(frozen=True)
class PlanConflict:
    """The model reported contradictions between sources instead of a plan."""

    conflicts: list[Conflict]


@dataclass(frozen=True)
class PlanInvalid:
    """The response broke the plan contract."""

    problems: list[str]


PlanResult = PlanOk | PlanConflict | PlanInvalid


@dataclass(frozen=True)
class BatchOk:
    """Validated cards for one batch plus non-fatal warnings."""

    cards: list[ProducedCard]
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class BatchInvalid:
    """The batch response broke the producer contract."""

    problems: list[str]


BatchResult = BatchOk | BatchInvalid
