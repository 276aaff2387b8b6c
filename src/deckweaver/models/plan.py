"""Card plan models.

Field names follow the camelCase JSON contract the planner emits; Python code uses the
snake_case attribute names.
"""

from __future__ import annotations

from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class _PlanModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class SourceRef(_PlanModel):
    """Where a card's content lives inside a source document."""

    document: str = Field(min_length=1)
    heading: str | None = None
    section: str | None = None
    fallback_description: str | None = None

    @model_validator(mode="after")
    def _needs_location(self) -> SourceRef:
        if not (self.heading or self.section or self.fallback_description):
            raise ValueError("source needs one of heading, section or fallbackDescription")
        return self

    @property
    def location(self) -> str:
        return self.heading or self.section or self.fallback_description or "unspecified section"


class CardGuidance(_PlanModel):
    """Writing guidance for one card."""

    emphasis: str = ""
    tone: str = ""
    exclude: str = ""


class PlannedCard(_PlanModel):
    """One card specification in a plan."""

    number: int = Field(ge=1)
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    sources: list[SourceRef] = Field(min_length=1)
    key_data_points: list[str] = Field(default_factory=list)
    guidance: CardGuidance
    word_target: int | None = Field(default=None, ge=1)
    cross_references: str | None = None

    # Reviewer toggle; never sent to the model.
    included: bool = Field(default=True, exclude=True)


class QuestionOption(_PlanModel):
    key: str = Field(min_length=1)
    label: str = ""
    producer_instruction: str = ""


class PlanQuestion(_PlanModel):
    """A decision the planner wants the reviewer to make."""

    id: str = Field(min_length=1)
    question: str = Field(min_length=1, validation_alias=AliasChoices("question", "text"))
    options: list[QuestionOption] = Field(default_factory=list)
    recommended_key: str | None = None
    context: str | None = None
    answer: str | None = None

    def chosen_option(self) -> QuestionOption | None:
        if self.answer is None:
            return None
        for opt in self.options:
            if opt.key == self.answer:
                return opt
        return None


class PlanMetadata(_PlanModel):
    category: str = ""
    lod: str = ""
    source_word_count: int = 0
    card_count: int = 0
    document_strategy: Literal["dissolve", "preserve", "hybrid"] = "dissolve"
    document_relationships: str = ""


class Plan(_PlanModel):
    """Ordered card plan plus reviewer-facing questions."""

    cards: list[PlannedCard]
    questions: list[PlanQuestion] = Field(default_factory=list)
    metadata: PlanMetadata | None = None
    general_comment: str | None = None
    revision_notes: str | None = None

    def card(self, number: int) -> PlannedCard | None:
        for c in self.cards:
            if c.number == number:
                return c
        return None

    def question(self, question_id: str) -> PlanQuestion | None:
        for q in self.questions:
            if q.id == question_id:
                return q
        return None

    @property
    def excluded_numbers(self) -> list[int]:
        return [c.number for c in self.cards if not c.included]

    @property
    def answered_questions(self) -> list[PlanQuestion]:
        return [q for q in self.questions if q.answer]

    def included_plan(self) -> Plan:
        """Copy with only included cards, renumbered 1..N in their current order."""

        cards = [
            c.model_copy(update={"number": i})
            for i, c in enumerate((c for c in self.cards if c.included), start=1)
        ]
        return self.model_copy(update={"cards": cards})

    def to_prompt_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ConflictSide(_PlanModel):
    document: str = ""
    section: str = ""


class Conflict(_PlanModel):
    """Two sources that state incompatible facts."""

    description: str = ""
    source_a: ConflictSide = Field(default_factory=ConflictSide)
    source_b: ConflictSide = Field(default_factory=ConflictSide)
    severity: Literal["high", "medium", "low"] = "medium"


class PlanFeedback(BaseModel):
    """Reviewer feedback sent back to the planner on revision."""

    excluded_cards: list[int] = Field(default_factory=list)
    question_answers: dict[str, str] = Field(default_factory=dict)
    accept_all_recommended: bool = False
    general_comment: str = ""

    @classmethod
    def from_plan(cls, plan: Plan) -> PlanFeedback:
        return cls(
            excluded_cards=plan.excluded_numbers,
            question_answers={q.id: q.answer for q in plan.questions if q.answer},
            general_comment=plan.general_comment or "",
        )
