"""Briefing and level-of-detail models."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Lod(str, Enum):
    """Level of detail for produced cards."""

    EXECUTIVE = "executive"
    STANDARD = "standard"
    DETAILED = "detailed"


@dataclass(frozen=True)
class LodConfig:
    """Static word-count range for one level of detail."""

    lod: Lod
    label: str
    word_count_min: int
    word_count_max: int
    midpoint: int

    def contains(self, word_count: int) -> bool:
        return self.word_count_min <= word_count <= self.word_count_max

    @property
    def range_text(self) -> str:
        return f"{self.word_count_min}-{self.word_count_max} words"


LOD_LEVELS: dict[Lod, LodConfig] = {
    Lod.EXECUTIVE: LodConfig(Lod.EXECUTIVE, "Executive", 70, 100, 85),
    Lod.STANDARD: LodConfig(Lod.STANDARD, "Standard", 200, 250, 225),
    Lod.DETAILED: LodConfig(Lod.DETAILED, "Detailed", 450, 500, 475),
}

MIN_CARDS = 3
MAX_CARDS_WARNING = 40


def lod_config(lod: Lod | str) -> LodConfig:
    """Look up the word-count configuration for a level of detail."""

    return LOD_LEVELS[Lod(lod)]


def estimate_card_count(total_word_count: int, lod: Lod | str) -> tuple[int, int, int]:
    """Rough card count estimate from total source words.

    Returns:
        ``(estimate, min, max)``; never below ``MIN_CARDS``.
    """

    cfg = lod_config(lod)
    estimate = max(MIN_CARDS, round(total_word_count / cfg.midpoint))
    return (
        estimate,
        max(MIN_CARDS, math.floor(estimate * 0.7)),
        math.ceil(estimate * 1.3),
    )


class Briefing(BaseModel):
    """What the deck is for. Supplied once when a session starts."""

    model_config = ConfigDict(frozen=True)

    audience: str = Field(min_length=1, max_length=100)
    presentation_type: str = Field(min_length=1, max_length=80)
    objective: str = Field(min_length=1, max_length=150)
    tone: str | None = Field(default=None, max_length=80)
    focus: str | None = Field(default=None, max_length=120)

    min_cards: int | None = Field(default=None, ge=1)
    max_cards: int | None = Field(default=None, ge=1)
    include_cover: bool = False
    include_section_titles: bool = False
    include_closing: bool = False

    @model_validator(mode="after")
    def _check_card_bounds(self) -> Briefing:
        if self.min_cards is not None and self.max_cards is not None and self.min_cards > self.max_cards:
            raise ValueError("min_cards must not exceed max_cards")
        return self
