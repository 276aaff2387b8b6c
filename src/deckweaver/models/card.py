"""Produced card models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ProducedCard(BaseModel):
    """Finished card text for one planned card."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    number: int = Field(ge=1)
    title: str = Field(min_length=1)
    content: str
    word_count: int = Field(ge=0)

    def to_markdown(self) -> str:
        return f"# {self.title}\n\n{self.content.strip()}\n"
