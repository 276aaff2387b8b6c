"""Provider-neutral model request and response types."""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from deckweaver.models.usage import TokenUsage

Role = Literal["user", "assistant"]


class SystemBlock(BaseModel):
    """One block of system instructions.

    Large, stable blocks (source documents, fixed instructions) are marked ``cacheable``.
    """

    text: str
    cacheable: bool = False


class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str
    cacheable: bool = False


class DocumentBlock(BaseModel):
    """A document uploaded to the provider ahead of time, referenced by id."""

    type: Literal["document"] = "document"
    file_ref: str
    title: str | None = None
    cacheable: bool = False


ContentBlock = Annotated[Union[TextBlock, DocumentBlock], Field(discriminator="type")]


class ModelMessage(BaseModel):
    role: Role
    content: str | list[ContentBlock]

    def blocks(self) -> list[TextBlock | DocumentBlock]:
        if isinstance(self.content, str):
            return [TextBlock(text=self.content)]
        return list(self.content)


class ModelRequest(BaseModel):
    """A single model request."""

    max_tokens: int = Field(ge=1)
    temperature: float | None = None
    system: list[SystemBlock] = Field(default_factory=list)
    messages: list[ModelMessage] = Field(min_length=1)
    # Ask the provider for a JSON object response when it supports that.
    json_output: bool = False
    # Overrides the client's default model when set.
    model: str | None = None

    def with_documents(self, refs: list[DocumentBlock]) -> ModelRequest:
        """Prepend provider-hosted document blocks to the first user message."""

        if not refs or not self.messages or self.messages[0].role != "user":
            return self
        first = self.messages[0]
        merged = ModelMessage(role="user", content=[*refs, *first.blocks()])
        return self.model_copy(update={"messages": [merged, *self.messages[1:]]})

    def with_cached_tail(self) -> ModelRequest:
        """Mark the last block of the last user message as cacheable."""

        last_user = max((i for i, m in enumerate(self.messages) if m.role == "user"), default=None)
        if last_user is None:
            return self
        blocks = self.messages[last_user].blocks()
        blocks[-1] = blocks[-1].model_copy(update={"cacheable": True})
        messages = list(self.messages)
        messages[last_user] = ModelMessage(role="user", content=blocks)
        return self.model_copy(update={"messages": messages})


class ModelResponse(BaseModel):
    """Text and usage returned by a provider."""

    text: str
    usage: TokenUsage = Field(default_factory=TokenUsage)
    model: str = ""
    provider: str = ""
