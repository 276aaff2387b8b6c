"""Source document models."""

from __future__ import annotations

from typing import Protocol

from pydantic import BaseModel

from deckweaver.utils.text import count_words


class SourceDocument(BaseModel):
    """A normalized document supplied by the document subsystem.

    Either ``content`` is inlined, or the document was uploaded to the provider ahead of time
    and is referenced by ``provider_file_ref``.
    """

    id: str
    name: str
    content: str | None = None
    provider_file_ref: str | None = None

    @property
    def is_inline(self) -> bool:
        return bool(self.content)

    @property
    def is_usable(self) -> bool:
        return bool(self.content) or bool(self.provider_file_ref)

    @property
    def word_count(self) -> int:
        return count_words(self.content) if self.content else 0


class DocumentProvider(Protocol):
    """Returns the working set of documents for a deck."""

    def list_documents(self) -> list[SourceDocument]:
        """List documents in the user's priority order."""
