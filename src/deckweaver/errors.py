"""Exception hierarchy shared across the pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from deckweaver.models.usage import TokenUsage


class DeckWeaverError(Exception):
    """Base class for all deckweaver errors."""


class ModelCallError(DeckWeaverError):
    """A model request failed after the client gave up on it.

    ``retryable`` records how the last underlying failure was classified, so callers can tell
    an exhausted transient failure from a terminal one.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retryable: bool = False,
        credential_index: int = 0,
        attempts: int = 0,
        usage: TokenUsage | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable
        self.credential_index = credential_index
        self.attempts = attempts
        self.usage = usage


class ModelCallCancelled(DeckWeaverError):
    """The caller cancelled the request. This is an outcome, not a failure."""


class SchemaError(DeckWeaverError):
    """Model output did not match the expected JSON contract."""

    def __init__(self, message: str, problems: list[str] | None = None) -> None:
        super().__init__(message)
        self.problems: list[str] = list(problems or [])

    def details(self) -> dict[str, Any]:
        return {"problems": self.problems}


class PlanSchemaError(SchemaError):
    """The planner (or finalizer) returned an invalid plan."""


class ProducerSchemaError(SchemaError):
    """A producer batch returned invalid card content."""

    def __init__(
        self,
        message: str,
        problems: list[str] | None = None,
        *,
        batch_index: int | None = None,
    ) -> None:
        super().__init__(message, problems)
        self.batch_index = batch_index

    def details(self) -> dict[str, Any]:
        return {"problems": self.problems, "batch_index": self.batch_index}


class OperationRejected(DeckWeaverError):
    """A session operation was refused before doing anything."""


class InvalidTransitionError(OperationRejected):
    """The operation is not valid from the session's current state."""

    def __init__(self, operation: str, state: str) -> None:
        super().__init__(f"{operation}() is not allowed while session is {state}")
        self.operation = operation
        self.state = state


class InputTooLargeError(DeckWeaverError):
    """The documents would exceed the model's input budget; nothing was sent."""

    def __init__(self, estimated_tokens: int, limit: int) -> None:
        super().__init__(
            f"Documents are too large for one request: ~{estimated_tokens:,} tokens (limit {limit:,})"
        )
        self.estimated_tokens = estimated_tokens
        self.limit = limit
