"""Session states, error records and the mutable session data behind :class:`DeckSession`."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from deckweaver.errors import InputTooLargeError, ModelCallError, ProducerSchemaError, SchemaError
from deckweaver.models.briefing import Briefing, Lod
from deckweaver.models.card import ProducedCard
from deckweaver.models.document import SourceDocument
from deckweaver.models.plan import Plan, PlanFeedback


class SessionState(str, Enum):
    IDLE = "idle"
    PLANNING = "planning"
    PLAN_READY = "plan_ready"
    REVISING = "revising"
    APPROVING = "approving"
    PRODUCING = "producing"
    COMPLETE = "complete"
    ERROR = "error"
    ABORTED = "aborted"


# States in which a model operation is in flight.
BUSY_STATES = frozenset(
    {SessionState.PLANNING, SessionState.REVISING, SessionState.APPROVING, SessionState.PRODUCING}
)

ErrorKind = Literal["transient", "terminal", "schema", "conflict", "too_large"]


class ErrorInfo(BaseModel):
    """Session-visible description of a failed operation."""

    kind: ErrorKind
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    failed_operation: str | None = None

    @classmethod
    def from_exception(cls, exc: BaseException, operation: str) -> ErrorInfo:
        if isinstance(exc, InputTooLargeError):
            return cls(
                kind="too_large",
                message=str(exc),
                details={"estimated_tokens": exc.estimated_tokens, "limit": exc.limit},
                failed_operation=operation,
            )
        if isinstance(exc, SchemaError):
            return cls(kind="schema", message=str(exc), details=exc.details(), failed_operation=operation)
        if isinstance(exc, ModelCallError):
            return cls(
                kind="transient" if exc.retryable else "terminal",
                message=str(exc),
                details={"status_code": exc.status_code, "attempts": exc.attempts},
                failed_operation=operation,
            )
        return cls(kind="terminal", message=str(exc) or type(exc).__name__, failed_operation=operation)


def batch_error_entry(index: int, numbers: list[int], exc: BaseException) -> dict[str, Any]:
    info = ErrorInfo.from_exception(exc, "approve_plan")
    entry: dict[str, Any] = {"batch": index + 1, "cards": numbers, "kind": info.kind, "message": info.message}
    if isinstance(exc, ProducerSchemaError):
        entry["problems"] = exc.problems
    return entry


@dataclass
class SessionData:
    """Everything a session owns. Replaced wholesale on reset."""

    session_id: str
    state: SessionState = SessionState.IDLE
    briefing: Briefing | None = None
    lod: Lod | None = None
    subject: str | None = None
    documents: list[SourceDocument] = field(default_factory=list)
    plan: Plan | None = None
    approved_plan: Plan | None = None
    cards: list[ProducedCard] = field(default_factory=list)
    error: ErrorInfo | None = None

    # Last state the session can be recovered to after an error.
    stable_state: SessionState = SessionState.IDLE
    revision_count: int = 0
    last_feedback: PlanFeedback | None = None

    def snapshot(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "lod": self.lod.value if self.lod is not None else None,
            "subject": self.subject,
            "documents": len(self.documents),
            "plan_cards": len(self.plan.cards) if self.plan is not None else None,
            "included_cards": len(self.plan.cards) - len(self.plan.excluded_numbers) if self.plan else None,
            "cards": len(self.cards),
            "revision_count": self.revision_count,
            "error": self.error.kind if self.error is not None else None,
        }
