"""Session event model.

A session emits a sequence of events as it moves through its states. Events can be recorded to
JSONL and replayed later (debugging, audits, UI playback).
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """High-level event categories."""

    SYSTEM = "system"
    LLM = "llm"
    NOTICE = "notice"
    ERROR = "error"


class ContentType(str, Enum):
    """Semantic types within event streams."""

    STATE_CHANGED = "state_changed"
    PLAN_READY = "plan_ready"

    # Production
    BATCH_STARTED = "batch_started"
    BATCH_DONE = "batch_done"
    BATCH_FAILED = "batch_failed"
    DECK_DONE = "deck_done"

    USAGE = "usage"
    WARNING = "warning"


class SessionEvent(BaseModel):
    """A single event in a session."""

    session_id: str
    seq: int = Field(ge=1)
    ts: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    event_type: EventType
    content_type: ContentType

    data: str | dict | list | None = None
    metadata: dict[str, str | int | float | bool | None] = Field(default_factory=dict)
