"""File-based event recorder.

Each session gets its own directory under the artifacts root; events are appended to
``events.jsonl`` in emission order and can be replayed with :func:`iter_events`.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from deckweaver.events import ContentType, SessionEvent
from deckweaver.logging import get_logger

logger = get_logger(__name__)

EVENTS_FILENAME = "events.jsonl"


@dataclass
class FileEventRecorder:
    """Append-only JSONL recorder. Usable directly as a session ``on_event`` sink."""

    path: Path
    _last_seq: int = field(default=0, init=False, repr=False)

    def __post_init__(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

    @classmethod
    def for_session(cls, artifacts_dir: Path, session_id: str) -> FileEventRecorder:
        return cls(artifacts_dir / session_id / EVENTS_FILENAME)

    @property
    def session_dir(self) -> Path:
        return self.path.parent

    def append(self, event: SessionEvent) -> None:
        if event.seq <= self._last_seq:
            logger.warning("Out-of-order event", extra={"seq": event.seq, "last_seq": self._last_seq})
        self._last_seq = max(self._last_seq, event.seq)
        line = json.dumps(event.model_dump(mode="json"), ensure_ascii=False)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")

    def __call__(self, event: SessionEvent) -> None:
        self.append(event)


def iter_events(path: Path, *, content_types: Iterable[ContentType] | None = None) -> list[SessionEvent]:
    """Load events from a JSONL file in recorded order, optionally only some content types."""

    if not path.exists():
        return []
    wanted = set(content_types) if content_types is not None else None
    events: list[SessionEvent] = []
    for line in path.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        event = SessionEvent.model_validate_json(line)
        if wanted is None or event.content_type in wanted:
            events.append(event)
    return events
