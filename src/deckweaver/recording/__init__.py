"""Recording utilities for session events."""

from __future__ import annotations

from deckweaver.recording.file_recorder import FileEventRecorder, iter_events

__all__ = ["FileEventRecorder", "iter_events"]
