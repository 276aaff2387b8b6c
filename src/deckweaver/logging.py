"""Logging utilities.

Records carry the current session id and pipeline phase from context variables, and any
``extra={...}`` fields passed at the call site are rendered as ``key=value`` pairs.
"""

from __future__ import annotations

import contextlib
import contextvars
import logging
from pathlib import Path
from typing import Any, Iterator

from rich.logging import RichHandler

_session_var: contextvars.ContextVar[str] = contextvars.ContextVar("deckweaver_session", default="-")
_phase_var: contextvars.ContextVar[str] = contextvars.ContextVar("deckweaver_phase", default="-")

# Attributes every LogRecord has; anything else on a record came from ``extra``.
_RECORD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {
    "message",
    "asctime",
    "session",
    "phase",
    "fields",
}

_FORMAT = "%(asctime)s %(levelname)s session=%(session)s phase=%(phase)s %(name)s: %(message)s%(fields)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"
# RichHandler prints its own level column.
_CONSOLE_FORMAT = "session=%(session)s phase=%(phase)s %(name)s: %(message)s%(fields)s"


def _render_fields(record: logging.LogRecord) -> str:
    pairs = [
        f"{k}={v!r}" if isinstance(v, str) else f"{k}={v}"
        for k, v in record.__dict__.items()
        if k not in _RECORD_ATTRS
    ]
    return (" | " + " ".join(pairs)) if pairs else ""


class _ContextFilter(logging.Filter):
    """Inject session context and rendered extra fields into log records."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        record.session = _session_var.get()  # type: ignore[attr-defined]
        record.phase = _phase_var.get()  # type: ignore[attr-defined]
        record.fields = _render_fields(record)  # type: ignore[attr-defined]
        return True


@contextlib.contextmanager
def session_context(*, session_id: str, phase: str | None = None) -> Iterator[None]:
    """Bind the session id (and optionally the phase) for the duration of the block."""

    token_session = _session_var.set(session_id)
    token_phase = _phase_var.set(phase or _phase_var.get())
    try:
        yield
    finally:
        _session_var.reset(token_session)
        _phase_var.reset(token_phase)


def set_phase(phase: str) -> None:
    _phase_var.set(phase)


def configure_logging(level: str = "INFO") -> None:
    """Route the root logger through a rich console handler.

    Safe to call more than once; the existing rich handler is reconfigured instead of duplicated.
    """

    root = logging.getLogger()
    root.setLevel(level)
    handler = next((h for h in root.handlers if isinstance(h, RichHandler)), None)
    if handler is None:
        handler = RichHandler(rich_tracebacks=True, show_time=False, show_level=True, show_path=False)
        root.addHandler(handler)
    handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    if not any(isinstance(f, _ContextFilter) for f in handler.filters):
        handler.addFilter(_ContextFilter())


def add_file_handler(path: Path) -> logging.Handler:
    """Also write plain-text log lines to ``path`` (e.g. one file per session)."""

    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT))
    handler.addFilter(_ContextFilter())
    logging.getLogger().addHandler(handler)
    return handler


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_exception(logger: logging.Logger, msg: str, **context: Any) -> None:
    """Log the active exception with structured context."""

    logger.exception(msg, extra=context)
