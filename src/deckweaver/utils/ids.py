"""ID utilities."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone


def new_session_id() -> str:
    """Time-based session id with a short random suffix, e.g. ``20260101T120000Z_1a2b3c4d``."""

    ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return f"{ts}_{uuid.uuid4().hex[:8]}"
