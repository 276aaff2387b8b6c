"""JSON extraction from model output.

Models sometimes wrap their JSON in markdown fences or add a sentence before or after it. These
helpers strip that wrapping; they never guess at the JSON's shape.
"""

from __future__ import annotations

import json
import re
from typing import Any

from deckweaver.logging import get_logger

logger = get_logger(__name__)

# A fence only counts when it wraps the whole reply; JSON string values may contain backticks.
_FENCE_RE = re.compile(r"^```(?:json)?\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL | re.IGNORECASE)


def _strip_fence(raw: str) -> str:
    text = (raw or "").strip()
    m = _FENCE_RE.match(text)
    if m:
        text = m.group(1).strip()
    return text


def extract_json_text(raw: str) -> str:
    """Return the most likely JSON substring of ``raw``.

    Strategy:
        1. If the reply is wrapped in a markdown code fence, keep only its body.
        2. A body that starts with ``[`` is a bare array and is kept whole.
        3. Otherwise keep the span from the first ``{`` to the last ``}``.
    """

    text = _strip_fence(raw)
    if text.startswith("["):
        return text
    first = text.find("{")
    last = text.rfind("}")
    if first != -1 and last > first:
        text = text[first : last + 1]
    return text


def parse_json_object(raw: str) -> Any:
    """Parse the JSON value embedded in ``raw``.

    Raises:
        ValueError: If no JSON value can be decoded.
    """

    text = (raw or "").strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        logger.debug("parse_json_object: reply is not bare JSON, extracting")

    candidate = extract_json_text(text)
    if not candidate:
        raise ValueError("empty model response")
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as e:
        logger.debug("parse_json_object: decode failed", extra={"error": str(e), "head": candidate[:120]})
        raise ValueError(f"invalid JSON: {e.msg} at line {e.lineno} column {e.colno}") from e
