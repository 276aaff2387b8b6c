"""Small text helpers used by prompts and validators."""

from __future__ import annotations

import math
import re
from typing import Iterable

SOURCE_NOT_FOUND = "[SOURCE NOT FOUND]"
INSUFFICIENT_SOURCE = "[INSUFFICIENT SOURCE MATERIAL]"
GROUNDING_MARKERS = (SOURCE_NOT_FOUND, INSUFFICIENT_SOURCE)

_WS_RE = re.compile(r"\s+")
_NORMALIZE_RE = re.compile(r"[\s*_`>#]+")


def count_words(text: str) -> int:
    """Count whitespace-separated words."""

    stripped = text.strip()
    if not stripped:
        return 0
    return len(_WS_RE.split(stripped))


def estimate_tokens(text: str) -> int:
    """Rough token estimate (about four characters per token)."""

    return math.ceil(len(text) / 4)


def _normalize(text: str) -> str:
    # Markdown emphasis and line wrapping should not hide a verbatim figure.
    return _NORMALIZE_RE.sub(" ", text).strip().lower()


def missing_data_points(content: str, data_points: Iterable[str]) -> list[str]:
    """Return the key data points that do not appear in ``content``.

    The check is lexical and case-insensitive; markdown emphasis and whitespace differences are
    ignored.
    """

    haystack = _normalize(content)
    missing: list[str] = []
    for point in data_points:
        needle = _normalize(point)
        if needle and needle not in haystack:
            missing.append(point)
    return missing


def grounding_markers(content: str) -> list[str]:
    """Grounding-gap markers present in card content."""

    return [m for m in GROUNDING_MARKERS if m in content]


def unique_name(name: str, taken: Iterable[str]) -> str:
    """Return ``name`` or ``name (n)`` so that it does not collide with ``taken``."""

    existing = set(taken)
    if name not in existing:
        return name
    n = 2
    while f"{name} ({n})" in existing:
        n += 1
    return f"{name} ({n})"
