"""Token usage accounting."""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Callable

from pydantic import BaseModel, Field

from deckweaver.config import CostRate

_DEFAULT_RATE = CostRate(input=1.0, output=5.0)


class TokenUsage(BaseModel):
    """Tokens consumed by one model response."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_write_tokens: int = 0

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cache_read_tokens=self.cache_read_tokens + other.cache_read_tokens,
            cache_write_tokens=self.cache_write_tokens + other.cache_write_tokens,
        )


class UsageEntry(BaseModel):
    """One usage report delivered to a usage sink."""

    provider: str
    model: str
    usage: TokenUsage
    ok: bool = True
    ts: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


UsageSink = Callable[[UsageEntry], None]


def calculate_cost(usage: TokenUsage, rate: CostRate) -> float:
    """Estimated USD cost of ``usage`` at ``rate`` (per 1M tokens)."""

    cost = usage.input_tokens / 1_000_000 * rate.input + usage.output_tokens / 1_000_000 * rate.output
    if usage.cache_read_tokens and rate.cache_read is not None:
        cost += usage.cache_read_tokens / 1_000_000 * rate.cache_read
    if usage.cache_write_tokens and rate.cache_write is not None:
        cost += usage.cache_write_tokens / 1_000_000 * rate.cache_write
    return cost


class UsageTotals(BaseModel):
    usage: TokenUsage = Field(default_factory=TokenUsage)
    cost: float = 0.0
    call_count: int = 0
    by_provider: dict[str, TokenUsage] = Field(default_factory=dict)


class UsageTracker:
    """Usage sink that keeps every entry and running totals.

    Safe to call from concurrent batch tasks.
    """

    def __init__(self, cost_rates: dict[str, CostRate] | None = None) -> None:
        self._rates = dict(cost_rates or {})
        self._entries: list[UsageEntry] = []
        self._totals = UsageTotals()
        self._lock = threading.Lock()

    def __call__(self, entry: UsageEntry) -> None:
        self.record(entry)

    def rate_for(self, model: str) -> CostRate:
        """Rate for ``model``; dated variants such as ``gpt-4o-2024-08-06`` match their base name."""

        if model in self._rates:
            return self._rates[model]
        prefixes = [k for k in self._rates if model.startswith(k)]
        return self._rates[max(prefixes, key=len)] if prefixes else _DEFAULT_RATE

    def record(self, entry: UsageEntry) -> None:
        cost = calculate_cost(entry.usage, self.rate_for(entry.model))
        with self._lock:
            self._entries.append(entry)
            t = self._totals
            t.usage = t.usage + entry.usage
            t.cost += cost
            t.call_count += 1
            t.by_provider[entry.provider] = t.by_provider.get(entry.provider, TokenUsage()) + entry.usage

    @property
    def entries(self) -> list[UsageEntry]:
        with self._lock:
            return list(self._entries)

    @property
    def totals(self) -> UsageTotals:
        with self._lock:
            return self._totals.model_copy(deep=True)

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()
            self._totals = UsageTotals()


def format_tokens(n: int) -> str:
    if n >= 1_000_000:
        return f"{n / 1_000_000:.1f}M"
    if n >= 1_000:
        return f"{n / 1_000:.1f}K"
    return str(n)


def format_cost(n: float) -> str:
    if n >= 10:
        return f"${n:.2f}"
    if n >= 0.01:
        return f"${n:.3f}"
    if n > 0:
        return f"${n:.4f}"
    return "$0.00"
