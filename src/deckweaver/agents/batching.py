"""Batch scheduling for production.

An approved plan is split into consecutive batches and each batch becomes one producer call.
Batches run with bounded concurrency; results are aggregated by card number, never by
completion order.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Sequence, TypeVar

from deckweaver.agents.results import BatchOk
from deckweaver.core.concurrency import CancelToken, TaskPool
from deckweaver.errors import ModelCallCancelled
from deckweaver.logging import get_logger, log_exception
from deckweaver.models.card import ProducedCard
from deckweaver.models.plan import PlannedCard

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_BATCH_SIZE = 12


def batch_plan(cards: Sequence[T], batch_size: int = DEFAULT_BATCH_SIZE) -> list[list[T]]:
    """Split ``cards`` into consecutive chunks of at most ``batch_size``, preserving order."""

    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    return [list(cards[i : i + batch_size]) for i in range(0, len(cards), batch_size)]


@dataclass
class BatchOutcome:
    """What happened to one batch."""

    index: int
    planned: list[PlannedCard]
    cards: list[ProducedCard] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    error: Exception | None = None
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.cancelled

    @property
    def numbers(self) -> list[int]:
        return [c.number for c in self.planned]


# worker(batch_index, batch_cards, cards_completed_before_this_batch_started)
BatchWorker = Callable[[int, list[PlannedCard], list[ProducedCard]], Awaitable[BatchOk]]
BatchCallback = Callable[[BatchOutcome], None]


class BatchScheduler:
    """Runs one worker call per batch with at most ``max_concurrency`` in flight.

    ``max_concurrency=1`` issues batches strictly one after another.
    """

    def __init__(self, *, batch_size: int = DEFAULT_BATCH_SIZE, max_concurrency: int = 3) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.batch_size = batch_size
        self.max_concurrency = max_concurrency

    async def run(
        self,
        cards: Sequence[PlannedCard],
        worker: BatchWorker,
        *,
        cancel_token: CancelToken | None = None,
        on_started: Callable[[int, list[PlannedCard]], None] | None = None,
        on_done: BatchCallback | None = None,
    ) -> list[BatchOutcome]:
        """Run every batch and return outcomes in batch order.

        A failed batch does not stop the others. Once the token fires, batches that have not
        started are skipped and results arriving afterwards are discarded.
        """

        token = cancel_token or CancelToken()
        batches = batch_plan(cards, self.batch_size)
        completed: list[ProducedCard] = []
        pool = TaskPool(self.max_concurrency, token=token)

        logger.info(
            "Scheduling batches",
            extra={"cards": len(cards), "batches": len(batches), "max_concurrency": self.max_concurrency},
        )

        async def _run_one(index: int, batch: list[PlannedCard]) -> BatchOutcome:
            outcome = BatchOutcome(index=index, planned=batch)
            if on_started is not None:
                on_started(index, batch)
            # Only batches that finished before this one started feed its context.
            snapshot = sorted(completed, key=lambda c: c.number)
            try:
                result = await worker(index, batch, snapshot)
            except ModelCallCancelled:
                outcome.cancelled = True
                return outcome
            except Exception as e:
                log_exception(logger, "Batch failed", batch=index + 1, cards=outcome.numbers)
                outcome.error = e
            else:
                if token.cancelled:
                    outcome.cancelled = True
                    return outcome
                outcome.cards = result.cards
                outcome.warnings = result.warnings
                completed.extend(result.cards)
            if on_done is not None:
                on_done(outcome)
            return outcome

        for i, batch in enumerate(batches):
            pool.submit(_run_one, i, batch)

        try:
            results = await pool.gather(return_exceptions=True)
        except asyncio.CancelledError:
            pool.cancel_all()
            raise

        outcomes: list[BatchOutcome] = []
        for i, (batch, res) in enumerate(zip(batches, results)):
            if isinstance(res, BatchOutcome):
                outcomes.append(res)
            else:
                # Never started: the token fired while the batch waited for a slot.
                outcomes.append(BatchOutcome(index=i, planned=batch, cancelled=True))
        return outcomes
