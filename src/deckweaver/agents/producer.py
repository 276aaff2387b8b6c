"""Deck producer.

Turns an approved plan into validated card content, one model call per batch.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Sequence

from deckweaver.agents.batching import BatchCallback, BatchOutcome, BatchScheduler
from deckweaver.agents.parsers import parse_producer_response
from deckweaver.agents.results import BatchInvalid, BatchOk
from deckweaver.config import Settings
from deckweaver.core.concurrency import CancelToken
from deckweaver.errors import ProducerSchemaError
from deckweaver.llm.client import ResilientModelClient
from deckweaver.logging import get_logger
from deckweaver.models.briefing import Briefing, Lod, lod_config
from deckweaver.models.card import ProducedCard
from deckweaver.models.document import SourceDocument
from deckweaver.models.plan import PlannedCard
from deckweaver.models.usage import UsageSink
from deckweaver.prompts.producer import build_producer_request, covered_summary, other_cards_context
from deckweaver.utils.text import unique_name

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProductionInputs:
    """Everything one production run needs besides the plan."""

    briefing: Briefing
    lod: Lod
    documents: Sequence[SourceDocument]
    subject: str | None = None


@dataclass
class ProductionResult:
    """Aggregated cards (sorted by number) plus per-batch outcomes."""

    cards: list[ProducedCard]
    outcomes: list[BatchOutcome]
    warnings: list[str] = field(default_factory=list)

    @property
    def failed(self) -> list[BatchOutcome]:
        return [o for o in self.outcomes if o.error is not None]


def dedupe_titles(cards: Sequence[ProducedCard]) -> list[ProducedCard]:
    """Return ``cards`` with titles made unique in card-number order."""

    taken: list[str] = []
    out: list[ProducedCard] = []
    for card in sorted(cards, key=lambda c: c.number):
        title = unique_name(card.title, taken)
        taken.append(title)
        out.append(card if title == card.title else card.model_copy(update={"title": title}))
    return out


class DeckProducer:
    """Writes card content for a plan in batches."""

    def __init__(
        self,
        client: ResilientModelClient,
        *,
        batch_size: int = 12,
        max_concurrency: int = 3,
        max_tokens_cap: int = 64000,
    ) -> None:
        self._client = client
        self._scheduler = BatchScheduler(batch_size=batch_size, max_concurrency=max_concurrency)
        self._max_tokens_cap = max_tokens_cap

    @classmethod
    def from_settings(cls, client: ResilientModelClient, settings: Settings) -> DeckProducer:
        return cls(
            client,
            batch_size=settings.producer_batch_size,
            max_concurrency=settings.producer_max_concurrency,
            max_tokens_cap=settings.producer_max_tokens_cap,
        )

    @property
    def batch_size(self) -> int:
        return self._scheduler.batch_size

    async def produce_batch(
        self,
        inputs: ProductionInputs,
        *,
        plan_cards: Sequence[PlannedCard],
        batch: Sequence[PlannedCard],
        completed: Sequence[ProducedCard] = (),
        batch_index: int = 0,
        cancel_token: CancelToken | None = None,
        usage_sink: UsageSink | None = None,
    ) -> BatchOk:
        """Produce and validate one batch.

        Raises:
            ProducerSchemaError: The response broke the producer contract.
        """

        context_parts = [other_cards_context(plan_cards, batch), covered_summary(completed, plan_cards)]
        request = build_producer_request(
            briefing=inputs.briefing,
            lod=inputs.lod,
            cards=batch,
            documents=inputs.documents,
            subject=inputs.subject,
            batch_context="\n\n".join(p for p in context_parts if p),
            max_tokens_cap=self._max_tokens_cap,
        )
        logger.info(
            "Producing batch",
            extra={"batch": batch_index + 1, "cards": [c.number for c in batch], "max_tokens": request.max_tokens},
        )
        response = await self._client.call(request, cancel_token=cancel_token, usage_sink=usage_sink)

        result = parse_producer_response(response.text, batch, lod_config(inputs.lod))
        if isinstance(result, BatchInvalid):
            raise ProducerSchemaError(
                f"Batch {batch_index + 1} returned invalid card content",
                result.problems,
                batch_index=batch_index,
            )
        return result

    async def produce(
        self,
        plan_cards: Sequence[PlannedCard],
        inputs: ProductionInputs,
        *,
        cancel_token: CancelToken | None = None,
        usage_sink: UsageSink | None = None,
        on_batch_started: Callable[[int, list[PlannedCard]], None] | None = None,
        on_batch_done: BatchCallback | None = None,
    ) -> ProductionResult:
        """Produce every batch of ``plan_cards``.

        ``on_batch_done`` sees each batch as it finishes, so callers can keep partial results
        if the run is aborted.
        """

        async def _worker(index: int, batch: list[PlannedCard], completed: list[ProducedCard]) -> BatchOk:
            return await self.produce_batch(
                inputs,
                plan_cards=plan_cards,
                batch=batch,
                completed=completed,
                batch_index=index,
                cancel_token=cancel_token,
                usage_sink=usage_sink,
            )

        outcomes = await self._scheduler.run(
            plan_cards,
            _worker,
            cancel_token=cancel_token,
            on_started=on_batch_started,
            on_done=on_batch_done,
        )
        cards = [c for o in outcomes if o.ok for c in o.cards]
        warnings = [w for o in outcomes if o.ok for w in o.warnings]
        return ProductionResult(cards=dedupe_titles(cards), outcomes=outcomes, warnings=warnings)
