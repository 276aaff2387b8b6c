"""Tests for batch partitioning and the batch scheduler."""

from __future__ import annotations

import asyncio

import pytest

from deckweaver.agents.batching import BatchScheduler, batch_plan
from deckweaver.agents.results import BatchOk
from deckweaver.core.concurrency import CancelToken
from deckweaver.errors import ProducerSchemaError
from deckweaver.models.card import ProducedCard
from deckweaver.models.plan import Plan

from fakes import plan_payload


def _cards(n: int):
    return Plan.model_validate(plan_payload(n)).cards if n else []


def _produced(batch) -> list[ProducedCard]:
    return [ProducedCard(number=c.number, title=c.title, content="text", word_count=1) for c in batch]


def test_batch_plan_concat_is_identity() -> None:
    """Concatenating the batches gives back the plan, and no batch exceeds the size."""

    for n in range(0, 31):
        items = list(range(n))
        for size in range(1, 14):
            batches = batch_plan(items, size)
            assert [x for b in batches for x in b] == items
            assert all(1 <= len(b) <= size for b in batches)


def test_batch_plan_empty_and_sizes() -> None:
    assert batch_plan([], 12) == []
    assert [len(b) for b in batch_plan(list(range(30)), 12)] == [12, 12, 6]
    assert [len(b) for b in batch_plan(list(range(10)), 12)] == [10]
    with pytest.raises(ValueError):
        batch_plan([1, 2], 0)


def test_scheduler_aggregates_in_batch_order_regardless_of_completion() -> None:
    finished: list[int] = []
    delays = {0: 0.05, 1: 0.02, 2: 0.0}

    async def worker(index, batch, completed):
        await asyncio.sleep(delays[index])
        finished.append(index)
        return BatchOk(cards=_produced(batch))

    scheduler = BatchScheduler(batch_size=12, max_concurrency=3)
    outcomes = asyncio.run(scheduler.run(_cards(30), worker))

    assert finished == [2, 1, 0]
    assert [o.index for o in outcomes] == [0, 1, 2]
    assert [c.number for o in outcomes for c in o.cards] == list(range(1, 31))


def test_scheduler_respects_concurrency_cap() -> None:
    active = 0
    peak = 0

    async def worker(index, batch, completed):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1
        return BatchOk(cards=_produced(batch))

    scheduler = BatchScheduler(batch_size=2, max_concurrency=3)
    outcomes = asyncio.run(scheduler.run(_cards(20), worker))

    assert len(outcomes) == 10
    assert all(o.ok for o in outcomes)
    assert peak == 3


def test_failed_batch_does_not_stop_others() -> None:
    async def worker(index, batch, completed):
        if index == 1:
            raise ProducerSchemaError("bad batch", ["card 3: missing"], batch_index=index)
        return BatchOk(cards=_produced(batch))

    done: list[int] = []
    scheduler = BatchScheduler(batch_size=2, max_concurrency=1)
    outcomes = asyncio.run(scheduler.run(_cards(6), worker, on_done=lambda o: done.append(o.index)))

    assert [o.ok for o in outcomes] == [True, False, True]
    assert isinstance(outcomes[1].error, ProducerSchemaError)
    assert outcomes[1].numbers == [3, 4]
    assert done == [0, 1, 2]


def test_sequential_batches_see_completed_cards() -> None:
    seen: dict[int, list[int]] = {}

    async def worker(index, batch, completed):
        seen[index] = [c.number for c in completed]
        return BatchOk(cards=_produced(batch))

    scheduler = BatchScheduler(batch_size=2, max_concurrency=1)
    asyncio.run(scheduler.run(_cards(6), worker))

    assert seen == {0: [], 1: [1, 2], 2: [1, 2, 3, 4]}


def test_concurrent_batches_only_see_finished_batches() -> None:
    seen: dict[int, list[int]] = {}

    async def worker(index, batch, completed):
        seen[index] = [c.number for c in completed]
        await asyncio.sleep(0.01)
        return BatchOk(cards=_produced(batch))

    scheduler = BatchScheduler(batch_size=2, max_concurrency=2)
    asyncio.run(scheduler.run(_cards(6), worker))

    assert seen[0] == [] and seen[1] == []
    assert len(seen[2]) in (2, 4)


def test_cancelled_token_skips_unstarted_batches() -> None:
    calls: list[int] = []

    async def worker(index, batch, completed):
        calls.append(index)
        if index == 0:
            token.cancel()
        return BatchOk(cards=_produced(batch))

    token = CancelToken()
    scheduler = BatchScheduler(batch_size=2, max_concurrency=1)
    outcomes = asyncio.run(scheduler.run(_cards(6), worker, cancel_token=token))

    assert calls == [0]
    assert all(o.cancelled for o in outcomes)
    assert all(o.cards == [] for o in outcomes)
