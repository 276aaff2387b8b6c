"""Tests for the resilient model client."""

from __future__ import annotations

import asyncio
import random

import pytest

from deckweaver.core.concurrency import CancelToken
from deckweaver.errors import ModelCallCancelled, ModelCallError
from deckweaver.llm.client import ResilientModelClient, backoff_delay, is_retryable
from deckweaver.models.usage import TokenUsage, UsageEntry

from fakes import ScriptedTransport, StatusError, hang, no_sleep, simple_request


def _client(transport, credentials=("primary",), **kwargs) -> ResilientModelClient:
    kwargs.setdefault("sleep", no_sleep)
    return ResilientModelClient(transport, list(credentials), model="test-model", **kwargs)


def test_retries_503_then_succeeds_with_backoff() -> None:
    """Two 503s then a success return the success after at least 2s + 4s of backoff."""

    delays: list[float] = []

    async def record_sleep(s: float) -> None:
        delays.append(s)

    transport = ScriptedTransport([StatusError(503), StatusError(503), "ok"])
    client = _client(transport, sleep=record_sleep, rng=random.Random(7))

    response = asyncio.run(client.call(simple_request()))

    assert response.text == "ok"
    assert len(transport.calls) == 3
    assert len(delays) == 2
    assert 2.0 <= delays[0] <= 3.0
    assert 4.0 <= delays[1] <= 5.0
    assert sum(delays) >= 6.0


def test_backoff_delay_is_capped() -> None:
    assert backoff_delay(1, jitter_s=0) == 2.0
    assert backoff_delay(3, jitter_s=0) == 8.0
    assert backoff_delay(10, jitter_s=0) == 32.0
    assert backoff_delay(10, jitter_s=5, rng=random.Random(1)) == 32.0


def test_retryable_classification() -> None:
    assert is_retryable(StatusError(429))
    assert is_retryable(StatusError(500))
    assert is_retryable(StatusError(503))
    assert is_retryable(RuntimeError("The model is overloaded, try later"))
    assert is_retryable(RuntimeError("RESOURCE_EXHAUSTED: quota"))
    assert is_retryable(RuntimeError("Too Many Requests"))
    assert not is_retryable(StatusError(400, "bad request"))
    assert not is_retryable(StatusError(401, "invalid api key"))
    assert not is_retryable(RuntimeError("max_tokens must be below 5000"))
    assert not is_retryable(ModelCallCancelled())


def test_terminal_error_is_not_retried() -> None:
    """A terminal failure surfaces immediately without backoff or rotation."""

    delays: list[float] = []

    async def record_sleep(s: float) -> None:
        delays.append(s)

    transport = ScriptedTransport([StatusError(400, "invalid request"), "never"])
    client = _client(transport, credentials=("primary", "secondary"), sleep=record_sleep)

    with pytest.raises(ModelCallError) as exc_info:
        asyncio.run(client.call(simple_request()))

    assert exc_info.value.retryable is False
    assert exc_info.value.status_code == 400
    assert exc_info.value.attempts == 1
    assert transport.keys == ["primary"]
    assert delays == []
    assert client.active_credential_index == 0


def test_rotates_to_secondary_after_primary_exhausted() -> None:
    """After max_retries transient failures the secondary credential gets a request."""

    def by_key(request):
        return "from secondary" if transport.keys[-1] == "secondary" else StatusError(429)

    transport = ScriptedTransport([by_key])
    client = _client(transport, credentials=("primary", "secondary"), max_retries=3)

    response = asyncio.run(client.call(simple_request()))

    assert response.text == "from secondary"
    assert transport.keys == ["primary", "primary", "primary", "secondary"]
    assert client.active_credential_index == 1


def test_concurrent_calls_each_fail_over_to_secondary() -> None:
    """A call whose primary sequence ends after another call rotated still tries the secondary."""

    def by_key(request):
        return "from secondary" if transport.keys[-1] == "secondary" else StatusError(429)

    transport = ScriptedTransport([by_key])
    client = _client(transport, credentials=("primary", "secondary"), max_retries=3)

    async def _both():
        return await asyncio.gather(
            client.call(simple_request("a")),
            client.call(simple_request("b")),
            return_exceptions=True,
        )

    results = asyncio.run(_both())

    assert [r.text for r in results] == ["from secondary", "from secondary"]
    assert transport.keys.count("primary") == 6
    assert transport.keys.count("secondary") == 2
    assert client.active_credential_index == 1


def test_both_credentials_exhausted_raises() -> None:
    transport = ScriptedTransport([StatusError(503)])
    client = _client(transport, credentials=("primary", "secondary"), max_retries=2)

    with pytest.raises(ModelCallError) as exc_info:
        asyncio.run(client.call(simple_request()))

    err = exc_info.value
    assert err.retryable is True
    assert err.attempts == 4
    assert err.credential_index == 1
    assert transport.keys == ["primary", "primary", "secondary", "secondary"]


def test_rotation_state_is_per_client() -> None:
    transport = ScriptedTransport([StatusError(503)])
    first = _client(transport, credentials=("a", "b"), max_retries=1)
    second = _client(transport, credentials=("a", "b"), max_retries=1)

    with pytest.raises(ModelCallError):
        asyncio.run(first.call(simple_request()))

    assert first.active_credential_index == 1
    assert second.active_credential_index == 0


def test_cancel_during_request() -> None:
    """Cancelling the token aborts the in-flight request as a cancellation, not a failure."""

    entries: list[UsageEntry] = []
    transport = ScriptedTransport([hang])
    client = _client(transport, usage_sink=entries.append)

    async def scenario() -> None:
        token = CancelToken()
        task = asyncio.create_task(client.call(simple_request(), cancel_token=token))
        await asyncio.sleep(0.01)
        token.cancel("user abort")
        with pytest.raises(ModelCallCancelled):
            await task

    asyncio.run(scenario())
    assert len(transport.calls) == 1
    assert entries == []


def test_cancel_during_backoff_stops_retry_loop() -> None:
    async def long_sleep(_: float) -> None:
        await asyncio.Event().wait()

    transport = ScriptedTransport([StatusError(503)])
    client = _client(transport, sleep=long_sleep)

    async def scenario() -> None:
        token = CancelToken()
        task = asyncio.create_task(client.call(simple_request(), cancel_token=token))
        await asyncio.sleep(0.01)
        token.cancel()
        with pytest.raises(ModelCallCancelled):
            await task

    asyncio.run(scenario())
    assert len(transport.calls) == 1


def test_already_cancelled_token_sends_nothing() -> None:
    transport = ScriptedTransport(["ok"])
    client = _client(transport)
    token = CancelToken()
    token.cancel()

    with pytest.raises(ModelCallCancelled):
        asyncio.run(client.call(simple_request(), cancel_token=token))
    assert transport.calls == []


def test_usage_reported_on_success() -> None:
    client_entries: list[UsageEntry] = []
    call_entries: list[UsageEntry] = []
    transport = ScriptedTransport(["ok"])
    client = _client(transport, usage_sink=client_entries.append)

    asyncio.run(client.call(simple_request(), usage_sink=call_entries.append))

    assert len(client_entries) == 1 and len(call_entries) == 1
    entry = client_entries[0]
    assert entry.ok is True
    assert entry.provider == "fake"
    assert entry.model == "test-model"
    assert entry.usage.input_tokens == 10
    assert entry.usage.output_tokens == 5


def test_partial_usage_reported_on_failure() -> None:
    entries: list[UsageEntry] = []
    partial = TokenUsage(input_tokens=40, output_tokens=3)
    transport = ScriptedTransport([StatusError(400, "content filtered", usage=partial)])
    client = _client(transport, usage_sink=entries.append)

    with pytest.raises(ModelCallError) as exc_info:
        asyncio.run(client.call(simple_request()))

    assert exc_info.value.usage == partial
    assert len(entries) == 1
    assert entries[0].ok is False
    assert entries[0].usage.input_tokens == 40


def test_requires_credentials() -> None:
    with pytest.raises(ValueError):
        ResilientModelClient(ScriptedTransport(["ok"]), [], model="m")
