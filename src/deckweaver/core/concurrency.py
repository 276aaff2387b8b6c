"""Concurrency control utilities for async operations."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

from deckweaver.errors import ModelCallCancelled
from deckweaver.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class CancelToken:
    """Cooperative cancellation shared by every model call of one operation.

    Cancelling the token interrupts any awaitable passed through :meth:`guard` and makes later
    calls fail fast with :class:`ModelCallCancelled`.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ModelCallCancelled(self.reason or "cancelled")

    async def wait(self) -> None:
        await self._event.wait()

    async def guard(self, aw: Awaitable[T]) -> T:
        """Await ``aw`` unless the token fires first.

        Raises:
            ModelCallCancelled: If the token is (or becomes) cancelled; ``aw`` is then cancelled.
        """

        if self.cancelled:
            if inspect.iscoroutine(aw):
                aw.close()
            self.raise_if_cancelled()
        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise

        if task in done:
            waiter.cancel()
            return task.result()

        task.cancel()
        # The interrupted request's own outcome is irrelevant once the caller has cancelled.
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await task
        raise ModelCallCancelled(self.reason or "cancelled")


@dataclass
class ConcurrencyLimiter:
    """Semaphore wrapper that tracks how many slots are in use."""

    max_concurrent: int
    _semaphore: asyncio.Semaphore = field(init=False)

    def __post_init__(self) -> None:
        if self.max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self._semaphore = asyncio.Semaphore(self.max_concurrent)

    async def acquire(self) -> None:
        await self._semaphore.acquire()

    def release(self) -> None:
        self._semaphore.release()

    async def __aenter__(self) -> ConcurrencyLimiter:
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()


class TaskPool:
    """Runs submitted coroutines with at most ``max_concurrent`` in flight.

    When a cancel token is given, work that has not yet acquired a slot is never started once
    the token fires.
    """

    def __init__(self, max_concurrent: int = 3, *, token: CancelToken | None = None) -> None:
        self._limiter = ConcurrencyLimiter(max_concurrent)
        self._token = token
        self._tasks: list[asyncio.Task] = []

    def submit(self, coro_fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> asyncio.Task:
        """Schedule ``coro_fn(*args, **kwargs)``; tasks acquire slots in submission order."""

        async def _wrapped() -> T:
            async with self._limiter:
                if self._token is not None:
                    self._token.raise_if_cancelled()
                return await coro_fn(*args, **kwargs)

        task = asyncio.ensure_future(_wrapped())
        self._tasks.append(task)
        return task

    async def gather(self, return_exceptions: bool = True) -> list[Any]:
        """Wait for every submitted task, results in submission order."""

        return await asyncio.gather(*self._tasks, return_exceptions=return_exceptions)

    def cancel_all(self) -> None:
        for task in self._tasks:
            if not task.done():
                task.cancel()
