"""Resilient model client.

Sends one model request with retry and exponential backoff, fails over from the primary to the
secondary credential, honours a cancel token, and reports token usage to a usage sink. The
client knows nothing about decks or plans.
"""

from __future__ import annotations

import asyncio
import random
import time
from typing import Awaitable, Callable, Protocol, Sequence

from deckweaver.config import Settings
from deckweaver.core.concurrency import CancelToken
from deckweaver.errors import ModelCallCancelled, ModelCallError
from deckweaver.llm.messages import ModelRequest, ModelResponse
from deckweaver.logging import get_logger
from deckweaver.models.usage import TokenUsage, UsageEntry, UsageSink

logger = get_logger(__name__)

RETRYABLE_STATUS = frozenset({429, 500, 503})
RETRYABLE_MARKERS = (
    "overloaded",
    "unavailable",
    "resource_exhausted",
    "rate limit",
    "rate_limit",
    "too many requests",
    "internal server error",
    "high demand",
)

Sleep = Callable[[float], Awaitable[None]]


class ModelTransport(Protocol):
    """Sends a single request to a provider. No retries, no failover."""

    provider: str

    async def send(self, request: ModelRequest, *, api_key: str, model: str) -> ModelResponse:
        """Send ``request`` using ``api_key``; raise on any failure."""


def status_code_of(exc: BaseException) -> int | None:
    for attr in ("status_code", "status", "http_status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    return None


def is_retryable(exc: BaseException) -> bool:
    """Classify a provider failure as transient (retry) or terminal."""

    if isinstance(exc, (ModelCallCancelled, asyncio.CancelledError)):
        return False
    status = status_code_of(exc)
    if status in RETRYABLE_STATUS:
        return True
    msg = str(exc).lower()
    return any(marker in msg for marker in RETRYABLE_MARKERS)


def backoff_delay(
    attempt: int,
    *,
    base_s: float = 1.0,
    jitter_s: float = 1.0,
    cap_s: float = 32.0,
    rng: random.Random | None = None,
) -> float:
    """Delay in seconds before retrying after failed attempt number ``attempt`` (1-based)."""

    jitter = (rng or random).uniform(0.0, jitter_s) if jitter_s > 0 else 0.0
    return min((2**attempt) * base_s + jitter, cap_s)


def _usage_of(exc: BaseException) -> TokenUsage | None:
    usage = getattr(exc, "usage", None)
    return usage if isinstance(usage, TokenUsage) else None


class ResilientModelClient:
    """Model client with retry, backoff, credential failover and usage metering.

    The credential rotation position belongs to the instance, so independent clients never
    affect each other.
    """

    def __init__(
        self,
        transport: ModelTransport,
        credentials: Sequence[str],
        *,
        model: str,
        max_retries: int = 5,
        base_delay_s: float = 1.0,
        jitter_s: float = 1.0,
        max_delay_s: float = 32.0,
        usage_sink: UsageSink | None = None,
        sleep: Sleep = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        if not credentials:
            raise ValueError(
                "Missing DECKWEAVER_OPENAI_API_KEY. "
                "Set it in environment variables or a .env file."
            )
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")

        self._transport = transport
        self._credentials = list(credentials)
        self._active_index = 0
        self._model = model
        self._max_retries = max_retries
        self._base_delay_s = base_delay_s
        self._jitter_s = jitter_s
        self._max_delay_s = max_delay_s
        self._usage_sink = usage_sink
        self._sleep = sleep
        self._rng = rng or random.Random()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        transport: ModelTransport | None = None,
        usage_sink: UsageSink | None = None,
    ) -> ResilientModelClient:
        if transport is None:
            from deckweaver.core.async_client import OpenAITransport

            transport = OpenAITransport(base_url=settings.openai_base_url, timeout_s=settings.openai_timeout_s)
        return cls(
            transport,
            settings.credentials(),
            model=settings.openai_model,
            max_retries=settings.llm_max_retries,
            base_delay_s=settings.llm_retry_base_s,
            jitter_s=settings.llm_retry_jitter_s,
            max_delay_s=settings.llm_retry_cap_s,
            usage_sink=usage_sink,
        )

    @property
    def model(self) -> str:
        return self._model

    @property
    def provider(self) -> str:
        return self._transport.provider

    @property
    def active_credential_index(self) -> int:
        return self._active_index

    def _rotate(self) -> bool:
        if self._active_index + 1 < len(self._credentials):
            self._active_index += 1
            logger.warning("Rotated to fallback credential", extra={"credential_index": self._active_index})
            return True
        return False

    async def call(
        self,
        request: ModelRequest,
        *,
        cancel_token: CancelToken | None = None,
        max_retries: int | None = None,
        usage_sink: UsageSink | None = None,
    ) -> ModelResponse:
        """Send ``request`` and return the provider response.

        Args:
            request: The request payload.
            cancel_token: Aborts the in-flight request and any pending backoff when cancelled.
            max_retries: Attempts per credential; defaults to the client setting.
            usage_sink: Receives usage for this call in addition to the client-wide sink.

        Raises:
            ModelCallCancelled: The token fired. Not a failure.
            ModelCallError: Terminal failure, or retries exhausted on every credential.
        """

        token = cancel_token or CancelToken()
        retries = max_retries or self._max_retries
        model = request.model or self._model
        attempts = 0

        while True:
            index = self._active_index
            try:
                response, used = await self._call_with_retry(request, index, model, retries, token)
            except _AttemptsFailed as failed:
                attempts += failed.attempts
                exc = failed.error
                # Another call may already have moved past the credential this one used.
                if failed.retryable and (index < self._active_index or self._rotate()):
                    logger.warning(
                        "Primary credential exhausted, retrying with fallback credential",
                        extra={"attempts": attempts, "error": str(exc)},
                    )
                    continue
                partial = _usage_of(exc)
                if partial is not None:
                    self._report(model, partial, ok=False, extra_sink=usage_sink)
                logger.error(
                    "Model request failed",
                    extra={"attempts": attempts, "retryable": failed.retryable, "error": str(exc)},
                )
                raise ModelCallError(
                    f"Model request failed after {attempts} attempt(s): {exc}",
                    status_code=status_code_of(exc),
                    retryable=failed.retryable,
                    credential_index=index,
                    attempts=attempts,
                    usage=partial,
                ) from exc

            attempts += used
            self._report(response.model or model, response.usage, ok=True, extra_sink=usage_sink)
            return response

    async def _call_with_retry(
        self,
        request: ModelRequest,
        index: int,
        model: str,
        retries: int,
        token: CancelToken,
    ) -> tuple[ModelResponse, int]:
        api_key = self._credentials[index]
        for attempt in range(1, retries + 1):
            token.raise_if_cancelled()
            started = time.monotonic()
            try:
                response = await token.guard(self._transport.send(request, api_key=api_key, model=model))
            except ModelCallCancelled:
                logger.info("Model request cancelled", extra={"attempt": attempt})
                raise
            except Exception as e:
                retryable = is_retryable(e)
                if not retryable or attempt >= retries:
                    raise _AttemptsFailed(e, attempts=attempt, retryable=retryable) from e

                delay = backoff_delay(
                    attempt,
                    base_s=self._base_delay_s,
                    jitter_s=self._jitter_s,
                    cap_s=self._max_delay_s,
                    rng=self._rng,
                )
                logger.warning(
                    "Model request failed, retrying",
                    extra={
                        "attempt": attempt,
                        "max_retries": retries,
                        "credential_index": index,
                        "wait_s": round(delay, 3),
                        "status_code": status_code_of(e),
                        "error": str(e)[:200],
                    },
                )
                await token.guard(self._sleep(delay))
                continue

            logger.debug(
                "Model request ok",
                extra={
                    "model": model,
                    "attempt": attempt,
                    "latency_ms": int((time.monotonic() - started) * 1000),
                    "input_tokens": response.usage.input_tokens,
                    "output_tokens": response.usage.output_tokens,
                },
            )
            return response, attempt

        raise AssertionError("unreachable")  # pragma: no cover

    def _report(self, model: str, usage: TokenUsage, *, ok: bool, extra_sink: UsageSink | None) -> None:
        entry = UsageEntry(provider=self.provider, model=model, usage=usage, ok=ok)
        for sink in (self._usage_sink, extra_sink):
            if sink is not None:
                sink(entry)
        if usage.cache_read_tokens or usage.cache_write_tokens:
            logger.debug(
                "Prompt cache stats",
                extra={
                    "cache_read": usage.cache_read_tokens,
                    "cache_write": usage.cache_write_tokens,
                    "uncached": usage.input_tokens,
                },
            )


class _AttemptsFailed(Exception):
    """Internal: one credential's retry sequence ended in failure."""

    def __init__(self, error: Exception, *, attempts: int, retryable: bool) -> None:
        super().__init__(str(error))
        self.error = error
        self.attempts = attempts
        self.retryable = retryable
