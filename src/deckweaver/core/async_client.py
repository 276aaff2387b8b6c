"""OpenAI-compatible model transport.

Wraps the `openai` async SDK. Retries are disabled at the SDK level because
:class:`deckweaver.llm.client.ResilientModelClient` owns the retry policy.
"""

from __future__ import annotations

from typing import Any

import httpx
from openai import AsyncOpenAI
from openai.types.chat import ChatCompletion

from deckweaver.llm.messages import DocumentBlock, ModelMessage, ModelRequest, ModelResponse, TextBlock
from deckweaver.logging import get_logger
from deckweaver.models.usage import TokenUsage

logger = get_logger(__name__)


def _content_parts(message: ModelMessage) -> str | list[dict[str, Any]]:
    if isinstance(message.content, str):
        return message.content
    parts: list[dict[str, Any]] = []
    for block in message.content:
        if isinstance(block, DocumentBlock):
            parts.append({"type": "file", "file": {"file_id": block.file_ref}})
        elif isinstance(block, TextBlock):
            parts.append({"type": "text", "text": block.text})
    return parts


def to_chat_payload(request: ModelRequest) -> list[dict[str, Any]]:
    """Render a request as Chat Completions messages.

    System blocks collapse into one system message. The provider caches shared prompt prefixes
    on its own, so ``cacheable`` markers need no wire representation here.
    """

    payload: list[dict[str, Any]] = []
    system_text = "\n\n".join(b.text for b in request.system if b.text)
    if system_text:
        payload.append({"role": "system", "content": system_text})
    for m in request.messages:
        payload.append({"role": m.role, "content": _content_parts(m)})
    return payload


def usage_from_completion(resp: ChatCompletion) -> TokenUsage:
    if resp.usage is None:
        return TokenUsage()
    cached = 0
    details = getattr(resp.usage, "prompt_tokens_details", None)
    if details is not None and getattr(details, "cached_tokens", None):
        cached = int(details.cached_tokens)
    return TokenUsage(
        input_tokens=max(0, resp.usage.prompt_tokens - cached),
        output_tokens=resp.usage.completion_tokens,
        cache_read_tokens=cached,
        cache_write_tokens=0,
    )


class OpenAITransport:
    """Sends requests to an OpenAI-compatible Chat Completions endpoint."""

    provider = "openai"

    def __init__(self, *, base_url: str | None = None, timeout_s: float = 300.0) -> None:
        self._base_url = base_url
        self._timeout = httpx.Timeout(timeout_s, connect=min(timeout_s, 30.0))
        # One SDK client per credential, created lazily.
        self._clients: dict[str, AsyncOpenAI] = {}

    def _client(self, api_key: str) -> AsyncOpenAI:
        client = self._clients.get(api_key)
        if client is None:
            client = AsyncOpenAI(
                api_key=api_key,
                base_url=self._base_url,
                max_retries=0,
                timeout=self._timeout,
            )
            self._clients[api_key] = client
        return client

    async def send(self, request: ModelRequest, *, api_key: str, model: str) -> ModelResponse:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": to_chat_payload(request),
            "max_tokens": request.max_tokens,
        }
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature
        if request.json_output:
            kwargs["response_format"] = {"type": "json_object"}

        resp: ChatCompletion = await self._client(api_key).chat.completions.create(**kwargs)

        text = ""
        if resp.choices:
            choice = resp.choices[0]
            if choice.message and choice.message.content:
                text = choice.message.content
            if choice.finish_reason == "length":
                logger.warning("Model output truncated at max_tokens", extra={"max_tokens": request.max_tokens})

        return ModelResponse(
            text=text,
            usage=usage_from_completion(resp),
            model=resp.model or model,
            provider=self.provider,
        )
