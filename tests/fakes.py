"""Fake model transports and fixtures shared by the tests."""

from __future__ import annotations

import asyncio
import inspect
import json
import re
from typing import Any, Callable

from deckweaver.agents.planner import PlanGenerator
from deckweaver.agents.producer import DeckProducer
from deckweaver.llm.client import ResilientModelClient
from deckweaver.llm.messages import ModelMessage, ModelRequest, ModelResponse
from deckweaver.models.briefing import Briefing, Lod, lod_config
from deckweaver.models.document import SourceDocument
from deckweaver.models.usage import TokenUsage, UsageTracker
from deckweaver.orchestrator.session import DeckSession

DOC = SourceDocument(
    id="doc-1",
    name="report.md",
    content="# Growth\nRevenue grew 12% in Q3.\n\n# Costs\nOperating costs fell 3%.",
)
BRIEFING = Briefing(audience="Board", presentation_type="Quarterly update", objective="Summarize Q3 results")

QUESTIONS = [
    {
        "id": "q1",
        "question": "What should the deck lead with?",
        "options": [
            {"key": "a", "label": "Growth", "producerInstruction": "Lead every card with growth figures."},
            {"key": "b", "label": "Costs", "producerInstruction": "Lead every card with cost figures."},
        ],
        "recommendedKey": "a",
    }
]

_CARD_LINE_RE = re.compile(r"^Card (\d+): (.+)$", re.MULTILINE)


class StatusError(Exception):
    """Provider-style error carrying an HTTP status code."""

    def __init__(self, status_code: int, message: str = "", usage: TokenUsage | None = None) -> None:
        super().__init__(message or f"HTTP {status_code}")
        self.status_code = status_code
        self.usage = usage


def simple_request(text: str = "hello") -> ModelRequest:
    return ModelRequest(max_tokens=100, messages=[ModelMessage(role="user", content=text)])


def plan_payload(n: int, *, doc: str = "doc-1", questions: list[dict] | None = None) -> dict[str, Any]:
    return {
        "status": "ok",
        "metadata": {"category": "Quarterly update", "lod": "standard", "cardCount": n},
        "cards": [
            {
                "number": i,
                "title": f"Topic {i}",
                "description": f"What topic {i} covers.",
                "sources": [{"document": doc, "heading": "Growth"}],
                "keyDataPoints": [],
                "guidance": {"emphasis": "figures", "tone": "plain", "exclude": ""},
            }
            for i in range(1, n + 1)
        ],
        "questions": questions or [],
    }


def plan_json(n: int, **kwargs: Any) -> str:
    return json.dumps(plan_payload(n, **kwargs))


def card_body(words: int) -> str:
    return " ".join(["word"] * words)


def user_text(request: ModelRequest) -> str:
    return "\n".join(b.text for b in request.messages[0].blocks() if getattr(b, "text", None))


def batch_cards(request: ModelRequest) -> list[tuple[int, str]]:
    """``(number, title)`` of the cards a producer request asks for."""

    return [(int(n), t.strip()) for n, t in _CARD_LINE_RE.findall(user_text(request))]


def producer_reply(request: ModelRequest, *, lod: Lod = Lod.STANDARD, extra: str = "") -> str:
    words = lod_config(lod).midpoint
    content = card_body(words - len(extra.split())) + (f" {extra}" if extra else "")
    cards = [{"number": n, "title": t, "content": content, "wordCount": words} for n, t in batch_cards(request)]
    return json.dumps({"status": "ok", "cards": cards})


def finalizer_echo(request: ModelRequest) -> str:
    """Return the reviewed plan unchanged, as a finalizer that has nothing to restructure."""

    text = user_text(request)
    body = text.split("Reviewed plan:\n", 1)[1].split("\n\nResolved decisions:", 1)[0]
    data = json.loads(body)
    data["status"] = "ok"
    return json.dumps(data)


def request_kind(request: ModelRequest) -> str:
    system = request.system[0].text
    if "FINALIZED plan" in system:
        return "finalizer"
    if "presentation content writer" in system:
        return "producer"
    if "This is a REVISION" in system:
        return "revision"
    return "planner"


Handler = Callable[[ModelRequest], Any]


class ScriptedTransport:
    """Replays a fixed script: strings are replies, exceptions are raised, callables are awaited."""

    provider = "fake"

    def __init__(self, script: list[Any]) -> None:
        self._script = list(script)
        self.calls: list[tuple[str, ModelRequest]] = []

    async def send(self, request: ModelRequest, *, api_key: str, model: str) -> ModelResponse:
        self.calls.append((api_key, request))
        item = self._script.pop(0) if len(self._script) > 1 else self._script[0]
        if callable(item):
            item = item(request)
            if inspect.isawaitable(item):
                item = await item
        if isinstance(item, BaseException):
            raise item
        return ModelResponse(
            text=item,
            usage=TokenUsage(input_tokens=10, output_tokens=5),
            model=model,
            provider=self.provider,
        )

    @property
    def keys(self) -> list[str]:
        return [k for k, _ in self.calls]


class PipelineTransport:
    """Routes planner, revision, finalizer and producer requests to separate handlers."""

    provider = "fake"

    def __init__(
        self,
        *,
        planner: Handler | None = None,
        revision: Handler | None = None,
        finalizer: Handler | None = None,
        producer: Handler | None = None,
    ) -> None:
        self.handlers: dict[str, Handler] = {
            "planner": planner or (lambda r: plan_json(10)),
            "revision": revision or (lambda r: plan_json(8)),
            "finalizer": finalizer or finalizer_echo,
            "producer": producer or producer_reply,
        }
        self.calls: list[tuple[str, ModelRequest]] = []

    async def send(self, request: ModelRequest, *, api_key: str, model: str) -> ModelResponse:
        kind = request_kind(request)
        self.calls.append((kind, request))
        result = self.handlers[kind](request)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, BaseException):
            raise result
        return ModelResponse(
            text=result,
            usage=TokenUsage(input_tokens=100, output_tokens=50, cache_read_tokens=20),
            model=model,
            provider=self.provider,
        )

    def requests(self, kind: str) -> list[ModelRequest]:
        return [r for k, r in self.calls if k == kind]


async def no_sleep(_: float) -> None:
    return None


async def hang(_: ModelRequest) -> str:
    await asyncio.Event().wait()
    return ""


def make_session(
    transport: Any,
    *,
    batch_size: int = 12,
    max_concurrency: int = 3,
    max_revisions: int = 5,
    max_input_tokens: int = 180000,
    **kwargs: Any,
) -> DeckSession:
    client = ResilientModelClient(transport, ["key-1"], model="test-model", max_retries=2, sleep=no_sleep)
    return DeckSession(
        PlanGenerator(client, max_input_tokens=max_input_tokens),
        DeckProducer(client, batch_size=batch_size, max_concurrency=max_concurrency),
        usage=UsageTracker(),
        max_revisions=max_revisions,
        **kwargs,
    )
