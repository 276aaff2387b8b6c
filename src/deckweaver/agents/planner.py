"""Plan generator.

Builds planner prompts, calls the model and decodes the reply into a tagged result. Malformed
output is raised as :class:`PlanSchemaError`; a conflict report is returned, not raised.
"""

from __future__ import annotations

from typing import Sequence

from deckweaver.agents.parsers import parse_finalizer_response, parse_plan_response
from deckweaver.agents.results import PlanConflict, PlanInvalid, PlanOk
from deckweaver.config import Settings
from deckweaver.core.concurrency import CancelToken
from deckweaver.errors import InputTooLargeError, PlanSchemaError
from deckweaver.llm.client import ResilientModelClient
from deckweaver.logging import get_logger
from deckweaver.models.briefing import Briefing, Lod
from deckweaver.models.document import SourceDocument
from deckweaver.models.plan import Plan, PlanFeedback
from deckweaver.models.usage import UsageSink
from deckweaver.prompts.planner import build_finalizer_request, build_planner_request
from deckweaver.utils.text import estimate_tokens

logger = get_logger(__name__)


class PlanGenerator:
    """Produces, revises and finalizes card plans."""

    def __init__(
        self,
        client: ResilientModelClient,
        *,
        max_tokens: int = 16384,
        temperature: float | None = 0.1,
        max_input_tokens: int = 180000,
    ) -> None:
        self._client = client
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._max_input_tokens = max_input_tokens

    @classmethod
    def from_settings(cls, client: ResilientModelClient, settings: Settings) -> PlanGenerator:
        return cls(
            client,
            max_tokens=settings.planner_max_tokens,
            temperature=settings.planner_temperature,
            max_input_tokens=settings.max_input_tokens,
        )

    def check_input_size(self, documents: Sequence[SourceDocument]) -> int:
        """Return the estimated input tokens of inline documents.

        Raises:
            InputTooLargeError: If the estimate exceeds the configured limit.
        """

        estimated = sum(estimate_tokens(d.content or "") for d in documents)
        if estimated > self._max_input_tokens:
            raise InputTooLargeError(estimated, self._max_input_tokens)
        return estimated

    async def generate(
        self,
        *,
        briefing: Briefing,
        lod: Lod,
        documents: Sequence[SourceDocument],
        subject: str | None = None,
        cancel_token: CancelToken | None = None,
        usage_sink: UsageSink | None = None,
    ) -> PlanOk | PlanConflict:
        """Create a first plan from the documents."""

        estimated = self.check_input_size(documents)
        logger.info(
            "Planning", extra={"documents": len(documents), "lod": lod.value, "estimated_tokens": estimated}
        )
        request = build_planner_request(
            briefing=briefing,
            lod=lod,
            documents=documents,
            subject=subject,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
        )
        response = await self._client.call(request, cancel_token=cancel_token, usage_sink=usage_sink)
        return self._accept(parse_plan_response(response.text, documents), what="plan")

    async def revise(
        self,
        *,
        previous: Plan,
        feedback: PlanFeedback,
        briefing: Briefing,
        lod: Lod,
        documents: Sequence[SourceDocument],
        subject: str | None = None,
        cancel_token: CancelToken | None = None,
        usage_sink: UsageSink | None = None,
    ) -> PlanOk | PlanConflict:
        """Re-plan with the previous plan and the reviewer's feedback as context."""

        self.check_input_size(documents)
        logger.info(
            "Revising plan",
            extra={
                "cards": len(previous.cards),
                "excluded": len(feedback.excluded_cards),
                "answers": len(feedback.question_answers),
            },
        )
        request = build_planner_request(
            briefing=briefing,
            lod=lod,
            documents=documents,
            subject=subject,
            previous_plan=previous,
            feedback=feedback,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
        )
        response = await self._client.call(request, cancel_token=cancel_token, usage_sink=usage_sink)
        return self._accept(parse_plan_response(response.text, documents), what="revision")

    async def finalize(
        self,
        *,
        plan: Plan,
        briefing: Briefing,
        lod: Lod,
        documents: Sequence[SourceDocument],
        subject: str | None = None,
        cancel_token: CancelToken | None = None,
        usage_sink: UsageSink | None = None,
    ) -> Plan:
        """Fold answered questions and the general comment into card guidance.

        ``plan`` must already be filtered to included cards. The documents are only used to
        validate source references.
        """

        logger.info("Finalizing plan", extra={"cards": len(plan.cards), "decisions": len(plan.answered_questions)})
        request = build_finalizer_request(
            briefing=briefing,
            lod=lod,
            plan=plan,
            subject=subject,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
        )
        response = await self._client.call(request, cancel_token=cancel_token, usage_sink=usage_sink)
        result = self._accept(parse_finalizer_response(response.text, documents), what="finalized plan")
        assert isinstance(result, PlanOk)
        return result.plan

    @staticmethod
    def _accept(result: PlanOk | PlanConflict | PlanInvalid, *, what: str) -> PlanOk | PlanConflict:
        if isinstance(result, PlanInvalid):
            logger.warning("Rejected model output", extra={"what": what, "problems": result.problems[:10]})
            raise PlanSchemaError(f"The model returned an invalid {what}", result.problems)
        if isinstance(result, PlanConflict):
            logger.info("Planner reported source conflicts", extra={"count": len(result.conflicts)})
        else:
            logger.info("Plan accepted", extra={"what": what, "cards": len(result.plan.cards)})
        return result
