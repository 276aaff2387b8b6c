"""Deck session state machine.

A :class:`DeckSession` owns one deck from planning through production. Every mutating operation
checks the current state before doing anything and raises :class:`InvalidTransitionError` when
it is not allowed, so a rejected call never changes the session. Async operations return the
state the session ended in.

States::

    IDLE -> PLANNING -> PLAN_READY -> REVISING -> PLAN_READY
                        PLAN_READY -> APPROVING -> PRODUCING -> COMPLETE
    PLANNING / REVISING / APPROVING / PRODUCING -> ERROR | ABORTED
"""

from __future__ import annotations

from typing import Any, Callable, Sequence

from deckweaver.agents.batching import BatchOutcome
from deckweaver.agents.planner import PlanGenerator
from deckweaver.agents.producer import DeckProducer, ProductionInputs, dedupe_titles
from deckweaver.agents.results import PlanConflict
from deckweaver.config import Settings
from deckweaver.core.concurrency import CancelToken
from deckweaver.errors import DeckWeaverError, InvalidTransitionError, ModelCallCancelled, OperationRejected
from deckweaver.events import ContentType, EventType, SessionEvent
from deckweaver.llm.client import ModelTransport, ResilientModelClient
from deckweaver.logging import get_logger, log_exception, session_context, set_phase
from deckweaver.models.briefing import Briefing, Lod
from deckweaver.models.card import ProducedCard
from deckweaver.models.document import SourceDocument
from deckweaver.models.plan import Plan, PlanFeedback, PlannedCard
from deckweaver.models.usage import UsageTracker
from deckweaver.orchestrator.state import BUSY_STATES, ErrorInfo, SessionData, SessionState, batch_error_entry
from deckweaver.utils.ids import new_session_id

logger = get_logger(__name__)

Notify = Callable[[str], None]
EventSink = Callable[[SessionEvent], None]

_RESETTABLE = frozenset({SessionState.IDLE, SessionState.COMPLETE, SessionState.ABORTED, SessionState.ERROR})
_NOT_ABORTABLE = frozenset({SessionState.IDLE, SessionState.COMPLETE, SessionState.ABORTED})


class DeckSession:
    """Plan, review and production pipeline for one deck."""

    def __init__(
        self,
        planner: PlanGenerator,
        producer: DeckProducer,
        *,
        usage: UsageTracker | None = None,
        notify: Notify | None = None,
        on_event: EventSink | None = None,
        max_revisions: int = 5,
        session_id: str | None = None,
    ) -> None:
        self._planner = planner
        self._producer = producer
        self._usage = usage
        self._notify = notify
        self._on_event = on_event
        self._max_revisions = max_revisions
        self._data = SessionData(session_id=session_id or new_session_id())
        self._token: CancelToken | None = None
        self._seq = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        transport: ModelTransport | None = None,
        notify: Notify | None = None,
        on_event: EventSink | None = None,
        session_id: str | None = None,
    ) -> DeckSession:
        """Wire a session, its model client and a usage tracker from settings."""

        usage = UsageTracker(settings.cost_rates)
        client = ResilientModelClient.from_settings(settings, transport=transport)
        return cls(
            PlanGenerator.from_settings(client, settings),
            DeckProducer.from_settings(client, settings),
            usage=usage,
            notify=notify,
            on_event=on_event,
            max_revisions=settings.max_revisions,
            session_id=session_id,
        )

    # ------------------------------------------------------------------
    # Read-only view
    # ------------------------------------------------------------------

    @property
    def session_id(self) -> str:
        return self._data.session_id

    @property
    def state(self) -> SessionState:
        return self._data.state

    @property
    def plan(self) -> Plan | None:
        return self._data.plan

    @property
    def approved_plan(self) -> Plan | None:
        return self._data.approved_plan

    @property
    def cards(self) -> list[ProducedCard]:
        return list(self._data.cards)

    @property
    def error(self) -> ErrorInfo | None:
        return self._data.error

    @property
    def briefing(self) -> Briefing | None:
        return self._data.briefing

    @property
    def lod(self) -> Lod | None:
        return self._data.lod

    @property
    def subject(self) -> str | None:
        return self._data.subject

    @property
    def stable_state(self) -> SessionState:
        return self._data.stable_state

    @property
    def revision_count(self) -> int:
        return self._data.revision_count

    @property
    def usage(self) -> UsageTracker | None:
        return self._usage

    @property
    def busy(self) -> bool:
        return self._data.state in BUSY_STATES

    def snapshot(self) -> dict[str, Any]:
        return self._data.snapshot()

    # ------------------------------------------------------------------
    # Pipeline operations
    # ------------------------------------------------------------------

    async def start_planning(
        self,
        briefing: Briefing,
        documents: Sequence[SourceDocument],
        lod: Lod | str,
        subject: str | None = None,
    ) -> SessionState:
        """Generate the first plan. Valid only from ``IDLE``."""

        self._require("start_planning", SessionState.IDLE)
        lod = Lod(lod)
        usable = [d for d in documents if d.is_usable]
        if not usable:
            raise OperationRejected("start_planning() needs at least one document with content")

        d = self._data
        d.briefing = briefing
        d.documents = usable
        d.lod = lod
        d.subject = subject.strip() if subject and subject.strip() else None
        d.stable_state = SessionState.IDLE

        with session_context(session_id=self.session_id, phase="planning"):
            token = self._begin(SessionState.PLANNING)
            try:
                result = await self._planner.generate(
                    briefing=briefing,
                    lod=d.lod,
                    documents=usable,
                    subject=d.subject,
                    cancel_token=token,
                    usage_sink=self._usage,
                )
            except ModelCallCancelled:
                return self.state
            except Exception as e:
                return self._fail(e, "start_planning", token)

            if token.cancelled:
                return self.state
            if isinstance(result, PlanConflict):
                return self._fail_conflict(result, "start_planning")
            d.plan = result.plan
            self._plan_ready()
            return self.state

    async def revise_plan(self, feedback: PlanFeedback | None = None) -> SessionState:
        """Re-plan with reviewer feedback. Valid only from ``PLAN_READY``.

        Without explicit ``feedback`` the reviewer draft on the current plan (inclusion toggles,
        answers, general comment) is used. A failed revision keeps the current plan.
        """

        self._require("revise_plan", SessionState.PLAN_READY)
        if self._data.revision_count >= self._max_revisions:
            raise OperationRejected(f"Revision limit reached ({self._max_revisions})")

        d = self._data
        assert d.plan is not None
        fb = self._effective_feedback(d.plan, feedback or PlanFeedback.from_plan(d.plan))
        d.last_feedback = fb

        with session_context(session_id=self.session_id, phase="revising"):
            token = self._begin(SessionState.REVISING)
            try:
                result = await self._planner.revise(
                    previous=d.plan,
                    feedback=fb,
                    briefing=d.briefing,
                    lod=d.lod,
                    documents=d.documents,
                    subject=d.subject,
                    cancel_token=token,
                    usage_sink=self._usage,
                )
            except ModelCallCancelled:
                return self.state
            except Exception as e:
                return self._fail(e, "revise_plan", token)

            if token.cancelled:
                return self.state
            if isinstance(result, PlanConflict):
                return self._fail_conflict(result, "revise_plan")
            d.plan = result.plan
            d.revision_count += 1
            self._plan_ready()
            return self.state

    async def approve_plan(self) -> SessionState:
        """Finalize the reviewed plan and produce every card. Valid only from ``PLAN_READY``."""

        self._require("approve_plan", SessionState.PLAN_READY)
        d = self._data
        assert d.plan is not None
        filtered = d.plan.included_plan()
        if not filtered.cards:
            raise OperationRejected("approve_plan() needs at least one included card")

        with session_context(session_id=self.session_id, phase="approving"):
            token = self._begin(SessionState.APPROVING)
            d.cards = []
            try:
                approved = await self._finalize(filtered, token)
            except ModelCallCancelled:
                return self.state
            except Exception as e:
                return self._fail(e, "approve_plan", token)
            if token.cancelled:
                return self.state

            d.approved_plan = approved
            self._transition(SessionState.PRODUCING)
            set_phase("producing")
            inputs = ProductionInputs(briefing=d.briefing, lod=d.lod, documents=d.documents, subject=d.subject)
            try:
                result = await self._producer.produce(
                    approved.cards,
                    inputs,
                    cancel_token=token,
                    usage_sink=self._usage,
                    on_batch_started=self._on_batch_started,
                    on_batch_done=lambda outcome: self._on_batch_done(outcome, token),
                )
            except Exception as e:
                return self._fail(e, "approve_plan", token)

            if token.cancelled:
                return self.state

            d.cards = result.cards
            for warning in result.warnings:
                self._warn(warning)

            if result.failed:
                first = result.failed[0].error
                assert first is not None
                info = ErrorInfo.from_exception(first, "approve_plan")
                info.message = (
                    f"{len(result.failed)} of {len(result.outcomes)} batch(es) failed; "
                    f"{len(result.cards)} card(s) produced. First error: {info.message}"
                )
                info.details = {
                    "failed_batches": [batch_error_entry(o.index, o.numbers, o.error) for o in result.failed],
                    "produced_cards": len(result.cards),
                }
                return self._set_error(info)

            self._emit(EventType.SYSTEM, ContentType.DECK_DONE, data={"cards": len(d.cards)})
            self._emit_usage()
            self._transition(SessionState.COMPLETE)
            logger.info("Deck complete", extra={"cards": len(d.cards)})
            return self.state

    async def retry_from_review(self) -> SessionState:
        """Re-issue the revision or approval that failed. Reviewer edits are kept.

        Valid only from ``ERROR`` when the session was in ``PLAN_READY`` before the failure.
        """

        d = self._data
        if d.state != SessionState.ERROR or d.stable_state != SessionState.PLAN_READY:
            raise InvalidTransitionError("retry_from_review", d.state.value)
        failed = d.error.failed_operation if d.error is not None else None
        feedback = d.last_feedback

        d.error = None
        self._transition(SessionState.PLAN_READY)
        if failed == "revise_plan":
            return await self.revise_plan(feedback)
        if failed == "approve_plan":
            return await self.approve_plan()
        return self.state

    def back_to_review(self) -> SessionState:
        """Leave ``ERROR`` for ``PLAN_READY`` without re-issuing anything."""

        d = self._data
        if d.state != SessionState.ERROR or d.stable_state != SessionState.PLAN_READY:
            raise InvalidTransitionError("back_to_review", d.state.value)
        d.error = None
        d.cards = []
        self._transition(SessionState.PLAN_READY)
        return self.state

    def abort(self) -> SessionState:
        """Cancel in-flight model calls and stop. Cards from finished batches are kept."""

        d = self._data
        if d.state in _NOT_ABORTABLE:
            raise InvalidTransitionError("abort", d.state.value)
        if self._token is not None:
            self._token.cancel("aborted by user")
        d.cards = dedupe_titles(d.cards)
        d.error = None
        self._transition(SessionState.ABORTED)
        logger.info("Session aborted", extra={"cards_kept": len(d.cards)})
        return self.state

    def reset(self) -> SessionState:
        """Discard the session and return to ``IDLE``."""

        if self._data.state not in _RESETTABLE:
            raise InvalidTransitionError("reset", self._data.state.value)
        previous = self._data.state
        self._token = None
        self._data = SessionData(session_id=new_session_id())
        if self._usage is not None:
            self._usage.reset()
        self._emit(
            EventType.SYSTEM,
            ContentType.STATE_CHANGED,
            data={"from": previous.value, "to": SessionState.IDLE.value},
        )
        return self.state

    # ------------------------------------------------------------------
    # Reviewer draft edits (PLAN_READY only, no model calls)
    # ------------------------------------------------------------------

    def toggle_card_included(self, number: int) -> bool:
        """Flip a card's inclusion; returns the new value."""

        card = self._draft_card("toggle_card_included", number)
        card.included = not card.included
        return card.included

    def set_question_answer(self, question_id: str, key: str | None) -> None:
        plan = self._draft("set_question_answer")
        q = plan.question(question_id)
        if q is None:
            raise OperationRejected(f"Unknown question {question_id!r}")
        if key is not None and key not in {o.key for o in q.options}:
            raise OperationRejected(f"Question {question_id!r} has no option {key!r}")
        q.answer = key

    def set_all_recommended(self) -> int:
        """Answer every question with its recommended option; returns how many were set."""

        plan = self._draft("set_all_recommended")
        count = 0
        for q in plan.questions:
            if q.recommended_key is not None:
                q.answer = q.recommended_key
                count += 1
        return count

    def set_general_comment(self, text: str) -> None:
        plan = self._draft("set_general_comment")
        plan.general_comment = text.strip() or None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require(self, operation: str, *allowed: SessionState) -> None:
        if self._data.state not in allowed:
            logger.warning("Rejected operation", extra={"operation": operation, "state": self._data.state.value})
            raise InvalidTransitionError(operation, self._data.state.value)

    def _draft(self, operation: str) -> Plan:
        self._require(operation, SessionState.PLAN_READY)
        assert self._data.plan is not None
        return self._data.plan

    def _draft_card(self, operation: str, number: int) -> PlannedCard:
        card = self._draft(operation).card(number)
        if card is None:
            raise OperationRejected(f"Unknown card number {number}")
        return card

    def _begin(self, state: SessionState) -> CancelToken:
        self._token = CancelToken()
        self._data.error = None
        self._transition(state)
        return self._token

    def _transition(self, state: SessionState) -> None:
        previous = self._data.state
        self._data.state = state
        set_phase(state.value)
        logger.info("State changed", extra={"from": previous.value, "to": state.value})
        self._emit(EventType.SYSTEM, ContentType.STATE_CHANGED, data={"from": previous.value, "to": state.value})

    def _plan_ready(self) -> None:
        d = self._data
        assert d.plan is not None
        d.stable_state = SessionState.PLAN_READY
        self._transition(SessionState.PLAN_READY)
        self._emit(
            EventType.LLM,
            ContentType.PLAN_READY,
            data=d.plan.to_prompt_json(),
            metadata={"cards": len(d.plan.cards), "questions": len(d.plan.questions), "revision": d.revision_count},
        )
        self._emit_usage()

    async def _finalize(self, filtered: Plan, token: CancelToken) -> Plan:
        d = self._data
        if not filtered.answered_questions and not (filtered.general_comment or "").strip():
            return filtered.model_copy(update={"questions": []})
        return await self._planner.finalize(
            plan=filtered,
            briefing=d.briefing,
            lod=d.lod,
            documents=d.documents,
            subject=d.subject,
            cancel_token=token,
            usage_sink=self._usage,
        )

    @staticmethod
    def _effective_feedback(plan: Plan, feedback: PlanFeedback) -> PlanFeedback:
        if not feedback.accept_all_recommended:
            return feedback
        answers = dict(feedback.question_answers)
        for q in plan.questions:
            if q.id not in answers and q.recommended_key is not None:
                answers[q.id] = q.recommended_key
        return feedback.model_copy(update={"question_answers": answers})

    def _on_batch_started(self, index: int, batch: list[PlannedCard]) -> None:
        self._emit(
            EventType.LLM,
            ContentType.BATCH_STARTED,
            data={"batch": index + 1, "cards": [c.number for c in batch]},
        )

    def _on_batch_done(self, outcome: BatchOutcome, token: CancelToken) -> None:
        if token.cancelled or self._data.state != SessionState.PRODUCING:
            return
        if outcome.error is not None:
            self._emit(
                EventType.ERROR,
                ContentType.BATCH_FAILED,
                data=batch_error_entry(outcome.index, outcome.numbers, outcome.error),
            )
            return
        self._data.cards = sorted([*self._data.cards, *outcome.cards], key=lambda c: c.number)
        self._emit(
            EventType.LLM,
            ContentType.BATCH_DONE,
            data={"batch": outcome.index + 1, "cards": [c.number for c in outcome.cards]},
            metadata={"warnings": len(outcome.warnings)},
        )

    def _fail(self, exc: Exception, operation: str, token: CancelToken) -> SessionState:
        if token.cancelled:
            return self.state
        if not isinstance(exc, DeckWeaverError):
            log_exception(logger, "Unexpected failure", operation=operation)
            self._set_error(ErrorInfo.from_exception(exc, operation))
            raise exc
        logger.error("Operation failed", extra={"operation": operation, "error": str(exc)})
        return self._set_error(ErrorInfo.from_exception(exc, operation))

    def _fail_conflict(self, result: PlanConflict, operation: str) -> SessionState:
        info = ErrorInfo(
            kind="conflict",
            message=f"The sources contradict each other in {len(result.conflicts)} place(s)",
            details={"conflicts": [c.model_dump(mode="json", by_alias=True) for c in result.conflicts]},
            failed_operation=operation,
        )
        return self._set_error(info)

    def _set_error(self, info: ErrorInfo) -> SessionState:
        self._data.error = info
        self._emit(EventType.ERROR, ContentType.STATE_CHANGED, data=info.model_dump(mode="json"))
        self._emit_usage()
        self._transition(SessionState.ERROR)
        return self.state

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self._emit(EventType.NOTICE, ContentType.WARNING, data=message)
        if self._notify is not None:
            self._notify(message)

    def _emit_usage(self) -> None:
        if self._usage is None:
            return
        totals = self._usage.totals
        self._emit(EventType.SYSTEM, ContentType.USAGE, data=totals.model_dump(mode="json"))

    def _emit(
        self,
        event_type: EventType,
        content_type: ContentType,
        data: str | dict | list | None = None,
        *,
        metadata: dict[str, str | int | float | bool | None] | None = None,
    ) -> None:
        if self._on_event is None:
            return
        self._seq += 1
        self._on_event(
            SessionEvent(
                session_id=self.session_id,
                seq=self._seq,
                event_type=event_type,
                content_type=content_type,
                data=data,
                metadata=dict(metadata or {}),
            )
        )
