"""CLI entrypoints for DeckWeaver."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from deckweaver.config import Settings, load_settings
from deckweaver.documents import DirectoryDocumentProvider
from deckweaver.errors import OperationRejected
from deckweaver.logging import add_file_handler, configure_logging, get_logger
from deckweaver.models.briefing import MAX_CARDS_WARNING, Briefing, Lod, estimate_card_count
from deckweaver.models.card import ProducedCard
from deckweaver.models.document import SourceDocument
from deckweaver.models.plan import Plan
from deckweaver.models.usage import format_cost, format_tokens
from deckweaver.orchestrator.session import DeckSession
from deckweaver.orchestrator.state import SessionState
from deckweaver.recording.file_recorder import FileEventRecorder
from deckweaver.utils.ids import new_session_id

app = typer.Typer(add_completion=False, help="DeckWeaver plan-review-produce deck CLI")
logger = get_logger(__name__)
console = Console()

REVIEW_HELP = """Commands:
  x N          toggle inclusion of card N
  a QID KEY    answer question QID with option KEY
  r            accept all recommended answers
  c TEXT       set the general comment
  revise       send feedback and revise the plan
  approve      approve the plan and produce the deck
  quit         stop without producing"""


def _settings(artifacts_dir: Path | None) -> Settings:
    settings = load_settings()
    if artifacts_dir is not None:
        settings.artifacts_dir = artifacts_dir
    configure_logging(settings.log_level)
    return settings


def _load_documents(docs_dir: Path) -> list[SourceDocument]:
    documents = DirectoryDocumentProvider(docs_dir).list_documents()
    if not documents:
        raise typer.BadParameter(f"No .md or .txt documents found in {docs_dir}")
    return documents


def _print_estimate(documents: list[SourceDocument], lod: Lod) -> None:
    estimate, low, high = estimate_card_count(sum(d.word_count for d in documents), lod)
    console.print(f"{len(documents)} document(s); expected roughly {estimate} cards ({low}-{high})")
    if high > MAX_CARDS_WARNING:
        console.print(
            f"[yellow]warning:[/yellow] up to {high} cards expected; consider a lower level of detail "
            "or fewer documents"
        )


def _make_session(settings: Settings) -> DeckSession:
    session_id = new_session_id()
    recorder = FileEventRecorder.for_session(settings.artifacts_dir, session_id)
    add_file_handler(recorder.session_dir / "session.log")
    return DeckSession.from_settings(
        settings,
        notify=lambda msg: console.print(f"[yellow]warning:[/yellow] {msg}"),
        on_event=recorder,
        session_id=session_id,
    )


def _print_plan(plan: Plan) -> None:
    table = Table(title=f"Plan ({len(plan.cards)} cards)")
    table.add_column("#", justify="right")
    table.add_column("In")
    table.add_column("Title")
    table.add_column("Description")
    table.add_column("Sources")
    for card in plan.cards:
        sources = "; ".join(f"{s.document}: {s.location}" for s in card.sources)
        table.add_row(str(card.number), "x" if card.included else "-", card.title, card.description, sources)
    console.print(table)

    if plan.revision_notes:
        console.print(f"[bold]Revision notes:[/bold] {plan.revision_notes}")
    for q in plan.questions:
        console.print(f"[bold]{q.id}[/bold] {q.question}")
        for opt in q.options:
            marks = []
            if opt.key == q.recommended_key:
                marks.append("recommended")
            if opt.key == q.answer:
                marks.append("chosen")
            suffix = f" ({', '.join(marks)})" if marks else ""
            console.print(f"    {opt.key}) {opt.label}{suffix}")
    if plan.general_comment:
        console.print(f"[bold]Comment:[/bold] {plan.general_comment}")


def _print_error(session: DeckSession) -> None:
    err = session.error
    if err is None:
        return
    console.print(f"[red]{err.kind} error during {err.failed_operation}:[/red] {err.message}")
    for conflict in err.details.get("conflicts", []):
        console.print(f"  - [{conflict.get('severity')}] {conflict.get('description')}")
    for problem in err.details.get("problems", [])[:10]:
        console.print(f"  - {problem}")


def _print_usage(session: DeckSession) -> None:
    if session.usage is None:
        return
    totals = session.usage.totals
    console.print(
        f"Usage: {totals.call_count} call(s), "
        f"{format_tokens(totals.usage.input_tokens)} in / {format_tokens(totals.usage.output_tokens)} out, "
        f"{format_tokens(totals.usage.cache_read_tokens)} cached, est. {format_cost(totals.cost)}"
    )


def render_deck(cards: list[ProducedCard]) -> str:
    return "\n---\n\n".join(c.to_markdown() for c in sorted(cards, key=lambda c: c.number))


def _briefing(audience: str, presentation_type: str, objective: str, tone: str | None, focus: str | None) -> Briefing:
    return Briefing(
        audience=audience,
        presentation_type=presentation_type,
        objective=objective,
        tone=tone,
        focus=focus,
    )


def _apply_review_command(session: DeckSession, line: str) -> str | None:
    """Apply one draft edit; returns ``revise``/``approve``/``quit`` for pipeline commands."""

    cmd, _, rest = line.strip().partition(" ")
    if cmd in ("revise", "approve", "quit"):
        return cmd
    if cmd == "x" and rest.strip().isdigit():
        included = session.toggle_card_included(int(rest))
        console.print(f"Card {rest.strip()} {'included' if included else 'excluded'}")
    elif cmd == "a":
        qid, _, key = rest.strip().partition(" ")
        session.set_question_answer(qid, key.strip() or None)
    elif cmd == "r":
        console.print(f"Answered {session.set_all_recommended()} question(s)")
    elif cmd == "c":
        session.set_general_comment(rest)
    else:
        console.print(REVIEW_HELP)
    return None


async def _review_loop(session: DeckSession, output: Path) -> SessionState:
    while True:
        if session.state == SessionState.ERROR:
            _print_error(session)
            if session.stable_state != SessionState.PLAN_READY:
                return session.state
            if typer.confirm("Retry the failed step?", default=True):
                await session.retry_from_review()
                continue
            session.back_to_review()

        if session.state == SessionState.COMPLETE:
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_text(render_deck(session.cards), encoding="utf-8")
            console.print(f"Wrote {len(session.cards)} cards to {output}")
            return session.state

        assert session.plan is not None
        _print_plan(session.plan)
        action = None
        while action is None:
            line = typer.prompt("review", default="help")
            try:
                action = _apply_review_command(session, line)
            except OperationRejected as e:
                console.print(f"[red]{e}[/red]")

        if action == "quit":
            session.abort()
            return session.state
        try:
            if action == "revise":
                await session.revise_plan()
            else:
                await session.approve_plan()
        except OperationRejected as e:
            console.print(f"[red]{e}[/red]")


@app.command()
def plan(
    docs_dir: Path = typer.Argument(..., help="Directory of .md/.txt source documents"),
    audience: str = typer.Option(..., "--audience", help="Who the deck is for"),
    presentation_type: str = typer.Option(..., "--type", help="Presentation type, e.g. 'board update'"),
    objective: str = typer.Option(..., "--objective", help="What the deck should achieve"),
    tone: str | None = typer.Option(None, "--tone"),
    focus: str | None = typer.Option(None, "--focus"),
    lod: Lod = typer.Option(Lod.STANDARD, "--lod", help="Level of detail"),
    subject: str | None = typer.Option(None, "--subject", help="Domain hint for expert priming"),
    output: Path = typer.Option(Path("plan.json"), "--output", "-o", help="Output plan JSON file"),
    artifacts_dir: Path | None = typer.Option(None, "--artifacts-dir", help="Overrides DECKWEAVER_ARTIFACTS_DIR"),
) -> None:
    """Generate a card plan and write it as JSON."""

    settings = _settings(artifacts_dir)
    documents = _load_documents(docs_dir)
    _print_estimate(documents, lod)

    session = _make_session(settings)
    logger.info("CLI plan requested", extra={"documents": len(documents)})
    state = asyncio.run(
        session.start_planning(_briefing(audience, presentation_type, objective, tone, focus), documents, lod, subject)
    )
    _print_usage(session)
    if state != SessionState.PLAN_READY or session.plan is None:
        _print_error(session)
        raise typer.Exit(code=1)

    _print_plan(session.plan)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps(session.plan.to_prompt_json(), indent=2, ensure_ascii=False), encoding="utf-8")
    typer.echo(str(output))


@app.command()
def run(
    docs_dir: Path = typer.Argument(..., help="Directory of .md/.txt source documents"),
    audience: str = typer.Option(..., "--audience", help="Who the deck is for"),
    presentation_type: str = typer.Option(..., "--type", help="Presentation type, e.g. 'board update'"),
    objective: str = typer.Option(..., "--objective", help="What the deck should achieve"),
    tone: str | None = typer.Option(None, "--tone"),
    focus: str | None = typer.Option(None, "--focus"),
    lod: Lod = typer.Option(Lod.STANDARD, "--lod", help="Level of detail"),
    subject: str | None = typer.Option(None, "--subject", help="Domain hint for expert priming"),
    output: Path = typer.Option(Path("deck.md"), "--output", "-o", help="Output markdown file"),
    artifacts_dir: Path | None = typer.Option(None, "--artifacts-dir", help="Overrides DECKWEAVER_ARTIFACTS_DIR"),
) -> None:
    """Plan, review interactively, then produce the deck as markdown."""

    settings = _settings(artifacts_dir)
    documents = _load_documents(docs_dir)
    _print_estimate(documents, lod)
    session = _make_session(settings)
    briefing = _briefing(audience, presentation_type, objective, tone, focus)
    logger.info("CLI run requested", extra={"documents": len(documents)})

    async def _main() -> SessionState:
        await session.start_planning(briefing, documents, lod, subject)
        if session.state != SessionState.PLAN_READY:
            _print_error(session)
            return session.state
        return await _review_loop(session, output)

    final = asyncio.run(_main())
    _print_usage(session)
    if final != SessionState.COMPLETE:
        raise typer.Exit(code=1)
    typer.echo(str(output))


if __name__ == "__main__":
    app()
