"""Collate CLI — study sessions, pool previews, analytics and configuration."""

import asyncio
import json
import logging
import sys
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Any

import typer

from collate.application.config import AppConfig, resolve_config
from collate.domain.constants import HEATMAP_WEEKS
from collate.domain.errors import CollateError, NothingToStudy, PersistenceError
from collate.domain.models import SessionSummary, StudyPlan, StudyScope

# ---------------------------------------------------------------------------
# Root app
# ---------------------------------------------------------------------------

app = typer.Typer(
    help="collate: Study flashcards with mastery tracking and smart review.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

config_app = typer.Typer(help="Manage collate configuration.")
app.add_typer(config_app, name="config")

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

RATING_LABELS = {
    1: "Didn't know",
    2: "Struggled",
    3: "Okay",
    4: "Good",
    5: "Perfect",
}

# ---------------------------------------------------------------------------
# Global callback
# ---------------------------------------------------------------------------


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose", "-v", count=True, help="Increase verbosity. Repeat for more detail."
        ),
    ] = 1,
    deck_path: Annotated[
        Path | None, typer.Option(help="YAML deck file (yaml backend).")
    ] = None,
    backend: Annotated[str | None, typer.Option(help="Card store backend: yaml, http.")] = None,
    store_url: Annotated[str | None, typer.Option(help="Card store API URL (http backend).")] = None,
):
    """Global settings for collate."""
    ctx.ensure_object(dict)
    ctx.obj["overrides"] = {
        "deck_path": deck_path,
        "backend": backend,
        "store_url": store_url,
        "verbose": verbose,
    }
    if verbose > 1:
        logging.getLogger().setLevel(logging.DEBUG)


def _resolve(ctx: typer.Context, **extra: Any) -> AppConfig:
    overrides = dict((ctx.obj or {}).get("overrides", {}))
    overrides.update(extra)
    return resolve_config(overrides)


def _scope(course: str | None, deck: str | None, file: str | None) -> StudyScope:
    options = (("course", course), ("deck", deck), ("file", file))
    chosen = [(kind, value) for kind, value in options if value]
    if len(chosen) > 1:
        raise typer.BadParameter("Use only one of --course, --deck or --file.")
    if not chosen:
        return StudyScope()
    kind, value = chosen[0]
    return StudyScope(kind=kind, id=value)


def _format_time(ms: int) -> str:
    seconds = ms // 1000
    return f"{seconds // 60}:{seconds % 60:02d}"


def _run_with_service(config: AppConfig, action):
    """Run `action(service)` on a fresh event loop, closing the store afterwards."""
    from collate.application.factory import get_study_service

    async def run():
        service = get_study_service(config)
        try:
            return await action(service)
        finally:
            await service.aclose()

    return asyncio.run(run())


CourseOpt = Annotated[str | None, typer.Option("--course", help="Limit to one course id.")]
DeckOpt = Annotated[str | None, typer.Option("--deck", help="Limit to one custom deck id.")]
FileOpt = Annotated[str | None, typer.Option("--file", help="Limit to one source file id.")]


# ---------------------------------------------------------------------------
# Root commands
# ---------------------------------------------------------------------------


@app.command()
def preview(
    ctx: typer.Context,
    course: CourseOpt = None,
    deck: DeckOpt = None,
    file: FileOpt = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """Show what a study session over this scope would contain."""
    from collate.application.card_selector import available_limits

    config = _resolve(ctx)
    scope = _scope(course, deck, file)

    try:
        result = _run_with_service(config, lambda service: service.preview(scope))
    except CollateError as e:
        typer.secho(f"Error: {e}", fg="red", err=True)
        raise typer.Exit(1) from e

    limits = ["all" if n is None else n for n in available_limits(result)]
    if json_output:
        typer.echo(json.dumps({**asdict(result), "limits": limits}, indent=2))
        return

    typer.echo(f"Cards: {result.total}  Mastered: {result.mastered}  To study: {result.unmastered}")
    if result.needs_review:
        typer.secho(f"Needs review: {result.needs_review}", fg="yellow")
    if result.due_for_review:
        typer.secho(f"Due for review: {result.due_for_review}", fg="yellow")
    typer.echo(f"Never studied: {result.never_studied}")
    typer.echo(f"Limits: {', '.join(str(n) for n in limits)}")


@app.command()
def mastery(
    ctx: typer.Context,
    course: CourseOpt = None,
    deck: DeckOpt = None,
    file: FileOpt = None,
):
    """Show aggregate mastery for a scope."""
    config = _resolve(ctx)
    scope = _scope(course, deck, file)

    try:
        result = _run_with_service(config, lambda service: service.mastery(scope))
    except CollateError as e:
        typer.secho(f"Error: {e}", fg="red", err=True)
        raise typer.Exit(1) from e

    if result.studied_count == 0:
        typer.echo("No cards studied yet.")
        return

    color = {"high": "green", "medium": "yellow", "low": "red"}[result.tier]
    typer.secho(f"Mastery: {result.percentage}% ({result.tier})", fg=color)
    typer.echo(f"Based on {result.studied_count} studied cards.")


@app.command()
def study(
    ctx: typer.Context,
    course: CourseOpt = None,
    deck: DeckOpt = None,
    file: FileOpt = None,
    mode: Annotated[
        str | None,
        typer.Option(help="'smart' = due, weak and new cards first. 'all' = shuffled."),
    ] = None,
    limit: Annotated[int | None, typer.Option(min=1, help="Maximum number of cards.")] = None,
):
    """[bold green]Study[/bold green] flashcards interactively."""
    config = _resolve(ctx)
    scope = _scope(course, deck, file)
    mode = mode or config.default_mode
    if mode not in ("smart", "all"):
        raise typer.BadParameter("Mode must be 'smart' or 'all'.", param_hint="--mode")
    plan = StudyPlan(mode=mode, limit=limit or config.default_limit)

    async def run(service) -> SessionSummary | None:
        session = await service.start_session(scope, plan)
        if session is None:
            return None

        while not session.is_complete:
            card = session.current_card
            typer.echo("")
            typer.secho(
                f"[{session.position + 1}/{len(session.queue)}] {card.question}", bold=True
            )
            command = typer.prompt(
                "[Enter] show answer, (n)ext, (p)revious, (q)uit",
                default="",
                show_default=False,
            ).strip().lower()

            if command == "q":
                break
            if command == "n":
                session.next()
                continue
            if command == "p":
                session.previous()
                continue

            session.flip()
            typer.secho(card.answer, fg="cyan")
            while session.flipped and not session.is_complete:
                answer = typer.prompt("Rate 1-5 (q to quit)", default="", show_default=False)
                answer = answer.strip().lower()
                if answer == "q":
                    return await session.end()
                if answer not in {"1", "2", "3", "4", "5"}:
                    typer.secho("Enter a rating from 1 to 5.", fg="yellow")
                    continue
                try:
                    await session.rate(int(answer))
                except PersistenceError as e:
                    typer.secho(f"Could not save rating: {e}. Try again.", fg="red")

        return await session.end()

    try:
        summary = _run_with_service(config, run)
    except NothingToStudy:
        summary = None
    except CollateError as e:
        typer.secho(f"Error: {e}", fg="red", err=True)
        raise typer.Exit(1) from e

    if summary is None:
        typer.secho("Nothing to study: every card is mastered or the scope is empty.", fg="yellow")
        return

    _print_summary(summary)


def _print_summary(summary: SessionSummary) -> None:
    typer.echo("")
    typer.secho("Session complete!", fg="green", bold=True)
    typer.echo(
        f"You studied {summary.cards_studied} flashcards in {_format_time(summary.time_spent_ms)}"
    )
    typer.echo(f"Average rating: {summary.average_rating:.1f} / 5.0")
    for value, count in summary.rating_distribution.items():
        typer.echo(f"  {value} {RATING_LABELS[value]:<12} {count}")
    if summary.cards_mastered:
        typer.secho(f"{summary.cards_mastered} cards mastered", fg="green")
    if summary.cards_requeued:
        typer.echo(f"{summary.cards_requeued} cards reviewed again")
    for item in summary.file_breakdown:
        name = item.source_name or "Unknown file"
        typer.echo(f"  {name}: {item.card_count} cards, avg {item.average_rating:.1f}")


HEATMAP_SHADES = " .:*#"


@app.command()
def analytics(
    ctx: typer.Context,
    days: Annotated[int, typer.Option(min=1, help="Days of mastery history.")] = 30,
    weeks: Annotated[
        int, typer.Option(min=1, help="Weeks of activity to show.")
    ] = HEATMAP_WEEKS,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """Show study streak, activity, mastery trend and weakest topics."""
    from collate.application.analytics import (
        activity_heatmap,
        courses_from_cards,
        mastery_over_time,
        study_streak,
        weak_topics,
    )
    from collate.application.factory import get_card_store

    config = _resolve(ctx)
    scope = StudyScope()

    async def load():
        store = get_card_store(config)
        try:
            return await store.fetch_pool(scope), await store.fetch_rating_events(scope)
        finally:
            await store.aclose()

    try:
        cards, events = asyncio.run(load())
    except CollateError as e:
        typer.secho(f"Error: {e}", fg="red", err=True)
        raise typer.Exit(1) from e

    today = datetime.now(timezone.utc).date()
    streak = study_streak(events, today)
    heatmap = activity_heatmap(events, today, weeks)
    history = [p for p in mastery_over_time(events, today, days) if p.mastery is not None]
    topics = weak_topics(cards, courses_from_cards(cards))

    if json_output:
        typer.echo(
            json.dumps(
                {
                    "streak": streak,
                    "total_ratings": len(events),
                    "heatmap": [
                        [
                            {"date": d.day.isoformat(), "count": d.count, "intensity": d.intensity}
                            for d in week
                        ]
                        for week in heatmap
                    ],
                    "mastery": [
                        {"date": p.day.isoformat(), "mastery": p.mastery} for p in history
                    ],
                    "topics": [asdict(t) for t in topics],
                },
                indent=2,
            )
        )
        return

    typer.echo(f"Study streak: {streak} day{'s' if streak != 1 else ''}")
    typer.echo(f"Total ratings: {len(events)}")
    active = sum(1 for week in heatmap for d in week if d.count)
    typer.echo(f"Activity: {active} active days in the last {weeks} weeks")
    for week in heatmap:
        shades = "".join(HEATMAP_SHADES[d.intensity] for d in week)
        typer.echo(f"  {week[0].day.isoformat()} |{shades}|")
    if history:
        typer.echo(f"Mastery: {history[0].mastery}% -> {history[-1].mastery}% over {days} days")
    for topic in topics:
        typer.echo(
            f"  {topic.name}: {topic.weak_percentage}% weak, "
            f"{topic.mastery_percentage}% mastery ({topic.studied}/{topic.total} studied)"
        )


@app.command()
def serve(
    port: Annotated[int, typer.Option(help="Port to bind the server to.")] = 8777,
    host: Annotated[str, typer.Option(help="Host to bind the server to.")] = "127.0.0.1",
    reload: Annotated[bool, typer.Option(help="Enable auto-reload.")] = False,
):
    """Run the study session HTTP API."""
    import uvicorn

    uvicorn.run("collate.server:app", host=host, port=port, reload=reload)


# ---------------------------------------------------------------------------
# Config subgroup
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show(ctx: typer.Context):
    """Display final resolved configuration."""
    config = _resolve(ctx)
    d = {k: str(v) if isinstance(v, Path) else v for k, v in config.model_dump().items()}
    if d.get("store_token"):
        d["store_token"] = "***"
    typer.echo(json.dumps(d, indent=2))
