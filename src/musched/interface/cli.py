"""musched CLI: review sessions, queue inspection and deck maintenance."""

import json
import logging
import sys
from pathlib import Path
from typing import Annotated, Any

import typer
from pydantic import ValidationError

from musched.application.config import AppConfig, resolve_config
from musched.application.factory import Deck, open_deck
from musched.application.utils.text import format_duration
from musched.domain.errors import DeckAccessError
from musched.domain.models import GradedCard, utc_now

# ---------------------------------------------------------------------------
# Root app
# ---------------------------------------------------------------------------

app = typer.Typer(
    help="musched: spaced-repetition scheduling for cards kept as plain files.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

config_app = typer.Typer(help="Inspect musched configuration.")
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

DeckArg = Annotated[
    Path | None,
    typer.Argument(help="Deck directory. Defaults to 'deck_root' in config, or CWD."),
]
JsonOpt = Annotated[bool, typer.Option("--json", help="Output as JSON.")]


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
    ] = 0,
    quiet: Annotated[bool, typer.Option("--quiet", "-q", help="Only show warnings and errors.")] = False,
):
    """Global settings for musched."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = 0 if quiet else 1 + verbose

    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO
    logging.getLogger().setLevel(level)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _resolve(ctx: typer.Context, deck: Path | None, **overrides: Any) -> AppConfig:
    obj = ctx.obj or {}
    try:
        return resolve_config(deck, {"verbose": obj.get("verbose"), **overrides})
    except ValidationError as e:
        typer.secho(f"Invalid configuration:\n{e}", fg="red", err=True)
        raise typer.Exit(1) from None


def _open(config: AppConfig, rebuild: bool = False) -> Deck:
    try:
        deck = open_deck(config, rebuild=rebuild)
    except DeckAccessError as e:
        typer.secho(f"Error: {e}", fg="red", err=True)
        raise typer.Exit(1) from None

    if deck.issues and config.verbose > 0:
        typer.secho(
            f"{len(deck.issues)} card(s) skipped or reset; run 'musched check' for details.",
            fg="yellow",
            err=True,
        )
    return deck


def _fmt_time(value) -> str:
    return value.astimezone().strftime("%Y-%m-%d %H:%M")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def review(
    ctx: typer.Context,
    deck: DeckArg = None,
    viewer: Annotated[
        str | None, typer.Option(help="Command used to open card documents.")
    ] = None,
    new: Annotated[
        int | None, typer.Option("--new", min=0, help="Maximum number of new cards to introduce.")
    ] = None,
):
    """[bold green]Review[/bold green] the cards that are due."""
    from musched.application.session import ReviewSession
    from musched.infrastructure.presenters import SystemPresenter
    from musched.interface.terminal import TerminalGradeSource

    overrides: dict[str, Any] = {"viewer": viewer}
    if new is not None:
        overrides["scheduling"] = {"new_cards_per_session": new}
    config = _resolve(ctx, deck, **overrides)
    d = _open(config)

    def show(result: GradedCard) -> None:
        typer.echo(
            f"  {result.grade} -> {result.card.review.state.value}, "
            f"next in {format_duration(result.card.review.interval)}"
        )

    session = ReviewSession(
        d.scheduler,
        SystemPresenter(config.viewer),
        TerminalGradeSource(),
        on_graded=show,
    )
    summary = session.run()

    typer.echo(
        f"\nReviewed {summary.reviewed} card(s), postponed {summary.postponed}, "
        f"skipped {len(summary.skipped)}."
    )
    for error in summary.errors:
        typer.secho(f"  {error}", fg="yellow")

    if not summary.quit:
        upcoming = min(d.cards.values(), key=lambda c: c.review.due, default=None)
        if upcoming is None:
            typer.echo("Deck is empty.")
        else:
            typer.echo(f"No cards due. Next: {upcoming.id} at {_fmt_time(upcoming.review.due)}")


@app.command()
def due(
    ctx: typer.Context,
    deck: DeckArg = None,
    limit: Annotated[int | None, typer.Option(help="Show at most this many cards.")] = None,
    json_output: JsonOpt = False,
):
    """List the due queue with the interval each grade would give."""
    d = _open(_resolve(ctx, deck))
    queue = d.scheduler.due_queue(utc_now())
    if limit is not None:
        queue = queue[:limit]

    if json_output:
        rows = [
            {
                "id": card.id,
                "state": card.review.state.value,
                "priority": card.priority,
                "due": card.review.due.isoformat(),
                "tags": list(card.tags),
                "previews": {
                    str(g): format_duration(iv) for g, iv in d.scheduler.preview(card).items()
                },
            }
            for card in queue
        ]
        typer.echo(json.dumps(rows, indent=2))
        return

    if not queue:
        typer.secho("No cards due.", fg="green")
        return

    typer.echo(f"Due: {len(queue)}")
    for card in queue:
        previews = "  ".join(
            f"{g}:{format_duration(iv)}" for g, iv in d.scheduler.preview(card).items()
        )
        typer.echo(
            f"  {card.id}  [{card.review.state.value}, p{card.priority}]  "
            f"due {_fmt_time(card.review.due)}  {previews}"
        )


@app.command()
def tags(ctx: typer.Context, deck: DeckArg = None, json_output: JsonOpt = False):
    """Show tag familiarity, least familiar first."""
    d = _open(_resolve(ctx, deck))
    names = {tag for card in d.cards.values() for tag in card.tags} | set(d.registry.records)
    records = sorted((d.registry.get(t) for t in names), key=lambda r: (r.familiarity, r.tag))

    if json_output:
        typer.echo(
            json.dumps(
                [
                    {"tag": r.tag, "familiarity": round(r.familiarity, 4), "samples": r.samples}
                    for r in records
                ],
                indent=2,
            )
        )
        return

    if not records:
        typer.echo("No tags.")
        return
    width = max(len(r.tag) for r in records)
    for r in records:
        typer.echo(f"  {r.tag.ljust(width)}  {r.familiarity:.3f}  ({r.samples} reviews)")


@app.command()
def stats(ctx: typer.Context, deck: DeckArg = None, json_output: JsonOpt = False):
    """Summarize deck state, retention and review activity."""
    from musched.application.stats import deck_statistics

    d = _open(_resolve(ctx, deck))
    s = deck_statistics(d.cards.values(), d.registry, utc_now())

    def pct(value: float | None) -> str:
        return "-" if value is None else f"{value:.0%}"

    if json_output:
        typer.echo(
            json.dumps(
                {
                    "total": s.total,
                    "by_state": {state.value: n for state, n in s.by_state.items()},
                    "due": s.due,
                    "reviews": s.reviews,
                    "retention": s.retention,
                    "lapse_rate": s.lapse_rate,
                    "adaptive_retention": s.adaptive_retention,
                    "mean_ease": s.mean_ease,
                    "activity": {day.isoformat(): n for day, n in s.activity.items()},
                    "tags": [
                        {
                            "tag": t.tag,
                            "cards": t.cards,
                            "familiarity": t.familiarity,
                            "reviews": t.reviews,
                            "retention": t.retention,
                            "adaptive_retention": t.adaptive_retention,
                        }
                        for t in s.tags
                    ],
                },
                indent=2,
            )
        )
        return

    states = "  ".join(f"{state.value}: {n}" for state, n in s.by_state.items())
    typer.echo(f"Cards: {s.total}  ({states})")
    typer.echo(f"Due now: {s.due}")
    typer.echo(f"Reviews: {s.reviews}  Retention: {pct(s.retention)}  Lapse rate: {pct(s.lapse_rate)}")
    if s.adaptive_retention is not None:
        typer.echo(f"Recent retention (weighted): {pct(s.adaptive_retention)}")
    if s.mean_ease is not None:
        typer.echo(f"Mean ease (review cards): {s.mean_ease:.2f}")
    if s.tags:
        typer.echo("\nTags:")
        for t in s.tags:
            typer.echo(
                f"  {t.tag}: {t.cards} cards, familiarity {t.familiarity:.2f}, "
                f"retention {pct(t.retention)}"
            )
    if s.activity:
        typer.echo("\nActivity (last 7 days with reviews):")
        for day, n in list(s.activity.items())[-7:]:
            typer.echo(f"  {day.isoformat()}  {n}")


@app.command()
def rebuild(ctx: typer.Context, deck: DeckArg = None):
    """Rebuild the tag familiarity cache from card histories."""
    d = _open(_resolve(ctx, deck), rebuild=True)
    typer.secho(
        f"Rebuilt familiarity for {len(d.registry.records)} tags "
        f"from {d.registry.reviews_seen} reviews.",
        fg="green",
    )


@app.command()
def check(ctx: typer.Context, deck: DeckArg = None, json_output: JsonOpt = False):
    """Validate every card header and state record without writing anything."""
    from musched.infrastructure.card_store import FileCardStore

    config = _resolve(ctx, deck)
    store = FileCardStore(
        config.deck_root,
        state_dir=config.state_dir,
        card_suffixes=config.card_suffixes,
        starting_ease=config.scheduling.starting_ease,
    )
    try:
        cards = store.load()
    except DeckAccessError as e:
        typer.secho(f"Error: {e}", fg="red", err=True)
        raise typer.Exit(1) from None

    if json_output:
        typer.echo(
            json.dumps(
                {
                    "ok": not store.issues,
                    "cards": len(cards),
                    "issues": [
                        {"type": type(e).__name__, "message": str(e)} for e in store.issues
                    ],
                },
                indent=2,
            )
        )
    elif store.issues:
        typer.secho(f"{len(store.issues)} problem(s):", fg="red")
        for issue in store.issues:
            typer.echo(f"  {type(issue).__name__}: {issue}")
    else:
        typer.secho(f"All {len(cards)} cards OK.", fg="green")

    if store.issues:
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Config subgroup
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show(ctx: typer.Context, deck: DeckArg = None):
    """Display final resolved configuration."""
    config = _resolve(ctx, deck)
    typer.echo(json.dumps(config.model_dump(mode="json"), indent=2))
