"""Terminal input for review sessions."""

from datetime import timedelta

import typer

from musched.application.session import SessionCommand
from musched.application.utils.text import format_duration
from musched.domain.models import Card, Grade

GRADE_KEYS = {grade.name[0].lower(): grade for grade in Grade}  # f, h, o, g, e

COMMAND_KEYS = {
    "q": SessionCommand.QUIT,
    "quit": SessionCommand.QUIT,
    "p": SessionCommand.POSTPONE,
    "postpone": SessionCommand.POSTPONE,
    "v": SessionCommand.VIEW,
    "view": SessionCommand.VIEW,
}


def parse_answer(text: str) -> Grade | SessionCommand | None:
    """Map a typed answer to a grade or command; None if it is neither."""
    key = text.strip().lower()
    if key in GRADE_KEYS:
        return GRADE_KEYS[key]
    if key in COMMAND_KEYS:
        return COMMAND_KEYS[key]
    try:
        return Grade[key.upper()]
    except KeyError:
        return None


def format_previews(previews: dict[Grade, timedelta]) -> str:
    return "  ".join(f"[{str(g)[0]}]{str(g)[1:]} {format_duration(d)}" for g, d in previews.items())


class TerminalGradeSource:
    """Prompts on the terminal until a valid grade or command is typed."""

    def read(self, card: Card, previews: dict[Grade, timedelta]) -> Grade | SessionCommand:
        typer.secho(f"\n{card.id}", bold=True)
        typer.echo(f"  tags: {', '.join(card.tags)}  priority: {card.priority}  state: {card.review.state.value}")
        typer.echo(f"  {format_previews(previews)}")
        typer.echo("  [p]ostpone  [v]iew again  [q]uit")

        while True:
            try:
                text = typer.prompt("grade", prompt_suffix="> ")
            except typer.Abort:
                return SessionCommand.QUIT
            answer = parse_answer(text)
            if answer is not None:
                return answer
            typer.secho(f"Unknown answer '{text}'.", fg="yellow")
