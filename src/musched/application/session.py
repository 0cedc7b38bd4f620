"""
Review session: the loop that shows due cards and feeds grades to the scheduler.

No scheduling decisions are made here. Every grade is persisted by the
scheduler before the next card is picked, so quitting (or crashing) at any
point loses nothing but the card currently on screen.
"""

import logging
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Protocol

from musched.application.scheduler import Scheduler
from musched.domain.errors import MuschedError, PresentationError, StateWriteError
from musched.domain.models import Card, CardId, CardState, Grade, GradedCard, utc_now

logger = logging.getLogger(__name__)


class SessionCommand(Enum):
    """Non-grade answers from the input collaborator."""

    QUIT = "quit"
    POSTPONE = "postpone"
    VIEW = "view"  # present the card again


class CardPresenter(Protocol):
    def present(self, card: Card) -> None: ...


class GradeSource(Protocol):
    def read(self, card: Card, previews: dict[Grade, timedelta]) -> Grade | SessionCommand: ...


@dataclass
class SessionSummary:
    grades: Counter[Grade] = field(default_factory=Counter)
    new_introduced: int = 0
    postponed: int = 0
    skipped: list[CardId] = field(default_factory=list)
    errors: list[MuschedError] = field(default_factory=list)
    quit: bool = False

    @property
    def reviewed(self) -> int:
        return sum(self.grades.values())


class ReviewSession:
    """
    Args:
        scheduler: Scheduler bound to the open deck.
        presenter: Shows a card (opens its document, runs its command).
        grade_source: Asks the user for a grade or a command.
        clock: Returns "now"; read afresh before every pick and grade.
        on_graded: Called with the outcome of every successful grade.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        presenter: CardPresenter,
        grade_source: GradeSource,
        clock: Callable[[], datetime] = utc_now,
        on_graded: Callable[[GradedCard], None] | None = None,
    ):
        self.scheduler = scheduler
        self.presenter = presenter
        self.grade_source = grade_source
        self.clock = clock
        self.on_graded = on_graded

    def _new_allowed(self, summary: SessionSummary) -> bool:
        limit = self.scheduler.params.new_cards_per_session
        return limit is None or summary.new_introduced < limit

    def _skip(self, card: Card, error: MuschedError, summary: SessionSummary) -> None:
        logger.warning(f"Skipping {card.id}: {error}")
        summary.errors.append(error)
        summary.skipped.append(card.id)

    def _present(self, card: Card, summary: SessionSummary) -> bool:
        try:
            self.presenter.present(card)
        except PresentationError as e:
            self._skip(card, e, summary)
            return False
        return True

    def run(self) -> SessionSummary:
        """Review until no card is due or the user quits."""
        summary = SessionSummary()

        while True:
            card = self.scheduler.next_due(
                self.clock(),
                include_new=self._new_allowed(summary),
                exclude=summary.skipped,
            )
            if card is None:
                break

            previews = self.scheduler.preview(card)
            if not self._present(card, summary):
                continue

            answer = self.grade_source.read(card, previews)
            while answer is SessionCommand.VIEW and self._present(card, summary):
                answer = self.grade_source.read(card, previews)

            if answer is SessionCommand.VIEW:
                continue  # presenting again failed; the card was skipped
            if answer is SessionCommand.QUIT:
                summary.quit = True
                break

            try:
                if answer is SessionCommand.POSTPONE:
                    self.scheduler.postpone(card, self.clock())
                    summary.postponed += 1
                    continue
                was_new = card.review.state is CardState.NEW
                result = self.scheduler.grade(card, answer, self.clock())
            except StateWriteError as e:
                self._skip(card, e, summary)
                continue

            summary.grades[result.grade] += 1
            if was_new:
                summary.new_introduced += 1
            if self.on_graded:
                self.on_graded(result)

        logger.info(
            f"Session ended: {summary.reviewed} reviewed, {summary.postponed} postponed, "
            f"{len(summary.skipped)} skipped"
        )
        return summary
