"""
Domain models for cards, reviews and tag familiarity.

These are pure data structures with no I/O or external dependencies.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum, IntEnum
from pathlib import Path

from musched.domain.constants import DEFAULT_EASE
from musched.domain.errors import InvalidGradeError

CardId = str


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Grade(IntEnum):
    """Recall quality supplied after a review. Ordered fail < hard < okay < good < easy."""

    FAIL = 0
    HARD = 1
    OKAY = 2
    GOOD = 3
    EASY = 4

    def __str__(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value: "Grade | int | str") -> "Grade":
        """
        Convert a grade, its index (0-4) or its name into a Grade.

        Anything else raises InvalidGradeError; values are never clamped.
        """
        if isinstance(value, Grade):
            return value
        if isinstance(value, bool):
            raise InvalidGradeError(value)
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                raise InvalidGradeError(value) from None
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise InvalidGradeError(value) from None
        raise InvalidGradeError(value)


class CardState(str, Enum):
    """Lifecycle: NEW -> LEARNING -> REVIEW -> (LAPSED -> LEARNING-like ladder -> REVIEW)."""

    NEW = "new"
    LEARNING = "learning"
    REVIEW = "review"
    LAPSED = "lapsed"

    @property
    def on_ladder(self) -> bool:
        return self is not CardState.REVIEW


@dataclass(frozen=True)
class OpenDocument:
    """Present a card by opening a document (PDF, the card file itself, ...)."""

    path: Path


@dataclass(frozen=True)
class RunCommand:
    """Present a card by running a shell command."""

    command: str


Presentation = OpenDocument | RunCommand


@dataclass(frozen=True)
class CardMeta:
    """
    Static metadata parsed from a card's header. Never modified by the engine.

    Attributes:
        tags: Ordered, deduplicated, case-sensitive tag names.
        priority: 1 (lowest) to 5 (highest).
        max_interval: Optional per-card cap on any computed interval.
        presentations: How the card is shown; empty means "open the card file".
    """

    tags: tuple[str, ...]
    priority: int
    max_interval: timedelta | None = None
    presentations: tuple[Presentation, ...] = ()


@dataclass(frozen=True)
class ReviewEntry:
    """
    A single graded review, kept so that tag familiarity can be replayed.

    Attributes:
        time: When the grade was given.
        grade: The grade.
        due: When the card was due at the time of review.
        state_before: Lifecycle state before the grade.
        ease_before: Ease before the grade.
        interval_before: Interval that the review ended.
    """

    time: datetime
    grade: Grade
    due: datetime
    state_before: CardState
    ease_before: float
    interval_before: timedelta


@dataclass
class ReviewState:
    """Mutable per-card scheduling state, persisted as one record per card."""

    due: datetime
    state: CardState = CardState.NEW
    ease: float = DEFAULT_EASE
    interval: timedelta = timedelta(0)
    repetitions: int = 0
    lapses: int = 0
    last_reviewed: datetime | None = None
    history: list[ReviewEntry] = field(default_factory=list)

    @classmethod
    def new(cls, now: datetime, ease: float = DEFAULT_EASE) -> "ReviewState":
        return cls(due=now, ease=ease)


@dataclass
class Card:
    """A card: identity, static header metadata and mutable review state."""

    id: CardId
    path: Path
    meta: CardMeta
    review: ReviewState

    @property
    def tags(self) -> tuple[str, ...]:
        return self.meta.tags

    @property
    def priority(self) -> int:
        return self.meta.priority

    def is_due(self, now: datetime) -> bool:
        return self.review.due <= now


@dataclass(frozen=True)
class TagFamiliarity:
    """Cached per-tag analogue of ease, derived from the review history."""

    tag: str
    familiarity: float = DEFAULT_EASE
    samples: int = 0
    last_updated: datetime | None = None


@dataclass(frozen=True)
class NextState:
    """Result of the interval model for one (card, grade) pair."""

    ease: float
    interval: timedelta
    repetitions: int
    state: CardState


@dataclass(frozen=True)
class GradedCard:
    """
    Outcome of Scheduler.grade().

    `previews` holds the interval each grade would have produced, computed
    from the pre-grade ease and familiarity.
    """

    card: Card
    grade: Grade
    previous: ReviewState
    previews: dict[Grade, timedelta]
