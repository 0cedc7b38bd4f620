"""
Deck statistics derived from loaded cards and the tag registry.

This is a pure computation module with no I/O.
"""

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime

from musched.application.config import SchedulingParams
from musched.application.tag_registry import TagRegistry
from musched.domain.constants import RETENTION_SCORES
from musched.domain.models import Card, CardState, Grade


@dataclass
class TagStats:
    """
    Per-tag summary.

    Attributes:
        tag: Tag name.
        cards: Number of cards carrying the tag.
        familiarity: Current familiarity from the registry.
        samples: Grades folded into the familiarity.
        reviews: Graded reviews of cards carrying the tag.
        retention: Share of those reviews that were not a fail.
        adaptive_retention: Recency-weighted retention of those reviews.
    """

    tag: str
    cards: int
    familiarity: float
    samples: int
    reviews: int
    retention: float | None
    adaptive_retention: float | None = None


@dataclass
class DeckStats:
    total: int
    by_state: dict[CardState, int]
    due: int
    reviews: int
    retention: float | None  # non-fail grades / all grades
    lapse_rate: float | None  # lapses / reviews
    adaptive_retention: float | None  # recency-weighted, see adaptive_retention()
    mean_ease: float | None  # over Review cards
    activity: dict[date, int] = field(default_factory=dict)  # reviews per UTC day
    tags: list[TagStats] = field(default_factory=list)


def _retention(passed: int, total: int) -> float | None:
    if total == 0:
        return None
    return passed / total


def adaptive_retention(grades: Iterable[Grade], params: SchedulingParams) -> float | None:
    """
    Recency-weighted retention over chronologically ordered grades.

    Starts at `desired_retention_rate`; each grade moves the average toward
    its score (fail 0, hard 0.95, okay 1.0, good 1.02, easy 1.05) by
    `retention_score_weight`, so recent reviews count most. None without grades.
    """
    rate = params.desired_retention_rate
    weight = params.retention_score_weight
    seen = False
    for grade in grades:
        rate = (1 - weight) * rate + weight * RETENTION_SCORES[grade]
        seen = True
    return rate if seen else None


def deck_statistics(cards: Iterable[Card], registry: TagRegistry, now: datetime) -> DeckStats:
    cards = list(cards)
    by_state = Counter(card.review.state for card in cards)

    reviews = passed = lapses = 0
    activity: Counter[date] = Counter()
    tag_cards: Counter[str] = Counter()
    tag_reviews: Counter[str] = Counter()
    tag_passed: Counter[str] = Counter()
    events = []

    for card in cards:
        lapses += card.review.lapses
        tag_cards.update(card.tags)
        for i, entry in enumerate(card.review.history):
            events.append((entry.time, card.id, i, card.tags, entry.grade))
            ok = entry.grade is not Grade.FAIL
            reviews += 1
            passed += ok
            activity[entry.time.date()] += 1
            for tag in card.tags:
                tag_reviews[tag] += 1
                tag_passed[tag] += ok

    # Same order as TagRegistry.rebuild()
    events.sort(key=lambda e: (e[0], e[1], e[2]))
    params = registry.params
    tag_grades: dict[str, list[Grade]] = {}
    for *_, tags, grade in events:
        for tag in tags:
            tag_grades.setdefault(tag, []).append(grade)

    review_eases = [c.review.ease for c in cards if c.review.state is CardState.REVIEW]

    tags = [
        TagStats(
            tag=tag,
            cards=count,
            familiarity=registry.familiarity(tag),
            samples=registry.get(tag).samples,
            reviews=tag_reviews[tag],
            retention=_retention(tag_passed[tag], tag_reviews[tag]),
            adaptive_retention=adaptive_retention(tag_grades.get(tag, []), params),
        )
        for tag, count in sorted(tag_cards.items())
    ]

    return DeckStats(
        total=len(cards),
        by_state={state: by_state.get(state, 0) for state in CardState},
        due=sum(1 for card in cards if card.is_due(now)),
        reviews=reviews,
        retention=_retention(passed, reviews),
        lapse_rate=lapses / reviews if reviews else None,
        adaptive_retention=adaptive_retention((e[-1] for e in events), params),
        mean_ease=sum(review_eases) / len(review_eases) if review_eases else None,
        activity=dict(sorted(activity.items())),
        tags=tags,
    )
