"""
Scheduler: due-queue selection and grade application.

The due queue is never persisted. It is recomputed from the loaded cards as
those due at `now`, ordered by due time (earliest first), then priority
(highest first), then mean tag familiarity (least familiar first).
"""

import logging
from collections.abc import Collection, Iterable, Mapping
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Protocol

from musched.application.config import SchedulingParams
from musched.application.interval_model import apply_grade, preview_intervals
from musched.application.tag_registry import TagRegistry, history_digest
from musched.domain.errors import StateWriteError, UnknownCardError
from musched.domain.models import Card, CardId, CardState, Grade, GradedCard
from musched.domain.ports import CardRepository

logger = logging.getLogger(__name__)


def due_queue(
    cards: Iterable[Card],
    registry: TagRegistry,
    now: datetime,
    include_new: bool = True,
    exclude: Collection[CardId] = (),
) -> list[Card]:
    """Cards due at `now` in review order."""
    due = [
        card
        for card in cards
        if card.is_due(now)
        and card.id not in exclude
        and (include_new or card.review.state is not CardState.NEW)
    ]
    return sorted(
        due,
        key=lambda card: (
            card.review.due,
            -card.priority,
            registry.mean_familiarity(card.tags),
            card.id,
        ),
    )


def next_due(
    cards: Iterable[Card],
    registry: TagRegistry,
    now: datetime,
    include_new: bool = True,
    exclude: Collection[CardId] = (),
) -> Card | None:
    """Head of the due queue, or None when no card is due."""
    queue = due_queue(cards, registry, now, include_new=include_new, exclude=exclude)
    return queue[0] if queue else None


class FamiliarityStore(Protocol):
    """Anything that can persist a TagRegistry (see infrastructure.familiarity_cache)."""

    def save(self, registry: TagRegistry) -> None: ...


class Scheduler:
    """
    Applies grades to cards and persists the result.

    Grading persists through the card repository first and only then updates
    the tag registry, so a failed save leaves both untouched.
    """

    def __init__(
        self,
        cards: dict[CardId, Card],
        store: CardRepository,
        registry: TagRegistry,
        params: SchedulingParams,
        familiarity_store: FamiliarityStore | None = None,
        tag_params: Mapping[str, SchedulingParams] | None = None,
    ):
        self.cards = cards
        self.store = store
        self.registry = registry
        self.params = params
        self.familiarity_store = familiarity_store
        self.tag_params = dict(tag_params or {})

    def params_for(self, card: Card) -> SchedulingParams:
        """Settings of the card's first tag that has its own section, else the deck's."""
        for tag in card.tags:
            if tag in self.tag_params:
                return self.tag_params[tag]
        return self.params

    def due_queue(self, now: datetime, include_new: bool = True, exclude: Collection[CardId] = ()) -> list[Card]:
        return due_queue(self.cards.values(), self.registry, now, include_new, exclude)

    def next_due(self, now: datetime, include_new: bool = True, exclude: Collection[CardId] = ()) -> Card | None:
        return next_due(self.cards.values(), self.registry, now, include_new, exclude)

    def _lookup(self, card: Card | CardId) -> Card:
        card_id = card.id if isinstance(card, Card) else card
        try:
            return self.cards[card_id]
        except KeyError:
            raise UnknownCardError(card_id) from None

    def preview(self, card: Card | CardId) -> dict[Grade, timedelta]:
        """Interval per possible grade, from the card's current ease and familiarity."""
        card = self._lookup(card)
        return preview_intervals(
            card.review,
            self.registry.mean_familiarity(card.tags),
            self.params_for(card),
            card.meta.max_interval,
            card.priority,
        )

    def grade(self, card: Card | CardId, grade: Grade | int | str, now: datetime) -> GradedCard:
        """
        Grade a card, persist its new state and update tag familiarity.

        Raises:
            UnknownCardError: the card is not part of the loaded deck.
            InvalidGradeError: `grade` is not one of the five grades.
            StateWriteError: the record could not be saved; nothing was changed.
        """
        card = self._lookup(card)
        grade = Grade.parse(grade)

        familiarity = self.registry.mean_familiarity(card.tags)
        params = self.params_for(card)
        previews = preview_intervals(
            card.review, familiarity, params, card.meta.max_interval, card.priority
        )
        review = apply_grade(
            card.review, grade, familiarity, now, params, card.meta.max_interval, card.priority
        )
        updated = replace(card, review=review)

        self.store.save(updated)
        self.cards[card.id] = updated
        self.registry.apply(card.tags, grade, now)
        self.registry.source_digest = history_digest(self.cards.values())
        self._save_familiarity()

        logger.debug(
            f"Graded {card.id} {grade}: {card.review.state.value} -> {review.state.value}, "
            f"interval {review.interval}, ease {review.ease:.2f}"
        )
        return GradedCard(card=updated, grade=grade, previous=card.review, previews=previews)

    def postpone(self, card: Card | CardId, now: datetime) -> Card:
        """Push a card's due time to `now + postpone_interval` without grading it."""
        card = self._lookup(card)
        updated = replace(card, review=replace(card.review, due=now + self.params.postpone_interval))
        self.store.save(updated)
        self.cards[card.id] = updated
        logger.debug(f"Postponed {card.id} until {updated.review.due.isoformat()}")
        return updated

    def _save_familiarity(self) -> None:
        if self.familiarity_store is None:
            return
        try:
            self.familiarity_store.save(self.registry)
        except StateWriteError as e:
            # The cache is rebuilt from card histories on the next open.
            logger.warning(f"Familiarity cache not saved: {e}")
