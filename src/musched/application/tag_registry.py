"""
Tag registry: per-tag familiarity, the tag-level analogue of card ease.

Familiarity is cached state. It is always derivable by replaying the graded
reviews of all cards in chronological order, so the registry can be rebuilt
from the card store at any time.
"""

import hashlib
import logging
from collections.abc import Iterable
from datetime import datetime

from musched.application.config import SchedulingParams
from musched.application.interval_model import mean_familiarity
from musched.domain.models import Card, Grade, TagFamiliarity

logger = logging.getLogger(__name__)


class TagRegistry:
    """
    Mutable store of TagFamiliarity records, passed explicitly to whoever needs it.

    Each grade nudges the familiarity of the card's tags toward a grade-specific
    target using an exponential moving average:

        target = clamp(starting_ease + ease_delta[grade] * target_scale)
        familiarity = clamp(familiarity + rate * (target - familiarity))
    """

    def __init__(
        self,
        params: SchedulingParams,
        records: dict[str, TagFamiliarity] | None = None,
        reviews_seen: int = 0,
        source_digest: str | None = None,
    ):
        self.params = params
        self.records: dict[str, TagFamiliarity] = dict(records or {})
        # Number of graded reviews reflected in `records`; used to detect a stale cache.
        self.reviews_seen = reviews_seen
        # history_digest() of the cards `records` was derived from.
        self.source_digest = source_digest

    def __contains__(self, tag: str) -> bool:
        return tag in self.records

    def get(self, tag: str) -> TagFamiliarity:
        return self.records.get(tag) or TagFamiliarity(tag=tag, familiarity=self.params.starting_ease)

    def familiarity(self, tag: str) -> float:
        return self.get(tag).familiarity

    def mean_familiarity(self, tags: Iterable[str]) -> float:
        """Mean familiarity over `tags`; tags without a record count as the default."""
        return mean_familiarity((self.familiarity(t) for t in tags), self.params.starting_ease)

    def target(self, grade: Grade) -> float:
        p = self.params
        return p.clamp_ease(p.starting_ease + p.ease_deltas[grade] * p.familiarity_target_scale)

    def apply(self, tag_names: Iterable[str], grade: Grade | int | str, when: datetime | None = None) -> None:
        """Incremental update after a single grade of a card carrying `tag_names`."""
        grade = Grade.parse(grade)
        target = self.target(grade)
        rate = self.params.familiarity_rate

        for tag in dict.fromkeys(tag_names):
            current = self.get(tag)
            value = self.params.clamp_ease(
                current.familiarity + rate * (target - current.familiarity)
            )
            self.records[tag] = TagFamiliarity(
                tag=tag,
                familiarity=value,
                samples=current.samples + 1,
                last_updated=when or current.last_updated,
            )
        self.reviews_seen += 1

    def rebuild(self, cards: Iterable[Card]) -> None:
        """
        Recompute every tag's familiarity from scratch.

        Replays every recorded review across all cards in chronological order
        (ties broken by card id, then by position in the card's history).
        """
        cards = list(cards)
        events = []
        for card in cards:
            for i, entry in enumerate(card.review.history):
                events.append((entry.time, card.id, i, card.tags, entry.grade))
        events.sort(key=lambda e: (e[0], e[1], e[2]))

        self.records = {}
        self.reviews_seen = 0
        for when, _card_id, _i, tags, grade in events:
            self.apply(tags, grade, when)
        self.source_digest = history_digest(cards)

        logger.info(f"Rebuilt familiarity for {len(self.records)} tags from {len(events)} reviews")

    @classmethod
    def from_cards(cls, cards: Iterable[Card], params: SchedulingParams) -> "TagRegistry":
        registry = cls(params)
        registry.rebuild(cards)
        return registry


def history_digest(cards: Iterable[Card]) -> str:
    """
    Fingerprint of what familiarity is derived from: each card's id, tags and review count.

    Retagging a card or adding a review changes the digest, so a cache stored
    with an older digest no longer matches the deck.
    """
    h = hashlib.sha256()
    for card in sorted(cards, key=lambda card: card.id):
        line = f"{card.id}\0{chr(31).join(card.tags)}\0{len(card.review.history)}\n"
        h.update(line.encode("utf-8"))
    return h.hexdigest()
