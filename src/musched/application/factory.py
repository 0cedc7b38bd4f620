"""
Deck Factory
Wires the card store, familiarity cache, tag registry and scheduler for one deck.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from musched.application.config import AppConfig
from musched.application.scheduler import Scheduler
from musched.application.tag_registry import TagRegistry, history_digest
from musched.domain.constants import FAMILIARITY_CACHE_FILE
from musched.domain.errors import CorruptStateError, DeckAccessError, MuschedError, StateWriteError
from musched.domain.models import Card, CardId, utc_now
from musched.domain.ports import ReconcileReport
from musched.infrastructure.card_store import FileCardStore
from musched.infrastructure.familiarity_cache import FamiliarityCache

logger = logging.getLogger(__name__)


@dataclass
class Deck:
    config: AppConfig
    store: FileCardStore
    cache: FamiliarityCache
    registry: TagRegistry
    scheduler: Scheduler
    reconciled: ReconcileReport = field(default_factory=ReconcileReport)

    @property
    def cards(self) -> dict[CardId, Card]:
        return self.scheduler.cards

    @property
    def issues(self) -> list[MuschedError]:
        return self.store.issues


def _history_size(cards: dict[CardId, Card]) -> int:
    return sum(len(card.review.history) for card in cards.values())


def open_deck(
    config: AppConfig,
    rebuild: bool = False,
    clock: Callable[[], datetime] = utc_now,
) -> Deck:
    """
    Load a deck, reconcile its state records and restore tag familiarity.

    The familiarity cache is rebuilt from card histories when `rebuild` is
    set, when it is missing or corrupt, or when it does not cover exactly the
    reviews and tags recorded in the cards.

    Raises:
        DeckAccessError: the deck root is missing or unreadable.
    """
    root = config.deck_root
    if root is None or not root.is_dir():
        raise DeckAccessError(root or Path.cwd())

    params = config.scheduling
    store = FileCardStore(
        root,
        state_dir=config.state_dir,
        card_suffixes=config.card_suffixes,
        starting_ease=params.starting_ease,
        clock=clock,
    )
    cards = store.load()
    reconciled = store.reconcile(store.source_files())

    cache = FamiliarityCache(config.state_dir / FAMILIARITY_CACHE_FILE)
    digest = history_digest(cards.values())
    registry = None
    if not rebuild:
        try:
            registry = cache.load(params)
        except CorruptStateError as e:
            logger.warning(f"{e}; rebuilding")
        if registry is not None and registry.source_digest != digest:
            logger.warning(
                f"Familiarity cache does not match the cards ({registry.reviews_seen} cached "
                f"reviews, {_history_size(cards)} recorded); rebuilding"
            )
            registry = None

    if registry is None:
        registry = TagRegistry.from_cards(cards.values(), params)
        try:
            cache.save(registry)
        except StateWriteError as e:
            logger.warning(f"Familiarity cache not saved: {e}")

    scheduler = Scheduler(
        cards, store, registry, params, familiarity_store=cache, tag_params=config.tag_params()
    )
    return Deck(
        config=config,
        store=store,
        cache=cache,
        registry=registry,
        scheduler=scheduler,
        reconciled=reconciled,
    )
