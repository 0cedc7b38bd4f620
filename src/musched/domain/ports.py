"""
Ports (interfaces) for card state persistence.

Application services depend on these abstractions, not on the flat-file
implementation.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from musched.domain.errors import MuschedError
from musched.domain.models import Card, CardId


@dataclass
class ReconcileReport:
    """State records created and dropped by a reconcile pass."""

    added: list[CardId] = field(default_factory=list)
    removed: list[CardId] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)


class CardRepository(ABC):
    """
    Port for loading and persisting per-card review state.

    Implementations:
        - FileCardStore: one YAML record per card under the deck's state directory.
    """

    issues: list[MuschedError]

    @abstractmethod
    def load(self) -> dict[CardId, Card]:
        """
        Load every card of the deck with its review state.

        Bad headers and corrupt records are collected in `issues`, never raised.
        """

    @abstractmethod
    def save(self, card: Card) -> None:
        """
        Atomically persist the review state of one card.

        Raises:
            StateWriteError: the write failed; the previous record is unchanged.
        """

    @abstractmethod
    def reconcile(self, known_source_files: Iterable[Path]) -> ReconcileReport:
        """Drop records of vanished source files; create New records for unseen ones."""

    @abstractmethod
    def source_files(self) -> list[Path]:
        """List the card source files currently present in the deck."""
