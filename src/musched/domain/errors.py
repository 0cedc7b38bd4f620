"""Exception taxonomy for the scheduling engine.

Per-card problems (bad header, unreadable state record) are reported and
skipped; caller errors fail a single operation; only an unreachable deck
root is fatal.
"""

from pathlib import Path


class MuschedError(Exception):
    """Base class for every error raised by musched."""


class MissingMetadataError(MuschedError):
    """A card source file lacks a valid `tags`/`priority` header."""

    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")


class CorruptStateError(MuschedError):
    """A per-card state record (or the familiarity cache) cannot be parsed."""

    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: corrupt state record ({reason})")


class UnknownCardError(MuschedError, KeyError):
    """The card is not part of the loaded deck."""

    def __init__(self, card_id: str):
        self.card_id = card_id
        super().__init__(f"unknown card '{card_id}'")

    def __str__(self) -> str:
        return self.args[0]


class InvalidGradeError(MuschedError, ValueError):
    """A grade outside fail/hard/okay/good/easy was supplied."""

    def __init__(self, value: object):
        self.value = value
        super().__init__(f"invalid grade {value!r}; expected one of fail, hard, okay, good, easy")


class StateWriteError(MuschedError):
    """Persisting a state record failed. The previous record is still intact."""

    def __init__(self, path: Path, cause: BaseException):
        self.path = path
        self.cause = cause
        super().__init__(f"could not write {path}: {cause}")


class DeckAccessError(MuschedError):
    """The deck root does not exist or cannot be read."""

    def __init__(self, path: Path, reason: str = "not a readable directory"):
        self.path = path
        super().__init__(f"deck root {path}: {reason}")


class PresentationError(MuschedError):
    """The viewer or card command could not be started."""

    def __init__(self, card_id: str, cause: BaseException):
        self.card_id = card_id
        self.cause = cause
        super().__init__(f"could not present '{card_id}': {cause}")
