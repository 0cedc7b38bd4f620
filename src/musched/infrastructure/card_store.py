"""
Flat-file card store.

Each card source file `<deck>/<id>` has its review state in a YAML record
`<deck>/.mu/cards/<id>.yaml`. Records are replaced atomically, so a crash
during a save leaves the previous record readable.
"""

import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import yaml  # type: ignore

from musched.application.utils.text import parse_card_header
from musched.domain.constants import (
    CARD_STATE_SUBDIR,
    DEFAULT_CARD_SUFFIXES,
    DEFAULT_EASE,
    STATE_DIR_NAME,
    STATE_SUFFIX,
    TEMP_SUFFIX,
)
from musched.domain.errors import (
    CorruptStateError,
    DeckAccessError,
    MissingMetadataError,
    MuschedError,
    StateWriteError,
)
from musched.domain.models import Card, CardId, CardState, Grade, ReviewEntry, ReviewState, utc_now
from musched.domain.ports import CardRepository, ReconcileReport
from musched.infrastructure.utils.fs import atomic_write_text, iter_card_files

logger = logging.getLogger(__name__)

RECORD_VERSION = 1


# ---------- Record (de)serialization ----------


def _dt_to_str(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _dt_from_value(value: Any) -> datetime:
    # PyYAML may already have resolved an unquoted timestamp.
    dt = value if isinstance(value, datetime) else datetime.fromisoformat(str(value))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _seconds(td: timedelta) -> int:
    return int(td.total_seconds())


def review_to_dict(card_id: CardId, review: ReviewState) -> dict[str, Any]:
    return {
        "version": RECORD_VERSION,
        "id": card_id,
        "state": review.state.value,
        "ease": review.ease,
        "interval_seconds": _seconds(review.interval),
        "due": _dt_to_str(review.due),
        "repetitions": review.repetitions,
        "lapses": review.lapses,
        "last_reviewed": _dt_to_str(review.last_reviewed),
        "history": [
            {
                "time": _dt_to_str(e.time),
                "grade": str(e.grade),
                "due": _dt_to_str(e.due),
                "state_before": e.state_before.value,
                "ease_before": e.ease_before,
                "interval_before_seconds": _seconds(e.interval_before),
            }
            for e in review.history
        ],
    }


def review_from_dict(data: Any) -> ReviewState:
    """
    Rebuild a ReviewState from a decoded record.

    Raises:
        ValueError, KeyError, TypeError: the record is malformed.
    """
    if not isinstance(data, dict):
        raise TypeError("record is not a mapping")

    repetitions = int(data.get("repetitions", 0))
    lapses = int(data.get("lapses", 0))
    if repetitions < 0 or lapses < 0:
        raise ValueError("negative repetition or lapse count")

    history = [
        ReviewEntry(
            time=_dt_from_value(e["time"]),
            grade=Grade.parse(e["grade"]),
            due=_dt_from_value(e["due"]),
            state_before=CardState(e["state_before"]),
            ease_before=float(e["ease_before"]),
            interval_before=timedelta(seconds=int(e.get("interval_before_seconds", 0))),
        )
        for e in data.get("history") or []
    ]

    last = data.get("last_reviewed")
    return ReviewState(
        due=_dt_from_value(data["due"]),
        state=CardState(data["state"]),
        ease=float(data["ease"]),
        interval=timedelta(seconds=int(data["interval_seconds"])),
        repetitions=repetitions,
        lapses=lapses,
        last_reviewed=_dt_from_value(last) if last is not None else None,
        history=history,
    )


# ---------- Store ----------


class FileCardStore(CardRepository):
    """
    CardRepository backed by one YAML record per card.

    Args:
        deck_root: Directory holding the card source files.
        state_dir: Where state lives; defaults to `<deck_root>/.mu`.
        card_suffixes: File suffixes recognised as card sources.
        starting_ease: Ease given to new cards.
        clock: Returns "now"; due time of new cards.
    """

    def __init__(
        self,
        deck_root: Path,
        state_dir: Path | None = None,
        card_suffixes: Iterable[str] = DEFAULT_CARD_SUFFIXES,
        starting_ease: float = DEFAULT_EASE,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.deck_root = Path(deck_root)
        self.state_dir = Path(state_dir) if state_dir else self.deck_root / STATE_DIR_NAME
        self.records_dir = self.state_dir / CARD_STATE_SUBDIR
        self.card_suffixes = tuple(card_suffixes)
        self.starting_ease = starting_ease
        self.clock = clock

        self.issues: list[MuschedError] = []
        self.cards: dict[CardId, Card] = {}
        # Sources skipped by the last load() for an unusable header.
        self.unparsed: set[CardId] = set()

    def card_id(self, path: Path) -> CardId:
        return path.relative_to(self.deck_root).as_posix()

    def record_path(self, card_id: CardId) -> Path:
        return self.records_dir / f"{card_id}{STATE_SUFFIX}"

    def source_files(self) -> list[Path]:
        if not self.deck_root.is_dir():
            raise DeckAccessError(self.deck_root)
        return list(iter_card_files(self.deck_root, self.card_suffixes))

    def _report(self, issue: MuschedError) -> None:
        self.issues.append(issue)
        logger.warning(str(issue))

    def _read_record(self, card_id: CardId) -> ReviewState | None:
        path = self.record_path(card_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CorruptStateError(path, str(e)) from e

        try:
            return review_from_dict(yaml.safe_load(raw))
        except (yaml.YAMLError, KeyError, TypeError, ValueError) as e:
            raise CorruptStateError(path, str(e)) from e

    def load(self) -> dict[CardId, Card]:
        """
        Load every card whose header is valid.

        Cards without a record come back as New (nothing is written; see
        reconcile()). Bad headers skip the card, corrupt records reset it to
        New; both are collected in `issues`.

        Raises:
            DeckAccessError: the deck root is missing or not a directory.
        """
        self.issues = []
        self.unparsed = set()
        now = self.clock()
        cards: dict[CardId, Card] = {}

        for path in self.source_files():
            card_id = self.card_id(path)
            try:
                meta = parse_card_header(path.read_text(encoding="utf-8", errors="replace"), path)
            except OSError as e:
                self._report(MissingMetadataError(path, f"cannot read file: {e}"))
                self.unparsed.add(card_id)
                continue
            except MissingMetadataError as e:
                self._report(e)
                self.unparsed.add(card_id)
                continue

            try:
                review = self._read_record(card_id)
            except CorruptStateError as e:
                self._report(e)
                review = None

            cards[card_id] = Card(
                id=card_id,
                path=path,
                meta=meta,
                review=review or ReviewState.new(now, self.starting_ease),
            )

        logger.info(f"Loaded {len(cards)} cards from {self.deck_root} ({len(self.issues)} issues)")
        self.cards = cards
        return cards

    def _write_record(self, card_id: CardId, review: ReviewState) -> None:
        path = self.record_path(card_id)
        text = yaml.safe_dump(review_to_dict(card_id, review), sort_keys=False, allow_unicode=True)
        try:
            atomic_write_text(path, text)
        except OSError as e:
            raise StateWriteError(path, e) from e

    def save(self, card: Card) -> None:
        self._write_record(card.id, card.review)
        logger.debug(f"Saved state of {card.id}")

    def _record_ids(self) -> set[CardId]:
        if not self.records_dir.is_dir():
            return set()
        return {
            p.relative_to(self.records_dir).as_posix()[: -len(STATE_SUFFIX)]
            for p in self.records_dir.rglob(f"*{STATE_SUFFIX}")
            if p.is_file() and not p.name.startswith(".")
        }

    def _sweep_temp_files(self) -> None:
        # Leftovers of a save interrupted before its rename.
        if not self.records_dir.is_dir():
            return
        for tmp in self.records_dir.rglob(f".*{TEMP_SUFFIX}"):
            try:
                tmp.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                self._report(StateWriteError(tmp, e))
                continue
            logger.info(f"Removed stale temporary file {tmp}")

    def reconcile(self, known_source_files: Iterable[Path]) -> ReconcileReport:
        """
        Bring the record set in line with the source files.

        Records of vanished sources are deleted; sources without a record get
        a New record, except those whose header the last load() rejected.
        Existing records are never rewritten. Temporary files left by an
        interrupted save are removed. Write failures are collected in
        `issues` and retried on the next reconcile.
        """
        known = {self.card_id(Path(p)): Path(p) for p in known_source_files}
        self._sweep_temp_files()
        existing = self._record_ids()
        report = ReconcileReport()

        for card_id in sorted(existing - known.keys()):
            path = self.record_path(card_id)
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                self._report(StateWriteError(path, e))
                continue
            self.cards.pop(card_id, None)
            report.removed.append(card_id)

        now = self.clock()
        for card_id in sorted(known.keys() - existing - self.unparsed):
            card = self.cards.get(card_id)
            review = card.review if card else ReviewState.new(now, self.starting_ease)
            try:
                self._write_record(card_id, review)
            except StateWriteError as e:
                self._report(e)
                continue
            report.added.append(card_id)

        if report.changed:
            logger.info(f"Reconciled: {len(report.added)} new, {len(report.removed)} orphaned records")
        return report
