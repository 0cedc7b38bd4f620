import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from musched.application.config import SchedulingParams
from musched.domain.models import Card, CardMeta, CardState, ReviewState

NOW = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def mock_home(tmp_path, monkeypatch):
    """Mocks Path.home() to point to a temp dir."""
    home = tmp_path / "home"
    home.mkdir()

    # Mocking HOME to a temp directory to isolate user config
    monkeypatch.setenv("HOME", str(home))
    return home


@pytest.fixture(autouse=True)
def _isolated_env(mock_home, monkeypatch):
    for key in list(os.environ):
        if key.startswith("MUSCHED_"):
            monkeypatch.delenv(key)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def params():
    return SchedulingParams()


@pytest.fixture
def mock_deck(tmp_path):
    """Creates an empty deck directory."""
    d = tmp_path / "MyDeck"
    d.mkdir()
    return d


@pytest.fixture
def write_card(mock_deck):
    """Writes a card source file with a plain `key: value` header."""

    def _write(name: str, tags: str = "Fact", priority: int | str = 3, extra: str = "") -> Path:
        path = mock_deck / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f"% tags: {tags}\n% priority: {priority}\n{extra}\nBody of {name}\n")
        return path

    return _write


def _make_card(
    card_id: str = "fact.card",
    tags: tuple[str, ...] = ("Fact",),
    priority: int = 3,
    state: CardState = CardState.NEW,
    due: datetime = NOW,
    ease: float = 2.5,
    interval: timedelta = timedelta(0),
    repetitions: int = 0,
    max_interval: timedelta | None = None,
) -> Card:
    return Card(
        id=card_id,
        path=Path(card_id),
        meta=CardMeta(tags=tags, priority=priority, max_interval=max_interval),
        review=ReviewState(
            due=due, state=state, ease=ease, interval=interval, repetitions=repetitions
        ),
    )


@pytest.fixture
def make_card():
    """Builds an in-memory card."""
    return _make_card

