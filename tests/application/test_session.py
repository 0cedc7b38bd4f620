from datetime import timedelta
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from musched.application.config import SchedulingParams
from musched.application.scheduler import Scheduler
from musched.application.session import ReviewSession, SessionCommand
from musched.application.tag_registry import TagRegistry
from musched.domain.errors import PresentationError, StateWriteError
from musched.domain.models import CardState, Grade
from musched.domain.ports import CardRepository


class ScriptedInput:
    def __init__(self, *answers):
        self.answers = list(answers)
        self.asked = []

    def read(self, card, previews):
        self.asked.append(card.id)
        return self.answers.pop(0)


@pytest.fixture
def store():
    return MagicMock(spec=CardRepository)


@pytest.fixture
def presenter():
    return MagicMock()


def make_scheduler(make_card, now, store, params=None):
    params = params or SchedulingParams()
    cards = {
        "a.card": make_card("a.card", priority=5, due=now - timedelta(minutes=5)),
        "b.card": make_card("b.card", priority=1, due=now - timedelta(minutes=5)),
    }
    return Scheduler(cards, store, TagRegistry(params), params)


def run(scheduler, presenter, answers, now, **kwargs):
    source = ScriptedInput(*answers)
    session = ReviewSession(scheduler, presenter, source, clock=lambda: now, **kwargs)
    return session.run(), source


def test_reviews_until_nothing_is_due(make_card, now, store, presenter):
    scheduler = make_scheduler(make_card, now, store)
    graded = []

    summary, source = run(
        scheduler, presenter, [Grade.GOOD, Grade.FAIL], now, on_graded=graded.append
    )

    assert source.asked == ["a.card", "b.card"]
    assert summary.reviewed == 2
    assert summary.grades == {Grade.GOOD: 1, Grade.FAIL: 1}
    assert summary.new_introduced == 2
    assert not summary.quit
    assert store.save.call_count == 2
    assert [g.card.id for g in graded] == ["a.card", "b.card"]
    assert scheduler.cards["b.card"].review.state is CardState.LEARNING


def test_quit_stops_without_grading(make_card, now, store, presenter):
    scheduler = make_scheduler(make_card, now, store)

    summary, source = run(scheduler, presenter, [Grade.GOOD, SessionCommand.QUIT], now)

    assert summary.quit
    assert summary.reviewed == 1
    assert store.save.call_count == 1
    assert scheduler.cards["b.card"].review.state is CardState.NEW


def test_postpone_and_view_again(make_card, now, store, presenter):
    scheduler = make_scheduler(make_card, now, store)

    summary, source = run(
        scheduler,
        presenter,
        [SessionCommand.POSTPONE, SessionCommand.VIEW, Grade.EASY],
        now,
    )

    assert source.asked == ["a.card", "b.card", "b.card"]
    assert summary.postponed == 1
    assert summary.reviewed == 1
    assert scheduler.cards["a.card"].review.due == now + timedelta(days=1)
    assert [c[0][0].id for c in presenter.present.call_args_list] == ["a.card", "b.card", "b.card"]


def test_presentation_failure_skips_card(make_card, now, store, presenter):
    scheduler = make_scheduler(make_card, now, store)

    def present(card):
        if card.id == "a.card":
            raise PresentationError(card.id, FileNotFoundError("no viewer"))

    presenter.present.side_effect = present

    summary, source = run(scheduler, presenter, [Grade.GOOD], now)

    assert summary.skipped == ["a.card"]
    assert isinstance(summary.errors[0], PresentationError)
    assert source.asked == ["b.card"]
    assert scheduler.cards["a.card"].review.state is CardState.NEW


def test_save_failure_skips_card_and_continues(make_card, now, store, presenter):
    scheduler = make_scheduler(make_card, now, store)
    store.save.side_effect = [StateWriteError(Path("a.card.yaml"), OSError("disk full")), None]

    summary, _ = run(scheduler, presenter, [Grade.GOOD, Grade.GOOD], now)

    assert summary.skipped == ["a.card"]
    assert summary.reviewed == 1
    assert scheduler.cards["a.card"].review.state is CardState.NEW
    assert scheduler.cards["b.card"].review.state is CardState.LEARNING


def test_new_card_limit(make_card, now, store, presenter):
    scheduler = make_scheduler(make_card, now, store, SchedulingParams(new_cards_per_session=1))

    summary, source = run(scheduler, presenter, [Grade.GOOD], now)

    assert source.asked == ["a.card"]
    assert summary.new_introduced == 1
    assert scheduler.cards["b.card"].review.state is CardState.NEW


def test_empty_queue(make_card, now, store, presenter):
    scheduler = make_scheduler(make_card, now - timedelta(days=1), store)

    summary, source = run(scheduler, presenter, [], now - timedelta(days=2))

    assert summary.reviewed == 0
    assert source.asked == []
    presenter.present.assert_not_called()
