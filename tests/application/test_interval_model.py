from datetime import timedelta

import pytest

from musched.application.config import SchedulingParams
from musched.application.interval_model import (
    apply_grade,
    familiarity_multiplier,
    next_state,
    preview_intervals,
)
from musched.domain.errors import InvalidGradeError
from musched.domain.models import CardState, Grade, ReviewState


def review_card(now, ease=2.5, interval=timedelta(days=4), state=CardState.REVIEW, reps=3):
    return ReviewState(due=now, state=state, ease=ease, interval=interval, repetitions=reps)


# ---------- Learning ladder ----------


def test_new_card_good_enters_learning(now, params):
    result = next_state(ReviewState.new(now), Grade.GOOD, 2.5, params)

    assert result.state is CardState.LEARNING
    assert result.interval == timedelta(days=1)
    assert result.repetitions == 1
    assert result.ease == 2.5


def test_two_non_fail_grades_graduate(now, params):
    review = ReviewState.new(now)
    review = apply_grade(review, Grade.HARD, 2.5, now, params)
    assert review.state is CardState.LEARNING

    review = apply_grade(review, Grade.OKAY, 2.5, now, params)
    assert review.state is CardState.REVIEW
    assert review.interval == timedelta(days=3)
    assert review.repetitions == 2
    # ease is untouched on the ladder
    assert review.ease == 2.5


def test_fail_on_ladder_restarts_at_first_step(now, params):
    learning = ReviewState(due=now, state=CardState.LEARNING, repetitions=1, interval=timedelta(days=1))
    result = next_state(learning, Grade.FAIL, 2.5, params)

    assert result.state is CardState.LEARNING
    assert result.interval == timedelta(minutes=10)
    assert result.repetitions == 0


def test_lapsed_card_climbs_ladder_back_to_review(now, params):
    lapsed = ReviewState(due=now, state=CardState.LAPSED, ease=2.3, interval=timedelta(minutes=10))

    first = next_state(lapsed, Grade.GOOD, 2.5, params)
    assert first.state is CardState.LAPSED
    assert first.interval == timedelta(days=1)

    lapsed.repetitions = first.repetitions
    second = next_state(lapsed, Grade.EASY, 2.5, params)
    assert second.state is CardState.REVIEW
    assert second.ease == pytest.approx(2.3)


def test_custom_ladder_graduates_after_last_step(now):
    params = SchedulingParams(learning_steps=["10m", "1h", "1d", "4d"])
    review = ReviewState.new(now)
    states = []
    for _ in range(3):
        review = apply_grade(review, Grade.GOOD, 2.5, now, params)
        states.append((review.state, review.interval))

    assert states == [
        (CardState.LEARNING, timedelta(hours=1)),
        (CardState.LEARNING, timedelta(days=1)),
        (CardState.REVIEW, timedelta(days=4)),
    ]


# ---------- Review ----------


def test_review_easy_grows_interval(now, params):
    result = next_state(review_card(now), Grade.EASY, 2.5, params)

    assert result.state is CardState.REVIEW
    assert result.ease == pytest.approx(2.65)
    # 5760m * 2.65 * 1.4 (easy) = 21369.6m
    assert result.interval == timedelta(minutes=21370)


def test_review_fail_lapses(now, params):
    before = review_card(now)
    after = apply_grade(before, Grade.FAIL, 2.5, now, params)

    assert after.state is CardState.LAPSED
    assert after.interval == timedelta(minutes=10)
    assert after.repetitions == 0
    assert after.lapses == before.lapses + 1
    assert after.ease == pytest.approx(2.3)


def test_fail_off_review_is_not_a_lapse(now, params):
    learning = ReviewState(due=now, state=CardState.LEARNING, repetitions=1)
    after = apply_grade(learning, Grade.FAIL, 2.5, now, params)
    assert after.lapses == 0


@pytest.mark.parametrize(
    "grade,expected_ease",
    [
        (Grade.HARD, 2.35),
        (Grade.OKAY, 2.5),
        (Grade.GOOD, 2.6),
        (Grade.EASY, 2.65),
    ],
)
def test_review_ease_deltas(now, params, grade, expected_ease):
    assert next_state(review_card(now), grade, 2.5, params).ease == pytest.approx(expected_ease)


def test_familiarity_scales_review_interval(now, params):
    # 3.25 / 2.5 = 1.3, the upper bound
    result = next_state(review_card(now), Grade.GOOD, 3.25, params)
    # 5760m * 2.6 * 1.2 (good) * 1.3 = 23362.56m
    assert result.interval == timedelta(minutes=23363)


@pytest.mark.parametrize(
    "familiarity,expected",
    [(2.5, 1.0), (2.75, 1.1), (10.0, 1.3), (1.3, 0.8), (0.1, 0.8)],
)
def test_familiarity_multiplier_bounds(params, familiarity, expected):
    assert familiarity_multiplier(Grade.OKAY, familiarity, params) == pytest.approx(expected)


def test_familiarity_multiplier_carries_grade(params):
    assert familiarity_multiplier(Grade.HARD, 2.5, params) == pytest.approx(0.7)
    assert familiarity_multiplier(Grade.EASY, 10.0, params) == pytest.approx(1.4 * 1.3)


def test_ease_never_drops_below_minimum(now, params):
    low = review_card(now, ease=1.35)
    assert next_state(low, Grade.HARD, 2.5, params).ease == pytest.approx(1.3)
    assert next_state(review_card(now, ease=1.3), Grade.FAIL, 2.5, params).ease == pytest.approx(1.3)


def test_optional_max_ease(now):
    params = SchedulingParams(max_ease=2.6)
    assert next_state(review_card(now, ease=2.55), Grade.EASY, 2.5, params).ease == pytest.approx(2.6)


def test_per_card_max_interval_caps_growth(now, params):
    result = next_state(review_card(now), Grade.EASY, 2.5, params, max_interval=timedelta(days=5))
    assert result.interval == timedelta(days=5)


def test_floor_wins_over_max_interval(now, params):
    result = next_state(review_card(now), Grade.GOOD, 2.5, params, max_interval=timedelta(minutes=3))
    assert result.interval == timedelta(minutes=10)


def test_review_growth_follows_grade(now, params):
    review = review_card(now)
    hard, okay, good, easy = (
        next_state(review, g, 2.5, params).interval
        for g in (Grade.HARD, Grade.OKAY, Grade.GOOD, Grade.EASY)
    )

    assert hard < okay < good < easy
    # 5760m * 2.35 * 0.7 = 9475.2m
    assert hard == timedelta(minutes=9475)
    assert okay == timedelta(days=10)


def test_custom_score_modifiers(now):
    params = SchedulingParams(score_modifiers=[1, 1, 1, 1, 1])
    result = next_state(review_card(now), Grade.EASY, 2.5, params)
    # 5760m * 2.65
    assert result.interval == timedelta(minutes=15264)


@pytest.mark.parametrize(
    "priority,expected",
    # priority 5: 4d * 2.5 * 0.3 = 3d is raised to 4d + min_interval_increase
    [(1, timedelta(days=30)), (3, timedelta(days=10)), (5, timedelta(days=5))],
)
def test_priority_scales_review_interval(now, params, priority, expected):
    result = next_state(review_card(now), Grade.OKAY, 2.5, params, priority=priority)
    assert result.interval == expected


def test_min_interval_increase(now, params):
    # 1440m * 1.3 * 0.7 = 1310.4m grows by less than a day
    slow = review_card(now, ease=1.3, interval=timedelta(days=1))
    assert next_state(slow, Grade.HARD, 2.5, params).interval == timedelta(days=2)


def test_deck_max_interval_caps_growth(now, params):
    long = review_card(now, interval=timedelta(days=40))
    assert next_state(long, Grade.EASY, 2.5, params).interval == timedelta(days=50)

    capped = SchedulingParams(max_interval="2w")
    assert next_state(review_card(now), Grade.EASY, 2.5, capped).interval == timedelta(weeks=2)


def test_per_card_cap_below_deck_cap(now):
    params = SchedulingParams(max_interval="1y")
    result = next_state(review_card(now), Grade.EASY, 2.5, params, max_interval=timedelta(days=5))
    assert result.interval == timedelta(days=5)


def test_interval_never_below_floor(now, params):
    states = [CardState.NEW, CardState.LEARNING, CardState.REVIEW, CardState.LAPSED]
    for state in states:
        for ease in (1.3, 2.5, 4.0):
            for interval in (timedelta(0), timedelta(minutes=1), timedelta(days=30)):
                for familiarity in (1.3, 2.5, 5.0):
                    review = review_card(now, ease=ease, interval=interval, state=state, reps=0)
                    for grade in Grade:
                        result = next_state(review, grade, familiarity, params)
                        assert result.interval >= timedelta(minutes=10)
                        assert result.ease >= 1.3


def test_result_is_deterministic(now, params):
    review = review_card(now)
    assert next_state(review, Grade.GOOD, 2.7, params) == next_state(review, Grade.GOOD, 2.7, params)


# ---------- Grades ----------


@pytest.mark.parametrize("grade", [5, -1, "great", True, 2.0, None])
def test_invalid_grade_rejected(now, params, grade):
    with pytest.raises(InvalidGradeError):
        next_state(review_card(now), grade, 2.5, params)


def test_grade_accepts_names_and_indices(now, params):
    review = review_card(now)
    assert next_state(review, "good", 2.5, params) == next_state(review, 3, 2.5, params)


# ---------- Previews / apply ----------


def test_preview_intervals_for_new_card(now, params):
    previews = preview_intervals(ReviewState.new(now), 2.5, params)

    assert list(previews) == list(Grade)
    assert previews[Grade.FAIL] == timedelta(minutes=10)
    assert previews[Grade.GOOD] == timedelta(days=1)


def test_apply_grade_records_history_and_due(now, params):
    before = review_card(now - timedelta(hours=2))
    after = apply_grade(before, Grade.GOOD, 2.5, now, params)

    assert after.due == now + after.interval
    assert after.last_reviewed == now
    assert len(after.history) == 1
    entry = after.history[0]
    assert entry.grade is Grade.GOOD
    assert entry.state_before is CardState.REVIEW
    assert entry.ease_before == 2.5
    assert entry.interval_before == timedelta(days=4)
    assert entry.due == now - timedelta(hours=2)
    # input untouched
    assert before.history == []
    assert before.ease == 2.5
