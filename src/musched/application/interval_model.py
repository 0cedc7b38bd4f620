"""
Interval model: SM2-family scheduling extended with tag familiarity.

Pure computation with no I/O and no clock access. Given the same review
state, grade and familiarity snapshot the result is always the same.

Cards off the Review state climb a short fixed ladder (`learning_steps`),
indexed by the number of consecutive non-fail grades. A fail drops the card
to the bottom step. Reaching the last step graduates it to Review, where

    new_interval = old_interval * new_ease
                   * familiarity_multiplier(grade, familiarity)
                   * priority_modifier[priority]

with `new_ease = clamp(old_ease + ease_delta[grade])`. A Review interval
grows by at least `min_interval_increase` and never exceeds `max_interval`.
"""

from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime, timedelta

from musched.application.config import SchedulingParams
from musched.domain.constants import DEFAULT_PRIORITY
from musched.domain.models import CardState, Grade, NextState, ReviewEntry, ReviewState


def familiarity_multiplier(grade: Grade, familiarity: float, params: SchedulingParams) -> float:
    """
    Scale factor for Review intervals from the grade and the mean tag familiarity.

    The grade contributes its score modifier (hard shrinks, easy stretches).
    Familiarity equal to the starting ease is neutral (1.0); its share is
    bounded so no tag can dominate the card's own ease.
    """
    ratio = familiarity / params.starting_ease
    bounded = min(params.familiarity_multiplier_max, max(params.familiarity_multiplier_min, ratio))
    return params.score_modifiers[grade] * bounded


def mean_familiarity(values: Iterable[float], default: float) -> float:
    values = list(values)
    if not values:
        return default
    return sum(values) / len(values)


def ladder_step(repetitions: int, params: SchedulingParams) -> timedelta:
    steps = params.learning_steps
    return steps[min(max(repetitions, 0), len(steps) - 1)]


def _finalize(interval: timedelta, params: SchedulingParams, max_interval: timedelta | None) -> timedelta:
    # Minute granularity; the deck and per-card caps apply first, the floor always wins.
    interval = timedelta(minutes=round(interval.total_seconds() / 60))
    interval = min(interval, params.max_interval)
    if max_interval is not None:
        interval = min(interval, max_interval)
    return max(interval, params.interval_floor)


def next_state(
    review: ReviewState,
    grade: Grade | int | str,
    familiarity: float,
    params: SchedulingParams,
    max_interval: timedelta | None = None,
    priority: int = DEFAULT_PRIORITY,
) -> NextState:
    """
    Compute ease, interval, repetition count and lifecycle state after `grade`.

    Args:
        review: The card's current review state.
        grade: The grade to evaluate.
        familiarity: Mean familiarity of the card's tags.
        params: Scheduling constants.
        max_interval: Optional per-card interval cap.
        priority: The card's priority (1-5); scales Review intervals.

    Raises:
        InvalidGradeError: `grade` is not one of the five grades.
    """
    grade = Grade.parse(grade)
    state = review.state

    if grade is Grade.FAIL:
        if state is CardState.REVIEW:
            ease = params.clamp_ease(review.ease + params.ease_deltas[Grade.FAIL])
            new_state = CardState.LAPSED
        else:
            ease = review.ease
            new_state = CardState.LAPSED if state is CardState.LAPSED else CardState.LEARNING
        return NextState(
            ease=ease,
            interval=_finalize(params.learning_steps[0], params, max_interval),
            repetitions=0,
            state=new_state,
        )

    repetitions = review.repetitions + 1

    if state.on_ladder:
        if repetitions >= params.graduation_repetitions:
            new_state = CardState.REVIEW
        elif state is CardState.LAPSED:
            new_state = CardState.LAPSED
        else:
            new_state = CardState.LEARNING
        return NextState(
            ease=review.ease,
            interval=_finalize(ladder_step(repetitions, params), params, max_interval),
            repetitions=repetitions,
            state=new_state,
        )

    ease = params.clamp_ease(review.ease + params.ease_deltas[grade])
    factor = (
        ease
        * familiarity_multiplier(grade, familiarity, params)
        * params.priority_modifier(priority)
    )
    interval = max(review.interval * factor, review.interval + params.min_interval_increase)
    return NextState(
        ease=ease,
        interval=_finalize(interval, params, max_interval),
        repetitions=repetitions,
        state=CardState.REVIEW,
    )


def preview_intervals(
    review: ReviewState,
    familiarity: float,
    params: SchedulingParams,
    max_interval: timedelta | None = None,
    priority: int = DEFAULT_PRIORITY,
) -> dict[Grade, timedelta]:
    """The interval each grade would produce, ordered fail..easy."""
    return {
        grade: next_state(review, grade, familiarity, params, max_interval, priority).interval
        for grade in Grade
    }


def apply_grade(
    review: ReviewState,
    grade: Grade | int | str,
    familiarity: float,
    now: datetime,
    params: SchedulingParams,
    max_interval: timedelta | None = None,
    priority: int = DEFAULT_PRIORITY,
) -> ReviewState:
    """Return the review state after grading at `now`. The input is not modified."""
    grade = Grade.parse(grade)
    result = next_state(review, grade, familiarity, params, max_interval, priority)

    entry = ReviewEntry(
        time=now,
        grade=grade,
        due=review.due,
        state_before=review.state,
        ease_before=review.ease,
        interval_before=review.interval,
    )
    lapsed = grade is Grade.FAIL and review.state is CardState.REVIEW

    return replace(
        review,
        state=result.state,
        ease=result.ease,
        interval=result.interval,
        due=now + result.interval,
        repetitions=result.repetitions,
        lapses=review.lapses + 1 if lapsed else review.lapses,
        last_reviewed=now,
        history=[*review.history, entry],
    )
