import pytest
import datetime

from studygenius.config import BaseIntervals, SchedulerConfig
from studygenius.clock import FixedClock
from studygenius.exceptions import InvalidRating
from studygenius.models import Rating, ReviewState
from studygenius.scheduler import (
    SM2Scheduler,
    compute_next_review,
    initialize_review_state,
    next_ease_factor,
    next_interval,
)

# Helper to create datetime objects easily
UTC = datetime.timezone.utc
REVIEW_TS = datetime.datetime(2024, 1, 1, 10, 0, 0, tzinfo=UTC)


def state(ease=2.5, interval=0.0, review_count=0) -> ReviewState:
    return ReviewState(
        ease_factor=ease,
        interval=interval,
        review_count=review_count,
        last_reviewed=REVIEW_TS,
        next_review=REVIEW_TS,
    )


@pytest.fixture
def scheduler() -> SM2Scheduler:
    return SM2Scheduler(clock=FixedClock(REVIEW_TS))


def test_initial_state_is_due_immediately():
    initial = initialize_review_state(REVIEW_TS)

    assert initial.ease_factor == 2.5
    assert initial.interval == 0
    assert initial.review_count == 0
    assert initial.next_review == REVIEW_TS
    assert initial.is_new


def test_first_easy_review():
    result = compute_next_review(state(), Rating.Easy, now=REVIEW_TS)

    assert result.ease_factor == pytest.approx(2.6)
    assert 0 < result.interval <= 3
    assert result.review_count == 1
    assert result.last_reviewed == REVIEW_TS
    assert result.next_review == REVIEW_TS + datetime.timedelta(
        days=result.interval
    )


@pytest.mark.parametrize(
    "rating, expected_interval",
    [
        (Rating.Again, 1.0),
        (Rating.Hard, 1.2),
        (Rating.Medium, 2.0),
        (Rating.Easy, 3.0),
    ],
)
def test_first_review_uses_base_intervals(rating, expected_interval):
    result = compute_next_review(state(), rating, now=REVIEW_TS)
    assert result.interval == pytest.approx(expected_interval)


@pytest.mark.parametrize(
    "rating, expected_interval",
    [
        (Rating.Again, 1.0),
        (Rating.Hard, 3.6),
        (Rating.Medium, 6.0),
        (Rating.Easy, 7.5),
    ],
)
def test_second_review_multiplies_previous_interval(rating, expected_interval):
    result = compute_next_review(
        state(interval=3.0, review_count=1), rating, now=REVIEW_TS
    )
    assert result.interval == pytest.approx(expected_interval)


def test_second_review_hard_interval_never_below_one_day():
    result = compute_next_review(
        state(interval=0.5, review_count=1), Rating.Hard, now=REVIEW_TS
    )
    assert result.interval == 1.0


def test_mature_medium_and_easy_round_with_ease():
    medium = compute_next_review(
        state(ease=2.5, interval=10, review_count=3), "medium", now=REVIEW_TS
    )
    # 10 * 2.5 = 25
    assert medium.interval == 25.0

    easy = compute_next_review(
        state(ease=2.5, interval=10, review_count=3), "easy", now=REVIEW_TS
    )
    # 10 * 2.6 * 1.3 = 33.8 -> 34
    assert easy.interval == 34.0


def test_mature_rounding_is_half_up():
    # 5 * 2.5 = 12.5 rounds up, not to even.
    result = compute_next_review(
        state(ease=2.5, interval=5, review_count=2), Rating.Medium, now=REVIEW_TS
    )
    assert result.interval == 13.0


def test_again_resets_interval_and_ease():
    result = compute_next_review(
        state(ease=2.8, interval=30, review_count=5), Rating.Again, now=REVIEW_TS
    )

    assert result.interval == 1
    assert result.ease_factor == 1.3
    assert result.review_count == 6


@pytest.mark.parametrize("start_ease", [1.3, 1.35, 1.4, 1.45])
def test_repeated_hard_never_goes_below_min_ease(start_ease):
    current = state(ease=start_ease)
    for _ in range(10):
        current = compute_next_review(current, Rating.Hard, now=REVIEW_TS)
        assert current.ease_factor >= 1.3
    assert current.ease_factor == pytest.approx(1.3)


def test_easy_streak_exceeds_nominal_maximum():
    current = state()
    for _ in range(8):
        current = compute_next_review(current, Rating.Easy, now=REVIEW_TS)
    assert current.ease_factor == pytest.approx(3.3)
    assert current.ease_factor > SchedulerConfig().max_ease_nominal


def test_review_count_increments_by_one_per_review():
    current = state()
    for expected in range(1, 6):
        current = compute_next_review(current, Rating.Medium, now=REVIEW_TS)
        assert current.review_count == expected


def test_custom_config_is_used():
    config = SchedulerConfig(
        min_ease=1.5,
        easy_bonus=2.0,
        base_intervals=BaseIntervals(again=0.5, hard=1, medium=4, easy=7),
    )

    first = compute_next_review(state(), Rating.Medium, config, now=REVIEW_TS)
    assert first.interval == 4

    lapsed = compute_next_review(
        state(interval=20, review_count=4), Rating.Again, config, now=REVIEW_TS
    )
    assert lapsed.ease_factor == 1.5
    assert lapsed.interval == 0.5


def test_next_ease_factor_table():
    config = SchedulerConfig()
    assert next_ease_factor(2.0, Rating.Again, config) == 1.3
    assert next_ease_factor(2.0, Rating.Hard, config) == pytest.approx(1.85)
    assert next_ease_factor(2.0, Rating.Medium, config) == 2.0
    assert next_ease_factor(2.0, Rating.Easy, config) == pytest.approx(2.1)


def test_next_interval_uses_updated_ease():
    assert next_interval(4, 2.5, Rating.Medium, 2, SchedulerConfig()) == 10


def test_compute_next_review_does_not_mutate_input():
    original = state(ease=2.0, interval=4, review_count=2)
    compute_next_review(original, Rating.Easy, now=REVIEW_TS)
    assert original.ease_factor == 2.0
    assert original.interval == 4
    assert original.review_count == 2


def test_naive_review_time_is_treated_as_utc():
    naive = REVIEW_TS.replace(tzinfo=None)
    result = compute_next_review(state(), Rating.Medium, now=naive)
    assert result.last_reviewed == REVIEW_TS


@pytest.mark.parametrize("bad", ["good", 0, 5, None, 2.5, True])
def test_invalid_rating_is_rejected(bad):
    with pytest.raises(InvalidRating):
        compute_next_review(state(), bad, now=REVIEW_TS)


def test_scheduler_accepts_numeric_ratings(scheduler: SM2Scheduler):
    result = scheduler.compute_next_review(state(), 4)
    assert result.ease_factor == pytest.approx(2.6)
    assert result.last_reviewed == REVIEW_TS


def test_scheduler_initial_state_uses_clock_and_config():
    scheduler = SM2Scheduler(
        SchedulerConfig(default_ease=2.0), clock=FixedClock(REVIEW_TS)
    )
    initial = scheduler.initial_state()
    assert initial.ease_factor == 2.0
    assert initial.next_review == REVIEW_TS
