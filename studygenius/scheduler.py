# studygenius/scheduler.py

"""
Defines the BaseScheduler abstract class and the SM-2 style scheduler used
by studygenius.

The scheduler is pure: given a review state, a rating and the current time it
returns the next review state. It performs no I/O and keeps no state besides
its configuration and clock.
"""

import logging
import math
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Optional

from .clock import Clock, ensure_utc, utc_now
from .config import DEFAULT_SCHEDULER_CONFIG, SchedulerConfig
from .constants import (
    EASY_EASE_BONUS,
    HARD_EASE_PENALTY,
    HARD_INTERVAL_FACTOR,
    MIN_HARD_INTERVAL,
    SECOND_REVIEW_EASY_FACTOR,
    SECOND_REVIEW_MEDIUM_FACTOR,
)
from .exceptions import InvalidRating
from .models import Rating, ReviewState

logger = logging.getLogger(__name__)


def _round_half_up(value: float) -> float:
    return float(math.floor(value + 0.5))


def next_ease_factor(
    ease_factor: float, rating: Rating, config: SchedulerConfig
) -> float:
    """
    Apply the ease adjustment for `rating`, floored at `config.min_ease`.

    There is no upper clamp: repeated easy ratings may push the
    ease above `config.max_ease_nominal`.
    """
    match rating:
        case Rating.Again:
            new_ease = config.min_ease
        case Rating.Hard:
            new_ease = ease_factor - HARD_EASE_PENALTY
        case Rating.Medium:
            new_ease = ease_factor
        case Rating.Easy:
            new_ease = ease_factor + EASY_EASE_BONUS
        case _:
            raise InvalidRating(rating)
    return max(config.min_ease, new_ease)


def next_interval(
    interval: float,
    ease_factor: float,
    rating: Rating,
    review_count: int,
    config: SchedulerConfig,
) -> float:
    """
    Days until the next review, given the *updated* ease factor.

    Stage 0 (first review) uses the configured base intervals, stage 1 grows
    the previous interval by fixed factors, later stages use the ease factor.
    """
    base = config.base_intervals

    if review_count == 0:
        match rating:
            case Rating.Again | Rating.Hard | Rating.Medium | Rating.Easy:
                return base.for_rating(rating)
            case _:
                raise InvalidRating(rating)

    if review_count == 1:
        match rating:
            case Rating.Again:
                return base.again
            case Rating.Hard:
                return max(MIN_HARD_INTERVAL, interval * HARD_INTERVAL_FACTOR)
            case Rating.Medium:
                return interval * SECOND_REVIEW_MEDIUM_FACTOR
            case Rating.Easy:
                return interval * SECOND_REVIEW_EASY_FACTOR
            case _:
                raise InvalidRating(rating)

    match rating:
        case Rating.Again:
            return base.again
        case Rating.Hard:
            return max(MIN_HARD_INTERVAL, interval * HARD_INTERVAL_FACTOR)
        case Rating.Medium:
            return _round_half_up(interval * ease_factor)
        case Rating.Easy:
            return _round_half_up(interval * ease_factor * config.easy_bonus)
        case _:
            raise InvalidRating(rating)


def compute_next_review(
    state: ReviewState,
    rating: Rating,
    config: SchedulerConfig = DEFAULT_SCHEDULER_CONFIG,
    now: Optional[datetime] = None,
) -> ReviewState:
    """
    Compute the review state that follows `state` after a `rating` review.

    Args:
        state: The card's current review state.
        rating: The learner's rating. Strings and 1-4 ranks are accepted.
        config: Scheduler parameters.
        now: Review timestamp; defaults to the current UTC time.

    Returns:
        A new ReviewState with updated ease, interval, count and timestamps.

    Raises:
        InvalidRating: If `rating` is outside the closed rating set.
    """
    rating = Rating.parse(rating)
    ts = ensure_utc(now) if now is not None else utc_now()

    ease = next_ease_factor(state.ease_factor, rating, config)
    interval = next_interval(
        state.interval, ease, rating, state.review_count, config
    )

    return ReviewState(
        ease_factor=ease,
        interval=interval,
        review_count=state.review_count + 1,
        last_reviewed=ts,
        next_review=ts + timedelta(days=interval),
    )


def initialize_review_state(
    now: Optional[datetime] = None,
    config: SchedulerConfig = DEFAULT_SCHEDULER_CONFIG,
) -> ReviewState:
    """Review state for a brand new card, due immediately."""
    ts = ensure_utc(now) if now is not None else utc_now()
    return ReviewState.new(ts, config)


class BaseScheduler(ABC):
    """
    Abstract base class for all schedulers in studygenius.
    """

    @abstractmethod
    def compute_next_review(
        self, state: ReviewState, rating: Rating
    ) -> ReviewState:
        """
        Computes the next review state of a card from its current state and
        a new rating.

        Raises:
            InvalidRating: If the rating is invalid.
        """
        pass

    @abstractmethod
    def initial_state(self) -> ReviewState:
        pass


class SM2Scheduler(BaseScheduler):
    """
    SM-2 style scheduler bound to a configuration and a clock.
    """

    def __init__(
        self,
        config: Optional[SchedulerConfig] = None,
        clock: Clock = utc_now,
    ):
        self.config = config or DEFAULT_SCHEDULER_CONFIG
        self.clock = clock

    def compute_next_review(
        self, state: ReviewState, rating: Rating
    ) -> ReviewState:
        rating = Rating.parse(rating)
        new_state = compute_next_review(
            state, rating, config=self.config, now=self.clock()
        )
        logger.debug(
            f"Scheduled review {new_state.review_count}: "
            f"rating={rating.value}, "
            f"ease {state.ease_factor:.2f} -> {new_state.ease_factor:.2f}, "
            f"interval {new_state.interval:g}d"
        )
        return new_state

    def initial_state(self) -> ReviewState:
        return initialize_review_state(self.clock(), self.config)
