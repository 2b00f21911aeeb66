"""
Deck-level statistics derived from the SM-2 ease-factor model, plus summaries
of review and session history.
"""

from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Protocol, Sequence

from .clock import ensure_utc, utc_now
from .config import DEFAULT_SCHEDULER_CONFIG, SchedulerConfig
from .constants import RETENTION_FLOOR, RETENTION_SPAN
from .due_selector import is_due
from .models import (
    DeckStatistics,
    Rating,
    ReviewHistoryStats,
    ReviewLog,
    SessionHistoryStats,
    StudySessionRecord,
)


class EaseTracked(Protocol):
    @property
    def ease_factor(self) -> float: ...

    @property
    def review_count(self) -> int: ...

    @property
    def next_review(self) -> datetime: ...


def average_ease_factor(
    cards: Sequence[EaseTracked],
    config: SchedulerConfig = DEFAULT_SCHEDULER_CONFIG,
) -> float:
    """Mean ease factor; `config.default_ease` for an empty collection."""
    if not cards:
        return config.default_ease
    return sum(card.ease_factor for card in cards) / len(cards)


def estimate_retention(
    ease_factor: float, config: SchedulerConfig = DEFAULT_SCHEDULER_CONFIG
) -> float:
    """
    Map an ease factor linearly from [min_ease, max_ease_nominal] onto
    [50, 100].

    The result is not clamped: ease factors outside the nominal range give
    values above 100 or below 50.
    """
    span = config.max_ease_nominal - config.min_ease
    normalized = (ease_factor - config.min_ease) / span
    return RETENTION_FLOOR + RETENTION_SPAN * normalized


def deck_statistics(
    cards: Sequence[EaseTracked],
    now: datetime,
    config: SchedulerConfig = DEFAULT_SCHEDULER_CONFIG,
) -> DeckStatistics:
    """
    Summarize a card collection at `now`.

    An empty collection reports an average ease factor of 0 and a retention
    estimate of 0, unlike `average_ease_factor` which falls back to the
    default ease.
    """
    if not cards:
        return DeckStatistics(
            total_cards=0,
            due_cards=0,
            new_cards=0,
            average_ease_factor=0.0,
            estimated_retention=0.0,
        )

    average = average_ease_factor(cards, config)
    return DeckStatistics(
        total_cards=len(cards),
        due_cards=sum(1 for card in cards if is_due(card.next_review, now)),
        new_cards=sum(1 for card in cards if card.review_count == 0),
        average_ease_factor=average,
        estimated_retention=estimate_retention(average, config),
    )


def review_history_stats(
    logs: Sequence[ReviewLog],
    config: SchedulerConfig = DEFAULT_SCHEDULER_CONFIG,
) -> ReviewHistoryStats:
    """Totals, averages and the rating distribution over review logs."""
    distribution = {rating: 0 for rating in Rating}
    if not logs:
        return ReviewHistoryStats(
            total_reviews=0,
            average_ease_factor=config.default_ease,
            average_interval=0.0,
            rating_distribution=distribution,
        )

    for log in logs:
        distribution[log.rating] += 1
    total = len(logs)
    return ReviewHistoryStats(
        total_reviews=total,
        average_ease_factor=sum(log.ease_after for log in logs) / total,
        average_interval=sum(log.interval for log in logs) / total,
        rating_distribution=distribution,
    )


def current_streak(session_days: Iterable[date], today: date) -> int:
    """Number of consecutive days, ending today, with at least one session."""
    days = set(session_days)
    streak = 0
    day = today
    while day in days:
        streak += 1
        day -= timedelta(days=1)
    return streak


def session_history_stats(
    sessions: Sequence[StudySessionRecord], today: Optional[date] = None
) -> SessionHistoryStats:
    """Aggregate finished sessions into totals, accuracy and a daily streak."""
    total_reviewed = sum(s.cards_reviewed for s in sessions)
    total_correct = sum(s.correct_count for s in sessions)
    total_ms = sum(s.duration_ms for s in sessions)

    if total_reviewed > 0:
        accuracy = int(total_correct / total_reviewed * 100 + 0.5)
    else:
        accuracy = 0

    session_days = [ensure_utc(s.started_at).date() for s in sessions]
    if today is None:
        today = utc_now().date()

    return SessionHistoryStats(
        total_sessions=len(sessions),
        total_cards_reviewed=total_reviewed,
        total_study_seconds=total_ms // 1000,
        average_accuracy=accuracy,
        current_streak=current_streak(session_days, today),
    )
