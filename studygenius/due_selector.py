"""
Due-card selection: which cards are due and in what order to show them.
"""

from datetime import datetime
from typing import List, Optional, Protocol, Sequence, TypeVar

from .clock import ensure_utc


class Schedulable(Protocol):
    @property
    def next_review(self) -> datetime: ...


T = TypeVar("T", bound=Schedulable)


def is_due(next_review: datetime, now: datetime) -> bool:
    """True iff `next_review` is at or before `now`."""
    return ensure_utc(next_review) <= ensure_utc(now)


def sort_by_priority(cards: Sequence[T]) -> List[T]:
    """
    Return the cards ordered by `next_review`, earliest (most overdue) first.

    The sort is stable, so cards with equal `next_review` keep their input
    order. The input is never modified.
    """
    return sorted(cards, key=lambda card: ensure_utc(card.next_review))


def select_due_cards(
    cards: Sequence[T], now: datetime, limit: Optional[int] = None
) -> List[T]:
    """
    Filter `cards` to those due at `now`, in priority order, truncated to
    `limit` when one is given.
    """
    due = [card for card in cards if is_due(card.next_review, now)]
    ordered = sort_by_priority(due)
    if limit is not None:
        return ordered[:limit]
    return ordered
