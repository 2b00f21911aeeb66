"""
Storage interfaces consumed by the session controller, and a dictionary
backed implementation of them.

`CardStore` is the only collaborator a session needs. `StudyHistoryStore` is
optional: when the store also implements it, completed reviews and finished
sessions are recorded for history statistics.
"""

import logging
from datetime import datetime
from typing import (
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    runtime_checkable,
)
from uuid import UUID

from .due_selector import is_due
from .exceptions import DeckNotFoundError, PersistenceFailure
from .models import Card, Deck, ReviewLog, ReviewState, StudySessionRecord

logger = logging.getLogger(__name__)


@runtime_checkable
class CardStore(Protocol):
    async def fetch_due_cards(self, deck_id: str, now: datetime) -> List[Card]:
        """Return the cards of `deck_id` that are due at `now`."""
        ...

    async def persist_review_state(
        self, card_id: UUID, state: ReviewState
    ) -> Card:
        """
        Overwrite the review state of `card_id` and return the updated card.

        Raises:
            PersistenceFailure: If the write fails. Writes are idempotent, so
                the caller may retry.
        """
        ...


@runtime_checkable
class StudyHistoryStore(Protocol):
    async def record_review(self, log: ReviewLog) -> None: ...

    async def save_session(self, record: StudySessionRecord) -> None: ...


class InMemoryCardStore:
    """
    Card store kept in dictionaries. Implements both CardStore and
    StudyHistoryStore.

    `fail_next_writes` makes the next N review-state writes raise
    PersistenceFailure, and `before_write` is awaited before every write;
    both exist to exercise failure and suspension paths.
    """

    def __init__(self, cards: Optional[List[Card]] = None):
        self.decks: Dict[str, Deck] = {}
        self.cards: Dict[UUID, Card] = {}
        self.reviews: List[ReviewLog] = []
        self.sessions: List[StudySessionRecord] = []
        self.fail_next_writes = 0
        self.fail_next_reads = 0
        self.before_write: Optional[Callable[[], Awaitable[object]]] = None
        for card in cards or []:
            self.add_card(card)

    def add_deck(self, deck: Deck) -> Deck:
        self.decks[deck.deck_id] = deck
        return deck

    def add_card(self, card: Card) -> Card:
        if card.deck_id not in self.decks:
            self.decks[card.deck_id] = Deck(
                deck_id=card.deck_id, title=card.deck_id
            )
        self.cards[card.card_id] = card
        return card

    def cards_in_deck(self, deck_id: str) -> List[Card]:
        if deck_id not in self.decks:
            raise DeckNotFoundError(f"Deck '{deck_id}' not found.")
        return [c for c in self.cards.values() if c.deck_id == deck_id]

    async def fetch_due_cards(self, deck_id: str, now: datetime) -> List[Card]:
        if self.fail_next_reads > 0:
            self.fail_next_reads -= 1
            raise PersistenceFailure(
                f"Simulated read failure for deck '{deck_id}'."
            )
        return [
            card
            for card in self.cards_in_deck(deck_id)
            if is_due(card.next_review, now)
        ]

    async def persist_review_state(
        self, card_id: UUID, state: ReviewState
    ) -> Card:
        if self.before_write is not None:
            await self.before_write()
        if self.fail_next_writes > 0:
            self.fail_next_writes -= 1
            raise PersistenceFailure(
                f"Simulated write failure for card {card_id}."
            )
        card = self.cards.get(card_id)
        if card is None:
            raise PersistenceFailure(f"Card {card_id} not found in store.")
        updated = card.with_review(state)
        self.cards[card_id] = updated
        logger.debug(f"Persisted review state for card {card_id}")
        return updated

    async def record_review(self, log: ReviewLog) -> None:
        self.reviews.append(log)

    async def save_session(self, record: StudySessionRecord) -> None:
        self.sessions.append(record)
