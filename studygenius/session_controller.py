"""
This module defines the SessionController, which drives one study session
for a deck: it loads the due cards, presents them one at a time, schedules
each rated card and persists the result through a card store.

States:

    Idle -> Loading -> Active <-> Reviewing -> Completed
    Loading/Reviewing -> Errored

A session is `Reviewing` while a review write is in flight; any further
submission in that state is rejected. A failed write leaves the session on
the same card (`Errored`) so the review can be submitted again.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple
from uuid import UUID, uuid4

from .clock import Clock, utc_now
from .config import (
    DEFAULT_SESSION_CONFIG,
    SchedulerConfig,
    SessionConfig,
)
from .due_selector import select_due_cards
from .exceptions import (
    DatabaseError,
    PersistenceFailure,
    ReviewInFlightError,
    SessionStateError,
)
from .models import (
    Card,
    Rating,
    ReviewLog,
    ReviewState,
    SessionProgress,
    SessionSummary,
)
from .scheduler import SM2Scheduler
from .store import CardStore, StudyHistoryStore

# Initialize logger
logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    Idle = "idle"
    Loading = "loading"
    Active = "active"
    Reviewing = "reviewing"
    Completed = "completed"
    Errored = "errored"


@dataclass
class StudySession:
    """
    Mutable progress of one session over an immutable snapshot of the due
    cards taken when it started.
    """

    session_id: UUID
    deck_id: str
    cards: Tuple[Card, ...]
    started_at: datetime
    cursor: int = 0
    cards_reviewed: int = 0
    correct_count: int = 0

    @property
    def current_card(self) -> Optional[Card]:
        if self.cursor >= len(self.cards):
            return None
        return self.cards[self.cursor]

    @property
    def is_complete(self) -> bool:
        return self.cursor >= len(self.cards)

    @property
    def accuracy(self) -> float:
        if self.cards_reviewed == 0:
            return 0.0
        return self.correct_count / self.cards_reviewed


class SessionController:
    """
    Orchestrates a study session.

    This class is responsible for:
    - Loading the due cards of a deck and fixing their presentation order.
    - Presenting cards one by one.
    - Scheduling rated cards and persisting the new review state.
    - Tracking progress and producing a summary when the session ends.
    """

    def __init__(
        self,
        store: CardStore,
        scheduler_config: Optional[SchedulerConfig] = None,
        session_config: Optional[SessionConfig] = None,
        clock: Clock = utc_now,
        history: Optional[StudyHistoryStore] = None,
    ):
        """
        Parameters:
            store: Card store used to fetch due cards and persist review states.
            scheduler_config: Parameters for the SM-2 scheduler.
            session_config: Session size and review write timeout.
            clock: Current-time source.
            history: Where reviews and finished sessions are recorded. Defaults
                to `store` when it implements StudyHistoryStore.
        """
        self.store = store
        self.session_config = session_config or DEFAULT_SESSION_CONFIG
        self.clock = clock
        self.scheduler = SM2Scheduler(scheduler_config, clock=clock)
        if history is None and isinstance(store, StudyHistoryStore):
            history = store
        self.history = history

        self.state = SessionState.Idle
        self.session: Optional[StudySession] = None
        self.summary: Optional[SessionSummary] = None
        self.last_error: Optional[Exception] = None
        self._presented_at: Optional[datetime] = None

    # --- Lifecycle ---

    async def start(self, deck_id: str) -> SessionState:
        """
        Load the due cards of `deck_id` and begin presenting them.

        Returns:
            The resulting state: `Active`, or `Completed` when nothing is due.

        Raises:
            SessionStateError: If a session is already in progress.
            PersistenceFailure: If the due cards could not be fetched.
            DeckNotFoundError: If the store does not know the deck.
        """
        if self._has_open_session():
            raise SessionStateError(
                f"Cannot start a session while {self.state.value}. "
                "End the current session first."
            )

        logger.info(f"Starting study session for deck '{deck_id}'")
        self.state = SessionState.Loading
        self.session = None
        self.summary = None
        self.last_error = None

        now = self.clock()
        try:
            fetched = await self.store.fetch_due_cards(deck_id, now)
        except asyncio.CancelledError:
            self.state = SessionState.Idle
            raise
        except DatabaseError as e:
            self._fail_loading(deck_id, e)
            raise
        except Exception as e:
            self._fail_loading(deck_id, e)
            raise PersistenceFailure(
                f"Failed to fetch due cards for deck '{deck_id}': {e}",
                original_exception=e,
            ) from e

        queue = select_due_cards(
            fetched, now, limit=self.session_config.session_size
        )
        self.session = StudySession(
            session_id=uuid4(),
            deck_id=deck_id,
            cards=tuple(queue),
            started_at=now,
        )

        if not queue:
            logger.info(f"No cards due in deck '{deck_id}'.")
            await self._finalize(now)
            return self.state

        self.state = SessionState.Active
        self._presented_at = now
        logger.info(
            f"Session {self.session.session_id} started with "
            f"{len(queue)} cards."
        )
        return self.state

    async def end(self) -> SessionSummary:
        """
        Finish the session and return its summary.

        Calling `end` on a session that already completed returns the same
        summary.

        Raises:
            SessionStateError: If no session has been started.
        """
        if self.state is SessionState.Completed and self.summary is not None:
            return self.summary
        if self.session is None:
            raise SessionStateError("No active session to end.")
        if self.state is SessionState.Reviewing:
            logger.warning(
                f"Ending session {self.session.session_id} while a review "
                "is still being saved; it will not be counted."
            )
        return await self._finalize(self.clock())

    # --- Presentation ---

    def current_card(self) -> Optional[Card]:
        """The card to present, or None when there is nothing left to show."""
        if self.session is None or self.state is SessionState.Completed:
            return None
        return self.session.current_card

    @property
    def is_complete(self) -> bool:
        return self.state is SessionState.Completed

    def progress(self) -> Optional[SessionProgress]:
        if self.session is None:
            return None
        total = len(self.session.cards)
        cursor = self.session.cursor
        percent = 100 if total == 0 else int(cursor / total * 100 + 0.5)
        return SessionProgress(
            current=min(cursor + 1, total),
            total=total,
            cards_reviewed=self.session.cards_reviewed,
            correct_count=self.session.correct_count,
            percent_complete=percent,
        )

    # --- Reviews ---

    async def submit_review(
        self, rating: Rating, time_spent_ms: Optional[int] = None
    ) -> Card:
        """
        Rate the current card, persist its new review state and move on.

        The cursor, `cards_reviewed` and `correct_count` change only after
        the store confirms the write.

        Parameters:
            rating: The learner's rating (Rating, its name, or 1-4).
            time_spent_ms: Time spent on the card; measured from when the
                card was presented if omitted.

        Returns:
            Card: The card as persisted with its new review state.

        Raises:
            InvalidRating: If the rating is outside the closed set.
            ReviewInFlightError: If another review is still being saved.
            SessionStateError: If there is no card to review.
            PersistenceFailure: If the store write failed or timed out. The
                session stays on the same card.
        """
        rating = Rating.parse(rating)

        if self.state is SessionState.Reviewing:
            raise ReviewInFlightError(
                "A review is already being saved for the current card."
            )
        if self.state not in (SessionState.Active, SessionState.Errored):
            raise SessionStateError(
                f"Cannot submit a review while {self.state.value}."
            )
        session = self.session
        card = session.current_card if session is not None else None
        if session is None or card is None:
            raise SessionStateError("There is no card to review.")

        previous_state = self.state
        self.state = SessionState.Reviewing
        new_review = self.scheduler.compute_next_review(card.review, rating)

        try:
            updated_card = await self._persist(card.card_id, new_review)
        except asyncio.CancelledError:
            if self._owns_review(session):
                self.state = previous_state
            raise
        except Exception as e:
            failure = (
                e
                if isinstance(e, PersistenceFailure)
                else PersistenceFailure(
                    f"Failed to save review for card {card.card_id}: {e}",
                    original_exception=e,
                )
            )
            logger.error(
                f"Failed to submit review for card {card.card_id}: {e}"
            )
            if self._owns_review(session):
                self.last_error = failure
                self.state = SessionState.Errored
            if failure is e:
                raise
            raise failure from e

        if not self._owns_review(session):
            # The session was ended while the write was in flight.
            return updated_card

        now = self.clock()
        if time_spent_ms is None and self._presented_at is not None:
            time_spent_ms = max(
                0, int((now - self._presented_at).total_seconds() * 1000)
            )

        session.cards_reviewed += 1
        if rating.is_correct:
            session.correct_count += 1
        session.cursor += 1
        self.last_error = None
        self._presented_at = now

        await self._record_review(
            ReviewLog(
                card_id=card.card_id,
                session_id=session.session_id,
                ts=new_review.last_reviewed,
                rating=rating,
                ease_before=card.ease_factor,
                ease_after=new_review.ease_factor,
                interval=new_review.interval,
                next_review=new_review.next_review,
                time_spent_ms=time_spent_ms,
            )
        )

        if not self._owns_review(session):
            return updated_card
        if session.is_complete:
            await self._finalize(now)
        else:
            self.state = SessionState.Active
        return updated_card

    # --- Internals ---

    def _owns_review(self, session: StudySession) -> bool:
        """True while `session` is current and its review write is pending."""
        return (
            self.session is session and self.state is SessionState.Reviewing
        )

    def _has_open_session(self) -> bool:
        if self.state in (
            SessionState.Loading,
            SessionState.Active,
            SessionState.Reviewing,
        ):
            return True
        return self.state is SessionState.Errored and self.session is not None

    def _fail_loading(self, deck_id: str, error: Exception) -> None:
        logger.error(f"Failed to load due cards for deck '{deck_id}': {error}")
        self.last_error = error
        self.state = SessionState.Errored

    async def _persist(self, card_id: UUID, state: ReviewState) -> Card:
        write = self.store.persist_review_state(card_id, state)
        timeout = self.session_config.persist_timeout
        if timeout is None:
            return await write
        return await asyncio.wait_for(write, timeout)

    async def _record_review(self, log: ReviewLog) -> None:
        if self.history is None:
            return
        try:
            await self.history.record_review(log)
        except Exception as e:
            logger.warning(f"Failed to record review history: {e}")

    async def _finalize(self, now: datetime) -> SessionSummary:
        session = self.session
        duration = max(0.0, (now - session.started_at).total_seconds())
        self.summary = SessionSummary(
            session_id=session.session_id,
            deck_id=session.deck_id,
            total_cards=len(session.cards),
            cards_reviewed=session.cards_reviewed,
            correct_count=session.correct_count,
            started_at=session.started_at,
            ended_at=now,
            duration_seconds=duration,
            accuracy=session.accuracy,
        )
        self.state = SessionState.Completed
        logger.info(
            f"Session {session.session_id} completed: "
            f"{session.cards_reviewed}/{len(session.cards)} cards reviewed, "
            f"accuracy {self.summary.accuracy_percentage}%"
        )

        if self.history is not None:
            try:
                await self.history.save_session(self.summary.to_record())
            except Exception as e:
                logger.warning(f"Failed to save session summary: {e}")
        return self.summary
