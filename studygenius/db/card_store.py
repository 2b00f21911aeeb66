"""
Async card store over StudyDatabase.

DuckDB calls run in a worker thread, one at a time: a write abandoned by a
timed-out or cancelled coroutine finishes before the next call starts.
"""

import asyncio
import logging
import threading
from datetime import datetime
from typing import Callable, List, TypeVar
from uuid import UUID

from ..models import Card, ReviewLog, ReviewState, StudySessionRecord
from .database import StudyDatabase

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DuckDBCardStore:
    """Implements CardStore and StudyHistoryStore on top of a StudyDatabase."""

    def __init__(self, db: StudyDatabase):
        self.db = db
        self._lock = threading.Lock()

    def _locked(self, func: Callable[..., T], *args) -> T:
        with self._lock:
            return func(*args)

    async def _run(self, func: Callable[..., T], *args) -> T:
        return await asyncio.to_thread(self._locked, func, *args)

    async def fetch_due_cards(self, deck_id: str, now: datetime) -> List[Card]:
        cards = await self._run(self.db.get_due_cards, deck_id, now)
        logger.debug(f"Fetched {len(cards)} due cards for deck '{deck_id}'")
        return cards

    async def persist_review_state(
        self, card_id: UUID, state: ReviewState
    ) -> Card:
        return await self._run(self.db.update_review_state, card_id, state)

    async def record_review(self, log: ReviewLog) -> None:
        await self._run(self.db.add_review_log, log)

    async def save_session(self, record: StudySessionRecord) -> None:
        await self._run(self.db.save_session_record, record)
