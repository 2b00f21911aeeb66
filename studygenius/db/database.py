"""
DuckDB database interactions for studygenius.
Implements the StudyDatabase facade over decks, cards, reviews and sessions.
"""

import duckdb
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from ..clock import utc_now
from ..exceptions import (
    CardOperationError,
    DatabaseError,
    DeckNotFoundError,
    MarshallingError,
    ReviewOperationError,
    SessionOperationError,
)

import logging
from . import db_utils

from ..models import Card, Deck, ReviewLog, ReviewState, StudySessionRecord
from .connection import ConnectionHandler
from .schema_manager import SchemaManager

# --- Logging Setup ---
logger = logging.getLogger(__name__)

# --- Helper Functions ---


def _rows_to_dicts(cursor: duckdb.DuckDBPyConnection) -> List[Dict[str, Any]]:
    """Convert cursor results to list of dictionaries using column names."""
    rows = cursor.fetchall()
    if not rows:
        return []
    description = cursor.description
    if description is None:
        return []
    columns = [desc[0] for desc in description]
    return [dict(zip(columns, row, strict=True)) for row in rows]


def _rollback_quietly(cursor: duckdb.DuckDBPyConnection, context: str) -> None:
    try:
        cursor.rollback()
        logger.info(f"Transaction rolled back due to {context} error.")
    except duckdb.Error as rb_err:
        logger.error(f"Failed to rollback transaction: {rb_err}")


class StudyDatabase:
    """
    Acts as a Facade for the database subsystem, providing a simple, high-level
    interface for deck, card, review and session operations.

    It coordinates the ConnectionHandler, SchemaManager, and data marshalling
    utilities. Intended for use as a context manager.
    """

    def __init__(self, db_path: Union[str, Path], read_only: bool = False):
        """
        Args:
            db_path: Path to the database file, or ':memory:'.
            read_only: Open the database in read-only mode.
        """
        self._handler = ConnectionHandler(db_path=db_path, read_only=read_only)
        self._schema_manager = SchemaManager(self._handler)
        logger.info(
            f"StudyDatabase initialized for DB at: {self._handler.db_path_resolved}"  # noqa: E501
        )

    @property
    def db_path_resolved(self) -> Path:
        return self._handler.db_path_resolved

    @property
    def read_only(self) -> bool:
        return self._handler.read_only

    def get_connection(self) -> duckdb.DuckDBPyConnection:
        return self._handler.get_connection()

    def close_connection(self) -> None:
        self._handler.close_connection()

    def __enter__(self) -> "StudyDatabase":
        """Open the connection; a newly created database gets its schema."""
        self.get_connection()
        if self._handler.is_new_db and not self._handler.read_only:
            self.initialize_schema()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Ensures the connection is closed on exiting the context."""
        self.close_connection()

    def initialize_schema(self, force_recreate_tables: bool = False) -> None:
        self._schema_manager.initialize_schema(
            force_recreate_tables=force_recreate_tables
        )

    # --- Deck Operations ---

    def create_deck(self, deck: Deck) -> Deck:
        """
        Insert a deck, or update the title and description of an existing one.

        Raises:
            CardOperationError: If the database operation fails.
        """
        sql = """
        INSERT INTO decks (deck_id, title, description, created_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT (deck_id) DO UPDATE SET
            title = EXCLUDED.title,
            description = EXCLUDED.description;
        """
        conn = self.get_connection()
        with conn.cursor() as cursor:
            try:
                cursor.begin()
                cursor.execute(sql, db_utils.deck_to_db_params(deck))
                cursor.commit()
            except duckdb.Error as e:
                logger.error(f"Error creating deck '{deck.deck_id}': {e}")
                _rollback_quietly(cursor, "deck create")
                raise CardOperationError(
                    f"Failed to create deck: {e}", original_exception=e
                ) from e
        logger.info(f"Deck '{deck.deck_id}' saved.")
        return deck

    def get_deck(self, deck_id: str) -> Optional[Deck]:
        conn = self.get_connection()
        try:
            cursor = conn.execute(
                "SELECT * FROM decks WHERE deck_id = ?;", (deck_id,)
            )
            rows = _rows_to_dicts(cursor)
        except duckdb.Error as e:
            logger.error(f"Error fetching deck '{deck_id}': {e}")
            raise CardOperationError(
                f"Failed to fetch deck: {e}", original_exception=e
            ) from e
        if not rows:
            return None
        return db_utils.db_row_to_deck(rows[0])

    def get_decks(self) -> List[Deck]:
        conn = self.get_connection()
        try:
            cursor = conn.execute("SELECT * FROM decks ORDER BY deck_id ASC;")
            rows = _rows_to_dicts(cursor)
        except duckdb.Error as e:
            logger.error(f"Error fetching decks: {e}")
            raise CardOperationError(
                f"Failed to fetch decks: {e}", original_exception=e
            ) from e
        return [db_utils.db_row_to_deck(row) for row in rows]

    def _require_deck(self, deck_id: str) -> None:
        if self.get_deck(deck_id) is None:
            raise DeckNotFoundError(f"Deck '{deck_id}' not found.")

    # --- Card Operations ---

    _ENSURE_DECK_SQL = """
        INSERT INTO decks (deck_id, title, description, created_at)
        VALUES (?, ?, NULL, ?)
        ON CONFLICT (deck_id) DO NOTHING;
        """

    _UPSERT_CARDS_SQL = """
        INSERT INTO cards (card_id, deck_id, question, answer, ease_factor,
                           interval_days, review_count, last_reviewed,
                           next_review, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT (card_id) DO UPDATE SET
            deck_id = EXCLUDED.deck_id,
            question = EXCLUDED.question,
            answer = EXCLUDED.answer,
            ease_factor = EXCLUDED.ease_factor,
            interval_days = EXCLUDED.interval_days,
            review_count = EXCLUDED.review_count,
            last_reviewed = EXCLUDED.last_reviewed,
            next_review = EXCLUDED.next_review,
            updated_at = EXCLUDED.updated_at;
        """

    def upsert_cards_batch(self, cards: Sequence[Card]) -> int:
        """
        Upserts a sequence of cards in a single transaction. Decks referenced
        by the cards are created (titled by their id) when missing.

        Returns:
            int: Number of cards processed.

        Raises:
            CardOperationError: If the database operation fails.
        """
        if not cards:
            return 0

        card_params_list = db_utils.card_to_db_params_list(cards)
        now = db_utils.to_db_ts(utc_now())
        deck_params = [
            (deck_id, deck_id, now)
            for deck_id in sorted({card.deck_id for card in cards})
        ]

        conn = self.get_connection()
        with conn.cursor() as cursor:
            try:
                cursor.begin()
                cursor.executemany(self._ENSURE_DECK_SQL, deck_params)
                cursor.executemany(self._UPSERT_CARDS_SQL, card_params_list)
                cursor.commit()
            except duckdb.Error as e:
                logger.error(f"Error during batch card upsert: {e}")
                _rollback_quietly(cursor, "batch card upsert")
                raise CardOperationError(
                    f"Batch card upsert failed: {e}", original_exception=e
                ) from e
        logger.info(f"Successfully upserted {len(card_params_list)} cards.")
        return len(card_params_list)

    def get_card_by_id(self, card_id: uuid.UUID) -> Optional[Card]:
        """
        Raises:
            CardOperationError: If a database error occurs or the row cannot
                be parsed into a Card.
        """
        conn = self.get_connection()
        try:
            cursor = conn.execute(
                "SELECT * FROM cards WHERE card_id = ?;", (card_id,)
            )
            rows = _rows_to_dicts(cursor)
        except duckdb.Error as e:
            logger.error(f"Error fetching card {card_id}: {e}")
            raise CardOperationError(
                f"Failed to fetch card: {e}", original_exception=e
            ) from e
        if not rows:
            return None
        try:
            return db_utils.db_row_to_card(rows[0])
        except MarshallingError as e:
            raise CardOperationError(
                f"Failed to parse card {card_id} from database.",
                original_exception=e,
            ) from e

    def get_cards_for_deck(self, deck_id: str) -> List[Card]:
        """
        All cards of a deck, oldest first.

        Raises:
            DeckNotFoundError: If the deck does not exist.
        """
        self._require_deck(deck_id)
        return self._select_cards(
            "SELECT * FROM cards WHERE deck_id = ? ORDER BY created_at ASC;",
            [deck_id],
            f"deck '{deck_id}'",
        )

    def get_due_cards(
        self,
        deck_id: str,
        now: datetime,
        limit: Optional[int] = None,
    ) -> List[Card]:
        """
        Retrieve the cards of a deck whose `next_review` is at or before
        `now`, ordered by `next_review` then `created_at`.

        Parameters:
            limit: Maximum number of cards to return; None means no limit and
                0 returns an empty list.

        Raises:
            DeckNotFoundError: If the deck does not exist.
            CardOperationError: If a database error occurs.
        """
        self._require_deck(deck_id)
        if limit == 0:
            return []
        sql = """
        SELECT * FROM cards
        WHERE deck_id = ? AND next_review <= ?
        ORDER BY next_review ASC, created_at ASC
        """
        params: List[Any] = [deck_id, db_utils.to_db_ts(now)]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return self._select_cards(sql, params, f"due cards of '{deck_id}'")

    def _select_cards(
        self, sql: str, params: List[Any], what: str
    ) -> List[Card]:
        conn = self.get_connection()
        try:
            cursor = conn.execute(sql, params)
            rows = _rows_to_dicts(cursor)
        except duckdb.Error as e:
            logger.error(f"Error fetching {what}: {e}")
            raise CardOperationError(
                f"Failed to fetch {what}: {e}", original_exception=e
            ) from e
        try:
            return [db_utils.db_row_to_card(row) for row in rows]
        except MarshallingError as e:
            raise CardOperationError(
                f"Failed to parse {what} from database.",
                original_exception=e,
            ) from e

    def update_review_state(
        self, card_id: uuid.UUID, state: ReviewState
    ) -> Card:
        """
        Overwrite the review state of a card. Repeating the same write leaves
        the row unchanged.

        Returns:
            Card: The updated card.

        Raises:
            CardOperationError: If the card does not exist or the write fails.
        """
        if self.read_only:
            raise CardOperationError(
                "Cannot update review state in read-only mode."
            )
        sql = """
        UPDATE cards SET
            ease_factor = ?,
            interval_days = ?,
            review_count = ?,
            last_reviewed = ?,
            next_review = ?,
            updated_at = ?
        WHERE card_id = ?
        RETURNING *;
        """
        params = (
            *db_utils.review_state_to_db_params(state),
            db_utils.to_db_ts(state.last_reviewed),
            card_id,
        )
        conn = self.get_connection()
        with conn.cursor() as cursor:
            try:
                cursor.begin()
                cursor.execute(sql, params)
                rows = _rows_to_dicts(cursor)
                if not rows:
                    cursor.rollback()
                    raise CardOperationError(
                        f"Card {card_id} not found; review state not saved."
                    )
                cursor.commit()
            except duckdb.Error as e:
                logger.error(f"Error updating review state of {card_id}: {e}")
                _rollback_quietly(cursor, "review state update")
                raise CardOperationError(
                    f"Failed to update review state: {e}",
                    original_exception=e,
                ) from e
        logger.debug(f"Review state of card {card_id} saved.")
        return db_utils.db_row_to_card(rows[0])

    def delete_cards(self, card_ids: Sequence[uuid.UUID]) -> int:
        """
        Deletes cards (and their review logs) by id.

        Returns:
            The number of cards deleted.
        """
        if self.read_only:
            raise CardOperationError("Cannot delete cards in read-only mode.")
        if not card_ids:
            return 0

        params = (list(card_ids),)
        conn = self.get_connection()
        with conn.cursor() as cursor:
            try:
                cursor.begin()
                cursor.execute(
                    "DELETE FROM reviews WHERE card_id IN (SELECT * FROM UNNEST(?));",  # noqa: E501
                    params,
                )
                cursor.execute(
                    "DELETE FROM cards WHERE card_id IN (SELECT * FROM UNNEST(?)) RETURNING card_id;",  # noqa: E501
                    params,
                )
                deleted = len(cursor.fetchall())
                cursor.commit()
            except duckdb.Error as e:
                logger.error(f"Failed to delete cards: {e}")
                _rollback_quietly(cursor, "delete")
                raise CardOperationError(
                    f"Batch card delete failed: {e}", original_exception=e
                ) from e
        logger.info(f"Successfully deleted {deleted} cards.")
        return deleted

    # --- Review Operations ---

    def add_review_log(self, log: ReviewLog) -> ReviewLog:
        """
        Insert a review log.

        Returns:
            ReviewLog: A copy of `log` carrying its assigned `review_id`.

        Raises:
            ReviewOperationError: If the insert fails.
        """
        sql = """
        INSERT INTO reviews (card_id, session_id, ts, rating, ease_before,
                             ease_after, interval_days, next_review,
                             time_spent_ms)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        RETURNING review_id;
        """
        conn = self.get_connection()
        with conn.cursor() as cursor:
            try:
                cursor.begin()
                cursor.execute(sql, db_utils.review_log_to_db_params_tuple(log))
                result = cursor.fetchone()
                if result is None:
                    raise ReviewOperationError(
                        "Failed to retrieve review_id after insertion."
                    )
                cursor.commit()
            except (duckdb.Error, DatabaseError) as e:
                logger.error(f"Error inserting review for {log.card_id}: {e}")
                _rollback_quietly(cursor, "review insert")
                if isinstance(e, DatabaseError):
                    raise
                raise ReviewOperationError(
                    f"Failed to add review: {e}", original_exception=e
                ) from e
        return log.model_copy(update={"review_id": result[0]})

    def get_reviews_for_card(self, card_id: uuid.UUID) -> List[ReviewLog]:
        return self._select_reviews(
            "SELECT * FROM reviews WHERE card_id = ? ORDER BY ts ASC, review_id ASC;",  # noqa: E501
            [card_id],
        )

    def get_all_reviews(
        self,
        start_ts: Optional[datetime] = None,
        end_ts: Optional[datetime] = None,
    ) -> List[ReviewLog]:
        """Reviews with `start_ts <= ts <= end_ts`, oldest first."""
        sql = "SELECT * FROM reviews"
        conditions: List[str] = []
        params: List[Any] = []
        if start_ts is not None:
            conditions.append("ts >= ?")
            params.append(db_utils.to_db_ts(start_ts))
        if end_ts is not None:
            conditions.append("ts <= ?")
            params.append(db_utils.to_db_ts(end_ts))
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        sql += " ORDER BY ts ASC, review_id ASC;"
        return self._select_reviews(sql, params)

    def _select_reviews(self, sql: str, params: List[Any]) -> List[ReviewLog]:
        conn = self.get_connection()
        try:
            cursor = conn.execute(sql, params)
            rows = _rows_to_dicts(cursor)
        except duckdb.Error as e:
            logger.error(f"Error fetching reviews: {e}")
            raise ReviewOperationError(
                f"Failed to fetch reviews: {e}", original_exception=e
            ) from e
        try:
            return [db_utils.db_row_to_review_log(row) for row in rows]
        except MarshallingError as e:
            raise ReviewOperationError(
                "Failed to parse reviews from database.", original_exception=e
            ) from e

    # --- Session Operations ---

    def save_session_record(
        self, record: StudySessionRecord
    ) -> StudySessionRecord:
        """
        Insert a finished session, replacing any record with the same id.

        Raises:
            SessionOperationError: If the write fails.
        """
        sql = """
        INSERT OR REPLACE INTO study_sessions (
            session_id, deck_id, started_at, ended_at, duration_ms,
            total_cards, cards_reviewed, correct_count
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?);
        """
        conn = self.get_connection()
        with conn.cursor() as cursor:
            try:
                cursor.begin()
                cursor.execute(
                    sql, db_utils.session_record_to_db_params_tuple(record)
                )
                cursor.commit()
            except duckdb.Error as e:
                logger.error(
                    f"Error saving session {record.session_id}: {e}"
                )
                _rollback_quietly(cursor, "session save")
                raise SessionOperationError(
                    f"Failed to save session: {e}", original_exception=e
                ) from e
        logger.debug(f"Session {record.session_id} saved.")
        return record

    def get_recent_sessions(
        self, limit: Optional[int] = None, deck_id: Optional[str] = None
    ) -> List[StudySessionRecord]:
        """Finished sessions, most recent first."""
        sql = "SELECT * FROM study_sessions"
        params: List[Any] = []
        if deck_id is not None:
            sql += " WHERE deck_id = ?"
            params.append(deck_id)
        sql += " ORDER BY started_at DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        conn = self.get_connection()
        try:
            cursor = conn.execute(sql, params)
            rows = _rows_to_dicts(cursor)
        except duckdb.Error as e:
            logger.error(f"Error fetching recent sessions: {e}")
            raise SessionOperationError(
                f"Failed to fetch sessions: {e}", original_exception=e
            ) from e
        try:
            return [db_utils.db_row_to_session_record(row) for row in rows]
        except MarshallingError as e:
            raise SessionOperationError(
                "Failed to parse sessions from database.",
                original_exception=e,
            ) from e

    # --- Statistics ---

    def get_database_stats(
        self, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Returns:
            dict: total_cards, total_reviews, total_sessions and `decks`, a
            list of {deck_id, title, card_count, due_count} ordered by id.
        """
        now = now or utc_now()
        conn = self.get_connection()
        sql = """
        SELECT
            d.deck_id,
            d.title,
            COUNT(c.card_id) AS card_count,
            COUNT(CASE WHEN c.next_review <= ? THEN 1 END) AS due_count
        FROM decks d
        LEFT JOIN cards c ON c.deck_id = d.deck_id
        GROUP BY d.deck_id, d.title
        ORDER BY d.deck_id ASC;
        """
        try:
            totals = conn.execute(
                """
                SELECT
                    (SELECT COUNT(*) FROM cards),
                    (SELECT COUNT(*) FROM reviews),
                    (SELECT COUNT(*) FROM study_sessions);
                """
            ).fetchone()
            decks = _rows_to_dicts(conn.execute(sql, [db_utils.to_db_ts(now)]))
        except duckdb.Error as e:
            logger.error(
                f"Could not retrieve database stats due to an error: {e}"
            )
            raise CardOperationError(
                "Could not retrieve database stats.", original_exception=e
            ) from e

        total_cards, total_reviews, total_sessions = totals or (0, 0, 0)
        return {
            "total_cards": total_cards or 0,
            "total_reviews": total_reviews or 0,
            "total_sessions": total_sessions or 0,
            "decks": decks,
        }
