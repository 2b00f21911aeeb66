"""
Utility functions for data marshalling between Pydantic models and database
rows, plus database file backups.
"""

import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from ..clock import ensure_utc
from ..exceptions import MarshallingError
from ..models import Card, Deck, ReviewLog, ReviewState, StudySessionRecord


def to_db_ts(ts: Optional[datetime]) -> Optional[datetime]:
    """UTC-normalize a timestamp and drop its tzinfo for a TIMESTAMP column."""
    if ts is None:
        return None
    return ensure_utc(ts).replace(tzinfo=None)


def from_db_ts(ts: Optional[datetime]) -> Optional[datetime]:
    """Re-attach UTC to a timestamp read back from the database."""
    if ts is None:
        return None
    return ts.replace(tzinfo=timezone.utc)


def deck_to_db_params(deck: Deck) -> Tuple:
    return (deck.deck_id, deck.title, deck.description, to_db_ts(deck.created_at))


def db_row_to_deck(row_dict: Dict[str, Any]) -> Deck:
    data = dict(row_dict)
    data["created_at"] = from_db_ts(data["created_at"])
    try:
        return Deck(**data)
    except ValidationError as e:
        raise MarshallingError(
            f"Failed to parse deck from DB row: {row_dict}. Error: {e}",
            original_exception=e,
        ) from e


def review_state_to_db_params(state: ReviewState) -> Tuple:
    """
    Returns:
        (ease_factor, interval_days, review_count, last_reviewed, next_review)
    """
    return (
        state.ease_factor,
        state.interval,
        state.review_count,
        to_db_ts(state.last_reviewed),
        to_db_ts(state.next_review),
    )


def card_to_db_params_list(cards: Sequence[Card]) -> List[Tuple]:
    """
    Convert cards into tuples for bulk insertion, in column order:
    (card_id, deck_id, question, answer, ease_factor, interval_days,
    review_count, last_reviewed, next_review, created_at, updated_at).
    """
    return [
        (
            card.card_id,
            card.deck_id,
            card.question,
            card.answer,
            *review_state_to_db_params(card.review),
            to_db_ts(card.created_at),
            to_db_ts(card.updated_at),
        )
        for card in cards
    ]


def db_row_to_card(row_dict: Dict[str, Any]) -> Card:
    """
    Create a Card from a cards-table row, rebuilding its nested ReviewState.

    Raises:
        MarshallingError: If the row does not validate.
    """
    try:
        review = ReviewState(
            ease_factor=row_dict["ease_factor"],
            interval=row_dict["interval_days"],
            review_count=row_dict["review_count"],
            last_reviewed=from_db_ts(row_dict["last_reviewed"]),
            next_review=from_db_ts(row_dict["next_review"]),
        )
        return Card(
            card_id=row_dict["card_id"],
            deck_id=row_dict["deck_id"],
            question=row_dict["question"],
            answer=row_dict["answer"],
            review=review,
            created_at=from_db_ts(row_dict["created_at"]),
            updated_at=from_db_ts(row_dict["updated_at"]),
        )
    except (ValidationError, KeyError) as e:
        raise MarshallingError(
            f"Failed to parse card from DB row: {row_dict}. Error: {e}",
            original_exception=e,
        ) from e


def review_log_to_db_params_tuple(log: ReviewLog) -> Tuple:
    """
    Returns:
        (card_id, session_id, ts, rating, ease_before, ease_after,
         interval_days, next_review, time_spent_ms)
    """
    return (
        log.card_id,
        log.session_id,
        to_db_ts(log.ts),
        log.rating.value,
        log.ease_before,
        log.ease_after,
        log.interval,
        to_db_ts(log.next_review),
        log.time_spent_ms,
    )


def db_row_to_review_log(row_dict: Dict[str, Any]) -> ReviewLog:
    data = dict(row_dict)
    data["interval"] = data.pop("interval_days")
    data["ts"] = from_db_ts(data["ts"])
    data["next_review"] = from_db_ts(data["next_review"])
    try:
        return ReviewLog(**data)
    except ValidationError as e:
        raise MarshallingError(
            f"Data validation failed for review: {e}", original_exception=e
        ) from e


def session_record_to_db_params_tuple(record: StudySessionRecord) -> Tuple:
    return (
        record.session_id,
        record.deck_id,
        to_db_ts(record.started_at),
        to_db_ts(record.ended_at),
        record.duration_ms,
        record.total_cards,
        record.cards_reviewed,
        record.correct_count,
    )


def db_row_to_session_record(row_dict: Dict[str, Any]) -> StudySessionRecord:
    data = dict(row_dict)
    data["started_at"] = from_db_ts(data["started_at"])
    data["ended_at"] = from_db_ts(data["ended_at"])
    try:
        return StudySessionRecord(**data)
    except ValidationError as e:
        raise MarshallingError(
            f"Data validation failed for session: {e}", original_exception=e
        ) from e


def find_latest_backup(db_path: Path) -> Optional[Path]:
    """
    Locate the most recent backup of `db_path` in its "backups" sibling
    directory, or None if there is none.
    """
    backup_dir = db_path.parent / "backups"
    if not backup_dir.exists():
        return None

    backup_files = list(backup_dir.glob(f"{db_path.stem}-backup-*.db"))
    if not backup_files:
        return None

    # File names embed the timestamp, so the greatest name is the newest.
    return max(backup_files, key=lambda p: p.name)


def backup_database(db_path: Path) -> Path:
    """
    Copy `db_path` to a timestamped file under `backups/`.

    Returns:
        The backup path, or `db_path` unchanged if there is nothing to copy.
    """
    if not db_path.exists():
        return db_path

    backup_dir = db_path.parent / "backups"
    backup_dir.mkdir(exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    backup_path = backup_dir / f"{db_path.stem}-backup-{timestamp}{db_path.suffix}"
    shutil.copy2(db_path, backup_path)
    return backup_path
