"""
Test suite for studygenius.db (StudyDatabase and DuckDBCardStore), covering
connection, schema, CRUD, marshalling and error handling.
"""

import asyncio
import threading
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock

import duckdb
import pytest

from studygenius.clock import FixedClock
from studygenius.db import DuckDBCardStore, StudyDatabase
from studygenius.db.db_utils import backup_database, find_latest_backup
from studygenius.exceptions import (
    CardOperationError,
    DatabaseConnectionError,
    DeckNotFoundError,
    PersistenceFailure,
    SchemaInitializationError,
)
from studygenius.models import (
    Deck,
    Rating,
    ReviewLog,
    ReviewState,
    StudySessionRecord,
)
from studygenius.session_controller import SessionController, SessionState

UTC = timezone.utc
NOW = datetime(2024, 1, 10, 12, 0, 0, tzinfo=UTC)


def _review_log(card_id: uuid.UUID, ts: datetime, rating=Rating.Medium):
    return ReviewLog(
        card_id=card_id,
        session_id=uuid.uuid4(),
        ts=ts,
        rating=rating,
        ease_before=2.5,
        ease_after=2.5,
        interval=2.0,
        next_review=ts + timedelta(days=2),
        time_spent_ms=1500,
    )


def _session_record(started_at: datetime, deck_id: str = "deck"):
    return StudySessionRecord(
        deck_id=deck_id,
        started_at=started_at,
        ended_at=started_at + timedelta(minutes=5),
        duration_ms=300_000,
        total_cards=4,
        cards_reviewed=3,
        correct_count=2,
    )


class TestStudyDatabaseConnection:
    def test_instantiation_in_memory(self, db_path_memory: str):
        db_man = StudyDatabase(db_path_memory)
        assert str(db_man.db_path_resolved) == ":memory:"
        with db_man as db:
            conn = db.get_connection()
            assert conn.execute("SELECT 42;").fetchone() == (42,)
        with pytest.raises(duckdb.Error, match="Connection already closed"):
            conn.execute("SELECT 1")

    def test_file_path_parent_is_created(self, tmp_path: Path):
        custom_path = tmp_path / "nested" / "study.db"
        with StudyDatabase(custom_path) as db:
            assert db.db_path_resolved == custom_path.resolve()
            assert db.get_decks() == []
        assert custom_path.exists()

    def test_get_connection_is_reused_until_closed(
        self, db_manager: StudyDatabase
    ):
        conn1 = db_manager.get_connection()
        assert db_manager.get_connection() is conn1
        db_manager.close_connection()
        conn2 = db_manager.get_connection()
        assert conn2 is not conn1

    def test_read_only_mode_rejects_writes(
        self, db_path_file: Path, card_factory
    ):
        with StudyDatabase(db_path_file):
            pass
        db_readonly = StudyDatabase(db_path_file, read_only=True)
        try:
            with pytest.raises(CardOperationError):
                db_readonly.upsert_cards_batch([card_factory()])
            with pytest.raises(CardOperationError):
                db_readonly.update_review_state(uuid.uuid4(), ReviewState.new())
        finally:
            db_readonly.close_connection()


class TestSchemaInitialization:
    def test_initialize_schema_creates_tables_and_sequence(
        self, db_manager: StudyDatabase
    ):
        conn = db_manager.get_connection()
        tables = conn.execute(
            "SELECT table_name FROM information_schema.tables;"
        ).fetchall()
        table_names = {name[0] for name in tables}
        assert {"decks", "cards", "reviews", "study_sessions"} <= table_names
        seq = conn.execute(
            "SELECT sequence_name FROM duckdb_sequences() WHERE sequence_name='review_seq';"  # noqa: E501
        ).fetchone()
        assert seq is not None

    def test_initialize_schema_idempotent(self, populated_db: StudyDatabase):
        populated_db.initialize_schema()
        assert len(populated_db.get_cards_for_deck("deck")) == 4

    def test_force_recreate_refused_when_file_has_data(
        self, db_path_file: Path, card_factory
    ):
        with StudyDatabase(db_path_file) as db:
            db.upsert_cards_batch([card_factory()])
            with pytest.raises(SchemaInitializationError):
                db.initialize_schema(force_recreate_tables=True)
            assert len(db.get_cards_for_deck("deck")) == 1

    def test_force_recreate_in_memory_drops_data(self, card_factory):
        with StudyDatabase(":memory:") as db:
            db.upsert_cards_batch([card_factory()])
            db.initialize_schema(force_recreate_tables=True)
            assert db.get_decks() == []

    def test_force_recreate_read_only_fails(self, db_path_file: Path):
        with StudyDatabase(db_path_file):
            pass
        db_readonly = StudyDatabase(db_path_file, read_only=True)
        with pytest.raises(DatabaseConnectionError):
            db_readonly.initialize_schema(force_recreate_tables=True)

    def test_rating_check_constraint(self, populated_db, sample_cards):
        conn = populated_db.get_connection()
        with pytest.raises(duckdb.ConstraintException):
            conn.execute(
                "INSERT INTO reviews (card_id, ts, rating, ease_before, ease_after, interval_days, next_review) VALUES (?, ?, ?, ?, ?, ?, ?)",  # noqa: E501
                (
                    sample_cards[0].card_id,
                    NOW.replace(tzinfo=None),
                    "good",
                    2.5,
                    2.5,
                    1.0,
                    NOW.replace(tzinfo=None),
                ),
            )
        assert populated_db.get_reviews_for_card(sample_cards[0].card_id) == []


class TestDeckOperations:
    def test_create_and_get_deck(self, db_manager: StudyDatabase):
        deck = Deck(deck_id="bio", title="Biology", description="Cells")
        db_manager.create_deck(deck)

        fetched = db_manager.get_deck("bio")
        assert fetched == deck
        assert fetched.created_at.tzinfo is not None

    def test_create_deck_twice_updates_title(self, db_manager: StudyDatabase):
        db_manager.create_deck(Deck(deck_id="bio", title="Bio"))
        db_manager.create_deck(Deck(deck_id="bio", title="Biology"))

        decks = db_manager.get_decks()
        assert [d.title for d in decks] == ["Biology"]

    def test_get_missing_deck(self, db_manager: StudyDatabase):
        assert db_manager.get_deck("nope") is None


class TestCardOperations:
    def test_upsert_and_get_round_trip(self, db_manager, card_factory):
        card = card_factory(ease_factor=2.2, review_count=3, interval=6.5)
        assert db_manager.upsert_cards_batch([card]) == 1

        fetched = db_manager.get_card_by_id(card.card_id)
        assert fetched == card
        assert fetched.next_review.tzinfo is not None

    def test_upsert_creates_missing_deck(self, db_manager, card_factory):
        db_manager.upsert_cards_batch([card_factory(deck_id="auto")])
        assert db_manager.get_deck("auto").title == "auto"

    def test_upsert_updates_existing_card(self, db_manager, card_factory):
        card = card_factory(question="Old")
        db_manager.upsert_cards_batch([card])
        changed = card.model_copy(update={"question": "New"})
        db_manager.upsert_cards_batch([changed])

        assert db_manager.get_card_by_id(card.card_id).question == "New"
        assert len(db_manager.get_cards_for_deck("deck")) == 1

    def test_upsert_empty_batch(self, db_manager: StudyDatabase):
        assert db_manager.upsert_cards_batch([]) == 0

    def test_get_card_not_found(self, db_manager: StudyDatabase):
        assert db_manager.get_card_by_id(uuid.uuid4()) is None

    def test_unknown_deck_raises(self, db_manager: StudyDatabase):
        with pytest.raises(DeckNotFoundError):
            db_manager.get_cards_for_deck("nope")
        with pytest.raises(DeckNotFoundError):
            db_manager.get_due_cards("nope", NOW)

    def test_get_due_cards_order_and_limit(self, populated_db: StudyDatabase):
        due = populated_db.get_due_cards("deck", NOW)
        assert [c.question for c in due] == [
            "overdue by 3 days",
            "due yesterday",
            "due now",
        ]
        assert len(populated_db.get_due_cards("deck", NOW, limit=1)) == 1
        assert populated_db.get_due_cards("deck", NOW, limit=0) == []

    def test_get_due_cards_ties_break_by_creation(
        self, db_manager, card_factory
    ):
        later = card_factory(question="later", created_at=NOW)
        earlier = card_factory(
            question="earlier", created_at=NOW - timedelta(days=1)
        )
        db_manager.upsert_cards_batch([later, earlier])

        due = db_manager.get_due_cards("deck", NOW)
        assert [c.question for c in due] == ["earlier", "later"]

    def test_update_review_state(self, populated_db, sample_cards):
        card = sample_cards[0]
        state = ReviewState(
            ease_factor=2.6,
            interval=3,
            review_count=1,
            last_reviewed=NOW,
            next_review=NOW + timedelta(days=3),
        )

        updated = populated_db.update_review_state(card.card_id, state)
        again = populated_db.update_review_state(card.card_id, state)

        assert updated.review == state
        assert updated.updated_at == NOW
        assert again == updated
        assert populated_db.get_card_by_id(card.card_id).review == state

    def test_update_review_state_unknown_card(self, db_manager):
        with pytest.raises(PersistenceFailure):
            db_manager.update_review_state(uuid.uuid4(), ReviewState.new(NOW))

    def test_delete_cards(self, populated_db, sample_cards):
        target = sample_cards[0].card_id
        populated_db.add_review_log(_review_log(target, NOW))

        assert populated_db.delete_cards([target, uuid.uuid4()]) == 1
        assert populated_db.get_card_by_id(target) is None
        assert populated_db.get_reviews_for_card(target) == []
        assert populated_db.delete_cards([]) == 0


class TestReviewOperations:
    def test_add_review_log_assigns_ids(self, populated_db, sample_cards):
        card_id = sample_cards[0].card_id
        first = populated_db.add_review_log(_review_log(card_id, NOW))
        second = populated_db.add_review_log(
            _review_log(card_id, NOW + timedelta(hours=1), Rating.Easy)
        )

        assert first.review_id is not None
        assert second.review_id > first.review_id

        logs = populated_db.get_reviews_for_card(card_id)
        assert logs == [first, second]

    def test_get_all_reviews_time_range(self, populated_db, sample_cards):
        card_id = sample_cards[0].card_id
        for days in range(3):
            populated_db.add_review_log(
                _review_log(card_id, NOW + timedelta(days=days))
            )

        assert len(populated_db.get_all_reviews()) == 3
        ranged = populated_db.get_all_reviews(
            start_ts=NOW + timedelta(days=1), end_ts=NOW + timedelta(days=1)
        )
        assert [log.ts for log in ranged] == [NOW + timedelta(days=1)]


class TestSessionOperations:
    def test_save_and_list_sessions(self, db_manager: StudyDatabase):
        older = db_manager.save_session_record(_session_record(NOW))
        newer = db_manager.save_session_record(
            _session_record(NOW + timedelta(days=1), deck_id="other")
        )

        assert db_manager.get_recent_sessions() == [newer, older]
        assert db_manager.get_recent_sessions(limit=1) == [newer]
        assert db_manager.get_recent_sessions(deck_id="deck") == [older]

    def test_save_session_replaces_same_id(self, db_manager: StudyDatabase):
        record = _session_record(NOW)
        db_manager.save_session_record(record)
        db_manager.save_session_record(
            record.model_copy(update={"cards_reviewed": 4})
        )

        sessions = db_manager.get_recent_sessions()
        assert len(sessions) == 1
        assert sessions[0].cards_reviewed == 4


class TestDatabaseStats:
    def test_stats_empty(self, db_manager: StudyDatabase):
        stats = db_manager.get_database_stats(NOW)
        assert stats == {
            "total_cards": 0,
            "total_reviews": 0,
            "total_sessions": 0,
            "decks": [],
        }

    def test_stats_populated(self, populated_db, sample_cards):
        populated_db.create_deck(Deck(deck_id="empty", title="Empty"))
        populated_db.add_review_log(_review_log(sample_cards[0].card_id, NOW))

        stats = populated_db.get_database_stats(NOW)

        assert stats["total_cards"] == 4
        assert stats["total_reviews"] == 1
        assert stats["decks"] == [
            {"deck_id": "deck", "title": "Test Deck", "card_count": 4, "due_count": 3},  # noqa: E501
            {"deck_id": "empty", "title": "Empty", "card_count": 0, "due_count": 0},  # noqa: E501
        ]


class TestDuckDBCardStore:
    def test_session_over_duckdb(self, populated_db: StudyDatabase):
        store = DuckDBCardStore(populated_db)
        controller = SessionController(store, clock=FixedClock(NOW))

        async def scenario():
            await controller.start("deck")
            for rating in (Rating.Easy, Rating.Hard, Rating.Medium):
                await controller.submit_review(rating)

        asyncio.run(scenario())

        assert controller.state is SessionState.Completed
        assert len(populated_db.get_all_reviews()) == 3
        sessions = populated_db.get_recent_sessions()
        assert len(sessions) == 1
        assert sessions[0].cards_reviewed == 3
        assert sessions[0].correct_count == 2
        assert populated_db.get_due_cards("deck", NOW) == []

    def test_unknown_deck(self, db_manager: StudyDatabase):
        store = DuckDBCardStore(db_manager)
        with pytest.raises(DeckNotFoundError):
            asyncio.run(store.fetch_due_cards("nope", NOW))

    def test_database_calls_leave_event_loop_free(self):
        release = threading.Event()
        db = MagicMock()
        db.update_review_state.side_effect = (
            lambda card_id, state: release.wait(timeout=5) and "saved"
        )
        store = DuckDBCardStore(db)

        async def scenario():
            write = asyncio.create_task(
                store.persist_review_state(uuid.uuid4(), ReviewState.new(NOW))
            )
            await asyncio.sleep(0.01)
            release.set()
            return await write

        assert asyncio.run(scenario()) == "saved"

    def test_abandoned_write_finishes_before_next_call(self):
        release = threading.Event()
        events = []

        def slow_update(card_id, state):
            events.append("write started")
            release.wait(timeout=5)
            events.append("write finished")

        db = MagicMock()
        db.update_review_state.side_effect = slow_update
        db.add_review_log.side_effect = lambda log: events.append("logged")
        store = DuckDBCardStore(db)
        log = ReviewLog(
            card_id=uuid.uuid4(),
            ts=NOW,
            rating=Rating.Easy,
            ease_before=2.5,
            ease_after=2.6,
            interval=3,
            next_review=NOW + timedelta(days=3),
        )

        async def scenario():
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(
                    store.persist_review_state(
                        uuid.uuid4(), ReviewState.new(NOW)
                    ),
                    0.05,
                )
            record = asyncio.create_task(store.record_review(log))
            await asyncio.sleep(0.05)
            assert "logged" not in events
            release.set()
            await record

        asyncio.run(scenario())

        assert events == ["write started", "write finished", "logged"]


class TestBackups:
    def test_backup_and_find_latest(self, db_path_file: Path):
        assert find_latest_backup(db_path_file) is None
        assert backup_database(db_path_file) == db_path_file

        with StudyDatabase(db_path_file):
            pass
        backup_path = backup_database(db_path_file)

        assert backup_path.parent.name == "backups"
        assert backup_path.exists()
        assert find_latest_backup(db_path_file) == backup_path
