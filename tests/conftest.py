import pytest
from pathlib import Path
from typing import Generator, List
from datetime import datetime, timedelta, timezone

from studygenius.clock import FixedClock
from studygenius.models import Card, Deck, ReviewState
from studygenius.db import StudyDatabase
from studygenius.store import InMemoryCardStore

UTC = timezone.utc
NOW = datetime(2024, 1, 10, 12, 0, 0, tzinfo=UTC)


# each test runs on cwd to its temp dir
@pytest.fixture(autouse=True)
def go_to_tmpdir(request):
    """Run every test with its tmpdir as the working directory."""
    tmpdir = request.getfixturevalue("tmpdir")
    with tmpdir.as_cwd():
        yield


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


def make_card(
    deck_id: str = "deck",
    question: str = "Q",
    answer: str = "A",
    due_in_days: float = 0,
    ease_factor: float = 2.5,
    review_count: int = 0,
    interval: float = 0.0,
    created_at: datetime = NOW,
) -> Card:
    """Card whose next review is `due_in_days` from NOW (negative = overdue)."""
    return Card(
        deck_id=deck_id,
        question=question,
        answer=answer,
        review=ReviewState(
            ease_factor=ease_factor,
            interval=interval,
            review_count=review_count,
            last_reviewed=created_at,
            next_review=NOW + timedelta(days=due_in_days),
        ),
        created_at=created_at,
        updated_at=created_at,
    )


@pytest.fixture
def card_factory():
    """Builds cards relative to NOW; see `make_card`."""
    return make_card


@pytest.fixture
def sample_cards() -> List[Card]:
    """Three due cards and one card due in the future, in insertion order."""
    return [
        make_card(question="due yesterday", due_in_days=-1),
        make_card(question="due now", due_in_days=0),
        make_card(question="due in 5 days", due_in_days=5, review_count=2),
        make_card(question="overdue by 3 days", due_in_days=-3),
    ]


@pytest.fixture
def memory_store(sample_cards) -> InMemoryCardStore:
    return InMemoryCardStore(sample_cards)


# --- Database Fixtures ---
@pytest.fixture
def db_path_memory() -> str:
    return ":memory:"


@pytest.fixture
def db_path_file(tmp_path: Path) -> Path:
    return tmp_path / "test_study.db"


@pytest.fixture(params=["memory", "file"])
def db_manager(
    request, db_path_memory: str, db_path_file: Path
) -> Generator[StudyDatabase, None, None]:
    """
    A StudyDatabase with its schema initialized, either in-memory or backed
    by a temporary file. The connection is closed on teardown.
    """
    if request.param == "memory":
        db_man = StudyDatabase(db_path_memory)
    else:
        db_man = StudyDatabase(db_path_file)
    try:
        db_man.initialize_schema()
        yield db_man
    finally:
        db_man.close_connection()


@pytest.fixture
def populated_db(db_manager: StudyDatabase, sample_cards) -> StudyDatabase:
    db_manager.create_deck(Deck(deck_id="deck", title="Test Deck"))
    db_manager.upsert_cards_batch(sample_cards)
    return db_manager
