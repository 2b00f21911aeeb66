"""StudyGenius - SM-2 spaced repetition scheduling and study sessions."""

from .models import (
    Card,
    Deck,
    DeckStatistics,
    Rating,
    ReviewLog,
    ReviewState,
    SessionSummary,
    StudySessionRecord,
)
from .config import SchedulerConfig, SessionConfig, Settings
from .scheduler import SM2Scheduler, compute_next_review
from .due_selector import select_due_cards
from .deck_stats import average_ease_factor, deck_statistics, estimate_retention
from .session_controller import SessionController, SessionState
from .store import CardStore, InMemoryCardStore
from .db import DuckDBCardStore, StudyDatabase

__all__ = [
    "Card",
    "Deck",
    "DeckStatistics",
    "Rating",
    "ReviewLog",
    "ReviewState",
    "SessionSummary",
    "StudySessionRecord",
    "SchedulerConfig",
    "SessionConfig",
    "Settings",
    "SM2Scheduler",
    "compute_next_review",
    "select_due_cards",
    "average_ease_factor",
    "deck_statistics",
    "estimate_retention",
    "SessionController",
    "SessionState",
    "CardStore",
    "InMemoryCardStore",
    "DuckDBCardStore",
    "StudyDatabase",
]
