"""
Data model for studygenius: ratings, per-card review state, cards, decks,
review logs, session records and derived statistics.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import DEFAULT_SCHEDULER_CONFIG, SchedulerConfig
from .exceptions import InvalidRating


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Rating(str, Enum):
    """
    The learner's rating of a review, ordered by increasing confidence.
    """

    Again = "again"
    Hard = "hard"
    Medium = "medium"
    Easy = "easy"

    @property
    def rank(self) -> int:
        """1-based position in confidence order (again=1 ... easy=4)."""
        return _RATING_ORDER.index(self) + 1

    @property
    def is_correct(self) -> bool:
        """Medium and easy count as a correct answer."""
        return self in (Rating.Medium, Rating.Easy)

    @classmethod
    def parse(cls, value: object) -> "Rating":
        """
        Coerce a Rating, its name/value (case-insensitive) or its 1-based
        rank into a Rating.

        Raises:
            InvalidRating: If the value is not part of the closed set.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            raise InvalidRating(value)
        if isinstance(value, int):
            if 1 <= value <= len(_RATING_ORDER):
                return _RATING_ORDER[value - 1]
            raise InvalidRating(value)
        if isinstance(value, str):
            text = value.strip().lower()
            if text.isdigit():
                return cls.parse(int(text))
            try:
                return cls(text)
            except ValueError:
                raise InvalidRating(value) from None
        raise InvalidRating(value)


_RATING_ORDER = (Rating.Again, Rating.Hard, Rating.Medium, Rating.Easy)


class ReviewState(BaseModel):
    """
    Scheduling state of one card. Produced by the scheduler; `next_review`
    is always derived from `interval` at review time.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    ease_factor: float = Field(..., gt=0)
    interval: float = Field(
        default=0.0, ge=0, description="Days until the next review."
    )
    review_count: int = Field(default=0, ge=0)
    last_reviewed: datetime
    next_review: datetime

    @classmethod
    def new(
        cls,
        now: Optional[datetime] = None,
        config: SchedulerConfig = DEFAULT_SCHEDULER_CONFIG,
    ) -> "ReviewState":
        """State of a never-reviewed card: default ease, due immediately."""
        ts = now or _utcnow()
        return cls(
            ease_factor=config.default_ease,
            interval=0.0,
            review_count=0,
            last_reviewed=ts,
            next_review=ts,
        )

    @property
    def is_new(self) -> bool:
        return self.review_count == 0


class Card(BaseModel):
    """
    A flashcard: question/answer content plus the review state it owns.
    """

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    card_id: UUID = Field(default_factory=uuid.uuid4)
    deck_id: str = Field(..., min_length=1)
    question: str = Field(..., min_length=1, max_length=1000)
    answer: str = Field(..., min_length=1, max_length=1000)
    review: ReviewState = Field(default_factory=ReviewState.new)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("question", "answer")
    @classmethod
    def strip_text(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("Card text must not be blank.")
        return stripped

    @property
    def next_review(self) -> datetime:
        return self.review.next_review

    @property
    def ease_factor(self) -> float:
        return self.review.ease_factor

    @property
    def review_count(self) -> int:
        return self.review.review_count

    @property
    def is_new(self) -> bool:
        return self.review.is_new

    def with_review(self, state: ReviewState) -> "Card":
        """Return a copy of this card carrying `state`."""
        return self.model_copy(
            update={"review": state, "updated_at": state.last_reviewed}
        )


class Deck(BaseModel):
    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    deck_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


class ReviewLog(BaseModel):
    """One completed review, as recorded in the study history."""

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    review_id: Optional[int] = Field(
        default=None,
        description="Auto-incrementing PK from reviews table (None if new).",
    )
    card_id: UUID
    session_id: Optional[UUID] = None
    ts: datetime = Field(default_factory=_utcnow)
    rating: Rating
    ease_before: float = Field(..., gt=0)
    ease_after: float = Field(..., gt=0)
    interval: float = Field(..., ge=0)
    next_review: datetime
    time_spent_ms: Optional[int] = Field(default=None, ge=0)


class StudySessionRecord(BaseModel):
    """
    Persisted summary of a finished study session.
    """

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    session_id: UUID = Field(default_factory=uuid.uuid4)
    deck_id: str
    started_at: datetime
    ended_at: datetime
    duration_ms: int = Field(..., ge=0)
    total_cards: int = Field(default=0, ge=0)
    cards_reviewed: int = Field(default=0, ge=0)
    correct_count: int = Field(default=0, ge=0)

    @property
    def accuracy(self) -> float:
        if self.cards_reviewed == 0:
            return 0.0
        return self.correct_count / self.cards_reviewed


class DeckStatistics(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_cards: int = 0
    due_cards: int = 0
    new_cards: int = 0
    average_ease_factor: float = 0.0
    estimated_retention: float = 0.0


class SessionProgress(BaseModel):
    model_config = ConfigDict(frozen=True)

    current: int
    total: int
    cards_reviewed: int
    correct_count: int
    percent_complete: int


class SessionSummary(BaseModel):
    """Outcome of a study session, returned when it ends."""

    model_config = ConfigDict(frozen=True)

    session_id: UUID
    deck_id: str
    total_cards: int
    cards_reviewed: int
    correct_count: int
    started_at: datetime
    ended_at: datetime
    duration_seconds: float = Field(..., ge=0)
    accuracy: float = Field(..., ge=0, le=1)

    @property
    def accuracy_percentage(self) -> int:
        return int(self.accuracy * 100 + 0.5)

    def to_record(self) -> StudySessionRecord:
        return StudySessionRecord(
            session_id=self.session_id,
            deck_id=self.deck_id,
            started_at=self.started_at,
            ended_at=self.ended_at,
            duration_ms=int(self.duration_seconds * 1000),
            total_cards=self.total_cards,
            cards_reviewed=self.cards_reviewed,
            correct_count=self.correct_count,
        )


class ReviewHistoryStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_reviews: int
    average_ease_factor: float
    average_interval: float
    rating_distribution: Dict[Rating, int]


class SessionHistoryStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_sessions: int
    total_cards_reviewed: int
    total_study_seconds: int
    average_accuracy: int
    current_streak: int
