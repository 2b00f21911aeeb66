"""
Configuration for studygenius.

`SchedulerConfig` and `SessionConfig` are immutable and are handed explicitly
to the scheduler, the statistics helpers and the session controller.
`Settings` reads application-level values (database path, log level) from
the environment or a `.env` file and builds those two objects.
"""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    DEFAULT_BASE_INTERVALS,
    DEFAULT_EASE,
    DEFAULT_EASY_BONUS,
    DEFAULT_MAX_EASE_NOMINAL,
    DEFAULT_MIN_EASE,
    DEFAULT_SESSION_SIZE,
)


class BaseIntervals(BaseModel):
    """First-review interval in days for each rating."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    again: float = Field(default=DEFAULT_BASE_INTERVALS["again"], gt=0)
    hard: float = Field(default=DEFAULT_BASE_INTERVALS["hard"], gt=0)
    medium: float = Field(default=DEFAULT_BASE_INTERVALS["medium"], gt=0)
    easy: float = Field(default=DEFAULT_BASE_INTERVALS["easy"], gt=0)

    def for_rating(self, rating) -> float:
        """Return the base interval for a `Rating` (or its string value)."""
        return getattr(self, getattr(rating, "value", rating))


class SchedulerConfig(BaseModel):
    """Parameters of the SM-2 scheduler and the retention estimate."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    min_ease: float = Field(default=DEFAULT_MIN_EASE, gt=0)
    max_ease_nominal: float = Field(default=DEFAULT_MAX_EASE_NOMINAL, gt=0)
    default_ease: float = Field(default=DEFAULT_EASE, gt=0)
    easy_bonus: float = Field(default=DEFAULT_EASY_BONUS, gt=0)
    base_intervals: BaseIntervals = Field(default_factory=BaseIntervals)

    @model_validator(mode="after")
    def check_ease_range(self) -> "SchedulerConfig":
        """The retention scale needs a non-empty ease range."""
        if self.max_ease_nominal <= self.min_ease:
            raise ValueError(
                f"max_ease_nominal ({self.max_ease_nominal}) must be greater "
                f"than min_ease ({self.min_ease})."
            )
        if self.default_ease < self.min_ease:
            raise ValueError(
                f"default_ease ({self.default_ease}) must not be below "
                f"min_ease ({self.min_ease})."
            )
        return self


class SessionConfig(BaseModel):
    """Limits applied by the session controller."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    session_size: Optional[int] = Field(
        default=DEFAULT_SESSION_SIZE,
        gt=0,
        description="Maximum cards per session; None means all due cards.",
    )
    persist_timeout: Optional[float] = Field(
        default=None,
        gt=0,
        description="Seconds to wait for a review write before failing it.",
    )


DEFAULT_SCHEDULER_CONFIG = SchedulerConfig()
DEFAULT_SESSION_CONFIG = SessionConfig()


def get_default_db_path() -> Path:
    """Returns the default path for the database file."""
    return Path.home() / ".studygenius" / "study.db"


class Settings(BaseSettings):
    """
    Application settings, loaded from environment variables (STUDYGENIUS_*)
    or a `.env` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="STUDYGENIUS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    db_path: Path = Field(default_factory=get_default_db_path)
    log_level: str = "WARNING"
    session_size: Optional[int] = Field(default=DEFAULT_SESSION_SIZE, gt=0)
    persist_timeout: Optional[float] = Field(default=None, gt=0)

    min_ease: float = DEFAULT_MIN_EASE
    max_ease_nominal: float = DEFAULT_MAX_EASE_NOMINAL
    default_ease: float = DEFAULT_EASE
    easy_bonus: float = DEFAULT_EASY_BONUS

    def scheduler_config(self) -> SchedulerConfig:
        return SchedulerConfig(
            min_ease=self.min_ease,
            max_ease_nominal=self.max_ease_nominal,
            default_ease=self.default_ease,
            easy_bonus=self.easy_bonus,
        )

    def session_config(self) -> SessionConfig:
        return SessionConfig(
            session_size=self.session_size,
            persist_timeout=self.persist_timeout,
        )
