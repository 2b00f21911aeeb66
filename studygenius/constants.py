"""
SM-2 scheduling constants.

This module contains the static defaults of the SM-2 style scheduler.
No runtime configuration or path defaults - pure constants only.
"""
from typing import Dict

# Ease factor bounds and starting value.
# MAX_EASE_NOMINAL is the top of the retention scale, not a ceiling.
DEFAULT_MIN_EASE: float = 1.3
DEFAULT_MAX_EASE_NOMINAL: float = 2.5
DEFAULT_EASE: float = 2.5

# Multiplier applied on top of the ease factor for "easy" on mature cards.
DEFAULT_EASY_BONUS: float = 1.3

# First-review intervals in days, keyed by rating value.
DEFAULT_BASE_INTERVALS: Dict[str, float] = {
    "again": 1.0,
    "hard": 1.2,
    "medium": 2.0,
    "easy": 3.0,
}

# Ease adjustments per rating.
HARD_EASE_PENALTY: float = 0.15
EASY_EASE_BONUS: float = 0.1

# Interval growth factors.
HARD_INTERVAL_FACTOR: float = 1.2
SECOND_REVIEW_MEDIUM_FACTOR: float = 2.0
SECOND_REVIEW_EASY_FACTOR: float = 2.5
MIN_HARD_INTERVAL: float = 1.0

# Retention scale endpoints (percent).
RETENTION_FLOOR: float = 50.0
RETENTION_SPAN: float = 50.0

# Number of cards in a study session unless configured otherwise.
DEFAULT_SESSION_SIZE: int = 20
