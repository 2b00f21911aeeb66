from typing import Optional


class DatabaseError(Exception):
    """Base exception for storage-related errors."""

    def __init__(
        self, message: str, original_exception: Optional[Exception] = None
    ):
        super().__init__(message)
        self.original_exception = original_exception


class DatabaseConnectionError(DatabaseError):
    """Raised for errors connecting to the database."""

    pass


class SchemaInitializationError(DatabaseError):
    """Raised for errors during schema setup."""

    pass


class MarshallingError(DatabaseError):
    """Indicates an error during data conversion between application models
    and DB format."""

    pass


class DeckNotFoundError(DatabaseError):
    """Raised when a specified deck is not found."""

    pass


class PersistenceFailure(DatabaseError):
    """A card store read or write failed. Retryable: the study session stays
    on the current card."""

    pass


class CardOperationError(PersistenceFailure):
    """Raised for errors during card operations (CRUD)."""

    pass


class ReviewOperationError(PersistenceFailure):
    """Indicates an error during a review-related database operation."""

    pass


class SessionOperationError(PersistenceFailure):
    """Indicates an error during a session-related database operation."""

    pass


class InvalidRating(ValueError):
    """Raised when a rating is outside again/hard/medium/easy."""

    def __init__(self, value: object):
        super().__init__(
            f"Invalid rating: {value!r}. "
            "Must be one of again, hard, medium, easy (or 1-4)."
        )
        self.value = value


class SessionStateError(RuntimeError):
    """Raised when a session operation is not valid in the current state."""

    pass


class ReviewInFlightError(SessionStateError):
    """Raised when a review is submitted while another is still being
    persisted."""

    pass
