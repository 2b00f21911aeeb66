"""Database package for studygenius.

This package provides the DuckDB-backed store. `StudyDatabase` is the
synchronous facade; `DuckDBCardStore` adapts it to the async store
interfaces used by the session controller.
"""

from .database import StudyDatabase
from .card_store import DuckDBCardStore

__all__ = ["StudyDatabase", "DuckDBCardStore"]
