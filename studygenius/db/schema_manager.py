import duckdb
import logging

from .connection import ConnectionHandler
from .schema import DB_SCHEMA_SQL, DROP_TABLES_SQL
from ..exceptions import DatabaseConnectionError, SchemaInitializationError

logger = logging.getLogger(__name__)


class SchemaManager:
    """Creates and, on request, recreates the database schema."""

    def __init__(self, handler: ConnectionHandler):
        self._handler = handler

    def initialize_schema(self, force_recreate_tables: bool = False) -> None:
        """
        Create all tables inside one transaction. Skipped for read-only file
        databases. `force_recreate_tables` drops the existing tables first and
        refuses to do so when a file database still holds cards or reviews.

        Raises:
            DatabaseConnectionError: If recreation is requested in read-only mode.
            SchemaInitializationError: If the schema statements fail.
        """
        if self._handler.read_only:
            if force_recreate_tables:
                raise DatabaseConnectionError(
                    "Cannot force_recreate_tables in read-only mode."
                )
            if not self._handler.is_memory:
                logger.warning(
                    "Attempting to initialize schema in read-only mode. Skipping."  # noqa: E501
                )
                return

        conn = self._handler.get_connection()
        if force_recreate_tables:
            self._perform_safety_check(conn)

        with conn.cursor() as cursor:
            try:
                cursor.begin()
                if force_recreate_tables:
                    logger.warning(
                        f"Recreating tables for {self._handler.db_path_resolved}. "  # noqa: E501
                        "ALL EXISTING DATA WILL BE LOST."
                    )
                    cursor.execute(DROP_TABLES_SQL)
                cursor.execute(DB_SCHEMA_SQL)
                cursor.commit()
            except duckdb.Error as e:
                logger.error(
                    f"Error initializing database schema at {self._handler.db_path_resolved}: {e}"  # noqa: E501
                )
                try:
                    cursor.rollback()
                except duckdb.Error as rb_err:
                    logger.error(f"Failed to rollback transaction: {rb_err}")
                raise SchemaInitializationError(
                    f"Failed to initialize schema: {e}", original_exception=e
                ) from e
        logger.info(
            f"Database schema at {self._handler.db_path_resolved} initialized."
        )

    def _perform_safety_check(self, conn: duckdb.DuckDBPyConnection) -> None:
        """Refuse to drop tables of a file database that still holds data."""
        if self._handler.is_memory:
            return
        try:
            card_row = conn.execute("SELECT COUNT(*) FROM cards").fetchone()
            review_row = conn.execute("SELECT COUNT(*) FROM reviews").fetchone()
        except duckdb.CatalogException:
            return
        except duckdb.Error as e:
            raise SchemaInitializationError(
                "Cannot verify that the tables are empty before dropping them.",
                original_exception=e,
            ) from e

        card_count = card_row[0] if card_row else 0
        review_count = review_row[0] if review_row else 0
        if card_count or review_count:
            msg = (
                "Refusing to drop tables with existing data "
                f"(cards: {card_count}, reviews: {review_count}). "
                "Use backup/restore instead."
            )
            logger.error(msg)
            raise SchemaInitializationError(msg)
