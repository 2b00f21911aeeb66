import asyncio
from pathlib import Path
from typing import Optional

from studygenius.cli.review_ui import run_review_flow
from studygenius.config import Settings, SessionConfig
from studygenius.db.card_store import DuckDBCardStore
from studygenius.db.database import StudyDatabase
from studygenius.models import SessionSummary
from studygenius.session_controller import SessionController


def review_logic(
    deck_id: str,
    db_path: Path,
    settings: Settings,
    limit: Optional[int] = None,
) -> Optional[SessionSummary]:
    """
    Set up and run an interactive study session for a deck.

    Parameters:
        deck_id: Deck to study.
        db_path: Path to the study database file.
        settings: Source of the scheduler and session configuration.
        limit: Overrides the configured session size.
    """
    session_config = settings.session_config()
    if limit is not None:
        session_config = SessionConfig(
            session_size=limit,
            persist_timeout=session_config.persist_timeout,
        )

    with StudyDatabase(db_path=db_path) as db:
        db.initialize_schema()
        controller = SessionController(
            DuckDBCardStore(db),
            scheduler_config=settings.scheduler_config(),
            session_config=session_config,
        )
        return asyncio.run(run_review_flow(controller, deck_id))
