"""
CLI entry point for studygenius.
"""

# Standard library imports
import logging
import shutil
from pathlib import Path
from typing import Any, List, Optional, Tuple

# Third-party imports
import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

# Local application imports
from studygenius.clock import utc_now
from studygenius.config import Settings
from studygenius.db.database import StudyDatabase
from studygenius.db.db_utils import backup_database, find_latest_backup
from studygenius.deck_stats import (
    deck_statistics,
    review_history_stats,
    session_history_stats,
)
from studygenius.exceptions import DatabaseError, DeckNotFoundError
from studygenius.models import Card, Deck, DeckStatistics
from studygenius.cli._review_logic import review_logic


console = Console()

app = typer.Typer(
    name="studygenius",
    help="StudyGenius: SM-2 spaced repetition study sessions.",
    add_completion=False,
    rich_markup_mode="markdown",
)


@app.callback()
def _configure(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
):
    """Configure logging for every command."""
    level = "DEBUG" if verbose else _load_settings().log_level.upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Helpers for resolving the --db path (STUDYGENIUS_DB_PATH via Settings)
# ---------------------------------------------------------------------------


def _resolve_db_path(db: Optional[Path]) -> Path:
    """Use the --db flag when given, otherwise the configured database."""
    if db is not None:
        return db
    return _load_settings().db_path


# Common typer options reused across commands
_db_option = typer.Option(  # noqa: B008
    None,
    "--db",
    help="Path to the DuckDB database file. "
    "Falls back to STUDYGENIUS_DB_PATH, then ~/.studygenius/study.db.",
)


def _fail(message: str, error: Optional[Exception] = None):
    console.print(f"[bold red]{escape(message)}[/bold red]")
    if error is not None:
        raise typer.Exit(code=1) from error
    raise typer.Exit(code=1)


def _load_settings() -> Settings:
    """Read STUDYGENIUS_* settings, exiting cleanly when a value is invalid."""
    try:
        return Settings()
    except ValidationError as e:
        _fail(f"Invalid configuration: {e}", e)


# ---------------------------------------------------------------------------
# Database setup commands
# ---------------------------------------------------------------------------


@app.command()
def init(
    db: Optional[Path] = _db_option,
    force: bool = typer.Option(
        False,
        "--force",
        help="Drop and recreate all tables. Refused when cards exist.",
    ),
):
    """Create the study database and its tables."""
    db_path = _resolve_db_path(db)
    try:
        with StudyDatabase(db_path=db_path) as db_inst:
            db_inst.initialize_schema(force_recreate_tables=force)
    except DatabaseError as e:
        _fail(f"Database Error: {e}", e)
    console.print(f"[green]Database ready at[/green] [cyan]{db_path}[/cyan]")


@app.command("add-deck")
def add_deck(
    deck_id: str = typer.Argument(..., help="Identifier of the new deck."),
    title: Optional[str] = typer.Option(
        None, "--title", help="Display title; defaults to the identifier."
    ),
    description: Optional[str] = typer.Option(None, "--description"),
    db: Optional[Path] = _db_option,
):
    """Create a deck (or retitle an existing one)."""
    db_path = _resolve_db_path(db)
    try:
        deck = Deck(
            deck_id=deck_id, title=title or deck_id, description=description
        )
        with StudyDatabase(db_path=db_path) as db_inst:
            db_inst.create_deck(deck)
    except ValidationError as e:
        _fail(f"Invalid deck: {e}", e)
    except DatabaseError as e:
        _fail(f"Database Error: {e}", e)
    console.print(f"[green]Deck[/green] [cyan]{deck_id}[/cyan] [green]saved.[/green]")


@app.command("add-card")
def add_card(
    deck_id: str = typer.Argument(..., help="Deck to add the card to."),
    question: str = typer.Argument(...),
    answer: str = typer.Argument(...),
    db: Optional[Path] = _db_option,
):
    """Add a single card to an existing deck."""
    db_path = _resolve_db_path(db)
    try:
        with StudyDatabase(db_path=db_path) as db_inst:
            if db_inst.get_deck(deck_id) is None:
                raise DeckNotFoundError(f"Deck '{deck_id}' not found.")
            card = Card(deck_id=deck_id, question=question, answer=answer)
            db_inst.upsert_cards_batch([card])
    except ValidationError as e:
        _fail(f"Invalid card: {e}", e)
    except DeckNotFoundError as e:
        _fail(f"Error: {e}", e)
    except DatabaseError as e:
        _fail(f"Database Error: {e}", e)
    console.print(f"[green]Card added to[/green] [cyan]{deck_id}[/cyan]")


# ---------------------------------------------------------------------------
# Import helpers & command
# ---------------------------------------------------------------------------


def _load_cards_from_yaml(
    path: Path, deck_id: str
) -> Tuple[List[Card], List[str], dict]:
    """
    Parse a YAML card file.

    The file is either a list of {question, answer} mappings, or a mapping
    with a `cards` list and optional `title` and `description`.

    Returns:
        (cards, errors, deck_info) where errors describe the entries that
        were skipped.
    """
    with path.open("r", encoding="utf-8") as f:
        data: Any = yaml.safe_load(f)

    deck_info: dict = {}
    if isinstance(data, dict):
        deck_info = {
            k: data[k] for k in ("title", "description") if data.get(k)
        }
        data = data.get("cards")
    if not isinstance(data, list):
        raise ValueError(
            "Expected a list of cards or a mapping with a 'cards' list."
        )

    cards: List[Card] = []
    errors: List[str] = []
    for index, entry in enumerate(data, start=1):
        if not isinstance(entry, dict):
            errors.append(f"Entry {index}: not a mapping.")
            continue
        try:
            cards.append(
                Card(
                    deck_id=deck_id,
                    question=str(entry.get("question", "")),
                    answer=str(entry.get("answer", "")),
                )
            )
        except ValidationError as e:
            errors.append(
                f"Entry {index}: {e.errors()[0]['msg']}"
            )
    return cards, errors, deck_info


def _filter_duplicates(
    db: StudyDatabase, deck_id: str, cards: List[Card]
) -> Tuple[List[Card], int]:
    """Drop cards whose question already exists in the deck or the batch."""
    existing = set()
    if db.get_deck(deck_id) is not None:
        existing = {
            c.question.lower() for c in db.get_cards_for_deck(deck_id)
        }
    kept: List[Card] = []
    duplicates = 0
    for card in cards:
        key = card.question.lower()
        if key in existing:
            duplicates += 1
        else:
            kept.append(card)
            existing.add(key)
    return kept, duplicates


@app.command("import")
def import_cards(
    deck_id: str = typer.Argument(..., help="Deck to import into."),
    file: Path = typer.Argument(  # noqa: B008
        ..., exists=True, dir_okay=False, help="YAML file of cards."
    ),
    db: Optional[Path] = _db_option,
):
    """Import question/answer cards from a YAML file, skipping duplicates."""
    db_path = _resolve_db_path(db)
    try:
        cards, errors, deck_info = _load_cards_from_yaml(file, deck_id)
    except (yaml.YAMLError, ValueError) as e:
        _fail(f"Could not read {file}: {e}", e)

    if errors:
        console.print(
            "[bold red]Errors encountered during YAML processing:[/bold red]"
        )
        for error in errors:
            console.print(f"- {error}")
    if not cards:
        if errors:
            raise typer.Exit(code=1)
        console.print("[yellow]No cards found to import.[/yellow]")
        raise typer.Exit(code=0)

    try:
        with StudyDatabase(db_path=db_path) as db_inst:
            if deck_info or db_inst.get_deck(deck_id) is None:
                db_inst.create_deck(
                    Deck(
                        deck_id=deck_id,
                        title=deck_info.get("title", deck_id),
                        description=deck_info.get("description"),
                    )
                )
            to_add, duplicates = _filter_duplicates(db_inst, deck_id, cards)
            added = db_inst.upsert_cards_batch(to_add)
    except DatabaseError as e:
        _fail(f"Database Error: {e}", e)

    console.print("[bold green]Import complete![/bold green]")
    console.print(f"- [green]{added}[/green] cards were added.")
    console.print(f"- [yellow]{duplicates}[/yellow] duplicate cards were skipped.")


# ---------------------------------------------------------------------------
# Stats helpers & commands
# ---------------------------------------------------------------------------


def _display_deck_stats(title: str, deck_stats: DeckStatistics):
    table = Table(title=title, show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="magenta")
    table.add_row("Total Cards", str(deck_stats.total_cards))
    table.add_row("Due Cards", str(deck_stats.due_cards))
    table.add_row("New Cards", str(deck_stats.new_cards))
    table.add_row(
        "Average Ease", f"{deck_stats.average_ease_factor:.2f}"
    )
    table.add_row(
        "Estimated Retention", f"{deck_stats.estimated_retention:.0f}%"
    )
    console.print(table)


@app.command()
def decks(db: Optional[Path] = _db_option):
    """List decks with their card counts and SM-2 statistics."""
    db_path = _resolve_db_path(db)
    settings = _load_settings()
    config = settings.scheduler_config()
    now = utc_now()
    try:
        with StudyDatabase(db_path=db_path) as db_inst:
            all_decks = db_inst.get_decks()
            rows = [
                (
                    deck,
                    deck_statistics(
                        db_inst.get_cards_for_deck(deck.deck_id), now, config
                    ),
                )
                for deck in all_decks
            ]
    except DatabaseError as e:
        _fail(f"A database error occurred: {e}", e)

    if not rows:
        console.print("[yellow]No decks found in the database.[/yellow]")
        return

    table = Table(title="Decks")
    table.add_column("Deck", style="cyan")
    table.add_column("Title")
    table.add_column("Cards", style="magenta")
    table.add_column("Due", style="yellow")
    table.add_column("New")
    table.add_column("Avg Ease")
    table.add_column("Retention")
    for deck, deck_stats in rows:
        table.add_row(
            deck.deck_id,
            deck.title,
            str(deck_stats.total_cards),
            str(deck_stats.due_cards),
            str(deck_stats.new_cards),
            f"{deck_stats.average_ease_factor:.2f}",
            f"{deck_stats.estimated_retention:.0f}%",
        )
    console.print(table)


@app.command()
def stats(
    deck_id: str = typer.Argument(..., help="Deck to summarize."),
    db: Optional[Path] = _db_option,
):
    """Display deck statistics and the rating history of a deck."""
    db_path = _resolve_db_path(db)
    config = _load_settings().scheduler_config()
    try:
        with StudyDatabase(db_path=db_path) as db_inst:
            cards = db_inst.get_cards_for_deck(deck_id)
            card_ids = {card.card_id for card in cards}
            logs = [
                log
                for log in db_inst.get_all_reviews()
                if log.card_id in card_ids
            ]
    except DeckNotFoundError as e:
        _fail(f"Error: {e}", e)
    except DatabaseError as e:
        _fail(f"A database error occurred: {e}", e)

    _display_deck_stats(
        f"Deck: {deck_id}", deck_statistics(cards, utc_now(), config)
    )

    history = review_history_stats(logs, config)
    table = Table(title="Review History")
    table.add_column("Rating", style="cyan")
    table.add_column("Count", style="magenta")
    for rating, count in history.rating_distribution.items():
        table.add_row(rating.value, str(count))
    console.print(table)
    console.print(
        f"Total reviews: [bold]{history.total_reviews}[/bold], "
        f"average interval: [bold]{history.average_interval:.1f}[/bold] days"
    )


@app.command()
def history(
    db: Optional[Path] = _db_option,
    limit: int = typer.Option(
        10, "--limit", "-l", help="Number of recent sessions to list."
    ),
):
    """Show study session history: totals, accuracy and the daily streak."""
    db_path = _resolve_db_path(db)
    try:
        with StudyDatabase(db_path=db_path) as db_inst:
            sessions = db_inst.get_recent_sessions()
    except DatabaseError as e:
        _fail(f"A database error occurred: {e}", e)

    if not sessions:
        console.print("[yellow]No study sessions recorded yet.[/yellow]")
        return

    totals = session_history_stats(sessions)
    overall = Table(title="Study History", show_header=False)
    overall.add_column("Metric", style="cyan")
    overall.add_column("Value", style="magenta")
    overall.add_row("Sessions", str(totals.total_sessions))
    overall.add_row("Cards Reviewed", str(totals.total_cards_reviewed))
    overall.add_row("Study Time", f"{totals.total_study_seconds}s")
    overall.add_row("Accuracy", f"{totals.average_accuracy}%")
    overall.add_row("Current Streak", f"{totals.current_streak} days")
    console.print(overall)

    recent = Table(title="Recent Sessions")
    recent.add_column("Started", style="cyan")
    recent.add_column("Deck")
    recent.add_column("Reviewed", style="magenta")
    recent.add_column("Accuracy", style="yellow")
    for record in sessions[:limit]:
        recent.add_row(
            record.started_at.strftime("%Y-%m-%d %H:%M"),
            record.deck_id,
            f"{record.cards_reviewed}/{record.total_cards}",
            f"{int(record.accuracy * 100 + 0.5)}%",
        )
    console.print(recent)


# ---------------------------------------------------------------------------
# Review command
# ---------------------------------------------------------------------------


@app.command()
def review(
    deck_id: str = typer.Argument(  # noqa: B008
        ..., help="The deck to study."
    ),
    db: Optional[Path] = _db_option,
    limit: Optional[int] = typer.Option(
        None,
        "--limit",
        "-l",
        min=1,
        help="Maximum number of cards in this session.",
    ),
):
    """Starts a study session for the specified deck."""
    db_path = _resolve_db_path(db)
    try:
        backup_path = backup_database(db_path)
        if backup_path != db_path:
            console.print(f"Database backed up to: [dim]{backup_path}[/dim]")

        console.print(
            f"Starting review for deck: [bold cyan]{deck_id}[/bold cyan]"
        )
        review_logic(
            deck_id=deck_id,
            db_path=db_path,
            settings=_load_settings(),
            limit=limit,
        )
    except DeckNotFoundError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise typer.Exit(code=1) from e
    except DatabaseError as e:
        console.print(f"[bold red]A database error occurred: {e}[/bold red]")
        raise typer.Exit(code=1) from e


# ---------------------------------------------------------------------------
# Restore command
# ---------------------------------------------------------------------------


@app.command()
def restore(
    db: Optional[Path] = _db_option,
    yes: bool = typer.Option(
        False, "--yes", "-y", help="Bypass confirmation prompt."
    ),
):
    """Restores the database from the most recent backup."""
    db_path = _resolve_db_path(db)
    latest_backup = find_latest_backup(db_path)

    if not latest_backup:
        _fail("Error: No backup files found.")

    console.print(f"Found latest backup: [cyan]{latest_backup.name}[/cyan]")

    if not yes:
        confirmed = typer.confirm(
            "Are you sure you want to overwrite the current "
            "database with this backup?"
        )
        if not confirmed:
            console.print("Restore operation cancelled.")
            raise typer.Exit()

    try:
        shutil.copy2(latest_backup, db_path)
    except OSError as e:
        _fail(f"Restore failed: {e}", e)
    console.print(
        "[bold green]Database successfully restored "
        f"from {latest_backup.name}[/bold green]"
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the CLI application, exiting with status 1 on unexpected errors."""
    try:
        app()
    except Exception as e:
        console.print(f"[bold red]UNEXPECTED ERROR: {e}[/bold red]")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
