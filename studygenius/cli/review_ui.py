"""
Command-line interface for studying a deck.
"""

import logging
import time
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from studygenius.clock import utc_now
from studygenius.exceptions import InvalidRating, PersistenceFailure
from studygenius.models import Card, Rating, SessionSummary
from studygenius.session_controller import SessionController, SessionState

logger = logging.getLogger(__name__)
console = Console()

MAX_CONSECUTIVE_FAILURES = 3


def _get_user_rating() -> tuple[Rating, int]:
    """
    Prompt until a valid rating is entered.

    Returns:
        tuple[Rating, int]: The rating and the milliseconds it took to enter.
    """
    start_time = time.time()
    while True:
        rating_str = console.input(
            "[bold]Rating (1:Again, 2:Hard, 3:Medium, 4:Easy): [/bold]"
        )
        try:
            rating = Rating.parse(rating_str)
        except InvalidRating:
            console.print(
                "[bold red]Invalid rating. Enter 1-4 or again/hard/medium/easy.[/bold red]"  # noqa: E501
            )
            continue
        eval_ms = int((time.time() - start_time) * 1000)
        return rating, eval_ms


def _display_card(card: Card) -> int:
    """
    Show the question, wait for Enter, then reveal the answer.

    Returns:
        Milliseconds between showing the question and the user pressing Enter.
    """
    console.print(Panel(card.question, title="Question", border_style="green"))
    start_time = time.time()
    console.input("[italic]Press Enter to see the answer...[/italic]")
    end_time = time.time()
    console.print(Panel(card.answer, title="Answer", border_style="blue"))
    return int((end_time - start_time) * 1000)


def display_summary(summary: SessionSummary) -> None:
    table = Table(title="Session Summary", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="magenta")
    table.add_row("Cards Reviewed", f"{summary.cards_reviewed} / {summary.total_cards}")
    table.add_row("Correct", str(summary.correct_count))
    table.add_row("Accuracy", f"{summary.accuracy_percentage}%")
    table.add_row("Duration", f"{int(summary.duration_seconds)}s")
    console.print(table)


async def run_review_flow(
    controller: SessionController, deck_id: str
) -> Optional[SessionSummary]:
    """
    Drives an interactive session: presents each due card, collects a
    rating and submits it. A card whose review could not be saved is shown
    again; after repeated failures the session is ended early.

    Returns:
        The session summary.
    """
    console.print("[bold cyan]Starting review session...[/bold cyan]")
    state = await controller.start(deck_id)
    if state is SessionState.Completed:
        console.print(
            "[bold yellow]No cards are due for review.[/bold yellow]"
        )
        console.print("[bold cyan]Review session finished.[/bold cyan]")
        return controller.summary

    failures = 0
    while (card := controller.current_card()) is not None:
        progress = controller.progress()
        console.rule(
            f"[bold]Card {progress.current} of {progress.total}[/bold]"
        )

        resp_ms = _display_card(card)
        rating, eval_ms = _get_user_rating()

        try:
            updated_card = await controller.submit_review(
                rating, time_spent_ms=resp_ms + eval_ms
            )
        except PersistenceFailure as e:
            failures += 1
            logger.error(f"Failed to submit review for {card.card_id}: {e}")
            if failures >= MAX_CONSECUTIVE_FAILURES:
                console.print(
                    "[bold red]Reviews cannot be saved. Ending the session.[/bold red]"  # noqa: E501
                )
                break
            console.print(
                "[bold red]Error saving review. The card will be shown again.[/bold red]"  # noqa: E501
            )
            continue

        failures = 0
        days_until_due = (updated_card.next_review - utc_now()).days
        due_date_str = updated_card.next_review.strftime("%Y-%m-%d")
        console.print(
            f"[green]Reviewed.[/green] Next review in [bold]{max(0, days_until_due)} days[/bold] on {due_date_str}."  # noqa: E501
        )
        console.print("")

    summary = await controller.end()
    display_summary(summary)
    console.print("[bold cyan]Review session finished. Well done![/bold cyan]")
    return summary
