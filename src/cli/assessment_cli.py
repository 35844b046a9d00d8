"""
Assess CLI - adaptive knowledge assessment from the terminal.

Usage:
    assess init-db                        # Create database tables
    assess seed-demo ORG                  # Load the coffee shop demo topics
    assess progress USER                  # Topic mastery and learner level
    assess questions USER ORG             # Per-question status report
    assess practice USER ORG -n 5         # Run an interactive assessment
"""

from __future__ import annotations

import sys
from typing import Annotated, Any

import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from config import Settings, get_settings
from src.assessment.exceptions import AssessmentError
from src.assessment.mastery_tracker import MasteryTracker
from src.assessment.selector import QuestionSelector
from src.assessment.session import AssessmentSession, SessionEvent
from src.cli.demo_data import demo_questions, demo_topics
from src.db.database import init_db
from src.db.repository import SqlAssessmentStore

# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="assess",
    help="Adaptive knowledge assessment - priority-ordered practice sessions",
    add_completion=False,
    rich_markup_mode="rich",
)

console = Console()

LOG_FORMAT = "<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}"


def configure_logging(settings: Settings, verbose: bool = False) -> None:
    """Route loguru output to stderr and, if configured, a rotating log file."""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else settings.log_level, format=LOG_FORMAT)
    if settings.log_file:
        logger.add(settings.log_file, level="DEBUG", rotation="10 MB", retention=5)


def _fail(error: AssessmentError) -> None:
    console.print(f"[red]Error:[/] {error.message}")
    raise typer.Exit(code=1)


class ConsoleTransport:
    """Renders session events with rich."""

    def send(self, event: SessionEvent, payload: dict[str, Any]) -> None:
        if event is SessionEvent.INITIALIZED:
            console.print(Panel(
                f"[bold]{payload['total_questions']} questions[/] "
                f"({payload['strategy']})\n"
                f"Topics: {', '.join(payload['topics']) or '-'}\n"
                f"Level: {payload['learner_level']}",
                title="Assessment",
                border_style="cyan",
            ))
        elif event is SessionEvent.QUESTION_ANSWERED:
            mark = "[green]Correct[/]" if payload["is_correct"] else "[red]Incorrect[/]"
            console.print(
                f"{mark} (+{payload['points_earned']}) "
                f"score {payload['current_score']} "
                f"[dim]{payload['fraction_complete']:.0%} complete[/]"
            )
        elif event is SessionEvent.SESSION_ENDED:
            console.print(Panel(
                f"Score: [bold]{payload['final_score']}[/]\n"
                f"Correct: {payload['correct_answers']}/{payload['total_questions']} "
                f"({payload['accuracy_percentage']}%)\n"
                f"Improvement areas: {', '.join(payload['improvement_areas']) or 'none'}",
                title="Session Summary",
                border_style="green",
            ))


# =============================================================================
# Database Commands
# =============================================================================


@app.command("init-db")
def init_db_command() -> None:
    """Create the assessment tables."""
    init_db()
    console.print("[green]Database initialized[/]")


@app.command("seed-demo")
def seed_demo(
    organization_id: Annotated[str, typer.Argument(help="Organization to seed")],
) -> None:
    """Load the coffee shop demo topics and questions."""
    store = SqlAssessmentStore()
    try:
        if store.list_active_topics(organization_id):
            console.print(f"[yellow]Organization {organization_id} already has topics; skipping[/]")
            return
        topics = demo_topics(organization_id)
        questions = demo_questions(organization_id)
        for topic in topics:
            store.add_topic(topic)
        for question in questions:
            store.add_question(question)
    except AssessmentError as e:
        _fail(e)
    console.print(f"[green]Seeded {len(topics)} topics, {len(questions)} questions[/]")


# =============================================================================
# Reporting Commands
# =============================================================================


@app.command()
def progress(
    user_id: Annotated[str, typer.Argument(help="Learner id")],
) -> None:
    """Show topic mastery for a learner."""
    store = SqlAssessmentStore()
    tracker = MasteryTracker(store)
    try:
        records = tracker.get_progress(user_id)
    except AssessmentError as e:
        _fail(e)
    stats = tracker.get_learner_stats(user_id)

    if not records:
        console.print(f"[yellow]No attempts recorded for {user_id}[/]")
        return

    table = Table(title=f"Mastery for {user_id}")
    table.add_column("Topic", style="cyan")
    table.add_column("Mastery", justify="right")
    table.add_column("Correct", justify="right")
    table.add_column("Mastered", style="green")
    for record in records:
        table.add_row(
            record.topic_id,
            f"{record.mastery_level:.0%}",
            f"{record.correct_attempts}/{record.total_attempts}",
            record.mastered_at.strftime("%Y-%m-%d") if record.mastered_at else "-",
        )
    console.print(table)
    console.print(
        f"Level: [bold]{stats.level.value}[/]  "
        f"Mastered: {stats.mastered_topics}/{stats.total_topics}  "
        f"Attempts: {stats.total_attempts}"
    )


@app.command()
def questions(
    user_id: Annotated[str, typer.Argument(help="Learner id")],
    organization_id: Annotated[str, typer.Argument(help="Organization id")],
) -> None:
    """Show every active question with the learner's status on it."""
    store = SqlAssessmentStore()
    try:
        report = QuestionSelector(store).question_progress(user_id, organization_id)
    except AssessmentError as e:
        _fail(e)

    table = Table(title="Topic Progress")
    table.add_column("Topic", style="cyan")
    table.add_column("Questions", justify="right")
    table.add_column("Correct", justify="right", style="green")
    table.add_column("Incorrect", justify="right", style="red")
    table.add_column("Unanswered", justify="right")
    table.add_column("Mastery", justify="right")
    for summary in report.topics:
        table.add_row(
            summary.topic_name,
            str(summary.total_questions),
            str(summary.correct_questions),
            str(summary.incorrect_questions),
            str(summary.unanswered_questions),
            f"{summary.mastery_percentage}%",
        )
    console.print(table)


# =============================================================================
# Practice
# =============================================================================


@app.command()
def practice(
    user_id: Annotated[str, typer.Argument(help="Learner id")],
    organization_id: Annotated[str, typer.Argument(help="Organization id")],
    max_questions: Annotated[
        int | None, typer.Option("--max-questions", "-n", help="Number of questions")
    ] = None,
) -> None:
    """Run an interactive assessment session."""
    store = SqlAssessmentStore()
    session = AssessmentSession(
        user_id,
        organization_id,
        question_store=store,
        session_store=store,
        transport=ConsoleTransport(),
        max_questions=max_questions,
    )
    try:
        payload = session.initialize()
        if not payload.questions:
            console.print("[green]All topics mastered - nothing to practice[/]")
            return
        session.start()
        for number, question in enumerate(payload.questions, start=1):
            console.print(f"\n[bold]{number}. {question['question']}[/]")
            for option in question["options"]:
                console.print(f"   - {option}")
            answer = Prompt.ask("Your answer", default="")
            session.record_question_attempt(number - 1, answer)
            if question["explanation"]:
                console.print(f"[dim]{question['explanation']}[/]")
        session.end()
    except AssessmentError as e:
        _fail(e)


# =============================================================================
# Entry Point
# =============================================================================


@app.callback()
def callback(
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Verbose output")
    ] = False,
) -> None:
    """
    Adaptive knowledge assessment

    \b
    Quick Start:
      assess init-db
      assess seed-demo acme
      assess practice alice acme
    """
    configure_logging(get_settings(), verbose)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
