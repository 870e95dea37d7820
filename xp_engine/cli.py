"""
Typer CLI for the xp-engine service.

Commands:
    xp-engine calculate        - Compute the XP award for an attempt
    xp-engine retry-check      - Evaluate the mastery/retry policy
    xp-engine results USER     - List a learner's gradebook results
    xp-engine db init          - Create gradebook tables
    xp-engine db check         - Check database connectivity

Usage:
    xp-engine calculate --type Exercise --base-xp 100 --correct 4 --total 4
    xp-engine calculate --type Quiz --base-xp 120 --correct 1 --total 3 --duration 90
    xp-engine retry-check 75 8 --proficient
"""

from __future__ import annotations

import asyncio

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from config import get_settings
from xp_engine.core.errors import XpEngineError
from xp_engine.core.mastery import requires_retry
from xp_engine.core.scoring import QuestionOutcome
from xp_engine.log import configure_logging
from xp_engine.xp.calculator import XpCalculator, XpRequest

app = typer.Typer(
    help="xp-engine CLI: assessment scoring, banked XP and gradebook tools",
    no_args_is_help=True,
)

console = Console()


@app.command("calculate")
def calculate(
    content_type: str = typer.Option("Exercise", "--type", "-t", help="Exercise, Quiz, Test or CourseChallenge"),
    base_xp: int = typer.Option(..., "--base-xp", "-x", help="Expected XP of the assessment"),
    correct: int = typer.Option(..., "--correct", "-c", help="Correct answers"),
    total: int = typer.Option(..., "--total", "-n", help="Questions answered (excluding reported)"),
    reported: int = typer.Option(0, "--reported", "-r", help="Questions reported as broken"),
    attempt: int = typer.Option(1, "--attempt", "-a", help="Attempt number"),
    duration: float | None = typer.Option(None, "--duration", "-d", help="Elapsed seconds"),
    proficient: bool = typer.Option(False, "--proficient", help="Learner was already proficient"),
) -> None:
    """Compute the XP award for one attempt."""
    if correct < 0 or total < 0 or correct > total:
        rprint("[red]✗[/red] --correct must be between 0 and --total")
        raise typer.Exit(code=2)

    outcomes = (
        [QuestionOutcome.CORRECT] * correct
        + [QuestionOutcome.INCORRECT] * (total - correct)
        + [QuestionOutcome.REPORTED] * max(0, reported)
    )
    calculator = XpCalculator.from_settings()
    try:
        award = calculator.calculate(
            XpRequest(
                content_type=content_type,
                base_xp=base_xp,
                attempt_number=attempt,
                outcomes=outcomes,
                duration_seconds=duration,
                was_already_proficient=proficient,
            )
        )
    except XpEngineError as e:
        rprint(f"[red]✗[/red] {e}")
        raise typer.Exit(code=2)

    table = Table(title=f"{content_type} attempt {attempt}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Accuracy", f"{award.accuracy:.1f}%")
    table.add_row("Multiplier", f"{award.multiplier:g}")
    table.add_row("Final XP", str(award.final_xp))
    table.add_row("Analytics XP", str(award.analytics_xp))
    if award.penalty_applied:
        table.add_row("Pre-penalty XP", str(award.pre_penalty_xp))
    table.add_row("Requires retry", "yes" if award.requires_retry else "no")
    table.add_row("Mastered units", str(award.mastered_units))
    table.add_row("Reason", award.reason)
    console.print(table)


@app.command("retry-check")
def retry_check(
    accuracy: float = typer.Argument(..., help="Accuracy percent (0-100)"),
    scorable: int = typer.Argument(..., help="Scorable question count"),
    proficient: bool = typer.Option(False, "--proficient", help="Learner was already proficient"),
) -> None:
    """Evaluate whether a retry is required."""
    threshold = get_settings().mastery_threshold
    if requires_retry(accuracy, scorable, proficient, threshold):
        rprint("[yellow]Retry required[/yellow]")
    else:
        rprint("[green]✓[/green] No retry required")


@app.command("results")
def results(
    user_id: str = typer.Argument(..., help="Learner id"),
    course_id: str | None = typer.Option(None, "--course", help="Restrict to one course"),
) -> None:
    """List a learner's gradebook results."""
    from xp_engine.db.database import dispose_engine
    from xp_engine.integrations.gradebook import SqlGradebook

    async def _load():
        try:
            return await SqlGradebook().get_all_results(user_id, course_id)
        finally:
            await dispose_engine()

    rows = asyncio.run(_load())
    if not rows:
        rprint(f"[dim]No results for {user_id}[/dim]")
        return

    table = Table(title=f"Gradebook: {user_id}")
    table.add_column("Resource", style="cyan")
    table.add_column("Attempt", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("XP", justify="right")
    table.add_column("Reason")
    for row in rows:
        table.add_row(
            row.resource_id,
            str(row.attempt_number or "-"),
            f"{row.score:g}",
            str(row.xp),
            str(row.metadata.get("xp_reason", "")),
        )
    console.print(table)


db_app = typer.Typer(help="Database management (init, check)")
app.add_typer(db_app, name="db")


@db_app.command("init")
def db_init() -> None:
    """
    Create gradebook tables from SQLAlchemy models.

    Safe to run multiple times (idempotent).
    """
    from xp_engine.db.database import dispose_engine, init_db

    async def _init():
        try:
            await init_db()
        finally:
            await dispose_engine()

    logger.info("Initializing database tables...")
    asyncio.run(_init())
    rprint("[green]✓[/green] Database initialized!")


@db_app.command("check")
def db_check() -> None:
    """Check that the gradebook database is reachable."""
    from xp_engine.db.database import check_connection, dispose_engine

    async def _check() -> bool:
        try:
            return await check_connection()
        finally:
            await dispose_engine()

    if asyncio.run(_check()):
        rprint("[green]✓[/green] Database reachable")
    else:
        rprint("[red]✗[/red] Database unreachable")
        raise typer.Exit(code=1)


def main() -> None:
    """CLI entry point."""
    configure_logging()
    app()


if __name__ == "__main__":
    main()
