"""
CLI interface for AI Story Guard.

Provides command-line access to the database, the consistency analyzer,
usage reports and the HTTP server.
"""

import json
import sys
from datetime import datetime, time, timezone
from decimal import Decimal
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from ai_story_guard.config.loader import ServiceConfig, load_service_config
from ai_story_guard.config.logging_config import setup_logging
from ai_story_guard.core.cache import ContentCache
from ai_story_guard.core.consistency import ConsistencyReport, analyze_story
from ai_story_guard.core.rate_limiter import RateLimiter
from ai_story_guard.storage.models import CacheKind
from ai_story_guard.storage.repository import (
    CacheRepository,
    ReportRepository,
    SqliteStoryStore,
    UsageRepository,
    fetch_ledger_entries,
    initialize_schema,
)

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

_SEVERITY_STYLES = {"high": "red", "medium": "yellow", "low": "dim"}


class _State:
    config: ServiceConfig = ServiceConfig()


state = _State()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML service configuration"
    )
):
    """AI Story Guard CLI."""
    try:
        state.config = load_service_config(config_path) if config_path else ServiceConfig()
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    setup_logging(state.config)

    if ctx.invoked_subcommand is None:
        console.print("AI Story Guard - Use --help to see available commands")


@app.command()
def init():
    """Initialize the AI Story Guard database."""
    try:
        initialize_schema(state.config.database)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def analyze(
    story_id: str = typer.Argument(..., help="Story to analyze"),
    save: bool = typer.Option(
        False,
        "--save",
        "-s",
        help="Store the report as the story's latest snapshot"
    ),
    min_score: Optional[int] = typer.Option(
        None,
        "--min-score",
        help="Exit with error code if the score is below this value"
    )
):
    """
    Run the character consistency analyzer against the local story store.

    This reads the story's characters and chapters once and prints the
    report. Nothing is billed or cached.
    """
    try:
        store = SqliteStoryStore(state.config.database)
        report = analyze_story(story_id, store.get_characters(story_id), store.get_chapters(story_id))
        if save:
            ReportRepository(state.config.database).upsert(story_id, None, report.to_dict())
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    _display_report(report)

    if min_score is not None and report.score < min_score:
        sys.exit(EXIT_CODE_FAIL)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def usage(
    user_id: str = typer.Argument(..., help="User to report on"),
    limit: int = typer.Option(20, "--limit", "-n", help="Ledger rows to show")
):
    """Show a user's calls today and their recent AI costs."""
    try:
        limiter = RateLimiter(UsageRepository(state.config.database))
        calls_today = limiter.usage_today(user_id)
        start_of_day = datetime.combine(limiter.today(), time.min, tzinfo=timezone.utc)
        today_entries = fetch_ledger_entries(
            user_id=user_id, since=start_of_day, limit=10_000, db_path=state.config.database
        )
        recent = fetch_ledger_entries(user_id=user_id, limit=limit, db_path=state.config.database)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    spent_today = sum((entry.cost for entry in today_entries), Decimal("0"))
    console.print(f"\n[bold]User:[/bold] {user_id}")
    console.print(f"Calls today: {calls_today}")
    console.print(f"Spent today: {_format_currency(spent_today)}")

    if not recent:
        console.print("\n[dim]No recorded AI costs.[/]")
        return

    table = Table(title="Recent AI costs")
    table.add_column("Time")
    table.add_column("Kind")
    table.add_column("Story")
    table.add_column("Cost", justify="right")
    for entry in recent:
        table.add_row(
            entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            entry.kind,
            entry.story_id or "-",
            _format_currency(entry.cost)
        )
    console.print(table)


@app.command()
def invalidate(
    kind: str = typer.Argument(..., help="Cache kind, e.g. cover-art"),
    payload: str = typer.Argument(..., help="Request payload as JSON")
):
    """Remove a cached response so the next request recomputes it."""
    try:
        cache_kind = CacheKind(kind)
    except ValueError:
        valid = ", ".join(k.value for k in CacheKind)
        console.print(f"[red]Unknown kind:[/] {kind} (expected one of: {valid})")
        sys.exit(EXIT_CODE_FAIL)

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid payload JSON:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    if not isinstance(data, dict):
        console.print("[red]Payload must be a JSON object[/]")
        sys.exit(EXIT_CODE_FAIL)

    removed = ContentCache(CacheRepository(state.config.database)).invalidate(cache_kind, data)
    if removed:
        console.print("[green]✓[/] Cache entry removed")
    else:
        console.print("[yellow]No cache entry for that request[/]")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to listen on")
):
    """Serve the HTTP API backed by OpenAI providers."""
    import uvicorn

    from ai_story_guard.api.app import create_app
    from ai_story_guard.core.facade import AIService
    from ai_story_guard.sdk import OpenAIGenerationProvider, OpenAIModerationClassifier

    config = state.config
    initialize_schema(config.database)
    if not config.auth.tokens:
        console.print("[yellow]Warning:[/] no API tokens configured, every request will be rejected")

    service = AIService.from_config(
        config,
        provider=OpenAIGenerationProvider(),
        classifier=OpenAIModerationClassifier(timeout=config.provider_timeout_seconds)
    )
    uvicorn.run(create_app(service, config.auth), host=host, port=port)


def _format_currency(amount: Decimal) -> str:
    """Format currency with proper symbols and formatting."""
    return f"${abs(amount):,.4f}"


def _display_report(report: ConsistencyReport):
    """Display a consistency report."""
    console.print(f"\n[bold]Consistency Report[/bold] for story {report.story_id}")
    console.print("-" * 40)
    console.print(f"Score: [bold]{report.score}[/bold]/100")
    console.print(f"Characters analyzed: {len(report.characters)}")

    if report.issues:
        table = Table(title="Issues")
        table.add_column("Severity")
        table.add_column("Character")
        table.add_column("Issue")
        for issue in report.issues:
            style = _SEVERITY_STYLES[issue.severity.value]
            table.add_row(
                f"[{style}]{issue.severity.value}[/]",
                issue.character or "-",
                issue.description
            )
        console.print(table)
    else:
        console.print("\n[green]No issues found[/]")

    console.print("\n[bold]Suggestions:[/bold]")
    for suggestion in report.suggestions:
        console.print(f"  • {suggestion}")


if __name__ == "__main__":
    app()
