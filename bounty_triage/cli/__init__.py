"""
Command Line Interface for Bounty Triage.
"""

from contextlib import contextmanager
from typing import Iterator, Optional

import typer
import uvicorn
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..config import get_settings
from ..db.base import Database
from ..enums import ReporterRole
from ..errors import TriageError
from ..logging_config import configure_logging
from ..services import IssueService, ReporterService, ScoreService
from ..worker import build_engine, run_worker

app = typer.Typer(help="Bounty Triage - GitHub issue review and reporter scoring")
console = Console()


@contextmanager
def open_database(database_url: Optional[str] = None) -> Iterator[Database]:
    settings = get_settings()
    configure_logging(settings.log_level, "console")
    database = Database.from_url(database_url or settings.database_url)
    try:
        database.create_all()
        yield database
    finally:
        database.dispose()


@app.command()
def serve(
    port: Optional[int] = typer.Option(None, help="Port to run the API server on"),
    host: Optional[str] = typer.Option(None, help="Host to bind the server to"),
    dev: bool = typer.Option(False, help="Run in development mode with reload"),
):
    """Start the HTTP API (and the sync worker when enabled)."""
    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port
    rprint(Panel.fit("Starting Bounty Triage", style="bold blue"))
    console.print(f"Listening on http://{host}:{port}")
    uvicorn.run(
        "bounty_triage.main:app",
        host=host,
        port=port,
        reload=dev,
        workers=1 if dev else settings.api_workers,
    )


@app.command("init-db")
def init_db(
    database_url: Optional[str] = typer.Option(None, help="Override DATABASE_URL"),
):
    """Create any missing tables."""
    with open_database(database_url):
        console.print("✅ Database initialized")


@app.command()
def sync(
    database_url: Optional[str] = typer.Option(None, help="Override DATABASE_URL"),
):
    """Run one sync pass over every configured repository."""
    settings = get_settings()
    with open_database(database_url) as database:
        engine = build_engine(settings, database)
        try:
            result = engine.sync_all()
        finally:
            engine.source.close()

    table = Table(title="Sync Result", show_header=True, header_style="bold magenta")
    table.add_column("Counter", style="cyan")
    table.add_column("Value", justify="right")
    for name, value in result.to_dict().items():
        if name == "failed_repositories":
            value = ", ".join(value) or "-"
        table.add_row(name, str(value))
    console.print(table)

    if result.repositories_failed:
        raise typer.Exit(code=1)


@app.command()
def recompute(
    database_url: Optional[str] = typer.Option(None, help="Override DATABASE_URL"),
    actor: str = typer.Option("cli", help="Actor recorded in the audit log"),
):
    """Rebuild every reporter total from the issue records."""
    with open_database(database_url) as database, database.session() as db:
        result = ScoreService(db).recompute_all_scores(actor_id=actor)

    console.print(
        f"✅ Scanned {result.issues_scanned} issues, "
        f"updated {result.reporters_updated} reporters "
        f"({result.reporters_created} created)"
    )


@app.command()
def leaderboard(
    limit: int = typer.Option(20, help="Number of reporters to show"),
    exclude_reviewers: bool = typer.Option(False, help="Hide reviewers"),
    database_url: Optional[str] = typer.Option(None, help="Override DATABASE_URL"),
):
    """Show reporters ranked by points."""
    with open_database(database_url) as database, database.session() as db:
        reporters = ReporterService(db).leaderboard(
            limit=limit, exclude_reviewers=exclude_reviewers
        )

    if not reporters:
        console.print("No reporters yet")
        return

    table = Table(title="Leaderboard", show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right")
    table.add_column("Reporter", style="cyan")
    table.add_column("Role")
    table.add_column("Points", justify="right", style="green")
    for rank, reporter in enumerate(reporters, start=1):
        table.add_row(str(rank), reporter.github_username, reporter.role, str(reporter.total_points))
    console.print(table)


@app.command("set-role")
def set_role(
    username: str = typer.Argument(..., help="GitHub username"),
    role: ReporterRole = typer.Argument(..., help="reporter or reviewer"),
    actor: str = typer.Option("cli", help="Actor recorded in the audit log"),
    database_url: Optional[str] = typer.Option(None, help="Override DATABASE_URL"),
):
    """Promote or demote a reporter."""
    with open_database(database_url) as database, database.session() as db:
        reporter = ReporterService(db).set_role(username, role, actor_id=actor)
    console.print(f"✅ {reporter.github_username} is now a {reporter.role}")


@app.command()
def lock(
    issue_id: int = typer.Argument(..., help="GitHub issue id"),
    actor: str = typer.Option("cli", help="Actor recorded in the audit log"),
    database_url: Optional[str] = typer.Option(None, help="Override DATABASE_URL"),
):
    """Permanently lock an issue against sync and review changes."""
    try:
        with open_database(database_url) as database, database.session() as db:
            issue = IssueService(db).lock(issue_id, actor_id=actor)
    except TriageError as e:
        console.print(f"❌ {e.message}")
        raise typer.Exit(code=1)
    console.print(f"🔒 Issue {issue.github_issue_id} ({issue.repo}#{issue.github_number}) locked")


@app.command()
def worker(
    interval: Optional[float] = typer.Option(None, help="Seconds between sync passes"),
    once: bool = typer.Option(False, help="Run a single pass and exit"),
):
    """Run the sync worker in the foreground."""
    rprint(Panel.fit("Starting Bounty Triage worker", style="bold blue"))
    try:
        run_worker(interval=interval, once=once)
    except KeyboardInterrupt:
        console.print("\n🛑 Worker stopped")


if __name__ == "__main__":
    app()
