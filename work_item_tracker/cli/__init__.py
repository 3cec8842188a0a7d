"""
Command Line Interface for the Work Item Tracker.
"""

import sys
import uuid
from pathlib import Path
from typing import Optional

import typer
import uvicorn
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from sqlalchemy.orm import Session

from ..config import get_settings
from ..db.base import drop_database, get_engine, init_database
from ..errors import TrackerError
from ..logging_setup import configure_logging
from ..markup.rendering import MarkupRenderer
from ..spaces import IdentityRepository
from ..workitem.types import TypeRegistry

app = typer.Typer(help="Work Item Tracker - typed work items for planning spaces")
console = Console()


@app.command()
def serve(
    port: Optional[int] = typer.Option(None, help="Port to run the API server on"),
    host: Optional[str] = typer.Option(None, help="Host to bind the server to"),
    dev: bool = typer.Option(False, help="Run in development mode with auto-reload"),
):
    """Start the HTTP API."""
    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port
    rprint(Panel.fit("Starting Work Item Tracker", style="bold blue"))
    console.print(f"Listening on http://{host}:{port}")
    uvicorn.run(
        "work_item_tracker.main:app",
        host=host,
        port=port,
        reload=dev,
        workers=1 if dev else settings.api_workers,
    )


@app.command()
def init_db():
    """Create the tables and seed the system work item types."""
    configure_logging(get_settings())
    init_database()
    console.print("✅ Database initialized")


@app.command()
def drop_db(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
):
    """Drop every table, discarding all spaces and work items."""
    if not yes:
        typer.confirm("This deletes all data. Continue?", abort=True)
    configure_logging(get_settings())
    drop_database()
    console.print("🗑️  Database dropped")


@app.command()
def add_identity(
    username: str = typer.Argument(..., help="Unique user name"),
    full_name: Optional[str] = typer.Option(None, help="Display name"),
    email: Optional[str] = typer.Option(None, help="E-mail address"),
):
    """Register an identity that may call the API."""
    with Session(get_engine()) as db:
        identity = IdentityRepository(db).create(username, full_name=full_name, email=email)
        identity_id = identity.id
        db.commit()
    console.print(f"✅ Created identity {username}: {identity_id}")


@app.command()
def types():
    """List the known work item types."""
    settings = get_settings()
    with Session(get_engine()) as db:
        registry = TypeRegistry(db, settings)
        wits = registry.list()

    if not wits:
        console.print("No work item types found. Run 'init-db' first.")
        return

    table = Table(title="Work Item Types", show_header=True, header_style="bold cyan")
    table.add_column("Name", style="yellow")
    table.add_column("ID", style="blue")
    table.add_column("Ancestors", style="magenta")
    table.add_column("Fields", style="green")

    for wit in wits:
        table.add_row(
            wit.name,
            str(wit.id),
            " / ".join(wit.ancestors) or "-",
            str(len(wit.fields)),
        )

    console.print(table)


@app.command()
def render(
    source: Path = typer.Argument(..., help="File to render, or '-' for stdin"),
    markup: str = typer.Option("Markdown", help="Markup of the content"),
):
    """Render markup content to HTML without resolving work item references."""
    content = sys.stdin.read() if str(source) == "-" else source.read_text(encoding="utf-8")
    renderer = MarkupRenderer(get_settings())
    try:
        html = renderer.render(uuid.uuid4(), content, markup)
    except TrackerError as e:
        console.print(f"❌ {e.message}")
        raise typer.Exit(code=1) from e
    typer.echo(html)


@app.command()
def version():
    """Show version information."""
    from .. import __version__

    rprint(Panel.fit(f"Work Item Tracker v{__version__}", style="bold green"))


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
