"""Database CLI commands."""

import typer
from sqlalchemy.exc import SQLAlchemyError

from src.accounts.runtime.context import get_config
from src.accounts.runtime.init_db import init_database

from .utils import console

db_app = typer.Typer(help="🗄️  Database commands")


@db_app.command("init")
def init() -> None:
    """Create the user record table."""
    url = get_config().database.url
    try:
        init_database()
    except SQLAlchemyError as e:
        console.print(f"[red]❌ Failed to initialize database: {e}[/red]")
        raise typer.Exit(code=1) from e
    console.print(f"[green]✅ Database initialized ({url.split('://', 1)[0]})[/green]")
