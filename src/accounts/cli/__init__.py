"""Main CLI application module."""

import typer

from src.accounts.api.utils.app_startup import configure_logging

from .db_commands import db_app
from .reconcile_commands import diagnose_email, find_duplicates, reconcile_app
from .verification_commands import verification_app

# Create the main CLI application
app = typer.Typer(
    help="🛠️  Flashcard accounts administration",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


@app.callback()
def setup() -> None:
    configure_logging(console=False)


# Register command groups
app.add_typer(reconcile_app, name="reconcile")
app.add_typer(verification_app, name="verification")
app.add_typer(db_app, name="db")
app.command("duplicates")(find_duplicates)
app.command("diagnose")(diagnose_email)


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
