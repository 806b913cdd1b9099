"""Verification support CLI commands."""

import typer

from src.accounts.core.services import VerificationRateLimiter

from .utils import console, get_store, run_async

verification_app = typer.Typer(help="✉️  Email verification support")


@verification_app.command("reset")
def reset_verification(
    record_id: str = typer.Argument(..., help="Record whose resend counters to clear"),
) -> None:
    """Clear the resend counters of a record so the user can request emails again."""
    verification = run_async(VerificationRateLimiter(get_store()).reset_verification(record_id))
    console.print(
        f"[green]✅ Verification counters reset for {record_id} "
        f"(verified: {verification.is_verified})[/green]"
    )
