"""Duplicate account reconciliation CLI commands."""

import typer
from rich.table import Table

from src.accounts.core.errors import PartialReconciliationFailure
from src.accounts.core.models.reconciliation import GroupReport, ReconciliationReport
from src.accounts.core.services import DuplicateReconciler

from .utils import console, get_store, run_async

reconcile_app = typer.Typer(help="🧹 Collapse accounts that share an email")

DRY_RUN_OPTION = typer.Option(
    False, "--dry-run", help="Only report what would be deleted"
)


def _reconciler() -> DuplicateReconciler:
    return DuplicateReconciler(get_store())


def _groups_table(groups: list[GroupReport], dry_run: bool) -> Table:
    table = Table(title="Planned deletions" if dry_run else "Reconciled emails")
    table.add_column("Email", style="blue")
    table.add_column("Kept", style="green")
    table.add_column("Would delete" if dry_run else "Deleted", style="yellow")
    table.add_column("Errors", style="red")
    for group in groups:
        table.add_row(
            group.email,
            group.canonical_id or "",
            ", ".join(group.duplicate_ids if dry_run else group.deleted_ids),
            ", ".join(f"{err.record_id}: {err.error}" for err in group.errors),
        )
    return table


def _finish(report: ReconciliationReport) -> None:
    try:
        report.raise_for_failures()
    except PartialReconciliationFailure as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(code=1) from e


@reconcile_app.command("all")
def reconcile_all(dry_run: bool = DRY_RUN_OPTION) -> None:
    """Reconcile every email that has more than one account."""
    report = run_async(_reconciler().reconcile_all(dry_run=dry_run or None))

    console.print(f"Scanned {report.records_scanned} records")
    if not report.duplicate_groups:
        console.print("[green]✅ No duplicate emails found[/green]")
        return

    console.print(_groups_table(report.duplicate_groups, report.dry_run))
    if not report.dry_run:
        console.print(f"[green]Deleted {report.deleted_count} duplicate records[/green]")
    _finish(report)


@reconcile_app.command("email")
def reconcile_email(
    email: str = typer.Argument(..., help="Email whose accounts should be collapsed"),
    dry_run: bool = DRY_RUN_OPTION,
) -> None:
    """Reconcile the accounts of a single email."""
    group = run_async(_reconciler().reconcile_email(email, dry_run=dry_run or None))

    if not group.duplicate_ids:
        console.print(f"[green]✅ {email} has no duplicates[/green]")
        return

    console.print(_groups_table([group], group.dry_run))
    _finish(ReconciliationReport(groups=[group], dry_run=group.dry_run))


def find_duplicates(
    email: str = typer.Argument(..., help="Email to check"),
) -> None:
    """Check an email for duplicate accounts without changing anything."""
    check = run_async(_reconciler().find_duplicates(email))
    if not check.has_duplicates:
        console.print(f"[green]✅ {email} has no duplicates[/green]")
        return
    console.print(
        f"[yellow]⚠️  {email} has {check.duplicate_count} duplicate(s); "
        f"canonical record is {check.canonical_id}[/yellow]"
    )


def diagnose_email(
    email: str = typer.Argument(..., help="Email to diagnose"),
) -> None:
    """List every account holding an email, highest precedence first."""
    diagnosis = run_async(_reconciler().diagnose_email(email))
    if not diagnosis.found:
        console.print(f"[yellow]No records found for {email}[/yellow]")
        return

    table = Table(title=f"Records for {email}")
    table.add_column("Record ID", style="cyan")
    table.add_column("Class", style="magenta")
    table.add_column("Created", style="green")
    table.add_column("Linked UID", style="blue")
    table.add_column("Canonical", style="yellow")
    for record in diagnosis.records:
        table.add_row(
            record.record_id,
            record.account_class.value,
            record.created_at.isoformat(),
            record.linked_external_uid or "",
            "✅" if record.record_id == diagnosis.canonical_id else "",
        )
    console.print(table)
