"""Command-line interface for PAUAffiliate maintenance jobs."""

from datetime import timedelta
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from pauaffiliate.api.v1.webhooks import cleanup_old_events
from pauaffiliate.logging_config import configure_logging, get_logger
from pauaffiliate.referral.service import referral_service
from pauaffiliate.sales.service import sale_service
from pauaffiliate.sales.settlement import settlement_service
from pauaffiliate.storage.db import db
from pauaffiliate.storage.models import utcnow
from pauaffiliate.wallet.service import wallet_service

# Configure logging
configure_logging()
logger = get_logger(__name__)

# Create Typer app
app = typer.Typer(
    name="pauaffiliate",
    help="PAUAffiliate - affiliate marketplace maintenance",
    no_args_is_help=True,
)

# Rich console for pretty output
console = Console()


@app.command("init")
def init_database() -> None:
    """Initialize the database and create tables."""
    console.print("[bold blue]Initializing database...[/bold blue]")
    db.create_tables()
    console.print("[bold green]✓[/bold green] Database initialized successfully")


@app.command("expire-sales")
def expire_sales(
    older_than_hours: Annotated[
        int | None, typer.Option("--older-than-hours", help="Override the pending sale TTL")
    ] = None,
) -> None:
    """Cancel pending sales from abandoned checkouts."""
    older_than = utcnow() - timedelta(hours=older_than_hours) if older_than_hours else None
    expired = sale_service.expire_stale_sales(older_than)
    console.print(f"[bold green]✓[/bold green] Expired {expired} pending sale(s)")


@app.command("retry-settlements")
def retry_settlements() -> None:
    """Re-run settlement steps that failed after payment."""
    issues = settlement_service.list_issues()
    if not issues:
        console.print("[green]No open settlement issues[/green]")
        return

    counts = settlement_service.retry_open_issues()

    table = Table(title="Settlement retry")
    table.add_column("Outcome", style="cyan")
    table.add_column("Issues", justify="right")
    for outcome, count in counts.items():
        table.add_row(outcome, str(count))
    console.print(table)

    if counts["failed"]:
        raise typer.Exit(1)


@app.command("cleanup-webhook-events")
def cleanup_webhook_events(
    days: Annotated[int | None, typer.Option("--days", "-d", help="Days of events to keep")] = None,
) -> None:
    """Remove old processed-webhook records."""
    deleted = cleanup_old_events(days)
    console.print(f"[bold green]✓[/bold green] Deleted {deleted} processed webhook event(s)")


@app.command("audit-wallets")
def audit_wallets() -> None:
    """Compare every wallet's balance with the sum of its transactions."""
    audits = wallet_service.audit_all()
    if not audits:
        console.print("[yellow]No wallets found[/yellow]")
        return

    table = Table(title="Wallet audit")
    table.add_column("User", style="cyan")
    table.add_column("Balance", justify="right")
    table.add_column("Ledger", justify="right")
    table.add_column("Status")

    for audit in audits:
        table.add_row(
            audit.user_id,
            f"{audit.cached_balance:,.2f}",
            f"{audit.ledger_balance:,.2f}",
            "[green]ok[/green]" if audit.consistent else "[bold red]MISMATCH[/bold red]",
        )
    console.print(table)

    if not all(audit.consistent for audit in audits):
        raise typer.Exit(1)


@app.command("purge-referral-links")
def purge_referral_links(
    yes: Annotated[bool, typer.Option("--yes", help="Confirm deleting every referral link")] = False,
) -> None:
    """Delete every referral link with its sales and payment records."""
    if not yes:
        console.print("[red]Refusing to purge without --yes[/red]")
        raise typer.Exit(1)

    counts = referral_service.purge_all_links()
    for table_name, count in counts.items():
        console.print(f"  {table_name}: {count}")
    console.print("[bold green]✓[/bold green] Referral links purged")


if __name__ == "__main__":
    app()
