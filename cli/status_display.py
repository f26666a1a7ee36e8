"""Status display functionality for CLI"""

from typing import Any, Dict, List

from rich.table import Table

from social_oauth.models import AccountSnapshot, ExpiryStatus

STATUS_STYLES = {
    ExpiryStatus.ACTIVE: "green",
    ExpiryStatus.EXPIRING_SOON: "yellow",
    ExpiryStatus.EXPIRED: "red",
}


def show_store_status(status: Dict[str, Any], store_file: str, console):
    """
    Display stored credentials without secrets

    Args:
        status: CredentialStore.get_status() output
        store_file: Path of the credential file
        console: Rich console for output
    """
    table = Table(title="Credential Store")
    table.add_column("Provider", style="cyan")
    table.add_column("Account")
    table.add_column("Username")
    table.add_column("Expires In")
    table.add_column("Refreshable")

    for account in status["accounts"]:
        table.add_row(
            account["provider"],
            account["account_id"],
            account["username"] or "-",
            account["time_until_expiry"],
            "Yes" if account["has_refresh_token"] else "No",
        )

    console.print(table)
    if not status["has_credentials"]:
        console.print("[yellow]No accounts connected[/yellow]")
    console.print(f"Pending authorizations: {status['pending_attempts']}")
    console.print(f"Store file: {store_file}")


def show_accounts(snapshots: List[AccountSnapshot], console):
    """Display the reconciled account roster"""
    table = Table(title="Connected Accounts")
    table.add_column("Provider", style="cyan")
    table.add_column("Username")
    table.add_column("Display Name")
    table.add_column("Followers", justify="right")
    table.add_column("Status")
    table.add_column("Permissions")

    for snapshot in snapshots:
        style = STATUS_STYLES.get(snapshot.status, "white")
        table.add_row(
            snapshot.provider,
            snapshot.profile.username or snapshot.account_id,
            snapshot.profile.display_name,
            str(snapshot.profile.follower_count),
            f"[{style}]{snapshot.status.value}[/{style}]",
            ", ".join(snapshot.permissions),
        )

    console.print(table)
    for snapshot in snapshots:
        for warning in snapshot.warnings:
            console.print(f"[yellow]⚠ {snapshot.provider}/{snapshot.account_id}: {warning}[/yellow]")
