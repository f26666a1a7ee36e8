"""CLI entry point and argument parsing"""

import asyncio
import argparse
import logging
import sys
import webbrowser
from typing import List, Optional

from rich.console import Console

import settings
from social_oauth import OAuthManager
from social_oauth.errors import OAuthLifecycleError
from social_oauth.models import Platform
from cli.status_display import show_accounts, show_store_status
from providers import quiet_http_loggers

console = Console()
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Social Account Connector CLI")
    parser.add_argument("--debug", "-d", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the connector web server")
    serve.add_argument("--bind", "-b", default=None, help="Override bind address (default: from config)")

    subparsers.add_parser("status", help="Show stored credentials")
    subparsers.add_parser("accounts", help="Reconcile and show connected accounts")

    login = subparsers.add_parser("login", help="Open the connect flow in a browser")
    login.add_argument("provider", choices=[platform.value for platform in Platform])
    login.add_argument("--no-browser", action="store_true", help="Only print the URL")

    disconnect = subparsers.add_parser("disconnect", help="Remove a connected account")
    disconnect.add_argument("provider", choices=[platform.value for platform in Platform])
    disconnect.add_argument("account_id")

    return parser


def run_serve(args) -> int:
    from web import ConnectorServer

    server = ConnectorServer(debug=args.debug, bind_address=args.bind)
    console.print(f"[bold cyan]Social Account Connector[/bold cyan] on http://{server.bind_address}:{settings.PORT}")
    server.run()
    return 0


def run_status(manager: OAuthManager) -> int:
    show_store_status(manager.store.get_status(), settings.CREDENTIAL_STORE_FILE, console)
    return 0


def run_accounts(manager: OAuthManager) -> int:
    snapshots = asyncio.run(manager.list_accounts())
    show_accounts(snapshots, console)
    return 0


def run_login(args) -> int:
    # The callback lands on the web server, which must be running
    url = f"{settings.BASE_URL.rstrip('/')}/auth/{args.provider}?redirect=true"
    console.print(f"\n[bold]Connect your {args.provider} account:[/bold]")
    console.print(f"[cyan]{url}[/cyan]\n")
    if not args.no_browser:
        try:
            webbrowser.open(url)
            console.print("[green]✓ Browser opened[/green]")
        except webbrowser.Error:
            console.print("[yellow]⚠ Could not open browser automatically[/yellow]")
    console.print("[dim]Make sure the server is running (serve) to receive the callback.[/dim]")
    return 0


def run_disconnect(manager: OAuthManager, args) -> int:
    manager.disconnect(args.provider, args.account_id)
    console.print(f"[green]✓ Disconnected {args.provider} account {args.account_id}[/green]")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the CLI"""
    parser = build_parser()
    args = parser.parse_args(argv)
    command = args.command or "serve"
    if command == "serve" and not hasattr(args, "bind"):
        args.bind = None

    logging.basicConfig(
        level=logging.DEBUG if args.debug else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
    quiet_http_loggers()

    try:
        if command == "serve":
            return run_serve(args)
        if command == "login":
            return run_login(args)

        manager = OAuthManager()
        if command == "status":
            return run_status(manager)
        if command == "accounts":
            return run_accounts(manager)
        return run_disconnect(manager, args)

    except OAuthLifecycleError as e:
        logger.debug(f"Command {command} failed: {e.kind}")
        console.print(f"[red]ERROR:[/red] {e.description} ({e.kind})")
        return 1
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        console.print("Goodbye!")
        return 130


if __name__ == "__main__":
    sys.exit(main())
