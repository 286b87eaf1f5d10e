"""CLI commands for team9link."""

import asyncio
import sys
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from team9link import __logo__, __version__

app = typer.Typer(
    name="team9link",
    help=f"{__logo__} team9link - Team9 bot bridge for agent runtimes",
    no_args_is_help=True,
)

console = Console()

DEFAULT_RUNTIME = "team9link.runtime:EchoRuntime"


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} team9link v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """team9link - Team9 bot bridge."""
    pass


def _setup_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")


def _load(config_path: Path | None):
    from team9link.config.loader import load_config

    return load_config(config_path)


# ============================================================================
# Gateway
# ============================================================================


@app.command()
def gateway(
    runtime: str = typer.Option("", "--runtime", "-r", help="Agent runtime as module:attribute"),
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file path"),
    verbose: bool = typer.Option(False, "--verbose", help="Verbose output"),
):
    """Connect every configured account and serve inbound messages."""
    from team9link.channel import Team9Channel
    from team9link.runtime import load_runtime

    _setup_logging(verbose)
    config = _load(config_path)
    target = runtime or config.runtime or DEFAULT_RUNTIME
    if target == DEFAULT_RUNTIME:
        console.print("[yellow]No runtime configured, replies will echo the inbound text.[/yellow]")

    try:
        agent_runtime = load_runtime(target)
    except (ImportError, AttributeError, TypeError, ValueError) as e:
        console.print(f"[red]Could not load runtime {target}: {e}[/red]")
        raise typer.Exit(1)

    channel = Team9Channel(config, agent_runtime, config_loader=lambda: _load(config_path))
    console.print(f"{__logo__} Starting team9link gateway with runtime {target}...")

    async def run():
        try:
            started = await channel.start_all()
            if not channel.supervisor.tracked_accounts:
                console.print("[red]No Team9 account could be started. Run 'team9link configure' first.[/red]")
                return
            pending = [a for a in channel.supervisor.tracked_accounts if a not in started]
            console.print(f"[green]✓[/green] Accounts running: {', '.join(started) or 'none'}")
            if pending:
                console.print(f"[yellow]Retrying in background: {', '.join(pending)}[/yellow]")
            await asyncio.Event().wait()
        finally:
            await channel.shutdown()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\nShutting down...")


# ============================================================================
# Status / Configure
# ============================================================================


@app.command()
def status(
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file path"),
):
    """Show configured Team9 accounts."""
    from team9link.config.accounts import describe_account, list_accounts
    from team9link.config.loader import get_config_path

    path = config_path or get_config_path()
    config = _load(config_path)
    console.print(f"{__logo__} team9link status\n")
    console.print(f"Config: {path} {'[green]✓[/green]' if path.exists() else '[red]✗[/red]'}")

    accounts = list_accounts(config)
    if not accounts:
        console.print("[dim]No Team9 accounts configured.[/dim]")
        return

    table = Table(title="Team9 Accounts")
    table.add_column("Account", style="cyan")
    table.add_column("Enabled", style="green")
    table.add_column("Base URL")
    table.add_column("Token", style="yellow")

    for account in accounts:
        row = describe_account(account)
        if row["has_token"]:
            token = f"[green]✓[/green] ({row['token_source']})"
        else:
            token = "[dim]not configured[/dim]"
        label = row["account_id"] + (f" ({row['name']})" if row["name"] else "")
        table.add_row(label, "✓" if row["enabled"] else "✗", row["base_url"], token)

    console.print(table)


@app.command()
def configure(
    account: str = typer.Option("default", "--account", "-a", help="Account id"),
    base_url: str = typer.Option(None, "--base-url", help="Team9 server URL"),
    ws_url: str = typer.Option(None, "--ws-url", help="Socket URL (defaults to base URL + /im)"),
    token: str = typer.Option(None, "--token", help="Bot access token"),
    name: str = typer.Option(None, "--name", help="Display name for the account"),
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file path"),
):
    """Set the server URL and bot token for an account."""
    from team9link.config.accounts import apply_account_config
    from team9link.config.loader import get_config_path, save_config

    if token is not None and not token.strip():
        console.print("[red]Token must not be empty.[/red]")
        raise typer.Exit(1)

    path = config_path or get_config_path()
    config = apply_account_config(
        _load(config_path),
        account.strip() or "default",
        base_url=base_url.rstrip("/") if base_url else None,
        ws_url=ws_url,
        token=token.strip() if token else None,
        name=name,
    )
    save_config(config, path)
    console.print(f"[green]✓[/green] Saved account '{account}' to {path}")


def _set_enabled(account: str, enabled: bool, config_path: Path | None) -> None:
    from team9link.config.accounts import set_account_enabled
    from team9link.config.loader import get_config_path, save_config

    path = config_path or get_config_path()
    config = _load(config_path)
    if account != "default" and account not in config.team9.accounts:
        console.print(f"[red]No account named '{account}'.[/red]")
        raise typer.Exit(1)
    save_config(set_account_enabled(config, account, enabled), path)
    state = "enabled" if enabled else "disabled"
    console.print(f"[green]✓[/green] Account '{account}' {state}")


@app.command()
def enable(
    account: str = typer.Argument("default", help="Account id"),
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file path"),
):
    """Enable an account so the gateway connects it."""
    _set_enabled(account, True, config_path)


@app.command()
def disable(
    account: str = typer.Argument("default", help="Account id"),
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file path"),
):
    """Disable an account without deleting its settings."""
    _set_enabled(account, False, config_path)


@app.command()
def remove(
    account: str = typer.Argument(..., help="Account id"),
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file path"),
):
    """Delete an account from the config file."""
    from team9link.config.accounts import delete_account
    from team9link.config.loader import get_config_path, save_config

    path = config_path or get_config_path()
    config = _load(config_path)
    if account != "default" and account not in config.team9.accounts:
        console.print(f"[red]No account named '{account}'.[/red]")
        raise typer.Exit(1)
    save_config(delete_account(config, account), path)
    console.print(f"[green]✓[/green] Removed account '{account}'")


# ============================================================================
# Send
# ============================================================================


@app.command()
def send(
    target: str = typer.Argument(..., help="<channelId|channel:channelId|user:userId>"),
    text: str = typer.Argument(..., help="Message text"),
    account: str = typer.Option(None, "--account", "-a", help="Account id"),
    reply_to: str = typer.Option(None, "--reply-to", help="Parent message id for a thread reply"),
    media: str = typer.Option(None, "--media", help="File path or URL to attach"),
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file path"),
):
    """Send one message as the bot."""
    from team9link.channel import Team9Channel

    channel = Team9Channel(_load(config_path))

    async def run():
        if media:
            return await channel.send_media(target, text, media, account_id=account, reply_to=reply_to)
        return await channel.send_text(target, text, account_id=account, reply_to=reply_to)

    result = asyncio.run(run())
    if not result.ok:
        console.print(f"[red]Send failed: {result.error}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Sent message {result.message_id} to {result.channel_id}")


if __name__ == "__main__":
    app()
