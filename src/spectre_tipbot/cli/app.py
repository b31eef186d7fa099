"""CLI for the Spectre tip bot core - inspect wallet metadata from the terminal."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from spectre_tipbot.config import (
    TipBotConfig,
    default_config_path,
    load_config,
    owned_store_path,
    transition_store_path,
)
from spectre_tipbot.errors import TipError

app = typer.Typer(
    name="spectre-tipbot",
    help="Operator tools for the Spectre tip bot wallet registry and escrow ledger.",
    no_args_is_help=True,
)
console = Console()

_config_path: Optional[Path] = None


def _version_callback(value: bool):
    if value:
        from spectre_tipbot import __version__
        console.print(f"spectre-tipbot {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config.yaml (defaults to ./.spectre-tipbot/config.yaml)",
        envvar="SPECTRE_TIPBOT_CONFIG",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
):
    """Operator tools for the Spectre tip bot wallet registry and escrow ledger."""
    global _config_path
    _config_path = config


def configure_logging(level: str = "INFO") -> None:
    """Send every ``spectre_tipbot`` log record to a single stream handler."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _run(coro):
    """Run an async function synchronously."""
    try:
        loop = asyncio.get_event_loop()
        if loop.is_running():
            import concurrent.futures
            with concurrent.futures.ThreadPoolExecutor() as pool:
                return pool.submit(asyncio.run, coro).result()
        return loop.run_until_complete(coro)
    except RuntimeError:
        return asyncio.run(coro)


def _load() -> TipBotConfig:
    path = _config_path or default_config_path()
    if path.exists():
        config = load_config(path)
    elif _config_path is not None:
        console.print(f"[red]Config file not found: {path}[/red]")
        raise typer.Exit(1)
    else:
        config = TipBotConfig()
    configure_logging(config.log_level)
    return config


def _fail(exc: TipError) -> None:
    console.print(f"[red]{exc.kind.value}:[/red] {exc.message}")
    raise typer.Exit(1)


# ------------------------------------------------------------------
# init
# ------------------------------------------------------------------


@app.command()
def init(
    data_path: Optional[Path] = typer.Option(
        None, "--data-path", "-d", help="Directory for wallet files and metadata stores"
    ),
    network: str = typer.Option("mainnet", "--network", "-n", help="Spectre network id"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing config.yaml"),
):
    """Write a default configuration file."""
    from spectre_tipbot.config import save_config

    path = _config_path or default_config_path()
    if path.exists() and not force:
        console.print(f"[yellow]Config already exists at {path}.[/yellow] Use --force to overwrite.")
        raise typer.Exit(1)

    config = TipBotConfig(network=network)
    if data_path is not None:
        config.wallet_data_path = data_path
    save_config(config, path)

    console.print(Panel(
        f"[bold green]Configuration written![/bold green]\n\n"
        f"Config: {path}\n"
        f"Network: [cyan]{config.network}[/cyan]\n"
        f"Wallet data: {config.wallet_data_path}\n\n"
        f"Next steps:\n"
        f"  set engine.wallet_factory and engine.node_factory in config.yaml\n"
        f"  spectre-tipbot node-status",
        title="Spectre Tip Bot",
    ))


# ------------------------------------------------------------------
# Metadata listings
# ------------------------------------------------------------------


async def _open_stores(config: TipBotConfig):
    from spectre_tipbot.storage.metadata_store import MetadataStore
    from spectre_tipbot.storage.models import OwnedWalletMetadata, TransitionWalletMetadata

    owned = await MetadataStore.open(owned_store_path(config), OwnedWalletMetadata, "owner_identifier")
    transitions = await MetadataStore.open(
        transition_store_path(config), TransitionWalletMetadata, "identifier"
    )
    return owned, transitions


@app.command()
def owned():
    """List owned wallet metadata."""
    config = _load()

    async def _owned():
        store, _ = await _open_stores(config)
        return await store.all()

    try:
        records = _run(_owned())
    except TipError as exc:
        _fail(exc)

    if not records:
        console.print("[yellow]No owned wallets yet.[/yellow]")
        return

    table = Table(title=f"Owned Wallets ({config.network})")
    table.add_column("Owner", style="bold")
    table.add_column("Receive Address", style="cyan")

    for r in records:
        table.add_row(r.owner_identifier, r.receive_address)

    console.print(table)


@app.command()
def escrows(
    target: Optional[str] = typer.Option(None, "--target", "-t", help="Only escrows addressed to this identity"),
):
    """List escrow (transition) wallet records. Unlock secrets are never shown."""
    config = _load()

    async def _escrows():
        _, store = await _open_stores(config)
        if target is None:
            return await store.all()
        return await store.find_where(lambda m: m.target_identifier == target)

    try:
        records = _run(_escrows())
    except TipError as exc:
        _fail(exc)

    if not records:
        console.print("[yellow]No escrow wallets found.[/yellow]")
        return

    table = Table(title="Escrow Wallets")
    table.add_column("Initiator", style="bold")
    table.add_column("Target", style="bold")
    table.add_column("Receive Address", style="cyan")
    table.add_column("Identifier", style="dim")

    for r in records:
        table.add_row(r.initiator_identifier, r.target_identifier, r.receive_address, r.identifier)

    console.print(table)


# ------------------------------------------------------------------
# node-status
# ------------------------------------------------------------------


@app.command("node-status")
def node_status():
    """Connect to the configured node and show its server info."""
    from spectre_tipbot.engine.loader import load_node_connection
    from spectre_tipbot.engine.node import check_node_status, connect_node

    config = _load()
    if not config.engine.node_factory:
        console.print("[red]engine.node_factory is not configured.[/red]")
        raise typer.Exit(1)

    async def _status():
        node = load_node_connection(config)
        await connect_node(node, config)
        return await check_node_status(node, config)

    try:
        info = _run(_status())
    except TipError as exc:
        _fail(exc)

    def _flag(value: bool) -> str:
        return "[green]yes[/green]" if value else "[red]no[/red]"

    console.print(Panel(
        f"Version: [cyan]{info.version}[/cyan]\n"
        f"Network: [cyan]{info.network_id}[/cyan]\n"
        f"Synced: {_flag(info.is_synced)}\n"
        f"UTXO index: {_flag(info.has_utxo_index)}",
        title="Spectre Node",
    ))
