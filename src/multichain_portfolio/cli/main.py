"""CLI for the multi-chain portfolio tracker."""

import logging
import time
from decimal import Decimal
from enum import StrEnum
from pathlib import Path

import typer
from rich.console import Console
from rich.live import Live
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.traceback import install

from multichain_portfolio.config import TrackerSettings, load_settings
from multichain_portfolio.core.exceptions import PortfolioError
from multichain_portfolio.core.models import FetchState, PortfolioSnapshot
from multichain_portfolio.core.sources import BalanceProvider
from multichain_portfolio.data import (
    get_all_price_identifiers,
    get_all_supported_networks,
    get_assets_for_network,
    get_chain_id,
    get_network_config,
)
from multichain_portfolio.logging_setup import configure_logging
from multichain_portfolio.pricing import CoinGeckoClient
from multichain_portfolio.rpc.retry import RetryConfig
from multichain_portfolio.tracker import Poller, PortfolioTracker, build_tracker
from multichain_portfolio.utils.formatters import format_price_change, format_usd_value

# Install rich traceback handler
install(show_locals=False)

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="multichain-portfolio",
    help="Track native coin and token balances across EVM networks, valued in USD",
    add_completion=False,
)

console = Console()


class OutputFormat(StrEnum):
    """Output format options."""

    TABLE = "table"
    JSON = "json"


class UnavailableProvider:
    """Stand-in for a network that could not be connected; every query fails."""

    def __init__(self, network: str, reason: str) -> None:
        self.network = network
        self.reason = reason

    def get_balance(self, owner: str) -> int:
        raise PortfolioError(f"{self.network} unavailable: {self.reason}")

    def call_balance_of(self, contract_address: str, owner: str) -> int:
        raise PortfolioError(f"{self.network} unavailable: {self.reason}")


def _connect_providers(networks: list[str], settings: TrackerSettings) -> dict[str, BalanceProvider]:
    """
    Connect one Ape provider per network.

    A network that fails to connect is replaced by an ``UnavailableProvider``
    so its assets are still listed, flagged as failed.

    """
    from multichain_portfolio.rpc.provider import ApeRPCProvider

    retry_config = RetryConfig(max_retries=settings.max_retries, base_delay=settings.retry_base_delay)
    providers: dict[str, BalanceProvider] = {}

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        for network in networks:
            task = progress.add_task(f"Connecting to {network}...", total=None)
            provider = ApeRPCProvider(get_network_config(network)["ape_network"], retry_config=retry_config)
            try:
                provider.connect()
                providers[network] = provider
            except RuntimeError as e:
                logger.warning("Could not connect to %s: %s", network, e)
                console.print(f"[yellow]Could not connect to {network}; its assets will show as failed[/yellow]")
                providers[network] = UnavailableProvider(network, str(e))
            progress.remove_task(task)

    return providers


def _disconnect_providers(providers: dict[str, BalanceProvider]) -> None:
    for provider in providers.values():
        disconnect = getattr(provider, "disconnect", None)
        if disconnect is not None:
            disconnect()


def _resolve_networks(network: list[str] | None) -> list[str]:
    supported = get_all_supported_networks()
    if not network:
        return supported

    unknown = [n for n in network if n not in supported]
    if unknown:
        console.print(f"[bold red]Unsupported network(s):[/bold red] {', '.join(unknown)}")
        console.print(f"[dim]Supported: {', '.join(supported)}[/dim]")
        raise typer.Exit(code=2)
    return network


@app.command()
def portfolio(
    address: str = typer.Argument(..., help="Wallet address to query"),
    network: list[str] | None = typer.Option(None, "--network", "-n", help="Network(s) to query (repeatable)"),
    format: OutputFormat = typer.Option(OutputFormat.TABLE, "--format", "-f", help="Output format"),
    watch: bool = typer.Option(False, "--watch", "-w", help="Keep refreshing on the poll interval"),
    interval: float | None = typer.Option(None, "--interval", "-i", help="Poll interval in seconds"),
    config: Path | None = typer.Option(None, "--config", help="YAML settings file"),
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug output"),
) -> None:
    """
    Show balances and USD values for a wallet across networks.

    Examples:

        # All supported networks
        multichain-portfolio portfolio 0xABC...

        # Only Polygon, as JSON
        multichain-portfolio portfolio 0xABC... --network polygon --format json

        # Refresh every 60 seconds
        multichain-portfolio portfolio 0xABC... --watch
    """
    configure_logging("DEBUG" if debug else "WARNING")
    settings = load_settings(config)
    networks = _resolve_networks(network)

    if format == OutputFormat.TABLE:
        console.print(f"\n[bold cyan]Fetching portfolio for:[/bold cyan] {address}")

    providers = _connect_providers(networks, settings)
    tracker = build_tracker(settings, providers)

    try:
        if watch:
            _watch(tracker, address, interval or settings.poll_interval)
            return

        with console.status("Fetching balances and prices..."):
            snapshot = tracker.refresh(address)

        if format == OutputFormat.JSON:
            _output_json(snapshot)
        else:
            _output_table(snapshot)

        if snapshot.error:
            raise typer.Exit(code=1)
    finally:
        tracker.close()
        _disconnect_providers(providers)


def _watch(tracker: PortfolioTracker, address: str, interval: float) -> None:
    """Render a live table refreshed by a background poller until Ctrl+C."""
    with Live(_render_snapshot(tracker.snapshot()), console=console, refresh_per_second=2) as live:
        poller = Poller(tracker, address, interval=interval)
        poller.start()
        try:
            while poller.is_running:
                time.sleep(0.5)
                live.update(_render_snapshot(tracker.snapshot()))
        except KeyboardInterrupt:
            console.print("[dim]Stopped[/dim]")
        finally:
            poller.stop(timeout=5)


@app.command()
def prices(
    ids: list[str] | None = typer.Argument(None, help="CoinGecko ids (default: every catalog asset)"),
    format: OutputFormat = typer.Option(OutputFormat.TABLE, "--format", "-f", help="Output format"),
    config: Path | None = typer.Option(None, "--config", help="YAML settings file"),
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug output"),
) -> None:
    """Show current USD prices and 24h changes."""
    configure_logging("DEBUG" if debug else "WARNING")
    settings = load_settings(config)
    price_ids = ids or get_all_price_identifiers()
    retry_config = RetryConfig(max_retries=settings.max_retries, base_delay=settings.retry_base_delay)

    with CoinGeckoClient(
        base_url=settings.price_api_url,
        api_key=settings.price_api_key,
        timeout=settings.request_timeout,
        retry_config=retry_config,
    ) as client:
        try:
            quotes = client.fetch_quotes(price_ids)
        except PortfolioError as e:
            console.print(f"[bold red]Error:[/bold red] {e}")
            raise typer.Exit(code=1)

    if format == OutputFormat.JSON:
        data = {price_id: quote.model_dump(mode="json") for price_id, quote in quotes.items()}
        console.print_json(data=data)
        return

    table = Table(title="Prices", show_header=True, header_style="bold magenta")
    table.add_column("Id", style="cyan")
    table.add_column("USD", style="bold green", justify="right")
    table.add_column("24h", justify="right")

    for price_id in price_ids:
        quote = quotes.get(price_id)
        if quote is None:
            table.add_row(price_id, "-", "-")
            continue
        table.add_row(price_id, f"${quote.usd_price:,.4f}", _styled_change(quote.usd_change_24h))

    console.print(table)


@app.command()
def list_networks() -> None:
    """List all supported networks."""
    table = Table(title="Supported Networks", show_header=True, header_style="bold magenta")
    table.add_column("Network", style="cyan")
    table.add_column("Chain ID", style="green", justify="right")
    table.add_column("Native", style="yellow")
    table.add_column("Tokens", justify="right")

    for network in get_all_supported_networks():
        assets = get_assets_for_network(network)
        table.add_row(network, str(get_chain_id(network)), assets[0].symbol, str(len(assets) - 1))

    console.print(table)


@app.command()
def list_assets(
    network: str | None = typer.Option(None, "--network", "-n", help="Only this network"),
) -> None:
    """List tracked assets."""
    networks = _resolve_networks([network] if network else None)

    table = Table(title="Tracked Assets", show_header=True, header_style="bold magenta")
    table.add_column("Network", style="blue")
    table.add_column("Symbol", style="cyan")
    table.add_column("Name")
    table.add_column("Decimals", justify="right")
    table.add_column("Contract", style="dim")
    table.add_column("Price Id", style="green")

    for name in networks:
        for asset in get_assets_for_network(name):
            table.add_row(
                name,
                asset.symbol,
                asset.display_name,
                str(asset.decimal_places),
                asset.contract_address or "native",
                asset.price_identifier,
            )

    console.print(table)


def _styled_change(change: Decimal) -> str:
    color = "green" if change >= 0 else "red"
    return f"[{color}]{format_price_change(change)}[/{color}]"


def _render_snapshot(snapshot: PortfolioSnapshot) -> Table:
    """Build the entries table for a snapshot."""
    owner = snapshot.owner or "-"
    title = f"Portfolio for {owner[:10]}...{owner[-8:]}" if len(owner) > 20 else f"Portfolio for {owner}"
    if snapshot.loading:
        title += " [dim](refreshing)[/dim]"

    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Network", style="blue")
    table.add_column("Asset", style="cyan")
    table.add_column("Balance", justify="right")
    table.add_column("Price", justify="right")
    table.add_column("24h", justify="right")
    table.add_column("USD Value", style="bold green", justify="right")
    table.add_column("Status")

    for entry in snapshot.entries:
        if entry.fetch_state == FetchState.FAILED:
            status = f"[red]failed: {entry.error}[/red]"
        elif entry.fetch_state == FetchState.PENDING:
            status = "[yellow]pending[/yellow]"
        else:
            status = "[green]ok[/green]"

        table.add_row(
            entry.network_id,
            entry.symbol,
            entry.formatted_quantity,
            f"${entry.usd_price:,.4f}" if entry.usd_price else "-",
            _styled_change(entry.usd_change_24h) if entry.usd_price else "-",
            format_usd_value(entry.usd_value),
            status,
        )

    summary = snapshot.summary
    table.caption = (
        f"Total {format_usd_value(summary.total_usd_value)} "
        f"({format_price_change(summary.weighted_change_24h)} 24h) | "
        f"{summary.active_asset_count}/{summary.total_asset_count} assets held on "
        f"{summary.distinct_network_count} network(s)"
    )
    return table


def _output_table(snapshot: PortfolioSnapshot) -> None:
    """Output portfolio as rich tables."""
    if snapshot.error:
        console.print("\n[bold red]No balance or price data could be fetched. Try again later.[/bold red]")
        return

    console.print("\n")
    console.print(_render_snapshot(snapshot))

    summary = snapshot.summary
    summary_table = Table(show_header=False, box=None)
    summary_table.add_column("Label", style="bold")
    summary_table.add_column("Value", style="bold green")

    summary_table.add_row("Total Value:", format_usd_value(summary.total_usd_value))
    summary_table.add_row("24h Change:", _styled_change(summary.weighted_change_24h))
    summary_table.add_row("Assets:", f"{summary.native_asset_count} native, {summary.token_asset_count} tokens")

    if summary.by_network:
        summary_table.add_row("", "")
        summary_table.add_row("[bold]By Network:[/bold]", "")
        for name, value in summary.by_network.items():
            summary_table.add_row(f"  {name}", format_usd_value(value))

    console.print("\n")
    console.print(summary_table)
    console.print("\n")


def _output_json(snapshot: PortfolioSnapshot) -> None:
    """Output portfolio as JSON."""
    console.print_json(data=snapshot.model_dump(mode="json"))


if __name__ == "__main__":
    app()
