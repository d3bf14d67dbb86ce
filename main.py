"""
Delta Keeper - Unified CLI Entrypoint
=====================================
HyperEVM (Perp Short) + Arbitrum (Spot Long) keeper bot.

Commands:
    python main.py run                   # Start the reconciliation loop (+ admin server)
    python main.py run --cycles 1        # Single cycle, then exit
    python main.py status                # Wallet balances and vault state
    python main.py funding               # Funding table (no configuration needed)

Manual operations (confirmation required):
    python main.py rebalance --min-out 0
    python main.py open-short --size 0.5 --slippage-bps 50
    python main.py close-short
"""

import asyncio
import signal
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from web3 import Web3

from config.settings import KeeperConfig, Settings
from src.keeper.admin import build_admin_server, serve_admin
from src.keeper.alerts import TelegramAlerter
from src.keeper.contracts import ChainClient, CoordinatorContract, SpotVaultContract, VaultContract
from src.keeper.delta_evaluator import units_from_wei
from src.keeper.ledger_reader import LedgerStateReader
from src.keeper.market_data import HyperliquidGateway, annualized_funding_apr
from src.keeper.metrics import MetricsSink
from src.keeper.scheduler import (
    ConfiguredCoordinator,
    MonitoringOnly,
    ReconciliationScheduler,
    SchedulerConfig,
)
from src.keeper.sync_writer import PositionSyncWriter, SyncWriterConfig
from src.keeper.types import ConfigurationInvalid, KeeperError
from src.shared.system.logging import Logger

app = typer.Typer(
    name="delta-keeper",
    help="Delta Neutral Strategy Keeper - HyperEVM perp short + Arbitrum spot long",
    add_completion=False,
    rich_markup_mode="rich",
)

console = Console()

DEFAULT_FUNDING_COINS = "BTC,ETH,SOL,DOGE,ARB"


# ═══════════════════════════════════════════════════════════════════════════════
# RUNTIME WIRING
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class KeeperRuntime:
    """Everything the commands need, built once from a validated config."""

    config: KeeperConfig
    hyperevm: ChainClient
    arbitrum: ChainClient
    vault: VaultContract
    coordinator: Optional[CoordinatorContract]
    spot_vault: Optional[SpotVaultContract]
    gateway: HyperliquidGateway
    reader: LedgerStateReader
    writer: PositionSyncWriter
    sink: MetricsSink

    @property
    def chains(self) -> List[ChainClient]:
        return [self.hyperevm, self.arbitrum]


def _load_config() -> KeeperConfig:
    try:
        return Settings.validate()
    except ConfigurationInvalid as e:
        console.print("[bold red]❌ Configuration error:[/bold red]")
        for problem in e.problems:
            console.print(f"   • {problem}")
        console.print("\n[dim]Please set up your .env file. See .env.example for reference.[/dim]")
        raise typer.Exit(1)


def build_runtime(cfg: KeeperConfig) -> KeeperRuntime:
    hyperevm = ChainClient("hyperevm", cfg.hyperevm_rpc, cfg.keeper_private_key)
    arbitrum = ChainClient("arbitrum", cfg.arbitrum_rpc, cfg.keeper_private_key)

    coordinator = (
        CoordinatorContract(arbitrum, cfg.arbitrum_coordinator) if cfg.arbitrum_coordinator else None
    )
    spot_vault = (
        SpotVaultContract(arbitrum, cfg.arbitrum_spot_vault) if cfg.arbitrum_spot_vault else None
    )

    return KeeperRuntime(
        config=cfg,
        hyperevm=hyperevm,
        arbitrum=arbitrum,
        vault=VaultContract(hyperevm, cfg.hyperevm_vault),
        coordinator=coordinator,
        spot_vault=spot_vault,
        gateway=HyperliquidGateway(cfg.hyperliquid_api_url),
        reader=LedgerStateReader(),
        writer=PositionSyncWriter(SyncWriterConfig(inclusion_timeout_sec=cfg.tx_timeout_sec)),
        sink=MetricsSink(alerter=TelegramAlerter(cfg.telegram_bot_token, cfg.telegram_chat_id)),
    )


def build_scheduler(runtime: KeeperRuntime) -> ReconciliationScheduler:
    cfg = runtime.config
    if runtime.coordinator is not None:
        link = ConfiguredCoordinator(runtime.coordinator, runtime.spot_vault)
    else:
        link = MonitoringOnly()

    return ReconciliationScheduler(
        gateway=runtime.gateway,
        reader=runtime.reader,
        writer=runtime.writer,
        vault=runtime.vault,
        link=link,
        sink=runtime.sink,
        config=SchedulerConfig(
            symbol=cfg.market_symbol,
            delta_threshold_bps=cfg.delta_threshold_bps,
            min_funding_rate=cfg.min_funding_rate,
            scan_interval_ms=cfg.scan_interval_ms,
        ),
    )


def _banner() -> None:
    console.print(Panel.fit(
        "[bold cyan]Delta Neutral Strategy - Keeper Bot[/bold cyan]\n"
        "HyperEVM (Perp Short) + Arbitrum (Spot Long)",
        border_style="cyan",
    ))


def _confirm(message: str, yes: bool) -> None:
    if yes:
        return
    if not typer.confirm(f"\n⚠️  {message} Continue?", default=False):
        console.print("[yellow]Aborted.[/yellow]")
        raise typer.Exit(0)


async def print_status(runtime: KeeperRuntime) -> Dict[str, int]:
    """Wallet balances plus one vault read. Failures are printed, not raised."""
    cfg = runtime.config
    console.rule("[bold]📋 KEEPER STATUS[/bold]")
    console.print(f"👛 Keeper Wallet: [cyan]{runtime.hyperevm.address}[/cyan]")
    console.print(f"   HyperEVM Vault: {cfg.hyperevm_vault}")
    console.print(f"   Arbitrum Coordinator: {cfg.arbitrum_coordinator or '[yellow]Not configured (monitoring-only)[/yellow]'}")
    console.print(f"   Scan Interval: {cfg.scan_interval_ms / 1000:.0f}s")

    balances: Dict[str, int] = {}
    try:
        balances = await runtime.reader.read_wallet_balances(runtime.chains)
        console.print(f"   HyperEVM Balance: {units_from_wei(balances['hyperevm']):.6f} HYPE")
        console.print(f"   Arbitrum Balance: {units_from_wei(balances['arbitrum']):.6f} ETH")
    except KeeperError as e:
        console.print(f"[red]   Failed to fetch balances: {e}[/red]")

    try:
        vault = await runtime.reader.read_vault_state(runtime.vault)
        console.print(
            f"🏦 Vault: {vault.lifecycle.name} | Spot ${vault.spot_value_usd:,.2f} | "
            f"Perp short {vault.perp_short_size:.4f} ETH"
        )
    except KeeperError as e:
        console.print(f"[red]   Failed to read vault: {e}[/red]")

    console.rule()
    return balances


# ═══════════════════════════════════════════════════════════════════════════════
# COMMAND: RUN
# ═══════════════════════════════════════════════════════════════════════════════

async def _run_keeper(runtime: KeeperRuntime, cycles: Optional[int], admin: bool) -> None:
    scheduler = build_scheduler(runtime)

    balances = await print_status(runtime)
    runtime.sink.record_wallet_balances(balances)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, scheduler.stop)
        except (NotImplementedError, RuntimeError):
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(scheduler.stop))

    server = None
    server_task = None
    if admin:
        server = build_admin_server(runtime.sink, runtime.config.admin_port)
        server_task = asyncio.create_task(serve_admin(server))

    try:
        await scheduler.start(max_cycles=cycles)
    finally:
        if server is not None:
            server.should_exit = True
            await server_task
        await runtime.sink.alerter.drain()


@app.command()
def run(
    cycles: Optional[int] = typer.Option(
        None,
        "--cycles",
        help="Stop after N cycles (default: run until interrupted)",
        min=1,
    ),
    admin: bool = typer.Option(
        True,
        "--admin/--no-admin",
        help="Serve the admin dashboard on ADMIN_PORT",
    ),
):
    """
    Start the reconciliation loop.

    Without ARBITRUM_COORDINATOR the keeper runs [yellow]monitoring-only[/yellow]:
    market and vault are read, sync and delta evaluation are skipped.

    \b
    Examples:
        python main.py run
        python main.py run --cycles 1 --no-admin
    """
    _banner()
    cfg = _load_config()
    runtime = build_runtime(cfg)

    try:
        asyncio.run(_run_keeper(runtime, cycles, admin))
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutdown requested.[/yellow]")


# ═══════════════════════════════════════════════════════════════════════════════
# COMMAND: STATUS
# ═══════════════════════════════════════════════════════════════════════════════

@app.command()
def status():
    """Print keeper wallet balances and the current vault state."""
    _banner()
    runtime = build_runtime(_load_config())
    asyncio.run(print_status(runtime))


# ═══════════════════════════════════════════════════════════════════════════════
# COMMAND: FUNDING
# ═══════════════════════════════════════════════════════════════════════════════

@app.command()
def funding(
    coins: str = typer.Option(
        DEFAULT_FUNDING_COINS,
        "--coins",
        help="Comma-separated coin list",
    ),
):
    """
    Show Hyperliquid funding rates. Runs without any keeper configuration.

    \b
    Examples:
        python main.py funding
        python main.py funding --coins ETH,BTC
    """
    symbols = [c.strip().upper() for c in coins.split(",") if c.strip()]
    if "ETH" not in symbols:
        symbols.append("ETH")

    console.print("📊 Checking Hyperliquid Funding Rates...\n")
    gateway = HyperliquidGateway(Settings.HYPERLIQUID_API_URL)

    try:
        snapshots = asyncio.run(gateway.fetch_market_snapshots(symbols))
    except KeeperError as e:
        console.print(f"[bold red]❌ Failed to fetch market data: {e}[/bold red]")
        raise typer.Exit(1)

    table = Table(title="Funding Rates")
    table.add_column("Coin", style="cyan")
    table.add_column("Funding Rate", justify="right")
    table.add_column("Mark Px", justify="right")
    table.add_column("Oracle Px", justify="right")

    for symbol in symbols:
        snap = snapshots.get(symbol)
        if snap is None:
            table.add_row(symbol, "[red]ERROR[/red]", "[red]ERROR[/red]", "[red]ERROR[/red]")
            continue
        table.add_row(
            symbol,
            f"{snap.funding_rate * 100:.6f}%",
            f"${snap.mark_price:,.2f}",
            f"${snap.oracle_price:,.2f}",
        )
    console.print(table)

    eth = snapshots.get("ETH")
    console.print("\n📈 ETH Annualized Funding Rate:")
    if eth is None:
        console.print("   [red]Failed to fetch[/red]")
        return
    console.print(f"   {annualized_funding_apr(eth.funding_rate):.2f}% APR")
    if eth.funding_rate > 0:
        console.print("   [green]✅ Positive (Short earns)[/green]")
    else:
        console.print("   [yellow]⚠️ Negative (Short pays)[/yellow]")


# ═══════════════════════════════════════════════════════════════════════════════
# MANUAL OPERATIONS
# ═══════════════════════════════════════════════════════════════════════════════

def _run_manual(action) -> None:
    try:
        receipt = asyncio.run(action)
    except KeeperError as e:
        Logger.error(f"[KEEPER] ❌ {e}")
        console.print(f"[bold red]❌ {e}[/bold red]")
        raise typer.Exit(1)
    console.print(f"[green]✅ Included in block {receipt.block_number}[/green] (tx {receipt.tx_hash})")


@app.command()
def rebalance(
    min_out: int = typer.Option(0, "--min-out", help="Minimum swap output (raw units)", min=0),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
):
    """Execute a manual rebalance on the Arbitrum coordinator."""
    runtime = build_runtime(_load_config())
    if runtime.coordinator is None:
        console.print("[bold red]❌ Arbitrum coordinator not configured[/bold red]")
        raise typer.Exit(1)

    _confirm(f"Execute rebalance on {runtime.config.arbitrum_coordinator} (minAmountOut={min_out}).", yes)
    _run_manual(runtime.writer.execute_rebalance(runtime.coordinator, min_out))


@app.command("open-short")
def open_short(
    size: float = typer.Option(..., "--size", help="Short size in ETH", min=0.0),
    slippage_bps: int = typer.Option(50, "--slippage-bps", help="Max slippage in bps", min=0, max=10_000),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
):
    """Open (or increase) the perp short on the HyperEVM vault."""
    size_wei = Web3.to_wei(Decimal(str(size)), "ether")
    if size_wei <= 0:
        console.print("[bold red]❌ --size must be positive[/bold red]")
        raise typer.Exit(1)

    runtime = build_runtime(_load_config())
    _confirm(f"Open short {size} ETH with max slippage {slippage_bps / 100:.2f}%.", yes)
    _run_manual(runtime.writer.open_short(runtime.vault, size_wei, slippage_bps))


@app.command("close-short")
def close_short(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
):
    """Close the perp short on the HyperEVM vault."""
    runtime = build_runtime(_load_config())
    _confirm("Close the perp short position.", yes)
    _run_manual(runtime.writer.close_short(runtime.vault))


if __name__ == "__main__":
    app()
