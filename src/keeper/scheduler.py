"""
Reconciliation Cycle Scheduler
==============================
The "Heartbeat" of the keeper.

Each cycle:
1. READ → market snapshot ∥ HyperEVM vault ∥ Arbitrum coordinator ∥ spot vault
2. SYNC → push the vault's perp short (valued at this cycle's mark) to the coordinator
3. RE-READ → coordinator state after the sync lands
4. EVALUATE → local delta against the configured threshold
5. RECORD → outcome to the MetricsSink, warnings for breaches

Every step is isolated: a failure is logged and recorded in the outcome and
the remaining steps still run when their inputs exist. There is no retry
within a cycle; the next cycle is the retry. Cycles never overlap.

The coordinator is optional. Without one the keeper runs monitoring-only:
market and vault are still read, sync and delta evaluation are skipped.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, List, Optional, Tuple, Union

from src.keeper.delta_evaluator import evaluate, perp_value_usd_e6, usd_from_e6
from src.keeper.ledger_reader import LedgerStateReader
from src.keeper.market_data import HyperliquidGateway, annualized_funding_apr, is_funding_favorable
from src.keeper.metrics import MetricsSink
from src.keeper.sync_writer import PositionSyncWriter
from src.keeper.types import (
    CoordinatorState,
    CycleOutcome,
    DeltaResult,
    MarketSnapshot,
    StepError,
    TxReceipt,
    VaultState,
)
from src.shared.system.logging import Logger


# =============================================================================
# CONFIGURATION
# =============================================================================


class SchedulerState(Enum):
    """Scheduler lifecycle. There is no failed state by construction."""
    IDLE = "IDLE"
    RUNNING = "RUNNING"


@dataclass(frozen=True)
class SchedulerConfig:
    """Configuration for the reconciliation loop."""

    symbol: str = "ETH"

    # Delta ratio at or above which a rebalance is recommended
    delta_threshold_bps: int = 500

    # Funding at or below this is reported as unfavorable
    min_funding_rate: float = 0.0001

    # Sleep between the end of one cycle and the start of the next
    scan_interval_ms: int = 300_000


@dataclass(frozen=True)
class ConfiguredCoordinator:
    """Ledger B is wired up: sync and delta evaluation run every cycle."""

    coordinator: Any
    spot_vault: Optional[Any] = None


@dataclass(frozen=True)
class MonitoringOnly:
    """No coordinator: market and vault monitoring only."""


CoordinatorLink = Union[ConfiguredCoordinator, MonitoringOnly]


# =============================================================================
# SCHEDULER
# =============================================================================


class ReconciliationScheduler:
    """
    Periodic reconciliation between the two ledgers.

    Example:
        >>> scheduler = ReconciliationScheduler(gateway, reader, writer, vault, MonitoringOnly(), sink)
        >>> outcome = await scheduler.run_cycle()
        >>> await scheduler.start()        # until stop()
    """

    def __init__(
        self,
        gateway: HyperliquidGateway,
        reader: LedgerStateReader,
        writer: PositionSyncWriter,
        vault: Any,
        link: CoordinatorLink,
        sink: MetricsSink,
        config: Optional[SchedulerConfig] = None,
    ):
        self.gateway = gateway
        self.reader = reader
        self.writer = writer
        self.vault = vault
        self.link = link
        self.sink = sink
        self.config = config or SchedulerConfig()

        self._state = SchedulerState.IDLE
        self._stop_event = asyncio.Event()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def monitoring_only(self) -> bool:
        return isinstance(self.link, MonitoringOnly)

    async def start(self, max_cycles: Optional[int] = None) -> None:
        """
        Run cycles until stop() is called (or ``max_cycles`` have run).

        A stop() requested before start() is honored: no cycle runs. The stop
        flag is reset on return so the scheduler can be started again.
        """
        interval_sec = self.config.scan_interval_ms / 1000.0
        Logger.info(
            f"[KEEPER] 🚀 Starting reconciliation loop "
            f"(interval {interval_sec:.0f}s, {'monitoring-only' if self.monitoring_only else 'sync enabled'})"
        )

        cycles = 0

        while not self._stop_event.is_set():
            await self.run_cycle()
            cycles += 1

            if max_cycles is not None and cycles >= max_cycles:
                break
            if self._stop_event.is_set():
                break

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval_sec)
            except asyncio.TimeoutError:
                pass

        self._stop_event.clear()
        Logger.info(f"[KEEPER] Reconciliation loop stopped after {cycles} cycle(s)")

    def stop(self) -> None:
        """Cooperative stop; the in-flight cycle completes first."""
        Logger.info("[KEEPER] 🛑 Stop requested")
        self._stop_event.set()

    # =========================================================================
    # CYCLE
    # =========================================================================

    async def run_cycle(self) -> CycleOutcome:
        self._state = SchedulerState.RUNNING
        try:
            return await self._cycle_body()
        finally:
            self._state = SchedulerState.IDLE

    async def _cycle_body(self) -> CycleOutcome:
        started = time.time()
        errors: List[StepError] = []
        Logger.section(f"Keeper Cycle @ {time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(started))}")

        # 1. Independent reads
        coordinator = spot_vault = None
        reads = [
            self._step("market", self.gateway.fetch_market_snapshot(self.config.symbol)),
            self._step("vault", self.reader.read_vault_state(self.vault)),
        ]
        if isinstance(self.link, ConfiguredCoordinator):
            reads.append(self._step("coordinator", self.reader.read_coordinator_state(self.link.coordinator)))
            if self.link.spot_vault is not None:
                reads.append(self._step("spot_vault", self.reader.read_spot_vault_state(self.link.spot_vault)))

        results = await asyncio.gather(*reads)
        for _, error in results:
            if error:
                errors.append(error)

        market: Optional[MarketSnapshot] = results[0][0]
        vault: Optional[VaultState] = results[1][0]
        if len(results) > 2:
            coordinator = results[2][0]
        if len(results) > 3:
            spot_vault = results[3][0]

        funding_favorable = self._report_funding(market)

        # 2-4. Sync, re-read, evaluate
        delta: Optional[DeltaResult] = None
        sync_tx_hash: Optional[str] = None

        if isinstance(self.link, ConfiguredCoordinator):
            delta, sync_tx_hash, coordinator = await self._reconcile(
                self.link, market, vault, coordinator, errors
            )
        else:
            Logger.info("[KEEPER] ⏭️ Monitoring-only: sync and delta evaluation skipped")

        # 5. Record
        outcome = CycleOutcome(
            timestamp=started,
            market=market,
            vault=vault,
            coordinator=coordinator,
            spot_vault=spot_vault,
            delta=delta,
            sync_tx_hash=sync_tx_hash,
            funding_favorable=funding_favorable,
            errors=tuple(errors),
        )
        self.sink.record_cycle(outcome)

        if errors:
            Logger.warning(
                f"[KEEPER] Cycle finished with {len(errors)} failed step(s)",
                data={"failed": list(outcome.failed_steps())},
            )
        else:
            Logger.success(f"[KEEPER] Cycle finished in {time.time() - started:.2f}s")

        return outcome

    async def _reconcile(
        self,
        link: ConfiguredCoordinator,
        market: Optional[MarketSnapshot],
        vault: Optional[VaultState],
        coordinator_before: Optional[CoordinatorState],
        errors: List[StepError],
    ) -> Tuple[Optional[DeltaResult], Optional[str], Optional[CoordinatorState]]:
        # Perp value from this cycle's vault read and mark price only
        local_perp_e6: Optional[int] = None
        receipt: Optional[TxReceipt] = None

        if market is not None and vault is not None:
            local_perp_e6 = perp_value_usd_e6(vault.perp_short_size_wei, market.mark_price)
            receipt, error = await self._step(
                "sync",
                self.writer.sync_position(link.coordinator, vault.perp_short_size_wei, local_perp_e6),
            )
            if error:
                errors.append(error)
        else:
            Logger.warning("[SYNC] ⏭️ Skipping position sync: market or vault data missing this cycle")

        coordinator_after: Optional[CoordinatorState] = None
        if receipt is not None:
            coordinator_after, error = await self._step(
                "coordinator_post_sync", self.reader.read_coordinator_state(link.coordinator)
            )
            if error:
                errors.append(error)

        latest = coordinator_after or coordinator_before
        spot_usd = latest.spot_value_usd if latest is not None else None

        if coordinator_after is not None:
            perp_usd: Optional[float] = coordinator_after.perp_short_value_usd
        elif local_perp_e6 is not None:
            perp_usd = usd_from_e6(local_perp_e6)
        else:
            perp_usd = None

        delta = None
        if spot_usd is None or perp_usd is None:
            Logger.warning("[DELTA] Delta unavailable this cycle: missing exposure inputs")
        else:
            delta = evaluate(spot_usd, perp_usd, self.config.delta_threshold_bps)
            self._report_delta(delta, spot_usd, perp_usd)

        return delta, receipt.tx_hash if receipt else None, latest

    # =========================================================================
    # STEP ISOLATION
    # =========================================================================

    async def _step(self, step: str, awaitable: Awaitable) -> Tuple[Any, Optional[StepError]]:
        """Await one step; a failure becomes a StepError instead of propagating."""
        try:
            return await awaitable, None
        except Exception as e:
            error = StepError(step=step, kind=type(e).__name__, message=str(e))
            Logger.error(f"[KEEPER] ❌ Step '{step}' failed: {e}", data=error.to_dict())
            return None, error

    # =========================================================================
    # REPORTING
    # =========================================================================

    def _report_funding(self, market: Optional[MarketSnapshot]) -> Optional[bool]:
        if market is None:
            return None

        favorable = is_funding_favorable(market, self.config.min_funding_rate)
        apr = annualized_funding_apr(market.funding_rate)
        Logger.info(
            f"[MARKET] {market.symbol} Funding {market.funding_rate * 100:.6f}% "
            f"({apr:.2f}% APR) Mark ${market.mark_price:,.2f} Oracle ${market.oracle_price:,.2f} "
            f"OI {market.open_interest:,.2f}"
        )
        if not favorable:
            self.sink.alert(
                f"Funding unfavorable for {market.symbol}: {market.funding_rate * 100:.6f}% "
                f"(min {self.config.min_funding_rate * 100:.4f}%)",
                data={"funding_rate": market.funding_rate, "apr": round(apr, 2)},
            )
        return favorable

    def _report_delta(self, delta: DeltaResult, spot_usd: float, perp_usd: float) -> None:
        data = {
            "spot_usd": round(spot_usd, 2),
            "perp_usd": round(perp_usd, 2),
            "delta_usd": round(delta.delta_usd, 2),
            "ratio_bps": delta.delta_ratio_bps,
            "threshold_bps": self.config.delta_threshold_bps,
        }
        if delta.needs_rebalance:
            self.sink.alert(
                f"Delta {delta.delta_ratio_bps / 100:.2f}% exceeds threshold "
                f"{self.config.delta_threshold_bps / 100:.2f}%. Manual rebalancing recommended",
                data=data,
            )
        else:
            Logger.info(f"[DELTA] ✅ Delta within acceptable range: {delta!r}", data=data)
