"""
Reconciliation Scheduler Unit Tests
===================================
Cycle flow, step isolation and loop control with mocked components.
"""

import asyncio
import json

import pytest
from unittest.mock import AsyncMock, MagicMock

from src.keeper.admin import serve_admin
from src.keeper.alerts import TelegramAlerter
from src.keeper.metrics import MetricsSink
from src.keeper.scheduler import (
    ConfiguredCoordinator,
    MonitoringOnly,
    ReconciliationScheduler,
    SchedulerConfig,
    SchedulerState,
)
from src.keeper.types import (
    CoordinatorState,
    LedgerReadFailed,
    LifecycleState,
    MarketDataUnavailable,
    MarketSnapshot,
    SyncTransactionFailed,
    TxReceipt,
    VaultState,
)

ETH = 10**18
USD = 10**6


def market(mark=2500.0, funding=0.0002):
    return MarketSnapshot("ETH", funding, mark, mark, 1_000.0, 0.0)


def vault_state(perp_eth=40, spot_usd=100_000):
    return VaultState(LifecycleState.ACTIVE, spot_usd * USD, perp_eth * ETH)


def coordinator_state(perp_usd=100_000, spot_usd=99_000):
    return CoordinatorState(40 * ETH, perp_usd * USD, spot_usd * USD, 1_700_000_000, True)


@pytest.fixture
def sink(metrics_path):
    return MetricsSink(metrics_path=metrics_path, alerter=TelegramAlerter())


@pytest.fixture
def gateway():
    gw = MagicMock()
    gw.fetch_market_snapshot = AsyncMock(return_value=market())
    return gw


@pytest.fixture
def reader():
    r = MagicMock()
    r.read_vault_state = AsyncMock(return_value=vault_state())
    r.read_coordinator_state = AsyncMock(
        side_effect=[coordinator_state(perp_usd=90_000), coordinator_state()]
    )
    r.read_spot_vault_state = AsyncMock(return_value=MagicMock())
    return r


@pytest.fixture
def writer():
    w = MagicMock()
    w.sync_position = AsyncMock(return_value=TxReceipt(tx_hash="0xsync", block_number=10))
    return w


def make_scheduler(gateway, reader, writer, sink, link=None, **config):
    return ReconciliationScheduler(
        gateway=gateway,
        reader=reader,
        writer=writer,
        vault=MagicMock(name="vault"),
        link=link or ConfiguredCoordinator(MagicMock(name="coordinator")),
        sink=sink,
        config=SchedulerConfig(**config),
    )


# =============================================================================
# TEST: SINGLE CYCLE
# =============================================================================


@pytest.mark.unit
class TestRunCycle:

    @pytest.mark.asyncio
    async def test_healthy_cycle(self, gateway, reader, writer, sink):
        scheduler = make_scheduler(gateway, reader, writer, sink)

        outcome = await scheduler.run_cycle()

        # 40 ETH at $2500 mark → $100k in e6
        writer.sync_position.assert_awaited_once()
        _, size_wei, value_e6 = writer.sync_position.await_args.args
        assert size_wei == 40 * ETH
        assert value_e6 == 100_000 * USD

        assert outcome.ok
        assert outcome.sync_tx_hash == "0xsync"
        assert outcome.funding_favorable is True
        # Post-sync read: spot 99k, perp 100k
        assert outcome.delta.delta_usd == pytest.approx(-1_000)
        assert outcome.delta.delta_ratio_bps == 100
        assert not outcome.delta.needs_rebalance
        assert outcome.coordinator == coordinator_state()

        assert sink.cycle_count == 1
        assert sink.latest_outcome is outcome
        assert sink.alerts_raised == 0

    @pytest.mark.asyncio
    async def test_market_failure_yields_partial_outcome(self, gateway, reader, writer, sink):
        gateway.fetch_market_snapshot = AsyncMock(side_effect=MarketDataUnavailable("HTTP 503"))
        scheduler = make_scheduler(gateway, reader, writer, sink)

        outcome = await scheduler.run_cycle()

        assert outcome.market is None
        assert outcome.vault == vault_state()
        assert outcome.failed_steps() == ("market",)
        assert outcome.errors[0].kind == "MarketDataUnavailable"
        assert outcome.funding_favorable is None
        # No sync without a same-cycle price, and no delta without a perp value
        writer.sync_position.assert_not_awaited()
        assert outcome.delta is None
        assert sink.cycle_count == 1

    @pytest.mark.asyncio
    async def test_vault_failure_skips_sync(self, gateway, reader, writer, sink):
        reader.read_vault_state = AsyncMock(side_effect=LedgerReadFailed("hyperevm_vault", OSError("rpc")))
        scheduler = make_scheduler(gateway, reader, writer, sink)

        outcome = await scheduler.run_cycle()

        writer.sync_position.assert_not_awaited()
        assert outcome.failed_steps() == ("vault",)
        assert outcome.market is not None

    @pytest.mark.asyncio
    async def test_sync_failure_falls_back_to_local_values(self, gateway, reader, writer, sink):
        writer.sync_position = AsyncMock(
            side_effect=SyncTransactionFailed("syncPerpPosition", "Only keeper")
        )
        scheduler = make_scheduler(gateway, reader, writer, sink)

        outcome = await scheduler.run_cycle()

        assert outcome.failed_steps() == ("sync",)
        assert outcome.sync_tx_hash is None
        # No post-sync read after a failed sync
        assert reader.read_coordinator_state.await_count == 1
        # Spot from the pre-sync read (99k), perp from this cycle's mark (100k)
        assert outcome.delta.delta_usd == pytest.approx(-1_000)
        assert outcome.delta.perp_value_usd == pytest.approx(100_000)

    @pytest.mark.asyncio
    async def test_perp_metric_is_the_value_delta_used(self, gateway, reader, writer, sink, metrics_path):
        """After a failed sync the perp metric is the local mark value, not the stale coordinator read."""
        writer.sync_position = AsyncMock(
            side_effect=SyncTransactionFailed("syncPerpPosition", "Only keeper")
        )
        scheduler = make_scheduler(gateway, reader, writer, sink)

        await scheduler.run_cycle()

        with open(metrics_path, encoding="utf-8") as f:
            entries = {e["name"]: e["value"] for e in map(json.loads, f)}
        # Pre-sync coordinator reported 90k; this cycle's mark values the short at 100k
        assert entries["perp_value_usd"] == pytest.approx(100_000)
        assert entries["delta_usd"] == pytest.approx(-1_000)

    @pytest.mark.asyncio
    async def test_post_sync_read_failure_uses_local_perp(self, gateway, reader, writer, sink):
        reader.read_coordinator_state = AsyncMock(
            side_effect=[coordinator_state(spot_usd=95_000), LedgerReadFailed("arbitrum_coordinator", OSError("rpc"))]
        )
        scheduler = make_scheduler(gateway, reader, writer, sink)

        outcome = await scheduler.run_cycle()

        assert outcome.failed_steps() == ("coordinator_post_sync",)
        assert outcome.sync_tx_hash == "0xsync"
        assert outcome.delta.delta_usd == pytest.approx(-5_000)
        assert outcome.delta.delta_ratio_bps == 500

    @pytest.mark.asyncio
    async def test_monitoring_only_skips_sync_and_delta(self, gateway, reader, writer, sink):
        scheduler = make_scheduler(gateway, reader, writer, sink, link=MonitoringOnly())

        outcome = await scheduler.run_cycle()

        assert scheduler.monitoring_only
        reader.read_coordinator_state.assert_not_awaited()
        writer.sync_position.assert_not_awaited()
        assert outcome.ok
        assert outcome.delta is None
        assert outcome.market is not None
        assert outcome.vault is not None

    @pytest.mark.asyncio
    async def test_spot_vault_read_when_configured(self, gateway, reader, writer, sink):
        spot_vault = MagicMock(name="spot_vault")
        link = ConfiguredCoordinator(MagicMock(name="coordinator"), spot_vault)
        scheduler = make_scheduler(gateway, reader, writer, sink, link=link)

        outcome = await scheduler.run_cycle()

        reader.read_spot_vault_state.assert_awaited_once_with(spot_vault)
        assert outcome.spot_vault is not None

    @pytest.mark.asyncio
    async def test_delta_breach_raises_alert(self, gateway, reader, writer, sink):
        reader.read_coordinator_state = AsyncMock(
            side_effect=[coordinator_state(spot_usd=80_000), coordinator_state(spot_usd=80_000)]
        )
        scheduler = make_scheduler(gateway, reader, writer, sink)

        outcome = await scheduler.run_cycle()

        assert outcome.delta.needs_rebalance
        assert outcome.delta.delta_ratio_bps == 2_000
        assert sink.alerts_raised == 1
        # Alerting only: the keeper never rebalances on its own
        writer.execute_rebalance.assert_not_called()

    @pytest.mark.asyncio
    async def test_unfavorable_funding_raises_alert(self, gateway, reader, writer, sink):
        gateway.fetch_market_snapshot = AsyncMock(return_value=market(funding=-0.00005))
        scheduler = make_scheduler(gateway, reader, writer, sink)

        outcome = await scheduler.run_cycle()

        assert outcome.funding_favorable is False
        assert sink.alerts_raised == 1
        # Funding is reported, the sync still runs
        writer.sync_position.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_each_cycle_uses_its_own_mark_price(self, gateway, reader, writer, sink):
        gateway.fetch_market_snapshot = AsyncMock(side_effect=[market(mark=2500.0), market(mark=3000.0)])
        reader.read_coordinator_state = AsyncMock(return_value=coordinator_state())
        scheduler = make_scheduler(gateway, reader, writer, sink)

        await scheduler.run_cycle()
        await scheduler.run_cycle()

        values = [call.args[2] for call in writer.sync_position.await_args_list]
        assert values == [100_000 * USD, 120_000 * USD]

    @pytest.mark.asyncio
    async def test_state_is_running_during_cycle(self, gateway, reader, writer, sink):
        scheduler = make_scheduler(gateway, reader, writer, sink)
        observed = []

        async def fetch(symbol):
            observed.append(scheduler.state)
            return market()

        gateway.fetch_market_snapshot = fetch

        await scheduler.run_cycle()

        assert observed == [SchedulerState.RUNNING]
        assert scheduler.state == SchedulerState.IDLE


# =============================================================================
# TEST: LOOP CONTROL
# =============================================================================


@pytest.mark.unit
class TestLoop:

    @pytest.mark.asyncio
    async def test_max_cycles(self, gateway, reader, writer, sink):
        reader.read_coordinator_state = AsyncMock(return_value=coordinator_state())
        scheduler = make_scheduler(gateway, reader, writer, sink, scan_interval_ms=1)

        await scheduler.start(max_cycles=3)

        assert sink.cycle_count == 3
        assert scheduler.state == SchedulerState.IDLE

    @pytest.mark.asyncio
    async def test_stop_interrupts_sleep(self, gateway, reader, writer, sink):
        reader.read_coordinator_state = AsyncMock(return_value=coordinator_state())
        scheduler = make_scheduler(gateway, reader, writer, sink, scan_interval_ms=60_000)

        task = asyncio.create_task(scheduler.start())
        while sink.cycle_count < 1:
            await asyncio.sleep(0.01)
        scheduler.stop()

        await asyncio.wait_for(task, timeout=1.0)

        assert sink.cycle_count == 1
        assert scheduler.state == SchedulerState.IDLE

    @pytest.mark.asyncio
    async def test_failed_cycles_do_not_stop_the_loop(self, gateway, reader, writer, sink):
        gateway.fetch_market_snapshot = AsyncMock(side_effect=MarketDataUnavailable("down"))
        reader.read_vault_state = AsyncMock(side_effect=LedgerReadFailed("hyperevm_vault", OSError("rpc")))
        reader.read_coordinator_state = AsyncMock(side_effect=LedgerReadFailed("arbitrum_coordinator", OSError("rpc")))
        scheduler = make_scheduler(gateway, reader, writer, sink, scan_interval_ms=1)

        await scheduler.start(max_cycles=2)

        assert sink.cycle_count == 2
        assert set(sink.latest_outcome.failed_steps()) == {"market", "vault", "coordinator"}

    @pytest.mark.asyncio
    async def test_stop_before_start_runs_no_cycle(self, gateway, reader, writer, sink):
        scheduler = make_scheduler(gateway, reader, writer, sink, scan_interval_ms=60_000)

        scheduler.stop()
        await asyncio.wait_for(scheduler.start(), timeout=1.0)

        assert sink.cycle_count == 0
        gateway.fetch_market_snapshot.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_restart_after_stop(self, gateway, reader, writer, sink):
        reader.read_coordinator_state = AsyncMock(return_value=coordinator_state())
        scheduler = make_scheduler(gateway, reader, writer, sink, scan_interval_ms=1)

        scheduler.stop()
        await scheduler.start()
        await scheduler.start(max_cycles=2)

        assert sink.cycle_count == 2

    @pytest.mark.asyncio
    async def test_admin_start_failure_leaves_cycle_running(self, gateway, reader, writer, sink):
        """uvicorn exits with SystemExit(1) on a busy port; the in-flight cycle still completes."""
        reader.read_coordinator_state = AsyncMock(return_value=coordinator_state())

        async def slow_fetch(symbol):
            await asyncio.sleep(0.05)
            return market()

        gateway.fetch_market_snapshot = slow_fetch
        scheduler = make_scheduler(gateway, reader, writer, sink, scan_interval_ms=1)
        server = MagicMock()
        server.serve = AsyncMock(side_effect=SystemExit(1))

        admin_task = asyncio.create_task(serve_admin(server))
        await scheduler.start(max_cycles=1)
        await admin_task

        server.serve.assert_awaited_once()
        assert sink.cycle_count == 1
        assert sink.latest_outcome.ok
