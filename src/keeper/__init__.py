"""
Delta Keeper
============
Off-chain keeper for a two-ledger delta neutral position.

- Ledger A (HyperEVM): FundingCaptureVault holds the perp short
- Ledger B (Arbitrum): DeltaCoordinator + SpotLongVault hold the spot long
- Market data: Hyperliquid ``/info`` funding, mark and oracle prices

Exports independent components:
- HyperliquidGateway: market snapshots
- LedgerStateReader: read-only ledger snapshots
- PositionSyncWriter: perp position sync and manual operations
- ReconciliationScheduler: the periodic loop
- MetricsSink: counters, metrics and operator alerts
"""

from src.keeper.types import (
    CoordinatorState,
    CycleOutcome,
    DeltaResult,
    DeltaUnavailable,
    MarketSnapshot,
    OnChainDelta,
    SpotVaultState,
    VaultState,
    KeeperError,
    MarketDataUnavailable,
    SymbolNotFound,
    LedgerReadFailed,
    SyncTransactionFailed,
    SyncTransactionTimeout,
    ConfigurationInvalid,
)
from src.keeper.delta_evaluator import evaluate, perp_value_usd_e6
from src.keeper.market_data import HyperliquidGateway, is_funding_favorable
from src.keeper.ledger_reader import LedgerStateReader
from src.keeper.sync_writer import PositionSyncWriter, SyncWriterConfig
from src.keeper.metrics import MetricsSink
from src.keeper.scheduler import (
    ConfiguredCoordinator,
    MonitoringOnly,
    ReconciliationScheduler,
    SchedulerConfig,
)

__all__ = [
    # Types
    "CoordinatorState",
    "CycleOutcome",
    "DeltaResult",
    "DeltaUnavailable",
    "MarketSnapshot",
    "OnChainDelta",
    "SpotVaultState",
    "VaultState",
    # Errors
    "KeeperError",
    "MarketDataUnavailable",
    "SymbolNotFound",
    "LedgerReadFailed",
    "SyncTransactionFailed",
    "SyncTransactionTimeout",
    "ConfigurationInvalid",
    # Components
    "evaluate",
    "perp_value_usd_e6",
    "HyperliquidGateway",
    "is_funding_favorable",
    "LedgerStateReader",
    "PositionSyncWriter",
    "SyncWriterConfig",
    "MetricsSink",
    "ConfiguredCoordinator",
    "MonitoringOnly",
    "ReconciliationScheduler",
    "SchedulerConfig",
]
