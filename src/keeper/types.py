"""
Keeper Type Definitions
=======================
Dataclasses and error taxonomy for the delta keeper.

These types form the "language" the reconciliation loop speaks:
- MarketSnapshot: One consistent read of the market-data service
- VaultState: Ledger A (HyperEVM vault) snapshot
- CoordinatorState / SpotVaultState: Ledger B (Arbitrum) snapshots
- DeltaResult: Output of the Delta Evaluator
- CycleOutcome: Everything one cycle observed, consumed by the MetricsSink

Fixed-point conventions follow the contracts: USD values carry 6 decimals
(``*_e6``), base-asset sizes carry 18 decimals (``*_wei``).
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple, Union

USD_DECIMALS = 6
WEI_DECIMALS = 18


class LifecycleState(Enum):
    """Vault lifecycle as reported by ``state()``."""

    IDLE = 0
    ACTIVE = 1
    EXITING = 2
    UNKNOWN = -1

    @classmethod
    def from_code(cls, code: int) -> "LifecycleState":
        try:
            return cls(int(code))
        except (TypeError, ValueError):
            return cls.UNKNOWN


# =============================================================================
# MARKET
# =============================================================================


@dataclass(frozen=True, slots=True)
class MarketSnapshot:
    """
    One market-data read for a symbol.

    Attributes:
        symbol: Coin name as listed in the universe (e.g. "ETH")
        funding_rate: Signed fraction per funding interval (positive = longs pay shorts)
        mark_price: Perp mark price in USD
        oracle_price: Oracle (index) price in USD
        open_interest: Open interest in base-asset units
        observed_at: Unix time the response was received
    """

    symbol: str
    funding_rate: float
    mark_price: float
    oracle_price: float
    open_interest: float
    observed_at: float
    previous_day_price: float = 0.0
    premium: float = 0.0


# =============================================================================
# LEDGER SNAPSHOTS
# =============================================================================


@dataclass(frozen=True, slots=True)
class OnChainDelta:
    """Delta as computed by the vault contract itself."""

    delta_usd_e6: int
    ratio_bps: int

    @property
    def delta_usd(self) -> float:
        return self.delta_usd_e6 / 10**USD_DECIMALS


@dataclass(frozen=True, slots=True)
class DeltaUnavailable:
    """
    The vault could not compute its own delta this cycle.

    Typically the oracle precompile is missing in the execution environment.
    A tolerated degraded mode, never alerted on.
    """

    reason: str


DeltaReading = Union[OnChainDelta, DeltaUnavailable]


@dataclass(frozen=True, slots=True)
class VaultState:
    """Read-only snapshot of the HyperEVM FundingCaptureVault."""

    lifecycle: LifecycleState
    spot_value_usd_e6: int
    perp_short_size_wei: int
    on_chain_delta: DeltaReading = field(default_factory=lambda: DeltaUnavailable("not read"))

    @property
    def spot_value_usd(self) -> float:
        return self.spot_value_usd_e6 / 10**USD_DECIMALS

    @property
    def perp_short_size(self) -> float:
        return self.perp_short_size_wei / 10**WEI_DECIMALS

    @property
    def on_chain_delta_usd(self) -> Optional[float]:
        if isinstance(self.on_chain_delta, OnChainDelta):
            return self.on_chain_delta.delta_usd
        return None


@dataclass(frozen=True, slots=True)
class CoordinatorState:
    """Read-only snapshot of the Arbitrum DeltaCoordinator."""

    perp_short_size_wei: int
    perp_short_value_usd_e6: int
    spot_value_usd_e6: int
    last_sync_time: int
    is_strategy_active: bool

    @property
    def perp_short_value_usd(self) -> float:
        return self.perp_short_value_usd_e6 / 10**USD_DECIMALS

    @property
    def spot_value_usd(self) -> float:
        return self.spot_value_usd_e6 / 10**USD_DECIMALS


@dataclass(frozen=True, slots=True)
class SpotVaultState:
    """Read-only snapshot of the Arbitrum SpotLongVault."""

    lifecycle: LifecycleState
    target_eth_wei: int
    weth_balance_wei: int
    usdc_balance_e6: int


# =============================================================================
# DERIVED / OUTCOME
# =============================================================================


@dataclass(frozen=True, slots=True)
class DeltaResult:
    """
    Output of the Delta Evaluator.

    Sign convention: ``delta_usd = spot - perp``; positive means net long spot.
    ``spot_value_usd`` and ``perp_value_usd`` are the legs it was computed from.
    """

    delta_usd: float
    delta_ratio_bps: int
    needs_rebalance: bool
    spot_value_usd: float = 0.0
    perp_value_usd: float = 0.0

    def __repr__(self) -> str:
        status = "REBALANCE" if self.needs_rebalance else "OK"
        return (
            f"DeltaResult({status}: Delta=${self.delta_usd:,.2f}, "
            f"Ratio={self.delta_ratio_bps}bps)"
        )


@dataclass(frozen=True, slots=True)
class TxReceipt:
    """Inclusion receipt of a keeper transaction."""

    tx_hash: str
    block_number: int
    status: int = 1
    gas_used: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == 1


@dataclass(frozen=True, slots=True)
class StepError:
    """A failed step of one cycle."""

    step: str
    kind: str
    message: str

    def to_dict(self) -> dict:
        return {"step": self.step, "kind": self.kind, "message": self.message}


@dataclass(frozen=True, slots=True)
class CycleOutcome:
    """Everything one reconciliation cycle observed. Discarded after recording."""

    timestamp: float = field(default_factory=time.time)
    market: Optional[MarketSnapshot] = None
    vault: Optional[VaultState] = None
    coordinator: Optional[CoordinatorState] = None
    spot_vault: Optional[SpotVaultState] = None
    delta: Optional[DeltaResult] = None
    sync_tx_hash: Optional[str] = None
    funding_favorable: Optional[bool] = None
    errors: Tuple[StepError, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.errors

    def failed_steps(self) -> Tuple[str, ...]:
        return tuple(e.step for e in self.errors)


# =============================================================================
# ERRORS
# =============================================================================


class KeeperError(Exception):
    """Base class for keeper failures."""


class MarketDataUnavailable(KeeperError):
    """Market-data service unreachable, non-2xx, or malformed response."""


class SymbolNotFound(MarketDataUnavailable):
    """Requested symbol is absent from the universe listing."""

    def __init__(self, symbol: str):
        self.symbol = symbol
        super().__init__(f"Coin {symbol} not found in universe")


class LedgerReadFailed(KeeperError):
    """An RPC read against a ledger failed (transient)."""

    def __init__(self, ledger: str, cause: BaseException):
        self.ledger = ledger
        self.cause = cause
        super().__init__(f"{ledger} read failed: {cause}")


class DeltaComputationUnavailable(KeeperError):
    """The ledger cannot compute its own delta. Tolerated, never alerted."""


class SyncTransactionFailed(KeeperError):
    """A keeper write was rejected or reverted."""

    def __init__(self, action: str, reason: str, tx_hash: Optional[str] = None):
        self.action = action
        self.reason = reason
        self.tx_hash = tx_hash
        suffix = f" (tx {tx_hash})" if tx_hash else ""
        super().__init__(f"{action} failed: {reason}{suffix}")


class SyncTransactionTimeout(KeeperError):
    """A keeper write was not observed on-chain within the wait bound."""

    def __init__(self, action: str, tx_hash: str, timeout_sec: float):
        self.action = action
        self.tx_hash = tx_hash
        self.timeout_sec = timeout_sec
        super().__init__(f"{action} not included after {timeout_sec:.0f}s (tx {tx_hash})")


class ConfigurationInvalid(KeeperError):
    """Fatal startup error: required configuration missing or malformed."""

    def __init__(self, problems):
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))
