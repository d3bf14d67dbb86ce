"""
Position Sync Writer
====================
State-changing keeper transactions.

Architecture:
1. SUBMIT → Build, sign and broadcast through the contract handle
2. WAIT → Bounded wait for the receipt
3. VERIFY → Reverted receipt = failure

The coordinator stores what ``syncPerpPosition`` sends verbatim, so the
keeper always pushes absolute values (last write wins, never additive).
The caller is responsible for computing them from the current cycle only.

Manual operations (rebalance, open/close short) reuse the same path and are
only reachable from the CLI.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from web3.exceptions import TimeExhausted

from src.keeper.delta_evaluator import units_from_wei, usd_from_e6
from src.keeper.types import SyncTransactionFailed, SyncTransactionTimeout, TxReceipt
from src.shared.system.logging import Logger


@dataclass(frozen=True, slots=True)
class SyncWriterConfig:
    """Configuration for keeper writes."""

    # Upper bound on waiting for inclusion
    inclusion_timeout_sec: float = 120.0


class PositionSyncWriter:
    """
    Pushes the HyperEVM perp position to the Arbitrum coordinator.

    Example:
        >>> writer = PositionSyncWriter()
        >>> receipt = await writer.sync_position(coordinator, size_wei, value_e6)
        >>> receipt.block_number
    """

    def __init__(self, config: Optional[SyncWriterConfig] = None):
        self.config = config or SyncWriterConfig()

    async def sync_position(self, coordinator, perp_size_wei: int, perp_value_usd_e6: int) -> TxReceipt:
        if perp_size_wei < 0 or perp_value_usd_e6 < 0:
            raise SyncTransactionFailed("syncPerpPosition", "negative exposure")

        Logger.info(
            f"[SYNC] Syncing perp short {units_from_wei(perp_size_wei):.4f} "
            f"(${usd_from_e6(perp_value_usd_e6):,.2f}) to coordinator"
        )
        return await self._submit_and_wait(
            "syncPerpPosition",
            lambda: coordinator.sync_perp_position(perp_size_wei, perp_value_usd_e6),
        )

    async def execute_rebalance(self, coordinator, min_amount_out: int = 0) -> TxReceipt:
        Logger.info(f"[SYNC] 🔧 Executing rebalance (minAmountOut={min_amount_out})")
        return await self._submit_and_wait(
            "executeRebalance",
            lambda: coordinator.execute_rebalance(min_amount_out),
        )

    async def open_short(self, vault, size_wei: int, max_slippage_bps: int = 50) -> TxReceipt:
        Logger.info(
            f"[SYNC] 📈 Opening short {units_from_wei(size_wei):.4f} "
            f"(max slippage {max_slippage_bps / 100:.2f}%)"
        )
        return await self._submit_and_wait(
            "openShort",
            lambda: vault.open_short(size_wei, max_slippage_bps),
        )

    async def close_short(self, vault) -> TxReceipt:
        Logger.info("[SYNC] 📉 Closing short position")
        return await self._submit_and_wait("closeShort", vault.close_short)

    # =========================================================================
    # SUBMISSION
    # =========================================================================

    async def _submit_and_wait(self, action: str, submit: Callable[[], Awaitable]) -> TxReceipt:
        try:
            pending = await submit()
        except Exception as e:
            raise SyncTransactionFailed(action, str(e) or type(e).__name__) from e

        Logger.info(f"[SYNC] {action} TX Hash: {pending.tx_hash}")

        timeout = self.config.inclusion_timeout_sec
        try:
            receipt = await asyncio.wait_for(pending.wait(timeout), timeout=timeout)
        except (asyncio.TimeoutError, TimeExhausted) as e:
            raise SyncTransactionTimeout(action, pending.tx_hash, timeout) from e
        except Exception as e:
            raise SyncTransactionFailed(action, str(e) or type(e).__name__, pending.tx_hash) from e

        if not receipt.succeeded:
            raise SyncTransactionFailed(action, "transaction reverted", receipt.tx_hash)

        Logger.success(f"[SYNC] {action} included in block {receipt.block_number}")
        return receipt
