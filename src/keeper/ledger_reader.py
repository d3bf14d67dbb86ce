"""
Ledger State Reader
===================
Read-only snapshots of both ledgers.

- HyperEVM vault: lifecycle, spot value, perp short size, on-chain delta
- Arbitrum coordinator: synced perp view, spot value, sync time
- Arbitrum spot vault: target and balances

Base reads are all-or-nothing and raise LedgerReadFailed. The vault's own
``calculateDelta()`` is a capability check: when it reverts (the oracle
precompile is missing in some environments) the snapshot carries
DeltaUnavailable and the read still succeeds.
"""

from __future__ import annotations

import asyncio
from typing import Dict, Iterable

from src.keeper.types import (
    CoordinatorState,
    DeltaReading,
    DeltaUnavailable,
    LedgerReadFailed,
    LifecycleState,
    OnChainDelta,
    SpotVaultState,
    VaultState,
)
from src.shared.system.logging import Logger


class LedgerStateReader:
    """
    Reads ledger snapshots through contract handles.

    Example:
        >>> reader = LedgerStateReader()
        >>> vault_state = await reader.read_vault_state(vault)
        >>> vault_state.on_chain_delta_usd   # None when calculateDelta reverted
    """

    async def read_vault_state(self, vault) -> VaultState:
        try:
            state_code, spot_value, perp_short = await asyncio.gather(
                vault.state(),
                vault.spot_value_usd(),
                vault.perp_short_size_wei(),
            )
        except Exception as e:
            raise LedgerReadFailed("hyperevm_vault", e) from e

        reading = await self._read_on_chain_delta(vault)

        state = VaultState(
            lifecycle=LifecycleState.from_code(state_code),
            spot_value_usd_e6=int(spot_value),
            perp_short_size_wei=int(perp_short),
            on_chain_delta=reading,
        )

        Logger.info(
            f"[VAULT] State={state.lifecycle.name} Spot=${state.spot_value_usd:,.2f} "
            f"PerpShort={state.perp_short_size:.4f}"
        )
        if isinstance(reading, OnChainDelta):
            Logger.info(f"[VAULT] On-chain delta ${reading.delta_usd:,.2f} ({reading.ratio_bps / 100:.2f}%)")
        else:
            Logger.debug(f"[VAULT] Delta: N/A ({reading.reason})")

        return state

    async def _read_on_chain_delta(self, vault) -> DeltaReading:
        try:
            delta_usd, ratio_bps = await vault.calculate_delta()
        except Exception as e:
            return DeltaUnavailable(reason=str(e) or type(e).__name__)
        return OnChainDelta(delta_usd_e6=int(delta_usd), ratio_bps=int(ratio_bps))

    async def read_coordinator_state(self, coordinator) -> CoordinatorState:
        try:
            size, value, spot, last_sync, active = await asyncio.gather(
                coordinator.perp_short_size_wei(),
                coordinator.perp_short_value_usd(),
                coordinator.spot_value_usd(),
                coordinator.last_sync_time(),
                coordinator.is_strategy_active(),
            )
        except Exception as e:
            raise LedgerReadFailed("arbitrum_coordinator", e) from e

        state = CoordinatorState(
            perp_short_size_wei=int(size),
            perp_short_value_usd_e6=int(value),
            spot_value_usd_e6=int(spot),
            last_sync_time=int(last_sync),
            is_strategy_active=bool(active),
        )
        Logger.debug(
            f"[COORD] Spot=${state.spot_value_usd:,.2f} Perp=${state.perp_short_value_usd:,.2f} "
            f"active={state.is_strategy_active} lastSync={state.last_sync_time}"
        )
        return state

    async def read_spot_vault_state(self, spot_vault) -> SpotVaultState:
        try:
            state_code, target, weth, usdc = await asyncio.gather(
                spot_vault.state(),
                spot_vault.target_eth_amount(),
                spot_vault.weth_balance(),
                spot_vault.usdc_balance(),
            )
        except Exception as e:
            raise LedgerReadFailed("arbitrum_spot_vault", e) from e

        return SpotVaultState(
            lifecycle=LifecycleState.from_code(state_code),
            target_eth_wei=int(target),
            weth_balance_wei=int(weth),
            usdc_balance_e6=int(usdc),
        )

    async def read_wallet_balances(self, chains: Iterable) -> Dict[str, int]:
        """Native balance of the keeper wallet per network, in wei."""
        chains = list(chains)
        try:
            balances = await asyncio.gather(*(chain.get_native_balance() for chain in chains))
        except Exception as e:
            raise LedgerReadFailed("wallet", e) from e
        return {chain.name: int(balance) for chain, balance in zip(chains, balances)}
