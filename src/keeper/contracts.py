"""
Ledger Handles
==============
Thin async wrappers around the three keeper contracts.

- ChainClient: one RPC endpoint + the keeper account (signs and sends)
- VaultContract: HyperEVM FundingCaptureVaultV2
- CoordinatorContract: Arbitrum DeltaCoordinator
- SpotVaultContract: Arbitrum SpotLongVault
- PendingTransaction: a submitted write; ``await wait()`` for its receipt

Handles only do RPC I/O. Apart from the on-chain delta read they raise whatever web3
raises; the reader and writer translate those into keeper errors.
"""

from __future__ import annotations

from typing import Any, Dict, List, Sequence, Tuple

from eth_account import Account
from web3 import AsyncWeb3, Web3
from web3.exceptions import ContractLogicError

from src.keeper.types import DeltaComputationUnavailable, TxReceipt


# =============================================================================
# ABIS
# =============================================================================


def _fn(
    name: str,
    inputs: Sequence[Tuple[str, str]] = (),
    outputs: Sequence[Tuple[str, str]] = (),
    mutability: str = "view",
) -> Dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "stateMutability": mutability,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": n, "type": t} for n, t in outputs],
    }


FUNDING_CAPTURE_VAULT_ABI: List[Dict[str, Any]] = [
    _fn("owner", outputs=[("", "address")]),
    _fn("state", outputs=[("", "uint8")]),
    _fn("spotValueUsd", outputs=[("", "uint256")]),
    _fn("perpShortSizeWei", outputs=[("", "uint256")]),
    _fn("lastRebalanceTime", outputs=[("", "uint256")]),
    _fn("getEthOraclePrice", outputs=[("", "uint256")]),
    _fn("getEthMarkPrice", outputs=[("", "uint256")]),
    _fn("calculateDelta", outputs=[("deltaUsd", "int256"), ("deltaRatioBps", "uint256")]),
    _fn("needsRebalance", outputs=[("", "bool")]),
    _fn("openShort", inputs=[("sizeDeltaWei", "uint256"), ("maxSlippageBps", "uint256")], mutability="nonpayable"),
    _fn("closeShort", mutability="nonpayable"),
]

DELTA_COORDINATOR_ABI: List[Dict[str, Any]] = [
    _fn("owner", outputs=[("", "address")]),
    _fn("keeper", outputs=[("", "address")]),
    _fn("perpShortSizeWei", outputs=[("", "uint256")]),
    _fn("perpShortValueUsd", outputs=[("", "uint256")]),
    _fn("lastSyncTime", outputs=[("", "uint256")]),
    _fn("isStrategyActive", outputs=[("", "bool")]),
    _fn("getSpotValueUsd", outputs=[("", "uint256")]),
    _fn("calculateDelta", outputs=[("deltaUsd", "int256"), ("deltaRatioBps", "uint256")]),
    _fn("needsRebalance", outputs=[("", "bool")]),
    _fn("isPriceValid", outputs=[("", "bool")]),
    _fn(
        "syncPerpPosition",
        inputs=[("shortSizeWei", "uint256"), ("shortValueUsd", "uint256")],
        mutability="nonpayable",
    ),
    _fn("executeRebalance", inputs=[("minAmountOut", "uint256")], mutability="nonpayable"),
]

SPOT_LONG_VAULT_ABI: List[Dict[str, Any]] = [
    _fn("owner", outputs=[("", "address")]),
    _fn("state", outputs=[("", "uint8")]),
    _fn("targetEthAmount", outputs=[("", "uint256")]),
    _fn("getWethBalance", outputs=[("", "uint256")]),
    _fn("getUsdcBalance", outputs=[("", "uint256")]),
]


# =============================================================================
# CHAIN CLIENT
# =============================================================================


class PendingTransaction:
    """A submitted transaction awaiting inclusion."""

    def __init__(self, w3: AsyncWeb3, tx_hash: str):
        self._w3 = w3
        self.tx_hash = tx_hash

    async def wait(self, timeout: float = 120.0) -> TxReceipt:
        """Block until mined. Raises ``web3.exceptions.TimeExhausted`` after ``timeout``."""
        receipt = await self._w3.eth.wait_for_transaction_receipt(self.tx_hash, timeout=timeout)
        return TxReceipt(
            tx_hash=self.tx_hash,
            block_number=int(receipt["blockNumber"]),
            status=int(receipt["status"]),
            gas_used=int(receipt.get("gasUsed", 0)),
        )


class ChainClient:
    """
    One network: an AsyncWeb3 connection plus the keeper signing account.

    Example:
        >>> chain = ChainClient("arbitrum", "https://arb1.arbitrum.io/rpc", private_key)
        >>> balance = await chain.get_native_balance()
    """

    def __init__(self, name: str, rpc_url: str, private_key: str, request_timeout: float = 30.0):
        self.name = name
        self.rpc_url = rpc_url
        self.w3 = AsyncWeb3(
            AsyncWeb3.AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout})
        )
        self.account = Account.from_key(private_key)

    @property
    def address(self) -> str:
        return self.account.address

    def contract(self, address: str, abi: List[Dict[str, Any]]):
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    async def get_native_balance(self) -> int:
        return await self.w3.eth.get_balance(self.address)

    async def send(self, call) -> PendingTransaction:
        """Build, sign and broadcast a contract function call."""
        nonce = await self.w3.eth.get_transaction_count(self.address, "pending")
        chain_id = await self.w3.eth.chain_id
        tx = await call.build_transaction({
            "from": self.address,
            "nonce": nonce,
            "chainId": chain_id,
        })
        signed = self.account.sign_transaction(tx)
        tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        return PendingTransaction(self.w3, Web3.to_hex(tx_hash))


# =============================================================================
# CONTRACT HANDLES
# =============================================================================


class VaultContract:
    """HyperEVM FundingCaptureVaultV2 (perp short side)."""

    def __init__(self, chain: ChainClient, address: str):
        self.chain = chain
        self.address = address
        self._contract = chain.contract(address, FUNDING_CAPTURE_VAULT_ABI)

    async def state(self) -> int:
        return await self._contract.functions.state().call()

    async def spot_value_usd(self) -> int:
        return await self._contract.functions.spotValueUsd().call()

    async def perp_short_size_wei(self) -> int:
        return await self._contract.functions.perpShortSizeWei().call()

    async def calculate_delta(self) -> Tuple[int, int]:
        """Raises DeltaComputationUnavailable when the call reverts (no oracle precompile)."""
        try:
            delta_usd, ratio_bps = await self._contract.functions.calculateDelta().call()
        except ContractLogicError as e:
            raise DeltaComputationUnavailable(str(e) or "calculateDelta reverted") from e
        return int(delta_usd), int(ratio_bps)

    async def open_short(self, size_wei: int, max_slippage_bps: int) -> PendingTransaction:
        return await self.chain.send(self._contract.functions.openShort(size_wei, max_slippage_bps))

    async def close_short(self) -> PendingTransaction:
        return await self.chain.send(self._contract.functions.closeShort())


class CoordinatorContract:
    """Arbitrum DeltaCoordinator (synced perp view + spot valuation)."""

    def __init__(self, chain: ChainClient, address: str):
        self.chain = chain
        self.address = address
        self._contract = chain.contract(address, DELTA_COORDINATOR_ABI)

    async def perp_short_size_wei(self) -> int:
        return await self._contract.functions.perpShortSizeWei().call()

    async def perp_short_value_usd(self) -> int:
        return await self._contract.functions.perpShortValueUsd().call()

    async def spot_value_usd(self) -> int:
        return await self._contract.functions.getSpotValueUsd().call()

    async def last_sync_time(self) -> int:
        return await self._contract.functions.lastSyncTime().call()

    async def is_strategy_active(self) -> bool:
        return await self._contract.functions.isStrategyActive().call()

    async def sync_perp_position(self, size_wei: int, value_usd_e6: int) -> PendingTransaction:
        return await self.chain.send(self._contract.functions.syncPerpPosition(size_wei, value_usd_e6))

    async def execute_rebalance(self, min_amount_out: int) -> PendingTransaction:
        return await self.chain.send(self._contract.functions.executeRebalance(min_amount_out))


class SpotVaultContract:
    """Arbitrum SpotLongVault (spot long side)."""

    def __init__(self, chain: ChainClient, address: str):
        self.chain = chain
        self.address = address
        self._contract = chain.contract(address, SPOT_LONG_VAULT_ABI)

    async def state(self) -> int:
        return await self._contract.functions.state().call()

    async def target_eth_amount(self) -> int:
        return await self._contract.functions.targetEthAmount().call()

    async def weth_balance(self) -> int:
        return await self._contract.functions.getWethBalance().call()

    async def usdc_balance(self) -> int:
        return await self._contract.functions.getUsdcBalance().call()
