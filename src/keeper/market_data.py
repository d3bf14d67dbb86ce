"""
Hyperliquid Market Data Gateway
===============================
Fetches funding rate, mark/oracle price and open interest from the
Hyperliquid ``/info`` endpoint.

Every snapshot comes from a single ``metaAndAssetCtxs`` round trip, so all
fields of a MarketSnapshot describe the same instant.

Funding:
- Positive funding = longs pay shorts → the perp short earns
- APR uses 3 funding intervals per day (8h cadence)
"""

from __future__ import annotations

import time
from typing import Dict, Iterable, List, Optional, Tuple

import httpx

from src.keeper.types import MarketDataUnavailable, MarketSnapshot, SymbolNotFound
from src.shared.system.logging import Logger

FUNDING_INTERVALS_PER_DAY = 3
META_AND_ASSET_CTXS = {"type": "metaAndAssetCtxs"}


# =============================================================================
# PURE HELPERS
# =============================================================================


def is_funding_favorable(snapshot: MarketSnapshot, min_rate: float) -> bool:
    """True iff the funding rate strictly exceeds ``min_rate`` (short collects)."""
    return snapshot.funding_rate > min_rate


def annualized_funding_apr(funding_rate: float) -> float:
    """
    Annualized funding in percent.

    Example:
        >>> round(annualized_funding_apr(0.00012), 2)
        13.14
    """
    return funding_rate * FUNDING_INTERVALS_PER_DAY * 365 * 100


def _find_symbol(universe: List[dict], symbol: str) -> int:
    wanted = symbol.upper()
    for i, asset in enumerate(universe):
        if isinstance(asset, dict) and str(asset.get("name", "")).upper() == wanted:
            return i
    return -1


def _snapshot_from_ctx(symbol: str, ctx: dict, observed_at: float) -> MarketSnapshot:
    try:
        return MarketSnapshot(
            symbol=symbol.upper(),
            funding_rate=float(ctx["funding"]),
            mark_price=float(ctx["markPx"]),
            oracle_price=float(ctx["oraclePx"]),
            open_interest=float(ctx["openInterest"]),
            observed_at=observed_at,
            previous_day_price=float(ctx.get("prevDayPx") or 0.0),
            premium=float(ctx.get("premium") or 0.0),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise MarketDataUnavailable(f"Malformed asset context for {symbol}: {e}") from e


# =============================================================================
# GATEWAY
# =============================================================================


class HyperliquidGateway:
    """
    Async client for the market-data service.

    Example:
        >>> gateway = HyperliquidGateway("https://api.hyperliquid-testnet.xyz")
        >>> snap = await gateway.fetch_market_snapshot("ETH")
        >>> is_funding_favorable(snap, 0.0001)
    """

    REQUEST_TIMEOUT = 10.0

    def __init__(
        self,
        base_url: str,
        timeout: float = REQUEST_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    async def _post_info(self) -> Tuple[List[dict], List[dict], float]:
        """One upstream round trip. Returns (universe, asset_ctxs, observed_at)."""
        url = f"{self.base_url}/info"
        try:
            if self._client is not None:
                response = await self._client.post(url, json=META_AND_ASSET_CTXS)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=META_AND_ASSET_CTXS)
        except httpx.HTTPError as e:
            raise MarketDataUnavailable(f"Hyperliquid unreachable: {e!r}") from e

        observed_at = time.time()

        if not response.is_success:
            raise MarketDataUnavailable(f"Hyperliquid returned HTTP {response.status_code}")

        try:
            data = response.json()
            meta, asset_ctxs = data[0], data[1]
            universe = meta["universe"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise MarketDataUnavailable("Invalid response from Hyperliquid API") from e

        return universe, asset_ctxs, observed_at

    async def fetch_market_snapshot(self, symbol: str) -> MarketSnapshot:
        """
        Fetch one consistent snapshot for ``symbol``.

        Raises:
            SymbolNotFound: symbol missing from the universe listing
            MarketDataUnavailable: transport error, non-2xx, malformed body
        """
        universe, asset_ctxs, observed_at = await self._post_info()

        index = _find_symbol(universe, symbol)
        if index == -1 or index >= len(asset_ctxs):
            raise SymbolNotFound(symbol)

        snapshot = _snapshot_from_ctx(symbol, asset_ctxs[index], observed_at)
        Logger.debug(
            f"[MARKET] {snapshot.symbol} funding={snapshot.funding_rate:.6%} "
            f"mark=${snapshot.mark_price:,.2f} oracle=${snapshot.oracle_price:,.2f}"
        )
        return snapshot

    async def fetch_market_snapshots(self, symbols: Iterable[str]) -> Dict[str, Optional[MarketSnapshot]]:
        """Several symbols from a single round trip; missing or malformed ones map to None."""
        universe, asset_ctxs, observed_at = await self._post_info()

        results: Dict[str, Optional[MarketSnapshot]] = {}
        for symbol in symbols:
            index = _find_symbol(universe, symbol)
            if index == -1 or index >= len(asset_ctxs):
                results[symbol.upper()] = None
                continue
            try:
                results[symbol.upper()] = _snapshot_from_ctx(symbol, asset_ctxs[index], observed_at)
            except MarketDataUnavailable as e:
                Logger.debug(f"[MARKET] {e}")
                results[symbol.upper()] = None
        return results

