"""
Metrics / Alert Sink
====================
Receives cycle outcomes and owns the keeper's observability state.

- Counters (cycle count, last cycle time, uptime) live here, not in the
  scheduler
- ``latest_outcome`` is replaced as a whole, never mutated in place
- Metrics are appended as JSON lines to ``metrics.jsonl``
- Warning-level alerts go to the log and, when configured, to Telegram

Nothing in here raises into the caller: emission failures are logged at
debug level and dropped.
"""

from __future__ import annotations

import json
import os
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from src.keeper.alerts import TelegramAlerter
from src.keeper.delta_evaluator import units_from_wei
from src.keeper.market_data import annualized_funding_apr
from src.keeper.types import CycleOutcome
from src.shared.system.logging import LOG_DIR, Logger


def _iso(ts: Optional[float]) -> str:
    if not ts:
        return ""
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


class MetricsSink:
    """
    Observability endpoint for the reconciliation loop.

    Example:
        >>> sink = MetricsSink()
        >>> sink.record_cycle(outcome)
        >>> sink.snapshot()["keeper"]["cycleCount"]
        1
    """

    def __init__(
        self,
        metrics_path: Optional[str] = None,
        alerter: Optional[TelegramAlerter] = None,
    ):
        self.metrics_path = metrics_path or os.path.join(LOG_DIR, "metrics.jsonl")
        self.alerter = alerter or TelegramAlerter()

        self.started_at = time.time()
        self.cycle_count = 0
        self.last_cycle_at: Optional[float] = None
        self.latest_outcome: Optional[CycleOutcome] = None
        self.wallet_balances: Dict[str, int] = {}
        self.alerts_raised = 0

    # =========================================================================
    # EMISSION
    # =========================================================================

    def metric(self, name: str, value: float, tags: Optional[Dict[str, str]] = None) -> None:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "name": name,
            "value": value,
            "tags": tags or {},
        }
        try:
            with open(self.metrics_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry) + "\n")
        except OSError as e:
            Logger.debug(f"[KEEPER] Metric write failed ({name}): {e}")

    def alert(self, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        """Warning-level operator alert: an expected condition that needs attention."""
        self.alerts_raised += 1
        Logger.warning(f"[ALERT] {message}", data=data)
        self.alerter.notify(message, priority="WARNING")

    def record_cycle(self, outcome: CycleOutcome) -> None:
        self.latest_outcome = outcome
        self.cycle_count += 1
        self.last_cycle_at = outcome.timestamp

        tags = {"symbol": outcome.market.symbol} if outcome.market else {}
        if outcome.market:
            self.metric("funding_rate", outcome.market.funding_rate, tags)
            self.metric("mark_price", outcome.market.mark_price, tags)
            self.metric("annualized_apr", annualized_funding_apr(outcome.market.funding_rate), tags)
        if outcome.vault:
            self.metric("spot_value_usd", outcome.vault.spot_value_usd, tags)
        if outcome.delta:
            self.metric("perp_value_usd", outcome.delta.perp_value_usd, tags)
            self.metric("delta_usd", outcome.delta.delta_usd, tags)
            self.metric("delta_ratio_bps", outcome.delta.delta_ratio_bps, tags)
        self.metric("cycle_errors", len(outcome.errors), tags)

    def record_wallet_balances(self, balances: Dict[str, int]) -> None:
        self.wallet_balances = dict(balances)

    # =========================================================================
    # SNAPSHOT
    # =========================================================================

    def snapshot(self) -> Dict[str, Any]:
        """Dashboard view of the latest cycle."""
        outcome = self.latest_outcome
        market = outcome.market if outcome else None
        vault = outcome.vault if outcome else None
        delta = outcome.delta if outcome else None

        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "keeper": {
                "uptime": int(time.time() - self.started_at),
                "cycleCount": self.cycle_count,
                "lastCycleTime": _iso(self.last_cycle_at),
                "alertsRaised": self.alerts_raised,
                "lastErrors": [e.to_dict() for e in outcome.errors] if outcome else [],
            },
            "market": {
                "symbol": market.symbol if market else None,
                "fundingRate": market.funding_rate if market else 0.0,
                "markPrice": market.mark_price if market else 0.0,
                "oraclePrice": market.oracle_price if market else 0.0,
                "annualizedApr": annualized_funding_apr(market.funding_rate) if market else 0.0,
                "fundingFavorable": outcome.funding_favorable if outcome else None,
            },
            "vault": {
                "state": vault.lifecycle.name if vault else "UNKNOWN",
                "spotValueUsd": vault.spot_value_usd if vault else 0.0,
                "perpShortSize": vault.perp_short_size if vault else 0.0,
                "onChainDeltaUsd": vault.on_chain_delta_usd if vault else None,
                "deltaUsd": delta.delta_usd if delta else None,
                "deltaRatioBps": delta.delta_ratio_bps if delta else 0,
                "needsRebalance": delta.needs_rebalance if delta else False,
                "lastSyncTx": outcome.sync_tx_hash if outcome else None,
            },
            "wallet": {name: f"{units_from_wei(balance):.6f}" for name, balance in self.wallet_balances.items()},
        }
