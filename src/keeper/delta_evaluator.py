"""
Delta Evaluator
===============
Pure math for the reconciliation loop.

All functions are PURE LOGIC - no network or state dependencies.
This enables comprehensive unit testing without mocks.

Key formulas:
- Delta USD: Spot Value - Perp Value (positive = net long spot)
- Delta Ratio: |Delta USD| × 10000 / max(Spot, Perp) in basis points,
  rounded half-up (498.5 bps → 499)
- Perp Value: floor(size_wei / 1e18 × mark_price × 1e6) in 6-decimal USD
"""

from __future__ import annotations

from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal

from src.keeper.types import USD_DECIMALS, WEI_DECIMALS, DeltaResult

BPS = 10_000
EPSILON_USD = 1e-9


def evaluate(spot_value_usd: float, perp_value_usd: float, threshold_bps: int) -> DeltaResult:
    """
    Compute the signed delta and its ratio against the larger leg.

    Never raises. A zero ratio never needs a rebalance, whatever the
    threshold, so equal legs (including both at zero) are always balanced.

    Example:
        >>> evaluate(100_000, 95_000, 500)
        DeltaResult(REBALANCE: Delta=$5,000.00, Ratio=500bps)
    """
    spot = float(spot_value_usd)
    perp = float(perp_value_usd)

    delta_usd = spot - perp
    denominator = max(spot, perp, EPSILON_USD)
    ratio = Decimal(str(abs(delta_usd))) * BPS / Decimal(str(denominator))
    ratio_bps = int(ratio.to_integral_value(rounding=ROUND_HALF_UP))

    return DeltaResult(
        delta_usd=delta_usd,
        delta_ratio_bps=ratio_bps,
        needs_rebalance=ratio_bps > 0 and ratio_bps >= threshold_bps,
        spot_value_usd=spot,
        perp_value_usd=perp,
    )


# =============================================================================
# FIXED-POINT HELPERS
# =============================================================================


def usd_from_e6(value_e6: int) -> float:
    """6-decimal contract USD → float dollars."""
    return value_e6 / 10**USD_DECIMALS


def units_from_wei(value_wei: int) -> float:
    """18-decimal contract size → float base-asset units."""
    return value_wei / 10**WEI_DECIMALS


def perp_value_usd_e6(size_wei: int, mark_price: float) -> int:
    """
    USD value of a perp short, in the coordinator's 6-decimal format.

    Uses Decimal so large wei sizes don't lose precision before flooring.

    Example:
        >>> perp_value_usd_e6(2 * 10**18, 2500.5)
        5001000000
    """
    if size_wei <= 0 or mark_price <= 0:
        return 0
    value = Decimal(size_wei) / Decimal(10**WEI_DECIMALS) * Decimal(str(mark_price)) * Decimal(10**USD_DECIMALS)
    return int(value.to_integral_value(rounding=ROUND_FLOOR))
