"""Per-call cost estimation.

Uses the provider-reported cost when present; otherwise estimates from call
length at a flat per-minute rate.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

DEFAULT_RATE_PER_MINUTE = Decimal("0.30")
_CENTS = Decimal("0.01")
_STORAGE_PLACES = Decimal("0.0001")


def _as_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite() or amount == 0:
        return None
    return amount


def estimate_call_cost(
    duration_seconds: int | float | None,
    llm_cost: Any = None,
    cost: Any = None,
    rate_per_minute: Decimal = DEFAULT_RATE_PER_MINUTE,
) -> Decimal:
    """Estimate the cost of one call.

    Args:
        duration_seconds: Call length; None or negative counts as 0.
        llm_cost: Provider-reported LLM cost, preferred when non-zero.
        cost: Provider-reported total cost, used when llm_cost is absent.
        rate_per_minute: Flat rate for the duration-based estimate.

    Returns:
        Cost in dollars.
    """
    for reported in (llm_cost, cost):
        amount = _as_decimal(reported)
        if amount is not None:
            return amount

    seconds = max(Decimal(0), Decimal(str(duration_seconds or 0)))
    minutes = seconds / Decimal(60)
    return (minutes * rate_per_minute).quantize(_CENTS, rounding=ROUND_HALF_UP)


def format_cost(amount: Decimal) -> str:
    """Render a cost as the 4-decimal string stored on conversation records."""
    return str(amount.quantize(_STORAGE_PLACES, rounding=ROUND_HALF_UP))
