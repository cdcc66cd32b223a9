"""Per-request price computation in integer micro-units."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

MICRO_UNITS_PER_UNIT = 1_000_000


def price(billed_units: int, rate_per_block: float | Decimal, block_size: int = 1000) -> int:
    """Charge for `billed_units` at `rate_per_block` currency per `block_size` units.

    Partial blocks bill as full blocks, and any billable request costs at
    least one micro-unit.
    """
    if block_size <= 0:
        raise ValueError("block_size must be > 0")
    if billed_units < 0:
        raise ValueError("billed_units must be >= 0")
    rate = Decimal(str(rate_per_block))
    if rate < 0:
        raise ValueError("rate_per_block must be >= 0")
    blocks = -(-int(billed_units) // block_size)
    micro = (Decimal(blocks) * rate * MICRO_UNITS_PER_UNIT).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return max(1, int(micro))


def estimate_charge(token_budget: int, rate_per_block: float | Decimal, block_size: int = 1000) -> int:
    """Ceiling charge for a request allowed to produce `token_budget` tokens."""
    return price(token_budget, rate_per_block, block_size)


def clamp_token_budget(raw: int | float | None, *, default: int = 256, maximum: int = 2048) -> int:
    if raw is None:
        return default
    return max(1, min(maximum, int(round(raw))))


def to_units(micro_units: int) -> Decimal:
    return Decimal(micro_units) / MICRO_UNITS_PER_UNIT


def format_amount(micro_units: int, symbol: str = "USDC") -> str:
    return f"{to_units(micro_units).normalize():f} {symbol}"
