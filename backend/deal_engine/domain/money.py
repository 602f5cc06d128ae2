"""Exact monetary arithmetic.

Every amount in the engine is a Decimal with at most 18 fractional digits.
Binary floats are rejected outright so a float can never leak into an
allocation through a config value or a test fixture.
"""

from decimal import ROUND_DOWN, Context, Decimal, localcontext

MONEY_DECIMALS = 18
ZERO = Decimal(0)

# Enough significant digits for a 38-digit NUMERIC plus intermediate ratios
MONEY_CONTEXT = Context(prec=80, rounding=ROUND_DOWN)

_QUANTUM = Decimal(1).scaleb(-MONEY_DECIMALS)


def to_decimal(value: Decimal | int | str) -> Decimal:
    """Coerce an int/str/Decimal to Decimal. Floats raise TypeError."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"Monetary amounts must not be {type(value).__name__}: {value!r}")
    return Decimal(value)


def quantize_amount(value: Decimal) -> Decimal:
    """Round toward zero to 18 fractional digits."""
    with localcontext(MONEY_CONTEXT):
        return value.quantize(_QUANTUM, rounding=ROUND_DOWN)


def total(amounts) -> Decimal:
    """Exact sum of an iterable of Decimals."""
    with localcontext(MONEY_CONTEXT):
        return sum(amounts, ZERO)


def to_base_units(amount: Decimal, decimals: int = MONEY_DECIMALS) -> int:
    """Scale a decimal amount to an integer of `decimals` fractional digits.

    e.g. Decimal("1000.5") -> 1000500000000000000000 with 18 decimals.
    The fractional tail beyond `decimals` is truncated.
    """
    with localcontext(MONEY_CONTEXT):
        scaled = amount.scaleb(decimals).to_integral_value(rounding=ROUND_DOWN)
    return int(scaled)
