"""
Money Handling

DESIGN DECISION: Amounts are Decimal values quantized to two places and
stored as fixed two-decimal strings ("100.00"). Floats are refused as
input so that thousands of apply/revert cycles never accumulate binary
rounding drift.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

AmountLike = Union[str, int, Decimal]


def to_amount(value: AmountLike) -> Decimal:
    """
    Parse a money value into a two-place Decimal.

    Raises:
        ValueError: if the value is a float, empty, or not a finite number
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValueError(f"Amounts must be given as strings or Decimals, not {type(value).__name__}")
    if isinstance(value, str):
        value = value.strip().replace(",", "")
        if not value:
            raise ValueError("Amount is empty")
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError):
        raise ValueError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def format_amount(amount: Decimal) -> str:
    """Render an amount as a fixed two-decimal string."""
    return str(amount.quantize(CENT, rounding=ROUND_HALF_UP))
