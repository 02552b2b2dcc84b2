"""Fixed-point money helpers.

Every monetary amount in the ledger is a ``Decimal`` quantized to cents with
ROUND_HALF_UP. Floats are converted through ``str`` so ``0.1`` stays ``0.1``.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")

Money = Decimal


def to_decimal(value) -> Decimal:
    """Convert int/str/float/Decimal to Decimal without float artefacts."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("bool is not a monetary value")
    if isinstance(value, float):
        return Decimal(str(value))
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"Not a decimal value: {value!r}") from e


def money(value) -> Money:
    """Round to 2 decimals, half-up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def pct(part, whole) -> Decimal:
    """``part / whole * 100`` rounded to cents; 0 when ``whole`` is 0."""
    whole = to_decimal(whole)
    if whole == 0:
        return ZERO
    return money(to_decimal(part) / whole * HUNDRED)
