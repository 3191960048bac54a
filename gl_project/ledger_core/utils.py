from decimal import ROUND_HALF_UP, Decimal

ZERO = Decimal("0.00")
CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Coerce to a 2-place Decimal, rounding half up."""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        # str() first so floats don't drag binary noise in
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)
