from decimal import Decimal, ROUND_HALF_UP

ZERO = Decimal("0")
CENT = Decimal("0.01")


def to_decimal(value) -> Decimal:
    """
    NUMERIC columns arrive as Decimal already; floats go through str()
    so 0.1 stays 0.1. None -> 0.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def fmt_money(value) -> str:
    # presentation only, never fed back into a computation
    return str(to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP))
