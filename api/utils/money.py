"""Money formatting utilities for ruble amounts with Decimal-only arithmetic.

- Amounts are kept as Decimal end to end (DB Numeric → Decimal)
- Display: thousands grouped with spaces, kopecks only when non-zero
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union

CURRENCY_SUFFIX = "руб."
THOUSANDS_SEP = " "


def ensure_decimal(x) -> Decimal:
    """Strict conversion to Decimal without float artefacts.

    Raises:
        TypeError: unsupported type
        ValueError: unparsable string
    """
    if isinstance(x, Decimal):
        return x
    if isinstance(x, (int, str)):
        try:
            return Decimal(str(x))
        except InvalidOperation as e:
            raise ValueError(f"Cannot convert amount to Decimal: {x!r}") from e
    if isinstance(x, float):
        # float → repr() for determinism
        return Decimal(repr(x))
    raise TypeError(f"ensure_decimal: unsupported type {type(x)}")


def fmt_money(amount: Union[Decimal, str, int, float, None]) -> str:
    """
    Format amount for chat messages and reports.

    Examples:
        >>> fmt_money(Decimal("15000"))
        '15 000 руб.'
        >>> fmt_money("1234.5")
        '1 234.50 руб.'
    """
    dec_amount = ensure_decimal(amount if amount is not None else 0)
    dec_amount = dec_amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    sign = "-" if dec_amount < 0 else ""
    integer_part, decimal_part = f"{abs(dec_amount):.2f}".split(".")
    grouped = f"{int(integer_part):,}".replace(",", THOUSANDS_SEP)

    if decimal_part == "00":
        return f"{sign}{grouped} {CURRENCY_SUFFIX}"
    return f"{sign}{grouped}.{decimal_part} {CURRENCY_SUFFIX}"
