"""
Currency Codec

Converts between the formatted strings stored in the ledger
("R$ 1.234,56") and fixed-point Decimal amounts.

Every amount in the engine is a Decimal quantized to cents. Floats only
appear at the storage boundary (JSON numbers) and are converted here.
"""

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
DEFAULT_SYMBOL = "R$"

# Digits of a single transaction amount, cents included
MAX_AMOUNT_DIGITS = 15

AmountLike = Union[Decimal, int, float, str]

# Currency symbol letters and any unicode whitespace (NBSP included)
_STRIP_PATTERN = re.compile(r"[R$\s]")


def to_amount(value: AmountLike) -> Decimal:
    """
    Quantize a raw number to a cent-precision Decimal.

    Floats go through str() so 0.1 becomes Decimal("0.10"), not its binary
    expansion.

    Raises:
        ValueError: If the value is not a finite number or is too large to
            hold at cent precision
    """
    if isinstance(value, bool):
        raise ValueError(f"Not an amount: {value!r}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Not an amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Amount must be finite, got {value!r}")
    try:
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError(f"Amount out of range: {value!r}")


def format_currency(amount: AmountLike, symbol: str = DEFAULT_SYMBOL) -> str:
    """Format an amount as pt-BR currency, e.g. -R$ 1.234,56."""
    value = to_amount(amount)
    sign = "-" if value < 0 else ""
    integer, _, cents = f"{abs(value):,.2f}".partition(".")
    return f"{sign}{symbol} {integer.replace(',', '.')},{cents}"


def parse_currency(value: Union[AmountLike, None]) -> Decimal:
    """
    Parse a formatted currency string back to a Decimal.

    Accepts "R$ 1.234,56", "1234,56", "1234.56", "-R$ 10,00" and bare
    numbers. Anything unparsable is read as zero, matching what the
    stored ledger has always done with blank cells.
    """
    if value is None:
        return ZERO
    if not isinstance(value, str):
        return to_amount(value)

    cleaned = _STRIP_PATTERN.sub("", value)
    if not cleaned:
        return ZERO

    is_negative = "-" in cleaned
    cleaned = cleaned.replace("-", "")

    if "," in cleaned:
        parts = cleaned.split(",")
        if len(parts) == 2:
            # Dots before the comma are thousands separators
            cleaned = parts[0].replace(".", "") + "." + parts[1]

    try:
        parsed = to_amount(cleaned)
    except ValueError:
        return ZERO

    return -parsed if is_negative else parsed
