"""Decimal utilities for monetary values.

All monetary calculations use Decimal to avoid floating-point precision issues.
"""

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

# Currency symbols to strip
CURRENCY_SYMBOLS = {"$", "€", "£", "¥", "₹", "₽", "₩", "₿"}

# Currency codes sometimes written next to the number
CURRENCY_CODE_PATTERN = re.compile(r"\b(USD|EUR|GBP|CAD|AUD)\b", re.IGNORECASE)

# Regex for parentheses-enclosed negatives: ($1,234.56) or (1234.56)
PARENS_NEGATIVE_PATTERN = re.compile(r"^\s*\(\s*([^)]+)\s*\)\s*$")

# Regex for trailing DR/CR indicators
DR_CR_PATTERN = re.compile(r"\s*(DR|CR)\s*$", re.IGNORECASE)

CENT = Decimal("0.01")


def parse_amount(raw_amount: str) -> Optional[Decimal]:
    """Parse a raw amount string into a signed Decimal.

    Handles:
    - Standard: 1234.56, -1234.56, +1234.56
    - Surrounding quotes: "1,234.56"
    - Currency: $1,234.56, -$1,234.56, $-1,234.56, 12.00 USD
    - Parentheses for negative: ($1,234.56)
    - DR/CR suffix: 1234.56 DR
    - European decimal comma: 1.234,56 or 12,50

    Args:
        raw_amount: The raw amount string to parse.

    Returns:
        Signed Decimal, or None if the value is empty or unparseable.
    """
    if raw_amount is None:
        return None

    amount_str = raw_amount.strip().strip("\"'").strip()
    if not amount_str:
        return None

    is_negative = False

    parens_match = PARENS_NEGATIVE_PATTERN.match(amount_str)
    if parens_match:
        amount_str = parens_match.group(1).strip()
        is_negative = True

    dr_cr_match = DR_CR_PATTERN.search(amount_str)
    if dr_cr_match:
        if dr_cr_match.group(1).upper() == "DR":
            is_negative = True
        amount_str = DR_CR_PATTERN.sub("", amount_str).strip()

    amount_str = CURRENCY_CODE_PATTERN.sub("", amount_str)
    for symbol in CURRENCY_SYMBOLS:
        amount_str = amount_str.replace(symbol, "")
    amount_str = amount_str.replace(" ", "").replace(" ", "")

    # Sign may sit on either side of a stripped currency symbol
    if amount_str.startswith("-"):
        is_negative = True
        amount_str = amount_str[1:]
    elif amount_str.startswith("+"):
        amount_str = amount_str[1:]
    if amount_str.endswith("-"):
        is_negative = True
        amount_str = amount_str[:-1]

    if "," in amount_str and "." in amount_str:
        if amount_str.rfind(",") > amount_str.rfind("."):
            # European: 1.234,56 -> 1234.56
            amount_str = amount_str.replace(".", "").replace(",", ".")
        else:
            amount_str = amount_str.replace(",", "")
    elif "," in amount_str:
        if re.search(r",\d{1,2}$", amount_str):
            # Decimal comma: 12,50 -> 12.50
            amount_str = amount_str.replace(",", ".")
        else:
            # Thousands separator: 1,234 -> 1234
            amount_str = amount_str.replace(",", "")

    if not amount_str:
        return None

    try:
        amount = Decimal(amount_str)
    except InvalidOperation:
        return None

    if not amount.is_finite():
        return None

    return -abs(amount) if is_negative else abs(amount)


def quantize_cents(amount: Decimal) -> Decimal:
    """Round an amount to cents, normalizing negative zero.

    Args:
        amount: The amount to round.

    Returns:
        Amount with exactly two decimal places.
    """
    rounded = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    if rounded == 0:
        return Decimal("0.00")
    return rounded


def format_amount(amount: Decimal) -> str:
    """Format a Decimal amount for storage and display.

    Args:
        amount: The amount to format.

    Returns:
        Signed string with two decimal places, like "-5.50".
    """
    return str(quantize_cents(amount))
