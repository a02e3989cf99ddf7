"""Sanitization helpers for text written to and read from CSV storage."""

from typing import Optional

# Characters that trigger formula execution in spreadsheet applications
# when they appear at the start of a cell value
_FORMULA_CHARS = ("=", "+", "-", "@", "\t", "\r", "\n", "|")

# Escape prefix; stored values starting with it always carry one extra copy
_ESCAPE = "'"


def sanitize_for_csv(value: Optional[str]) -> Optional[str]:
    """Prefix formula-triggering text cells with a single quote.

    Numeric cells such as "-5.50" are left untouched so amounts stay
    machine-readable. Text that already starts with a quote is prefixed
    too, so unsanitize_from_csv can always strip exactly one.

    Args:
        value: String value to sanitize, or None.

    Returns:
        Sanitized string, or None if input was None.
    """
    if value is None or not value:
        return value

    if value.startswith(_ESCAPE):
        return _ESCAPE + value

    if value.startswith(_FORMULA_CHARS) and not _is_number(value):
        return _ESCAPE + value

    return value


def unsanitize_from_csv(value: str) -> str:
    """Reverse sanitize_for_csv for a value read back from storage.

    Args:
        value: Stored cell value.

    Returns:
        The original text.
    """
    if value.startswith(_ESCAPE):
        return value[1:]
    return value


def _is_number(value: str) -> bool:
    try:
        float(value)
    except ValueError:
        return False
    return True
