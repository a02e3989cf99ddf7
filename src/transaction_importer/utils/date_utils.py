"""Date parsing and normalization utilities."""

from datetime import date, datetime
from typing import Optional

# Ordered date formats. The first format that parses wins, so a slash date
# such as "03/04/2024" is read as US month-first before the day-first form
# gets a chance. strptime accepts non-padded month/day values for %m and %d,
# which covers the M/d/yyyy and d/M/yyyy variants as well.
DATE_FORMATS = [
    "%m/%d/%Y",
    "%d/%m/%Y",
    "%Y-%m-%d",
    "%m-%d-%Y",
    # Less common layouts seen in bank exports
    "%m/%d/%y",
    "%Y/%m/%d",
    "%d.%m.%Y",
    "%d-%b-%Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%Y%m%d",
]

# Canonical textual date format for output
CANONICAL_DATE_FORMAT = "%Y-%m-%d"


def parse_date(raw_date: str) -> Optional[date]:
    """Parse a raw date string using the ordered format list.

    Surrounding whitespace and double quotes are ignored. A trailing time
    component (``2024-01-15 08:30:00``) is dropped before parsing.

    Args:
        raw_date: The raw date string to parse.

    Returns:
        Parsed date, or None if no format matches.
    """
    if not raw_date:
        return None

    date_str = raw_date.strip().strip('"').strip()
    if not date_str:
        return None

    candidates = [date_str]
    if " " in date_str and ":" in date_str:
        candidates.append(date_str.split(" ", 1)[0])
    if "T" in date_str and date_str[:4].isdigit():
        candidates.append(date_str.split("T", 1)[0])

    for candidate in candidates:
        for fmt in DATE_FORMATS:
            try:
                return datetime.strptime(candidate, fmt).date()
            except ValueError:
                continue

    return None


def resolve_date(raw_date: str, today: date) -> tuple[date, bool]:
    """Parse a date, falling back to the processing date.

    Args:
        raw_date: The raw date string.
        today: Processing date used when nothing parses.

    Returns:
        Tuple of (date, defaulted) where defaulted is True if the fallback was used.
    """
    parsed = parse_date(raw_date)
    if parsed is None:
        return today, True
    return parsed, False


def format_date(d: date, fmt: str = CANONICAL_DATE_FORMAT) -> str:
    """Format a date object as a string.

    Args:
        d: Date to format.
        fmt: Format string (default ISO format).

    Returns:
        Formatted date string.
    """
    return d.strftime(fmt)
