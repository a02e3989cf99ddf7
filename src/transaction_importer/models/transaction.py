"""Transaction data models for imported financial records."""

import hashlib
import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from transaction_importer.models.category import StandardCategory
from transaction_importer.utils.decimal_utils import format_amount


@dataclass
class ExtractedTransaction:
    """Row-level transaction between extraction and assembly.

    Created by the row extractor, then filled in by the category
    standardizer (from ``raw_category``) and the categorizer.

    Attributes:
        date: Transaction date.
        merchant: Cleaned merchant/description, never empty.
        amount: Signed amount (negative = outflow, positive = inflow), never zero.
        raw_category: Free-form category copied from the input, if any.
        category: Taxonomy category once resolved.
        category_source: How the category was resolved
            ("input", "cache", "ai", "fallback", "default").
        description: Original description cell before cleaning.
        source_file: Name of the file this row came from.
        source_line: 1-based data row number within the file.
    """

    date: date
    merchant: str
    amount: Decimal
    raw_category: Optional[str] = None
    category: Optional[StandardCategory] = None
    category_source: Optional[str] = None
    description: str = ""
    source_file: str = ""
    source_line: Optional[int] = None

    @property
    def is_inflow(self) -> bool:
        """Whether money came in (positive amount)."""
        return self.amount > 0

    def assign_category(self, category: StandardCategory, source: str) -> None:
        """Assign a taxonomy category.

        Args:
            category: The category to assign.
            source: How the category was resolved.
        """
        self.category = category
        self.category_source = source


def transaction_fingerprint(txn_date: date, description: str, amount: Decimal) -> str:
    """Build a stable identifier from the (date, description, amount) key.

    The same key always hashes to the same identifier, so replaying an
    import produces the same IDs.

    Args:
        txn_date: Transaction date.
        description: Merchant/description text.
        amount: Signed amount.

    Returns:
        A 16-character hex string.
    """
    desc_normalized = re.sub(r"\s+", " ", description.lower().strip())
    data = f"{txn_date.isoformat()}|{desc_normalized}|{format_amount(amount)}"
    return hashlib.sha256(data.encode()).hexdigest()[:16]


@dataclass(frozen=True)
class Transaction:
    """Canonical, immutable transaction handed to the persistence store.

    Attributes:
        id: Stable identifier derived from date, description and amount.
        date: Transaction date.
        description: Cleaned merchant/description.
        amount: Signed amount (negative = outflow).
        category: Taxonomy category.
        source_file: Name of the file the transaction was imported from.
    """

    id: str
    date: date
    description: str
    amount: Decimal
    category: StandardCategory
    source_file: str = ""

    @property
    def storage_key(self) -> tuple[str, str, str]:
        """Key the persistence store uses for duplicate suppression."""
        return (self.date.isoformat(), format_amount(self.amount), self.description)

    def __repr__(self) -> str:
        return (
            f"Transaction(date={self.date}, "
            f"description={self.description[:30]!r}, "
            f"amount={self.amount}, "
            f"category={self.category.value})"
        )
