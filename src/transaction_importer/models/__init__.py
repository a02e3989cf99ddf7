"""Data models for transactions, the category taxonomy, and run reports."""

from transaction_importer.models.category import (
    DEFAULT_CATEGORY,
    TAXONOMY_LABELS,
    TAXONOMY_VERSION,
    StandardCategory,
    coerce_category,
    keyword_category,
)
from transaction_importer.models.report import (
    CategorizationStats,
    FileResult,
    ResolutionStats,
    RunReport,
)
from transaction_importer.models.transaction import (
    ExtractedTransaction,
    Transaction,
    transaction_fingerprint,
)

__all__ = [
    "ExtractedTransaction",
    "Transaction",
    "transaction_fingerprint",
    "StandardCategory",
    "TAXONOMY_LABELS",
    "TAXONOMY_VERSION",
    "DEFAULT_CATEGORY",
    "coerce_category",
    "keyword_category",
    "FileResult",
    "ResolutionStats",
    "CategorizationStats",
    "RunReport",
]
