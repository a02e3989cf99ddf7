"""Transaction processing pipeline components."""

from transaction_importer.processing.assembler import TransactionAssembler
from transaction_importer.processing.categorizer import (
    DEFAULT_BATCH_SIZE,
    Categorizer,
    MerchantCategoryCache,
)
from transaction_importer.processing.category_standardizer import (
    CategoryStandardizer,
    distinct_raw_categories,
)
from transaction_importer.processing.deduplicator import (
    DEFAULT_TRANSFER_TOLERANCE,
    TransferResolver,
)

__all__ = [
    "CategoryStandardizer",
    "distinct_raw_categories",
    "Categorizer",
    "MerchantCategoryCache",
    "DEFAULT_BATCH_SIZE",
    "TransferResolver",
    "DEFAULT_TRANSFER_TOLERANCE",
    "TransactionAssembler",
]
