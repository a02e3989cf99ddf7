"""Persistence stores for canonical transactions."""

from transaction_importer.output.transaction_store import (
    CSVTransactionStore,
    InMemoryTransactionStore,
    PersistenceFailure,
    TransactionStore,
)

__all__ = [
    "TransactionStore",
    "CSVTransactionStore",
    "InMemoryTransactionStore",
    "PersistenceFailure",
]
