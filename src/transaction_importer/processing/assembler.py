"""Assembly of canonical transactions from categorized rows."""

from transaction_importer.models.category import DEFAULT_CATEGORY
from transaction_importer.models.transaction import (
    ExtractedTransaction,
    Transaction,
    transaction_fingerprint,
)
from transaction_importer.utils.decimal_utils import quantize_cents
from transaction_importer.utils.logging_config import get_logger

logger = get_logger(__name__)


class TransactionAssembler:
    """Converts surviving rows into immutable ``Transaction`` records.

    Identifiers are fingerprints of (date, description, amount), so the same
    input always gets the same identifier across runs. Any category still
    unresolved at this point becomes the default category.
    """

    def assemble(self, transactions: list[ExtractedTransaction]) -> list[Transaction]:
        """Build canonical transactions in input order.

        Args:
            transactions: Resolved transactions.

        Returns:
            Canonical transactions ready for the store.
        """
        assembled = []
        defaulted = 0

        for txn in transactions:
            category = txn.category
            if category is None:
                category = DEFAULT_CATEGORY
                defaulted += 1

            amount = quantize_cents(txn.amount)
            assembled.append(
                Transaction(
                    id=transaction_fingerprint(txn.date, txn.merchant, amount),
                    date=txn.date,
                    description=txn.merchant,
                    amount=amount,
                    category=category,
                    source_file=txn.source_file,
                )
            )

        if defaulted:
            logger.info(f"Defaulted {defaulted} uncategorized transactions to {DEFAULT_CATEGORY.value}")
        logger.info(f"Assembled {len(assembled)} transactions")
        return assembled
