"""Exact duplicate removal and internal transfer pairing."""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Optional

from transaction_importer.models.category import StandardCategory
from transaction_importer.models.report import ResolutionStats
from transaction_importer.models.transaction import ExtractedTransaction
from transaction_importer.utils.decimal_utils import quantize_cents
from transaction_importer.utils.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_TRANSFER_TOLERANCE = Decimal("0.01")


class TransferResolver:
    """Removes exact duplicates and both legs of internal transfers.

    Two sequential steps run over the categorized transactions:

    1. Exact duplicates: transactions sharing (date, amount, merchant) are
       collapsed to the first occurrence, in input order.
    2. Transfer pairing: any two remaining transactions with the same date,
       the same category and amounts that cancel out (``|a + b|`` below the
       tolerance) form a transfer pair. Every transaction in at least one
       pair is removed, since neither leg is real income or expense.

    Candidates for pairing are bucketed by (date, category) first, so only
    transactions that could possibly pair are compared against each other.
    The result is identical to comparing every pair in the list.

    Note: This class is NOT thread-safe. ``stats`` is overwritten on each call.
    """

    def __init__(self, tolerance: Decimal = DEFAULT_TRANSFER_TOLERANCE):
        """Initialize resolver.

        Args:
            tolerance: Amounts whose sum is strictly below this are inverses.
        """
        self.tolerance = tolerance
        self.stats = ResolutionStats()

    def resolve(self, transactions: list[ExtractedTransaction]) -> list[ExtractedTransaction]:
        """Run both steps and return the surviving transactions in order.

        Args:
            transactions: Categorized transactions.

        Returns:
            New list without duplicates and transfer legs.
        """
        self.stats = ResolutionStats(input_count=len(transactions))

        unique = self.remove_exact_duplicates(transactions)
        resolved = self.remove_transfers(unique)

        self.stats.output_count = len(resolved)
        logger.info(
            f"Resolved {self.stats.input_count} -> {self.stats.output_count} transactions "
            f"({self.stats.exact_duplicates_removed} duplicates, "
            f"{self.stats.transfer_pairs} transfer pairs)"
        )
        return resolved

    def remove_exact_duplicates(
        self, transactions: list[ExtractedTransaction]
    ) -> list[ExtractedTransaction]:
        """Keep the first occurrence of each (date, amount, merchant) key."""
        seen: set[tuple[date, Decimal, str]] = set()
        unique: list[ExtractedTransaction] = []

        for txn in transactions:
            key = (txn.date, quantize_cents(txn.amount), txn.merchant)
            if key in seen:
                logger.debug(f"Dropping duplicate: {txn.date} {txn.merchant} {txn.amount}")
                continue
            seen.add(key)
            unique.append(txn)

        self.stats.exact_duplicates_removed += len(transactions) - len(unique)
        return unique

    def remove_transfers(
        self, transactions: list[ExtractedTransaction]
    ) -> list[ExtractedTransaction]:
        """Drop every transaction that participates in a transfer pair."""
        buckets: dict[tuple[date, Optional[StandardCategory]], list[int]] = defaultdict(list)
        for index, txn in enumerate(transactions):
            buckets[(txn.date, txn.category)].append(index)

        paired: set[int] = set()
        pair_count = 0

        for indices in buckets.values():
            if len(indices) < 2:
                continue
            for pos, i in enumerate(indices):
                for j in indices[pos + 1 :]:
                    if self.is_transfer_pair(transactions[i], transactions[j]):
                        pair_count += 1
                        paired.add(i)
                        paired.add(j)

        if paired:
            logger.info(f"Removing {len(paired)} transactions in {pair_count} transfer pairs")

        self.stats.transfer_pairs += pair_count
        self.stats.transfer_legs_removed += len(paired)
        return [txn for index, txn in enumerate(transactions) if index not in paired]

    def is_transfer_pair(self, first: ExtractedTransaction, second: ExtractedTransaction) -> bool:
        """Check whether two transactions are the legs of one transfer."""
        return (
            first.date == second.date
            and first.category == second.category
            and abs(first.amount + second.amount) < self.tolerance
        )
