"""Turns raw CSV rows into ExtractedTransaction records."""

import re
from datetime import date
from decimal import Decimal
from typing import Optional

from transaction_importer.models.report import (
    DROP_COLUMN_COUNT,
    DROP_EMPTY_MERCHANT,
    DROP_MISSING_AMOUNT,
    DROP_ZERO_AMOUNT,
    FileResult,
)
from transaction_importer.models.transaction import ExtractedTransaction
from transaction_importer.parsers.column_mapper import ColumnMapping
from transaction_importer.utils.date_utils import resolve_date
from transaction_importer.utils.decimal_utils import parse_amount
from transaction_importer.utils.logging_config import get_logger

logger = get_logger(__name__)

# Boilerplate prefixes removed from merchant text (case-insensitive)
MERCHANT_PREFIXES = [
    "Purchase at ",
    "Payment to ",
    "Transfer from ",
    "Transfer to ",
    "Direct Debit to ",
    "Card Payment to ",
    "POS Transaction at ",
]

# Transaction reference numbers appended to descriptions
TRAILING_REFERENCE_PATTERN = re.compile(r"\s*\d{6,}$")


def clean_merchant(description: str) -> str:
    """Normalize a description into the merchant string used for matching.

    Trims whitespace, removes one boilerplate prefix, then removes a
    trailing run of six or more digits.

    Args:
        description: Raw description cell.

    Returns:
        Cleaned merchant (may be empty).
    """
    merchant = description.strip()
    lowered = merchant.lower()
    for prefix in MERCHANT_PREFIXES:
        if lowered.startswith(prefix.lower()):
            merchant = merchant[len(prefix):]
            break
    merchant = TRAILING_REFERENCE_PATTERN.sub("", merchant.strip())
    return merchant.strip()


def _cell(row: list[str], idx: Optional[int]) -> str:
    if idx is None or idx < 0 or idx >= len(row):
        return ""
    return row[idx].strip()


class RowExtractor:
    """Extracts transactions from the data rows of one file.

    Rows missing a merchant or a non-zero amount are dropped without raising;
    the FileResult passed to ``extract`` records why each row was dropped.
    """

    def __init__(self, today: Optional[date] = None):
        """Initialize row extractor.

        Args:
            today: Date assigned to rows whose date cannot be parsed.
                Defaults to the current date at extraction time.
        """
        self.today = today

    def extract(
        self,
        rows: list[list[str]],
        mapping: ColumnMapping,
        source_file: str = "",
        result: Optional[FileResult] = None,
    ) -> list[ExtractedTransaction]:
        """Extract transactions from rows.

        Args:
            rows: Data rows (header excluded).
            mapping: Resolved column mapping.
            source_file: Source file name recorded on each transaction.
            result: Optional FileResult to record counts in.

        Returns:
            Extracted transactions in row order.
        """
        if result is None:
            result = FileResult(file_name=source_file)

        today = self.today or date.today()
        width = len(mapping.headers)
        transactions: list[ExtractedTransaction] = []

        for row_num, row in enumerate(rows, start=1):
            result.rows_read += 1

            if len(row) != width:
                logger.debug(
                    f"Skipping row {row_num} in {source_file}: "
                    f"{len(row)} cells, expected {width}"
                )
                result.dropped[DROP_COLUMN_COUNT] += 1
                continue

            txn = self._extract_row(row, row_num, mapping, source_file, today, result)
            if txn is not None:
                transactions.append(txn)

        result.rows_extracted += len(transactions)
        logger.info(
            f"Extracted {len(transactions)} transactions from {source_file} "
            f"({result.rows_dropped} rows skipped)"
        )
        return transactions

    def _extract_row(
        self,
        row: list[str],
        row_num: int,
        mapping: ColumnMapping,
        source_file: str,
        today: date,
        result: FileResult,
    ) -> Optional[ExtractedTransaction]:
        date_str = _cell(row, mapping.date)
        txn_date, defaulted = resolve_date(date_str, today)
        if defaulted:
            logger.debug(
                f"Row {row_num} in {source_file}: unparseable date {date_str!r}, using {today}"
            )
            result.dates_defaulted += 1

        description = _cell(row, mapping.merchant)
        merchant = clean_merchant(description)
        if not merchant:
            logger.debug(f"Skipping row {row_num} in {source_file}: empty merchant")
            result.dropped[DROP_EMPTY_MERCHANT] += 1
            return None

        amount = self._extract_amount(row, row_num, mapping, source_file, result)
        if amount is None:
            logger.debug(f"Skipping row {row_num} in {source_file}: could not parse amount")
            result.dropped[DROP_MISSING_AMOUNT] += 1
            return None
        if amount == 0:
            logger.debug(f"Skipping row {row_num} in {source_file}: zero amount")
            result.dropped[DROP_ZERO_AMOUNT] += 1
            return None

        raw_category = None
        if mapping.category is not None:
            raw_category = _cell(row, mapping.category) or None

        return ExtractedTransaction(
            date=txn_date,
            merchant=merchant,
            amount=amount,
            raw_category=raw_category,
            description=description,
            source_file=source_file,
            source_line=row_num,
        )

    def _extract_amount(
        self,
        row: list[str],
        row_num: int,
        mapping: ColumnMapping,
        source_file: str,
        result: FileResult,
    ) -> Optional[Decimal]:
        if mapping.amount is not None:
            return parse_amount(_cell(row, mapping.amount))

        debit_amt = parse_amount(_cell(row, mapping.debit))
        credit_amt = parse_amount(_cell(row, mapping.credit))

        amount: Optional[Decimal] = None
        if debit_amt is not None and debit_amt != 0:
            amount = -abs(debit_amt)
        if credit_amt is not None and credit_amt != 0:
            if amount is not None:
                logger.warning(
                    f"Row {row_num} in {source_file} has both debit ({debit_amt}) "
                    f"and credit ({credit_amt}); using credit"
                )
                result.both_debit_credit += 1
            amount = abs(credit_amt)

        if amount is None and (debit_amt is not None or credit_amt is not None):
            return Decimal("0")
        return amount
