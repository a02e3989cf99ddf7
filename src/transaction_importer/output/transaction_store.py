"""Persistence stores that accept the final batch of canonical transactions."""

import csv
import os
import tempfile
from datetime import date, datetime
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from transaction_importer.models.transaction import Transaction
from transaction_importer.utils.date_utils import CANONICAL_DATE_FORMAT, format_date, parse_date
from transaction_importer.utils.decimal_utils import format_amount, parse_amount
from transaction_importer.utils.logging_config import get_logger
from transaction_importer.utils.sanitize import sanitize_for_csv, unsanitize_from_csv

logger = get_logger(__name__)

STORE_COLUMNS = ["ID", "Date", "Description", "Amount", "Category", "Source File"]

StorageKey = tuple[str, str, str]


class PersistenceFailure(Exception):
    """Raised when a store cannot accept a batch of transactions."""

    def __init__(self, message: str, path: Optional[Path] = None):
        """Initialize PersistenceFailure.

        Args:
            message: Error message.
            path: Store location that failed, if any.
        """
        self.path = path
        super().__init__(f"{path}: {message}" if path else message)


@runtime_checkable
class TransactionStore(Protocol):
    """Accepts the final ordered list of transactions in one call.

    Stores suppress duplicates keyed by (date, amount, description) and
    return how many records were newly stored.
    """

    def save_transactions(self, transactions: list[Transaction]) -> int:
        ...


class InMemoryTransactionStore:
    """Store that keeps records in a list. Used for dry runs and tests."""

    def __init__(self) -> None:
        self.transactions: list[Transaction] = []
        self.save_calls = 0
        self._keys: set[StorageKey] = set()

    def save_transactions(self, transactions: list[Transaction]) -> int:
        self.save_calls += 1
        saved = 0
        for txn in transactions:
            if txn.storage_key in self._keys:
                continue
            self._keys.add(txn.storage_key)
            self.transactions.append(txn)
            saved += 1
        return saved


class CSVTransactionStore:
    """Store backed by a single CSV file.

    Existing rows are read back to suppress duplicates, then the whole file
    is rewritten through a temporary file in the same directory and moved
    into place, so a failed save leaves the previous file intact. Text
    cells are sanitized against spreadsheet formula injection.
    """

    def __init__(self, path: Path, date_format: str = CANONICAL_DATE_FORMAT):
        """Initialize CSV store.

        Args:
            path: CSV file to read and write.
            date_format: strftime format for the Date column.
        """
        self.path = Path(path)
        self.date_format = date_format

    def save_transactions(self, transactions: list[Transaction]) -> int:
        """Append transactions that are not already stored.

        Args:
            transactions: Canonical transactions in output order.

        Returns:
            Number of newly stored records.

        Raises:
            PersistenceFailure: If the file cannot be read or written.
        """
        existing_rows, keys = self._load_existing()

        new_rows: list[list[str]] = []
        for txn in transactions:
            if txn.storage_key in keys:
                logger.debug(f"Already stored: {txn!r}")
                continue
            keys.add(txn.storage_key)
            new_rows.append(self._to_row(txn))

        if not new_rows and self.path.exists():
            logger.info(f"No new transactions for {self.path}")
            return 0

        self._write_atomic(existing_rows + new_rows)
        logger.info(
            f"Stored {len(new_rows)} new transactions in {self.path} "
            f"({len(transactions) - len(new_rows)} already present)"
        )
        return len(new_rows)

    def load_keys(self) -> set[StorageKey]:
        """Read the duplicate-suppression keys of every stored record."""
        return self._load_existing()[1]

    def _to_row(self, txn: Transaction) -> list[str]:
        return [
            txn.id,
            format_date(txn.date, self.date_format),
            sanitize_for_csv(txn.description),
            format_amount(txn.amount),
            sanitize_for_csv(txn.category.value),
            sanitize_for_csv(txn.source_file),
        ]

    def _load_existing(self) -> tuple[list[list[str]], set[StorageKey]]:
        if not self.path.exists():
            return [], set()

        rows: list[list[str]] = []
        keys: set[StorageKey] = set()
        try:
            with open(self.path, encoding="utf-8", newline="") as f:
                reader = csv.reader(f)
                header = next(reader, None)
                if header is not None and header != STORE_COLUMNS:
                    raise PersistenceFailure(f"Unexpected store header: {header}", self.path)
                for row in reader:
                    if not row:
                        continue
                    if len(row) != len(STORE_COLUMNS):
                        raise PersistenceFailure(
                            f"Corrupt store row with {len(row)} columns", self.path
                        )
                    rows.append(row)
                    key = self._row_key(row)
                    if key is not None:
                        keys.add(key)
        except OSError as e:
            raise PersistenceFailure(f"Cannot read store: {e}", self.path) from e

        return rows, keys

    def _parse_stored_date(self, value: str) -> Optional[date]:
        try:
            return datetime.strptime(value, self.date_format).date()
        except ValueError:
            # Rows written under an earlier date_format setting
            return parse_date(value)

    def _row_key(self, row: list[str]) -> Optional[StorageKey]:
        parsed_date = self._parse_stored_date(row[1])
        amount = parse_amount(row[3])
        if parsed_date is None or amount is None:
            logger.warning(f"Unreadable stored row {row[0]!r} in {self.path}")
            return None
        return (parsed_date.isoformat(), format_amount(amount), unsanitize_from_csv(row[2]))

    def _write_atomic(self, rows: list[list[str]]) -> None:
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                writer = csv.writer(f)
                writer.writerow(STORE_COLUMNS)
                writer.writerows(rows)
            os.replace(tmp_name, self.path)
        except OSError as e:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise PersistenceFailure(f"Cannot write store: {e}", self.path) from e
