"""CSV reader for delimited statement exports."""

import csv
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from transaction_importer.parsers.base import ParseError
from transaction_importer.utils.logging_config import get_logger

logger = get_logger(__name__)

# Maximum CSV file size to prevent memory exhaustion (50 MB)
MAX_CSV_FILE_SIZE = 50 * 1024 * 1024

# Maximum number of rows to prevent memory exhaustion from many small rows
MAX_CSV_ROWS = 500_000


@dataclass
class CSVTable:
    """Header and data rows read from one file.

    Attributes:
        file_name: Name of the source file.
        headers: Header cells, whitespace-trimmed.
        rows: Data rows as lists of raw cells, blank lines removed.
    """

    file_name: str
    headers: list[str]
    rows: list[list[str]] = field(default_factory=list)

    @property
    def sample_row(self) -> list[str] | None:
        """First data row whose width matches the header, if any."""
        for row in self.rows:
            if len(row) == len(self.headers):
                return row
        return self.rows[0] if self.rows else None


class CSVParser:
    """Reads comma-separated, double-quote-escaped UTF-8 files.

    The first non-blank line is the header. Commas inside quoted fields are
    not separators and doubled quotes inside a quoted field are literal.
    """

    def __init__(
        self,
        max_file_size: int = MAX_CSV_FILE_SIZE,
        max_rows: int = MAX_CSV_ROWS,
    ):
        """Initialize CSV parser.

        Args:
            max_file_size: Largest file size accepted, in bytes.
            max_rows: Largest number of data rows accepted.
        """
        self.max_file_size = max_file_size
        self.max_rows = max_rows

    def read(self, file_path: Path) -> CSVTable:
        """Read a CSV file into a header and data rows.

        Args:
            file_path: Path to the CSV file.

        Returns:
            CSVTable with the header and rows.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            ParseError: If the file is too large, empty, or unreadable.
        """
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        file_size = file_path.stat().st_size
        if file_size > self.max_file_size:
            raise ParseError(
                f"File too large ({file_size / 1024 / 1024:.1f} MB). "
                f"Maximum allowed is {self.max_file_size / 1024 / 1024:.0f} MB",
                file_path,
            )

        try:
            with open(file_path, encoding="utf-8-sig", errors="replace", newline="") as f:
                return self._read_rows(csv.reader(f), file_path)
        except ParseError:
            raise
        except (OSError, csv.Error) as e:
            raise ParseError(f"Failed to read CSV file: {e}", file_path) from e

    def read_text(self, text: str, file_name: str = "<text>") -> CSVTable:
        """Read CSV content that is already in memory.

        Args:
            text: CSV content.
            file_name: Name used in messages and results.

        Returns:
            CSVTable with the header and rows.
        """
        try:
            return self._read_rows(csv.reader(text.lstrip("﻿").splitlines()), Path(file_name))
        except csv.Error as e:
            raise ParseError(f"Failed to read CSV text: {e}", Path(file_name)) from e

    def _read_rows(self, reader: Iterable[list[str]], file_path: Path) -> CSVTable:
        headers: list[str] | None = None
        rows: list[list[str]] = []

        for row in reader:
            if not row or all(cell.strip() == "" for cell in row):
                continue

            if headers is None:
                headers = [cell.strip() for cell in row]
                continue

            if len(rows) >= self.max_rows:
                raise ParseError(
                    f"File exceeds maximum row limit ({self.max_rows:,} rows). "
                    f"Split file into smaller chunks.",
                    file_path,
                )
            rows.append(row)

        if headers is None:
            raise ParseError(f"No header row found in {file_path.name}", file_path)

        logger.debug(f"Read {len(rows)} data rows from {file_path.name} ({len(headers)} columns)")
        return CSVTable(file_name=file_path.name, headers=headers, rows=rows)
