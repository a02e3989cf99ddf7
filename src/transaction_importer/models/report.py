"""Diagnostic report models for an import run.

Nothing in these models changes pipeline behavior; they record what was
dropped, merged or defaulted so callers can see data loss that would
otherwise only appear in the log.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

# Reasons a row is dropped during extraction
DROP_COLUMN_COUNT = "column_count_mismatch"
DROP_EMPTY_MERCHANT = "empty_merchant"
DROP_MISSING_AMOUNT = "missing_amount"
DROP_ZERO_AMOUNT = "zero_amount"


@dataclass
class FileResult:
    """Outcome of reading and extracting one input file.

    Attributes:
        file_name: Name of the input file.
        rows_read: Data rows read (header excluded, blank lines skipped).
        rows_extracted: Rows that became transactions.
        dropped: Count of dropped rows keyed by reason.
        dates_defaulted: Rows whose date fell back to the processing date.
        both_debit_credit: Rows where debit and credit were both non-zero.
        used_ai_mapping: Whether the AI pass filled column roles.
        error: Error message if the whole file failed.
    """

    file_name: str
    rows_read: int = 0
    rows_extracted: int = 0
    dropped: Counter = field(default_factory=Counter)
    dates_defaulted: int = 0
    both_debit_credit: int = 0
    used_ai_mapping: bool = False
    error: Optional[str] = None

    @property
    def rows_dropped(self) -> int:
        """Total rows dropped for any reason."""
        return sum(self.dropped.values())

    @property
    def succeeded(self) -> bool:
        """Whether the file was processed without a file-level error."""
        return self.error is None


@dataclass
class ResolutionStats:
    """Counters from duplicate and internal-transfer removal.

    Attributes:
        input_count: Transactions entering the resolver.
        exact_duplicates_removed: Rows dropped as exact (date, amount, merchant) repeats.
        transfer_pairs: Number of matched transfer pairs.
        transfer_legs_removed: Transactions removed because they were in a pair.
        output_count: Transactions leaving the resolver.
    """

    input_count: int = 0
    exact_duplicates_removed: int = 0
    transfer_pairs: int = 0
    transfer_legs_removed: int = 0
    output_count: int = 0


@dataclass
class CategorizationStats:
    """Counters from the categorization stage.

    Attributes:
        total: Transactions that reached the categorizer uncategorized.
        cache_hits: Assigned from the merchant cache.
        batch_assigned: Assigned from a batched classification response.
        per_item_assigned: Assigned by single-transaction classification.
        keyword_fallbacks: Assigned by the keyword table after AI failure.
        batches: Number of batches processed.
        batch_fallbacks: Batches that degraded to per-item calls.
    """

    total: int = 0
    cache_hits: int = 0
    batch_assigned: int = 0
    per_item_assigned: int = 0
    keyword_fallbacks: int = 0
    batches: int = 0
    batch_fallbacks: int = 0


@dataclass
class RunReport:
    """Everything observable about one pipeline run.

    Attributes:
        files: Per-file results, in queue order.
        standardized_labels: Raw category label -> taxonomy label used.
        standardization_fallback: Whether the keyword table replaced the AI mapping.
        categorization: Categorization counters.
        resolution: Duplicate/transfer counters.
        saved_count: Records newly stored by the persistence store.
        ai_requests: Inference requests made during the run.
    """

    files: list[FileResult] = field(default_factory=list)
    standardized_labels: dict[str, str] = field(default_factory=dict)
    standardization_fallback: bool = False
    categorization: CategorizationStats = field(default_factory=CategorizationStats)
    resolution: ResolutionStats = field(default_factory=ResolutionStats)
    saved_count: int = 0
    ai_requests: int = 0

    @property
    def failed_files(self) -> list[FileResult]:
        """Files that failed with a file-level error."""
        return [f for f in self.files if not f.succeeded]

    @property
    def rows_extracted(self) -> int:
        """Transactions extracted across all files."""
        return sum(f.rows_extracted for f in self.files)

    @property
    def rows_dropped(self) -> int:
        """Rows dropped across all files."""
        return sum(f.rows_dropped for f in self.files)
