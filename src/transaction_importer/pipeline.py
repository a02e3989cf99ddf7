"""Import pipeline that drives one run over the queued statement files.

A run moves through a fixed sequence of stages:

    Idle -> ReadingFiles -> DetectingColumns -> ExtractingData ->
    MappingCategories -> CategorizingTransactions -> Deduplicating ->
    Saving -> Complete -> Idle

Each stage works on every queued file before the next stage starts. A run
that fails or is cancelled goes straight back to Idle.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Union

from transaction_importer.config import Config
from transaction_importer.models.report import FileResult, RunReport
from transaction_importer.models.transaction import ExtractedTransaction, Transaction
from transaction_importer.output.transaction_store import (
    InMemoryTransactionStore,
    PersistenceFailure,
    TransactionStore,
)
from transaction_importer.parsers.base import MissingEssentialColumns, ParseError
from transaction_importer.parsers.column_mapper import ColumnMapper, ColumnMapping
from transaction_importer.parsers.csv_parser import CSVParser, CSVTable
from transaction_importer.parsers.row_extractor import RowExtractor
from transaction_importer.processing.ai.client import CountingInferenceService, InferenceService
from transaction_importer.processing.ai.models import AIUsageStats
from transaction_importer.processing.assembler import TransactionAssembler
from transaction_importer.processing.categorizer import Categorizer, MerchantCategoryCache
from transaction_importer.processing.category_standardizer import CategoryStandardizer
from transaction_importer.processing.deduplicator import TransferResolver
from transaction_importer.utils.logging_config import LogContext, get_logger

logger = get_logger(__name__)


class PipelineError(Exception):
    """Base exception for pipeline misuse and run-level failures."""

    pass


class NoFilesQueued(PipelineError):
    """Raised when a run is started with an empty queue."""

    def __init__(self) -> None:
        super().__init__("No files queued for import")


class PipelineCancelled(PipelineError):
    """Raised when a run stops because cancellation was requested."""

    pass


class PipelineStage(Enum):
    """Stages of a pipeline run."""

    IDLE = "Idle"
    READING_FILES = "ReadingFiles"
    DETECTING_COLUMNS = "DetectingColumns"
    EXTRACTING_DATA = "ExtractingData"
    MAPPING_CATEGORIES = "MappingCategories"
    CATEGORIZING_TRANSACTIONS = "CategorizingTransactions"
    DEDUPLICATING = "Deduplicating"
    SAVING = "Saving"
    COMPLETE = "Complete"


# Only forward edges; a failed run resets to IDLE outside this table
NEXT_STAGE: dict[PipelineStage, PipelineStage] = {
    PipelineStage.IDLE: PipelineStage.READING_FILES,
    PipelineStage.READING_FILES: PipelineStage.DETECTING_COLUMNS,
    PipelineStage.DETECTING_COLUMNS: PipelineStage.EXTRACTING_DATA,
    PipelineStage.EXTRACTING_DATA: PipelineStage.MAPPING_CATEGORIES,
    PipelineStage.MAPPING_CATEGORIES: PipelineStage.CATEGORIZING_TRANSACTIONS,
    PipelineStage.CATEGORIZING_TRANSACTIONS: PipelineStage.DEDUPLICATING,
    PipelineStage.DEDUPLICATING: PipelineStage.SAVING,
    PipelineStage.SAVING: PipelineStage.COMPLETE,
    PipelineStage.COMPLETE: PipelineStage.IDLE,
}

# Stages that do work, used to turn the current stage into overall progress
WORK_STAGES = [
    PipelineStage.READING_FILES,
    PipelineStage.DETECTING_COLUMNS,
    PipelineStage.EXTRACTING_DATA,
    PipelineStage.MAPPING_CATEGORIES,
    PipelineStage.CATEGORIZING_TRANSACTIONS,
    PipelineStage.DEDUPLICATING,
    PipelineStage.SAVING,
]

ProgressCallback = Callable[[PipelineStage, float, str], None]


@dataclass
class RunResult:
    """Outcome of a completed run.

    Attributes:
        transactions: Canonical transactions handed to the store, in order.
        report: Diagnostics for the run.
    """

    transactions: list[Transaction] = field(default_factory=list)
    report: RunReport = field(default_factory=RunReport)


@dataclass
class _LoadedFile:
    result: FileResult
    table: CSVTable
    mapping: Optional[ColumnMapping] = None


class ImportPipeline:
    """Turns queued statement files into stored, categorized transactions.

    One pipeline runs at most one import at a time. The merchant cache and
    all counters belong to a single run and are discarded when it ends.

    Note: This class is NOT thread-safe. Drive it from one event loop.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        inference: Optional[InferenceService] = None,
        store: Optional[TransactionStore] = None,
        today: Optional[date] = None,
        on_progress: Optional[ProgressCallback] = None,
        dry_run: bool = False,
    ):
        """Initialize pipeline.

        Args:
            config: Application configuration. Defaults are used if None.
            inference: Inference service. If None, only heuristics and the
                keyword table are used.
            store: Persistence store. Defaults to an in-memory store.
            today: Date given to rows with an unparseable date.
            on_progress: Called with (stage, progress, message) on every
                stage change and after each categorization batch.
            dry_run: Run every stage but skip handing records to the store.
        """
        self.config = config or Config()
        self.inference = inference
        self.store = store if store is not None else InMemoryTransactionStore()
        self.today = today
        self.on_progress = on_progress
        self.dry_run = dry_run
        self.usage_stats = AIUsageStats()

        self._queue: list[Path] = []
        self._stage = PipelineStage.IDLE
        self._progress = 0.0
        self._cancel_requested = False
        self._cache: Optional[MerchantCategoryCache] = None

    @property
    def stage(self) -> PipelineStage:
        """Current stage."""
        return self._stage

    @property
    def progress(self) -> float:
        """Overall progress of the current run, in [0, 1]."""
        return self._progress

    @property
    def queued_files(self) -> list[Path]:
        """Files waiting for the next run, in queue order."""
        return list(self._queue)

    @property
    def is_running(self) -> bool:
        """Whether a run is in progress."""
        return self._stage is not PipelineStage.IDLE

    def queue_file(self, file_path: Union[str, Path]) -> None:
        """Add a file to the next run. Queuing the same path twice has no effect."""
        if self.is_running:
            raise PipelineError("Cannot queue files while a run is in progress")
        path = Path(file_path)
        if path in self._queue:
            logger.debug(f"Already queued: {path}")
            return
        self._queue.append(path)

    def clear_queue(self) -> None:
        """Remove every queued file."""
        if self.is_running:
            raise PipelineError("Cannot clear the queue while a run is in progress")
        self._queue.clear()

    def cancel(self) -> None:
        """Ask the current run to stop at the next file or batch boundary."""
        if self.is_running:
            logger.info(f"Cancellation requested during {self._stage.value}")
            self._cancel_requested = True

    async def run(self) -> RunResult:
        """Process every queued file and save the result.

        Returns:
            The saved transactions and the run report.

        Raises:
            NoFilesQueued: If the queue is empty.
            PipelineError: If a run is already in progress.
            PipelineCancelled: If cancel() was called during the run.
            PersistenceFailure: If the store rejects the batch.
        """
        if self.is_running:
            raise PipelineError(f"A run is already in progress ({self._stage.value})")
        if not self._queue:
            raise NoFilesQueued()

        report = RunReport()
        service = CountingInferenceService(self.inference) if self.inference is not None else None
        self._cache = MerchantCategoryCache()
        self._cancel_requested = False
        self._progress = 0.0

        try:
            with LogContext(logger, "import run", files=len(self._queue), dry_run=self.dry_run):
                transactions = await self._run_stages(report, service)
        finally:
            self._cache.clear()
            self._cache = None
            self._cancel_requested = False
            if service is not None:
                report.ai_requests = service.calls
            if self._stage is not PipelineStage.COMPLETE:
                logger.warning(f"Run stopped during {self._stage.value}; returning to Idle")
                self._stage = PipelineStage.IDLE

        self._queue.clear()
        self._transition(PipelineStage.IDLE)
        return RunResult(transactions=transactions, report=report)

    async def _run_stages(
        self, report: RunReport, service: Optional[InferenceService]
    ) -> list[Transaction]:
        pipeline_config = self.config.pipeline

        self._transition(PipelineStage.READING_FILES)
        parser = CSVParser(
            max_file_size=pipeline_config.max_file_size_mb * 1024 * 1024,
            max_rows=pipeline_config.max_rows,
        )
        loaded = self._read_files(parser, report)

        self._transition(PipelineStage.DETECTING_COLUMNS)
        await self._detect_columns(loaded, ColumnMapper(service, self.usage_stats))

        self._transition(PipelineStage.EXTRACTING_DATA)
        extracted = self._extract(loaded, RowExtractor(today=self.today))

        self._transition(PipelineStage.MAPPING_CATEGORIES)
        standardizer = CategoryStandardizer(service, self.usage_stats)
        mapping = await standardizer.standardize(extracted)
        report.standardized_labels = {label: category.value for label, category in mapping.items()}
        report.standardization_fallback = standardizer.used_fallback

        self._transition(PipelineStage.CATEGORIZING_TRANSACTIONS)
        categorizer = Categorizer(
            self._cache,
            inference=service,
            batch_size=pipeline_config.batch_size,
            usage_stats=self.usage_stats,
            on_progress=self._on_categorize_progress,
            checkpoint=self._checkpoint,
        )
        report.categorization = await categorizer.categorize(extracted)

        self._transition(PipelineStage.DEDUPLICATING)
        resolver = TransferResolver(tolerance=pipeline_config.transfer_tolerance)
        resolved = resolver.resolve(extracted)
        report.resolution = resolver.stats

        self._transition(PipelineStage.SAVING)
        transactions = TransactionAssembler().assemble(resolved)
        report.saved_count = self._save(transactions)

        self._transition(PipelineStage.COMPLETE)
        logger.info(
            f"Import complete: {report.rows_extracted} rows extracted, "
            f"{len(transactions)} transactions, {report.saved_count} newly saved"
        )
        return transactions

    def _read_files(self, parser: CSVParser, report: RunReport) -> list[_LoadedFile]:
        loaded = []
        for path in self._queue:
            self._checkpoint()
            result = FileResult(file_name=path.name)
            report.files.append(result)
            try:
                table = parser.read(path)
            except (FileNotFoundError, ParseError) as e:
                logger.error(f"Skipping {path.name}: {e}")
                result.error = str(e)
                continue
            loaded.append(_LoadedFile(result=result, table=table))
        return loaded

    async def _detect_columns(self, loaded: list[_LoadedFile], mapper: ColumnMapper) -> None:
        for item in loaded:
            self._checkpoint()
            try:
                item.mapping = await mapper.resolve(
                    item.table.headers, item.table.sample_row, Path(item.table.file_name)
                )
            except MissingEssentialColumns as e:
                logger.error(f"Skipping {item.table.file_name}: {e}")
                item.result.error = str(e)
                continue
            item.result.used_ai_mapping = bool(item.mapping.ai_roles)

    def _extract(self, loaded: list[_LoadedFile], extractor: RowExtractor) -> list[ExtractedTransaction]:
        extracted: list[ExtractedTransaction] = []
        for item in loaded:
            if item.mapping is None:
                continue
            self._checkpoint()
            extracted.extend(
                extractor.extract(item.table.rows, item.mapping, item.table.file_name, item.result)
            )
        return extracted

    def _save(self, transactions: list[Transaction]) -> int:
        if self.dry_run:
            logger.info(f"Dry run: not saving {len(transactions)} transactions")
            return 0
        try:
            return self.store.save_transactions(transactions)
        except OSError as e:
            raise PersistenceFailure(str(e)) from e

    def _checkpoint(self) -> None:
        if self._cancel_requested:
            raise PipelineCancelled(f"Import cancelled during {self._stage.value}")

    def _transition(self, stage: PipelineStage) -> None:
        if NEXT_STAGE[self._stage] is not stage:
            raise PipelineError(f"Illegal stage transition {self._stage.value} -> {stage.value}")
        logger.debug(f"Stage {self._stage.value} -> {stage.value}")
        self._stage = stage

        if stage in WORK_STAGES:
            self._report_progress(WORK_STAGES.index(stage) / len(WORK_STAGES), stage.value)
        elif stage is PipelineStage.COMPLETE:
            self._report_progress(1.0, stage.value)

    def _on_categorize_progress(self, fraction: float) -> None:
        base = WORK_STAGES.index(PipelineStage.CATEGORIZING_TRANSACTIONS)
        self._report_progress((base + fraction) / len(WORK_STAGES), f"Categorized {fraction:.0%}")

    def _report_progress(self, value: float, message: str) -> None:
        self._progress = max(self._progress, min(1.0, value))
        if self.on_progress is not None:
            self.on_progress(self._stage, self._progress, message)
