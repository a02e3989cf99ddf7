"""End-to-end tests for the import pipeline."""

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from helpers.fake_inference import FakeInferenceService, batch_merchants, rule_based_handler
from transaction_importer.config import Config
from transaction_importer.models.category import StandardCategory
from transaction_importer.output.transaction_store import (
    CSVTransactionStore,
    InMemoryTransactionStore,
    PersistenceFailure,
)
from transaction_importer.pipeline import (
    ImportPipeline,
    NoFilesQueued,
    PipelineCancelled,
    PipelineError,
    PipelineStage,
)
from transaction_importer.processing.ai.prompts import (
    COLUMN_MAPPING_SYSTEM_PROMPT,
    STANDARDIZATION_SYSTEM_PROMPT,
)

TODAY = date(2024, 6, 30)

CHECKING_CSV = """Posted Date,Description,Debit,Credit
01/15/2024,STARBUCKS #123 000445,5.50,
01/16/2024,ACME PAYROLL,,"2,500.00"
01/17/2024,AMAZON,23.99,
01/18/2024,Purchase at CORNER SHOP,4.20,
"""

SAVINGS_CSV = """Date,Description,Amount,Category
2024-03-01,Transfer to Savings,-500.00,Savings
2024-03-01,Transfer from Checking,500.00,Savings
2024-03-02,Interest earned,1.25,Interest Income
2024-03-03,AMAZON,-10.00,
"""


class FailingStore:
    """Store that always fails."""

    def save_transactions(self, transactions):
        raise PersistenceFailure("store offline")


def write_csv(directory: Path, name: str, content: str) -> Path:
    path = directory / name
    path.write_text(content, encoding="utf-8")
    return path


def make_pipeline(service=None, store=None, config=None, **kwargs) -> ImportPipeline:
    if service is None:
        service = FakeInferenceService(handler=rule_based_handler())
    return ImportPipeline(
        config or Config(),
        inference=service,
        store=store if store is not None else InMemoryTransactionStore(),
        today=TODAY,
        **kwargs,
    )


class TestPipelineRun:
    """Tests for complete runs."""

    @pytest.mark.asyncio
    async def test_debit_credit_file(self, tmp_path: Path) -> None:
        """Test extraction, cleaning and categorization of a split layout."""
        service = FakeInferenceService(handler=rule_based_handler({"AMAZON": "Shopping"}))
        store = InMemoryTransactionStore()
        pipeline = make_pipeline(service, store)
        pipeline.queue_file(write_csv(tmp_path, "checking.csv", CHECKING_CSV))

        result = await pipeline.run()

        by_description = {t.description: t for t in result.transactions}
        assert set(by_description) == {"STARBUCKS #123", "ACME PAYROLL", "AMAZON", "CORNER SHOP"}
        assert by_description["STARBUCKS #123"].amount == Decimal("-5.50")
        assert by_description["STARBUCKS #123"].date == date(2024, 1, 15)
        assert by_description["ACME PAYROLL"].amount == Decimal("2500.00")
        assert by_description["ACME PAYROLL"].category is StandardCategory.INCOME
        assert by_description["AMAZON"].category is StandardCategory.SHOPPING
        assert store.transactions == result.transactions
        assert result.report.saved_count == 4

    @pytest.mark.asyncio
    async def test_no_category_column_skips_standardization(self, tmp_path: Path) -> None:
        """Test that every row reaches the categorizer uncategorized."""
        service = FakeInferenceService(handler=rule_based_handler())
        pipeline = make_pipeline(service)
        pipeline.queue_file(write_csv(tmp_path, "checking.csv", CHECKING_CSV))

        result = await pipeline.run()

        assert service.prompts_for(STANDARDIZATION_SYSTEM_PROMPT) == []
        assert result.report.standardized_labels == {}
        assert result.report.categorization.total == 4

    @pytest.mark.asyncio
    async def test_transfer_pair_removed_and_labels_standardized(self, tmp_path: Path) -> None:
        """Test the savings transfer legs disappear from the output."""
        pipeline = make_pipeline()
        pipeline.queue_file(write_csv(tmp_path, "savings.csv", SAVINGS_CSV))

        result = await pipeline.run()

        descriptions = [t.description for t in result.transactions]
        assert descriptions == ["Interest earned", "AMAZON"]
        assert result.report.resolution.transfer_pairs == 1
        assert result.report.resolution.transfer_legs_removed == 2
        assert result.report.resolution.exact_duplicates_removed == 0
        assert result.report.standardized_labels == {"Savings": "Savings", "Interest Income": "Income"}

    @pytest.mark.asyncio
    async def test_replay_is_idempotent(self, tmp_path: Path) -> None:
        """Test a second run over the same files adds nothing to the store."""
        store = CSVTransactionStore(tmp_path / "store.csv")
        files = [
            write_csv(tmp_path, "checking.csv", CHECKING_CSV),
            write_csv(tmp_path, "savings.csv", SAVINGS_CSV),
        ]

        first = make_pipeline(store=store)
        for f in files:
            first.queue_file(f)
        first_result = await first.run()

        second = make_pipeline(store=store)
        for f in files:
            second.queue_file(f)
        second_result = await second.run()

        assert first_result.report.saved_count == len(first_result.transactions)
        assert second_result.report.saved_count == 0
        assert [t.id for t in second_result.transactions] == [t.id for t in first_result.transactions]
        assert len(store.load_keys()) == len(first_result.transactions)

    @pytest.mark.asyncio
    async def test_every_output_category_is_in_taxonomy(self, tmp_path: Path) -> None:
        """Test taxonomy closure even when the service answers nonsense."""
        service = FakeInferenceService(handler=lambda system, user: '["Snacks", "Stuff"]')
        pipeline = make_pipeline(service)
        pipeline.queue_file(write_csv(tmp_path, "checking.csv", CHECKING_CSV))
        pipeline.queue_file(write_csv(tmp_path, "savings.csv", SAVINGS_CSV))

        result = await pipeline.run()

        assert result.transactions
        assert all(isinstance(t.category, StandardCategory) for t in result.transactions)

    @pytest.mark.asyncio
    async def test_cache_spans_files_within_a_run(self, tmp_path: Path) -> None:
        """Test a merchant from the first file is not re-sent for the second."""
        config = Config()
        config.pipeline.batch_size = 1
        service = FakeInferenceService(handler=rule_based_handler())
        pipeline = make_pipeline(service, config=config)
        pipeline.queue_file(write_csv(tmp_path, "checking.csv", CHECKING_CSV))
        pipeline.queue_file(write_csv(tmp_path, "savings.csv", SAVINGS_CSV))

        result = await pipeline.run()

        sent = [m for prompt in service.batch_prompts for m in batch_merchants(prompt)]
        assert sent.count("AMAZON") == 1
        assert result.report.categorization.cache_hits == 1

    @pytest.mark.asyncio
    async def test_cache_discarded_between_runs(self, tmp_path: Path) -> None:
        """Test a new run classifies merchants again."""
        service = FakeInferenceService(handler=rule_based_handler())
        pipeline = make_pipeline(service)
        path = write_csv(tmp_path, "checking.csv", CHECKING_CSV)

        pipeline.queue_file(path)
        await pipeline.run()
        pipeline.queue_file(path)
        await pipeline.run()

        sent = [m for prompt in service.batch_prompts for m in batch_merchants(prompt)]
        assert sent.count("AMAZON") == 2

    @pytest.mark.asyncio
    async def test_ai_requests_counted(self, tmp_path: Path) -> None:
        """Test the report counts inference requests."""
        service = FakeInferenceService(handler=rule_based_handler())
        pipeline = make_pipeline(service)
        pipeline.queue_file(write_csv(tmp_path, "savings.csv", SAVINGS_CSV))

        result = await pipeline.run()

        assert result.report.ai_requests == len(service.calls)
        assert result.report.ai_requests == 2

    @pytest.mark.asyncio
    async def test_dry_run_does_not_save(self, tmp_path: Path) -> None:
        """Test that dry runs skip the store."""
        store = InMemoryTransactionStore()
        pipeline = make_pipeline(store=store, dry_run=True)
        pipeline.queue_file(write_csv(tmp_path, "checking.csv", CHECKING_CSV))

        result = await pipeline.run()

        assert len(result.transactions) == 4
        assert store.save_calls == 0
        assert result.report.saved_count == 0

    @pytest.mark.asyncio
    async def test_without_inference_service(self, tmp_path: Path) -> None:
        """Test a heuristics-only run."""
        pipeline = ImportPipeline(Config(), inference=None, today=TODAY)
        pipeline.queue_file(write_csv(tmp_path, "checking.csv", CHECKING_CSV))

        result = await pipeline.run()

        assert len(result.transactions) == 4
        assert result.report.ai_requests == 0


class TestPipelineFileErrors:
    """Tests for per-file failures."""

    @pytest.mark.asyncio
    async def test_unmappable_file_is_skipped(self, tmp_path: Path) -> None:
        """Test missing essential columns fail only that file."""
        service = FakeInferenceService(handler=rule_based_handler(column_roles={"date": None}))
        pipeline = make_pipeline(service)
        pipeline.queue_file(write_csv(tmp_path, "odd.csv", "When,Who,How Much\n2024-01-01,X,1\n"))
        pipeline.queue_file(write_csv(tmp_path, "checking.csv", CHECKING_CSV))

        result = await pipeline.run()

        failed = result.report.failed_files
        assert [f.file_name for f in failed] == ["odd.csv"]
        assert "date" in failed[0].error
        assert len(service.prompts_for(COLUMN_MAPPING_SYSTEM_PROMPT)) == 1
        assert len(result.transactions) == 4

    @pytest.mark.asyncio
    async def test_ai_column_mapping_recorded(self, tmp_path: Path) -> None:
        """Test a file mapped with help from the service."""
        service = FakeInferenceService(
            handler=rule_based_handler(
                column_roles={"date": "When", "merchant": "Who", "amount": "How Much"}
            )
        )
        pipeline = make_pipeline(service)
        pipeline.queue_file(write_csv(tmp_path, "odd.csv", "When,Who,How Much\n2024-01-01,Cinema,-9.00\n"))

        result = await pipeline.run()

        assert result.report.files[0].used_ai_mapping
        assert result.transactions[0].description == "Cinema"
        assert result.transactions[0].amount == Decimal("-9.00")

    @pytest.mark.asyncio
    async def test_missing_file_is_skipped(self, tmp_path: Path) -> None:
        """Test an unreadable path is recorded and the run continues."""
        pipeline = make_pipeline()
        pipeline.queue_file(tmp_path / "missing.csv")
        pipeline.queue_file(write_csv(tmp_path, "checking.csv", CHECKING_CSV))

        result = await pipeline.run()

        assert result.report.files[0].error is not None
        assert result.report.files[1].succeeded
        assert len(result.transactions) == 4

    @pytest.mark.asyncio
    async def test_all_files_failing_still_completes(self, tmp_path: Path) -> None:
        """Test a run where nothing can be imported."""
        store = InMemoryTransactionStore()
        pipeline = make_pipeline(store=store)
        pipeline.queue_file(write_csv(tmp_path, "empty.csv", ""))

        result = await pipeline.run()

        assert result.transactions == []
        assert len(result.report.failed_files) == 1
        assert store.save_calls == 1

    @pytest.mark.asyncio
    async def test_dropped_rows_reported(self, tmp_path: Path) -> None:
        """Test the run report surfaces silently dropped rows."""
        content = "Date,Description,Amount\nbad date,Shop,-1.00\n2024-01-02,,-1.00\n2024-01-03,Shop,0\n"
        pipeline = make_pipeline()
        pipeline.queue_file(write_csv(tmp_path, "rows.csv", content))

        result = await pipeline.run()

        file_result = result.report.files[0]
        assert file_result.rows_read == 3
        assert file_result.rows_extracted == 1
        assert file_result.dates_defaulted == 1
        assert result.report.rows_dropped == 2
        assert result.transactions[0].date == TODAY


class TestPipelineStateMachine:
    """Tests for stages, queueing and cancellation."""

    @pytest.mark.asyncio
    async def test_no_files_queued(self) -> None:
        """Test that an empty queue is rejected."""
        pipeline = make_pipeline()
        with pytest.raises(NoFilesQueued):
            await pipeline.run()
        assert pipeline.stage is PipelineStage.IDLE

    @pytest.mark.asyncio
    async def test_stage_sequence_and_progress(self, tmp_path: Path) -> None:
        """Test stages are visited in order and progress never decreases."""
        events: list[tuple[PipelineStage, float]] = []
        pipeline = make_pipeline(on_progress=lambda stage, progress, message: events.append((stage, progress)))
        pipeline.queue_file(write_csv(tmp_path, "checking.csv", CHECKING_CSV))

        await pipeline.run()

        stages: list[PipelineStage] = []
        for stage, _ in events:
            if not stages or stages[-1] is not stage:
                stages.append(stage)
        assert stages == [
            PipelineStage.READING_FILES,
            PipelineStage.DETECTING_COLUMNS,
            PipelineStage.EXTRACTING_DATA,
            PipelineStage.MAPPING_CATEGORIES,
            PipelineStage.CATEGORIZING_TRANSACTIONS,
            PipelineStage.DEDUPLICATING,
            PipelineStage.SAVING,
            PipelineStage.COMPLETE,
        ]
        progress = [p for _, p in events]
        assert progress == sorted(progress)
        assert progress[-1] == 1.0
        assert pipeline.stage is PipelineStage.IDLE
        assert pipeline.queued_files == []

    def test_illegal_transition(self) -> None:
        """Test that stages cannot be skipped."""
        pipeline = make_pipeline()
        with pytest.raises(PipelineError, match="Illegal stage transition"):
            pipeline._transition(PipelineStage.SAVING)

    def test_queue_management(self, tmp_path: Path) -> None:
        """Test queueing, duplicate paths and clearing."""
        pipeline = make_pipeline()
        pipeline.queue_file(tmp_path / "a.csv")
        pipeline.queue_file(str(tmp_path / "a.csv"))
        pipeline.queue_file(tmp_path / "b.csv")
        assert pipeline.queued_files == [tmp_path / "a.csv", tmp_path / "b.csv"]
        pipeline.clear_queue()
        assert pipeline.queued_files == []

    @pytest.mark.asyncio
    async def test_cancel_between_batches(self, tmp_path: Path) -> None:
        """Test cancellation stops the run before saving."""
        store = InMemoryTransactionStore()

        def on_progress(stage: PipelineStage, progress: float, message: str) -> None:
            if stage is PipelineStage.CATEGORIZING_TRANSACTIONS:
                pipeline.cancel()

        pipeline = make_pipeline(store=store, on_progress=on_progress)
        path = write_csv(tmp_path, "checking.csv", CHECKING_CSV)
        pipeline.queue_file(path)

        with pytest.raises(PipelineCancelled):
            await pipeline.run()

        assert store.save_calls == 0
        assert pipeline.stage is PipelineStage.IDLE
        assert pipeline.queued_files == [path]

    @pytest.mark.asyncio
    async def test_persistence_failure_propagates(self, tmp_path: Path) -> None:
        """Test store failures surface and reset the stage."""
        pipeline = make_pipeline(store=FailingStore())
        pipeline.queue_file(write_csv(tmp_path, "checking.csv", CHECKING_CSV))

        with pytest.raises(PersistenceFailure, match="store offline"):
            await pipeline.run()

        assert pipeline.stage is PipelineStage.IDLE

    @pytest.mark.asyncio
    async def test_pipeline_reusable_after_failure(self, tmp_path: Path) -> None:
        """Test a failed run leaves the pipeline ready for another."""
        pipeline = make_pipeline(store=FailingStore())
        pipeline.queue_file(write_csv(tmp_path, "checking.csv", CHECKING_CSV))
        with pytest.raises(PersistenceFailure):
            await pipeline.run()

        pipeline.store = InMemoryTransactionStore()
        result = await pipeline.run()
        assert len(result.transactions) == 4
