"""Command-line interface for the transaction importer."""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from transaction_importer import __version__
from transaction_importer.config import Config, ConfigError, load_config
from transaction_importer.models.report import RunReport
from transaction_importer.processing.ai import AIClient
from transaction_importer.utils.logging_config import get_logger, setup_logging

# Load environment variables from .env file
load_dotenv()

console = Console()
logger = get_logger(__name__)


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="transaction-importer",
        description="Import bank statement CSV exports as categorized transactions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s checking.csv savings.csv
  %(prog)s --store ledger.csv --batch-size 20 exports/*.csv
  %(prog)s --no-ai --dry-run statement.csv
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "files",
        nargs="*",
        type=Path,
        metavar="FILE",
        help="CSV files to import",
    )

    parser.add_argument(
        "--config-dir",
        type=Path,
        default=Path("config"),
        help="Configuration directory (default: ./config)",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to settings.yaml (default: <config-dir>/settings.yaml)",
    )

    parser.add_argument(
        "--store",
        type=Path,
        default=None,
        help="CSV file that stores imported transactions (default from settings)",
    )

    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Transactions per categorization request (default from settings)",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Run the whole pipeline but do not save",
    )

    parser.add_argument(
        "--no-ai",
        action="store_true",
        help="Use heuristics and the keyword table only; no inference requests",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v for info, -vv for debug)",
    )

    return parser


def get_log_level(verbosity: int) -> str:
    """Convert verbosity count to log level.

    Args:
        verbosity: Number of -v flags.

    Returns:
        Log level string.
    """
    if verbosity >= 2:
        return "DEBUG"
    elif verbosity >= 1:
        return "INFO"
    else:
        return "WARNING"


def create_inference_service(config: Config, no_ai: bool) -> Optional[AIClient]:
    """Pick the inference service for this run.

    Returns None for a heuristics-only run, which is also the fallback
    when the API key is not set.
    """
    if no_ai:
        return None

    client = AIClient(config.inference)
    if not client.is_available:
        console.print(
            f"[yellow]{config.inference.api_key_env} is not set; "
            "continuing with heuristics only[/yellow]"
        )
        return None
    return client


def display_summary(report: RunReport, transaction_count: int, dry_run: bool) -> None:
    """Display the run report.

    Args:
        report: Report returned by the pipeline.
        transaction_count: Transactions produced by the run.
        dry_run: Whether saving was skipped.
    """
    files_table = Table(title="Files")
    files_table.add_column("File")
    files_table.add_column("Rows", justify="right")
    files_table.add_column("Extracted", justify="right")
    files_table.add_column("Dropped", justify="right")
    files_table.add_column("Dates defaulted", justify="right")
    files_table.add_column("Status")

    for result in report.files:
        if result.error:
            status = f"[red]{result.error}[/red]"
        elif result.used_ai_mapping:
            status = "[green]ok[/green] (AI column mapping)"
        else:
            status = "[green]ok[/green]"
        files_table.add_row(
            result.file_name,
            str(result.rows_read),
            str(result.rows_extracted),
            str(result.rows_dropped),
            str(result.dates_defaulted),
            status,
        )
    console.print(files_table)

    categorization = report.categorization
    resolution = report.resolution
    console.print("\n[bold]Processing Summary[/bold]")
    console.print(f"  Rows extracted: {report.rows_extracted}")
    console.print(f"  Rows dropped: {report.rows_dropped}")
    console.print(f"  Input categories standardized: {len(report.standardized_labels)}")
    console.print(
        f"  Categorized: {categorization.total} "
        f"({categorization.cache_hits} from cache, "
        f"{categorization.batch_assigned + categorization.per_item_assigned} by AI, "
        f"{categorization.keyword_fallbacks} by keyword)"
    )
    console.print(f"  Exact duplicates removed: {resolution.exact_duplicates_removed}")
    console.print(
        f"  Transfer pairs removed: {resolution.transfer_pairs} "
        f"({resolution.transfer_legs_removed} transactions)"
    )
    console.print(f"  Transactions: {transaction_count}")
    console.print(f"  Inference requests: {report.ai_requests}")
    if dry_run:
        console.print("  [yellow]Dry run: nothing saved[/yellow]")
    else:
        console.print(f"  Newly saved: {report.saved_count}")


def create_progress() -> Progress:
    """Create a progress display.

    Returns:
        Rich Progress instance.
    """
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        console=console,
    )


def main() -> int:
    """Main entry point for the CLI.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = create_parser()
    args = parser.parse_args()

    try:
        config = load_config(settings_path=args.config, config_dir=args.config_dir)
    except (ConfigError, FileNotFoundError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    log_level = get_log_level(args.verbose) if args.verbose else config.logging.level
    setup_logging(level=log_level, log_file=config.logging.file, console_output=args.verbose > 0)

    # Apply CLI overrides
    if args.batch_size is not None:
        if args.batch_size < 1:
            console.print("[red]Error: --batch-size must be at least 1[/red]")
            return 1
        config.pipeline.batch_size = args.batch_size
    if args.store is not None:
        config.output.store_path = str(args.store)

    from transaction_importer.output import CSVTransactionStore, PersistenceFailure
    from transaction_importer.pipeline import ImportPipeline, NoFilesQueued, PipelineCancelled

    console.print(f"[bold]Transaction Importer v{__version__}[/bold]\n")

    store = CSVTransactionStore(Path(config.output.store_path), config.output.date_format)
    if not args.dry_run:
        console.print(f"Store: {store.path}")

    with create_progress() as progress:
        task = progress.add_task("Idle", total=1.0)

        def on_progress(stage, fraction, message):
            progress.update(task, completed=fraction, description=message)

        inference = create_inference_service(config, args.no_ai)
        pipeline = ImportPipeline(
            config,
            inference=inference,
            store=store,
            on_progress=on_progress,
            dry_run=args.dry_run,
        )
        for file_path in args.files:
            pipeline.queue_file(file_path)

        try:
            result = asyncio.run(pipeline.run())
        except NoFilesQueued as e:
            console.print(f"[red]Error: {e}[/red]")
            parser.print_usage()
            return 1
        except PersistenceFailure as e:
            console.print(f"[red]Error saving transactions: {e}[/red]")
            return 1
        except (PipelineCancelled, KeyboardInterrupt):
            console.print("[yellow]Import cancelled[/yellow]")
            return 130

    display_summary(result.report, len(result.transactions), args.dry_run)
    if inference is not None:
        console.print(f"\n{inference.get_usage_summary()}")

    if result.report.failed_files:
        console.print(
            f"\n[yellow]{len(result.report.failed_files)} file(s) could not be imported[/yellow]"
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())
