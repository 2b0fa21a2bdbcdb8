"""
Command-line interface for the bank reconciliation matching engine.
"""

from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Optional
import asyncio
import logging
import sys

import click
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .config import load_config, generate_default_config, ReconConfig
from .importing.processor import StatementImportOutcome, StatementImportProcessor
from .matching.engine import MatchingEngine, MatchingOutcome
from .matching.lifecycle import MatchLifecycleManager
from .models.session import ReconciliationSession
from .models.transaction import BookTransaction, to_money
from .parsers.csv_parser import BookCSVParser, StatementCSVParser
from .reconciliation.variance import VarianceCalculator
from .reports.builder import ReportBuilder, ReportFormat
from .reports.excel_generator import ExcelReportGenerator
from .utils.exceptions import ReconciliationError
from .utils.logging_config import setup_logging

console = Console()

CLI_ACTOR = "CLI"


@click.group()
@click.version_option(version="0.1.0")
def main():
    """Bank Reconciliation Matching Engine."""
    pass


@main.command()
@click.argument("book_file", type=click.Path(exists=True, path_type=Path))
@click.argument("statement_file", type=click.Path(exists=True, path_type=Path))
@click.option(
    "-c",
    "--config",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file (YAML)",
)
@click.option("-o", "--output", type=click.Path(path_type=Path), help="Output Excel file path")
@click.option(
    "-t",
    "--threshold",
    type=click.FloatRange(0.0, 1.0),
    default=None,
    help="Minimum confidence for automatic matches",
)
@click.option(
    "--statement-balance",
    type=str,
    default="0.00",
    help="Statement ending balance used for the variance analysis",
)
@click.option(
    "--book-balance",
    type=str,
    default="0.00",
    help="Book balance used for the variance analysis",
)
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    default=None,
    help="Write a rotating debug log to this file",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option(
    "--dry-run", is_flag=True, help="Match and show summary without generating report"
)
def match(
    book_file: Path,
    statement_file: Path,
    config: Optional[Path],
    output: Optional[Path],
    threshold: Optional[float],
    statement_balance: str,
    book_balance: str,
    log_file: Optional[Path],
    verbose: bool,
    dry_run: bool,
):
    """
    Match ledger transactions against a bank statement.

    BOOK_FILE: CSV export of book (ledger) transactions
    STATEMENT_FILE: CSV export of the bank statement
    """
    try:
        recon_config = load_config(config)
        log_settings = recon_config.logging
        if log_file is None and log_settings.file:
            log_file = Path(log_settings.file)
        setup_logging(
            logging.DEBUG if verbose else log_settings.level,
            log_file=log_file,
            log_format=log_settings.format,
            max_bytes=log_settings.max_bytes,
            backup_count=log_settings.backup_count,
        )

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task("Parsing book CSV...", total=None)
            book_transactions = BookCSVParser(recon_config).parse_file(book_file)
            progress.update(task, completed=True)

            task = progress.add_task("Importing statement CSV...", total=None)
            raw_rows = StatementCSVParser(recon_config).parse_file(statement_file)
            processor = StatementImportProcessor(recon_config.import_settings)
            imported = asyncio.run(processor.process(raw_rows))
            progress.update(task, completed=True)

            task = progress.add_task("Running matching...", total=None)
            engine = MatchingEngine(recon_config.matching)
            outcome = engine.run(book_transactions, imported.transactions, threshold)
            progress.update(task, completed=True)

        for warning in imported.warnings:
            console.print(f"[yellow]Warning: {warning}[/yellow]")

        _display_summary(outcome)

        if dry_run:
            console.print("\n[yellow]Dry run - no report generated[/yellow]")
            return

        session = _build_session(
            recon_config,
            book_transactions,
            imported,
            outcome,
            statement_balance=to_money(Decimal(statement_balance)),
            book_balance=to_money(Decimal(book_balance)),
        )
        report = ReportBuilder().build(session, report_format=ReportFormat.COMPREHENSIVE)

        if output is None:
            now = datetime.now()
            output = Path(
                recon_config.output.filename_template.format(
                    date=now.strftime("%Y%m%d"), time=now.strftime("%H%M%S")
                )
            )

        report_path = ExcelReportGenerator(recon_config).generate_report(report, output)
        console.print(f"\n[green]Report generated: {report_path}[/green]")

    except Exception as e:
        _print_error(e)
        if verbose:
            console.print_exception()
        sys.exit(1)


@main.command("import-check")
@click.argument("statement_file", type=click.Path(exists=True, path_type=Path))
@click.option("-c", "--config", type=click.Path(exists=True, path_type=Path))
def import_check(statement_file: Path, config: Optional[Path]):
    """
    Validate a statement CSV and display its category breakdown.

    STATEMENT_FILE: CSV export of the bank statement
    """
    try:
        recon_config = load_config(config)
        raw_rows = StatementCSVParser(recon_config).parse_file(statement_file)
        processor = StatementImportProcessor(recon_config.import_settings)
        imported = asyncio.run(processor.process(raw_rows))
    except Exception as e:
        _print_error(e)
        sys.exit(1)

    table = Table(title=f"Statement Categories: {statement_file.name}")
    table.add_column("Category", style="cyan")
    table.add_column("Count", justify="right")
    table.add_column("Total", justify="right")

    for category, txns in imported.categorized.items():
        total = sum((t.amount for t in txns), Decimal("0.00"))
        table.add_row(category.value, str(len(txns)), f"${total:,.2f}")

    console.print(table)

    for warning in imported.warnings:
        console.print(f"[yellow]Warning: {warning}[/yellow]")

    console.print(f"\nTotal transactions: {len(imported.transactions)}")


@main.command("init-config")
@click.option(
    "-o", "--output", type=click.Path(path_type=Path), default=Path("config.yaml")
)
def init_config(output: Path):
    """Generate a sample configuration file."""
    generate_default_config(output)
    console.print(f"[green]Configuration file generated: {output}[/green]")


def _build_session(
    config: ReconConfig,
    book_transactions: list[BookTransaction],
    imported: StatementImportOutcome,
    outcome: MatchingOutcome,
    statement_balance: Decimal,
    book_balance: Decimal,
) -> ReconciliationSession:
    """Offline session holding the proposed matches, for reporting only."""
    dates = [t.date for t in book_transactions] + [t.date for t in imported.transactions]
    if not dates:
        raise click.UsageError("No transactions found in either file")

    session = ReconciliationSession(
        bank_account_id="CLI",
        statement_date=max(dates),
        statement_ending_balance=statement_balance,
        book_balance=book_balance,
        period_start=min(dates),
        initiated_by=CLI_ACTOR,
        currency=config.session.currency,
    )
    for txn in book_transactions:
        session.book_transactions[txn.id] = txn
        session.unmatched_book[txn.id] = txn
    for stmt in imported.transactions:
        session.statement_transactions[stmt.id] = stmt
        session.unmatched_statement[stmt.id] = stmt

    MatchLifecycleManager(config.session).commit_automatic(
        session, outcome.automatic_matches, CLI_ACTOR
    )
    session.current_variance = VarianceCalculator().final_variance(session)
    return session


def _display_summary(outcome: MatchingOutcome) -> None:
    """Display matching summary in console."""
    stats = outcome.statistics
    table = Table(title="Matching Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Book Transactions", str(stats.total_book_transactions))
    table.add_row("Statement Transactions", str(stats.total_statement_transactions))
    table.add_row("Automatic Matches", str(stats.automatic_matches))
    table.add_row("Suggested Matches", str(stats.suggested_matches))
    table.add_row("Unmatched Book", str(stats.unmatched_book))
    table.add_row("Unmatched Statement", str(stats.unmatched_statement))
    for tier, count in stats.candidates_by_tier.items():
        table.add_row(f"{tier.title()} Confidence Candidates", str(count))
    table.add_row("Confidence Threshold", f"{outcome.confidence_threshold:.2f}")
    table.add_row("Processing Time", f"{outcome.processing_time_seconds:.2f}s")

    console.print(table)

    if outcome.suggested_matches:
        suggestions = Table(title="Suggested Matches")
        suggestions.add_column("Book ID")
        suggestions.add_column("Statement ID")
        suggestions.add_column("Confidence", justify="right")
        suggestions.add_column("Criteria")
        for suggestion in outcome.suggested_matches[:20]:  # Show first 20
            suggestions.add_row(
                suggestion.book_transaction.id,
                suggestion.statement_transaction.id,
                f"{suggestion.confidence:.2f}",
                "; ".join(suggestion.criteria),
            )
        console.print(suggestions)


def _print_error(error: Exception) -> None:
    console.print(f"[red]Error: {error}[/red]")
    if isinstance(error, ReconciliationError):
        for detail in error.errors:
            if detail != str(error):
                console.print(f"[red]  - {detail}[/red]")
        for warning in error.warnings:
            console.print(f"[yellow]  {warning}[/yellow]")


if __name__ == "__main__":
    main()
