"""
CSV parsers for bank statement exports and ledger (book) transaction exports.
Column names come from the ``input`` section of the configuration.
"""

from collections import Counter
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Optional
import logging

import pandas as pd

from ..config import InputConfig, ReconConfig
from ..models.transaction import BookTransaction, EntryType, RawStatementRow, to_money
from ..utils.exceptions import StatementParseError

logger = logging.getLogger(__name__)


class _CSVParser:
    """Shared CSV reading and cell parsing."""

    def __init__(self, config: Optional[ReconConfig] = None):
        """
        Initialize the parser with configuration.

        Args:
            config: Application configuration object
        """
        self.config = config or ReconConfig()
        self.input_config: InputConfig = self.config.input

    def _read(self, file_path: Path) -> pd.DataFrame:
        try:
            return pd.read_csv(
                file_path,
                encoding=self.input_config.encoding,
                delimiter=self.input_config.delimiter,
                dtype=str,
                keep_default_na=False,
            )
        except Exception as e:
            logger.error(f"Failed to read CSV file: {e}")
            raise StatementParseError(f"Failed to read CSV file {file_path}: {e}") from e

    def _parse_date(self, date_value: Any) -> Optional[date]:
        """
        Parse a date cell with the configured format, falling back to pandas.

        Returns:
            Python date object or None
        """
        if date_value is None or (isinstance(date_value, str) and not date_value.strip()):
            return None
        if isinstance(date_value, datetime):
            return date_value.date()
        if isinstance(date_value, date):
            return date_value

        try:
            return datetime.strptime(str(date_value).strip(), self.input_config.date_format).date()
        except ValueError:
            try:
                return pd.to_datetime(date_value).date()
            except (ValueError, TypeError):
                return None

    @staticmethod
    def _parse_amount(amount_value: Any) -> Optional[Decimal]:
        """Parse an amount cell, ignoring currency symbols and separators."""
        if amount_value is None:
            return None
        text = str(amount_value).replace("$", "").replace(",", "").strip()
        if not text:
            return None
        # Accounting negatives: (12.50)
        if text.startswith("(") and text.endswith(")"):
            text = f"-{text[1:-1]}"
        try:
            return Decimal(text)
        except InvalidOperation:
            return None

    @staticmethod
    def _text(row: pd.Series, column: str) -> Optional[str]:
        value = row.get(column)
        if value is None or pd.isna(value):
            return None
        value = str(value).strip()
        return value or None


class StatementCSVParser(_CSVParser):
    """Parser for bank statement CSV exports (one signed amount column)."""

    def parse_file(self, file_path: Path) -> list[RawStatementRow]:
        """
        Parse a statement CSV file into raw rows for the import processor.

        Rows are not validated here beyond reading the amount; missing dates
        and blank descriptions are reported by the import processor.

        Args:
            file_path: Path to the CSV file

        Returns:
            Raw statement rows in file order

        Raises:
            StatementParseError: Unreadable file or unparseable amounts
        """
        logger.info(f"Parsing statement CSV file: {file_path}")
        df = self._read(file_path)
        columns = self.input_config.statement_columns

        rows: list[RawStatementRow] = []
        bad_amounts: list[str] = []
        for idx, row in df.iterrows():
            amount = self._parse_amount(row.get(columns["amount"]))
            if amount is None:
                bad_amounts.append(f"Row {int(idx) + 1}: invalid amount")
                continue
            rows.append(
                RawStatementRow(
                    id=self._text(row, columns.get("id", "")),
                    date=self._parse_date(row.get(columns["date"])),
                    amount=amount,
                    description=self._text(row, columns["description"]) or "",
                    reference=self._text(row, columns.get("reference", "")),
                    currency=self.config.session.currency,
                )
            )

        if bad_amounts:
            raise StatementParseError(
                f"{len(bad_amounts)} statement row(s) have invalid amounts", errors=bad_amounts
            )

        logger.info(f"Extracted {len(rows)} rows from statement CSV")
        return rows


class BookCSVParser(_CSVParser):
    """Parser for ledger exports with separate debit and credit columns."""

    def parse_file(self, file_path: Path) -> list[BookTransaction]:
        """
        Parse a book CSV file into book transactions.

        A positive debit is money into the bank account and a positive
        credit money out. Rows with neither are skipped with a warning.

        Args:
            file_path: Path to the CSV file

        Returns:
            Book transactions in file order

        Raises:
            StatementParseError: Unreadable file or repeated transaction ids
        """
        logger.info(f"Parsing book CSV file: {file_path}")
        df = self._read(file_path)
        columns = self.input_config.book_columns
        currency = self.config.session.currency

        transactions: list[BookTransaction] = []
        for idx, row in df.iterrows():
            txn_date = self._parse_date(row.get(columns["date"]))
            if not txn_date:
                logger.warning(f"Row {idx}: Invalid date, skipping")
                continue

            debit_val = self._parse_amount(row.get(columns["debit"]))
            credit_val = self._parse_amount(row.get(columns["credit"]))
            if debit_val and debit_val > 0:
                amount, entry_type = debit_val, EntryType.DEBIT
            elif credit_val and credit_val > 0:
                amount, entry_type = credit_val, EntryType.CREDIT
            else:
                logger.warning(f"Row {idx}: No valid amount found, skipping")
                continue

            txn_id = self._text(row, columns.get("id", "")) or f"BOOK-{int(idx):05d}"
            transactions.append(
                BookTransaction(
                    id=txn_id,
                    date=txn_date,
                    amount=to_money(amount),
                    entry_type=entry_type,
                    description=self._text(row, columns["description"]) or "",
                    reference=self._text(row, columns.get("reference", "")),
                    currency=currency,
                    journal_entry_id=txn_id,
                )
            )

        counts = Counter(t.id for t in transactions)
        repeated = [txn_id for txn_id, count in counts.items() if count > 1]
        if repeated:
            raise StatementParseError(
                f"{len(repeated)} book transaction id(s) appear more than once",
                errors=[f"Repeated transaction id: {txn_id}" for txn_id in repeated],
            )

        logger.info(f"Extracted {len(transactions)} transactions from book CSV")
        return transactions
