"""
Statement import: validation, normalization, duplicate detection and
categorization of raw bank statement rows.
"""

from collections import Counter, OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Optional, Union
import asyncio
import logging
import re

from pydantic import ValidationError as PydanticValidationError

from ..config import ImportSettings
from ..models.transaction import (
    RawStatementRow,
    StatementCategory,
    StatementTransaction,
    new_id,
    to_money,
)
from ..utils.exceptions import ConflictError, OperationCancelled, ValidationError

logger = logging.getLogger(__name__)

RowInput = Union[RawStatementRow, dict[str, Any]]

# Substring keywords in priority order; short abbreviations match whole tokens only
_CATEGORY_RULES: list[tuple[StatementCategory, tuple[str, ...], tuple[str, ...]]] = [
    (StatementCategory.CHECK, ("check",), ("chk",)),
    (StatementCategory.BANK_FEE, ("fee", "charge"), ()),
    (StatementCategory.INTEREST, ("interest",), ()),
    (StatementCategory.TRANSFER, ("transfer",), ()),
    (StatementCategory.WITHDRAWAL, ("withdrawal",), ("wd",)),
]


@dataclass
class StatementImportOutcome:
    """Normalized statement transactions ready to join a session."""

    transactions: list[StatementTransaction]
    categorized: dict[StatementCategory, list[StatementTransaction]]
    warnings: list[str] = field(default_factory=list)
    imported_at: datetime = field(default_factory=datetime.now)

    @property
    def category_counts(self) -> dict[str, int]:
        return {category.value: len(txns) for category, txns in self.categorized.items()}


def categorize(description: str, amount: Decimal) -> StatementCategory:
    """
    Derive a statement category from the description and the amount sign.

    A deposit keyword or any positive amount wins before the other rules.
    """
    text = description.lower()
    if "deposit" in text or amount > 0:
        return StatementCategory.DEPOSIT

    tokens = set(re.split(r"[^a-z0-9]+", text))
    for category, keywords, abbreviations in _CATEGORY_RULES:
        if any(k in text for k in keywords) or any(a in tokens for a in abbreviations):
            return category

    return StatementCategory.OTHER


def normalize_text(value: Optional[str]) -> str:
    return (value or "").strip().upper()


class StatementImportProcessor:
    """
    Turns raw statement rows into immutable ``StatementTransaction`` objects.

    Rows are coerced, validated and normalized chunk by chunk so a caller can
    cancel a large import between chunks; duplicate detection runs once over
    the whole batch afterwards. Any error rejects the entire batch.
    """

    def __init__(self, settings: Optional[ImportSettings] = None):
        self.settings = settings or ImportSettings()

    async def process(
        self,
        rows: Iterable[RowInput],
        validate: bool = True,
        cancel_event: Optional[asyncio.Event] = None,
        existing: Iterable[StatementTransaction] = (),
    ) -> StatementImportOutcome:
        """
        Validate, normalize, de-duplicate and categorize a statement batch.

        Args:
            rows: Raw rows (dicts or RawStatementRow)
            validate: Collect field errors and warnings before normalizing
            cancel_event: Checked between chunks; when set the import stops
            existing: Transactions already imported into the same session

        Returns:
            StatementImportOutcome for the whole batch

        Raises:
            ValidationError: Batch too large or rows fail validation
            ConflictError: Duplicate rows detected
            OperationCancelled: ``cancel_event`` was set
        """
        rows = list(rows)
        limit = self.settings.batch_size_limit
        if len(rows) > limit:
            raise ValidationError(
                f"Statement transaction count exceeds batch limit ({limit})",
                context={"row_count": len(rows), "batch_size_limit": limit},
            )

        errors: list[str] = []
        warnings: list[str] = []
        normalized: list[StatementTransaction] = []

        chunk_size = max(1, self.settings.chunk_size)
        for start in range(0, len(rows), chunk_size):
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Statement import cancelled after {start} rows")
                raise OperationCancelled(
                    "Statement import cancelled", context={"rows_processed": start}
                )

            chunk = rows[start : start + chunk_size]
            chunk_txns, chunk_errors, chunk_warnings = self._process_chunk(
                chunk, start, validate
            )
            normalized.extend(chunk_txns)
            errors.extend(chunk_errors)
            warnings.extend(chunk_warnings)

            # Let other tasks run between chunks
            await asyncio.sleep(0)

        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelled(
                "Statement import cancelled", context={"rows_processed": len(rows)}
            )

        if errors:
            logger.warning(f"Statement import rejected: {len(errors)} error(s)")
            raise ValidationError(
                f"{len(errors)} statement row(s) failed validation",
                errors=errors,
                warnings=warnings,
            )

        duplicates = self.detect_duplicates(normalized, existing)
        if duplicates:
            logger.warning(f"Statement import rejected: {len(duplicates)} duplicate(s)")
            raise ConflictError(
                f"{len(duplicates)} duplicate transactions detected",
                warnings=warnings
                + [f"Duplicate: {txn.reference or '-'} - {txn.amount}" for txn in duplicates],
                context={
                    "duplicates": [
                        {
                            "row_number": txn.row_number,
                            "date": txn.date.isoformat(),
                            "amount": str(txn.amount),
                            "description": txn.description,
                            "reference": txn.reference,
                        }
                        for txn in duplicates
                    ]
                },
            )

        repeated_ids = self.repeated_ids(normalized)
        if repeated_ids:
            logger.warning(f"Statement import rejected: {len(repeated_ids)} repeated id(s)")
            raise ConflictError(
                f"{len(repeated_ids)} transaction id(s) appear more than once in the batch",
                errors=[f"Repeated transaction id: {txn_id}" for txn_id in repeated_ids],
                warnings=warnings,
                context={"repeated_ids": repeated_ids},
            )

        categorized: "OrderedDict[StatementCategory, list[StatementTransaction]]" = OrderedDict()
        for txn in normalized:
            categorized.setdefault(txn.category, []).append(txn)

        logger.info(
            f"Imported {len(normalized)} statement transactions "
            f"({len(warnings)} warning(s))"
        )
        return StatementImportOutcome(
            transactions=normalized, categorized=dict(categorized), warnings=warnings
        )

    def _process_chunk(
        self, chunk: list[RowInput], offset: int, validate: bool
    ) -> tuple[list[StatementTransaction], list[str], list[str]]:
        txns: list[StatementTransaction] = []
        errors: list[str] = []
        warnings: list[str] = []

        for position, raw in enumerate(chunk):
            index = offset + position
            try:
                row = raw if isinstance(raw, RawStatementRow) else RawStatementRow.model_validate(raw)
            except PydanticValidationError as e:
                errors.append(f"Transaction {index} is invalid: {_first_error(e)}")
                continue

            if validate:
                row_errors, row_warnings = self._validate_row(row, index)
                errors.extend(row_errors)
                warnings.extend(row_warnings)
                if row_errors:
                    continue
            elif row.date is None:
                errors.append(f"Transaction {index} missing transaction date")
                continue

            txns.append(self._normalize_row(row, index))

        return txns, errors, warnings

    def _validate_row(self, row: RawStatementRow, index: int) -> tuple[list[str], list[str]]:
        errors: list[str] = []
        warnings: list[str] = []

        if row.amount == 0:
            warnings.append(f"Transaction {index} has zero amount")
        if not row.description.strip():
            warnings.append(f"Transaction {index} has blank description")
        if row.date is None:
            errors.append(f"Transaction {index} missing transaction date")

        return errors, warnings

    def _normalize_row(self, row: RawStatementRow, index: int) -> StatementTransaction:
        description = normalize_text(row.description)
        reference = normalize_text(row.reference) or None
        amount = to_money(row.amount)
        txn_date: date = row.date  # type: ignore[assignment]

        return StatementTransaction(
            id=row.id or new_id(),
            date=txn_date,
            amount=amount,
            description=description,
            reference=reference,
            category=categorize(description, amount),
            currency=row.currency,
            row_number=index,
        )

    @staticmethod
    def detect_duplicates(
        transactions: list[StatementTransaction],
        existing: Iterable[StatementTransaction] = (),
    ) -> list[StatementTransaction]:
        """Return every transaction whose (date, amount, description) was already seen."""
        seen = {txn.duplicate_key for txn in existing}
        duplicates: list[StatementTransaction] = []

        for txn in transactions:
            key = txn.duplicate_key
            if key in seen:
                duplicates.append(txn)
            else:
                seen.add(key)

        return duplicates

    @staticmethod
    def repeated_ids(transactions: Iterable[StatementTransaction]) -> list[str]:
        """Ids carried by more than one transaction, in first-seen order."""
        counts = Counter(txn.id for txn in transactions)
        return [txn_id for txn_id, count in counts.items() if count > 1]


def _first_error(error: PydanticValidationError) -> str:
    details = error.errors()
    if not details:
        return str(error)
    first = details[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg', 'invalid value')}" if location else first.get("msg", "")
