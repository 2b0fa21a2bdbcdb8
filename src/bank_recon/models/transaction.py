"""Data models for book and statement transactions and their matches."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Optional, Union
import datetime as dt
import uuid

from pydantic import BaseModel, field_validator

CENT = Decimal("0.01")


def to_money(value: Union[Decimal, int, float, str]) -> Decimal:
    """Convert a value to a Decimal quantized to currency precision."""
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def new_id() -> str:
    """Generate a unique identifier."""
    return str(uuid.uuid4())


class EntryType(Enum):
    """Ledger line side (from the bank account's perspective)."""

    DEBIT = "debit"  # Money in
    CREDIT = "credit"  # Money out


class StatementCategory(Enum):
    """Category derived from a statement row."""

    DEPOSIT = "DEPOSIT"
    CHECK = "CHECK"
    BANK_FEE = "BANK_FEE"
    INTEREST = "INTEREST"
    TRANSFER = "TRANSFER"
    WITHDRAWAL = "WITHDRAWAL"
    OTHER = "OTHER"


class MatchType(Enum):
    """How a match was created."""

    AUTOMATIC = "AUTOMATIC"
    MANUAL = "MANUAL"
    SUGGESTED = "SUGGESTED"


class ConfidenceTier(Enum):
    """Confidence band of a candidate match."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


@dataclass(frozen=True)
class BookTransaction:
    """
    Snapshot of an unreconciled ledger line on the bank account.

    ``amount`` is always positive; ``entry_type`` gives the direction.
    """

    id: str
    date: date
    amount: Decimal
    entry_type: EntryType
    description: str = ""
    reference: Optional[str] = None
    currency: str = "USD"
    journal_entry_id: Optional[str] = None

    @property
    def signed_amount(self) -> Decimal:
        """Amount signed from the bank's point of view (debit in, credit out)."""
        return self.amount if self.entry_type == EntryType.DEBIT else -self.amount


class RawStatementRow(BaseModel):
    """An unvalidated bank statement row as supplied by the caller."""

    id: Optional[str] = None
    date: Optional[dt.date] = None
    amount: Decimal = Decimal("0")
    description: str = ""
    reference: Optional[str] = None
    currency: str = "USD"

    @field_validator("description", mode="before")
    @classmethod
    def _none_description(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("amount", mode="before")
    @classmethod
    def _strip_currency(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.replace("$", "").replace(",", "").strip()
        return value


@dataclass(frozen=True)
class StatementTransaction:
    """Normalized, categorized bank statement transaction."""

    id: str
    date: date
    amount: Decimal  # Signed: positive is money in
    description: str
    category: StatementCategory
    reference: Optional[str] = None
    currency: str = "USD"
    row_number: int = 0

    @property
    def duplicate_key(self) -> tuple[date, Decimal, str]:
        """Composite key used to detect duplicate statement rows."""
        return (self.date, self.amount, self.description)


@dataclass(frozen=True)
class CandidateMatch:
    """A scored (book, statement) pair that cleared the low cutoff."""

    book_transaction: BookTransaction
    statement_transaction: StatementTransaction
    confidence: float
    tier: ConfidenceTier
    criteria: tuple[str, ...]
    date_gap_days: int
    sequence: int
    component_scores: dict[str, float] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class TransactionMatch:
    """A link between one book transaction and one statement transaction."""

    book_transaction: BookTransaction
    statement_transaction: StatementTransaction
    match_type: MatchType
    confidence: float
    criteria: tuple[str, ...]
    matched_by: str
    matched_at: datetime = field(default_factory=datetime.now)
    id: str = field(default_factory=new_id)

    @property
    def amount_difference(self) -> Decimal:
        """Statement amount minus signed book amount."""
        return self.statement_transaction.amount - self.book_transaction.signed_amount

    @property
    def date_difference_days(self) -> int:
        """Absolute day gap between the two sides."""
        return abs((self.statement_transaction.date - self.book_transaction.date).days)

    @classmethod
    def from_candidate(
        cls, candidate: CandidateMatch, match_type: MatchType, matched_by: str
    ) -> "TransactionMatch":
        """Build a match from a scored candidate."""
        return cls(
            book_transaction=candidate.book_transaction,
            statement_transaction=candidate.statement_transaction,
            match_type=match_type,
            confidence=candidate.confidence,
            criteria=candidate.criteria,
            matched_by=matched_by,
        )
