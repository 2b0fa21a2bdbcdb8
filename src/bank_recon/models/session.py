"""Reconciliation session aggregate and its reconciling items."""

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from .transaction import (
    BookTransaction,
    StatementTransaction,
    TransactionMatch,
    new_id,
)


class SessionStatus(Enum):
    """Lifecycle state of a reconciliation session."""

    INITIATED = "INITIATED"
    COMPLETED = "COMPLETED"


class ReconciliationItemType(Enum):
    """Kinds of book-vs-bank differences tracked outside of matching."""

    OUTSTANDING_DEPOSIT = "OUTSTANDING_DEPOSIT"
    OUTSTANDING_CHECK = "OUTSTANDING_CHECK"
    BANK_CHARGE = "BANK_CHARGE"
    INTEREST_EARNED = "INTEREST_EARNED"
    NSF_CHECK = "NSF_CHECK"
    BANK_ERROR = "BANK_ERROR"
    BOOK_ERROR = "BOOK_ERROR"


RECONCILING_ITEM_TYPES = frozenset(ReconciliationItemType)

ADJUSTABLE_ITEM_TYPES = frozenset(
    {ReconciliationItemType.BANK_CHARGE, ReconciliationItemType.INTEREST_EARNED}
)


@dataclass(frozen=True)
class ReconciliationItem:
    """A tracked difference, optionally backed by a posted adjusting entry."""

    item_type: ReconciliationItemType
    amount: Decimal
    description: str
    added_by: str
    reference: Optional[str] = None
    adjusting_entry_id: Optional[str] = None
    added_at: datetime = field(default_factory=datetime.now)
    id: str = field(default_factory=new_id)


@dataclass(frozen=True)
class AuditEntry:
    """One line of the session audit trail."""

    action: str
    performed_by: str
    details: str = ""
    match_id: Optional[str] = None
    item_id: Optional[str] = None
    performed_at: datetime = field(default_factory=datetime.now)


@dataclass
class ReconciliationSession:
    """
    State of one bank account reconciliation against one statement.

    Owned and mutated only by ``ReconciliationService`` under the session
    lock; once ``status`` is COMPLETED nothing changes again.
    """

    bank_account_id: str
    statement_date: date
    statement_ending_balance: Decimal
    book_balance: Decimal
    period_start: date
    initiated_by: str
    currency: str = "USD"
    statement_id: Optional[str] = None
    status: SessionStatus = SessionStatus.INITIATED

    book_transactions: "OrderedDict[str, BookTransaction]" = field(default_factory=OrderedDict)
    statement_transactions: "OrderedDict[str, StatementTransaction]" = field(
        default_factory=OrderedDict
    )
    unmatched_book: "OrderedDict[str, BookTransaction]" = field(default_factory=OrderedDict)
    unmatched_statement: "OrderedDict[str, StatementTransaction]" = field(
        default_factory=OrderedDict
    )
    matches: "OrderedDict[str, TransactionMatch]" = field(default_factory=OrderedDict)
    items: "OrderedDict[str, ReconciliationItem]" = field(default_factory=OrderedDict)
    audit_log: list[AuditEntry] = field(default_factory=list)

    initial_variance: Decimal = Decimal("0.00")
    current_variance: Decimal = Decimal("0.00")
    final_variance: Optional[Decimal] = None

    initiated_at: datetime = field(default_factory=datetime.now)
    completed_by: Optional[str] = None
    completed_at: Optional[datetime] = None
    id: str = field(default_factory=new_id)

    @property
    def is_active(self) -> bool:
        return self.status != SessionStatus.COMPLETED

    def overlaps(self, period_start: date, period_end: date) -> bool:
        """Whether this session's period intersects the given one."""
        return self.period_start <= period_end and period_start <= self.statement_date

    def matched_book_ids(self) -> set[str]:
        return {m.book_transaction.id for m in self.matches.values()}

    def matched_statement_ids(self) -> set[str]:
        return {m.statement_transaction.id for m in self.matches.values()}

    def find_match_for(
        self, book_tx_id: Optional[str] = None, statement_tx_id: Optional[str] = None
    ) -> Optional[TransactionMatch]:
        """Return the active match linking either transaction, if any."""
        for match in self.matches.values():
            if book_tx_id is not None and match.book_transaction.id == book_tx_id:
                return match
            if statement_tx_id is not None and match.statement_transaction.id == statement_tx_id:
                return match
        return None

    def record(self, entry: AuditEntry) -> None:
        self.audit_log.append(entry)
