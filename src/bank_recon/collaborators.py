"""
Interfaces of the ledger and persistence collaborators used by the engine.

The engine never implements these; hosts supply async implementations.
``InMemorySessionRepository`` is the only concrete one shipped, for hosts
that keep sessions in process.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Awaitable, Optional, Protocol, TypeVar
import asyncio
import copy
import logging

from .models.session import ReconciliationSession
from .models.transaction import EntryType
from .utils.exceptions import DependencyFailure, ReconciliationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def call_collaborator(call: Awaitable[T], description: str, timeout: Optional[float]) -> T:
    """
    Await a collaborator call with a timeout.

    Timeouts and unexpected collaborator exceptions surface as
    ``DependencyFailure``; retrying is the collaborator's concern.
    """
    try:
        return await asyncio.wait_for(call, timeout=timeout)
    except asyncio.TimeoutError as e:
        logger.error(f"{description} timed out after {timeout}s")
        raise DependencyFailure(f"{description} timed out after {timeout}s") from e
    except ReconciliationError:
        raise
    except Exception as e:
        logger.error(f"{description} failed: {e}")
        raise DependencyFailure(f"{description} failed: {e}") from e


class AccountType(Enum):
    """Chart-of-accounts classification."""

    CASH = "CASH"
    BANK = "BANK"
    ASSET = "ASSET"
    LIABILITY = "LIABILITY"
    EQUITY = "EQUITY"
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


RECONCILABLE_ACCOUNT_TYPES = frozenset({AccountType.CASH, AccountType.BANK})


class LedgerTransactionStatus(Enum):
    """Posting state of a ledger transaction."""

    DRAFT = "DRAFT"
    POSTED = "POSTED"
    REVERSED = "REVERSED"


@dataclass(frozen=True)
class Account:
    id: str
    code: str
    name: str
    type: AccountType
    currency: str = "USD"


@dataclass(frozen=True)
class LedgerLine:
    account_id: str
    entry_type: EntryType
    amount: Decimal
    description: Optional[str] = None


@dataclass(frozen=True)
class LedgerTransaction:
    id: str
    transaction_date: date
    status: LedgerTransactionStatus
    description: str
    lines: tuple[LedgerLine, ...]
    reference: Optional[str] = None
    is_reconciled: bool = False
    currency: str = "USD"


@dataclass(frozen=True)
class LedgerPage:
    content: list[LedgerTransaction]
    page: int = 0
    total_pages: int = 1

    @property
    def has_next(self) -> bool:
        return self.page + 1 < self.total_pages


@dataclass(frozen=True)
class JournalLine:
    account_id: str
    entry_type: EntryType
    amount: Decimal
    description: str = ""


@dataclass(frozen=True)
class JournalEntry:
    """An adjusting entry handed to the ledger for posting."""

    reference: str
    description: str
    entry_date: date
    currency: str
    lines: tuple[JournalLine, ...]
    created_by: str

    @property
    def is_balanced(self) -> bool:
        debits = sum(
            (line.amount for line in self.lines if line.entry_type == EntryType.DEBIT),
            Decimal("0"),
        )
        credits = sum(
            (line.amount for line in self.lines if line.entry_type == EntryType.CREDIT),
            Decimal("0"),
        )
        return debits == credits


@dataclass(frozen=True)
class BalanceResult:
    success: bool
    balance: Decimal = Decimal("0.00")
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class PostingResult:
    success: bool
    entry_id: Optional[str] = None
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ReversalResult:
    success: bool
    reversal_entry_id: Optional[str] = None
    errors: list[str] = field(default_factory=list)


class LedgerService(Protocol):
    async def calculate_account_balance(
        self, account_id: str, as_of_date: date, include_unposted: bool
    ) -> BalanceResult: ...

    async def post_journal_entry(
        self, entry: JournalEntry, entry_date: date, actor: str, auto_post: bool
    ) -> PostingResult: ...

    async def reverse_journal_entry(
        self, original_entry_id: str, reason: str, actor: str
    ) -> ReversalResult: ...

    async def mark_account_reconciled(
        self, account_id: str, reconciled_date: date, reconciled_balance: Decimal
    ) -> None: ...


class AccountRepository(Protocol):
    async def find_by_id(self, account_id: str) -> Optional[Account]: ...


class TransactionRepository(Protocol):
    async def find_by_account(
        self,
        account_id: str,
        start_date: date,
        end_date: date,
        page: int = 0,
        page_size: int = 500,
    ) -> LedgerPage: ...


class SessionRepository(Protocol):
    async def get(self, session_id: str) -> Optional[ReconciliationSession]: ...

    async def save(self, session: ReconciliationSession) -> None: ...

    async def find_active(
        self, bank_account_id: str, period_start: date, period_end: date
    ) -> Optional[ReconciliationSession]: ...

    async def list_for_account(self, bank_account_id: str) -> list[ReconciliationSession]: ...


class InMemorySessionRepository:
    """Session store kept in process memory, storing deep copies."""

    def __init__(self) -> None:
        self._sessions: dict[str, ReconciliationSession] = {}

    async def get(self, session_id: str) -> Optional[ReconciliationSession]:
        session = self._sessions.get(session_id)
        return copy.deepcopy(session) if session is not None else None

    async def save(self, session: ReconciliationSession) -> None:
        self._sessions[session.id] = copy.deepcopy(session)

    async def find_active(
        self, bank_account_id: str, period_start: date, period_end: date
    ) -> Optional[ReconciliationSession]:
        for session in self._sessions.values():
            if (
                session.bank_account_id == bank_account_id
                and session.is_active
                and session.overlaps(period_start, period_end)
            ):
                return copy.deepcopy(session)
        return None

    async def list_for_account(self, bank_account_id: str) -> list[ReconciliationSession]:
        return [
            copy.deepcopy(s)
            for s in self._sessions.values()
            if s.bank_account_id == bank_account_id
        ]
