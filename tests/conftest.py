"""Shared fixtures and in-memory collaborator fakes."""

from datetime import date
from decimal import Decimal
from typing import Callable, Optional
import asyncio

import pytest

from bank_recon.collaborators import (
    Account,
    AccountType,
    BalanceResult,
    InMemorySessionRepository,
    JournalEntry,
    LedgerLine,
    LedgerPage,
    LedgerTransaction,
    LedgerTransactionStatus,
    PostingResult,
    ReversalResult,
)
from bank_recon.config import ReconConfig
from bank_recon.models.session import ReconciliationSession
from bank_recon.models.transaction import (
    BookTransaction,
    EntryType,
    StatementCategory,
    StatementTransaction,
)
from bank_recon.reconciliation.service import ReconciliationService

BANK_ACCOUNT_ID = "BANK-1"
STATEMENT_DATE = date(2025, 1, 31)
PERIOD_START = date(2025, 1, 1)


class FakeLedger:
    """Ledger double recording postings, reversals and reconciled markers."""

    def __init__(self, balance: Decimal = Decimal("1000.00")):
        self.balance = balance
        self.balance_errors: list[str] = []
        self.balance_delay = 0.0
        self.post_errors: list[str] = []
        self.reverse_errors: list[str] = []
        self.mark_error: Optional[Exception] = None

        self.posted: list[JournalEntry] = []
        self.reversed: list[tuple[str, str, str]] = []
        self.reconciled: list[tuple[str, date, Decimal]] = []
        self._next_id = 0

    async def calculate_account_balance(self, account_id, as_of_date, include_unposted):
        if self.balance_delay:
            await asyncio.sleep(self.balance_delay)
        if self.balance_errors:
            return BalanceResult(success=False, errors=list(self.balance_errors))
        return BalanceResult(success=True, balance=self.balance)

    async def post_journal_entry(self, entry, entry_date, actor, auto_post):
        if self.post_errors:
            return PostingResult(success=False, errors=list(self.post_errors))
        self._next_id += 1
        self.posted.append(entry)
        return PostingResult(success=True, entry_id=f"JE-{self._next_id}")

    async def reverse_journal_entry(self, original_entry_id, reason, actor):
        if self.reverse_errors:
            return ReversalResult(success=False, errors=list(self.reverse_errors))
        self.reversed.append((original_entry_id, reason, actor))
        return ReversalResult(success=True, reversal_entry_id=f"REV-{original_entry_id}")

    async def mark_account_reconciled(self, account_id, reconciled_date, reconciled_balance):
        if self.mark_error is not None:
            raise self.mark_error
        self.reconciled.append((account_id, reconciled_date, reconciled_balance))


class FakeAccounts:
    def __init__(self, accounts: list[Account]):
        self.accounts = {a.id: a for a in accounts}

    async def find_by_id(self, account_id):
        return self.accounts.get(account_id)


class FakeTransactions:
    """Paged ledger transaction query over a fixed list."""

    def __init__(self, transactions: list[LedgerTransaction]):
        self.transactions = transactions
        self.pages_requested: list[int] = []

    async def find_by_account(self, account_id, start_date, end_date, page=0, page_size=500):
        self.pages_requested.append(page)
        matching = [
            t
            for t in self.transactions
            if start_date <= t.transaction_date <= end_date
            and any(line.account_id == account_id for line in t.lines)
        ]
        total_pages = max(1, -(-len(matching) // page_size))
        content = matching[page * page_size : (page + 1) * page_size]
        return LedgerPage(content=content, page=page, total_pages=total_pages)


class FailingSaveRepository(InMemorySessionRepository):
    """In-memory store whose save raises for sessions matching ``fail_when``."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_when: Optional[Callable[[ReconciliationSession], bool]] = None

    async def save(self, session):
        if self.fail_when is not None and self.fail_when(session):
            raise OSError("session store unavailable")
        await super().save(session)


def ledger_txn(
    txn_id: str,
    day: int,
    amount: str,
    entry_type: EntryType,
    description: str,
    reference: Optional[str] = None,
    status: LedgerTransactionStatus = LedgerTransactionStatus.POSTED,
    is_reconciled: bool = False,
) -> LedgerTransaction:
    contra = EntryType.CREDIT if entry_type == EntryType.DEBIT else EntryType.DEBIT
    return LedgerTransaction(
        id=txn_id,
        transaction_date=date(2025, 1, day),
        status=status,
        description=description,
        reference=reference,
        is_reconciled=is_reconciled,
        lines=(
            LedgerLine(BANK_ACCOUNT_ID, entry_type, Decimal(amount)),
            LedgerLine("4000-REVENUE", contra, Decimal(amount)),
        ),
    )


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def accounts():
    return FakeAccounts(
        [
            Account(BANK_ACCOUNT_ID, "1010", "Operating Account", AccountType.BANK),
            Account("CASH-1", "1000", "Petty Cash", AccountType.CASH),
            Account("EXP-1", "6100", "Bank Charges", AccountType.EXPENSE),
        ]
    )


@pytest.fixture
def transactions():
    return FakeTransactions(
        [
            ledger_txn("L1", 5, "100.00", EntryType.DEBIT, "Invoice 100 payment", "INV100"),
            ledger_txn("L2", 10, "40.00", EntryType.CREDIT, "Check 1001 office supplies", "CHK1001"),
            ledger_txn(
                "L3",
                12,
                "75.00",
                EntryType.DEBIT,
                "Draft deposit",
                status=LedgerTransactionStatus.DRAFT,
            ),
            ledger_txn("L4", 15, "60.00", EntryType.CREDIT, "Old check", is_reconciled=True),
        ]
    )


@pytest.fixture
def config():
    return ReconConfig()


@pytest.fixture
def service(ledger, accounts, transactions, config):
    return ReconciliationService(ledger, accounts, transactions, config=config)


@pytest.fixture
def statement_rows():
    """Statement for the standard session: both book lines plus a $15 fee."""
    return [
        {
            "id": "S1",
            "date": date(2025, 1, 5),
            "amount": "100.00",
            "description": "Invoice 100 payment",
            "reference": "INV100",
        },
        {
            "id": "S2",
            "date": date(2025, 1, 12),
            "amount": "-40.00",
            "description": "Check 1001 office supplies",
            "reference": "CHK1001",
        },
        {
            "id": "S3",
            "date": date(2025, 1, 31),
            "amount": "-15.00",
            "description": "Monthly service fee",
        },
    ]


@pytest.fixture
def make_book():
    def _make(
        txn_id: str,
        amount: str,
        day: int,
        entry_type: EntryType = EntryType.DEBIT,
        reference: Optional[str] = None,
        description: str = "",
    ) -> BookTransaction:
        return BookTransaction(
            id=txn_id,
            date=date(2025, 1, day),
            amount=Decimal(amount),
            entry_type=entry_type,
            description=description,
            reference=reference,
        )

    return _make


@pytest.fixture
def make_statement():
    def _make(
        txn_id: str,
        amount: str,
        day: int,
        reference: Optional[str] = None,
        description: str = "",
    ) -> StatementTransaction:
        return StatementTransaction(
            id=txn_id,
            date=date(2025, 1, day),
            amount=Decimal(amount),
            description=description,
            category=StatementCategory.OTHER,
            reference=reference,
        )

    return _make


async def initiate_session(service, balance="985.00", **overrides):
    kwargs = dict(
        bank_account_id=BANK_ACCOUNT_ID,
        statement_date=STATEMENT_DATE,
        statement_ending_balance=Decimal(balance),
        period_start=PERIOD_START,
        actor="alice",
    )
    kwargs.update(overrides)
    return await service.initiate(**kwargs)


async def matched_session(service, statement_rows) -> str:
    """Session with the statement imported and both book lines auto-matched."""
    initiated = await initiate_session(service)
    session_id = initiated.payload.session.id
    await service.import_statement(session_id, statement_rows)
    await service.auto_match(session_id)
    return session_id
