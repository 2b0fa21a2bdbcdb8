"""
Reconciliation service: the public operations on reconciliation sessions.

Every operation returns ``Success`` or ``Failure``. Mutating operations run
under a per-session lock on a private copy of the session loaded from the
session repository, and save it back only when everything succeeded, so a
failure never leaves a partial update behind. Ledger side effects are undone
when the save that should follow them fails: an adjusting entry is reversed,
and a completed session is restored if the ledger marker cannot be set.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, Optional
import asyncio
import copy
import logging

from ..collaborators import (
    RECONCILABLE_ACCOUNT_TYPES,
    AccountRepository,
    InMemorySessionRepository,
    LedgerService,
    LedgerTransactionStatus,
    SessionRepository,
    TransactionRepository,
    call_collaborator,
)
from ..config import ReconConfig
from ..importing.processor import RowInput, StatementImportProcessor
from ..matching.engine import MatchingEngine, MatchingOutcome
from ..matching.lifecycle import MatchLifecycleManager
from ..models.results import Failure, FailureKind, Result, Success
from ..models.session import (
    AuditEntry,
    ReconciliationItem,
    ReconciliationItemType,
    ReconciliationSession,
    SessionStatus,
)
from ..models.transaction import (
    BookTransaction,
    StatementCategory,
    StatementTransaction,
    TransactionMatch,
    to_money,
)
from ..reports.builder import ReconciliationReport, ReportBuilder, ReportFormat
from ..utils.exceptions import (
    BusinessRuleViolation,
    ConflictError,
    DependencyFailure,
    NotFoundError,
    ReconciliationError,
    ValidationError,
)
from .items import ReconcilingItemManager
from .variance import VarianceBreakdown, VarianceCalculator

logger = logging.getLogger(__name__)


@dataclass
class InitiationPayload:
    session: ReconciliationSession
    initial_variance: Decimal
    unreconciled_transaction_count: int


@dataclass
class StatementImportPayload:
    session_id: str
    imported_transactions: list[StatementTransaction]
    categorized: dict[StatementCategory, list[StatementTransaction]]
    imported_at: datetime


@dataclass
class AutoMatchPayload:
    session_id: str
    outcome: MatchingOutcome
    committed: bool
    current_variance: Optional[Decimal] = None


@dataclass
class ManualMatchPayload:
    session_id: str
    match: TransactionMatch
    current_variance: Decimal


@dataclass
class BreakMatchPayload:
    session_id: str
    broken_match: TransactionMatch
    current_variance: Decimal
    broken_at: datetime = field(default_factory=datetime.now)


@dataclass
class ReconcilingItemPayload:
    session_id: str
    item: ReconciliationItem
    adjusting_entry_id: Optional[str]
    current_variance: Decimal


@dataclass
class RemoveItemPayload:
    session_id: str
    removed_item: ReconciliationItem
    reversal_entry_id: Optional[str]
    current_variance: Decimal
    removed_at: datetime = field(default_factory=datetime.now)


@dataclass
class CompletionPayload:
    session: ReconciliationSession
    final_variance: Decimal
    summary: VarianceBreakdown
    completed_at: datetime


class KeyedLocks:
    """
    One ``asyncio.Lock`` per key, discarded once no task holds or awaits it.

    The user count is kept beside the lock so a key is only dropped after the
    last waiter has run; a later caller then starts a fresh lock.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def __contains__(self, key: str) -> bool:
        return key in self._locks

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]


class ReconciliationService:
    """
    Orchestrates bank reconciliation sessions.

    Collaborators are awaited with the configured timeout; the matching and
    variance logic they feed is synchronous and pure.
    """

    def __init__(
        self,
        ledger: LedgerService,
        accounts: AccountRepository,
        transactions: TransactionRepository,
        sessions: Optional[SessionRepository] = None,
        config: Optional[ReconConfig] = None,
    ):
        """
        Initialize the service.

        Args:
            ledger: Ledger balance and journal collaborator
            accounts: Account lookup collaborator
            transactions: Ledger transaction query collaborator
            sessions: Session store (in-memory when omitted)
            config: Application configuration (defaults when omitted)
        """
        self.config = config or ReconConfig()
        self.ledger = ledger
        self.accounts = accounts
        self.transactions = transactions
        self.sessions: SessionRepository = sessions or InMemorySessionRepository()

        self.timeout = self.config.collaborators.timeout_seconds
        self.processor = StatementImportProcessor(self.config.import_settings)
        self.engine = MatchingEngine(self.config.matching)
        self.lifecycle = MatchLifecycleManager(self.config.session)
        self.items = ReconcilingItemManager(ledger, self.config.adjustments, self.timeout)
        self.calculator = VarianceCalculator()
        self.report_builder = ReportBuilder(self.calculator)

        self._session_locks = KeyedLocks()
        self._account_locks = KeyedLocks()

    # ==================== SESSION LIFECYCLE ====================

    async def initiate(
        self,
        bank_account_id: str,
        statement_date: date,
        statement_ending_balance: Decimal,
        period_start: date,
        actor: str,
        statement_id: Optional[str] = None,
    ) -> Result[InitiationPayload]:
        """Open a reconciliation session for a bank account and statement."""

        async def action() -> Result[InitiationPayload]:
            async with self._account_locks.hold(bank_account_id):
                return await self._initiate(
                    bank_account_id,
                    statement_date,
                    to_money(statement_ending_balance),
                    period_start,
                    actor,
                    statement_id,
                )

        return await self._guard("Reconciliation initiation", action)

    async def _initiate(
        self,
        bank_account_id: str,
        statement_date: date,
        statement_ending_balance: Decimal,
        period_start: date,
        actor: str,
        statement_id: Optional[str],
    ) -> Result[InitiationPayload]:
        account = await call_collaborator(
            self.accounts.find_by_id(bank_account_id), "Account lookup", self.timeout
        )
        if account is None:
            raise NotFoundError(f"Bank account not found: {bank_account_id}")
        if account.type not in RECONCILABLE_ACCOUNT_TYPES:
            raise ValidationError(f"Account {account.code} is not a cash/bank account")

        if period_start > statement_date:
            raise ValidationError("Reconciliation period start is after the statement date")
        max_days = self.config.session.max_period_days
        if (statement_date - period_start).days > max_days:
            raise ValidationError(
                f"Reconciliation period exceeds maximum allowed days ({max_days})"
            )

        existing = await self.sessions.find_active(bank_account_id, period_start, statement_date)
        if existing is not None:
            raise ConflictError(
                "Reconciliation already in progress for this account and period",
                context={"session_id": existing.id},
            )

        balance = await call_collaborator(
            self.ledger.calculate_account_balance(bank_account_id, statement_date, False),
            "Book balance calculation",
            self.timeout,
        )
        if not balance.success:
            raise DependencyFailure(
                f"Failed to calculate book balance: {', '.join(balance.errors)}"
            )
        book_balance = to_money(balance.balance)

        unreconciled = await self._fetch_unreconciled(bank_account_id, period_start, statement_date)

        session = ReconciliationSession(
            bank_account_id=bank_account_id,
            statement_date=statement_date,
            statement_ending_balance=statement_ending_balance,
            book_balance=book_balance,
            period_start=period_start,
            initiated_by=actor,
            currency=account.currency,
            statement_id=statement_id,
        )
        for txn in unreconciled:
            session.book_transactions[txn.id] = txn
            session.unmatched_book[txn.id] = txn

        session.initial_variance = self.calculator.initial_variance(
            statement_ending_balance, book_balance, unreconciled
        )
        session.current_variance = self.calculator.final_variance(session)
        session.record(
            AuditEntry(
                action="RECONCILIATION_INITIATED",
                performed_by=actor,
                details=f"Initial variance: {session.initial_variance}",
            )
        )
        await self.sessions.save(session)

        logger.info(
            f"Initiated reconciliation {session.id} for account {bank_account_id}: "
            f"{len(unreconciled)} unreconciled txns, initial variance {session.initial_variance}"
        )
        return Success(
            InitiationPayload(
                session=await self._snapshot(session.id),
                initial_variance=session.initial_variance,
                unreconciled_transaction_count=len(unreconciled),
            )
        )

    async def _fetch_unreconciled(
        self, bank_account_id: str, start_date: date, end_date: date
    ) -> list[BookTransaction]:
        """Posted, not yet reconciled lines on the bank account, page by page."""
        book_txns: list[BookTransaction] = []
        page_number = 0
        page_size = self.config.collaborators.page_size

        while True:
            page = await call_collaborator(
                self.transactions.find_by_account(
                    bank_account_id, start_date, end_date, page_number, page_size
                ),
                "Ledger transaction query",
                self.timeout,
            )
            for txn in page.content:
                if txn.status != LedgerTransactionStatus.POSTED or txn.is_reconciled:
                    continue
                lines = [line for line in txn.lines if line.account_id == bank_account_id]
                for index, line in enumerate(lines):
                    book_txns.append(
                        BookTransaction(
                            id=txn.id if len(lines) == 1 else f"{txn.id}:{index}",
                            date=txn.transaction_date,
                            amount=to_money(abs(line.amount)),
                            entry_type=line.entry_type,
                            description=line.description or txn.description,
                            reference=txn.reference,
                            currency=txn.currency,
                            journal_entry_id=txn.id,
                        )
                    )
            if not page.has_next:
                break
            page_number += 1

        return book_txns

    async def complete(
        self,
        session_id: str,
        actor: str,
        force_complete: bool = False,
        allow_variance: bool = False,
        max_variance_threshold: Optional[Decimal] = None,
    ) -> Result[CompletionPayload]:
        """Close a session once its variance is zero, tolerated or overridden."""

        async def action() -> Result[CompletionPayload]:
            async with self._session_locks.hold(session_id):
                session = await self._load_active(session_id)
                summary = self.calculator.breakdown(session)
                variance = summary.variance
                warnings: list[str] = []

                if variance != 0:
                    threshold = (
                        to_money(max_variance_threshold)
                        if max_variance_threshold is not None
                        else self.config.session.default_max_variance
                    )
                    within_tolerance = allow_variance and abs(variance) <= threshold
                    if within_tolerance:
                        warnings.append(f"Completed with variance {variance} within {threshold}")
                    elif force_complete:
                        warnings.append(f"Completion forced with unresolved variance {variance}")
                    else:
                        message = f"Reconciliation has unresolved variance: {variance}"
                        if allow_variance:
                            message = f"Variance {variance} exceeds allowed threshold {threshold}"
                        raise BusinessRuleViolation(
                            message,
                            context={
                                "variance": str(variance),
                                "threshold": str(threshold),
                                "outstanding_debits": str(summary.outstanding_debits),
                                "outstanding_credits": str(summary.outstanding_credits),
                                "item_adjustments": str(summary.item_adjustments),
                            },
                        )

                initiated = copy.deepcopy(session)
                completed_at = datetime.now()
                session.status = SessionStatus.COMPLETED
                session.final_variance = variance
                session.current_variance = variance
                session.completed_by = actor
                session.completed_at = completed_at
                session.record(
                    AuditEntry(
                        action="RECONCILIATION_COMPLETED",
                        performed_by=actor,
                        details=f"Reconciliation completed with final variance: {variance}",
                    )
                )
                await self.sessions.save(session)

                # The ledger marker is the last step; undo the save if it fails
                try:
                    await call_collaborator(
                        self.ledger.mark_account_reconciled(
                            session.bank_account_id,
                            session.statement_date,
                            session.statement_ending_balance,
                        ),
                        "Updating account reconciliation status",
                        self.timeout,
                    )
                except ReconciliationError:
                    logger.warning(
                        f"Ledger marker failed for {session_id}; restoring INITIATED session"
                    )
                    await self.sessions.save(initiated)
                    raise

                logger.info(f"Completed reconciliation {session_id} with variance {variance}")
                return Success(
                    CompletionPayload(
                        session=await self._snapshot(session_id),
                        final_variance=variance,
                        summary=summary,
                        completed_at=completed_at,
                    ),
                    warnings=warnings,
                )

        return await self._guard("Reconciliation completion", action)

    async def get_session(self, session_id: str) -> Result[ReconciliationSession]:
        """Consistent read-only copy of a session."""

        async def action() -> Result[ReconciliationSession]:
            return Success(await self._snapshot(session_id))

        return await self._guard("Session lookup", action)

    # ==================== STATEMENT & MATCHING ====================

    async def import_statement(
        self,
        session_id: str,
        rows: Iterable[RowInput],
        validate: bool = True,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Result[StatementImportPayload]:
        """Import a statement batch into the session's unmatched pool."""

        async def action() -> Result[StatementImportPayload]:
            async with self._session_locks.hold(session_id):
                session = await self._load_active(session_id)
                outcome = await self.processor.process(
                    rows,
                    validate=validate,
                    cancel_event=cancel_event,
                    existing=session.statement_transactions.values(),
                )

                clashing = [
                    t.id for t in outcome.transactions if t.id in session.statement_transactions
                ]
                if clashing:
                    raise ConflictError(
                        f"{len(clashing)} statement transaction id(s) already imported",
                        context={"transaction_ids": clashing},
                    )

                for txn in outcome.transactions:
                    session.statement_transactions[txn.id] = txn
                    session.unmatched_statement[txn.id] = txn
                session.record(
                    AuditEntry(
                        action="STATEMENT_IMPORTED",
                        performed_by=session.initiated_by,
                        details=f"{len(outcome.transactions)} statement transaction(s) imported",
                    )
                )
                await self.sessions.save(session)

                return Success(
                    StatementImportPayload(
                        session_id=session_id,
                        imported_transactions=outcome.transactions,
                        categorized=outcome.categorized,
                        imported_at=outcome.imported_at,
                    ),
                    warnings=outcome.warnings,
                )

        return await self._guard("Statement import", action)

    async def auto_match(
        self,
        session_id: str,
        confidence_threshold: Optional[float] = None,
        commit: bool = True,
        actor: Optional[str] = None,
    ) -> Result[AutoMatchPayload]:
        """
        Score the session's unmatched pools and commit the automatic matches.

        Scoring runs on a snapshot; only the commit step takes the session
        lock, and it fails with a conflict if the pools changed meanwhile.
        """

        async def action() -> Result[AutoMatchPayload]:
            snapshot = await self._snapshot(session_id)
            self._ensure_active(snapshot)
            outcome = self.engine.run(
                list(snapshot.unmatched_book.values()),
                list(snapshot.unmatched_statement.values()),
                confidence_threshold,
            )
            if not commit:
                return Success(AutoMatchPayload(session_id, outcome, committed=False))

            async with self._session_locks.hold(session_id):
                session = await self._load_active(session_id)
                self.lifecycle.commit_automatic(
                    session, outcome.automatic_matches, actor or session.initiated_by
                )
                session.current_variance = self.calculator.final_variance(session)
                await self.sessions.save(session)

            return Success(
                AutoMatchPayload(
                    session_id, outcome, committed=True, current_variance=session.current_variance
                )
            )

        return await self._guard("Auto-matching", action)

    async def manual_match(
        self,
        session_id: str,
        book_tx_id: str,
        stmt_tx_id: str,
        reason: str,
        actor: str,
    ) -> Result[ManualMatchPayload]:
        """Match two transactions by hand; sanity checks only warn."""

        async def action() -> Result[ManualMatchPayload]:
            async with self._session_locks.hold(session_id):
                session = await self._load_active(session_id)
                match, warnings = self.lifecycle.manual_match(
                    session, book_tx_id, stmt_tx_id, reason, actor
                )
                session.current_variance = self.calculator.final_variance(session)
                await self.sessions.save(session)
                return Success(
                    ManualMatchPayload(session_id, match, session.current_variance),
                    warnings=warnings,
                )

        return await self._guard("Manual match creation", action)

    async def break_match(
        self, session_id: str, match_id: str, reason: str, actor: str
    ) -> Result[BreakMatchPayload]:
        """Undo a match, returning both transactions to the unmatched pools."""

        async def action() -> Result[BreakMatchPayload]:
            async with self._session_locks.hold(session_id):
                session = await self._load_active(session_id)
                match = self.lifecycle.break_match(session, match_id, reason, actor)
                session.current_variance = self.calculator.final_variance(session)
                await self.sessions.save(session)
                return Success(BreakMatchPayload(session_id, match, session.current_variance))

        return await self._guard("Match break", action)

    # ==================== RECONCILING ITEMS ====================

    async def add_reconciling_item(
        self,
        session_id: str,
        item_type: ReconciliationItemType,
        amount: Decimal,
        description: str,
        actor: str,
        reference: Optional[str] = None,
        create_adjusting_entry: bool = True,
    ) -> Result[ReconcilingItemPayload]:
        """Record a reconciling item and, when supported, its adjusting entry."""

        async def action() -> Result[ReconcilingItemPayload]:
            async with self._session_locks.hold(session_id):
                session = await self._load_active(session_id)
                item = await self.items.add_item(
                    session,
                    item_type,
                    amount,
                    description,
                    actor,
                    reference=reference,
                    create_adjusting_entry=create_adjusting_entry,
                )
                session.current_variance = self.calculator.final_variance(session)
                try:
                    await self.sessions.save(session)
                except Exception as e:
                    context = await self._discard_adjusting_entry(item, actor)
                    raise DependencyFailure(
                        f"Failed to save reconciliation {session_id}: {e}", context=context
                    ) from e
                return Success(
                    ReconcilingItemPayload(
                        session_id, item, item.adjusting_entry_id, session.current_variance
                    )
                )

        return await self._guard("Reconciling item addition", action)

    async def remove_reconciling_item(
        self,
        session_id: str,
        item_id: str,
        reason: str,
        actor: str,
        reverse_adjusting_entry: bool = True,
    ) -> Result[RemoveItemPayload]:
        """Remove a reconciling item, reversing its adjusting entry first."""

        async def action() -> Result[RemoveItemPayload]:
            async with self._session_locks.hold(session_id):
                session = await self._load_active(session_id)
                item, reversal_id = await self.items.remove_item(
                    session, item_id, reason, actor, reverse_adjusting_entry
                )
                session.current_variance = self.calculator.final_variance(session)
                try:
                    await self.sessions.save(session)
                except Exception as e:
                    if reversal_id:
                        logger.error(
                            f"Item {item_id} kept in {session_id} although entry "
                            f"{item.adjusting_entry_id} was reversed ({reversal_id})"
                        )
                    raise DependencyFailure(
                        f"Failed to save reconciliation {session_id}: {e}",
                        context={
                            "item_id": item_id,
                            "adjusting_entry_id": item.adjusting_entry_id,
                            "reversal_entry_id": reversal_id,
                        },
                    ) from e
                return Success(
                    RemoveItemPayload(session_id, item, reversal_id, session.current_variance)
                )

        return await self._guard("Reconciling item removal", action)

    # ==================== REPORTING ====================

    async def generate_report(
        self,
        session_id: str,
        include_transaction_details: bool = True,
        include_reconciling_items: bool = True,
        report_format: ReportFormat = ReportFormat.DETAILED,
    ) -> Result[ReconciliationReport]:
        """Build a structured report from a consistent session snapshot."""

        async def action() -> Result[ReconciliationReport]:
            snapshot = await self._snapshot(session_id)
            report = self.report_builder.build(
                snapshot,
                include_transaction_details=include_transaction_details,
                include_reconciling_items=include_reconciling_items,
                report_format=report_format,
            )
            return Success(report)

        return await self._guard("Reconciliation report generation", action)

    # ==================== HELPERS ====================

    async def _discard_adjusting_entry(
        self, item: ReconciliationItem, actor: str
    ) -> dict[str, Any]:
        """Reverse the entry of an item that never reached the session store."""
        if not item.adjusting_entry_id:
            return {}

        context: dict[str, Any] = {"adjusting_entry_id": item.adjusting_entry_id}
        try:
            context["reversal_entry_id"] = await self.items.reverse_entry(
                item.adjusting_entry_id, "Reconciling item could not be saved", actor
            )
        except ReconciliationError as e:
            logger.error(f"Adjusting entry {item.adjusting_entry_id} left without an item: {e}")
            context["reversal_error"] = str(e)
        return context

    async def _snapshot(self, session_id: str) -> ReconciliationSession:
        session = await self.sessions.get(session_id)
        if session is None:
            raise NotFoundError(f"Reconciliation not found: {session_id}")
        return session

    async def _load_active(self, session_id: str) -> ReconciliationSession:
        session = await self._snapshot(session_id)
        self._ensure_active(session)
        return session

    @staticmethod
    def _ensure_active(session: ReconciliationSession) -> None:
        if session.status == SessionStatus.COMPLETED:
            raise BusinessRuleViolation(
                f"Reconciliation {session.id} is completed and can no longer be modified"
            )

    @staticmethod
    async def _guard(operation: str, action: Callable[[], Awaitable[Result[Any]]]) -> Result[Any]:
        """Run an operation, converting raised errors into ``Failure`` results."""
        try:
            return await action()
        except ReconciliationError as e:
            logger.warning(f"{operation} failed: {'; '.join(e.errors)}")
            return Failure.from_error(e)
        except Exception as e:
            logger.exception(f"{operation} failed")
            return Failure(
                kind=FailureKind.DEPENDENCY_FAILURE,
                errors=[f"{operation} failed: {e}"],
            )
