"""Statement-vs-book variance calculations."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from ..models.session import ReconciliationItem, ReconciliationItemType, ReconciliationSession
from ..models.transaction import BookTransaction, EntryType, to_money

ZERO = Decimal("0.00")

# Direction of each item type's effect on the adjusted book balance.
# Error items carry their own sign.
ITEM_BALANCE_SIGN: dict[ReconciliationItemType, int] = {
    ReconciliationItemType.BANK_CHARGE: -1,
    ReconciliationItemType.NSF_CHECK: -1,
    ReconciliationItemType.OUTSTANDING_DEPOSIT: -1,
    ReconciliationItemType.INTEREST_EARNED: 1,
    ReconciliationItemType.OUTSTANDING_CHECK: 1,
}


@dataclass(frozen=True)
class VarianceBreakdown:
    """Components of a variance figure."""

    statement_balance: Decimal
    book_balance: Decimal
    outstanding_debits: Decimal
    outstanding_credits: Decimal
    item_adjustments: Decimal
    adjusted_book_balance: Decimal
    variance: Decimal

    @property
    def is_reconciled(self) -> bool:
        return self.variance == ZERO


class VarianceCalculator:
    """Pure variance arithmetic; all results are quantized to cents."""

    @staticmethod
    def outstanding_totals(book_txns: Iterable[BookTransaction]) -> tuple[Decimal, Decimal]:
        """Return (sum of debit amounts, sum of credit amounts)."""
        debits = ZERO
        credits = ZERO
        for txn in book_txns:
            if txn.entry_type == EntryType.DEBIT:
                debits += txn.amount
            else:
                credits += txn.amount
        return to_money(debits), to_money(credits)

    def adjusted_book_balance(
        self, book_balance: Decimal, book_txns: Iterable[BookTransaction]
    ) -> Decimal:
        debits, credits = self.outstanding_totals(book_txns)
        return to_money(book_balance + debits - credits)

    def initial_variance(
        self,
        statement_balance: Decimal,
        book_balance: Decimal,
        unreconciled: Iterable[BookTransaction],
    ) -> Decimal:
        """Statement balance minus the book balance adjusted for unreconciled lines."""
        return to_money(statement_balance - self.adjusted_book_balance(book_balance, unreconciled))

    @staticmethod
    def item_effect(item: ReconciliationItem) -> Decimal:
        """Signed effect of a reconciling item on the adjusted book balance."""
        sign = ITEM_BALANCE_SIGN.get(item.item_type)
        if sign is None:
            return to_money(item.amount)
        return to_money(abs(item.amount) * sign)

    def breakdown(self, session: ReconciliationSession) -> VarianceBreakdown:
        """
        Variance of the session's current state.

        Only book transactions outside an active match count as outstanding;
        every reconciling item adds its signed effect.
        """
        debits, credits = self.outstanding_totals(session.unmatched_book.values())
        adjustments = to_money(
            sum((self.item_effect(item) for item in session.items.values()), ZERO)
        )
        adjusted = to_money(session.book_balance + debits - credits + adjustments)
        return VarianceBreakdown(
            statement_balance=to_money(session.statement_ending_balance),
            book_balance=to_money(session.book_balance),
            outstanding_debits=debits,
            outstanding_credits=credits,
            item_adjustments=adjustments,
            adjusted_book_balance=adjusted,
            variance=to_money(session.statement_ending_balance - adjusted),
        )

    def final_variance(self, session: ReconciliationSession) -> Decimal:
        return self.breakdown(session).variance
