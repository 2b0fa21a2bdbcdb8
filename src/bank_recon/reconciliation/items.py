"""Reconciling items and their adjusting journal entries."""

from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import Optional
import logging

from ..collaborators import (
    JournalEntry,
    JournalLine,
    LedgerService,
    call_collaborator,
)
from ..config import AdjustmentsConfig
from ..models.session import (
    ADJUSTABLE_ITEM_TYPES,
    RECONCILING_ITEM_TYPES,
    AuditEntry,
    ReconciliationItem,
    ReconciliationItemType,
    ReconciliationSession,
)
from ..models.transaction import EntryType, new_id, to_money
from ..utils.exceptions import (
    BusinessRuleViolation,
    DependencyFailure,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class ReconcilingItemManager:
    """
    Adds and removes reconciling items on a session.

    Ledger postings and reversals happen before the session is touched; a
    failed ledger call leaves the item set exactly as it was.
    """

    def __init__(
        self,
        ledger: LedgerService,
        adjustments: Optional[AdjustmentsConfig] = None,
        timeout: Optional[float] = None,
    ):
        self.ledger = ledger
        self.adjustments = adjustments or AdjustmentsConfig()
        self.timeout = timeout

    @staticmethod
    def validate_item(
        item_type: ReconciliationItemType, amount: Decimal, description: str
    ) -> None:
        """
        Raises:
            ValidationError: With every problem found
        """
        errors: list[str] = []
        if amount == 0:
            errors.append("Reconciling item amount cannot be zero")
        if not description or not description.strip():
            errors.append("Reconciling item description is required")
        if item_type not in RECONCILING_ITEM_TYPES:
            errors.append(f"Invalid reconciling item type: {item_type}")
        if errors:
            raise ValidationError("Invalid reconciling item", errors=errors)

    def build_adjusting_entry(
        self,
        session: ReconciliationSession,
        item: ReconciliationItem,
        actor: str,
        entry_date: date,
    ) -> JournalEntry:
        """
        Two-line adjusting entry for a bank charge or interest item.

        Raises:
            BusinessRuleViolation: The item type cannot be auto-adjusted
        """
        amount = abs(item.amount)
        if item.item_type == ReconciliationItemType.BANK_CHARGE:
            lines = (
                JournalLine(
                    self.adjustments.bank_charge_expense_account_id,
                    EntryType.DEBIT,
                    amount,
                    item.description,
                ),
                JournalLine(session.bank_account_id, EntryType.CREDIT, amount, item.description),
            )
        elif item.item_type == ReconciliationItemType.INTEREST_EARNED:
            lines = (
                JournalLine(session.bank_account_id, EntryType.DEBIT, amount, item.description),
                JournalLine(
                    self.adjustments.interest_income_account_id,
                    EntryType.CREDIT,
                    amount,
                    item.description,
                ),
            )
        else:
            raise BusinessRuleViolation(
                f"Unsupported reconciling item type for adjusting entry: {item.item_type.value}"
            )

        return JournalEntry(
            reference=f"ADJ-{item.id}",
            description=f"Bank reconciliation adjustment: {item.description}",
            entry_date=entry_date,
            currency=session.currency,
            lines=lines,
            created_by=actor,
        )

    async def add_item(
        self,
        session: ReconciliationSession,
        item_type: ReconciliationItemType,
        amount: Decimal,
        description: str,
        actor: str,
        reference: Optional[str] = None,
        create_adjusting_entry: bool = True,
        entry_date: Optional[date] = None,
    ) -> ReconciliationItem:
        """
        Record a reconciling item, posting its adjusting entry when requested.

        Raises:
            ValidationError: Zero amount, blank description or unknown type
            BusinessRuleViolation: Adjusting entry requested for a type
                that has none
            DependencyFailure: The ledger rejected the posting
        """
        self.validate_item(item_type, amount, description)
        if create_adjusting_entry and item_type not in ADJUSTABLE_ITEM_TYPES:
            raise BusinessRuleViolation(
                f"Unsupported reconciling item type for adjusting entry: {item_type.value}"
            )

        item = ReconciliationItem(
            id=new_id(),
            item_type=item_type,
            amount=to_money(amount),
            description=description.strip(),
            reference=reference,
            added_by=actor,
        )

        if create_adjusting_entry:
            entry = self.build_adjusting_entry(
                session, item, actor, entry_date or date.today()
            )
            posting = await call_collaborator(
                self.ledger.post_journal_entry(entry, entry.entry_date, actor, True),
                "Posting adjusting entry",
                self.timeout,
            )
            if not posting.success or not posting.entry_id:
                raise DependencyFailure(
                    "Failed to post adjusting entry: "
                    + (", ".join(posting.errors) or "no entry id returned")
                )
            item = replace(item, adjusting_entry_id=posting.entry_id)
            logger.info(f"Posted adjusting entry {posting.entry_id} for item {item.id}")

        session.items[item.id] = item
        session.record(
            AuditEntry(
                action="RECONCILING_ITEM_ADDED",
                performed_by=actor,
                details=f"{item.item_type.value} {item.amount}: {item.description}",
                item_id=item.id,
            )
        )
        return item

    async def remove_item(
        self,
        session: ReconciliationSession,
        item_id: str,
        reason: str,
        actor: str,
        reverse_adjusting_entry: bool = True,
    ) -> tuple[ReconciliationItem, Optional[str]]:
        """
        Remove a reconciling item, reversing its adjusting entry first.

        Returns:
            Tuple of (removed item, reversal entry id or None)

        Raises:
            NotFoundError: Unknown item
            DependencyFailure: The reversal failed; the item is kept
        """
        item = session.items.get(item_id)
        if item is None:
            raise NotFoundError(f"Reconciling item not found: {item_id}")

        reversal_id: Optional[str] = None
        if reverse_adjusting_entry and item.adjusting_entry_id:
            reversal_id = await self.reverse_entry(
                item.adjusting_entry_id, f"Reconciling item removed: {reason}", actor
            )

        del session.items[item_id]
        session.record(
            AuditEntry(
                action="RECONCILING_ITEM_REMOVED",
                performed_by=actor,
                details=reason,
                item_id=item_id,
            )
        )
        return item, reversal_id

    async def reverse_entry(self, entry_id: str, reason: str, actor: str) -> Optional[str]:
        """
        Reverse a posted adjusting entry.

        Returns:
            Reversal entry id

        Raises:
            DependencyFailure: The ledger refused or failed the reversal
        """
        reversal = await call_collaborator(
            self.ledger.reverse_journal_entry(entry_id, reason, actor),
            "Reversing adjusting entry",
            self.timeout,
        )
        if not reversal.success:
            raise DependencyFailure(
                "Failed to reverse adjusting entry: " + ", ".join(reversal.errors)
            )
        logger.info(f"Reversed adjusting entry {entry_id} ({reversal.reversal_entry_id})")
        return reversal.reversal_entry_id
