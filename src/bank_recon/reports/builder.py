"""
Structured reconciliation report assembled from a session snapshot.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from ..models.session import ReconciliationSession
from ..models.transaction import MatchType
from ..reconciliation.variance import VarianceCalculator


class ReportFormat(Enum):
    """Level of detail in a report."""

    SUMMARY = "SUMMARY"
    DETAILED = "DETAILED"
    COMPREHENSIVE = "COMPREHENSIVE"


class SectionType(Enum):
    SUMMARY = "SUMMARY"
    MATCHED_TRANSACTIONS = "MATCHED_TRANSACTIONS"
    RECONCILING_ITEMS = "RECONCILING_ITEMS"
    UNMATCHED_TRANSACTIONS = "UNMATCHED_TRANSACTIONS"
    VARIANCE_ANALYSIS = "VARIANCE_ANALYSIS"
    AUDIT_TRAIL = "AUDIT_TRAIL"


@dataclass
class ReportSection:
    """One titled block of a report: key figures plus optional rows."""

    section_type: SectionType
    title: str
    fields: dict[str, Any] = field(default_factory=dict)
    columns: list[str] = field(default_factory=list)
    rows: list[list[Any]] = field(default_factory=list)


@dataclass
class ReconciliationReport:
    session_id: str
    bank_account_id: str
    statement_date: date
    report_format: ReportFormat
    sections: list[ReportSection]
    generated_by: str = "ReconciliationService"
    generated_at: datetime = field(default_factory=datetime.now)

    def section(self, section_type: SectionType) -> Optional[ReportSection]:
        return next((s for s in self.sections if s.section_type == section_type), None)


class ReportBuilder:
    """Builds a ``ReconciliationReport``; never modifies the session."""

    def __init__(self, calculator: Optional[VarianceCalculator] = None):
        self.calculator = calculator or VarianceCalculator()

    def build(
        self,
        session: ReconciliationSession,
        include_transaction_details: bool = True,
        include_reconciling_items: bool = True,
        report_format: ReportFormat = ReportFormat.DETAILED,
    ) -> ReconciliationReport:
        """
        Assemble the report sections for a session.

        Args:
            session: Session snapshot
            include_transaction_details: Add matched and unmatched listings
            include_reconciling_items: Add the reconciling item listing
            report_format: SUMMARY drops all listings, COMPREHENSIVE adds
                the audit trail

        Returns:
            ReconciliationReport
        """
        if report_format == ReportFormat.SUMMARY:
            include_transaction_details = False
            include_reconciling_items = False

        sections = [self._summary_section(session)]

        if include_transaction_details and session.matches:
            sections.append(self._matched_section(session))

        if include_reconciling_items and session.items:
            sections.append(self._items_section(session))

        if include_transaction_details and (session.unmatched_book or session.unmatched_statement):
            sections.append(self._unmatched_section(session))

        sections.append(self._variance_section(session))

        if report_format == ReportFormat.COMPREHENSIVE:
            sections.append(self._audit_section(session))

        return ReconciliationReport(
            session_id=session.id,
            bank_account_id=session.bank_account_id,
            statement_date=session.statement_date,
            report_format=report_format,
            sections=sections,
        )

    def _summary_section(self, session: ReconciliationSession) -> ReportSection:
        matches = list(session.matches.values())
        automatic = sum(1 for m in matches if m.match_type == MatchType.AUTOMATIC)
        manual = sum(1 for m in matches if m.match_type == MatchType.MANUAL)
        total_book = len(session.book_transactions)
        match_rate = (len(matches) / total_book * 100) if total_book else 0.0

        return ReportSection(
            section_type=SectionType.SUMMARY,
            title="Reconciliation Summary",
            fields={
                "Session ID": session.id,
                "Bank Account": session.bank_account_id,
                "Statement ID": session.statement_id or "",
                "Period": f"{session.period_start} to {session.statement_date}",
                "Status": session.status.value,
                "Statement Ending Balance": session.statement_ending_balance,
                "Book Balance": session.book_balance,
                "Initial Variance": session.initial_variance,
                "Current Variance": session.current_variance,
                "Book Transactions": total_book,
                "Statement Transactions": len(session.statement_transactions),
                "Automatic Matches": automatic,
                "Manual Matches": manual,
                "Unmatched Book": len(session.unmatched_book),
                "Unmatched Statement": len(session.unmatched_statement),
                "Reconciling Items": len(session.items),
                "Book Match Rate": f"{match_rate:.1f}%",
                "Initiated By": session.initiated_by,
                "Completed By": session.completed_by or "",
            },
        )

    def _matched_section(self, session: ReconciliationSession) -> ReportSection:
        rows = []
        for match in session.matches.values():
            book = match.book_transaction
            stmt = match.statement_transaction
            rows.append(
                [
                    match.id,
                    match.match_type.value,
                    round(match.confidence, 4),
                    book.date,
                    book.reference or "",
                    book.signed_amount,
                    book.description,
                    stmt.date,
                    stmt.reference or "",
                    stmt.amount,
                    stmt.description,
                    "; ".join(match.criteria),
                    match.matched_by,
                ]
            )
        return ReportSection(
            section_type=SectionType.MATCHED_TRANSACTIONS,
            title="Matched Transactions",
            fields={"Count": len(rows)},
            columns=[
                "Match ID",
                "Type",
                "Confidence",
                "Book Date",
                "Book Reference",
                "Book Amount",
                "Book Description",
                "Statement Date",
                "Statement Reference",
                "Statement Amount",
                "Statement Description",
                "Criteria",
                "Matched By",
            ],
            rows=rows,
        )

    def _items_section(self, session: ReconciliationSession) -> ReportSection:
        rows = [
            [
                item.id,
                item.item_type.value,
                item.amount,
                self.calculator.item_effect(item),
                item.description,
                item.reference or "",
                item.adjusting_entry_id or "",
                item.added_by,
            ]
            for item in session.items.values()
        ]
        return ReportSection(
            section_type=SectionType.RECONCILING_ITEMS,
            title="Reconciling Items",
            fields={"Count": len(rows)},
            columns=[
                "Item ID",
                "Type",
                "Amount",
                "Balance Effect",
                "Description",
                "Reference",
                "Adjusting Entry",
                "Added By",
            ],
            rows=rows,
        )

    def _unmatched_section(self, session: ReconciliationSession) -> ReportSection:
        rows: list[list[Any]] = []
        for book in session.unmatched_book.values():
            rows.append(
                [
                    "BOOK",
                    book.id,
                    book.date,
                    book.reference or "",
                    book.signed_amount,
                    book.entry_type.value,
                    book.description,
                ]
            )
        for stmt in session.unmatched_statement.values():
            rows.append(
                [
                    "STATEMENT",
                    stmt.id,
                    stmt.date,
                    stmt.reference or "",
                    stmt.amount,
                    stmt.category.value,
                    stmt.description,
                ]
            )
        return ReportSection(
            section_type=SectionType.UNMATCHED_TRANSACTIONS,
            title="Unmatched Transactions",
            fields={
                "Unmatched Book": len(session.unmatched_book),
                "Unmatched Statement": len(session.unmatched_statement),
            },
            columns=["Side", "ID", "Date", "Reference", "Amount", "Type", "Description"],
            rows=rows,
        )

    def _variance_section(self, session: ReconciliationSession) -> ReportSection:
        breakdown = self.calculator.breakdown(session)
        return ReportSection(
            section_type=SectionType.VARIANCE_ANALYSIS,
            title="Variance Analysis",
            fields={
                "Statement Balance": breakdown.statement_balance,
                "Book Balance": breakdown.book_balance,
                "Outstanding Debits": breakdown.outstanding_debits,
                "Outstanding Credits": breakdown.outstanding_credits,
                "Reconciling Item Adjustments": breakdown.item_adjustments,
                "Adjusted Book Balance": breakdown.adjusted_book_balance,
                "Variance": breakdown.variance,
                "Initial Variance": session.initial_variance,
                "Reconciled": "Yes" if breakdown.is_reconciled else "No",
            },
        )

    def _audit_section(self, session: ReconciliationSession) -> ReportSection:
        rows = [
            [
                entry.performed_at.strftime("%Y-%m-%d %H:%M:%S"),
                entry.action,
                entry.performed_by,
                entry.match_id or entry.item_id or "",
                entry.details,
            ]
            for entry in session.audit_log
        ]
        return ReportSection(
            section_type=SectionType.AUDIT_TRAIL,
            title="Audit Trail",
            fields={"Entries": len(rows)},
            columns=["Timestamp", "Action", "Performed By", "Subject", "Details"],
            rows=rows,
        )
