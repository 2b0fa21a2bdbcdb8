"""Data models for reconciliation."""

from .transaction import (
    BookTransaction,
    CandidateMatch,
    ConfidenceTier,
    EntryType,
    MatchType,
    RawStatementRow,
    StatementCategory,
    StatementTransaction,
    TransactionMatch,
    to_money,
)
from .session import (
    AuditEntry,
    ReconciliationItem,
    ReconciliationItemType,
    ReconciliationSession,
    SessionStatus,
)
from .results import Failure, FailureKind, Result, Success

__all__ = [
    "BookTransaction",
    "CandidateMatch",
    "ConfidenceTier",
    "EntryType",
    "MatchType",
    "RawStatementRow",
    "StatementCategory",
    "StatementTransaction",
    "TransactionMatch",
    "to_money",
    "AuditEntry",
    "ReconciliationItem",
    "ReconciliationItemType",
    "ReconciliationSession",
    "SessionStatus",
    "Failure",
    "FailureKind",
    "Result",
    "Success",
]
