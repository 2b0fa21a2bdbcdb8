"""Custom exceptions for the reconciliation engine."""

from typing import Any, Optional


class ReconciliationError(Exception):
    """Base exception for reconciliation errors.

    Carries the error/warning lists and context that end up in a
    ``Failure`` result when the error crosses an operation boundary.
    """

    def __init__(
        self,
        message: str,
        errors: Optional[list[str]] = None,
        warnings: Optional[list[str]] = None,
        context: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.errors = list(errors) if errors else [message]
        self.warnings = list(warnings or [])
        self.context = dict(context or {})


class ValidationError(ReconciliationError):
    """Missing or invalid input."""

    pass


class NotFoundError(ReconciliationError):
    """Unknown account, session, transaction, match or item."""

    pass


class ConflictError(ReconciliationError):
    """Overlapping session, already matched transaction or duplicate rows."""

    pass


class BusinessRuleViolation(ReconciliationError):
    """Operation refused by a reconciliation rule."""

    pass


class DependencyFailure(ReconciliationError):
    """A ledger or repository collaborator call failed."""

    pass


class OperationCancelled(ReconciliationError):
    """A long-running operation was cancelled by the caller."""

    pass


class ConfigurationError(ReconciliationError):
    """Error in configuration."""

    pass


class StatementParseError(ReconciliationError):
    """Error reading a statement or ledger CSV file."""

    pass


class ReportGenerationError(ReconciliationError):
    """Error generating Excel report."""

    pass
