"""Tagged result type returned by every public reconciliation operation."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar, Union

from ..utils.exceptions import (
    BusinessRuleViolation,
    ConflictError,
    DependencyFailure,
    NotFoundError,
    OperationCancelled,
    ReconciliationError,
    ValidationError,
)

T = TypeVar("T")


class FailureKind(Enum):
    """Category of a failed operation."""

    VALIDATION_ERROR = "validation_error"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    BUSINESS_RULE_VIOLATION = "business_rule_violation"
    DEPENDENCY_FAILURE = "dependency_failure"
    CANCELLED = "cancelled"


_KIND_BY_ERROR: list[tuple[type, FailureKind]] = [
    (ValidationError, FailureKind.VALIDATION_ERROR),
    (NotFoundError, FailureKind.NOT_FOUND),
    (ConflictError, FailureKind.CONFLICT),
    (BusinessRuleViolation, FailureKind.BUSINESS_RULE_VIOLATION),
    (DependencyFailure, FailureKind.DEPENDENCY_FAILURE),
    (OperationCancelled, FailureKind.CANCELLED),
]


@dataclass
class Success(Generic[T]):
    """Successful operation carrying its payload."""

    payload: T
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return True


@dataclass
class Failure:
    """Failed operation with structured diagnostics."""

    kind: FailureKind
    errors: list[str]
    warnings: list[str] = field(default_factory=list)
    context: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return False

    @classmethod
    def from_error(cls, error: ReconciliationError) -> "Failure":
        """Convert a taxonomy exception into a failure result."""
        kind = FailureKind.DEPENDENCY_FAILURE
        for error_type, error_kind in _KIND_BY_ERROR:
            if isinstance(error, error_type):
                kind = error_kind
                break
        return cls(
            kind=kind,
            errors=list(error.errors),
            warnings=list(error.warnings),
            context=dict(error.context),
        )


Result = Union[Success[T], Failure]
