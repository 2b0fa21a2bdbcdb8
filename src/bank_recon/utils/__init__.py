"""Utility modules."""

from .exceptions import (
    ReconciliationError,
    ValidationError,
    NotFoundError,
    ConflictError,
    BusinessRuleViolation,
    DependencyFailure,
    OperationCancelled,
    ConfigurationError,
    StatementParseError,
    ReportGenerationError,
)
from .logging_config import setup_logging, get_logger

__all__ = [
    "ReconciliationError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "BusinessRuleViolation",
    "DependencyFailure",
    "OperationCancelled",
    "ConfigurationError",
    "StatementParseError",
    "ReportGenerationError",
    "setup_logging",
    "get_logger",
]
