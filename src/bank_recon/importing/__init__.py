"""Bank statement import."""

from .processor import StatementImportOutcome, StatementImportProcessor, categorize

__all__ = ["StatementImportOutcome", "StatementImportProcessor", "categorize"]
