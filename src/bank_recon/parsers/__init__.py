"""Parsers for statement and book CSV exports."""

from .csv_parser import BookCSVParser, StatementCSVParser

__all__ = ["BookCSVParser", "StatementCSVParser"]
