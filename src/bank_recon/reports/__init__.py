"""Reconciliation report building and rendering."""

from .builder import (
    ReconciliationReport,
    ReportBuilder,
    ReportFormat,
    ReportSection,
    SectionType,
)
from .excel_generator import ExcelReportGenerator

__all__ = [
    "ReconciliationReport",
    "ReportBuilder",
    "ReportFormat",
    "ReportSection",
    "SectionType",
    "ExcelReportGenerator",
]
