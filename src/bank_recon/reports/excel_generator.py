"""
Excel report generator for reconciliation reports.
Writes one formatted sheet per report section.
"""

from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional
import logging

from openpyxl import Workbook
from openpyxl.styles import Border, Font, PatternFill, Side
from openpyxl.worksheet.worksheet import Worksheet

from ..config import ReconConfig
from ..utils.exceptions import ReportGenerationError
from .builder import ReconciliationReport, ReportSection, SectionType

logger = logging.getLogger(__name__)

# Style definitions
HEADER_FILL = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True)
MATCH_FILL = PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid")
VARIANCE_FILL = PatternFill(start_color="FFEB9C", end_color="FFEB9C", fill_type="solid")
UNMATCHED_FILL = PatternFill(start_color="FFC7CE", end_color="FFC7CE", fill_type="solid")
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)


class ExcelReportGenerator:
    """Generates Excel workbooks from ``ReconciliationReport`` objects."""

    def __init__(self, config: Optional[ReconConfig] = None):
        """
        Initialize the report generator.

        Args:
            config: Application configuration
        """
        self.config = config or ReconConfig()
        sheets = self.config.output.sheets
        self.sheet_names = {
            SectionType.SUMMARY: sheets.summary,
            SectionType.MATCHED_TRANSACTIONS: sheets.matched,
            SectionType.RECONCILING_ITEMS: sheets.reconciling_items,
            SectionType.UNMATCHED_TRANSACTIONS: sheets.unmatched,
            SectionType.VARIANCE_ANALYSIS: sheets.variance,
            SectionType.AUDIT_TRAIL: sheets.audit_trail,
        }

    def generate_report(self, report: ReconciliationReport, output_path: Path) -> Path:
        """
        Write the report to an Excel workbook.

        Args:
            report: Report produced by ``ReportBuilder``
            output_path: Path for output file

        Returns:
            Path to generated report

        Raises:
            ReportGenerationError: The workbook could not be written
        """
        logger.info(f"Generating Excel report: {output_path}")

        wb = Workbook()

        # Remove default sheet
        if wb.active:
            wb.remove(wb.active)

        for section in report.sections:
            ws = wb.create_sheet(self.sheet_names.get(section.section_type, section.title))
            if section.section_type == SectionType.SUMMARY:
                self._write_summary(ws, report, section)
            else:
                self._write_section(ws, section)

        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            wb.save(output_path)
        except OSError as e:
            raise ReportGenerationError(f"Failed to write report {output_path}: {e}") from e

        logger.info(f"Report saved: {output_path}")
        return output_path

    def _write_summary(
        self, ws: Worksheet, report: ReconciliationReport, section: ReportSection
    ) -> None:
        """Summary sheet with report metadata and key figures."""
        ws["A1"] = "Bank Reconciliation Summary"
        ws["A1"].font = Font(size=16, bold=True)
        ws.merge_cells("A1:D1")

        ws["A3"] = "Generated At:"
        ws["B3"] = report.generated_at.strftime("%Y-%m-%d %H:%M:%S")
        ws["A4"] = "Report Format:"
        ws["B4"] = report.report_format.value

        row = 6
        for label, value in section.fields.items():
            ws[f"A{row}"] = f"{label}:"
            ws[f"B{row}"] = self._cell_value(value)
            row += 1

        ws.column_dimensions["A"].width = 30
        ws.column_dimensions["B"].width = 40

    def _write_section(self, ws: Worksheet, section: ReportSection) -> None:
        """Key figures on top, then the row listing with a styled header."""
        ws["A1"] = section.title
        ws["A1"].font = Font(size=14, bold=True)

        reconciled = section.fields.get("Reconciled") == "Yes"
        row = 3
        for label, value in section.fields.items():
            ws[f"A{row}"] = f"{label}:"
            ws[f"B{row}"] = self._cell_value(value)
            if section.section_type == SectionType.VARIANCE_ANALYSIS and label == "Variance":
                ws[f"B{row}"].fill = MATCH_FILL if reconciled else VARIANCE_FILL
            row += 1

        if not section.columns:
            self._auto_fit_columns(ws)
            return

        row += 1
        for col, header in enumerate(section.columns, start=1):
            cell = ws.cell(row=row, column=col, value=header)
            cell.fill = HEADER_FILL
            cell.font = HEADER_FONT
            cell.border = THIN_BORDER

        for values in section.rows:
            row += 1
            fill = self._row_fill(section, values)
            for col, value in enumerate(values, start=1):
                cell = ws.cell(row=row, column=col, value=self._cell_value(value))
                cell.border = THIN_BORDER
                if fill is not None:
                    cell.fill = fill

        self._auto_fit_columns(ws)

    @staticmethod
    def _row_fill(section: ReportSection, values: list[Any]) -> Optional[PatternFill]:
        if section.section_type == SectionType.UNMATCHED_TRANSACTIONS:
            return UNMATCHED_FILL
        if section.section_type == SectionType.RECONCILING_ITEMS:
            return VARIANCE_FILL
        if section.section_type == SectionType.MATCHED_TRANSACTIONS:
            book_amount = values[section.columns.index("Book Amount")]
            stmt_amount = values[section.columns.index("Statement Amount")]
            return MATCH_FILL if book_amount == stmt_amount else VARIANCE_FILL
        return None

    @staticmethod
    def _cell_value(value: Any) -> Any:
        if isinstance(value, Decimal):
            return float(value)
        if isinstance(value, (date, datetime, int, float)) or value is None:
            return value
        return str(value)

    def _auto_fit_columns(self, ws: Worksheet) -> None:
        """Auto-fit column widths based on content."""
        for column_cells in ws.columns:
            max_length = 0
            column = column_cells[0].column_letter

            for cell in column_cells:
                if cell.value is not None:
                    max_length = max(max_length, len(str(cell.value)))

            ws.column_dimensions[column].width = min(max_length + 2, 50)
