"""Review workbook generator.

Writes the built customer groups to a fresh workbook: one summary sheet plus
one sheet per customer listing its line items. All values are pre-computed
in Python; no Excel formulas are written.
"""

from __future__ import annotations

import re
from decimal import Decimal
from pathlib import Path

import openpyxl
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from bulk_invoice.models import CustomerGroup

SUMMARY_SHEET = "Summary"
SUMMARY_HEADERS = [
    "Customer", "Projects", "Total Hours", "Regular Hours",
    "Overtime Hours", "Billable", "Selected", "Missing Rate Brackets",
]
LINE_ITEM_HEADERS = ["Product", "Description", "Type", "Hours", "Rate", "Total", "Selected"]

TITLE_ROW = 1
HEADER_ROW = 3
DATA_START_ROW = 4

# Formatting constants
THIN_BORDER = Border(
    left=Side(style='thin'),
    right=Side(style='thin'),
    top=Side(style='thin'),
    bottom=Side(style='thin'),
)

HEADER_FONT = Font(name='Calibri', size=11, bold=True)
DATA_FONT = Font(name='Calibri', size=11)
TITLE_FONT = Font(name='Calibri', size=12, bold=True)
WARNING_FILL = PatternFill(start_color='FFF2CC', end_color='FFF2CC', fill_type='solid')
CENTER_ALIGN = Alignment(horizontal='center', vertical='center')
WRAP_ALIGN = Alignment(vertical='top', wrap_text=True)
DOLLAR_FORMAT = '_("$"* #,##0.00_);_("$"* \\(#,##0.00\\);_("$"* "-"??_);_(@_)'
NUMBER_FORMAT = '#,##0.00'

_INVALID_SHEET_CHARS = re.compile(r'[\[\]:*?/\\]')


def _sheet_title(name: str, used: set[str]) -> str:
    """Excel-safe, unique sheet title (max 31 chars)."""
    base = _INVALID_SHEET_CHARS.sub("-", name).strip() or "Customer"
    base = base[:31]
    title = base
    n = 2
    while title.lower() in used:
        suffix = f" ({n})"
        title = base[:31 - len(suffix)] + suffix
        n += 1
    used.add(title.lower())
    return title


def _write_header(ws, row: int, headers: list[str]) -> None:
    for col, label in enumerate(headers, start=1):
        cell = ws.cell(row=row, column=col)
        cell.value = label
        cell.font = HEADER_FONT
        cell.alignment = CENTER_ALIGN
        cell.border = THIN_BORDER


def _write_cell(ws, row: int, col: int, value, number_format: str | None = None):
    cell = ws.cell(row=row, column=col)
    cell.value = float(value) if isinstance(value, Decimal) else value
    cell.font = DATA_FONT
    cell.border = THIN_BORDER
    if number_format:
        cell.number_format = number_format
    return cell


def _write_summary(ws, groups: list[CustomerGroup]) -> None:
    ws.cell(row=TITLE_ROW, column=1).value = 'Bulk Invoice Review'
    ws.cell(row=TITLE_ROW, column=1).font = TITLE_FONT
    _write_header(ws, HEADER_ROW, SUMMARY_HEADERS)

    row = DATA_START_ROW
    for group in groups:
        values = [
            (group.customer_name, None),
            (group.project_names, None),
            (group.total_hours, NUMBER_FORMAT),
            (group.regular_hours, NUMBER_FORMAT),
            (group.overtime_hours, NUMBER_FORMAT),
            (group.total_billable, DOLLAR_FORMAT),
            ("Yes" if group.is_submittable else "No", None),
            (", ".join(name for _, name in group.personnel_without_brackets), None),
        ]
        for col, (value, fmt) in enumerate(values, start=1):
            cell = _write_cell(ws, row, col, value, fmt)
            if group.has_rate_bracket_issues:
                cell.fill = WARNING_FILL
        row += 1

    # Grand total over submittable customers only
    ws.cell(row=row, column=1).value = 'Total'
    ws.cell(row=row, column=1).font = HEADER_FONT
    grand_total = sum((g.total_billable for g in groups if g.is_submittable), Decimal("0"))
    total_cell = _write_cell(ws, row, 6, grand_total, DOLLAR_FORMAT)
    total_cell.font = HEADER_FONT


def _write_customer_sheet(ws, group: CustomerGroup) -> None:
    ws.cell(row=TITLE_ROW, column=1).value = group.customer_name
    ws.cell(row=TITLE_ROW, column=1).font = TITLE_FONT
    ws.cell(row=TITLE_ROW + 1, column=1).value = group.week_label
    ws.cell(row=TITLE_ROW + 1, column=1).font = DATA_FONT
    _write_header(ws, HEADER_ROW, LINE_ITEM_HEADERS)

    row = DATA_START_ROW
    for item in group.line_items:
        _write_cell(ws, row, 1, item.product_name)
        _write_cell(ws, row, 2, item.description).alignment = WRAP_ALIGN
        _write_cell(ws, row, 3, item.type.value)
        _write_cell(ws, row, 4, item.hours, NUMBER_FORMAT)
        _write_cell(ws, row, 5, item.rate, DOLLAR_FORMAT)
        _write_cell(ws, row, 6, item.total, DOLLAR_FORMAT)
        _write_cell(ws, row, 7, "Yes" if item.selected else "No")
        row += 1

    ws.cell(row=row, column=5).value = 'Subtotal'
    ws.cell(row=row, column=5).font = HEADER_FONT
    _write_cell(ws, row, 6, group.total_billable, DOLLAR_FORMAT).font = HEADER_FONT

    if group.has_rate_bracket_issues:
        row += 2
        ws.cell(row=row, column=1).value = 'Missing rate brackets'
        ws.cell(row=row, column=1).font = HEADER_FONT
        for pid, name in group.personnel_without_brackets:
            row += 1
            ws.cell(row=row, column=1).value = name
            ws.cell(row=row, column=2).value = pid
            ws.cell(row=row, column=1).fill = WARNING_FILL


def _autosize(ws, widths: dict[int, int]) -> None:
    for col, width in widths.items():
        ws.column_dimensions[get_column_letter(col)].width = width


def export_review_workbook(groups: list[CustomerGroup], output_path: str | Path) -> Path:
    """Write the review workbook and return its path."""
    output_path = Path(output_path)
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = SUMMARY_SHEET
    _write_summary(ws, groups)
    _autosize(ws, {1: 30, 2: 40, 3: 14, 4: 14, 5: 14, 6: 16, 7: 10, 8: 30})

    used = {SUMMARY_SHEET.lower()}
    for group in groups:
        sheet = wb.create_sheet(_sheet_title(group.customer_name, used))
        _write_customer_sheet(sheet, group)
        _autosize(sheet, {1: 30, 2: 60, 3: 10, 4: 10, 5: 12, 6: 14, 7: 10})

    wb.save(str(output_path))
    return output_path
