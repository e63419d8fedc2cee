"""Excel exports built with openpyxl."""

import io
from typing import Iterable, List

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill

from schoolms.api.v1.students.schemas import StudentResponse
from schoolms.core.config import settings

from .schemas import OutstandingFeesReport

HEADER_FONT = Font(bold=True, color="FFFFFF")
HEADER_FILL = PatternFill(start_color="1F4E78", end_color="1F4E78", fill_type="solid")


def _write_header(ws, headers: List[str]) -> None:
    ws.append(headers)
    for cell in ws[1]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
    ws.freeze_panes = "A2"


def _autosize(ws) -> None:
    for column in ws.columns:
        width = max(len(str(cell.value)) if cell.value is not None else 0 for cell in column)
        ws.column_dimensions[column[0].column_letter].width = min(width + 2, 50)


def _to_bytes(wb: Workbook) -> bytes:
    bio = io.BytesIO()
    wb.save(bio)
    return bio.getvalue()


def students_workbook(students: Iterable[StudentResponse]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Students"
    _write_header(
        ws,
        ["Student ID", "First Name", "Last Name", "Email", "Gender", "Type", "Class",
         "Date of Birth", "Phone", "Guardian Email", "Active"],
    )
    for s in students:
        ws.append([
            s.student_number,
            s.first_name,
            s.last_name,
            s.email,
            s.gender,
            s.student_type,
            s.class_name or "",
            s.date_of_birth.isoformat() if s.date_of_birth else "",
            s.phone_number or "",
            s.guardian_email or "",
            "Yes" if s.is_active else "No",
        ])
    _autosize(ws)
    return _to_bytes(wb)


def outstanding_fees_workbook(report: OutstandingFeesReport) -> bytes:
    currency = settings.currency_code
    wb = Workbook()
    ws = wb.active
    ws.title = "Outstanding Fees"
    _write_header(
        ws,
        ["Student ID", "Name", "Class", "Phone", "Guardian Phone", "Open Invoices",
         f"Outstanding ({currency})", "Oldest Invoice", "Days Overdue"],
    )
    for row in report.students:
        ws.append([
            row.student_number,
            row.student_name,
            row.class_name or "",
            row.phone_number or "",
            row.guardian_phone or "",
            row.open_invoices,
            float(row.total_outstanding),
            row.oldest_invoice_date.isoformat(),
            row.days_overdue,
        ])
    ws.append([])
    ws.append(["", "Total", "", "", "", "", float(report.total_outstanding)])
    ws.cell(row=ws.max_row, column=2).font = Font(bold=True)
    _autosize(ws)
    return _to_bytes(wb)
