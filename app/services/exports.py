from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import Employee, PayrollRecord, PayrollStatus
from app.services.payroll import list_payroll_records

PAYROLL_HEADERS = [
    "Employee ID",
    "Employee",
    "Period start (UTC)",
    "Period end (UTC)",
    "Regular hours",
    "Overtime hours",
    "Night hours",
    "Vacation days",
    "Sick days",
    "Unpaid absence days",
    "Hourly rate",
    "Overtime multiplier",
    "Total amount",
    "Status",
    "Paid at (UTC)",
    "Anomalies",
]

SUMMARY_HEADERS = ["Status", "Records", "Regular hours", "Overtime hours", "Total amount"]

HEADER_FILL = PatternFill(fill_type="solid", fgColor="0B4F73")
ZEBRA_FILL = PatternFill(fill_type="solid", fgColor="F7FBFE")
ALERT_FILL = PatternFill(fill_type="solid", fgColor="FDE2E4")
SUCCESS_FILL = PatternFill(fill_type="solid", fgColor="E6F4EA")

HEADER_FONT = Font(bold=True, color="FFFFFF")
TITLE_FONT = Font(bold=True, color="0B4F73", size=14)

THIN_SIDE = Side(style="thin", color="D5E2EC")
THIN_BORDER = Border(left=THIN_SIDE, right=THIN_SIDE, top=THIN_SIDE, bottom=THIN_SIDE)


def _to_excel_datetime(value: datetime | None) -> datetime | None:
    # Excel cells cannot hold tz-aware datetimes.
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _to_excel_number(value: Decimal | None) -> float | None:
    if value is None:
        return None
    return float(value)


def _style_header(ws: Worksheet, row: int) -> None:
    for cell in ws[row]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
        cell.border = THIN_BORDER


def _auto_width(ws: Worksheet) -> None:
    for column_cells in ws.iter_cols(min_row=1, max_row=ws.max_row, min_col=1, max_col=ws.max_column):
        widest = 0
        for cell in column_cells:
            if cell.coordinate in ws.merged_cells:
                continue
            widest = max(widest, len("" if cell.value is None else str(cell.value)))
        ws.column_dimensions[get_column_letter(column_cells[0].column)].width = min(widest + 2, 40)


def _style_rows(ws: Worksheet, *, first_row: int, last_row: int, status_col: int, anomalies_col: int) -> None:
    if last_row < first_row:
        ws.freeze_panes = f"A{first_row}"
        return

    ws.auto_filter.ref = f"A{first_row - 1}:{get_column_letter(ws.max_column)}{last_row}"
    ws.freeze_panes = f"A{first_row}"
    for row_idx in range(first_row, last_row + 1):
        for col_idx in range(1, ws.max_column + 1):
            cell = ws.cell(row=row_idx, column=col_idx)
            cell.border = THIN_BORDER
            if row_idx % 2 == 0:
                cell.fill = ZEBRA_FILL
        status_cell = ws.cell(row=row_idx, column=status_col)
        if status_cell.value == PayrollStatus.PAID.value:
            status_cell.fill = SUCCESS_FILL
        anomalies_cell = ws.cell(row=row_idx, column=anomalies_col)
        if anomalies_cell.value not in {None, "", 0}:
            anomalies_cell.fill = ALERT_FILL
            anomalies_cell.font = Font(bold=True, color="9F1239")


def _employee_names(db: Session, tenant_id: int, employee_ids: set[int]) -> dict[int, str]:
    if not employee_ids:
        return {}
    rows = db.execute(
        select(Employee.id, Employee.full_name).where(
            Employee.tenant_id == tenant_id,
            Employee.id.in_(sorted(employee_ids)),
        )
    ).all()
    return {row.id: row.full_name for row in rows}


def _payroll_row(payroll: PayrollRecord, employee_name: str) -> list[object]:
    return [
        payroll.employee_id,
        employee_name,
        _to_excel_datetime(payroll.period_start),
        _to_excel_datetime(payroll.period_end),
        _to_excel_number(payroll.regular_hours),
        _to_excel_number(payroll.overtime_hours),
        _to_excel_number(payroll.night_hours),
        _to_excel_number(payroll.vacation_days),
        _to_excel_number(payroll.sick_days),
        _to_excel_number(payroll.unpaid_absence_days),
        _to_excel_number(payroll.hourly_rate),
        _to_excel_number(payroll.overtime_multiplier),
        _to_excel_number(payroll.total_amount),
        payroll.status.value,
        _to_excel_datetime(payroll.paid_at),
        len(payroll.anomalies or []),
    ]


def _append_summary_sheet(wb: Workbook, records: list[PayrollRecord]) -> None:
    ws = wb.create_sheet("Summary")
    ws.append(SUMMARY_HEADERS)
    _style_header(ws, 1)
    for status in PayrollStatus:
        subset = [item for item in records if item.status == status]
        ws.append(
            [
                status.value,
                len(subset),
                float(sum((Decimal(item.regular_hours) for item in subset), Decimal("0"))),
                float(sum((Decimal(item.overtime_hours) for item in subset), Decimal("0"))),
                float(sum((Decimal(item.total_amount or 0) for item in subset), Decimal("0"))),
            ]
        )
    _auto_width(ws)


def build_payroll_xlsx_bytes(
    db: Session,
    *,
    tenant_id: int,
    start_utc: datetime | None = None,
    end_utc: datetime | None = None,
    employee_id: int | None = None,
    status: PayrollStatus | None = None,
) -> bytes:
    records = list_payroll_records(
        db,
        tenant_id=tenant_id,
        employee_id=employee_id,
        status=status,
        start_utc=start_utc,
        end_utc=end_utc,
    )
    names = _employee_names(db, tenant_id, {item.employee_id for item in records})

    wb = Workbook()
    ws = wb.active
    ws.title = "Payroll"
    ws.cell(row=1, column=1, value="Payroll export").font = TITLE_FONT
    ws.append(PAYROLL_HEADERS)
    _style_header(ws, 2)
    for payroll in records:
        ws.append(_payroll_row(payroll, names.get(payroll.employee_id, "-")))
    _style_rows(
        ws,
        first_row=3,
        last_row=ws.max_row if records else 2,
        status_col=PAYROLL_HEADERS.index("Status") + 1,
        anomalies_col=PAYROLL_HEADERS.index("Anomalies") + 1,
    )
    _auto_width(ws)

    _append_summary_sheet(wb, records)

    stream = BytesIO()
    wb.save(stream)
    return stream.getvalue()
