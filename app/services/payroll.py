from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.audit import log_audit
from app.db import begin_snapshot
from app.errors import InvalidPeriod, InvalidStatusTransition, PayrollNotFound, PeriodAlreadyPaid, PeriodInProcessing
from app.models import (
    AttendanceRecord,
    AttendanceStatus,
    AuditActorType,
    LeaveRequest,
    LeaveStatus,
    LeaveType,
    PayrollRecord,
    PayrollStatus,
)
from app.schemas import PayrollMonthlyPoint, PayrollSummaryResponse
from app.services.clock import to_utc
from app.services.consistency import guarded_write
from app.services.payroll_calc import (
    ZERO,
    attribute_leave_days,
    calculate_night_hours,
    calculate_total_amount,
    leave_overlap_fraction,
    quantize_hours,
    split_overlapping_records,
)
from app.services.registry import get_employee
from app.settings import get_attendance_timezone, get_night_window, get_settings

logger = logging.getLogger("app.payroll")

PAYROLL_TRANSITIONS: dict[PayrollStatus, frozenset[PayrollStatus]] = {
    PayrollStatus.PENDING: frozenset({PayrollStatus.PROCESSING}),
    PayrollStatus.PROCESSING: frozenset({PayrollStatus.PAID}),
    PayrollStatus.PAID: frozenset(),
}

SUMMARY_MONTHS = 6


def _leave_bucket(leave: LeaveRequest) -> str | None:
    if leave.type == LeaveType.VACATION:
        return "vacation_days"
    if leave.type == LeaveType.SICK:
        return "sick_days"
    if leave.type == LeaveType.UNPAID:
        return "unpaid_absence_days"
    if leave.type == LeaveType.PERSONAL and not leave.is_paid:
        return "unpaid_absence_days"
    return None


def _approved_records(
    db: Session,
    *,
    tenant_id: int,
    employee_id: int,
    start: datetime,
    end: datetime,
) -> list[AttendanceRecord]:
    stmt = (
        select(AttendanceRecord)
        .options(selectinload(AttendanceRecord.site))
        .where(
            AttendanceRecord.tenant_id == tenant_id,
            AttendanceRecord.employee_id == employee_id,
            AttendanceRecord.status == AttendanceStatus.APPROVED,
            AttendanceRecord.check_out_time.is_not(None),
            AttendanceRecord.check_in_time >= start,
            AttendanceRecord.check_in_time < end,
        )
        .order_by(AttendanceRecord.check_in_time.asc(), AttendanceRecord.id.asc())
    )
    return list(db.scalars(stmt).all())


def _carried_over_records(
    db: Session,
    *,
    tenant_id: int,
    employee_id: int,
    start: datetime,
) -> list[AttendanceRecord]:
    # Paid with the previous period; only used to detect overlaps at the boundary.
    stmt = (
        select(AttendanceRecord)
        .where(
            AttendanceRecord.tenant_id == tenant_id,
            AttendanceRecord.employee_id == employee_id,
            AttendanceRecord.status == AttendanceStatus.APPROVED,
            AttendanceRecord.check_in_time < start,
            AttendanceRecord.check_out_time > start,
        )
        .order_by(AttendanceRecord.check_in_time.asc(), AttendanceRecord.id.asc())
    )
    return list(db.scalars(stmt).all())


def _approved_leaves(
    db: Session,
    *,
    tenant_id: int,
    employee_id: int,
    first_day: date,
    last_day: date,
) -> list[LeaveRequest]:
    stmt = (
        select(LeaveRequest)
        .where(
            LeaveRequest.tenant_id == tenant_id,
            LeaveRequest.employee_id == employee_id,
            LeaveRequest.status == LeaveStatus.APPROVED,
            LeaveRequest.start_date <= last_day,
            LeaveRequest.end_date >= first_day,
        )
        .order_by(LeaveRequest.start_date.asc(), LeaveRequest.id.asc())
    )
    return list(db.scalars(stmt).all())


def generate_payroll(
    db: Session,
    *,
    tenant_id: int,
    employee_id: int,
    period_start: datetime,
    period_end: datetime,
    force: bool = False,
) -> PayrollRecord:
    """Aggregate approved attendance and leave into one payroll row per period.

    Reads happen inside a single snapshot. Regenerating an unpaid period
    overwrites it with the same figures; a period that is processing or paid
    is only rebuilt when ``force`` is set, which sends it back to pending.
    """
    start = to_utc(period_start)
    end = to_utc(period_end)
    if end <= start:
        raise InvalidPeriod()

    begin_snapshot(db)
    settings = get_settings()
    tz = get_attendance_timezone()
    window_start, window_end = get_night_window()

    employee = get_employee(db, tenant_id, employee_id)

    existing = db.scalar(
        select(PayrollRecord).where(
            PayrollRecord.tenant_id == tenant_id,
            PayrollRecord.employee_id == employee.id,
            PayrollRecord.period_start == start,
            PayrollRecord.period_end == end,
        )
    )
    if existing is not None and not force:
        if existing.status == PayrollStatus.PAID:
            db.rollback()
            raise PeriodAlreadyPaid()
        if existing.status == PayrollStatus.PROCESSING:
            db.rollback()
            raise PeriodInProcessing()

    records = _approved_records(db, tenant_id=tenant_id, employee_id=employee.id, start=start, end=end)
    carried_over = _carried_over_records(db, tenant_id=tenant_id, employee_id=employee.id, start=start)
    split = split_overlapping_records(records, carried_over)
    for anomaly in split.anomalies:
        logger.warning(
            "payroll_overlapping_records",
            extra={
                "tenant_id": tenant_id,
                "employee_id": employee.id,
                **anomaly,
            },
        )

    regular_hours = ZERO
    overtime_hours = ZERO
    night_hours = ZERO
    for record in split.counted:
        total = Decimal(record.total_hours or ZERO)
        overtime = Decimal(record.overtime_hours or ZERO)
        regular_hours += total - overtime
        overtime_hours += overtime
        overlap = calculate_night_hours(
            check_in=record.check_in_time,
            check_out=record.check_out_time,
            tz=tz,
            window_start=window_start,
            window_end=window_end,
        )
        night_hours += min(total, overlap)

    leave_days: dict[str, Decimal] = defaultdict(lambda: ZERO)
    leaves = _approved_leaves(
        db,
        tenant_id=tenant_id,
        employee_id=employee.id,
        first_day=start.astimezone(tz).date(),
        last_day=end.astimezone(tz).date(),
    )
    for leave in leaves:
        bucket = _leave_bucket(leave)
        if bucket is None:
            continue
        fraction = leave_overlap_fraction(
            start_date=leave.start_date,
            end_date=leave.end_date,
            period_start=start,
            period_end=end,
            tz=tz,
        )
        leave_days[bucket] += attribute_leave_days(leave.days_count, fraction)

    overtime_multiplier = quantize_hours(Decimal(str(settings.overtime_multiplier)))
    regular_hours = quantize_hours(regular_hours)
    overtime_hours = quantize_hours(overtime_hours)
    total_amount = calculate_total_amount(
        regular_hours=regular_hours,
        overtime_hours=overtime_hours,
        hourly_rate=employee.hourly_rate,
        overtime_multiplier=overtime_multiplier,
    )

    payroll = existing
    if payroll is None:
        payroll = PayrollRecord(
            tenant_id=tenant_id,
            employee_id=employee.id,
            period_start=start,
            period_end=end,
            status=PayrollStatus.PENDING,
        )
        db.add(payroll)
    elif payroll.status != PayrollStatus.PENDING:
        payroll.status = PayrollStatus.PENDING
        payroll.paid_at = None

    payroll.regular_hours = regular_hours
    payroll.overtime_hours = overtime_hours
    payroll.night_hours = quantize_hours(night_hours)
    payroll.vacation_days = quantize_hours(leave_days["vacation_days"])
    payroll.sick_days = quantize_hours(leave_days["sick_days"])
    payroll.unpaid_absence_days = quantize_hours(leave_days["unpaid_absence_days"])
    payroll.hourly_rate = employee.hourly_rate
    payroll.overtime_multiplier = overtime_multiplier
    payroll.total_amount = total_amount
    payroll.source_record_ids = [record.id for record in split.counted]
    payroll.anomalies = list(split.anomalies)

    with guarded_write(db, invariant="one_payroll_per_period", employee_id=employee.id):
        db.flush()
        log_audit(
            db,
            tenant_id=tenant_id,
            actor_type=AuditActorType.SYSTEM,
            actor_id="payroll",
            action="PAYROLL_GENERATED",
            entity_type="payroll_record",
            entity_id=payroll.id,
            details={
                "employee_id": employee.id,
                "period_start": start.isoformat(),
                "period_end": end.isoformat(),
                "forced": force,
                "record_count": len(split.counted),
                "anomaly_count": len(split.anomalies),
            },
        )

    logger.info(
        "payroll_generated",
        extra={
            "payroll_id": payroll.id,
            "employee_id": employee.id,
            "regular_hours": str(payroll.regular_hours),
            "overtime_hours": str(payroll.overtime_hours),
            "night_hours": str(payroll.night_hours),
            "total_amount": str(payroll.total_amount) if payroll.total_amount is not None else None,
        },
    )
    return payroll


def get_payroll_record(db: Session, tenant_id: int, payroll_id: int) -> PayrollRecord:
    payroll = db.get(PayrollRecord, payroll_id)
    if payroll is None or payroll.tenant_id != tenant_id:
        raise PayrollNotFound()
    return payroll


def update_payroll_status(
    db: Session,
    *,
    tenant_id: int,
    payroll_id: int,
    status: PayrollStatus,
    ts_utc: datetime,
) -> PayrollRecord:
    payroll = get_payroll_record(db, tenant_id, payroll_id)
    if status not in PAYROLL_TRANSITIONS[payroll.status]:
        raise InvalidStatusTransition(
            f"Payroll record cannot move from {payroll.status.value} to {status.value}."
        )

    previous = payroll.status
    with guarded_write(db, invariant="payroll_status", payroll_id=payroll.id):
        payroll.status = status
        if status == PayrollStatus.PAID:
            payroll.paid_at = to_utc(ts_utc)
        log_audit(
            db,
            tenant_id=tenant_id,
            actor_type=AuditActorType.MANAGER,
            actor_id="payroll",
            action="PAYROLL_STATUS_UPDATED",
            entity_type="payroll_record",
            entity_id=payroll.id,
            details={"from": previous.value, "to": status.value},
            ts_utc=to_utc(ts_utc),
        )
    return payroll


def list_payroll_records(
    db: Session,
    *,
    tenant_id: int,
    employee_id: int | None = None,
    status: PayrollStatus | None = None,
    start_utc: datetime | None = None,
    end_utc: datetime | None = None,
) -> list[PayrollRecord]:
    stmt = select(PayrollRecord).where(PayrollRecord.tenant_id == tenant_id)
    if employee_id is not None:
        stmt = stmt.where(PayrollRecord.employee_id == employee_id)
    if status is not None:
        stmt = stmt.where(PayrollRecord.status == status)
    if start_utc is not None:
        stmt = stmt.where(PayrollRecord.period_start >= to_utc(start_utc))
    if end_utc is not None:
        stmt = stmt.where(PayrollRecord.period_end <= to_utc(end_utc))
    stmt = stmt.order_by(PayrollRecord.period_start.desc(), PayrollRecord.employee_id.asc())
    return list(db.scalars(stmt).all())


def _shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def payroll_summary(db: Session, *, tenant_id: int, now: datetime) -> PayrollSummaryResponse:
    tz = get_attendance_timezone()
    records = list_payroll_records(db, tenant_id=tenant_id)

    total_paid = ZERO
    total_pending = ZERO
    total_regular = ZERO
    total_overtime = ZERO
    employees: set[int] = set()
    for payroll in records:
        amount = Decimal(payroll.total_amount or ZERO)
        if payroll.status == PayrollStatus.PAID:
            total_paid += amount
        else:
            total_pending += amount
        total_regular += Decimal(payroll.regular_hours)
        total_overtime += Decimal(payroll.overtime_hours)
        employees.add(payroll.employee_id)

    local_now = to_utc(now).astimezone(tz)
    month_keys = [
        "%04d-%02d" % _shift_month(local_now.year, local_now.month, -offset)
        for offset in range(SUMMARY_MONTHS - 1, -1, -1)
    ]
    amounts = {key: ZERO for key in month_keys}
    hours = {key: ZERO for key in month_keys}
    for payroll in records:
        key = payroll.period_start.astimezone(tz).strftime("%Y-%m")
        if key not in amounts:
            continue
        amounts[key] += Decimal(payroll.total_amount or ZERO)
        hours[key] += Decimal(payroll.regular_hours) + Decimal(payroll.overtime_hours)

    return PayrollSummaryResponse(
        total_paid=quantize_hours(total_paid),
        total_pending=quantize_hours(total_pending),
        total_regular_hours=quantize_hours(total_regular),
        total_overtime_hours=quantize_hours(total_overtime),
        employee_count=len(employees),
        record_count=len(records),
        monthly=[
            PayrollMonthlyPoint(month=key, amount=quantize_hours(amounts[key]), hours=quantize_hours(hours[key]))
            for key in month_keys
        ],
    )
