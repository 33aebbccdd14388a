from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.audit import log_audit
from app.errors import InvalidPeriod, LeaveNotFound, NotPending
from app.models import AuditActorType, LeaveRequest, LeaveStatus
from app.schemas import LeaveCreateRequest
from app.services.clock import to_utc
from app.services.registry import get_employee


def get_leave(db: Session, tenant_id: int, leave_id: int) -> LeaveRequest:
    leave = db.get(LeaveRequest, leave_id)
    if leave is None or leave.tenant_id != tenant_id:
        raise LeaveNotFound()
    return leave


def create_leave(db: Session, tenant_id: int, payload: LeaveCreateRequest) -> LeaveRequest:
    employee = get_employee(db, tenant_id, payload.employee_id)

    if payload.end_date < payload.start_date:
        raise InvalidPeriod("end_date must be greater than or equal to start_date.")

    days_count = payload.days_count
    if days_count is None:
        days_count = (payload.end_date - payload.start_date).days + 1

    leave = LeaveRequest(
        tenant_id=tenant_id,
        employee_id=employee.id,
        type=payload.type,
        start_date=payload.start_date,
        end_date=payload.end_date,
        status=LeaveStatus.PENDING,
        is_paid=payload.is_paid,
        days_count=days_count,
        reason=payload.reason,
    )
    db.add(leave)
    db.commit()
    db.refresh(leave)
    return leave


def list_leaves(
    db: Session,
    *,
    tenant_id: int,
    employee_id: int | None = None,
    status: LeaveStatus | None = None,
    overlap_start: date | None = None,
    overlap_end: date | None = None,
) -> list[LeaveRequest]:
    stmt = select(LeaveRequest).where(LeaveRequest.tenant_id == tenant_id)
    if employee_id is not None:
        stmt = stmt.where(LeaveRequest.employee_id == employee_id)
    if status is not None:
        stmt = stmt.where(LeaveRequest.status == status)
    if overlap_start is not None:
        stmt = stmt.where(LeaveRequest.end_date >= overlap_start)
    if overlap_end is not None:
        stmt = stmt.where(LeaveRequest.start_date <= overlap_end)

    stmt = stmt.order_by(LeaveRequest.start_date.asc(), LeaveRequest.id.asc())
    return list(db.scalars(stmt).all())


def _decide_leave(
    db: Session,
    *,
    tenant_id: int,
    leave_id: int,
    approver_id: int,
    ts_utc: datetime,
    target: LeaveStatus,
) -> LeaveRequest:
    leave = get_leave(db, tenant_id, leave_id)
    if leave.status != LeaveStatus.PENDING:
        raise NotPending("Leave request is not pending.")

    leave.status = target
    leave.approved_by_id = approver_id
    leave.approved_at = to_utc(ts_utc)
    log_audit(
        db,
        tenant_id=tenant_id,
        actor_type=AuditActorType.MANAGER,
        actor_id=approver_id,
        action=f"LEAVE_{target.value}",
        entity_type="leave_request",
        entity_id=leave.id,
        details={"employee_id": leave.employee_id, "type": leave.type.value},
        ts_utc=leave.approved_at,
    )
    db.commit()
    db.refresh(leave)
    return leave


def approve_leave(db: Session, *, tenant_id: int, leave_id: int, approver_id: int, ts_utc: datetime) -> LeaveRequest:
    return _decide_leave(
        db,
        tenant_id=tenant_id,
        leave_id=leave_id,
        approver_id=approver_id,
        ts_utc=ts_utc,
        target=LeaveStatus.APPROVED,
    )


def reject_leave(db: Session, *, tenant_id: int, leave_id: int, approver_id: int, ts_utc: datetime) -> LeaveRequest:
    return _decide_leave(
        db,
        tenant_id=tenant_id,
        leave_id=leave_id,
        approver_id=approver_id,
        ts_utc=ts_utc,
        target=LeaveStatus.REJECTED,
    )


def cancel_leave(db: Session, *, tenant_id: int, leave_id: int) -> LeaveRequest:
    leave = get_leave(db, tenant_id, leave_id)
    if leave.status not in {LeaveStatus.PENDING, LeaveStatus.APPROVED}:
        raise NotPending("Leave request can no longer be cancelled.")
    leave.status = LeaveStatus.CANCELLED
    log_audit(
        db,
        tenant_id=tenant_id,
        actor_type=AuditActorType.EMPLOYEE,
        actor_id=leave.employee_id,
        action="LEAVE_CANCELLED",
        entity_type="leave_request",
        entity_id=leave.id,
    )
    db.commit()
    db.refresh(leave)
    return leave
