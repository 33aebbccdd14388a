from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from app.db import get_db
from app.models import AttendanceStatus
from app.schemas import (
    AttendanceRecordRead,
    BreakAdjustRequest,
    CheckInRequest,
    CheckOutRequest,
    ClientValidationRequest,
    RecordApproveRequest,
    RecordRejectRequest,
)
from app.services.attendance import (
    adjust_break,
    approve_record,
    check_in,
    check_out,
    client_validate_record,
    get_active_record,
    get_record,
    list_records,
    reject_record,
)
from app.services.clock import resolve_event_time
from app.services.geofence import coordinate_or_none
from app.tenancy import get_tenant_id

router = APIRouter(prefix="/api/attendance", tags=["attendance"])


@router.post("/checkin", response_model=AttendanceRecordRead, status_code=status.HTTP_201_CREATED)
def checkin(
    payload: CheckInRequest,
    request: Request,
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    request.state.employee_id = payload.employee_id
    record = check_in(
        db,
        tenant_id=tenant_id,
        employee_id=payload.employee_id,
        site_id=payload.site_id,
        ts_utc=resolve_event_time(payload.ts_utc),
        coordinate=coordinate_or_none(payload.lat, payload.lon),
        device_id=payload.device_id,
        is_offline=payload.is_offline,
    )
    request.state.record_id = record.id
    return AttendanceRecordRead.model_validate(record)


@router.post("/records/{record_id}/checkout", response_model=AttendanceRecordRead)
def checkout(
    record_id: int,
    payload: CheckOutRequest,
    request: Request,
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    request.state.record_id = record_id
    record = check_out(
        db,
        tenant_id=tenant_id,
        record_id=record_id,
        ts_utc=resolve_event_time(payload.ts_utc),
        coordinate=coordinate_or_none(payload.lat, payload.lon),
        device_id=payload.device_id,
        break_minutes=payload.break_minutes,
        is_offline=payload.is_offline,
    )
    request.state.employee_id = record.employee_id
    return AttendanceRecordRead.model_validate(record)


@router.post("/records/{record_id}/approve", response_model=AttendanceRecordRead)
def approve(
    record_id: int,
    payload: RecordApproveRequest,
    request: Request,
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    request.state.record_id = record_id
    record = approve_record(
        db,
        tenant_id=tenant_id,
        record_id=record_id,
        approver_id=payload.approver_id,
        ts_utc=resolve_event_time(payload.ts_utc),
    )
    return AttendanceRecordRead.model_validate(record)


@router.post("/records/{record_id}/reject", response_model=AttendanceRecordRead)
def reject(
    record_id: int,
    payload: RecordRejectRequest,
    request: Request,
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    request.state.record_id = record_id
    record = reject_record(
        db,
        tenant_id=tenant_id,
        record_id=record_id,
        approver_id=payload.approver_id,
        ts_utc=resolve_event_time(payload.ts_utc),
        reason=payload.reason,
    )
    return AttendanceRecordRead.model_validate(record)


@router.post("/records/{record_id}/break", response_model=AttendanceRecordRead)
def change_break(
    record_id: int,
    payload: BreakAdjustRequest,
    request: Request,
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    request.state.record_id = record_id
    record = adjust_break(
        db,
        tenant_id=tenant_id,
        record_id=record_id,
        break_minutes=payload.break_minutes,
        actor_id=payload.actor_id,
    )
    return AttendanceRecordRead.model_validate(record)


@router.post("/records/{record_id}/client-validation", response_model=AttendanceRecordRead)
def client_validation(
    record_id: int,
    payload: ClientValidationRequest,
    request: Request,
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    request.state.record_id = record_id
    record = client_validate_record(
        db,
        tenant_id=tenant_id,
        record_id=record_id,
        client_id=payload.client_id,
        validated=payload.validated,
        ts_utc=resolve_event_time(payload.ts_utc),
    )
    return AttendanceRecordRead.model_validate(record)


@router.get("/records", response_model=list[AttendanceRecordRead])
def records(
    employee_id: int | None = Query(default=None, ge=1),
    site_id: int | None = Query(default=None, ge=1),
    status_filter: AttendanceStatus | None = Query(default=None, alias="status"),
    start_utc: datetime | None = Query(default=None),
    end_utc: datetime | None = Query(default=None),
    limit: int = Query(default=200, ge=1, le=1000),
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> list[AttendanceRecordRead]:
    items = list_records(
        db,
        tenant_id=tenant_id,
        employee_id=employee_id,
        site_id=site_id,
        status=status_filter,
        start_utc=start_utc,
        end_utc=end_utc,
        limit=limit,
    )
    return [AttendanceRecordRead.model_validate(item) for item in items]


@router.get("/records/{record_id}", response_model=AttendanceRecordRead)
def record_detail(
    record_id: int,
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    return AttendanceRecordRead.model_validate(get_record(db, tenant_id, record_id))


@router.get("/active", response_model=AttendanceRecordRead | None)
def active_record(
    employee_id: int = Query(ge=1),
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> AttendanceRecordRead | None:
    record = get_active_record(db, tenant_id=tenant_id, employee_id=employee_id)
    if record is None:
        return None
    return AttendanceRecordRead.model_validate(record)
