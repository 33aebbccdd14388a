from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from app.db import get_db
from app.models import PayrollStatus
from app.schemas import (
    PayrollGenerateRequest,
    PayrollRecordRead,
    PayrollStatusUpdateRequest,
    PayrollSummaryResponse,
    ServiceOrdersResponse,
)
from app.services.clock import resolve_event_time
from app.services.exports import build_payroll_xlsx_bytes
from app.services.payroll import generate_payroll, list_payroll_records, payroll_summary, update_payroll_status
from app.services.service_orders import calculate_service_orders
from app.tenancy import get_tenant_id

router = APIRouter(tags=["payroll"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@router.post("/api/payroll/generate", response_model=PayrollRecordRead)
def generate(
    payload: PayrollGenerateRequest,
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> PayrollRecordRead:
    payroll = generate_payroll(
        db,
        tenant_id=tenant_id,
        employee_id=payload.employee_id,
        period_start=payload.period_start,
        period_end=payload.period_end,
        force=payload.force,
    )
    return PayrollRecordRead.model_validate(payroll)


@router.get("/api/payroll", response_model=list[PayrollRecordRead])
def payroll_records(
    employee_id: int | None = Query(default=None, ge=1),
    status_filter: PayrollStatus | None = Query(default=None, alias="status"),
    start_utc: datetime | None = Query(default=None),
    end_utc: datetime | None = Query(default=None),
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> list[PayrollRecordRead]:
    items = list_payroll_records(
        db,
        tenant_id=tenant_id,
        employee_id=employee_id,
        status=status_filter,
        start_utc=start_utc,
        end_utc=end_utc,
    )
    return [PayrollRecordRead.model_validate(item) for item in items]


@router.patch("/api/payroll/{payroll_id}/status", response_model=PayrollRecordRead)
def change_status(
    payroll_id: int,
    payload: PayrollStatusUpdateRequest,
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> PayrollRecordRead:
    payroll = update_payroll_status(
        db,
        tenant_id=tenant_id,
        payroll_id=payroll_id,
        status=payload.status,
        ts_utc=resolve_event_time(payload.ts_utc),
    )
    return PayrollRecordRead.model_validate(payroll)


@router.get("/api/payroll/summary", response_model=PayrollSummaryResponse)
def summary(
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> PayrollSummaryResponse:
    return payroll_summary(db, tenant_id=tenant_id, now=datetime.now(timezone.utc))


@router.get("/api/payroll/export")
def export_payroll(
    employee_id: int | None = Query(default=None, ge=1),
    status_filter: PayrollStatus | None = Query(default=None, alias="status"),
    start_utc: datetime | None = Query(default=None),
    end_utc: datetime | None = Query(default=None),
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> Response:
    content = build_payroll_xlsx_bytes(
        db,
        tenant_id=tenant_id,
        start_utc=start_utc,
        end_utc=end_utc,
        employee_id=employee_id,
        status=status_filter,
    )
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": 'attachment; filename="payroll.xlsx"'},
    )


@router.get("/api/service-orders", response_model=ServiceOrdersResponse)
def service_orders(
    start_utc: datetime = Query(),
    end_utc: datetime = Query(),
    site_id: int | None = Query(default=None, ge=1),
    client_id: int | None = Query(default=None, ge=1),
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> ServiceOrdersResponse:
    return calculate_service_orders(
        db,
        tenant_id=tenant_id,
        start_utc=start_utc,
        end_utc=end_utc,
        site_id=site_id,
        client_id=client_id,
    )
