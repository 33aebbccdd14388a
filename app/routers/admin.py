from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.db import get_db
from app.models import LeaveStatus
from app.schemas import (
    ClientCreate,
    ClientRead,
    EmployeeCreate,
    EmployeeRead,
    EmployeeUpdate,
    LeaveCreateRequest,
    LeaveDecisionRequest,
    LeaveRead,
    SiteCreate,
    SiteRead,
    SiteUpdate,
    TenantCreate,
    TenantRead,
)
from app.services.clock import resolve_event_time
from app.services.leaves import approve_leave, cancel_leave, create_leave, list_leaves, reject_leave
from app.services.registry import (
    create_client,
    create_employee,
    create_site,
    create_tenant,
    get_employee,
    get_site,
    list_clients,
    list_employees,
    list_sites,
    update_employee,
    update_site,
)
from app.tenancy import get_tenant_id

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.post("/tenants", response_model=TenantRead, status_code=status.HTTP_201_CREATED)
def add_tenant(payload: TenantCreate, db: Session = Depends(get_db)) -> TenantRead:
    return TenantRead.model_validate(create_tenant(db, payload))


@router.post("/clients", response_model=ClientRead, status_code=status.HTTP_201_CREATED)
def add_client(
    payload: ClientCreate,
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> ClientRead:
    return ClientRead.model_validate(create_client(db, tenant_id, payload))


@router.get("/clients", response_model=list[ClientRead])
def clients(
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> list[ClientRead]:
    return [ClientRead.model_validate(item) for item in list_clients(db, tenant_id)]


@router.post("/sites", response_model=SiteRead, status_code=status.HTTP_201_CREATED)
def add_site(
    payload: SiteCreate,
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> SiteRead:
    return SiteRead.model_validate(create_site(db, tenant_id, payload))


@router.get("/sites", response_model=list[SiteRead])
def sites(
    include_inactive: bool = Query(default=False),
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> list[SiteRead]:
    return [SiteRead.model_validate(item) for item in list_sites(db, tenant_id, include_inactive=include_inactive)]


@router.get("/sites/{site_id}", response_model=SiteRead)
def site_detail(
    site_id: int,
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> SiteRead:
    return SiteRead.model_validate(get_site(db, tenant_id, site_id))


@router.patch("/sites/{site_id}", response_model=SiteRead)
def edit_site(
    site_id: int,
    payload: SiteUpdate,
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> SiteRead:
    return SiteRead.model_validate(update_site(db, tenant_id, site_id, payload))


@router.post("/employees", response_model=EmployeeRead, status_code=status.HTTP_201_CREATED)
def add_employee(
    payload: EmployeeCreate,
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> EmployeeRead:
    return EmployeeRead.model_validate(create_employee(db, tenant_id, payload))


@router.get("/employees", response_model=list[EmployeeRead])
def employees(
    include_inactive: bool = Query(default=False),
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> list[EmployeeRead]:
    return [
        EmployeeRead.model_validate(item)
        for item in list_employees(db, tenant_id, include_inactive=include_inactive)
    ]


@router.get("/employees/{employee_id}", response_model=EmployeeRead)
def employee_detail(
    employee_id: int,
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> EmployeeRead:
    return EmployeeRead.model_validate(get_employee(db, tenant_id, employee_id))


@router.patch("/employees/{employee_id}", response_model=EmployeeRead)
def edit_employee(
    employee_id: int,
    payload: EmployeeUpdate,
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> EmployeeRead:
    return EmployeeRead.model_validate(update_employee(db, tenant_id, employee_id, payload))


@router.post("/leaves", response_model=LeaveRead, status_code=status.HTTP_201_CREATED)
def add_leave(
    payload: LeaveCreateRequest,
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> LeaveRead:
    return LeaveRead.model_validate(create_leave(db, tenant_id, payload))


@router.get("/leaves", response_model=list[LeaveRead])
def leaves(
    employee_id: int | None = Query(default=None, ge=1),
    status_filter: LeaveStatus | None = Query(default=None, alias="status"),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> list[LeaveRead]:
    items = list_leaves(
        db,
        tenant_id=tenant_id,
        employee_id=employee_id,
        status=status_filter,
        overlap_start=start_date,
        overlap_end=end_date,
    )
    return [LeaveRead.model_validate(item) for item in items]


@router.post("/leaves/{leave_id}/approve", response_model=LeaveRead)
def approve_leave_request(
    leave_id: int,
    payload: LeaveDecisionRequest,
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> LeaveRead:
    leave = approve_leave(
        db,
        tenant_id=tenant_id,
        leave_id=leave_id,
        approver_id=payload.approver_id,
        ts_utc=resolve_event_time(payload.ts_utc),
    )
    return LeaveRead.model_validate(leave)


@router.post("/leaves/{leave_id}/reject", response_model=LeaveRead)
def reject_leave_request(
    leave_id: int,
    payload: LeaveDecisionRequest,
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> LeaveRead:
    leave = reject_leave(
        db,
        tenant_id=tenant_id,
        leave_id=leave_id,
        approver_id=payload.approver_id,
        ts_utc=resolve_event_time(payload.ts_utc),
    )
    return LeaveRead.model_validate(leave)


@router.post("/leaves/{leave_id}/cancel", response_model=LeaveRead)
def cancel_leave_request(
    leave_id: int,
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> LeaveRead:
    return LeaveRead.model_validate(cancel_leave(db, tenant_id=tenant_id, leave_id=leave_id))
