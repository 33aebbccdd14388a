from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from app.db import get_db
from app.models import ContestationStatus
from app.schemas import ContestationCreateRequest, ContestationRead, ContestationResolveRequest
from app.services.clock import resolve_event_time
from app.services.contestations import list_contestations, open_contestation, resolve_contestation
from app.tenancy import get_tenant_id

router = APIRouter(prefix="/api/contestations", tags=["contestations"])


@router.post("", response_model=ContestationRead, status_code=status.HTTP_201_CREATED)
def create_contestation(
    payload: ContestationCreateRequest,
    request: Request,
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> ContestationRead:
    request.state.record_id = payload.attendance_record_id
    contestation = open_contestation(
        db,
        tenant_id=tenant_id,
        record_id=payload.attendance_record_id,
        client_id=payload.client_id,
        reason=payload.reason,
        severity=payload.severity,
        ts_utc=resolve_event_time(payload.ts_utc),
    )
    return ContestationRead.model_validate(contestation)


@router.post("/{contestation_id}/resolve", response_model=ContestationRead)
def resolve(
    contestation_id: int,
    payload: ContestationResolveRequest,
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> ContestationRead:
    contestation = resolve_contestation(
        db,
        tenant_id=tenant_id,
        contestation_id=contestation_id,
        resolver_id=payload.resolver_id,
        ts_utc=resolve_event_time(payload.ts_utc),
        outcome=payload.outcome,
        resolution=payload.resolution,
    )
    return ContestationRead.model_validate(contestation)


@router.get("", response_model=list[ContestationRead])
def contestations(
    record_id: int | None = Query(default=None, ge=1),
    status_filter: ContestationStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=200, ge=1, le=1000),
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> list[ContestationRead]:
    items = list_contestations(
        db,
        tenant_id=tenant_id,
        record_id=record_id,
        status=status_filter,
        limit=limit,
    )
    return [ContestationRead.model_validate(item) for item in items]
