from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.audit import log_audit
from app.errors import (
    ClientSiteMismatch,
    ContestationNotFound,
    DuplicateOpenContestation,
    NotPending,
    ReasonRequired,
    RecordNotApproved,
)
from app.models import (
    AttendanceStatus,
    AuditActorType,
    Contestation,
    ContestationOutcome,
    ContestationSeverity,
    ContestationStatus,
)
from app.services.attendance import get_record, has_pending_contestation, lock_record, transition_record
from app.services.clock import to_utc
from app.services.consistency import guarded_write
from app.services.locks import employee_locks
from app.services.registry import get_client

logger = logging.getLogger("app.contestations")

CONTESTABLE_STATUSES = frozenset({AttendanceStatus.PENDING, AttendanceStatus.APPROVED})

OUTCOME_TARGETS: dict[ContestationOutcome, tuple[ContestationStatus, AttendanceStatus]] = {
    ContestationOutcome.UPHOLD: (ContestationStatus.RESOLVED, AttendanceStatus.REJECTED),
    ContestationOutcome.REJECT: (ContestationStatus.REJECTED, AttendanceStatus.APPROVED),
}


def get_contestation(db: Session, tenant_id: int, contestation_id: int) -> Contestation:
    contestation = db.get(Contestation, contestation_id)
    if contestation is None or contestation.tenant_id != tenant_id:
        raise ContestationNotFound()
    return contestation


def open_contestation(
    db: Session,
    *,
    tenant_id: int,
    record_id: int,
    client_id: int,
    reason: str,
    severity: ContestationSeverity = ContestationSeverity.MINOR,
    ts_utc: datetime | None = None,
) -> Contestation:
    normalized_reason = (reason or "").strip()
    if not normalized_reason:
        raise ReasonRequired("A contestation reason is required.")
    opened_at = to_utc(ts_utc) if ts_utc is not None else None

    client = get_client(db, tenant_id, client_id)
    record = get_record(db, tenant_id, record_id)
    if record.site.client_id != client.id:
        raise ClientSiteMismatch()

    with employee_locks.hold(record.employee_id):
        lock_record(db, record)
        if has_pending_contestation(db, record.id):
            raise DuplicateOpenContestation()
        if record.status not in CONTESTABLE_STATUSES:
            raise RecordNotApproved()

        contestation = Contestation(
            tenant_id=tenant_id,
            attendance_record_id=record.id,
            client_id=client.id,
            reason=normalized_reason,
            severity=severity,
            status=ContestationStatus.PENDING,
        )
        if opened_at is not None:
            contestation.created_at = opened_at
        with guarded_write(db, invariant="one_pending_contestation_per_record", record_id=record.id):
            db.add(contestation)
            transition_record(record, AttendanceStatus.CONTESTED)
            db.flush()
            log_audit(
                db,
                tenant_id=tenant_id,
                actor_type=AuditActorType.CLIENT,
                actor_id=client.id,
                action="CONTESTATION_OPENED",
                entity_type="contestation",
                entity_id=contestation.id,
                details={
                    "attendance_record_id": record.id,
                    "severity": severity.value,
                },
                ts_utc=opened_at,
            )

    logger.info(
        "contestation_opened",
        extra={
            "contestation_id": contestation.id,
            "record_id": record.id,
            "client_id": client.id,
            "severity": severity.value,
        },
    )
    return contestation


def resolve_contestation(
    db: Session,
    *,
    tenant_id: int,
    contestation_id: int,
    resolver_id: int,
    ts_utc: datetime,
    outcome: ContestationOutcome,
    resolution: str,
) -> Contestation:
    normalized_resolution = (resolution or "").strip()
    if not normalized_resolution:
        raise ReasonRequired("A resolution text is required.")

    contestation = get_contestation(db, tenant_id, contestation_id)
    record = contestation.attendance_record
    resolved_at = to_utc(ts_utc)

    with employee_locks.hold(record.employee_id):
        db.refresh(contestation, with_for_update=True)
        lock_record(db, record)
        if contestation.status != ContestationStatus.PENDING:
            raise NotPending("Contestation is not pending.")

        contestation_status, record_status = OUTCOME_TARGETS[outcome]
        with guarded_write(db, invariant="contestation_resolution", contestation_id=contestation.id):
            contestation.status = contestation_status
            contestation.resolution = normalized_resolution
            contestation.resolved_by_id = resolver_id
            contestation.resolved_at = resolved_at
            transition_record(record, record_status)
            record.approved_by_id = resolver_id
            record.approved_at = resolved_at
            if record_status == AttendanceStatus.REJECTED:
                record.rejection_reason = normalized_resolution
            log_audit(
                db,
                tenant_id=tenant_id,
                actor_type=AuditActorType.MANAGER,
                actor_id=resolver_id,
                action="CONTESTATION_RESOLVED",
                entity_type="contestation",
                entity_id=contestation.id,
                details={
                    "attendance_record_id": record.id,
                    "outcome": outcome.value,
                    "record_status": record_status.value,
                },
                ts_utc=resolved_at,
            )

    logger.info(
        "contestation_resolved",
        extra={
            "contestation_id": contestation.id,
            "record_id": record.id,
            "outcome": outcome.value,
        },
    )
    return contestation


def list_contestations(
    db: Session,
    *,
    tenant_id: int,
    record_id: int | None = None,
    status: ContestationStatus | None = None,
    limit: int = 200,
) -> list[Contestation]:
    stmt = select(Contestation).where(Contestation.tenant_id == tenant_id)
    if record_id is not None:
        stmt = stmt.where(Contestation.attendance_record_id == record_id)
    if status is not None:
        stmt = stmt.where(Contestation.status == status)
    stmt = stmt.order_by(Contestation.id.desc()).limit(limit)
    return list(db.scalars(stmt).all())
