from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.audit import log_audit
from app.errors import (
    ClientSiteMismatch,
    DuplicateOpenRecord,
    DurationOutOfRange,
    EmployeeInactive,
    InvalidBreakMinutes,
    InvalidStatusTransition,
    InvalidTimeOrder,
    NotOpen,
    NotPending,
    OpenContestationExists,
    ReasonRequired,
    RecordNotFound,
    SiteInactive,
)
from app.models import (
    AttendanceRecord,
    AttendanceStatus,
    AuditActorType,
    Contestation,
    ContestationStatus,
    Site,
)
from app.services.clock import to_utc
from app.services.consistency import guarded_write
from app.services.fraud import DEFAULT_RULES, FraudContext, FraudRule, apply_verdict, evaluate_record
from app.services.geofence import Coordinate, validate_geofence
from app.services.locks import employee_locks
from app.services.payroll_calc import calculate_worked_hours
from app.services.registry import get_client, get_employee, get_site
from app.settings import get_settings

logger = logging.getLogger("app.attendance")

RECORD_TRANSITIONS: dict[AttendanceStatus, frozenset[AttendanceStatus]] = {
    AttendanceStatus.OPEN: frozenset({AttendanceStatus.PENDING}),
    AttendanceStatus.PENDING: frozenset(
        {AttendanceStatus.APPROVED, AttendanceStatus.REJECTED, AttendanceStatus.CONTESTED}
    ),
    AttendanceStatus.APPROVED: frozenset({AttendanceStatus.CONTESTED}),
    AttendanceStatus.CONTESTED: frozenset({AttendanceStatus.APPROVED, AttendanceStatus.REJECTED}),
    AttendanceStatus.REJECTED: frozenset(),
}

REVIEWABLE_STATUSES = frozenset({AttendanceStatus.PENDING, AttendanceStatus.CONTESTED})
# Largest value the Numeric(6, 2) hour columns can hold.
MAX_RECORD_HOURS = Decimal("9999.99")


def transition_record(record: AttendanceRecord, target: AttendanceStatus) -> None:
    if target not in RECORD_TRANSITIONS[record.status]:
        raise InvalidStatusTransition(
            f"Attendance record cannot move from {record.status.value} to {target.value}."
        )
    record.status = target


def get_record(db: Session, tenant_id: int, record_id: int) -> AttendanceRecord:
    record = db.get(AttendanceRecord, record_id)
    if record is None or record.tenant_id != tenant_id:
        raise RecordNotFound()
    return record


def lock_record(db: Session, record: AttendanceRecord) -> AttendanceRecord:
    # Re-read inside the employee lock so the checks below see the latest committed state.
    db.refresh(record, with_for_update=True)
    return record


def resolve_open_record(db: Session, employee_id: int) -> AttendanceRecord | None:
    return db.scalar(
        select(AttendanceRecord).where(
            AttendanceRecord.employee_id == employee_id,
            AttendanceRecord.status == AttendanceStatus.OPEN,
        )
    )


def has_pending_contestation(db: Session, record_id: int) -> bool:
    contestation_id = db.scalar(
        select(Contestation.id).where(
            Contestation.attendance_record_id == record_id,
            Contestation.status == ContestationStatus.PENDING,
        )
    )
    return contestation_id is not None


def _site_center(site: Site) -> Coordinate:
    return Coordinate(lat=site.latitude, lon=site.longitude)


def _recent_history(db: Session, record: AttendanceRecord, limit: int) -> list[AttendanceRecord]:
    return list(
        db.scalars(
            select(AttendanceRecord)
            .where(
                AttendanceRecord.employee_id == record.employee_id,
                AttendanceRecord.id != record.id,
            )
            .order_by(AttendanceRecord.check_in_time.desc(), AttendanceRecord.id.desc())
            .limit(max(0, limit))
        ).all()
    )


def _apply_derived_hours(record: AttendanceRecord, site: Site) -> None:
    if record.check_out_time is None:
        record.total_hours = None
        record.overtime_hours = None
        return
    worked = calculate_worked_hours(
        check_in=record.check_in_time,
        check_out=record.check_out_time,
        break_minutes=record.break_minutes,
        standard_daily_hours=Decimal(site.standard_daily_hours),
    )
    if worked.total_hours > MAX_RECORD_HOURS:
        raise DurationOutOfRange()
    record.total_hours = worked.total_hours
    record.overtime_hours = worked.overtime_hours


def _score_record(
    db: Session,
    record: AttendanceRecord,
    site: Site,
    rules: Sequence[FraudRule],
) -> None:
    context = FraudContext(
        max_plausible_daily_hours=Decimal(site.max_plausible_daily_hours),
        history=_recent_history(db, record, get_settings().fraud_history_size),
    )
    verdict = evaluate_record(record, context, rules)
    apply_verdict(record, verdict)
    if verdict.is_suspicious:
        logger.warning(
            "attendance_flagged_suspicious",
            extra={
                "record_id": record.id,
                "employee_id": record.employee_id,
                "reason": verdict.reason,
            },
        )


def check_in(
    db: Session,
    *,
    tenant_id: int,
    employee_id: int,
    site_id: int,
    ts_utc: datetime,
    coordinate: Coordinate | None,
    device_id: str | None,
    is_offline: bool = False,
) -> AttendanceRecord:
    employee = get_employee(db, tenant_id, employee_id)
    if not employee.is_active:
        raise EmployeeInactive()
    site = get_site(db, tenant_id, site_id)
    if not site.is_active:
        raise SiteInactive()

    check_in_time = to_utc(ts_utc)
    geofence = validate_geofence(_site_center(site), site.geofence_radius_m, coordinate)

    with employee_locks.hold(employee.id):
        if resolve_open_record(db, employee.id) is not None:
            raise DuplicateOpenRecord()

        record = AttendanceRecord(
            tenant_id=tenant_id,
            employee_id=employee.id,
            site_id=site.id,
            check_in_time=check_in_time,
            check_in_lat=coordinate.lat if coordinate else None,
            check_in_lon=coordinate.lon if coordinate else None,
            check_in_within_geofence=geofence.within_geofence,
            check_in_distance_m=geofence.distance_m,
            check_in_device_id=device_id,
            check_in_offline=is_offline,
            is_offline=is_offline,
            break_minutes=0,
            status=AttendanceStatus.OPEN,
            is_suspicious=False,
        )
        with guarded_write(db, invariant="one_open_record_per_employee", employee_id=employee.id):
            db.add(record)
            db.flush()
            log_audit(
                db,
                tenant_id=tenant_id,
                actor_type=AuditActorType.EMPLOYEE,
                actor_id=employee.id,
                action="ATTENDANCE_CHECK_IN",
                entity_type="attendance_record",
                entity_id=record.id,
                details={
                    "site_id": site.id,
                    "within_geofence": geofence.within_geofence,
                    "distance_m": round(geofence.distance_m, 2) if geofence.distance_m is not None else None,
                    "is_offline": is_offline,
                },
                ts_utc=check_in_time,
            )

    logger.info(
        "attendance_checkin",
        extra={
            "record_id": record.id,
            "employee_id": employee.id,
            "site_id": site.id,
            "within_geofence": geofence.within_geofence,
            "is_offline": is_offline,
        },
    )
    return record


def check_out(
    db: Session,
    *,
    tenant_id: int,
    record_id: int,
    ts_utc: datetime,
    coordinate: Coordinate | None,
    device_id: str | None,
    break_minutes: int = 0,
    is_offline: bool = False,
    rules: Sequence[FraudRule] = DEFAULT_RULES,
) -> AttendanceRecord:
    if break_minutes < 0:
        raise InvalidBreakMinutes()
    record = get_record(db, tenant_id, record_id)
    check_out_time = to_utc(ts_utc)

    with employee_locks.hold(record.employee_id):
        lock_record(db, record)
        if record.status != AttendanceStatus.OPEN:
            raise NotOpen()
        if check_out_time <= record.check_in_time:
            raise InvalidTimeOrder()
        if not record.employee.is_active:
            raise EmployeeInactive()

        site = record.site
        geofence = validate_geofence(_site_center(site), site.geofence_radius_m, coordinate)

        with guarded_write(db, invariant="attendance_checkout", record_id=record.id):
            record.check_out_time = check_out_time
            record.check_out_lat = coordinate.lat if coordinate else None
            record.check_out_lon = coordinate.lon if coordinate else None
            record.check_out_within_geofence = geofence.within_geofence
            record.check_out_distance_m = geofence.distance_m
            record.check_out_device_id = device_id
            record.check_out_offline = is_offline
            record.is_offline = record.check_in_offline or is_offline
            record.break_minutes = break_minutes
            _apply_derived_hours(record, site)
            _score_record(db, record, site, rules)
            transition_record(record, AttendanceStatus.PENDING)
            log_audit(
                db,
                tenant_id=tenant_id,
                actor_type=AuditActorType.EMPLOYEE,
                actor_id=record.employee_id,
                action="ATTENDANCE_CHECK_OUT",
                entity_type="attendance_record",
                entity_id=record.id,
                details={
                    "total_hours": str(record.total_hours),
                    "overtime_hours": str(record.overtime_hours),
                    "within_geofence": geofence.within_geofence,
                    "is_suspicious": record.is_suspicious,
                    "suspicious_reason": record.suspicious_reason,
                },
                ts_utc=check_out_time,
            )

    logger.info(
        "attendance_checkout",
        extra={
            "record_id": record.id,
            "employee_id": record.employee_id,
            "total_hours": str(record.total_hours),
            "overtime_hours": str(record.overtime_hours),
            "is_suspicious": record.is_suspicious,
        },
    )
    return record


def _ensure_reviewable(db: Session, record: AttendanceRecord) -> None:
    if has_pending_contestation(db, record.id):
        raise OpenContestationExists()
    if record.status not in REVIEWABLE_STATUSES:
        raise NotPending("Attendance record is not awaiting review.")


def approve_record(
    db: Session,
    *,
    tenant_id: int,
    record_id: int,
    approver_id: int,
    ts_utc: datetime,
) -> AttendanceRecord:
    record = get_record(db, tenant_id, record_id)
    with employee_locks.hold(record.employee_id):
        lock_record(db, record)
        _ensure_reviewable(db, record)
        with guarded_write(db, invariant="attendance_approve", record_id=record.id):
            transition_record(record, AttendanceStatus.APPROVED)
            record.approved_by_id = approver_id
            record.approved_at = to_utc(ts_utc)
            log_audit(
                db,
                tenant_id=tenant_id,
                actor_type=AuditActorType.MANAGER,
                actor_id=approver_id,
                action="ATTENDANCE_APPROVED",
                entity_type="attendance_record",
                entity_id=record.id,
                ts_utc=record.approved_at,
            )
    return record


def reject_record(
    db: Session,
    *,
    tenant_id: int,
    record_id: int,
    approver_id: int,
    ts_utc: datetime,
    reason: str,
) -> AttendanceRecord:
    normalized_reason = (reason or "").strip()
    if not normalized_reason:
        raise ReasonRequired("A rejection reason is required.")

    record = get_record(db, tenant_id, record_id)
    with employee_locks.hold(record.employee_id):
        lock_record(db, record)
        _ensure_reviewable(db, record)
        with guarded_write(db, invariant="attendance_reject", record_id=record.id):
            transition_record(record, AttendanceStatus.REJECTED)
            record.approved_by_id = approver_id
            record.approved_at = to_utc(ts_utc)
            record.rejection_reason = normalized_reason
            log_audit(
                db,
                tenant_id=tenant_id,
                actor_type=AuditActorType.MANAGER,
                actor_id=approver_id,
                action="ATTENDANCE_REJECTED",
                entity_type="attendance_record",
                entity_id=record.id,
                details={"reason": normalized_reason},
                ts_utc=record.approved_at,
            )
    return record


def adjust_break(
    db: Session,
    *,
    tenant_id: int,
    record_id: int,
    break_minutes: int,
    actor_id: int,
    rules: Sequence[FraudRule] = DEFAULT_RULES,
) -> AttendanceRecord:
    if break_minutes < 0:
        raise InvalidBreakMinutes()
    record = get_record(db, tenant_id, record_id)
    with employee_locks.hold(record.employee_id):
        lock_record(db, record)
        if record.status != AttendanceStatus.PENDING:
            raise NotPending("Break minutes can only change while the record is pending.")
        previous = record.break_minutes
        with guarded_write(db, invariant="attendance_break_adjust", record_id=record.id):
            record.break_minutes = break_minutes
            _apply_derived_hours(record, record.site)
            _score_record(db, record, record.site, rules)
            log_audit(
                db,
                tenant_id=tenant_id,
                actor_type=AuditActorType.MANAGER,
                actor_id=actor_id,
                action="ATTENDANCE_BREAK_ADJUSTED",
                entity_type="attendance_record",
                entity_id=record.id,
                details={
                    "previous_break_minutes": previous,
                    "break_minutes": break_minutes,
                    "total_hours": str(record.total_hours),
                },
            )
    return record


def client_validate_record(
    db: Session,
    *,
    tenant_id: int,
    record_id: int,
    client_id: int,
    validated: bool,
    ts_utc: datetime,
) -> AttendanceRecord:
    client = get_client(db, tenant_id, client_id)
    record = get_record(db, tenant_id, record_id)
    if record.site.client_id != client.id:
        raise ClientSiteMismatch()

    with employee_locks.hold(record.employee_id):
        lock_record(db, record)
        if record.status == AttendanceStatus.OPEN:
            raise NotPending("Open records cannot be validated by the client.")
        with guarded_write(db, invariant="attendance_client_validation", record_id=record.id):
            record.client_validated = validated
            record.client_validated_at = to_utc(ts_utc)
            log_audit(
                db,
                tenant_id=tenant_id,
                actor_type=AuditActorType.CLIENT,
                actor_id=client.id,
                action="ATTENDANCE_CLIENT_VALIDATED",
                entity_type="attendance_record",
                entity_id=record.id,
                details={"validated": validated},
                ts_utc=record.client_validated_at,
            )
    return record


def list_records(
    db: Session,
    *,
    tenant_id: int,
    employee_id: int | None = None,
    site_id: int | None = None,
    status: AttendanceStatus | None = None,
    start_utc: datetime | None = None,
    end_utc: datetime | None = None,
    limit: int = 200,
) -> list[AttendanceRecord]:
    stmt = select(AttendanceRecord).where(AttendanceRecord.tenant_id == tenant_id)
    if employee_id is not None:
        stmt = stmt.where(AttendanceRecord.employee_id == employee_id)
    if site_id is not None:
        stmt = stmt.where(AttendanceRecord.site_id == site_id)
    if status is not None:
        stmt = stmt.where(AttendanceRecord.status == status)
    if start_utc is not None:
        stmt = stmt.where(AttendanceRecord.check_in_time >= to_utc(start_utc))
    if end_utc is not None:
        stmt = stmt.where(AttendanceRecord.check_in_time < to_utc(end_utc))
    stmt = stmt.order_by(AttendanceRecord.check_in_time.desc(), AttendanceRecord.id.desc()).limit(limit)
    return list(db.scalars(stmt).all())


def get_active_record(db: Session, *, tenant_id: int, employee_id: int) -> AttendanceRecord | None:
    employee = get_employee(db, tenant_id, employee_id)
    return resolve_open_record(db, employee.id)
