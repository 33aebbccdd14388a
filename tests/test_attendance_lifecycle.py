from __future__ import annotations

import threading
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy import func, select

from app.errors import (
    ConsistencyViolation,
    DuplicateOpenRecord,
    DurationOutOfRange,
    EmployeeInactive,
    InvalidBreakMinutes,
    InvalidStatusTransition,
    InvalidTimeOrder,
    NotOpen,
    NotPending,
    ReasonRequired,
    RecordNotFound,
    SiteInactive,
)
from app.models import AttendanceRecord, AttendanceStatus, AuditLog
from app.services.attendance import (
    adjust_break,
    approve_record,
    check_in,
    check_out,
    get_active_record,
    list_records,
    reject_record,
    transition_record,
)
from app.services.geofence import Coordinate
from app.services.locks import employee_locks
from tests.db_support import SITE_LAT, SITE_LON, SqliteTestCase, utc

SITE_CENTER = Coordinate(lat=SITE_LAT, lon=SITE_LON)
# Roughly 500 m north of the site center.
FAR_AWAY = Coordinate(lat=SITE_LAT + 0.0045, lon=SITE_LON)


class AttendanceLifecycleTests(SqliteTestCase):
    def _check_in(self, world, *, ts=None, coordinate=SITE_CENTER, device_id="phone-1", is_offline=False):
        return check_in(
            self.db,
            tenant_id=world.tenant.id,
            employee_id=world.employee.id,
            site_id=world.site.id,
            ts_utc=ts or utc(2026, 1, 12, 8),
            coordinate=coordinate,
            device_id=device_id,
            is_offline=is_offline,
        )

    def _check_out(self, world, record, *, ts=None, coordinate=SITE_CENTER, device_id="phone-1", break_minutes=0):
        return check_out(
            self.db,
            tenant_id=world.tenant.id,
            record_id=record.id,
            ts_utc=ts or utc(2026, 1, 12, 16),
            coordinate=coordinate,
            device_id=device_id,
            break_minutes=break_minutes,
        )

    def test_full_shift_at_site_center_is_clean(self) -> None:
        world = self.seed_world()
        record = self._check_in(world)
        self.assertEqual(record.status, AttendanceStatus.OPEN)
        self.assertTrue(record.check_in_within_geofence)

        record = self._check_out(world, record)

        self.assertEqual(record.status, AttendanceStatus.PENDING)
        self.assertEqual(record.total_hours, Decimal("8.00"))
        self.assertEqual(record.overtime_hours, Decimal("0.00"))
        self.assertTrue(record.check_in_within_geofence)
        self.assertTrue(record.check_out_within_geofence)
        self.assertFalse(record.is_suspicious)
        self.assertIsNone(record.suspicious_reason)

    def test_checkout_far_from_site_is_flagged_as_geofence_violation(self) -> None:
        world = self.seed_world()
        record = self._check_in(world)

        record = self._check_out(world, record, coordinate=FAR_AWAY)

        self.assertFalse(record.check_out_within_geofence)
        self.assertGreater(record.check_out_distance_m, 400)
        self.assertTrue(record.is_suspicious)
        self.assertEqual(record.suspicious_reason, "geofence-violation")
        self.assertEqual(record.status, AttendanceStatus.PENDING)

    def test_overtime_and_break_are_derived(self) -> None:
        world = self.seed_world()
        record = self._check_in(world, ts=utc(2026, 1, 12, 7))

        record = self._check_out(world, record, ts=utc(2026, 1, 12, 18, 30), break_minutes=30)

        self.assertEqual(record.total_hours, Decimal("11.00"))
        self.assertEqual(record.overtime_hours, Decimal("3.00"))
        self.assertLessEqual(record.overtime_hours, record.total_hours)

    def test_break_longer_than_shift_clamps_hours_to_zero(self) -> None:
        world = self.seed_world()
        record = self._check_in(world)

        record = self._check_out(world, record, ts=utc(2026, 1, 12, 8, 30), break_minutes=60)

        self.assertEqual(record.total_hours, Decimal("0.00"))
        self.assertEqual(record.overtime_hours, Decimal("0.00"))

    def test_excessive_duration_wins_over_geofence(self) -> None:
        world = self.seed_world()
        record = self._check_in(world, ts=utc(2026, 1, 12, 0))

        record = self._check_out(world, record, ts=utc(2026, 1, 12, 20), coordinate=FAR_AWAY)

        self.assertEqual(record.suspicious_reason, "excessive-duration")

    def test_device_mismatch_is_flagged(self) -> None:
        world = self.seed_world()
        record = self._check_in(world, device_id="phone-1")

        record = self._check_out(world, record, device_id="phone-2")

        self.assertTrue(record.is_suspicious)
        self.assertEqual(record.suspicious_reason, "device-mismatch")

    def test_missing_coordinate_counts_as_outside(self) -> None:
        world = self.seed_world()
        record = self._check_in(world, coordinate=None)

        self.assertFalse(record.check_in_within_geofence)
        self.assertIsNone(record.check_in_distance_m)

    def test_second_check_in_while_open_is_rejected(self) -> None:
        world = self.seed_world()
        self._check_in(world)

        with self.assertRaises(DuplicateOpenRecord):
            self._check_in(world, ts=utc(2026, 1, 12, 9))

    def test_check_in_after_check_out_is_allowed(self) -> None:
        world = self.seed_world()
        first = self._check_in(world)
        self._check_out(world, first)

        second = self._check_in(world, ts=utc(2026, 1, 13, 8))

        self.assertNotEqual(first.id, second.id)
        self.assertEqual(get_active_record(self.db, tenant_id=world.tenant.id, employee_id=world.employee.id).id, second.id)

    def test_check_out_twice_is_rejected(self) -> None:
        world = self.seed_world()
        record = self._check_in(world)
        self._check_out(world, record)

        with self.assertRaises(NotOpen):
            self._check_out(world, record, ts=utc(2026, 1, 12, 17))

    def test_check_out_not_after_check_in_is_rejected(self) -> None:
        world = self.seed_world()
        record = self._check_in(world)

        with self.assertRaises(InvalidTimeOrder):
            self._check_out(world, record, ts=utc(2026, 1, 12, 8))

        self.db.rollback()
        self.assertEqual(self.db.get(AttendanceRecord, record.id).status, AttendanceStatus.OPEN)

    def test_check_out_beyond_storable_hours_is_rejected(self) -> None:
        world = self.seed_world()
        record = self._check_in(world)

        with self.assertRaises(DurationOutOfRange):
            self._check_out(world, record, ts=utc(2027, 6, 1, 8))

        stored = self.db.get(AttendanceRecord, record.id)
        self.assertEqual(stored.status, AttendanceStatus.OPEN)
        self.assertIsNone(stored.check_out_time)
        self.assertIsNone(stored.total_hours)
        self.assertEqual(employee_locks.active_keys(), 0)

    def test_negative_break_is_rejected(self) -> None:
        world = self.seed_world()
        record = self._check_in(world)

        with self.assertRaises(InvalidBreakMinutes):
            self._check_out(world, record, break_minutes=-5)

    def test_inactive_employee_cannot_check_in(self) -> None:
        world = self.seed_world()
        world.employee.is_active = False
        self.db.commit()

        with self.assertRaises(EmployeeInactive):
            self._check_in(world)

    def test_inactive_site_cannot_receive_check_in(self) -> None:
        world = self.seed_world()
        world.site.is_active = False
        self.db.commit()

        with self.assertRaises(SiteInactive):
            self._check_in(world)

    def test_other_tenant_cannot_see_record(self) -> None:
        world = self.seed_world()
        record = self._check_in(world)

        with self.assertRaises(RecordNotFound):
            check_out(
                self.db,
                tenant_id=world.tenant.id + 100,
                record_id=record.id,
                ts_utc=utc(2026, 1, 12, 16),
                coordinate=SITE_CENTER,
                device_id="phone-1",
            )

    def test_approve_and_reject_require_pending_record(self) -> None:
        world = self.seed_world()
        record = self._check_in(world)

        with self.assertRaises(NotPending):
            approve_record(
                self.db,
                tenant_id=world.tenant.id,
                record_id=record.id,
                approver_id=900,
                ts_utc=utc(2026, 1, 12, 10),
            )

        self._check_out(world, record)
        approved = approve_record(
            self.db,
            tenant_id=world.tenant.id,
            record_id=record.id,
            approver_id=900,
            ts_utc=utc(2026, 1, 12, 18),
        )
        self.assertEqual(approved.status, AttendanceStatus.APPROVED)
        self.assertEqual(approved.approved_by_id, 900)
        self.assertEqual(approved.approved_at, utc(2026, 1, 12, 18))

        with self.assertRaises(NotPending):
            reject_record(
                self.db,
                tenant_id=world.tenant.id,
                record_id=record.id,
                approver_id=900,
                ts_utc=utc(2026, 1, 12, 19),
                reason="late",
            )

    def test_reject_requires_reason(self) -> None:
        world = self.seed_world()
        record = self._check_out(world, self._check_in(world))

        with self.assertRaises(ReasonRequired):
            reject_record(
                self.db,
                tenant_id=world.tenant.id,
                record_id=record.id,
                approver_id=900,
                ts_utc=utc(2026, 1, 12, 18),
                reason="   ",
            )

        rejected = reject_record(
            self.db,
            tenant_id=world.tenant.id,
            record_id=record.id,
            approver_id=900,
            ts_utc=utc(2026, 1, 12, 18),
            reason="Not on site",
        )
        self.assertEqual(rejected.status, AttendanceStatus.REJECTED)
        self.assertEqual(rejected.rejection_reason, "Not on site")

    def test_adjust_break_recomputes_hours(self) -> None:
        world = self.seed_world()
        record = self._check_out(world, self._check_in(world, ts=utc(2026, 1, 12, 7)), ts=utc(2026, 1, 12, 17))
        self.assertEqual(record.overtime_hours, Decimal("2.00"))

        record = adjust_break(
            self.db,
            tenant_id=world.tenant.id,
            record_id=record.id,
            break_minutes=120,
            actor_id=900,
        )

        self.assertEqual(record.total_hours, Decimal("8.00"))
        self.assertEqual(record.overtime_hours, Decimal("0.00"))

    def test_transitions_are_audited(self) -> None:
        world = self.seed_world()
        record = self._check_out(world, self._check_in(world))
        approve_record(
            self.db,
            tenant_id=world.tenant.id,
            record_id=record.id,
            approver_id=900,
            ts_utc=utc(2026, 1, 12, 18),
        )

        actions = list(
            self.db.scalars(
                select(AuditLog.action).where(AuditLog.entity_id == str(record.id)).order_by(AuditLog.id)
            ).all()
        )
        self.assertEqual(actions, ["ATTENDANCE_CHECK_IN", "ATTENDANCE_CHECK_OUT", "ATTENDANCE_APPROVED"])

    def test_transition_table_refuses_unknown_moves(self) -> None:
        record = AttendanceRecord(status=AttendanceStatus.REJECTED)

        with self.assertRaises(InvalidStatusTransition):
            transition_record(record, AttendanceStatus.APPROVED)

    def test_list_records_filters_by_status(self) -> None:
        world = self.seed_world()
        closed = self._check_out(world, self._check_in(world))
        self._check_in(world, ts=utc(2026, 1, 13, 8))

        pending = list_records(self.db, tenant_id=world.tenant.id, status=AttendanceStatus.PENDING)

        self.assertEqual([item.id for item in pending], [closed.id])

    def test_open_record_index_surfaces_consistency_violation(self) -> None:
        world = self.seed_world()
        self._check_in(world)

        # A writer that skipped the open-record check still hits the partial unique index.
        with self.assertLogs("app.consistency", level="ERROR") as captured:
            with patch("app.services.attendance.resolve_open_record", return_value=None):
                with self.assertRaises(ConsistencyViolation):
                    self._check_in(world, ts=utc(2026, 1, 12, 9))

        self.assertTrue(any("attendance_consistency_violation" in line for line in captured.output))
        open_count = self.db.scalar(
            select(func.count()).select_from(AttendanceRecord).where(AttendanceRecord.status == AttendanceStatus.OPEN)
        )
        self.assertEqual(open_count, 1)


class ConcurrentCheckInTests(SqliteTestCase):
    def test_concurrent_check_ins_leave_one_open_record(self) -> None:
        world = self.seed_world()
        tenant_id = world.tenant.id
        employee_id = world.employee.id
        site_id = world.site.id
        start = utc(2026, 1, 12, 8)

        barrier = threading.Barrier(8)
        outcomes: list[str] = []
        outcomes_lock = threading.Lock()

        def attempt(offset: int) -> None:
            session = self.session_factory()
            try:
                barrier.wait()
                check_in(
                    session,
                    tenant_id=tenant_id,
                    employee_id=employee_id,
                    site_id=site_id,
                    ts_utc=start + timedelta(seconds=offset),
                    coordinate=SITE_CENTER,
                    device_id="phone-1",
                )
                result = "ok"
            except DuplicateOpenRecord:
                result = "duplicate"
            finally:
                session.close()
            with outcomes_lock:
                outcomes.append(result)

        threads = [threading.Thread(target=attempt, args=(index,)) for index in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        self.assertEqual(outcomes.count("ok"), 1)
        self.assertEqual(outcomes.count("duplicate"), 7)
        open_count = self.db.scalar(
            select(func.count())
            .select_from(AttendanceRecord)
            .where(AttendanceRecord.employee_id == employee_id, AttendanceRecord.status == AttendanceStatus.OPEN)
        )
        self.assertEqual(open_count, 1)
        self.assertEqual(employee_locks.active_keys(), 0)
