from __future__ import annotations

import threading

from sqlalchemy import func, select

from app.errors import (
    ClientSiteMismatch,
    DuplicateOpenContestation,
    NotPending,
    OpenContestationExists,
    RecordNotApproved,
)
from app.models import (
    AttendanceRecord,
    AttendanceStatus,
    Client,
    Contestation,
    ContestationOutcome,
    ContestationSeverity,
    ContestationStatus,
)
from app.services.attendance import approve_record, reject_record
from app.services.contestations import list_contestations, open_contestation, resolve_contestation
from app.services.locks import employee_locks
from tests.db_support import SqliteTestCase, utc


class ContestationServiceTests(SqliteTestCase):
    def _approved_record(self, world):
        return self.add_record(
            world,
            check_in=utc(2026, 1, 12, 8),
            check_out=utc(2026, 1, 12, 16),
            total_hours="8.00",
        )

    def _open(self, world, record, *, client_id=None):
        return open_contestation(
            self.db,
            tenant_id=world.tenant.id,
            record_id=record.id,
            client_id=client_id or world.client.id,
            reason="Worker left at 14:00",
            severity=ContestationSeverity.SIGNIFICANT,
        )

    def _resolve(self, world, contestation, outcome):
        return resolve_contestation(
            self.db,
            tenant_id=world.tenant.id,
            contestation_id=contestation.id,
            resolver_id=900,
            ts_utc=utc(2026, 1, 14, 9),
            outcome=outcome,
            resolution="Checked site camera",
        )

    def test_upheld_contestation_rejects_approved_record(self) -> None:
        world = self.seed_world()
        record = self._approved_record(world)

        contestation = self._open(world, record)
        self.assertEqual(contestation.status, ContestationStatus.PENDING)
        self.assertEqual(record.status, AttendanceStatus.CONTESTED)

        resolved = self._resolve(world, contestation, ContestationOutcome.UPHOLD)

        self.assertEqual(resolved.status, ContestationStatus.RESOLVED)
        self.assertEqual(resolved.resolved_by_id, 900)
        self.assertEqual(record.status, AttendanceStatus.REJECTED)
        self.assertEqual(record.approved_by_id, 900)
        self.assertEqual(record.approved_at, utc(2026, 1, 14, 9))

    def test_rejected_contestation_restores_approval(self) -> None:
        world = self.seed_world()
        record = self._approved_record(world)
        contestation = self._open(world, record)

        resolved = self._resolve(world, contestation, ContestationOutcome.REJECT)

        self.assertEqual(resolved.status, ContestationStatus.REJECTED)
        self.assertEqual(record.status, AttendanceStatus.APPROVED)

    def test_pending_record_can_be_contested(self) -> None:
        world = self.seed_world()
        record = self.add_record(
            world,
            check_in=utc(2026, 1, 12, 8),
            check_out=utc(2026, 1, 12, 16),
            total_hours="8.00",
            status=AttendanceStatus.PENDING,
        )

        self._open(world, record)

        self.assertEqual(record.status, AttendanceStatus.CONTESTED)

    def test_second_pending_contestation_is_rejected(self) -> None:
        world = self.seed_world()
        record = self._approved_record(world)
        self._open(world, record)

        with self.assertRaises(DuplicateOpenContestation):
            self._open(world, record)

        self.assertEqual(len(list_contestations(self.db, tenant_id=world.tenant.id, record_id=record.id)), 1)

    def test_record_can_be_contested_again_after_resolution(self) -> None:
        world = self.seed_world()
        record = self._approved_record(world)
        first = self._open(world, record)
        self._resolve(world, first, ContestationOutcome.REJECT)

        second = self._open(world, record)

        self.assertNotEqual(first.id, second.id)
        pending = list_contestations(self.db, tenant_id=world.tenant.id, status=ContestationStatus.PENDING)
        self.assertEqual([item.id for item in pending], [second.id])

    def test_rejected_record_cannot_be_contested(self) -> None:
        world = self.seed_world()
        record = self.add_record(
            world,
            check_in=utc(2026, 1, 12, 8),
            check_out=utc(2026, 1, 12, 16),
            total_hours="8.00",
            status=AttendanceStatus.REJECTED,
        )

        with self.assertRaises(RecordNotApproved):
            self._open(world, record)

    def test_client_of_another_site_cannot_contest(self) -> None:
        world = self.seed_world()
        record = self._approved_record(world)
        stranger = Client(tenant_id=world.tenant.id, name="Outro Cliente", is_active=True)
        self.db.add(stranger)
        self.db.commit()

        with self.assertRaises(ClientSiteMismatch):
            self._open(world, record, client_id=stranger.id)

    def test_contested_record_cannot_be_approved_directly(self) -> None:
        world = self.seed_world()
        record = self._approved_record(world)
        self._open(world, record)

        with self.assertRaises(OpenContestationExists):
            approve_record(
                self.db,
                tenant_id=world.tenant.id,
                record_id=record.id,
                approver_id=900,
                ts_utc=utc(2026, 1, 13, 9),
            )
        with self.assertRaises(OpenContestationExists):
            reject_record(
                self.db,
                tenant_id=world.tenant.id,
                record_id=record.id,
                approver_id=900,
                ts_utc=utc(2026, 1, 13, 9),
                reason="duplicate",
            )

    def test_resolving_twice_is_rejected(self) -> None:
        world = self.seed_world()
        record = self._approved_record(world)
        contestation = self._open(world, record)
        self._resolve(world, contestation, ContestationOutcome.UPHOLD)

        with self.assertRaises(NotPending):
            self._resolve(world, contestation, ContestationOutcome.REJECT)

        self.assertEqual(record.status, AttendanceStatus.REJECTED)


class ConcurrentContestationTests(SqliteTestCase):
    def test_concurrent_openings_leave_one_pending_contestation(self) -> None:
        world = self.seed_world()
        record = self.add_record(
            world,
            check_in=utc(2026, 1, 12, 8),
            check_out=utc(2026, 1, 12, 16),
            total_hours="8.00",
        )
        tenant_id = world.tenant.id
        client_id = world.client.id
        record_id = record.id

        barrier = threading.Barrier(4)
        outcomes: list[str] = []
        outcomes_lock = threading.Lock()

        def attempt(index: int) -> None:
            session = self.session_factory()
            try:
                barrier.wait()
                open_contestation(
                    session,
                    tenant_id=tenant_id,
                    record_id=record_id,
                    client_id=client_id,
                    reason=f"Worker left early ({index})",
                    severity=ContestationSeverity.MINOR,
                )
                result = "ok"
            except DuplicateOpenContestation:
                result = "duplicate"
            finally:
                session.close()
            with outcomes_lock:
                outcomes.append(result)

        threads = [threading.Thread(target=attempt, args=(index,)) for index in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        self.assertEqual(outcomes.count("ok"), 1)
        self.assertEqual(outcomes.count("duplicate"), 3)
        pending_count = self.db.scalar(
            select(func.count())
            .select_from(Contestation)
            .where(
                Contestation.attendance_record_id == record_id,
                Contestation.status == ContestationStatus.PENDING,
            )
        )
        self.assertEqual(pending_count, 1)
        self.db.expire_all()
        self.assertEqual(self.db.get(AttendanceRecord, record_id).status, AttendanceStatus.CONTESTED)
        self.assertEqual(employee_locks.active_keys(), 0)
