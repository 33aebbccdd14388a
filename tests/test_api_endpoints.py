from __future__ import annotations

from collections.abc import Generator
from datetime import datetime
from io import BytesIO

from fastapi.testclient import TestClient
from openpyxl import load_workbook
from sqlalchemy.orm import Session

from app.db import get_db
from app.main import app
from tests.db_support import SITE_LAT, SITE_LON, SqliteTestCase, utc


class ApiEndpointTests(SqliteTestCase):
    def setUp(self) -> None:
        super().setUp()

        def _override() -> Generator[Session, None, None]:
            db = self.session_factory()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = _override
        self.client = TestClient(app)
        self.world = self.seed_world()
        self.headers = {"X-Tenant-Id": str(self.world.tenant.id)}

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        super().tearDown()

    def _check_in(self, **overrides):  # type: ignore[no-untyped-def]
        body = {
            "employee_id": self.world.employee.id,
            "site_id": self.world.site.id,
            "ts_utc": "2026-01-12T08:00:00Z",
            "lat": SITE_LAT,
            "lon": SITE_LON,
            "device_id": "phone-1",
        }
        body.update(overrides)
        return self.client.post("/api/attendance/checkin", json=body, headers=self.headers)

    def _check_out(self, record_id: int, **overrides):  # type: ignore[no-untyped-def]
        body = {
            "ts_utc": "2026-01-12T16:00:00Z",
            "lat": SITE_LAT,
            "lon": SITE_LON,
            "device_id": "phone-1",
        }
        body.update(overrides)
        return self.client.post(f"/api/attendance/records/{record_id}/checkout", json=body, headers=self.headers)

    def test_tenant_header_is_required(self) -> None:
        response = self.client.get("/api/attendance/records")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["code"], "TENANT_REQUIRED")

        response = self.client.get("/api/attendance/records", headers={"X-Tenant-Id": "abc"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["code"], "INVALID_TENANT")

    def test_request_id_is_echoed_in_header_and_error_body(self) -> None:
        response = self.client.get(
            "/api/attendance/records/999",
            headers={**self.headers, "X-Request-Id": "req-123"},
        )

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.headers["X-Request-Id"], "req-123")
        self.assertEqual(
            response.json(),
            {"error": {"code": "RECORD_NOT_FOUND", "message": "Attendance record not found.", "request_id": "req-123"}},
        )

    def test_checkin_checkout_approve_flow(self) -> None:
        created = self._check_in()
        self.assertEqual(created.status_code, 201)
        record = created.json()
        self.assertEqual(record["status"], "OPEN")
        self.assertTrue(record["check_in_within_geofence"])

        active = self.client.get(
            "/api/attendance/active",
            params={"employee_id": self.world.employee.id},
            headers=self.headers,
        )
        self.assertEqual(active.json()["id"], record["id"])

        closed = self._check_out(record["id"])
        self.assertEqual(closed.status_code, 200)
        self.assertEqual(closed.json()["status"], "PENDING")
        self.assertEqual(closed.json()["total_hours"], "8.00")

        approved = self.client.post(
            f"/api/attendance/records/{record['id']}/approve",
            json={"approver_id": 5, "ts_utc": "2026-01-12T18:00:00Z"},
            headers=self.headers,
        )
        self.assertEqual(approved.status_code, 200)
        self.assertEqual(approved.json()["status"], "APPROVED")

        listed = self.client.get("/api/attendance/records", params={"status": "APPROVED"}, headers=self.headers)
        self.assertEqual([item["id"] for item in listed.json()], [record["id"]])

    def test_duplicate_checkin_is_conflict(self) -> None:
        self.assertEqual(self._check_in().status_code, 201)

        second = self._check_in(ts_utc="2026-01-12T09:00:00Z")

        self.assertEqual(second.status_code, 409)
        self.assertEqual(second.json()["error"]["code"], "DUPLICATE_OPEN_RECORD")

    def test_offline_event_without_capture_time_is_invalid(self) -> None:
        response = self._check_in(ts_utc=None, is_offline=True)

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")

    def test_other_tenant_cannot_reach_record(self) -> None:
        other = self.seed_world(tenant_name="Construtora Gama")
        record = self._check_in().json()

        response = self.client.post(
            f"/api/attendance/records/{record['id']}/checkout",
            json={"ts_utc": "2026-01-12T16:00:00Z"},
            headers={"X-Tenant-Id": str(other.tenant.id)},
        )

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["code"], "RECORD_NOT_FOUND")

    def test_contestation_uphold_rejects_record(self) -> None:
        record = self._check_in().json()
        self._check_out(record["id"])
        self.client.post(
            f"/api/attendance/records/{record['id']}/approve",
            json={"approver_id": 5, "ts_utc": "2026-01-12T18:00:00Z"},
            headers=self.headers,
        )

        opened = self.client.post(
            "/api/contestations",
            json={
                "attendance_record_id": record["id"],
                "client_id": self.world.client.id,
                "reason": "Worker left at 14:00",
                "severity": "SIGNIFICANT",
                "ts_utc": "2026-01-12T19:30:00Z",
            },
            headers=self.headers,
        )
        self.assertEqual(opened.status_code, 201)
        self.assertEqual(datetime.fromisoformat(opened.json()["created_at"]), utc(2026, 1, 12, 19, 30))
        contested = self.client.get(f"/api/attendance/records/{record['id']}", headers=self.headers)
        self.assertEqual(contested.json()["status"], "CONTESTED")

        resolved = self.client.post(
            f"/api/contestations/{opened.json()['id']}/resolve",
            json={
                "resolver_id": 7,
                "outcome": "UPHOLD",
                "resolution": "Confirmed with site log",
                "ts_utc": "2026-01-13T09:00:00Z",
            },
            headers=self.headers,
        )
        self.assertEqual(resolved.status_code, 200)
        self.assertEqual(resolved.json()["status"], "RESOLVED")
        final = self.client.get(f"/api/attendance/records/{record['id']}", headers=self.headers)
        self.assertEqual(final.json()["status"], "REJECTED")

    def test_payroll_generate_and_export(self) -> None:
        self.add_record(
            self.world,
            check_in=utc(2026, 1, 12, 8),
            check_out=utc(2026, 1, 12, 16),
            total_hours="8.00",
        )

        generated = self.client.post(
            "/api/payroll/generate",
            json={
                "employee_id": self.world.employee.id,
                "period_start": "2026-01-01T00:00:00Z",
                "period_end": "2026-02-01T00:00:00Z",
            },
            headers=self.headers,
        )
        self.assertEqual(generated.status_code, 200)
        self.assertEqual(generated.json()["regular_hours"], "8.00")
        self.assertEqual(generated.json()["total_amount"], "160.00")

        skipped = self.client.patch(
            f"/api/payroll/{generated.json()['id']}/status",
            json={"status": "PAID"},
            headers=self.headers,
        )
        self.assertEqual(skipped.status_code, 409)
        self.assertEqual(skipped.json()["error"]["code"], "INVALID_STATUS_TRANSITION")

        exported = self.client.get("/api/payroll/export", headers=self.headers)
        self.assertEqual(exported.status_code, 200)
        self.assertIn("spreadsheetml", exported.headers["content-type"])
        wb = load_workbook(BytesIO(exported.content))
        self.assertEqual(wb["Payroll"].max_row, 3)

    def test_service_orders_require_window(self) -> None:
        response = self.client.get("/api/service-orders", headers=self.headers)

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")
