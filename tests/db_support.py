from __future__ import annotations

import tempfile
import unittest
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

from sqlalchemy.orm import Session, sessionmaker

from app import models  # noqa: F401
from app.db import Base, build_engine
from app.models import (
    AttendanceRecord,
    AttendanceStatus,
    Client,
    Employee,
    Site,
    SiteBillingType,
    Tenant,
)

SITE_LAT = 38.7223
SITE_LON = -9.1393


def utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


@dataclass
class World:
    tenant: Tenant
    client: Client
    site: Site
    employee: Employee


class SqliteTestCase(unittest.TestCase):
    """Fresh on-disk SQLite database per test, built from the ORM metadata."""

    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(self._tmpdir.name) / "test.db"
        self.engine = build_engine(f"sqlite:///{db_path}")
        Base.metadata.create_all(self.engine)
        self.session_factory = sessionmaker(
            bind=self.engine,
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,
        )
        self.db: Session = self.session_factory()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()
        self._tmpdir.cleanup()

    def seed_world(
        self,
        *,
        tenant_name: str = "Construtora Alfa",
        hourly_rate: Decimal | None = Decimal("20.00"),
        site_rate: Decimal | None = Decimal("30.00"),
        billing_type: SiteBillingType = SiteBillingType.HOURLY,
    ) -> World:
        tenant = Tenant(name=tenant_name, is_active=True)
        self.db.add(tenant)
        self.db.flush()
        client = Client(tenant_id=tenant.id, name="Cliente Beta", is_active=True)
        self.db.add(client)
        self.db.flush()
        site = Site(
            tenant_id=tenant.id,
            client_id=client.id,
            name="Obra Avenida",
            latitude=SITE_LAT,
            longitude=SITE_LON,
            geofence_radius_m=100,
            standard_daily_hours=Decimal("8.00"),
            max_plausible_daily_hours=Decimal("16.00"),
            billing_type=billing_type,
            hourly_rate=site_rate,
            is_active=True,
        )
        employee = Employee(
            tenant_id=tenant.id,
            full_name="Joao Pedreiro",
            hourly_rate=hourly_rate,
            device_id="phone-1",
            is_active=True,
        )
        self.db.add_all([site, employee])
        self.db.commit()
        return World(tenant=tenant, client=client, site=site, employee=employee)

    def add_employee(self, world: World, *, full_name: str = "Maria Carpinteira") -> Employee:
        employee = Employee(
            tenant_id=world.tenant.id,
            full_name=full_name,
            hourly_rate=Decimal("18.00"),
            is_active=True,
        )
        self.db.add(employee)
        self.db.commit()
        return employee

    def add_record(
        self,
        world: World,
        *,
        check_in: datetime,
        check_out: datetime,
        total_hours: str,
        overtime_hours: str = "0.00",
        status: AttendanceStatus = AttendanceStatus.APPROVED,
        employee: Employee | None = None,
    ) -> AttendanceRecord:
        record = AttendanceRecord(
            tenant_id=world.tenant.id,
            employee_id=(employee or world.employee).id,
            site_id=world.site.id,
            check_in_time=check_in,
            check_out_time=check_out,
            check_in_within_geofence=True,
            check_out_within_geofence=True,
            total_hours=Decimal(total_hours),
            overtime_hours=Decimal(overtime_hours),
            break_minutes=0,
            status=status,
            is_suspicious=False,
        )
        self.db.add(record)
        self.db.commit()
        return record
