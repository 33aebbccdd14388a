from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import ClientNotFound, EmployeeNotFound, NotFound, SiteNotFound
from app.models import Client, Employee, Site, Tenant
from app.schemas import ClientCreate, EmployeeCreate, EmployeeUpdate, SiteCreate, SiteUpdate, TenantCreate
from app.settings import get_settings


def get_tenant(db: Session, tenant_id: int) -> Tenant:
    tenant = db.get(Tenant, tenant_id)
    if tenant is None:
        raise NotFound("Tenant not found.")
    return tenant


def get_client(db: Session, tenant_id: int, client_id: int) -> Client:
    client = db.get(Client, client_id)
    if client is None or client.tenant_id != tenant_id:
        raise ClientNotFound()
    return client


def get_site(db: Session, tenant_id: int, site_id: int) -> Site:
    site = db.get(Site, site_id)
    if site is None or site.tenant_id != tenant_id:
        raise SiteNotFound()
    return site


def get_employee(db: Session, tenant_id: int, employee_id: int) -> Employee:
    employee = db.get(Employee, employee_id)
    if employee is None or employee.tenant_id != tenant_id:
        raise EmployeeNotFound()
    return employee


def create_tenant(db: Session, payload: TenantCreate) -> Tenant:
    tenant = Tenant(name=payload.name.strip(), is_active=True)
    db.add(tenant)
    db.commit()
    db.refresh(tenant)
    return tenant


def create_client(db: Session, tenant_id: int, payload: ClientCreate) -> Client:
    get_tenant(db, tenant_id)
    client = Client(tenant_id=tenant_id, name=payload.name.strip(), is_active=True)
    db.add(client)
    db.commit()
    db.refresh(client)
    return client


def list_clients(db: Session, tenant_id: int) -> list[Client]:
    stmt = select(Client).where(Client.tenant_id == tenant_id).order_by(Client.id.asc())
    return list(db.scalars(stmt).all())


def create_site(db: Session, tenant_id: int, payload: SiteCreate) -> Site:
    settings = get_settings()
    get_client(db, tenant_id, payload.client_id)
    site = Site(
        tenant_id=tenant_id,
        client_id=payload.client_id,
        name=payload.name.strip(),
        latitude=payload.latitude,
        longitude=payload.longitude,
        geofence_radius_m=payload.geofence_radius_m or settings.default_geofence_radius_m,
        standard_daily_hours=(
            payload.standard_daily_hours
            if payload.standard_daily_hours is not None
            else Decimal(str(settings.default_standard_daily_hours))
        ),
        max_plausible_daily_hours=(
            payload.max_plausible_daily_hours
            if payload.max_plausible_daily_hours is not None
            else Decimal(str(settings.default_max_plausible_daily_hours))
        ),
        billing_type=payload.billing_type,
        hourly_rate=payload.hourly_rate,
        is_active=True,
    )
    db.add(site)
    db.commit()
    db.refresh(site)
    return site


def update_site(db: Session, tenant_id: int, site_id: int, payload: SiteUpdate) -> Site:
    site = get_site(db, tenant_id, site_id)
    for field_name, value in payload.model_dump(exclude_unset=True).items():
        if value is None and field_name != "hourly_rate":
            continue
        setattr(site, field_name, value)
    db.commit()
    db.refresh(site)
    return site


def list_sites(db: Session, tenant_id: int, *, include_inactive: bool = False) -> list[Site]:
    stmt = select(Site).where(Site.tenant_id == tenant_id)
    if not include_inactive:
        stmt = stmt.where(Site.is_active.is_(True))
    return list(db.scalars(stmt.order_by(Site.id.asc())).all())


def create_employee(db: Session, tenant_id: int, payload: EmployeeCreate) -> Employee:
    get_tenant(db, tenant_id)
    employee = Employee(
        tenant_id=tenant_id,
        full_name=payload.full_name.strip(),
        hourly_rate=payload.hourly_rate,
        device_id=payload.device_id,
        is_active=payload.is_active,
    )
    db.add(employee)
    db.commit()
    db.refresh(employee)
    return employee


def update_employee(db: Session, tenant_id: int, employee_id: int, payload: EmployeeUpdate) -> Employee:
    employee = get_employee(db, tenant_id, employee_id)
    for field_name, value in payload.model_dump(exclude_unset=True).items():
        if value is None and field_name not in {"hourly_rate", "device_id"}:
            continue
        setattr(employee, field_name, value)
    db.commit()
    db.refresh(employee)
    return employee


def list_employees(db: Session, tenant_id: int, *, include_inactive: bool = False) -> list[Employee]:
    stmt = select(Employee).where(Employee.tenant_id == tenant_id)
    if not include_inactive:
        stmt = stmt.where(Employee.is_active.is_(True))
    return list(db.scalars(stmt.order_by(Employee.id.asc())).all())
