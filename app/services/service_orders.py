from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import InvalidPeriod
from app.models import AttendanceRecord, AttendanceStatus, Site, SiteBillingType
from app.schemas import ServiceOrderRead, ServiceOrdersResponse, ServiceOrderTotals
from app.services.clock import to_utc
from app.services.payroll_calc import ZERO, quantize_hours
from app.settings import get_attendance_timezone, get_settings


def _billing_costs(
    *,
    billing_type: SiteBillingType,
    rate: Decimal,
    regular_hours: Decimal,
    overtime_hours: Decimal,
    work_days: int,
    standard_daily_hours: Decimal,
    overtime_multiplier: Decimal,
) -> tuple[Decimal, Decimal]:
    if billing_type == SiteBillingType.HOURLY:
        return regular_hours * rate, overtime_hours * rate * overtime_multiplier
    if billing_type == SiteBillingType.DAILY:
        # The site rate is a day rate; overtime is billed at its hourly share.
        hourly_share = rate / standard_daily_hours if standard_daily_hours > 0 else ZERO
        return Decimal(work_days) * rate, overtime_hours * hourly_share * overtime_multiplier
    return rate, ZERO


def calculate_service_orders(
    db: Session,
    *,
    tenant_id: int,
    start_utc: datetime,
    end_utc: datetime,
    site_id: int | None = None,
    client_id: int | None = None,
) -> ServiceOrdersResponse:
    """Billable summary per site over the approved records checked in during [start, end)."""
    start = to_utc(start_utc)
    end = to_utc(end_utc)
    if end <= start:
        raise InvalidPeriod()

    tz = get_attendance_timezone()
    overtime_multiplier = quantize_hours(Decimal(str(get_settings().overtime_multiplier)))

    sites_stmt = select(Site).where(Site.tenant_id == tenant_id)
    if site_id is not None:
        sites_stmt = sites_stmt.where(Site.id == site_id)
    if client_id is not None:
        sites_stmt = sites_stmt.where(Site.client_id == client_id)
    sites = list(db.scalars(sites_stmt.order_by(Site.id.asc())).all())
    if not sites:
        return ServiceOrdersResponse(
            orders=[],
            totals=ServiceOrderTotals(
                total_hours=ZERO,
                overtime_hours=ZERO,
                total_cost=ZERO,
                approved_records=0,
                pending_records=0,
            ),
            start=start,
            end=end,
            overtime_multiplier=overtime_multiplier,
        )

    records = db.scalars(
        select(AttendanceRecord).where(
            AttendanceRecord.tenant_id == tenant_id,
            AttendanceRecord.site_id.in_([site.id for site in sites]),
            AttendanceRecord.check_in_time >= start,
            AttendanceRecord.check_in_time < end,
            AttendanceRecord.status.in_([AttendanceStatus.APPROVED, AttendanceStatus.PENDING]),
        )
    ).all()
    records_by_site: dict[int, list[AttendanceRecord]] = defaultdict(list)
    for record in records:
        records_by_site[record.site_id].append(record)

    orders: list[ServiceOrderRead] = []
    for site in sites:
        site_records = records_by_site.get(site.id)
        if not site_records:
            continue

        approved = [item for item in site_records if item.status == AttendanceStatus.APPROVED]
        pending_count = len(site_records) - len(approved)

        total_hours = ZERO
        overtime_hours = ZERO
        workers: set[int] = set()
        work_days: set[str] = set()
        for record in approved:
            total_hours += Decimal(record.total_hours or ZERO)
            overtime_hours += Decimal(record.overtime_hours or ZERO)
            workers.add(record.employee_id)
            work_days.add(record.check_in_time.astimezone(tz).date().isoformat())

        regular_hours = max(ZERO, total_hours - overtime_hours)
        rate = Decimal(site.hourly_rate or ZERO)
        regular_cost, overtime_cost = _billing_costs(
            billing_type=site.billing_type,
            rate=rate,
            regular_hours=regular_hours,
            overtime_hours=overtime_hours,
            work_days=len(work_days),
            standard_daily_hours=Decimal(site.standard_daily_hours),
            overtime_multiplier=overtime_multiplier,
        )
        regular_cost = quantize_hours(regular_cost)
        overtime_cost = quantize_hours(overtime_cost)

        orders.append(
            ServiceOrderRead(
                site_id=site.id,
                site_name=site.name,
                client_id=site.client_id,
                billing_type=site.billing_type,
                hourly_rate=quantize_hours(rate),
                total_hours=quantize_hours(total_hours),
                overtime_hours=quantize_hours(overtime_hours),
                regular_hours=quantize_hours(regular_hours),
                approved_records=len(approved),
                pending_records=pending_count,
                regular_cost=regular_cost,
                overtime_cost=overtime_cost,
                total_cost=regular_cost + overtime_cost,
                worker_ids=sorted(workers),
                work_days=len(work_days),
            )
        )

    orders.sort(key=lambda item: (-item.total_cost, item.site_id))
    totals = ServiceOrderTotals(
        total_hours=quantize_hours(sum((item.total_hours for item in orders), ZERO)),
        overtime_hours=quantize_hours(sum((item.overtime_hours for item in orders), ZERO)),
        total_cost=quantize_hours(sum((item.total_cost for item in orders), ZERO)),
        approved_records=sum(item.approved_records for item in orders),
        pending_records=sum(item.pending_records for item in orders),
    )
    return ServiceOrdersResponse(
        orders=orders,
        totals=totals,
        start=start,
        end=end,
        overtime_multiplier=overtime_multiplier,
    )
