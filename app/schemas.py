from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.models import (
    AttendanceStatus,
    ContestationOutcome,
    ContestationSeverity,
    ContestationStatus,
    LeaveStatus,
    LeaveType,
    PayrollStatus,
    SiteBillingType,
)


class TenantCreate(BaseModel):
    name: str = Field(min_length=2, max_length=255)


class TenantRead(BaseModel):
    id: int
    name: str
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class ClientCreate(BaseModel):
    name: str = Field(min_length=2, max_length=255)


class ClientRead(BaseModel):
    id: int
    tenant_id: int
    name: str
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class SiteCreate(BaseModel):
    client_id: int = Field(ge=1)
    name: str = Field(min_length=2, max_length=255)
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    geofence_radius_m: int | None = Field(default=None, ge=1)
    standard_daily_hours: Decimal | None = Field(default=None, gt=0, le=24)
    max_plausible_daily_hours: Decimal | None = Field(default=None, gt=0, le=48)
    billing_type: SiteBillingType = SiteBillingType.HOURLY
    hourly_rate: Decimal | None = Field(default=None, ge=0)


class SiteUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=255)
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    geofence_radius_m: int | None = Field(default=None, ge=1)
    standard_daily_hours: Decimal | None = Field(default=None, gt=0, le=24)
    max_plausible_daily_hours: Decimal | None = Field(default=None, gt=0, le=48)
    billing_type: SiteBillingType | None = None
    hourly_rate: Decimal | None = Field(default=None, ge=0)
    is_active: bool | None = None


class SiteRead(BaseModel):
    id: int
    tenant_id: int
    client_id: int
    name: str
    latitude: float
    longitude: float
    geofence_radius_m: int
    standard_daily_hours: Decimal
    max_plausible_daily_hours: Decimal
    billing_type: SiteBillingType
    hourly_rate: Decimal | None
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class EmployeeCreate(BaseModel):
    full_name: str = Field(min_length=2, max_length=255)
    hourly_rate: Decimal | None = Field(default=None, ge=0)
    device_id: str | None = Field(default=None, max_length=255)
    is_active: bool = True


class EmployeeUpdate(BaseModel):
    full_name: str | None = Field(default=None, min_length=2, max_length=255)
    hourly_rate: Decimal | None = Field(default=None, ge=0)
    device_id: str | None = Field(default=None, max_length=255)
    is_active: bool | None = None


class EmployeeRead(BaseModel):
    id: int
    tenant_id: int
    full_name: str
    hourly_rate: Decimal | None
    device_id: str | None
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class CheckInRequest(BaseModel):
    employee_id: int = Field(ge=1)
    site_id: int = Field(ge=1)
    ts_utc: datetime | None = None
    lat: float | None = Field(default=None, ge=-90, le=90)
    lon: float | None = Field(default=None, ge=-180, le=180)
    device_id: str | None = Field(default=None, max_length=255)
    is_offline: bool = False

    @model_validator(mode="after")
    def _validate_offline_timestamp(self) -> "CheckInRequest":
        if self.is_offline and self.ts_utc is None:
            raise ValueError("Offline events must carry their capture time in ts_utc.")
        return self


class CheckOutRequest(BaseModel):
    ts_utc: datetime | None = None
    lat: float | None = Field(default=None, ge=-90, le=90)
    lon: float | None = Field(default=None, ge=-180, le=180)
    device_id: str | None = Field(default=None, max_length=255)
    break_minutes: int = Field(default=0, ge=0, le=24 * 60)
    is_offline: bool = False

    @model_validator(mode="after")
    def _validate_offline_timestamp(self) -> "CheckOutRequest":
        if self.is_offline and self.ts_utc is None:
            raise ValueError("Offline events must carry their capture time in ts_utc.")
        return self


class RecordApproveRequest(BaseModel):
    approver_id: int = Field(ge=1)
    ts_utc: datetime | None = None


class RecordRejectRequest(BaseModel):
    approver_id: int = Field(ge=1)
    reason: str = Field(min_length=1, max_length=2000)
    ts_utc: datetime | None = None


class BreakAdjustRequest(BaseModel):
    actor_id: int = Field(ge=1)
    break_minutes: int = Field(ge=0, le=24 * 60)


class ClientValidationRequest(BaseModel):
    client_id: int = Field(ge=1)
    validated: bool
    ts_utc: datetime | None = None


class AttendanceRecordRead(BaseModel):
    id: int
    tenant_id: int
    employee_id: int
    site_id: int
    status: AttendanceStatus
    check_in_time: datetime
    check_out_time: datetime | None
    check_in_lat: float | None
    check_in_lon: float | None
    check_in_within_geofence: bool
    check_in_distance_m: float | None
    check_out_lat: float | None
    check_out_lon: float | None
    check_out_within_geofence: bool | None
    check_out_distance_m: float | None
    check_in_device_id: str | None
    check_out_device_id: str | None
    is_offline: bool
    total_hours: Decimal | None
    overtime_hours: Decimal | None
    break_minutes: int
    is_suspicious: bool
    suspicious_reason: str | None
    approved_by_id: int | None
    approved_at: datetime | None
    rejection_reason: str | None
    client_validated: bool | None
    client_validated_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class ContestationCreateRequest(BaseModel):
    attendance_record_id: int = Field(ge=1)
    client_id: int = Field(ge=1)
    reason: str = Field(min_length=1, max_length=2000)
    severity: ContestationSeverity = ContestationSeverity.MINOR
    ts_utc: datetime | None = None


class ContestationResolveRequest(BaseModel):
    resolver_id: int = Field(ge=1)
    outcome: ContestationOutcome
    resolution: str = Field(min_length=1, max_length=2000)
    ts_utc: datetime | None = None


class ContestationRead(BaseModel):
    id: int
    tenant_id: int
    attendance_record_id: int
    client_id: int
    reason: str
    severity: ContestationSeverity
    status: ContestationStatus
    resolution: str | None
    resolved_by_id: int | None
    resolved_at: datetime | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LeaveCreateRequest(BaseModel):
    employee_id: int = Field(ge=1)
    type: LeaveType
    start_date: date
    end_date: date
    is_paid: bool = True
    days_count: int | None = Field(default=None, ge=0)
    reason: str | None = Field(default=None, max_length=1000)


class LeaveDecisionRequest(BaseModel):
    approver_id: int = Field(ge=1)
    ts_utc: datetime | None = None


class LeaveRead(BaseModel):
    id: int
    tenant_id: int
    employee_id: int
    type: LeaveType
    start_date: date
    end_date: date
    status: LeaveStatus
    is_paid: bool
    days_count: int
    reason: str | None
    approved_by_id: int | None
    approved_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class PayrollGenerateRequest(BaseModel):
    employee_id: int = Field(ge=1)
    period_start: datetime
    period_end: datetime
    force: bool = False


class PayrollStatusUpdateRequest(BaseModel):
    status: PayrollStatus
    ts_utc: datetime | None = None


class PayrollRecordRead(BaseModel):
    id: int
    tenant_id: int
    employee_id: int
    period_start: datetime
    period_end: datetime
    regular_hours: Decimal
    overtime_hours: Decimal
    night_hours: Decimal
    vacation_days: Decimal
    sick_days: Decimal
    unpaid_absence_days: Decimal
    hourly_rate: Decimal | None
    overtime_multiplier: Decimal
    total_amount: Decimal | None
    status: PayrollStatus
    paid_at: datetime | None
    source_record_ids: list[int]
    anomalies: list[dict[str, Any]]

    model_config = ConfigDict(from_attributes=True)


class PayrollMonthlyPoint(BaseModel):
    month: str
    amount: Decimal
    hours: Decimal


class PayrollSummaryResponse(BaseModel):
    total_paid: Decimal
    total_pending: Decimal
    total_regular_hours: Decimal
    total_overtime_hours: Decimal
    employee_count: int
    record_count: int
    monthly: list[PayrollMonthlyPoint]


class ServiceOrderRead(BaseModel):
    site_id: int
    site_name: str
    client_id: int
    billing_type: SiteBillingType
    hourly_rate: Decimal
    total_hours: Decimal
    overtime_hours: Decimal
    regular_hours: Decimal
    approved_records: int
    pending_records: int
    regular_cost: Decimal
    overtime_cost: Decimal
    total_cost: Decimal
    worker_ids: list[int]
    work_days: int


class ServiceOrderTotals(BaseModel):
    total_hours: Decimal
    overtime_hours: Decimal
    total_cost: Decimal
    approved_records: int
    pending_records: int


class ServiceOrdersResponse(BaseModel):
    orders: list[ServiceOrderRead]
    totals: ServiceOrderTotals
    start: datetime
    end: datetime
    overtime_multiplier: Decimal
