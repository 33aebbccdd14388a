from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Protocol

from app.models import AttendanceRecord

REASON_EXCESSIVE_DURATION = "excessive-duration"
REASON_GEOFENCE_VIOLATION = "geofence-violation"
REASON_DEVICE_MISMATCH = "device-mismatch"
REASON_OVERLAPPING_RECORD = "overlapping-record"


@dataclass(frozen=True)
class FraudContext:
    max_plausible_daily_hours: Decimal
    history: Sequence[AttendanceRecord] = field(default_factory=tuple)


@dataclass(frozen=True)
class FraudVerdict:
    is_suspicious: bool
    reason: str | None = None


class FraudRule(Protocol):
    reason: str

    def matches(self, record: AttendanceRecord, context: FraudContext) -> bool: ...


class ExcessiveDurationRule:
    reason = REASON_EXCESSIVE_DURATION

    def matches(self, record: AttendanceRecord, context: FraudContext) -> bool:
        if record.total_hours is None:
            return False
        return Decimal(record.total_hours) > Decimal(context.max_plausible_daily_hours)


class GeofenceViolationRule:
    reason = REASON_GEOFENCE_VIOLATION

    def matches(self, record: AttendanceRecord, context: FraudContext) -> bool:
        return record.check_in_within_geofence is False or record.check_out_within_geofence is False


class DeviceMismatchRule:
    reason = REASON_DEVICE_MISMATCH

    def matches(self, record: AttendanceRecord, context: FraudContext) -> bool:
        if not record.check_in_device_id or not record.check_out_device_id:
            return False
        if record.check_in_offline or record.check_out_offline:
            return False
        return record.check_in_device_id != record.check_out_device_id


class OverlappingRecordRule:
    reason = REASON_OVERLAPPING_RECORD

    def matches(self, record: AttendanceRecord, context: FraudContext) -> bool:
        if record.check_out_time is None:
            return False
        for prior in context.history:
            if prior.id == record.id or prior.check_out_time is None:
                continue
            if prior.check_in_time < record.check_out_time and record.check_in_time < prior.check_out_time:
                return True
        return False


DEFAULT_RULES: tuple[FraudRule, ...] = (
    ExcessiveDurationRule(),
    GeofenceViolationRule(),
    DeviceMismatchRule(),
    OverlappingRecordRule(),
)


def evaluate_record(
    record: AttendanceRecord,
    context: FraudContext,
    rules: Sequence[FraudRule] = DEFAULT_RULES,
) -> FraudVerdict:
    for rule in rules:
        if rule.matches(record, context):
            return FraudVerdict(is_suspicious=True, reason=rule.reason)
    return FraudVerdict(is_suspicious=False)


def apply_verdict(record: AttendanceRecord, verdict: FraudVerdict) -> None:
    record.is_suspicious = verdict.is_suspicious
    record.suspicious_reason = verdict.reason if verdict.is_suspicious else None
