from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Protocol

from app.services.clock import to_utc

HOURS_QUANTUM = Decimal("0.01")
ZERO = Decimal("0.00")


class TimedRecord(Protocol):
    id: int
    check_in_time: datetime
    check_out_time: datetime | None


@dataclass(frozen=True)
class WorkedHours:
    total_hours: Decimal
    overtime_hours: Decimal


@dataclass(frozen=True)
class OverlapSplit:
    counted: list[Any] = field(default_factory=list)
    anomalies: list[dict[str, Any]] = field(default_factory=list)


def quantize_hours(value: Decimal) -> Decimal:
    return Decimal(value).quantize(HOURS_QUANTUM, rounding=ROUND_HALF_UP)


def _seconds_to_hours(seconds: int | float) -> Decimal:
    return Decimal(int(seconds)) / Decimal(3600)


def calculate_worked_hours(
    *,
    check_in: datetime,
    check_out: datetime,
    break_minutes: int,
    standard_daily_hours: Decimal,
) -> WorkedHours:
    gross_seconds = (to_utc(check_out) - to_utc(check_in)).total_seconds()
    net_seconds = max(0, int(gross_seconds) - max(0, break_minutes) * 60)
    total_hours = quantize_hours(_seconds_to_hours(net_seconds))
    overtime_hours = quantize_hours(max(ZERO, total_hours - Decimal(standard_daily_hours)))
    return WorkedHours(total_hours=total_hours, overtime_hours=overtime_hours)


def _night_windows(
    start_local_day: date,
    end_local_day: date,
    *,
    tz: tzinfo,
    window_start: time,
    window_end: time,
) -> Iterable[tuple[datetime, datetime]]:
    crosses_midnight = window_end <= window_start
    day = start_local_day
    while day <= end_local_day:
        end_day = day + timedelta(days=1) if crosses_midnight else day
        yield (
            datetime.combine(day, window_start, tzinfo=tz).astimezone(timezone.utc),
            datetime.combine(end_day, window_end, tzinfo=tz).astimezone(timezone.utc),
        )
        day += timedelta(days=1)


def calculate_night_hours(
    *,
    check_in: datetime,
    check_out: datetime,
    tz: tzinfo,
    window_start: time,
    window_end: time,
) -> Decimal:
    """Hours of [check_in, check_out) that fall inside the nightly window."""
    if window_start == window_end:
        return ZERO

    start_utc = to_utc(check_in)
    end_utc = to_utc(check_out)
    if end_utc <= start_utc:
        return ZERO

    # The window occurrence that began the evening before check-in can still cover it.
    first_day = start_utc.astimezone(tz).date() - timedelta(days=1)
    last_day = end_utc.astimezone(tz).date()

    overlap_seconds = 0.0
    for window_open, window_close in _night_windows(
        first_day,
        last_day,
        tz=tz,
        window_start=window_start,
        window_end=window_end,
    ):
        lower = max(start_utc, window_open)
        upper = min(end_utc, window_close)
        if upper > lower:
            overlap_seconds += (upper - lower).total_seconds()

    return quantize_hours(_seconds_to_hours(overlap_seconds))


def leave_overlap_fraction(
    *,
    start_date: date,
    end_date: date,
    period_start: datetime,
    period_end: datetime,
    tz: tzinfo,
) -> Decimal:
    """Share of the leave's calendar days whose local midnight falls in the period."""
    if end_date < start_date:
        return ZERO

    period_start_utc = to_utc(period_start)
    period_end_utc = to_utc(period_end)
    leave_days = (end_date - start_date).days + 1
    overlapping_days = 0
    day = start_date
    while day <= end_date:
        day_start = datetime.combine(day, time.min, tzinfo=tz).astimezone(timezone.utc)
        if period_start_utc <= day_start < period_end_utc:
            overlapping_days += 1
        day += timedelta(days=1)

    return Decimal(overlapping_days) / Decimal(leave_days)


def attribute_leave_days(days_count: int, fraction: Decimal) -> Decimal:
    return quantize_hours(Decimal(max(0, days_count)) * fraction)


def calculate_total_amount(
    *,
    regular_hours: Decimal,
    overtime_hours: Decimal,
    hourly_rate: Decimal | None,
    overtime_multiplier: Decimal,
) -> Decimal | None:
    if hourly_rate is None:
        return None
    rate = Decimal(hourly_rate)
    amount = regular_hours * rate + overtime_hours * rate * Decimal(overtime_multiplier)
    return amount.quantize(HOURS_QUANTUM, rounding=ROUND_HALF_UP)


def _closed_in_order(records: Iterable[TimedRecord]) -> list[TimedRecord]:
    return sorted(
        (item for item in records if item.check_out_time is not None),
        key=lambda item: (to_utc(item.check_in_time), item.id),
    )


def split_overlapping_records(
    records: Sequence[TimedRecord],
    carried_over: Sequence[TimedRecord] = (),
) -> OverlapSplit:
    """Keep the earliest record of every overlap; report the later ones.

    Overlapping intervals are never merged or summed twice. ``carried_over``
    holds records that started before the period but end inside it: they are
    never counted here, yet a record overlapping one of them is reported.
    """
    split = OverlapSplit()
    latest_end: datetime | None = None
    latest_owner_id: int | None = None

    if carried_over:
        earlier = split_overlapping_records(carried_over).counted
        if earlier:
            latest_end = to_utc(earlier[-1].check_out_time)  # type: ignore[arg-type]
            latest_owner_id = earlier[-1].id

    for record in _closed_in_order(records):
        check_in = to_utc(record.check_in_time)
        if latest_end is not None and check_in < latest_end:
            split.anomalies.append(
                {
                    "type": "overlapping-record",
                    "record_id": record.id,
                    "overlaps_record_id": latest_owner_id,
                }
            )
            continue
        split.counted.append(record)
        latest_end = to_utc(record.check_out_time)  # type: ignore[arg-type]
        latest_owner_id = record.id

    return split
