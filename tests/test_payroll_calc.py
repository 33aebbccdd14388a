from __future__ import annotations

import unittest
from datetime import date, datetime, time, timezone
from decimal import Decimal
from types import SimpleNamespace
from zoneinfo import ZoneInfo

from app.services.payroll_calc import (
    attribute_leave_days,
    calculate_night_hours,
    calculate_total_amount,
    calculate_worked_hours,
    leave_overlap_fraction,
    quantize_hours,
    split_overlapping_records,
)

LISBON = ZoneInfo("Europe/Lisbon")
NIGHT_START = time(22, 0)
NIGHT_END = time(6, 0)


def _utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class WorkedHoursTests(unittest.TestCase):
    def test_regular_day_has_no_overtime(self) -> None:
        worked = calculate_worked_hours(
            check_in=_utc(2026, 1, 12, 8),
            check_out=_utc(2026, 1, 12, 16),
            break_minutes=0,
            standard_daily_hours=Decimal("8"),
        )
        self.assertEqual(worked.total_hours, Decimal("8.00"))
        self.assertEqual(worked.overtime_hours, Decimal("0.00"))

    def test_overtime_is_excess_over_standard(self) -> None:
        worked = calculate_worked_hours(
            check_in=_utc(2026, 1, 12, 6),
            check_out=_utc(2026, 1, 12, 17, 20),
            break_minutes=20,
            standard_daily_hours=Decimal("8"),
        )
        self.assertEqual(worked.total_hours, Decimal("11.00"))
        self.assertEqual(worked.overtime_hours, Decimal("3.00"))

    def test_hours_round_half_up_to_cents(self) -> None:
        # 20 minutes is 0.3333 hours.
        worked = calculate_worked_hours(
            check_in=_utc(2026, 1, 12, 8),
            check_out=_utc(2026, 1, 12, 8, 20),
            break_minutes=0,
            standard_daily_hours=Decimal("8"),
        )
        self.assertEqual(worked.total_hours, Decimal("0.33"))
        self.assertEqual(quantize_hours(Decimal("0.125")), Decimal("0.13"))

    def test_total_never_negative_and_overtime_never_exceeds_total(self) -> None:
        for break_minutes in (0, 30, 600, 10_000):
            for standard in (Decimal("0"), Decimal("4"), Decimal("8")):
                worked = calculate_worked_hours(
                    check_in=_utc(2026, 1, 12, 8),
                    check_out=_utc(2026, 1, 12, 19),
                    break_minutes=break_minutes,
                    standard_daily_hours=standard,
                )
                self.assertGreaterEqual(worked.total_hours, Decimal("0"))
                self.assertLessEqual(worked.overtime_hours, worked.total_hours)


class NightHoursTests(unittest.TestCase):
    def _night(self, check_in: datetime, check_out: datetime) -> Decimal:
        return calculate_night_hours(
            check_in=check_in,
            check_out=check_out,
            tz=LISBON,
            window_start=NIGHT_START,
            window_end=NIGHT_END,
        )

    def test_day_shift_has_no_night_hours(self) -> None:
        self.assertEqual(self._night(_utc(2026, 1, 12, 8), _utc(2026, 1, 12, 16)), Decimal("0.00"))

    def test_shift_crossing_midnight(self) -> None:
        self.assertEqual(self._night(_utc(2026, 1, 12, 20), _utc(2026, 1, 13, 4)), Decimal("6.00"))

    def test_early_morning_shift_uses_previous_evening_window(self) -> None:
        self.assertEqual(self._night(_utc(2026, 1, 13, 3), _utc(2026, 1, 13, 9)), Decimal("3.00"))

    def test_window_follows_local_summer_time(self) -> None:
        # 22:00 Lisbon summer time is 21:00 UTC.
        self.assertEqual(self._night(_utc(2026, 7, 13, 20), _utc(2026, 7, 13, 22)), Decimal("1.00"))

    def test_multi_day_span_counts_every_window(self) -> None:
        self.assertEqual(self._night(_utc(2026, 1, 12, 12), _utc(2026, 1, 14, 12)), Decimal("16.00"))


class LeaveFractionTests(unittest.TestCase):
    def test_leave_inside_period_counts_fully(self) -> None:
        fraction = leave_overlap_fraction(
            start_date=date(2026, 1, 5),
            end_date=date(2026, 1, 9),
            period_start=_utc(2026, 1, 1),
            period_end=_utc(2026, 2, 1),
            tz=LISBON,
        )
        self.assertEqual(fraction, Decimal("1"))
        self.assertEqual(attribute_leave_days(5, fraction), Decimal("5.00"))

    def test_leave_straddling_period_end_is_prorated(self) -> None:
        fraction = leave_overlap_fraction(
            start_date=date(2026, 1, 29),
            end_date=date(2026, 2, 1),
            period_start=_utc(2026, 1, 1),
            period_end=_utc(2026, 2, 1),
            tz=LISBON,
        )
        self.assertEqual(fraction, Decimal("0.75"))
        self.assertEqual(attribute_leave_days(4, fraction), Decimal("3.00"))

    def test_leave_outside_period_counts_nothing(self) -> None:
        fraction = leave_overlap_fraction(
            start_date=date(2026, 3, 1),
            end_date=date(2026, 3, 2),
            period_start=_utc(2026, 1, 1),
            period_end=_utc(2026, 2, 1),
            tz=LISBON,
        )
        self.assertEqual(fraction, Decimal("0"))


class TotalAmountTests(unittest.TestCase):
    def test_overtime_uses_multiplier(self) -> None:
        amount = calculate_total_amount(
            regular_hours=Decimal("40.00"),
            overtime_hours=Decimal("2.00"),
            hourly_rate=Decimal("10.00"),
            overtime_multiplier=Decimal("1.5"),
        )
        self.assertEqual(amount, Decimal("430.00"))

    def test_missing_rate_yields_no_amount(self) -> None:
        amount = calculate_total_amount(
            regular_hours=Decimal("8.00"),
            overtime_hours=Decimal("0.00"),
            hourly_rate=None,
            overtime_multiplier=Decimal("1.5"),
        )
        self.assertIsNone(amount)


class OverlapSplitTests(unittest.TestCase):
    def test_later_overlapping_record_is_reported_not_counted(self) -> None:
        first = SimpleNamespace(id=1, check_in_time=_utc(2026, 1, 12, 8), check_out_time=_utc(2026, 1, 12, 16))
        overlapping = SimpleNamespace(id=2, check_in_time=_utc(2026, 1, 12, 12), check_out_time=_utc(2026, 1, 12, 20))
        nested = SimpleNamespace(id=3, check_in_time=_utc(2026, 1, 12, 9), check_out_time=_utc(2026, 1, 12, 10))
        next_day = SimpleNamespace(id=4, check_in_time=_utc(2026, 1, 13, 8), check_out_time=_utc(2026, 1, 13, 16))

        split = split_overlapping_records([overlapping, next_day, first, nested])

        self.assertEqual([item.id for item in split.counted], [1, 4])
        self.assertEqual(
            split.anomalies,
            [
                {"type": "overlapping-record", "record_id": 3, "overlaps_record_id": 1},
                {"type": "overlapping-record", "record_id": 2, "overlaps_record_id": 1},
            ],
        )

    def test_back_to_back_records_do_not_overlap(self) -> None:
        morning = SimpleNamespace(id=1, check_in_time=_utc(2026, 1, 12, 8), check_out_time=_utc(2026, 1, 12, 12))
        afternoon = SimpleNamespace(id=2, check_in_time=_utc(2026, 1, 12, 12), check_out_time=_utc(2026, 1, 12, 16))

        split = split_overlapping_records([morning, afternoon])

        self.assertEqual([item.id for item in split.counted], [1, 2])
        self.assertEqual(split.anomalies, [])

    def test_carried_over_record_blocks_overlap_but_is_not_counted(self) -> None:
        night_shift = SimpleNamespace(id=1, check_in_time=_utc(2026, 1, 31, 20), check_out_time=_utc(2026, 2, 1, 4))
        duplicate = SimpleNamespace(id=2, check_in_time=_utc(2026, 1, 31, 22), check_out_time=_utc(2026, 2, 1, 6))
        overlapping = SimpleNamespace(id=3, check_in_time=_utc(2026, 2, 1, 2), check_out_time=_utc(2026, 2, 1, 10))
        later = SimpleNamespace(id=4, check_in_time=_utc(2026, 2, 1, 10), check_out_time=_utc(2026, 2, 1, 12))

        split = split_overlapping_records([later, overlapping], carried_over=[duplicate, night_shift])

        self.assertEqual([item.id for item in split.counted], [4])
        self.assertEqual(
            split.anomalies,
            [{"type": "overlapping-record", "record_id": 3, "overlaps_record_id": 1}],
        )


if __name__ == "__main__":
    unittest.main()
