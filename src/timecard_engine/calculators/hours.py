"""Hours calculator: daily entries in, aggregate totals (and pay) out.

Pure and deterministic. Validation of individual entries (negative hours,
bad clock times) happens when entries are written; by the time entries reach
the calculator they are trusted.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Protocol

from timecard_engine.config import OvertimePolicy
from timecard_engine.errors import ConstraintViolation

ZERO = Decimal("0.00")
CENT = Decimal("0.01")

# Overtime pay when a rate carries no explicit overtime rate
OVERTIME_MULTIPLIER = Decimal("1.5")

# Shifts longer than this need manual review and are refused at write time
MAX_SHIFT_HOURS = Decimal("20")


def quantize_hours(value: Decimal) -> Decimal:
    """Round hours (or money) to two decimal places."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def as_utc(value: datetime | None) -> datetime | None:
    """Normalize a clock time to aware UTC; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class HoursSource(Protocol):
    """Anything carrying a work date and hours (DailyEntry, test doubles)."""

    work_date: date
    hours_worked: Decimal


class ClockedSource(HoursSource, Protocol):
    check_in: datetime | None
    check_out: datetime | None
    break_minutes: int


@dataclass(frozen=True)
class PayRate:
    """
    A worker's pay rate on a project.

    Attributes:
        base_rate: Hourly rate for regular hours (or the day rate fallback).
        time_type: "hourly" pays per hour; "daily" pays a flat amount for
            every date with hours worked.
        overtime_rate: Hourly rate for overtime hours. Defaults to
            base_rate * OVERTIME_MULTIPLIER.
        daily_rate: Flat amount per worked date for "daily" rates. Defaults
            to base_rate.
    """

    base_rate: Decimal
    time_type: str = "hourly"
    overtime_rate: Decimal | None = None
    daily_rate: Decimal | None = None

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.time_type not in ("hourly", "daily"):
            raise ValueError(f"Unknown time_type: {self.time_type}")
        for name in ("base_rate", "overtime_rate", "daily_rate"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValueError(f"{name} cannot be negative")

    def day_pay(self, regular_hours: Decimal, overtime_hours: Decimal) -> Decimal:
        """Pay for one work date."""
        if self.time_type == "daily":
            if regular_hours + overtime_hours <= 0:
                return ZERO
            return quantize_hours(self.daily_rate if self.daily_rate is not None else self.base_rate)

        overtime_rate = self.overtime_rate
        if overtime_rate is None:
            overtime_rate = self.base_rate * OVERTIME_MULTIPLIER
        return quantize_hours(regular_hours * self.base_rate + overtime_hours * overtime_rate)


@dataclass(frozen=True)
class DayBreakdown:
    """Regular/overtime split (and pay) for one work date."""

    work_date: date
    hours: Decimal
    regular_hours: Decimal
    overtime_hours: Decimal
    pay: Decimal = ZERO


@dataclass(frozen=True)
class HoursTotals:
    """Aggregate totals for one timecard."""

    total_hours: Decimal = ZERO
    regular_hours: Decimal = ZERO
    overtime_hours: Decimal = ZERO
    total_pay: Decimal = ZERO
    days: tuple[DayBreakdown, ...] = ()

    @property
    def entry_count(self) -> int:
        return len(self.days)


class HoursCalculator:
    """Turns a set of daily entries into totals under an overtime policy.

    Rules, applied in work-date order:
    1. Daily: hours above ``daily_threshold`` on one date are overtime.
    2. Weekly: regular hours accumulated within one ISO week beyond
       ``weekly_threshold`` become overtime.

    Without a policy every hour is regular. Given a PayRate, each date is
    priced from its regular/overtime split and total_pay is their sum;
    without one, pay is zero.
    """

    def __init__(self, policy: OvertimePolicy | None = None):
        self.policy = policy or OvertimePolicy()

    def calculate(
        self,
        entries: Iterable[HoursSource],
        rate: PayRate | None = None,
    ) -> HoursTotals:
        ordered = sorted(entries, key=lambda e: e.work_date)
        if not ordered:
            return HoursTotals()

        daily = self.policy.daily_threshold
        weekly = self.policy.weekly_threshold
        week_regular: dict[tuple[int, int], Decimal] = defaultdict(lambda: ZERO)

        days: list[DayBreakdown] = []
        for entry in ordered:
            hours = quantize_hours(entry.hours_worked)
            regular = hours if daily is None else min(hours, daily)
            overtime = hours - regular

            if weekly is not None:
                iso = entry.work_date.isocalendar()
                week = (iso[0], iso[1])
                available = max(weekly - week_regular[week], ZERO)
                if regular > available:
                    overtime += regular - available
                    regular = available
                week_regular[week] += regular

            regular, overtime = quantize_hours(regular), quantize_hours(overtime)
            days.append(
                DayBreakdown(
                    work_date=entry.work_date,
                    hours=hours,
                    regular_hours=regular,
                    overtime_hours=overtime,
                    pay=rate.day_pay(regular, overtime) if rate is not None else ZERO,
                )
            )

        return HoursTotals(
            total_hours=quantize_hours(sum((d.hours for d in days), ZERO)),
            regular_hours=quantize_hours(sum((d.regular_hours for d in days), ZERO)),
            overtime_hours=quantize_hours(sum((d.overtime_hours for d in days), ZERO)),
            total_pay=quantize_hours(sum((d.pay for d in days), ZERO)),
            days=tuple(days),
        )


def shift_hours(check_in: datetime, check_out: datetime, break_minutes: int = 0) -> Decimal:
    """Hours worked between clock-in and clock-out, net of the break.

    Raises ConstraintViolation for an inverted shift, a break at least as long
    as the shift, or a shift over MAX_SHIFT_HOURS.
    """
    check_in, check_out = as_utc(check_in), as_utc(check_out)
    if check_out <= check_in:
        raise ConstraintViolation("check_out must be after check_in", field="check_out")

    shift_minutes = Decimal((check_out - check_in).total_seconds()) / Decimal(60)
    if shift_minutes / 60 > MAX_SHIFT_HOURS:
        raise ConstraintViolation(
            f"Shift exceeds {MAX_SHIFT_HOURS}-hour limit and requires manual review",
            field="check_out",
        )
    if break_minutes < 0:
        raise ConstraintViolation("break_minutes cannot be negative", field="break_minutes")
    if break_minutes >= shift_minutes:
        raise ConstraintViolation(
            "break_minutes must be shorter than the shift",
            field="break_minutes",
        )

    return quantize_hours((shift_minutes - break_minutes) / 60)


def missing_break_dates(
    entries: Iterable[ClockedSource],
    required_after_hours: Decimal | None,
) -> list[date]:
    """Work dates whose clocked shift is long enough to need a break but has none."""
    if required_after_hours is None:
        return []

    missing = []
    for entry in entries:
        if entry.check_in is None or entry.check_out is None:
            continue
        shift = Decimal((as_utc(entry.check_out) - as_utc(entry.check_in)).total_seconds()) / Decimal(3600)
        if shift > required_after_hours and not entry.break_minutes:
            missing.append(entry.work_date)
    return sorted(missing)
