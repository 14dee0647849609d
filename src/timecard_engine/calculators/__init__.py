"""Timecard hours and pay calculation."""

from timecard_engine.calculators.hours import (
    MAX_SHIFT_HOURS,
    OVERTIME_MULTIPLIER,
    ZERO,
    DayBreakdown,
    HoursCalculator,
    HoursTotals,
    PayRate,
    as_utc,
    missing_break_dates,
    quantize_hours,
    shift_hours,
)

__all__ = [
    "MAX_SHIFT_HOURS",
    "OVERTIME_MULTIPLIER",
    "ZERO",
    "DayBreakdown",
    "HoursCalculator",
    "HoursTotals",
    "PayRate",
    "as_utc",
    "missing_break_dates",
    "quantize_hours",
    "shift_hours",
]
