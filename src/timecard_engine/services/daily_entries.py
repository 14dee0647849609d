"""Daily entry store: writes one timecard's per-date entries and keeps totals current."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Mapping
from uuid import uuid4

from timecard_engine.calculators import (
    HoursCalculator,
    HoursTotals,
    as_utc,
    quantize_hours,
    shift_hours,
)
from timecard_engine.errors import ConstraintViolation, InvalidTransition, NotFound
from timecard_engine.models import DailyEntry, TimecardHeader, utcnow
from timecard_engine.providers import PayRateProvider
from timecard_engine.schemas import EntryFields, parse_input
from timecard_engine.services.audit_log import ENTRY_AUDITED_FIELDS, ChangeSet
from timecard_engine.services.state_machine import TimecardStateMachine, status_value


@dataclass(frozen=True)
class PreparedEntry:
    """A validated entry write, resolved to final field values."""

    work_date: date
    values: dict[str, Any] = field(default_factory=dict)
    delete: bool = False


class DailyEntryStore:
    """Validates and applies daily entry writes on a loaded timecard.

    Entries are writable only while the timecard is in draft or inside an
    edit-and-return. Every write records its field changes and recomputes the
    header totals (and pay, when the worker has a rate) through the hours
    calculator.
    """

    def __init__(
        self,
        calculator: HoursCalculator,
        pay_rates: PayRateProvider | None = None,
    ):
        self.calculator = calculator
        self.pay_rates = pay_rates

    def prepare(
        self,
        header: TimecardHeader,
        work_date: date,
        fields: EntryFields | Mapping[str, Any] | None = None,
        *,
        delete: bool = False,
        operation: str = "upsert_entry",
    ) -> PreparedEntry:
        """Validate a write without touching the timecard."""
        if not TimecardStateMachine.can_modify_entries(header.status):
            raise InvalidTransition(
                status_value(header.status),
                operation,
                "daily entries can only change in draft or during an edit-and-return",
            )

        existing = header.entry_for(work_date)
        if delete:
            if existing is None:
                raise NotFound("DailyEntry", f"{header.timecard_id}@{work_date.isoformat()}")
            return PreparedEntry(work_date=work_date, delete=True)

        if not header.covers(work_date):
            raise ConstraintViolation(
                f"Work date {work_date.isoformat()} is outside the timecard period "
                f"{header.period_start.isoformat()} to {header.period_end.isoformat()}",
                field="work_date",
            )

        given = parse_input(EntryFields, fields or {}).model_dump(exclude_unset=True)
        if existing is not None:
            merged = dict(existing.audited_values())
        else:
            merged = {name: None for name in ENTRY_AUDITED_FIELDS}
        merged.update(given)

        merged["break_minutes"] = merged["break_minutes"] or 0
        merged["check_in"] = as_utc(merged["check_in"])
        merged["check_out"] = as_utc(merged["check_out"])

        if merged["check_in"] is not None and merged["check_out"] is not None:
            derived = shift_hours(merged["check_in"], merged["check_out"], merged["break_minutes"])
            supplied = given.get("hours_worked")
            if supplied is not None and quantize_hours(supplied) != derived:
                raise ConstraintViolation(
                    f"hours_worked {quantize_hours(supplied)} does not match "
                    f"clock times ({derived} hours)",
                    field="hours_worked",
                )
            merged["hours_worked"] = derived
        elif merged["hours_worked"] is None:
            raise ConstraintViolation(
                "hours_worked is required unless both check_in and check_out are given",
                field="hours_worked",
            )
        else:
            merged["hours_worked"] = quantize_hours(merged["hours_worked"])

        if merged["hours_worked"] < 0:
            raise ConstraintViolation("hours_worked cannot be negative", field="hours_worked")

        return PreparedEntry(work_date=work_date, values=merged)

    def apply(
        self,
        header: TimecardHeader,
        prepared: PreparedEntry,
        changes: ChangeSet,
    ) -> DailyEntry | None:
        """Apply a prepared write, recording every changed field."""
        entry = header.entry_for(prepared.work_date)

        if prepared.delete:
            for name, old in entry.audited_values().items():
                changes.record(name, old, None, work_date=prepared.work_date)
            header.entries.remove(entry)
            return None

        if entry is None:
            entry = DailyEntry(
                daily_entry_id=uuid4(),
                timecard_id=header.timecard_id,
                work_date=prepared.work_date,
            )
            header.entries.append(entry)
        else:
            entry.updated_at = utcnow()

        for name, value in prepared.values.items():
            changes.assign(entry, name, value, work_date=prepared.work_date)
        return entry

    def upsert(
        self,
        header: TimecardHeader,
        work_date: date,
        fields: EntryFields | Mapping[str, Any],
        changes: ChangeSet,
    ) -> DailyEntry:
        """Create or update the entry for a work date and refresh totals."""
        prepared = self.prepare(header, work_date, fields)
        entry = self.apply(header, prepared, changes)
        self.refresh_totals(header, changes)
        return entry

    def delete(self, header: TimecardHeader, work_date: date, changes: ChangeSet) -> None:
        """Remove the entry for a work date and refresh totals."""
        prepared = self.prepare(header, work_date, delete=True, operation="delete_entry")
        self.apply(header, prepared, changes)
        self.refresh_totals(header, changes)

    def refresh_totals(self, header: TimecardHeader, changes: ChangeSet) -> HoursTotals:
        """Recompute header totals and pay from the current entries."""
        rate = None
        if self.pay_rates is not None:
            rate = self.pay_rates.pay_rate_for(header.worker_id, header.project_id)
        totals = self.calculator.calculate(header.entries, rate)
        changes.assign(header, "total_hours", totals.total_hours)
        changes.assign(header, "regular_hours", totals.regular_hours)
        changes.assign(header, "overtime_hours", totals.overtime_hours)
        changes.assign(header, "total_pay", totals.total_pay)
        return totals

