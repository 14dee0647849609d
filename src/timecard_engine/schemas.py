"""Pydantic schemas for timecard inputs and snapshots."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Mapping
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from timecard_engine.errors import ConstraintViolation


# ============================================================================
# Input schemas
# ============================================================================


class EntryFields(BaseModel):
    """Writable daily entry fields. Only the fields set are applied."""

    model_config = ConfigDict(extra="forbid")

    hours_worked: Decimal | None = Field(default=None, ge=0)
    check_in: datetime | None = None
    check_out: datetime | None = None
    break_minutes: int | None = Field(default=None, ge=0)


class EntryChange(EntryFields):
    """One daily entry change inside an edit-and-return."""

    work_date: date
    delete: bool = False


def parse_input(schema: type[BaseModel], data: BaseModel | Mapping[str, Any]) -> Any:
    """Validate caller input, raising ConstraintViolation on the first bad field."""
    if isinstance(data, schema):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump(exclude_unset=True)
    try:
        return schema.model_validate(data)
    except ValidationError as exc:
        error = exc.errors()[0]
        loc = error.get("loc") or ()
        field_name = str(loc[0]) if loc else None
        raise ConstraintViolation(
            f"Invalid {field_name or 'input'}: {error.get('msg')}",
            field=field_name,
        ) from exc


# ============================================================================
# Snapshot schemas
# ============================================================================


class DailyEntrySnapshot(BaseModel):
    """Daily entry as returned to callers."""

    model_config = ConfigDict(from_attributes=True)

    daily_entry_id: UUID
    work_date: date
    hours_worked: Decimal
    check_in: datetime | None = None
    check_out: datetime | None = None
    break_minutes: int


class TimecardSnapshot(BaseModel):
    """Header + entries + rejected fields."""

    model_config = ConfigDict(from_attributes=True)

    timecard_id: UUID
    worker_id: UUID
    project_id: UUID
    period_start: date
    period_end: date
    status: str
    total_hours: Decimal
    regular_hours: Decimal
    overtime_hours: Decimal
    total_pay: Decimal = Decimal("0.00")
    rejected_fields: frozenset[str] = frozenset()
    rejection_reason: str | None = None
    edit_comments: str | None = None
    admin_notes: str | None = None
    admin_edited: bool = False
    last_edited_by: UUID | None = None
    submitted_at: datetime | None = None
    approved_at: datetime | None = None
    approved_by: UUID | None = None
    resubmission_count: int = 0
    version: int
    created_at: datetime
    updated_at: datetime
    entries: list[DailyEntrySnapshot] = Field(default_factory=list)


class AuditEntryView(BaseModel):
    """One audit log entry as returned to callers."""

    model_config = ConfigDict(from_attributes=True)

    audit_log_id: int
    timecard_id: UUID
    change_id: UUID
    field_name: str
    old_value: str | None = None
    new_value: str | None = None
    changed_by: UUID
    changed_at: datetime
    action_type: str
    work_date: date | None = None


class AuditGroupView(BaseModel):
    """Audit entries of one change batch."""

    model_config = ConfigDict(from_attributes=True)

    change_id: UUID
    changed_at: datetime
    changed_by: UUID
    action_types: list[str]
    changes: list[AuditEntryView]
