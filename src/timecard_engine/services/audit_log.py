"""Audit log service: field-level change ledger for timecards.

Every transition collects its field changes in a ChangeSet and hands them to
AuditLogService.record_changes, which writes one AuditLogEntry per changed
field, all sharing one change_id. Values are stored as strings so the trail
can be replayed to reconstruct a timecard's current values.
"""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Sequence
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from timecard_engine.models import AuditAction, AuditLogEntry, DailyEntry, TimecardHeader, utcnow

# Header fields tracked by the audit log, in display order
HEADER_AUDITED_FIELDS = (
    "status",
    "total_hours",
    "regular_hours",
    "overtime_hours",
    "total_pay",
    "rejected_fields",
    "rejection_reason",
    "edit_comments",
    "admin_notes",
    "admin_edited",
    "submitted_at",
    "approved_at",
    "approved_by",
    "resubmission_count",
)

# Daily entry fields tracked by the audit log (audited with work_date set)
ENTRY_AUDITED_FIELDS = ("hours_worked", "check_in", "check_out", "break_minutes")

# Action types whose values describe data (rejection flags do not)
DATA_ACTIONS = frozenset({AuditAction.USER_EDIT.value, AuditAction.ADMIN_EDIT.value})


def format_value(value: Any) -> str | None:
    """Canonical string form of a field value for the audit log."""
    if value is None:
        return None
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return f"{value:.2f}"
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (list, set, frozenset, tuple)):
        return json.dumps(sorted(str(v) for v in value))
    return str(value)


@dataclass(frozen=True)
class FieldChange:
    """One field's old → new value, ready to be written to the audit log."""

    field_name: str
    old_value: str | None
    new_value: str | None
    work_date: date | None = None
    action_type: AuditAction | None = None  # overrides the batch action


class ChangeSet:
    """Collects the field changes of one transition.

    ``assign`` mutates the target and records the change in one step, so a
    field cannot change without an audit entry. Unchanged values are skipped.
    """

    def __init__(self) -> None:
        self.changes: list[FieldChange] = []

    def __len__(self) -> int:
        return len(self.changes)

    def __iter__(self):
        return iter(self.changes)

    def assign(
        self,
        target: Any,
        field_name: str,
        value: Any,
        work_date: date | None = None,
    ) -> bool:
        """Set ``target.field_name`` and record the change. Returns True if it changed."""
        old = getattr(target, field_name)
        if format_value(old) == format_value(value):
            return False
        setattr(target, field_name, value)
        self.record(field_name, old, value, work_date=work_date)
        return True

    def record(
        self,
        field_name: str,
        old: Any,
        new: Any,
        work_date: date | None = None,
        action_type: AuditAction | None = None,
    ) -> None:
        """Record a change that was applied some other way."""
        old_text, new_text = format_value(old), format_value(new)
        if old_text == new_text:
            return
        self.changes.append(
            FieldChange(
                field_name=field_name,
                old_value=old_text,
                new_value=new_text,
                work_date=work_date,
                action_type=action_type,
            )
        )

    def record_flag(self, field_name: str) -> None:
        """Record a rejection flag on a field (describes the flag, not the data)."""
        self.changes.append(
            FieldChange(
                field_name=field_name,
                old_value="unflagged",
                new_value="flagged",
                action_type=AuditAction.REJECTION_EDIT,
            )
        )


@dataclass(frozen=True)
class AuditFilter:
    """Optional filters for audit trail queries."""

    action_types: Sequence[str | AuditAction] | None = None
    field_names: Sequence[str] | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    limit: int | None = None
    offset: int = 0


@dataclass
class AuditGroup:
    """Audit entries sharing one change_id (one transition)."""

    change_id: UUID
    changed_at: datetime
    changed_by: UUID
    action_types: list[str]
    changes: list[AuditLogEntry] = field(default_factory=list)


@dataclass(frozen=True)
class AuditStatistics:
    """Entry counts for one timecard's audit trail."""

    total_entries: int
    total_changes: int
    user_edits: int
    admin_edits: int
    rejection_edits: int
    last_changed_at: datetime | None


class AuditLogService:
    """Append-only writer and reader for timecard audit entries."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def record_changes(
        self,
        timecard_id: UUID,
        changes: Iterable[FieldChange],
        changed_by: UUID,
        action_type: str | AuditAction,
        change_id: UUID | None = None,
    ) -> list[AuditLogEntry]:
        """Add one audit entry per change, all sharing one change_id.

        The action type is validated before anything is added to the session.
        Returns the new entries (not yet flushed).
        """
        default_action = AuditAction.parse(action_type)
        change_id = change_id or uuid4()
        changed_at = utcnow()

        entries = [
            AuditLogEntry(
                timecard_id=timecard_id,
                change_id=change_id,
                field_name=change.field_name,
                old_value=change.old_value,
                new_value=change.new_value,
                changed_by=changed_by,
                changed_at=changed_at,
                action_type=(change.action_type or default_action).value,
                work_date=change.work_date,
            )
            for change in changes
        ]
        self.session.add_all(entries)
        return entries

    async def get_audit_trail(
        self,
        timecard_id: UUID,
        audit_filter: AuditFilter | None = None,
    ) -> list[AuditLogEntry]:
        """Audit entries for a timecard, oldest first."""
        query = select(AuditLogEntry).where(AuditLogEntry.timecard_id == timecard_id)

        if audit_filter is not None:
            if audit_filter.action_types:
                actions = [AuditAction.parse(a).value for a in audit_filter.action_types]
                query = query.where(AuditLogEntry.action_type.in_(actions))
            if audit_filter.field_names:
                query = query.where(AuditLogEntry.field_name.in_(list(audit_filter.field_names)))
            if audit_filter.date_from is not None:
                query = query.where(AuditLogEntry.changed_at >= audit_filter.date_from)
            if audit_filter.date_to is not None:
                query = query.where(AuditLogEntry.changed_at <= audit_filter.date_to)

        query = query.order_by(AuditLogEntry.audit_log_id.asc())

        if audit_filter is not None:
            if audit_filter.offset:
                query = query.offset(audit_filter.offset)
            if audit_filter.limit is not None:
                query = query.limit(audit_filter.limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_grouped_audit_trail(
        self,
        timecard_id: UUID,
        audit_filter: AuditFilter | None = None,
    ) -> list[AuditGroup]:
        """Audit entries grouped by change_id, oldest group first."""
        groups: dict[UUID, AuditGroup] = {}
        for entry in await self.get_audit_trail(timecard_id, audit_filter):
            group = groups.get(entry.change_id)
            if group is None:
                group = AuditGroup(
                    change_id=entry.change_id,
                    changed_at=entry.changed_at,
                    changed_by=entry.changed_by,
                    action_types=[],
                )
                groups[entry.change_id] = group
            if entry.action_type not in group.action_types:
                group.action_types.append(entry.action_type)
            group.changes.append(entry)
        return list(groups.values())

    async def get_statistics(self, timecard_id: UUID) -> AuditStatistics:
        """Count entries per action type."""
        entries = await self.get_audit_trail(timecard_id)
        by_action = Counter(e.action_type for e in entries)
        return AuditStatistics(
            total_entries=len(entries),
            total_changes=len({e.change_id for e in entries}),
            user_edits=by_action[AuditAction.USER_EDIT.value],
            admin_edits=by_action[AuditAction.ADMIN_EDIT.value],
            rejection_edits=by_action[AuditAction.REJECTION_EDIT.value],
            last_changed_at=entries[-1].changed_at if entries else None,
        )


@dataclass
class ReplayedState:
    """Field values reconstructed from (or read off) a timecard, as audit strings."""

    header: dict[str, str | None] = field(default_factory=dict)
    entries: dict[date, dict[str, str | None]] = field(default_factory=dict)


def replay_audit_trail(entries: Iterable[AuditLogEntry]) -> ReplayedState:
    """Re-apply the data changes of an audit trail in order.

    Rejection flags are skipped: they describe the review, not field values.
    An entry whose fields have all become null was deleted.
    """
    state = ReplayedState(header={name: None for name in HEADER_AUDITED_FIELDS})
    for entry in entries:
        if entry.action_type not in DATA_ACTIONS:
            continue
        if entry.work_date is None:
            state.header[entry.field_name] = entry.new_value
            continue
        values = state.entries.setdefault(
            entry.work_date, {name: None for name in ENTRY_AUDITED_FIELDS}
        )
        values[entry.field_name] = entry.new_value
        if all(v is None for v in values.values()):
            del state.entries[entry.work_date]
    return state


def audited_state(header: TimecardHeader) -> ReplayedState:
    """The current audited field values of a loaded timecard."""
    return ReplayedState(
        header={name: format_value(getattr(header, name)) for name in HEADER_AUDITED_FIELDS},
        entries={
            entry.work_date: _entry_values(entry)
            for entry in header.entries
        },
    )


def _entry_values(entry: DailyEntry) -> dict[str, str | None]:
    return {name: format_value(value) for name, value in entry.audited_values().items()}
