"""Rejection tracker: the field names an approver flags on rejection."""

from __future__ import annotations

from typing import Iterable

from timecard_engine.errors import ConstraintViolation
from timecard_engine.models import AuditAction, AuditLogEntry, TimecardHeader
from timecard_engine.services.audit_log import ChangeSet


class RejectionTracker:
    """Writes and clears a timecard's rejected_fields set.

    Flagging records one rejection_edit change per field (unflagged → flagged)
    plus the header changes (rejected_fields, rejection_reason) that the
    caller writes under its own action type.
    """

    @staticmethod
    def validate(fields: Iterable[str], reason: str) -> frozenset[str]:
        """Check rejection input before anything is mutated."""
        if isinstance(fields, str):
            raise ConstraintViolation(
                "Rejected fields must be a collection of field names",
                field="rejected_fields",
            )
        flagged = frozenset(fields)
        if not flagged:
            raise ConstraintViolation(
                "At least one field must be flagged when rejecting",
                field="rejected_fields",
            )
        for name in flagged:
            if not isinstance(name, str) or not name.strip():
                raise ConstraintViolation(
                    f"Invalid rejected field name {name!r}",
                    field="rejected_fields",
                )
        if not reason or not reason.strip():
            raise ConstraintViolation("A rejection reason is required", field="reason")
        return flagged

    def flag(
        self,
        header: TimecardHeader,
        fields: frozenset[str],
        reason: str,
        changes: ChangeSet,
    ) -> None:
        """Store the flagged fields verbatim and record one flag per field."""
        for name in sorted(fields):
            changes.record_flag(name)
        changes.assign(header, "rejected_fields", sorted(fields))
        changes.assign(header, "rejection_reason", reason)

    def clear(self, header: TimecardHeader, changes: ChangeSet) -> None:
        """Clear the flagged fields (on resubmission)."""
        changes.assign(header, "rejected_fields", [])
        changes.assign(header, "rejection_reason", None)


def rejected_fields_from_audit(trail: Iterable[AuditLogEntry]) -> frozenset[str]:
    """Every field name ever flagged in a rejection, read off an audit trail."""
    return frozenset(
        entry.field_name
        for entry in trail
        if entry.action_type == AuditAction.REJECTION_EDIT.value
    )
