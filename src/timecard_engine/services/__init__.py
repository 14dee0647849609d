"""Timecard services."""

from timecard_engine.services.audit_log import (
    AuditFilter,
    AuditGroup,
    AuditLogService,
    AuditStatistics,
    ChangeSet,
    ReplayedState,
    audited_state,
    replay_audit_trail,
)
from timecard_engine.services.daily_entries import DailyEntryStore
from timecard_engine.services.rejection import RejectionTracker, rejected_fields_from_audit
from timecard_engine.services.state_machine import (
    TimecardStateMachine,
    TimecardStatus,
    Transition,
)
from timecard_engine.services.timecard_service import TimecardService

__all__ = [
    "AuditFilter",
    "AuditGroup",
    "AuditLogService",
    "AuditStatistics",
    "ChangeSet",
    "DailyEntryStore",
    "RejectionTracker",
    "ReplayedState",
    "TimecardService",
    "TimecardStateMachine",
    "TimecardStatus",
    "Transition",
    "audited_state",
    "rejected_fields_from_audit",
    "replay_audit_trail",
]
