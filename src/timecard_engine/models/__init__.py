"""ORM models for the timecard engine."""

from timecard_engine.models.audit import AuditAction, AuditLogEntry
from timecard_engine.models.base import Base, TimestampMixin, utcnow
from timecard_engine.models.timecard import DailyEntry, TimecardHeader

__all__ = [
    "AuditAction",
    "AuditLogEntry",
    "Base",
    "DailyEntry",
    "TimecardHeader",
    "TimestampMixin",
    "utcnow",
]
