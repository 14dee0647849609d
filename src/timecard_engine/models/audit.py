"""Append-only audit log of field-level timecard changes."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from timecard_engine.errors import ConstraintViolation
from timecard_engine.models.base import Base, utcnow

if TYPE_CHECKING:
    from timecard_engine.models.timecard import TimecardHeader


class AuditAction(str, Enum):
    """Closed set of audit action types."""

    USER_EDIT = "user_edit"
    ADMIN_EDIT = "admin_edit"
    REJECTION_EDIT = "rejection_edit"

    @classmethod
    def parse(cls, value: str | AuditAction) -> AuditAction:
        """Coerce a raw value, raising ConstraintViolation for anything unknown."""
        try:
            return cls(value)
        except ValueError:
            raise ConstraintViolation(
                f"Unknown audit action_type '{value}'",
                field="action_type",
            ) from None


class AuditLogEntry(Base):
    """Immutable record of one field's change during one transition."""

    __tablename__ = "timecard_audit_log"

    # Monotonic; defines oldest-first ordering within a timecard
    audit_log_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timecard_id: Mapped[UUID] = mapped_column(
        ForeignKey("timecard_header.timecard_id"),
        nullable=False,
    )
    change_id: Mapped[UUID] = mapped_column(nullable=False)
    field_name: Mapped[str] = mapped_column(String, nullable=False)
    old_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    new_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    changed_by: Mapped[UUID] = mapped_column(nullable=False)
    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    action_type: Mapped[str] = mapped_column(String, nullable=False)
    work_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "action_type IN ('user_edit', 'admin_edit', 'rejection_edit')",
            name="timecard_audit_log_action_type_check",
        ),
        Index("timecard_audit_log_timecard_idx", "timecard_id", "audit_log_id"),
        Index("timecard_audit_log_change_idx", "change_id"),
    )

    # Relationships
    timecard: Mapped[TimecardHeader] = relationship()

    @validates("action_type")
    def _validate_action_type(self, key: str, value: str | AuditAction) -> str:
        return AuditAction.parse(value).value


@event.listens_for(AuditLogEntry, "before_update")
def _reject_audit_update(mapper, connection, target: AuditLogEntry) -> None:
    raise ConstraintViolation(
        f"Audit log entry {target.audit_log_id} is append-only and cannot be updated",
        field="audit_log",
    )


@event.listens_for(AuditLogEntry, "before_delete")
def _reject_audit_delete(mapper, connection, target: AuditLogEntry) -> None:
    raise ConstraintViolation(
        f"Audit log entry {target.audit_log_id} is append-only and cannot be deleted",
        field="audit_log",
    )
