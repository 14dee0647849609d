"""Timecard header and daily entry models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from timecard_engine.models.base import Base, TimestampMixin


class TimecardHeader(Base, TimestampMixin):
    """One worker's timecard for one project period."""

    __tablename__ = "timecard_header"

    timecard_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    worker_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    project_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")

    # Derived from entries by the hours calculator
    total_hours: Mapped[Decimal] = mapped_column(
        Numeric(8, 2), nullable=False, default=Decimal("0.00")
    )
    regular_hours: Mapped[Decimal] = mapped_column(
        Numeric(8, 2), nullable=False, default=Decimal("0.00")
    )
    overtime_hours: Mapped[Decimal] = mapped_column(
        Numeric(8, 2), nullable=False, default=Decimal("0.00")
    )
    total_pay: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0.00")
    )

    # Review workflow
    rejected_fields: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    edit_comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    admin_edited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_edited_by: Mapped[UUID | None] = mapped_column(nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[UUID | None] = mapped_column(nullable=True)
    resubmission_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Optimistic concurrency
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "worker_id",
            "project_id",
            "period_start",
            name="timecard_header_worker_period_unique",
        ),
        CheckConstraint(
            "status IN ('draft', 'submitted', 'approved', 'rejected', 'edit_returned')",
            name="timecard_header_status_check",
        ),
        CheckConstraint("period_end >= period_start", name="timecard_header_dates_check"),
        CheckConstraint("total_hours >= 0", name="timecard_header_total_hours_check"),
        CheckConstraint("total_pay >= 0", name="timecard_header_total_pay_check"),
    )

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    entries: Mapped[list[DailyEntry]] = relationship(
        back_populates="timecard",
        cascade="all, delete-orphan",
        order_by="DailyEntry.work_date",
    )

    def entry_for(self, work_date: date) -> DailyEntry | None:
        """Find the entry for a work date, if any."""
        for entry in self.entries:
            if entry.work_date == work_date:
                return entry
        return None

    def covers(self, work_date: date) -> bool:
        """Check if a work date falls inside this timecard's period."""
        return self.period_start <= work_date <= self.period_end


class DailyEntry(Base, TimestampMixin):
    """One day's worked time within a timecard."""

    __tablename__ = "timecard_daily_entry"

    daily_entry_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    timecard_id: Mapped[UUID] = mapped_column(
        ForeignKey("timecard_header.timecard_id", ondelete="CASCADE"),
        nullable=False,
    )
    work_date: Mapped[date] = mapped_column(Date, nullable=False)
    hours_worked: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False)
    check_in: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    check_out: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    break_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("timecard_id", "work_date", name="timecard_daily_entry_date_unique"),
        CheckConstraint("hours_worked >= 0", name="timecard_daily_entry_hours_check"),
        CheckConstraint("break_minutes >= 0", name="timecard_daily_entry_break_check"),
    )

    # Relationships
    timecard: Mapped[TimecardHeader] = relationship(back_populates="entries")

    def audited_values(self) -> dict[str, Any]:
        """The entry fields tracked by the audit log."""
        return {
            "hours_worked": self.hours_worked,
            "check_in": self.check_in,
            "check_out": self.check_out,
            "break_minutes": self.break_minutes,
        }
