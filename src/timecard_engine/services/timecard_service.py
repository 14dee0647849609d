"""Timecard service - main orchestrator for the timecard lifecycle."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, AsyncIterator, Iterable, Mapping
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from timecard_engine.calculators import ZERO, HoursCalculator, missing_break_dates
from timecard_engine.config import OvertimePolicy, Settings, WorkflowPolicy, get_settings
from timecard_engine.errors import (
    ConcurrentModification,
    ConstraintViolation,
    InsufficientCapability,
    InvalidTransition,
    NotFound,
    TimecardError,
)
from timecard_engine.models import AuditAction, TimecardHeader, utcnow
from timecard_engine.providers import (
    AuthorizationProvider,
    Capability,
    PayRateProvider,
    ProjectPeriodProvider,
    StaticAuthorizationProvider,
)
from timecard_engine.schemas import (
    AuditEntryView,
    AuditGroupView,
    EntryChange,
    EntryFields,
    TimecardSnapshot,
    parse_input,
)
from timecard_engine.services.audit_log import (
    HEADER_AUDITED_FIELDS,
    AuditFilter,
    AuditLogService,
    AuditStatistics,
    ChangeSet,
)
from timecard_engine.services.daily_entries import DailyEntryStore
from timecard_engine.services.rejection import RejectionTracker
from timecard_engine.services.state_machine import (
    TimecardStateMachine,
    TimecardStatus,
    Transition,
    status_value,
)

logger = logging.getLogger(__name__)


class TimecardService:
    """Service for managing the timecard lifecycle.

    Operations:
    - create_timecard: Open a draft for a worker's current project period
    - upsert_entry / delete_entry: Edit daily entries of a draft
    - submit_timecard: Draft → submitted
    - approve_timecard: Submitted → approved (finalizes totals)
    - reject_timecard: Submitted → rejected, flagging problem fields
    - edit_and_return: Admin corrects entries of a submitted timecard and
      hands it back to the worker as a draft
    - resubmit_timecard: Rejected → submitted

    Each mutating operation is one unit of work: header, entries and audit
    entries are committed together or not at all. A lost race on the header
    version raises ConcurrentModification.
    """

    def __init__(
        self,
        session: AsyncSession,
        authorization: AuthorizationProvider,
        periods: ProjectPeriodProvider,
        *,
        overtime: OvertimePolicy | None = None,
        workflow: WorkflowPolicy | None = None,
        pay_rates: PayRateProvider | None = None,
    ):
        if overtime is None or workflow is None:
            settings = get_settings()
            overtime = overtime or settings.overtime
            workflow = workflow or settings.workflow
        self.session = session
        self.authorization = authorization
        self.periods = periods
        self.workflow = workflow
        self.calculator = HoursCalculator(overtime)
        self.entries = DailyEntryStore(self.calculator, pay_rates)
        self.rejections = RejectionTracker()
        self.audit = AuditLogService(session)

    @classmethod
    def from_settings(
        cls,
        session: AsyncSession,
        periods: ProjectPeriodProvider,
        roles: Mapping[UUID, str],
        *,
        pay_rates: PayRateProvider | None = None,
        settings: Settings | None = None,
    ) -> TimecardService:
        """Build a service whose policies all come from Settings.

        Roles are resolved by a StaticAuthorizationProvider under the
        configured ApprovalPolicy.
        """
        settings = settings or get_settings()
        return cls(
            session,
            StaticAuthorizationProvider(roles=roles, policy=settings.approval),
            periods,
            overtime=settings.overtime,
            workflow=settings.workflow,
            pay_rates=pay_rates,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_timecard(self, header_id: UUID) -> TimecardSnapshot:
        """Current header, entries and rejected fields."""
        result = await self.session.execute(
            select(TimecardHeader)
            .where(TimecardHeader.timecard_id == header_id)
            .options(selectinload(TimecardHeader.entries))
            .execution_options(populate_existing=True)
        )
        header = result.scalar_one_or_none()
        if header is None:
            raise NotFound("Timecard", header_id)
        return TimecardSnapshot.model_validate(header)

    async def get_audit_trail(
        self,
        header_id: UUID,
        audit_filter: AuditFilter | None = None,
    ) -> list[AuditEntryView]:
        """Audit entries for a timecard, oldest first."""
        await self._require_exists(header_id)
        trail = await self.audit.get_audit_trail(header_id, audit_filter)
        return [AuditEntryView.model_validate(entry) for entry in trail]

    async def get_grouped_audit_trail(
        self,
        header_id: UUID,
        audit_filter: AuditFilter | None = None,
    ) -> list[AuditGroupView]:
        """Audit entries grouped by change_id, oldest group first."""
        await self._require_exists(header_id)
        groups = await self.audit.get_grouped_audit_trail(header_id, audit_filter)
        return [AuditGroupView.model_validate(group) for group in groups]

    async def get_audit_statistics(self, header_id: UUID) -> AuditStatistics:
        await self._require_exists(header_id)
        return await self.audit.get_statistics(header_id)

    # ------------------------------------------------------------------
    # Drafting
    # ------------------------------------------------------------------

    async def create_timecard(
        self,
        worker_id: UUID,
        project_id: UUID,
        actor_id: UUID,
    ) -> TimecardSnapshot:
        """Open a draft timecard covering the project's current period.

        The worker may open their own timecard; anyone else needs the
        admin-edit capability. One timecard per worker, project and period.
        """
        header_id = uuid4()
        async with self._unit_of_work("create", header_id):
            if actor_id != worker_id and Capability.ADMIN_EDIT not in self._capabilities(actor_id):
                raise InsufficientCapability("none", "create", Capability.ADMIN_EDIT.value)

            period = self.periods.period_for(project_id)
            existing = await self.session.execute(
                select(TimecardHeader.timecard_id).where(
                    TimecardHeader.worker_id == worker_id,
                    TimecardHeader.project_id == project_id,
                    TimecardHeader.period_start == period.start,
                )
            )
            if existing.scalar_one_or_none() is not None:
                raise ConstraintViolation(
                    f"Worker {worker_id} already has a timecard for project "
                    f"{project_id} starting {period.start.isoformat()}",
                    field="timecard",
                )

            header = TimecardHeader(
                timecard_id=header_id,
                worker_id=worker_id,
                project_id=project_id,
                period_start=period.start,
                period_end=period.end,
                status=TimecardStatus.DRAFT.value,
                total_hours=ZERO,
                regular_hours=ZERO,
                overtime_hours=ZERO,
                total_pay=ZERO,
                rejected_fields=[],
                admin_edited=False,
                resubmission_count=0,
                last_edited_by=actor_id,
                entries=[],
            )
            self.session.add(header)

            changes = ChangeSet()
            for name in HEADER_AUDITED_FIELDS:
                changes.record(name, None, getattr(header, name))
            self._record(header, changes, actor_id)

        logger.info("Created timecard %s for worker %s by %s", header_id, worker_id, actor_id)
        return TimecardSnapshot.model_validate(header)

    async def upsert_entry(
        self,
        header_id: UUID,
        actor_id: UUID,
        work_date: date,
        fields: EntryFields | Mapping[str, Any],
        *,
        expected_version: int | None = None,
    ) -> TimecardSnapshot:
        """Create or update the daily entry for a work date."""
        async with self._unit_of_work("upsert_entry", header_id):
            header = await self._load_header(header_id, expected_version)
            self._require_worker_or_admin(header, actor_id, "upsert_entry")

            changes = ChangeSet()
            self.entries.upsert(header, work_date, fields, changes)
            self._touch(header, actor_id)
            self._record(header, changes, actor_id, self._edit_action(header, actor_id))

        logger.info("Timecard %s entry %s written by %s", header_id, work_date, actor_id)
        return TimecardSnapshot.model_validate(header)

    async def delete_entry(
        self,
        header_id: UUID,
        actor_id: UUID,
        work_date: date,
        *,
        expected_version: int | None = None,
    ) -> TimecardSnapshot:
        """Remove the daily entry for a work date."""
        async with self._unit_of_work("delete_entry", header_id):
            header = await self._load_header(header_id, expected_version)
            self._require_worker_or_admin(header, actor_id, "delete_entry")

            changes = ChangeSet()
            self.entries.delete(header, work_date, changes)
            self._touch(header, actor_id)
            self._record(header, changes, actor_id, self._edit_action(header, actor_id))

        logger.info("Timecard %s entry %s deleted by %s", header_id, work_date, actor_id)
        return TimecardSnapshot.model_validate(header)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def submit_timecard(
        self,
        header_id: UUID,
        actor_id: UUID,
        *,
        expected_version: int | None = None,
    ) -> TimecardSnapshot:
        """Submit a draft for approval.

        Requires at least one entry, every entry inside the period, and a
        break on every clocked shift long enough to need one.
        """
        async with self._unit_of_work("submit", header_id):
            header = await self._load_header(header_id, expected_version)
            target = TimecardStateMachine.validate(Transition.SUBMIT, header.status)
            self._require_worker_or_admin(header, actor_id, Transition.SUBMIT.value)

            if not header.entries:
                raise ConstraintViolation(
                    "Cannot submit a timecard with no daily entries",
                    field="entries",
                )
            outside = [e.work_date for e in header.entries if not header.covers(e.work_date)]
            if outside:
                raise ConstraintViolation(
                    f"Entries outside the timecard period: {_format_dates(outside)}",
                    field="work_date",
                )
            missing = missing_break_dates(
                header.entries, self.workflow.break_required_after_hours
            )
            if missing:
                raise ConstraintViolation(
                    f"Break required for shifts on {_format_dates(missing)}",
                    field="break_minutes",
                )

            changes = ChangeSet()
            self.entries.refresh_totals(header, changes)
            changes.assign(header, "submitted_at", utcnow())
            changes.assign(header, "status", target)
            self._touch(header, actor_id)
            self._record(header, changes, actor_id, AuditAction.USER_EDIT)

        self._log_transition(header, Transition.SUBMIT, actor_id)
        return TimecardSnapshot.model_validate(header)

    async def approve_timecard(
        self,
        header_id: UUID,
        actor_id: UUID,
        *,
        expected_version: int | None = None,
    ) -> TimecardSnapshot:
        """Approve a submitted timecard and finalize its totals."""
        async with self._unit_of_work("approve", header_id):
            header = await self._load_header(header_id, expected_version)
            target = TimecardStateMachine.validate(
                Transition.APPROVE, header.status, self._capabilities(actor_id)
            )

            changes = ChangeSet()
            self.entries.refresh_totals(header, changes)
            changes.assign(header, "status", target)
            changes.assign(header, "approved_by", actor_id)
            changes.assign(header, "approved_at", utcnow())
            self._touch(header, actor_id)
            self._record(header, changes, actor_id, AuditAction.ADMIN_EDIT)

        self._log_transition(header, Transition.APPROVE, actor_id)
        return TimecardSnapshot.model_validate(header)

    async def reject_timecard(
        self,
        header_id: UUID,
        actor_id: UUID,
        fields: Iterable[str],
        reason: str,
        *,
        expected_version: int | None = None,
    ) -> TimecardSnapshot:
        """Reject a submitted timecard, flagging the fields the worker must fix.

        Writes one rejection_edit entry per flagged field; the header changes
        share the same change_id as admin_edit entries.
        """
        async with self._unit_of_work("reject", header_id):
            header = await self._load_header(header_id, expected_version)
            target = TimecardStateMachine.validate(
                Transition.REJECT, header.status, self._capabilities(actor_id)
            )
            flagged = self.rejections.validate(fields, reason)

            changes = ChangeSet()
            self.rejections.flag(header, flagged, reason, changes)
            changes.assign(header, "status", target)
            self._touch(header, actor_id)
            self._record(header, changes, actor_id, AuditAction.ADMIN_EDIT)

        self._log_transition(header, Transition.REJECT, actor_id)
        return TimecardSnapshot.model_validate(header)

    async def edit_and_return(
        self,
        header_id: UUID,
        actor_id: UUID,
        entry_changes: Iterable[EntryChange | Mapping[str, Any]],
        comments: str,
        *,
        admin_notes: str | None = None,
        expected_version: int | None = None,
    ) -> TimecardSnapshot:
        """Correct entries of a submitted timecard and return it as a draft.

        Every change is validated before any is applied. The timecard passes
        through edit_returned inside this unit of work and lands in draft;
        the audit trail records submitted → draft. ``comments`` are shown to
        the worker; ``admin_notes`` are private to reviewers. The submission
        time is cleared until the worker submits again.
        """
        async with self._unit_of_work("edit_and_return", header_id):
            header = await self._load_header(header_id, expected_version)
            previous = status_value(header.status)
            edit_state = TimecardStateMachine.validate(
                Transition.EDIT_AND_RETURN, header.status, self._capabilities(actor_id)
            )
            if not comments or not comments.strip():
                raise ConstraintViolation(
                    "Comments are required when editing and returning a timecard",
                    field="comments",
                )
            if admin_notes is not None and not admin_notes.strip():
                raise ConstraintViolation("Admin notes cannot be blank", field="admin_notes")
            parsed = _parse_entry_changes(entry_changes)

            header.status = edit_state
            prepared = [
                self.entries.prepare(
                    header,
                    change.work_date,
                    change.model_dump(exclude_unset=True, exclude={"work_date", "delete"}),
                    delete=change.delete,
                    operation=Transition.EDIT_AND_RETURN.value,
                )
                for change in parsed
            ]

            changes = ChangeSet()
            for item in prepared:
                self.entries.apply(header, item, changes)
            self.entries.refresh_totals(header, changes)

            header.status = TimecardStateMachine.validate(Transition.RETURN_TO_DRAFT, header.status)
            changes.record("status", previous, header.status)
            changes.assign(header, "edit_comments", comments)
            if admin_notes is not None:
                changes.assign(header, "admin_notes", admin_notes)
            changes.assign(header, "admin_edited", True)
            changes.assign(header, "submitted_at", None)
            self._touch(header, actor_id)
            self._record(header, changes, actor_id, AuditAction.ADMIN_EDIT)

        self._log_transition(header, Transition.EDIT_AND_RETURN, actor_id)
        return TimecardSnapshot.model_validate(header)

    async def resubmit_timecard(
        self,
        header_id: UUID,
        actor_id: UUID,
        *,
        expected_version: int | None = None,
    ) -> TimecardSnapshot:
        """Resubmit a rejected timecard, clearing its rejected fields."""
        async with self._unit_of_work("resubmit", header_id):
            header = await self._load_header(header_id, expected_version)
            target = TimecardStateMachine.validate(Transition.RESUBMIT, header.status)
            self._require_worker_or_admin(header, actor_id, Transition.RESUBMIT.value)
            if not TimecardStateMachine.can_resubmit(header.resubmission_count, self.workflow):
                raise InvalidTransition(
                    status_value(header.status),
                    Transition.RESUBMIT.value,
                    f"resubmission limit of {self.workflow.max_resubmissions} reached",
                )

            changes = ChangeSet()
            self.rejections.clear(header, changes)
            changes.assign(header, "status", target)
            changes.assign(header, "resubmission_count", header.resubmission_count + 1)
            changes.assign(header, "submitted_at", utcnow())
            self._touch(header, actor_id)
            self._record(header, changes, actor_id, AuditAction.USER_EDIT)

        self._log_transition(header, Transition.RESUBMIT, actor_id)
        return TimecardSnapshot.model_validate(header)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _unit_of_work(self, operation: str, header_id: UUID) -> AsyncIterator[None]:
        """Commit on success; roll back and translate errors otherwise."""
        try:
            yield
            await self.session.flush()
            await self.session.commit()
        except StaleDataError as exc:
            await self.session.rollback()
            logger.warning("%s lost a race on timecard %s", operation, header_id)
            raise ConcurrentModification(header_id) from exc
        except IntegrityError as exc:
            await self.session.rollback()
            logger.warning("%s violated a constraint on timecard %s: %s", operation, header_id, exc.orig)
            raise ConstraintViolation(f"Database constraint violated: {exc.orig}") from exc
        except TimecardError as exc:
            await self.session.rollback()
            logger.warning("%s refused for timecard %s: %s", operation, header_id, exc)
            raise
        except Exception:
            await self.session.rollback()
            raise

    async def _load_header(
        self,
        header_id: UUID,
        expected_version: int | None = None,
    ) -> TimecardHeader:
        result = await self.session.execute(
            select(TimecardHeader)
            .where(TimecardHeader.timecard_id == header_id)
            .options(selectinload(TimecardHeader.entries))
        )
        header = result.scalar_one_or_none()
        if header is None:
            raise NotFound("Timecard", header_id)
        if expected_version is not None and header.version != expected_version:
            raise ConcurrentModification(header_id, expected_version, header.version)
        return header

    async def _require_exists(self, header_id: UUID) -> None:
        result = await self.session.execute(
            select(TimecardHeader.timecard_id).where(TimecardHeader.timecard_id == header_id)
        )
        if result.scalar_one_or_none() is None:
            raise NotFound("Timecard", header_id)

    def _capabilities(self, actor_id: UUID) -> frozenset[Capability]:
        return self.authorization.capabilities_for(actor_id)

    def _require_worker_or_admin(
        self,
        header: TimecardHeader,
        actor_id: UUID,
        operation: str,
    ) -> None:
        """The header's worker, or an actor who may admin-edit."""
        if actor_id == header.worker_id:
            return
        if Capability.ADMIN_EDIT in self._capabilities(actor_id):
            return
        raise InsufficientCapability(
            status_value(header.status), operation, Capability.ADMIN_EDIT.value
        )

    @staticmethod
    def _edit_action(header: TimecardHeader, actor_id: UUID) -> AuditAction:
        if actor_id == header.worker_id:
            return AuditAction.USER_EDIT
        return AuditAction.ADMIN_EDIT

    @staticmethod
    def _touch(header: TimecardHeader, actor_id: UUID) -> None:
        # Always rewrites the header row so its version advances
        header.updated_at = utcnow()
        header.last_edited_by = actor_id

    def _record(
        self,
        header: TimecardHeader,
        changes: ChangeSet,
        actor_id: UUID,
        action_type: AuditAction = AuditAction.USER_EDIT,
    ) -> None:
        self.audit.record_changes(header.timecard_id, changes, actor_id, action_type)

    @staticmethod
    def _log_transition(header: TimecardHeader, transition: Transition, actor_id: UUID) -> None:
        logger.info(
            "Timecard %s %s by %s, now %s (version %s)",
            header.timecard_id,
            transition.value,
            actor_id,
            header.status,
            header.version,
        )


def _parse_entry_changes(
    entry_changes: Iterable[EntryChange | Mapping[str, Any]],
) -> list[EntryChange]:
    parsed = [parse_input(EntryChange, change) for change in entry_changes]
    seen: set[date] = set()
    for change in parsed:
        if change.work_date in seen:
            raise ConstraintViolation(
                f"More than one change for {change.work_date.isoformat()}",
                field="work_date",
            )
        seen.add(change.work_date)
        if change.delete and change.model_fields_set - {"work_date", "delete"}:
            raise ConstraintViolation(
                f"A delete for {change.work_date.isoformat()} cannot also set fields",
                field="delete",
            )
    return parsed


def _format_dates(dates: Iterable[date]) -> str:
    return ", ".join(d.isoformat() for d in sorted(dates))
