"""Protocols and static implementations for external collaborators.

The timecard core never talks to the auth service or the project records
directly. Callers hand it an AuthorizationProvider (who may do what), a
ProjectPeriodProvider (which dates a project's timecards cover) and,
optionally, a PayRateProvider (what a worker is paid on a project).
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Protocol
from uuid import UUID

from timecard_engine.calculators import PayRate
from timecard_engine.config import ApprovalPolicy
from timecard_engine.errors import NotFound


class Capability(str, Enum):
    """Capabilities the workflow checks before privileged transitions."""

    APPROVE = "approve"
    ADMIN_EDIT = "admin_edit"


@dataclass(frozen=True)
class ProjectPeriod:
    """Inclusive date range a project's timecards must fall within."""

    start: datetime.date
    end: datetime.date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError("Project period end must not precede its start")

    def contains(self, work_date: datetime.date) -> bool:
        return self.start <= work_date <= self.end


class AuthorizationProvider(Protocol):
    """Resolves an actor to the capabilities they hold."""

    def capabilities_for(self, actor_id: UUID) -> frozenset[Capability]:
        """Return the actor's capabilities (empty for unknown actors)."""
        ...


class ProjectPeriodProvider(Protocol):
    """Resolves a project to its period boundaries."""

    def period_for(self, project_id: UUID) -> ProjectPeriod:
        """Return the project's period. Raises NotFound for unknown projects."""
        ...


class PayRateProvider(Protocol):
    """Resolves a worker's pay rate on a project."""

    def pay_rate_for(self, worker_id: UUID, project_id: UUID) -> PayRate | None:
        """Return the rate, or None when the worker has no rate (pay stays zero)."""
        ...


@dataclass
class StaticAuthorizationProvider:
    """In-process authorization from an actor → role mapping.

    Roles: admin, in_house, supervisor, coordinator, talent_escort. Which of
    them may approve (and therefore edit-and-return) is decided by the
    ApprovalPolicy.
    """

    roles: Mapping[UUID, str] = field(default_factory=dict)
    policy: ApprovalPolicy = field(default_factory=ApprovalPolicy)

    def capabilities_for(self, actor_id: UUID) -> frozenset[Capability]:
        role = self.roles.get(actor_id)
        if role is not None and role in self.policy.approver_roles():
            return frozenset({Capability.APPROVE, Capability.ADMIN_EDIT})
        return frozenset()


@dataclass
class StaticProjectPeriods:
    """In-process project periods keyed by project id."""

    periods: Mapping[UUID, ProjectPeriod] = field(default_factory=dict)

    def period_for(self, project_id: UUID) -> ProjectPeriod:
        try:
            return self.periods[project_id]
        except KeyError:
            raise NotFound("Project", project_id) from None


@dataclass
class StaticPayRates:
    """In-process pay rates.

    A worker's own rate on a project wins over the project's default rate.
    """

    rates: Mapping[tuple[UUID, UUID], PayRate] = field(default_factory=dict)
    project_rates: Mapping[UUID, PayRate] = field(default_factory=dict)

    def pay_rate_for(self, worker_id: UUID, project_id: UUID) -> PayRate | None:
        rate = self.rates.get((worker_id, project_id))
        if rate is not None:
            return rate
        return self.project_rates.get(project_id)
