"""Tests for settings, policies and the static providers."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from timecard_engine.calculators import PayRate
from timecard_engine.config import (
    ApprovalPolicy,
    Settings,
    WorkflowPolicy,
    get_settings,
)
from timecard_engine.errors import InsufficientCapability, InvalidTransition, NotFound
from timecard_engine.providers import (
    Capability,
    ProjectPeriod,
    StaticAuthorizationProvider,
    StaticPayRates,
    StaticProjectPeriods,
)
from timecard_engine.services import TimecardService

ENV_VARS = (
    "DATABASE_URL",
    "DATABASE_URL_SYNC",
    "ENGINE_VERSION",
    "LOG_LEVEL",
    "OVERTIME_DAILY_THRESHOLD",
    "OVERTIME_WEEKLY_THRESHOLD",
    "BREAK_REQUIRED_AFTER_HOURS",
    "MAX_RESUBMISSIONS",
    "SUPERVISOR_CAN_APPROVE",
    "COORDINATOR_CAN_APPROVE",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """No timecard variables set, and no .env file to pick up."""
    monkeypatch.chdir(tmp_path)
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()


class TestSettings:
    """Loading settings from the environment."""

    def test_defaults(self, clean_env):
        settings = Settings.from_env()

        assert settings.database_url.startswith("postgresql+asyncpg://")
        assert settings.log_level == "INFO"
        assert settings.overtime.enabled is False
        assert settings.workflow.max_resubmissions is None
        assert settings.workflow.break_required_after_hours == Decimal("6")
        assert settings.approval.approver_roles() == {"admin", "in_house"}

    def test_from_environment(self, clean_env):
        clean_env.setenv("LOG_LEVEL", "debug")
        clean_env.setenv("OVERTIME_DAILY_THRESHOLD", "8")
        clean_env.setenv("OVERTIME_WEEKLY_THRESHOLD", "40")
        clean_env.setenv("MAX_RESUBMISSIONS", "3")
        clean_env.setenv("BREAK_REQUIRED_AFTER_HOURS", "none")
        clean_env.setenv("SUPERVISOR_CAN_APPROVE", "true")

        settings = Settings.from_env()

        assert settings.log_level == "DEBUG"
        assert settings.overtime.daily_threshold == Decimal("8")
        assert settings.overtime.weekly_threshold == Decimal("40")
        assert settings.workflow.max_resubmissions == 3
        assert settings.workflow.break_required_after_hours is None
        assert settings.approval.supervisor_can_approve is True
        assert settings.approval.coordinator_can_approve is False

    def test_invalid_policy_value(self, clean_env):
        clean_env.setenv("MAX_RESUBMISSIONS", "-1")

        with pytest.raises(ValueError):
            Settings.from_env()

    def test_cached(self, clean_env):
        assert get_settings() is get_settings()


class TestPolicies:
    """Policy validation."""

    def test_workflow_validation(self):
        with pytest.raises(ValueError):
            WorkflowPolicy(max_resubmissions=-1)
        with pytest.raises(ValueError):
            WorkflowPolicy(break_required_after_hours=Decimal("0"))

    def test_approver_roles(self):
        policy = ApprovalPolicy(supervisor_can_approve=True, coordinator_can_approve=True)

        assert policy.approver_roles() == {"admin", "in_house", "supervisor", "coordinator"}


class TestProviders:
    """Static authorization and project periods."""

    def test_capabilities_by_role(self):
        admin, manager, supervisor, escort, stranger = (uuid4() for _ in range(5))
        provider = StaticAuthorizationProvider(
            roles={
                admin: "admin",
                manager: "in_house",
                supervisor: "supervisor",
                escort: "talent_escort",
            }
        )

        both = {Capability.APPROVE, Capability.ADMIN_EDIT}
        assert provider.capabilities_for(admin) == both
        assert provider.capabilities_for(manager) == both
        assert provider.capabilities_for(supervisor) == frozenset()
        assert provider.capabilities_for(escort) == frozenset()
        assert provider.capabilities_for(stranger) == frozenset()

    def test_coordinator_flag(self):
        coordinator = uuid4()
        provider = StaticAuthorizationProvider(
            roles={coordinator: "coordinator"},
            policy=ApprovalPolicy(coordinator_can_approve=True),
        )

        assert Capability.APPROVE in provider.capabilities_for(coordinator)

    def test_project_periods(self):
        project = uuid4()
        period = ProjectPeriod(date(2024, 9, 16), date(2024, 9, 29))
        periods = StaticProjectPeriods(periods={project: period})

        assert periods.period_for(project) is period
        assert period.contains(date(2024, 9, 29))
        assert not period.contains(date(2024, 9, 30))
        with pytest.raises(NotFound):
            periods.period_for(uuid4())

    def test_inverted_period(self):
        with pytest.raises(ValueError):
            ProjectPeriod(date(2024, 9, 29), date(2024, 9, 16))

    def test_worker_rate_wins_over_project_rate(self):
        worker, other, project = uuid4(), uuid4(), uuid4()
        own = PayRate(base_rate=Decimal("25"))
        default = PayRate(base_rate=Decimal("18"))
        rates = StaticPayRates(rates={(worker, project): own}, project_rates={project: default})

        assert rates.pay_rate_for(worker, project) is own
        assert rates.pay_rate_for(other, project) is default
        assert rates.pay_rate_for(worker, uuid4()) is None


@pytest.mark.asyncio
class TestServiceSettings:
    """Environment policies reach the timecard service."""

    async def test_resubmission_cap_from_environment(
        self, clean_env, session, authorization, periods, submitted, admin_id, worker_id
    ):
        clean_env.setenv("MAX_RESUBMISSIONS", "0")
        get_settings.cache_clear()
        service = TimecardService(session, authorization, periods)

        await service.reject_timecard(submitted.timecard_id, admin_id, {"hours_worked"}, "wrong")

        with pytest.raises(InvalidTransition) as exc_info:
            await service.resubmit_timecard(submitted.timecard_id, worker_id)

        assert "limit of 0" in exc_info.value.reason

    async def test_overtime_from_environment(
        self, clean_env, session, authorization, periods, worker_id, project_id
    ):
        clean_env.setenv("OVERTIME_DAILY_THRESHOLD", "8")
        get_settings.cache_clear()
        service = TimecardService(session, authorization, periods)
        draft = await service.create_timecard(worker_id, project_id, worker_id)

        snapshot = await service.upsert_entry(
            draft.timecard_id, worker_id, date(2024, 9, 16), {"hours_worked": "10"}
        )

        assert snapshot.overtime_hours == Decimal("2.00")

    async def test_from_settings_applies_approval_policy(
        self, clean_env, session, periods, submitted, supervisor_id
    ):
        roles = {supervisor_id: "supervisor"}
        clean_env.setenv("SUPERVISOR_CAN_APPROVE", "false")
        get_settings.cache_clear()
        strict = TimecardService.from_settings(session, periods, roles)

        with pytest.raises(InsufficientCapability):
            await strict.approve_timecard(submitted.timecard_id, supervisor_id)

        clean_env.setenv("SUPERVISOR_CAN_APPROVE", "true")
        get_settings.cache_clear()
        relaxed = TimecardService.from_settings(session, periods, roles)
        snapshot = await relaxed.approve_timecard(submitted.timecard_id, supervisor_id)

        assert snapshot.status == "approved"
