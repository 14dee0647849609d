"""Tests for timecard state machine."""

import pytest

from timecard_engine.config import WorkflowPolicy
from timecard_engine.errors import InsufficientCapability, InvalidTransition
from timecard_engine.providers import Capability
from timecard_engine.services.state_machine import (
    TimecardStateMachine,
    TimecardStatus,
    Transition,
    status_value,
)

APPROVER = frozenset({Capability.APPROVE, Capability.ADMIN_EDIT})


class TestTimecardStateMachine:
    """Test state machine transitions."""

    def test_valid_transitions(self):
        """Test that valid transitions are allowed."""
        # draft → submitted
        assert TimecardStateMachine.can_transition("draft", "submitted") is True

        # submitted → approved / rejected
        assert TimecardStateMachine.can_transition("submitted", "approved") is True
        assert TimecardStateMachine.can_transition("submitted", "rejected") is True

        # submitted → edit_returned → draft (edit and return)
        assert TimecardStateMachine.can_transition("submitted", "edit_returned") is True
        assert TimecardStateMachine.can_transition("edit_returned", "draft") is True

        # rejected → submitted (resubmit)
        assert TimecardStateMachine.can_transition("rejected", "submitted") is True

    def test_invalid_transitions(self):
        """Test that invalid transitions are blocked."""
        # Can't skip submission
        assert TimecardStateMachine.can_transition("draft", "approved") is False
        assert TimecardStateMachine.can_transition("draft", "rejected") is False

        # Rejected goes back through submission, not draft
        assert TimecardStateMachine.can_transition("rejected", "draft") is False
        assert TimecardStateMachine.can_transition("rejected", "approved") is False

        # Approved is terminal
        assert TimecardStateMachine.can_transition("approved", "draft") is False
        assert TimecardStateMachine.can_transition("approved", "rejected") is False

    def test_enum_members_are_accepted(self):
        """Status enums and raw column values behave the same."""
        assert TimecardStateMachine.can_transition(
            TimecardStatus.DRAFT, TimecardStatus.SUBMITTED
        ) is True
        assert status_value(TimecardStatus.REJECTED) == "rejected"
        assert status_value("rejected") == "rejected"

    def test_validate_returns_target(self):
        assert TimecardStateMachine.validate(Transition.SUBMIT, "draft") == "submitted"
        assert TimecardStateMachine.validate(Transition.APPROVE, "submitted", APPROVER) == "approved"
        assert TimecardStateMachine.validate(Transition.RETURN_TO_DRAFT, "edit_returned") == "draft"

    def test_validate_raises_for_wrong_status(self):
        """Test that validate raises for invalid transitions."""
        with pytest.raises(InvalidTransition) as exc_info:
            TimecardStateMachine.validate(Transition.APPROVE, "draft", APPROVER)

        assert exc_info.value.current_state == "draft"
        assert exc_info.value.transition == "approve"
        assert "submitted" in exc_info.value.reason

    def test_validate_checks_capability(self):
        with pytest.raises(InsufficientCapability) as exc_info:
            TimecardStateMachine.validate(Transition.REJECT, "submitted", frozenset())

        assert exc_info.value.capability == "approve"
        assert exc_info.value.current_state == "submitted"

    def test_status_is_checked_before_capability(self):
        with pytest.raises(InvalidTransition) as exc_info:
            TimecardStateMachine.validate(Transition.APPROVE, "approved", frozenset())

        assert not isinstance(exc_info.value, InsufficientCapability)

    def test_edit_and_return_needs_admin_edit(self):
        only_approve = frozenset({Capability.APPROVE})

        with pytest.raises(InsufficientCapability) as exc_info:
            TimecardStateMachine.validate(Transition.EDIT_AND_RETURN, "submitted", only_approve)

        assert exc_info.value.capability == "admin_edit"

    def test_can_modify_entries(self):
        """Test entry modification allowed statuses."""
        assert TimecardStateMachine.can_modify_entries("draft") is True
        assert TimecardStateMachine.can_modify_entries("edit_returned") is True
        assert TimecardStateMachine.can_modify_entries("submitted") is False
        assert TimecardStateMachine.can_modify_entries("rejected") is False
        assert TimecardStateMachine.can_modify_entries("approved") is False

    def test_resubmission_cap(self):
        unlimited = WorkflowPolicy()
        capped = WorkflowPolicy(max_resubmissions=2)
        final = WorkflowPolicy(max_resubmissions=0)

        assert TimecardStateMachine.can_resubmit(50, unlimited) is True
        assert TimecardStateMachine.can_resubmit(1, capped) is True
        assert TimecardStateMachine.can_resubmit(2, capped) is False
        assert TimecardStateMachine.can_resubmit(0, final) is False

    def test_is_terminal(self):
        capped = WorkflowPolicy(max_resubmissions=1)

        assert TimecardStateMachine.is_terminal("approved") is True
        assert TimecardStateMachine.is_terminal("rejected") is False
        assert TimecardStateMachine.is_terminal("rejected", 1, capped) is True
        assert TimecardStateMachine.is_terminal("submitted", 5, capped) is False

    def test_get_next_statuses(self):
        """Test getting allowed next statuses."""
        assert set(TimecardStateMachine.get_next_statuses("draft")) == {"submitted"}
        assert set(TimecardStateMachine.get_next_statuses("submitted")) == {
            "approved",
            "rejected",
            "edit_returned",
        }
        assert TimecardStateMachine.get_next_statuses("approved") == []

    def test_available_transitions(self):
        assert TimecardStateMachine.available_transitions("submitted") == [
            "approve",
            "reject",
            "edit_and_return",
        ]
        assert TimecardStateMachine.available_transitions("approved") == []
