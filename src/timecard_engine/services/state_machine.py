"""Timecard state machine with transition validation."""

from __future__ import annotations

from enum import Enum

from timecard_engine.config import WorkflowPolicy
from timecard_engine.errors import InsufficientCapability, InvalidTransition
from timecard_engine.providers import Capability


class TimecardStatus(str, Enum):
    """Timecard status values."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    EDIT_RETURNED = "edit_returned"


class Transition(str, Enum):
    """Named transitions callers can request."""

    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    EDIT_AND_RETURN = "edit_and_return"
    RETURN_TO_DRAFT = "return_to_draft"
    RESUBMIT = "resubmit"


def status_value(status: str | TimecardStatus) -> str:
    """Plain string value of a status, whether enum member or raw column value."""
    return status.value if isinstance(status, TimecardStatus) else status


class TimecardStateMachine:
    """State machine for timecard status transitions.

    Allowed transitions:
    - draft → submitted (submit)
    - submitted → approved (approve)
    - submitted → rejected (reject)
    - submitted → edit_returned (edit_and_return, admin correcting entries)
    - edit_returned → draft (return_to_draft, closes the edit)
    - rejected → submitted (resubmit, subject to the resubmission cap)

    edit_returned only exists inside an edit-and-return unit of work.
    """

    # Define valid transitions: {from_status: [allowed_to_statuses]}
    VALID_TRANSITIONS: dict[str, list[str]] = {
        "draft": ["submitted"],
        "submitted": ["approved", "rejected", "edit_returned"],
        "edit_returned": ["draft"],
        "rejected": ["submitted"],
        "approved": [],  # Terminal state
    }

    # {transition: (from_status, to_status)}
    TRANSITIONS: dict[str, tuple[str, str]] = {
        "submit": ("draft", "submitted"),
        "approve": ("submitted", "approved"),
        "reject": ("submitted", "rejected"),
        "edit_and_return": ("submitted", "edit_returned"),
        "return_to_draft": ("edit_returned", "draft"),
        "resubmit": ("rejected", "submitted"),
    }

    REQUIRED_CAPABILITY: dict[str, Capability] = {
        "approve": Capability.APPROVE,
        "reject": Capability.APPROVE,
        "edit_and_return": Capability.ADMIN_EDIT,
    }

    # Statuses where daily entries can be written
    ENTRIES_MUTABLE = {"draft", "edit_returned"}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a status change is valid."""
        allowed = cls.VALID_TRANSITIONS.get(status_value(from_status), [])
        return status_value(to_status) in allowed

    @classmethod
    def target_status(cls, transition: Transition) -> str:
        return cls.TRANSITIONS[transition.value][1]

    @classmethod
    def validate(
        cls,
        transition: Transition,
        current_status: str,
        capabilities: frozenset[Capability] | None = None,
    ) -> str:
        """Validate a transition from the current status.

        Returns the target status. Raises InvalidTransition if the status does
        not allow it, InsufficientCapability if a required capability is
        missing (only checked when ``capabilities`` is given).
        """
        current = status_value(current_status)
        from_status, to_status = cls.TRANSITIONS[transition.value]
        if current != from_status or not cls.can_transition(current, to_status):
            raise InvalidTransition(
                current,
                transition.value,
                f"requires status '{from_status}'",
            )

        required = cls.REQUIRED_CAPABILITY.get(transition.value)
        if required is not None and capabilities is not None and required not in capabilities:
            raise InsufficientCapability(current, transition.value, required.value)

        return to_status

    @classmethod
    def can_modify_entries(cls, status: str) -> bool:
        """Check if daily entries can be written in this status."""
        return status_value(status) in cls.ENTRIES_MUTABLE

    @classmethod
    def can_resubmit(cls, resubmission_count: int, policy: WorkflowPolicy) -> bool:
        """Check the resubmission cap; None means unlimited."""
        if policy.max_resubmissions is None:
            return True
        return resubmission_count < policy.max_resubmissions

    @classmethod
    def is_terminal(
        cls,
        status: str,
        resubmission_count: int = 0,
        policy: WorkflowPolicy | None = None,
    ) -> bool:
        """Approved is terminal; rejected is terminal once the cap is reached."""
        current = status_value(status)
        if current == TimecardStatus.APPROVED.value:
            return True
        if current == TimecardStatus.REJECTED.value:
            return not cls.can_resubmit(resubmission_count, policy or WorkflowPolicy())
        return False

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(status_value(current_status), [])

    @classmethod
    def available_transitions(cls, current_status: str) -> list[str]:
        """Transitions whose source status matches the current one."""
        current = status_value(current_status)
        return [
            transition
            for transition, (from_status, _) in cls.TRANSITIONS.items()
            if from_status == current
        ]
