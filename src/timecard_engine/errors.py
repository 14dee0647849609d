"""Typed errors raised by the timecard core.

Every error carries enough structure (field, current state, expected state)
for a caller to render a precise message. Mapping to HTTP status codes or exit
codes belongs to the caller.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID


class TimecardError(Exception):
    """Base class for all timecard core errors."""

    code = "TIMECARD_ERROR"

    def to_dict(self) -> dict[str, Any]:
        """Structured representation for callers."""
        return {"code": self.code, "message": str(self)}


class InvalidTransition(TimecardError):
    """Raised when a transition is not legal from the current state."""

    code = "INVALID_TRANSITION"

    def __init__(self, current_state: str, transition: str, reason: str | None = None):
        self.current_state = current_state
        self.transition = transition
        self.reason = reason
        msg = f"Cannot {transition} a timecard in '{current_state}' status"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            current_state=self.current_state,
            transition=self.transition,
            reason=self.reason,
        )
        return data


class InsufficientCapability(InvalidTransition):
    """Raised when the actor lacks the capability a transition needs."""

    code = "INSUFFICIENT_CAPABILITY"

    def __init__(self, current_state: str, transition: str, capability: str):
        self.capability = capability
        super().__init__(
            current_state,
            transition,
            f"actor lacks the '{capability}' capability",
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["capability"] = self.capability
        return data


class ConstraintViolation(TimecardError):
    """Raised for malformed input, before any mutation happens."""

    code = "CONSTRAINT_VIOLATION"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["field"] = self.field
        return data


class ConcurrentModification(TimecardError):
    """Raised when another writer changed the timecard first. Re-read and retry."""

    code = "CONCURRENT_MODIFICATION"

    def __init__(
        self,
        header_id: UUID,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ):
        self.header_id = header_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        msg = f"Timecard {header_id} was modified concurrently"
        if expected_version is not None and actual_version is not None:
            msg += f" (expected version {expected_version}, found {actual_version})"
        super().__init__(msg)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            header_id=str(self.header_id),
            expected_version=self.expected_version,
            actual_version=self.actual_version,
        )
        return data


class NotFound(TimecardError):
    """Raised when a referenced timecard, entry or project is absent."""

    code = "NOT_FOUND"

    def __init__(self, entity: str, key: Any):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} {key} not found")

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(entity=self.entity, key=str(self.key))
        return data


class MigrationLedgerError(TimecardError):
    """Raised when applied migrations and migration files disagree."""

    code = "MIGRATION_LEDGER"
