"""Timecard lifecycle engine: daily entries, review workflow and audit trail."""

from timecard_engine.errors import (
    ConcurrentModification,
    ConstraintViolation,
    InsufficientCapability,
    InvalidTransition,
    NotFound,
    TimecardError,
)
from timecard_engine.services import TimecardService

__version__ = "1.0.0"

__all__ = [
    "ConcurrentModification",
    "ConstraintViolation",
    "InsufficientCapability",
    "InvalidTransition",
    "NotFound",
    "TimecardError",
    "TimecardService",
    "__version__",
]
