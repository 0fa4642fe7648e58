"""Core type definitions for litestar-sla.

This module defines the enums shared by the domain layer, the persistence
models and the web API.
"""

from __future__ import annotations

import sys
from enum import Enum, auto

# StrEnum backport for Python < 3.11
if sys.version_info >= (3, 11):
    from enum import StrEnum
else:

    class StrEnum(str, Enum):
        """String enumeration compatibility for Python < 3.11."""

        def __str__(self) -> str:
            return str(self.value)

        @staticmethod
        def _generate_next_value_(name: str, start: int, count: int, last_values: list[str]) -> str:
            return name.lower()


__all__ = [
    "ActionKind",
    "RecordStatus",
    "StrEnum",
    "ViolationAction",
]


class RecordStatus(StrEnum):
    """Lifecycle status of a tracked record.

    Attributes:
        PENDING: Waiting on the current step; under SLA watch.
        COMPLETED: The final step was approved, manually or automatically.
        ESCALATED: Notifications for the current step were exhausted.
    """

    PENDING = auto()
    COMPLETED = auto()
    ESCALATED = auto()

    @property
    def is_terminal(self) -> bool:
        return self is not RecordStatus.PENDING


class ViolationAction(StrEnum):
    """What happens when a step overruns its SLA.

    Attributes:
        NOTIFY: Inform someone and keep waiting.
        AUTO_APPROVE: Approve the step on the approver's behalf.
    """

    NOTIFY = auto()
    AUTO_APPROVE = auto()


class ActionKind(StrEnum):
    """Kinds of action log entries.

    Attributes:
        VIOLATION_NOTIFY: A notify action fired.
        VIOLATION_AUTO_APPROVE: An auto-approve action fired.
        EVALUATION_ERROR: The evaluator failed unexpectedly on a record.
    """

    VIOLATION_NOTIFY = auto()
    VIOLATION_AUTO_APPROVE = auto()
    EVALUATION_ERROR = auto()

    @property
    def is_violation(self) -> bool:
        return self is not ActionKind.EVALUATION_ERROR
