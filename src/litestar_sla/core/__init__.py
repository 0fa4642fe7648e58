"""Core domain objects for litestar-sla.

Definitions, violation policies, calendars and shared enums. Nothing in this
package touches the database or the network.
"""

from __future__ import annotations

from litestar_sla.core.calendar import BusinessHoursCalendar, Calendar, WallClockCalendar, quantize_hours
from litestar_sla.core.definition import StepDefinition, WorkflowDefinition
from litestar_sla.core.policy import (
    AutoApprovePolicy,
    CallbackConfig,
    NotifyPolicy,
    StepPolicy,
    render_template,
    resolve_policy,
)
from litestar_sla.core.types import ActionKind, RecordStatus, ViolationAction

__all__ = [
    "ActionKind",
    "AutoApprovePolicy",
    "BusinessHoursCalendar",
    "Calendar",
    "CallbackConfig",
    "NotifyPolicy",
    "RecordStatus",
    "StepDefinition",
    "StepPolicy",
    "ViolationAction",
    "WallClockCalendar",
    "WorkflowDefinition",
    "quantize_hours",
    "render_template",
    "resolve_policy",
]
