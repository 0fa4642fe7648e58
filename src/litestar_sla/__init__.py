"""Litestar SLA - SLA tracking for approval workflows in Litestar.

This package tracks business records as they move through multi-step approval
workflows, attaches a service-level agreement (in hours) to every step and
fires a notify or auto-approve action when a step runs over.

Key Features:
    - Versioned workflow definitions with per-step SLA and violation policy
    - Record tracking with optimistic concurrency and an append-only action log
    - Background evaluator with isolated per-record failure handling
    - HTTP callbacks with templated bodies, or internal handling without a URL
    - Wall-clock or business-hours SLA calendars
    - Per-user SLA reports, dashboard summary and text export

Example:
    >>> from litestar_sla import StepDefinition, WorkflowDefinition
    >>>
    >>> definition = WorkflowDefinition(
    ...     flow_name="invoice_approval",
    ...     model="invoice",
    ...     steps=[
    ...         StepDefinition(order=1, code="review", name="Review", sla_hours=4),
    ...         StepDefinition(order=2, code="sign", name="Sign", sla_hours=8, violation_action="auto_approve"),
    ...     ],
    ... )
"""

from __future__ import annotations

from litestar_sla.__metadata__ import __project__, __version__
from litestar_sla.config import SLAConfig
from litestar_sla.core import (
    ActionKind,
    BusinessHoursCalendar,
    CallbackConfig,
    RecordStatus,
    StepDefinition,
    ViolationAction,
    WallClockCalendar,
    WorkflowDefinition,
)
from litestar_sla.engine import (
    ActionLogService,
    CallbackClient,
    ReportingAggregator,
    RecordTracker,
    SLAEvaluator,
    WorkflowDefinitionStore,
)
from litestar_sla.exceptions import (
    ConcurrentModificationError,
    DefinitionLockedError,
    DefinitionNotFoundError,
    DuplicateRecordError,
    ExternalCallFailureError,
    InvalidStateTransitionError,
    PreconditionFailedError,
    RecordNotFoundError,
    SLAError,
    StoreUnavailableError,
    ValidationError,
)
from litestar_sla.plugin import SLAPlugin, SLAPluginConfig

__all__ = (
    "ActionKind",
    "ActionLogService",
    "BusinessHoursCalendar",
    "CallbackClient",
    "CallbackConfig",
    "ConcurrentModificationError",
    "DefinitionLockedError",
    "DefinitionNotFoundError",
    "DuplicateRecordError",
    "ExternalCallFailureError",
    "InvalidStateTransitionError",
    "PreconditionFailedError",
    "RecordNotFoundError",
    "RecordStatus",
    "RecordTracker",
    "ReportingAggregator",
    "SLAConfig",
    "SLAError",
    "SLAEvaluator",
    "SLAPlugin",
    "SLAPluginConfig",
    "StepDefinition",
    "StoreUnavailableError",
    "ValidationError",
    "ViolationAction",
    "WallClockCalendar",
    "WorkflowDefinition",
    "WorkflowDefinitionStore",
    "__project__",
    "__version__",
)
