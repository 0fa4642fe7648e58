"""SLA engine: definition store, record tracker, evaluator and reporting."""

from __future__ import annotations

from litestar_sla.engine.callbacks import CallbackClient
from litestar_sla.engine.dispatch import DispatchOutcome, StepPolicyDispatcher, ViolationContext
from litestar_sla.engine.evaluator import CycleResult, SLAEvaluator
from litestar_sla.engine.reports import (
    ActionLogService,
    DashboardSummary,
    ReportingAggregator,
    SLAReport,
    UserSLAStats,
)
from litestar_sla.engine.store import WorkflowDefinitionStore
from litestar_sla.engine.tracker import RecordTracker, ViolationResult

__all__ = [
    "ActionLogService",
    "CallbackClient",
    "CycleResult",
    "DashboardSummary",
    "DispatchOutcome",
    "RecordTracker",
    "ReportingAggregator",
    "SLAEvaluator",
    "SLAReport",
    "StepPolicyDispatcher",
    "UserSLAStats",
    "ViolationContext",
    "ViolationResult",
    "WorkflowDefinitionStore",
]
