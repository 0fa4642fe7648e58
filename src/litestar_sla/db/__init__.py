"""Database persistence layer for litestar-sla.

This module provides SQLAlchemy models and repositories for persisting
workflow definitions, tracked records and the SLA action log.
"""

from __future__ import annotations

from litestar_sla.db.models import (
    RecordAssigneeModel,
    SLAActionLogModel,
    SLARecordModel,
    StepTransitionModel,
    WorkflowDefinitionModel,
    WorkflowStepModel,
)
from litestar_sla.db.repositories import (
    SLAActionLogRepository,
    SLARecordRepository,
    StepTransitionRepository,
    WorkflowDefinitionRepository,
    WorkflowStepRepository,
)

__all__ = [
    "RecordAssigneeModel",
    "SLAActionLogModel",
    "SLAActionLogRepository",
    "SLARecordModel",
    "SLARecordRepository",
    "StepTransitionModel",
    "StepTransitionRepository",
    "WorkflowDefinitionModel",
    "WorkflowDefinitionRepository",
    "WorkflowStepModel",
    "WorkflowStepRepository",
]
