"""Data Transfer Objects for the SLA web API.

Request and response bodies are plain dataclasses exposed through Litestar
``DataclassDTO`` classes that rename fields to camelCase on the wire.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from litestar.dto import DataclassDTO, DTOConfig

from litestar_sla.core.definition import StepDefinition, WorkflowDefinition

if TYPE_CHECKING:
    from collections.abc import Sequence

    from litestar_sla.db.models import (
        SLAActionLogModel,
        SLARecordModel,
        StepTransitionModel,
        WorkflowDefinitionModel,
    )
    from litestar_sla.engine.evaluator import CycleResult
    from litestar_sla.engine.reports import DashboardSummary, SLAReport, UserSLAStats

__all__ = [
    "ActionLogDTO",
    "ActionLogPageDTO",
    "ActionLogPageReadDTO",
    "AdvanceRecordDTO",
    "AdvanceRecordWriteDTO",
    "CreateRecordDTO",
    "CreateRecordWriteDTO",
    "CycleResultDTO",
    "CycleResultReadDTO",
    "DefinitionDTO",
    "DefinitionInputDTO",
    "DefinitionReadDTO",
    "DefinitionWriteDTO",
    "RecordDTO",
    "RecordDetailDTO",
    "RecordDetailReadDTO",
    "RecordPageDTO",
    "RecordPageReadDTO",
    "RecordReadDTO",
    "SLAReportDTO",
    "SLAReportReadDTO",
    "StepDTO",
    "StepInputDTO",
    "SummaryDTO",
    "SummaryReadDTO",
    "TransitionDTO",
    "UserStatsDTO",
]

_camel = DTOConfig(rename_strategy="camel", max_nested_depth=2)


@dataclass
class StepInputDTO:
    """One step of a definition being published.

    Attributes:
        order: 1-based position.
        code: Business code, unique within the definition.
        name: Display name.
        sla_hours: Allotted hours, integer >= 0.
        violation_action: ``notify`` or ``auto_approve``.
        callback: Optional ``{url, method, headers, body}`` configuration.
        grace_hours: Optional grace window between notify firings.
        max_notifications: Optional notify limit before escalation.
    """

    order: int
    code: str
    name: str
    sla_hours: int
    violation_action: str = "notify"
    callback: dict[str, Any] | None = None
    grace_hours: int | None = None
    max_notifications: int | None = None


@dataclass
class DefinitionInputDTO:
    """Definition to publish or edit."""

    flow_name: str
    model: str
    steps: list[StepInputDTO]
    description: str | None = None
    notify_callback: dict[str, Any] | None = None
    auto_approve_callback: dict[str, Any] | None = None

    def to_domain(self) -> WorkflowDefinition:
        return WorkflowDefinition(
            flow_name=self.flow_name,
            model=self.model,
            description=self.description,
            notify_callback=self.notify_callback,
            auto_approve_callback=self.auto_approve_callback,
            steps=[
                StepDefinition(
                    order=step.order,
                    code=step.code,
                    name=step.name,
                    sla_hours=step.sla_hours,
                    violation_action=step.violation_action,  # type: ignore[arg-type]
                    callback=step.callback,
                    grace_hours=step.grace_hours,
                    max_notifications=step.max_notifications,
                )
                for step in self.steps
            ],
        )


@dataclass
class CreateRecordDTO:
    """Start tracking a business record.

    Attributes:
        workflow_definition_id: Definition to track against.
        model: Business model name.
        business_record_id: ID of the business entity.
        activity_id: Optional originating activity.
        assignees: Optional ``[{id, name, login}]`` approvers.
        step_code: Optional step to start on.
    """

    workflow_definition_id: UUID
    model: str
    business_record_id: str
    activity_id: str | None = None
    assignees: list[dict[str, Any]] = field(default_factory=list)
    step_code: str | None = None


@dataclass
class AdvanceRecordDTO:
    """Approve a record's current step.

    Attributes:
        approver_payload: Approval data, a non-empty object.
        expected_revision: Optional revision the caller last saw.
    """

    approver_payload: dict[str, Any]
    expected_revision: int | None = None


@dataclass
class StepDTO:
    id: UUID
    order: int
    code: str
    name: str
    sla_hours: int
    violation_action: str
    callback: dict[str, Any] | None
    grace_hours: int | None
    max_notifications: int | None


@dataclass
class DefinitionDTO:
    """Persisted definition with its steps."""

    id: UUID
    flow_name: str
    model: str
    version: int
    is_active: bool
    description: str | None
    notify_callback: dict[str, Any] | None
    auto_approve_callback: dict[str, Any] | None
    created_at: datetime
    steps: list[StepDTO]

    @classmethod
    def from_model(cls, model: WorkflowDefinitionModel) -> DefinitionDTO:
        return cls(
            id=model.id,
            flow_name=model.flow_name,
            model=model.model,
            version=model.version,
            is_active=model.is_active,
            description=model.description,
            notify_callback=model.notify_callback,
            auto_approve_callback=model.auto_approve_callback,
            created_at=model.created_at,
            steps=[
                StepDTO(
                    id=step.id,
                    order=step.order,
                    code=step.code,
                    name=step.name,
                    sla_hours=step.sla_hours,
                    violation_action=str(step.violation_action),
                    callback=step.callback,
                    grace_hours=step.grace_hours,
                    max_notifications=step.max_notifications,
                )
                for step in model.steps
            ],
        )


@dataclass
class RecordDTO:
    """Current state of a tracked record.

    ``remaining_hours`` is reported with two-decimal precision.
    """

    id: UUID
    workflow_definition_id: UUID
    model: str
    business_record_id: str
    activity_id: str | None
    status: str
    current_step_id: UUID
    current_step_code: str
    remaining_hours: float
    violation_count: int
    approval_payload: dict[str, Any] | None
    approved_at: datetime | None
    next_due_at: datetime | None
    step_entered_at: datetime
    started_at: datetime
    revision: int
    assignees: list[dict[str, Any]]

    @classmethod
    def from_model(cls, record: SLARecordModel) -> RecordDTO:
        return cls(
            id=record.id,
            workflow_definition_id=record.definition_id,
            model=record.model,
            business_record_id=record.business_record_id,
            activity_id=record.activity_id,
            status=str(record.status),
            current_step_id=record.current_step.id,
            current_step_code=record.current_step.code,
            remaining_hours=float(record.remaining_hours),
            violation_count=record.violation_count,
            approval_payload=record.approval_payload,
            approved_at=record.approved_at,
            next_due_at=record.next_due_at,
            step_entered_at=record.step_entered_at,
            started_at=record.started_at,
            revision=record.revision,
            assignees=[{"id": a.user_id, "name": a.name, "login": a.login} for a in record.assignees],
        )


@dataclass
class TransitionDTO:
    step_id: UUID
    step_code: str
    entered_at: datetime
    approved_at: datetime | None
    automatic: bool
    approval_payload: dict[str, Any] | None

    @classmethod
    def from_model(cls, transition: StepTransitionModel) -> TransitionDTO:
        return cls(
            step_id=transition.step_id,
            step_code=transition.step_code,
            entered_at=transition.entered_at,
            approved_at=transition.approved_at,
            automatic=transition.automatic,
            approval_payload=transition.approval_payload,
        )


@dataclass
class ActionLogDTO:
    """One action log entry."""

    id: UUID
    record_id: UUID
    step_id: UUID | None
    step_code: str | None
    kind: str
    occurred_at: datetime
    success: bool
    detail: str | None
    violation_count: int
    payload: dict[str, Any] | None

    @classmethod
    def from_model(cls, entry: SLAActionLogModel) -> ActionLogDTO:
        return cls(
            id=entry.id,
            record_id=entry.record_id,
            step_id=entry.step_id,
            step_code=entry.step_code,
            kind=str(entry.kind),
            occurred_at=entry.occurred_at,
            success=entry.success,
            detail=entry.detail,
            violation_count=entry.violation_count,
            payload=entry.payload,
        )


@dataclass
class RecordDetailDTO:
    """A record with its step history and action log."""

    record: RecordDTO
    transitions: list[TransitionDTO]
    action_logs: list[ActionLogDTO]


@dataclass
class RecordPageDTO:
    items: list[RecordDTO]
    total: int
    page: int
    page_size: int


@dataclass
class ActionLogPageDTO:
    items: list[ActionLogDTO]
    total: int
    page: int
    page_size: int

    @classmethod
    def build(cls, entries: Sequence[SLAActionLogModel], total: int, page: int, page_size: int) -> ActionLogPageDTO:
        return cls(
            items=[ActionLogDTO.from_model(entry) for entry in entries],
            total=total,
            page=page,
            page_size=page_size,
        )


@dataclass
class UserStatsDTO:
    user_id: str
    name: str | None
    login: str | None
    total: int
    completed: int
    violated: int
    pending: int
    escalated: int
    success_rate: float
    avg_completion_hours: float
    violation_events: int

    @classmethod
    def from_stats(cls, stats: UserSLAStats) -> UserStatsDTO:
        return cls(**stats.to_dict())


@dataclass
class SLAReportDTO:
    """Per-user SLA report."""

    user_id: str
    window_days: int
    since: datetime
    generated_at: datetime
    users: list[UserStatsDTO]
    totals: UserStatsDTO

    @classmethod
    def from_report(cls, report: SLAReport) -> SLAReportDTO:
        return cls(
            user_id=report.user_id,
            window_days=report.window_days,
            since=report.since,
            generated_at=report.generated_at,
            users=[UserStatsDTO.from_stats(row) for row in report.users],
            totals=UserStatsDTO.from_stats(report.totals),
        )


@dataclass
class SummaryDTO:
    pending: int
    overdue: int
    completed: int
    escalated: int
    violation_events: int
    failed_actions: int
    window_days: int

    @classmethod
    def from_summary(cls, summary: DashboardSummary) -> SummaryDTO:
        return cls(
            pending=summary.pending,
            overdue=summary.overdue,
            completed=summary.completed,
            escalated=summary.escalated,
            violation_events=summary.violation_events,
            failed_actions=summary.failed_actions,
            window_days=summary.window_days,
        )


@dataclass
class CycleResultDTO:
    started_at: datetime
    due: int
    violated: list[UUID]
    failed: list[UUID]
    conflicts: list[UUID]
    skipped: list[UUID]
    errors: list[UUID]
    refreshed: int

    @classmethod
    def from_result(cls, result: CycleResult) -> CycleResultDTO:
        return cls(
            started_at=result.started_at,
            due=result.due,
            violated=result.violated,
            failed=result.failed,
            conflicts=result.conflicts,
            skipped=result.skipped,
            errors=result.errors,
            refreshed=result.refreshed,
        )


class DefinitionWriteDTO(DataclassDTO[DefinitionInputDTO]):
    config = _camel


class CreateRecordWriteDTO(DataclassDTO[CreateRecordDTO]):
    config = _camel


class AdvanceRecordWriteDTO(DataclassDTO[AdvanceRecordDTO]):
    config = _camel


class DefinitionReadDTO(DataclassDTO[DefinitionDTO]):
    config = _camel


class RecordReadDTO(DataclassDTO[RecordDTO]):
    config = _camel


class RecordDetailReadDTO(DataclassDTO[RecordDetailDTO]):
    config = _camel


class RecordPageReadDTO(DataclassDTO[RecordPageDTO]):
    config = _camel


class ActionLogPageReadDTO(DataclassDTO[ActionLogPageDTO]):
    config = _camel


class SLAReportReadDTO(DataclassDTO[SLAReportDTO]):
    config = _camel


class SummaryReadDTO(DataclassDTO[SummaryDTO]):
    config = _camel


class CycleResultReadDTO(DataclassDTO[CycleResultDTO]):
    config = _camel
