"""REST API controllers for SLA tracking.

This module provides the controllers mounted by :class:`~litestar_sla.plugin.SLAPlugin`:
- DefinitionController: Publish, edit and retire workflow definitions
- RecordController: Create, list and advance tracked records
- ActionLogController: Query the SLA action log
- ReportController: Per-user SLA reports, text export and dashboard summary
- EvaluatorController: Trigger an evaluation cycle on demand
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import ClassVar
from uuid import UUID

from litestar import Controller, MediaType, Response, get, patch, post
from litestar.params import Parameter
from litestar.status_codes import HTTP_200_OK

from litestar_sla.core.types import ActionKind, RecordStatus
from litestar_sla.engine.evaluator import SLAEvaluator  # noqa: TC001 - needed for DI
from litestar_sla.engine.reports import (  # noqa: TC001 - needed for DI
    ALL_USERS,
    MAX_PAGE_SIZE,
    ActionLogService,
    ReportingAggregator,
)
from litestar_sla.engine.store import WorkflowDefinitionStore  # noqa: TC001 - needed for DI
from litestar_sla.engine.tracker import RecordTracker  # noqa: TC001 - needed for DI
from litestar_sla.web.dto import (
    ActionLogDTO,
    ActionLogPageDTO,
    ActionLogPageReadDTO,
    AdvanceRecordDTO,
    AdvanceRecordWriteDTO,
    CreateRecordDTO,
    CreateRecordWriteDTO,
    CycleResultDTO,
    CycleResultReadDTO,
    DefinitionDTO,
    DefinitionInputDTO,
    DefinitionReadDTO,
    DefinitionWriteDTO,
    RecordDetailDTO,
    RecordDetailReadDTO,
    RecordDTO,
    RecordPageDTO,
    RecordPageReadDTO,
    RecordReadDTO,
    SLAReportDTO,
    SLAReportReadDTO,
    SummaryDTO,
    SummaryReadDTO,
    TransitionDTO,
)

__all__ = [
    "ActionLogController",
    "DefinitionController",
    "EvaluatorController",
    "RecordController",
    "ReportController",
]


def _aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class DefinitionController(Controller):
    """API controller for workflow definitions.

    Tags: SLA Definitions
    """

    path = "/definitions"
    tags: ClassVar[list[str]] = ["SLA Definitions"]

    @post("/", dto=DefinitionWriteDTO, return_dto=DefinitionReadDTO)
    async def publish_definition(self, data: DefinitionInputDTO, sla_store: WorkflowDefinitionStore) -> DefinitionDTO:
        """Publish a definition as the next version of its flow.

        The previous active version of the flow is deactivated.

        Args:
            data: The definition.
            sla_store: Injected definition store.

        Returns:
            The published definition.
        """
        return DefinitionDTO.from_model(await sla_store.publish(data.to_domain()))

    @get("/", return_dto=DefinitionReadDTO)
    async def list_definitions(
        self,
        sla_store: WorkflowDefinitionStore,
        model: str | None = Parameter(default=None, description="Filter by business model"),
        flow_name: str | None = Parameter(query="flowName", default=None, description="Filter by flow name"),
        active_only: bool = Parameter(query="activeOnly", default=False, description="Only active versions"),
        limit: int = Parameter(default=50, ge=1, le=MAX_PAGE_SIZE, description="Maximum number of results"),
        offset: int = Parameter(default=0, ge=0, description="Number of results to skip"),
    ) -> list[DefinitionDTO]:
        """List workflow definitions, newest first."""
        definitions, _ = await sla_store.list_definitions(
            model=model,
            flow_name=flow_name,
            active_only=active_only,
            limit=limit,
            offset=offset,
        )
        return [DefinitionDTO.from_model(definition) for definition in definitions]

    @get("/{definition_id:uuid}", return_dto=DefinitionReadDTO)
    async def get_definition(self, definition_id: UUID, sla_store: WorkflowDefinitionStore) -> DefinitionDTO:
        """Get a definition with its steps."""
        return DefinitionDTO.from_model(await sla_store.get(definition_id))

    @patch("/{definition_id:uuid}", dto=DefinitionWriteDTO, return_dto=DefinitionReadDTO)
    async def update_definition(
        self,
        definition_id: UUID,
        data: DefinitionInputDTO,
        sla_store: WorkflowDefinitionStore,
    ) -> DefinitionDTO:
        """Edit a definition in place.

        Only allowed while no record references the definition; otherwise
        publish a new version. Responds 409 when locked.
        """
        return DefinitionDTO.from_model(await sla_store.update(definition_id, data.to_domain()))

    @post("/{definition_id:uuid}/deactivate", return_dto=DefinitionReadDTO, status_code=HTTP_200_OK)
    async def deactivate_definition(self, definition_id: UUID, sla_store: WorkflowDefinitionStore) -> DefinitionDTO:
        """Stop new records from starting on a definition."""
        return DefinitionDTO.from_model(await sla_store.deactivate(definition_id))


class RecordController(Controller):
    """API controller for tracked records.

    Tags: SLA Records
    """

    path = "/records"
    tags: ClassVar[list[str]] = ["SLA Records"]

    @post("/", dto=CreateRecordWriteDTO, return_dto=RecordReadDTO)
    async def create_record(self, data: CreateRecordDTO, sla_tracker: RecordTracker) -> RecordDTO:
        """Start tracking a business record.

        Args:
            data: Definition, business model and record ID.
            sla_tracker: Injected record tracker.

        Returns:
            The created record with its first deadline populated.
        """
        record = await sla_tracker.create_record(
            data.workflow_definition_id,
            data.model,
            data.business_record_id,
            data.activity_id,
            assignees=data.assignees,
            step_code=data.step_code,
        )
        return RecordDTO.from_model(record)

    @get("/", return_dto=RecordPageReadDTO)
    async def list_records(
        self,
        sla_tracker: RecordTracker,
        definition_id: UUID | None = Parameter(query="definitionId", default=None),
        model: str | None = Parameter(default=None),
        status: RecordStatus | None = Parameter(default=None),
        user_id: str | None = Parameter(query="userId", default=None),
        search: str | None = Parameter(default=None, description="Substring of the business record ID"),
        page: int = Parameter(default=1, ge=1),
        page_size: int = Parameter(query="pageSize", default=20, ge=1, le=MAX_PAGE_SIZE),
    ) -> RecordPageDTO:
        """List records by workflow, model, status or assignee."""
        records, total = await sla_tracker.list_records(
            definition_id=definition_id,
            model=model,
            status=status,
            user_id=user_id,
            search=search,
            limit=page_size,
            offset=(page - 1) * page_size,
        )
        return RecordPageDTO(
            items=[RecordDTO.from_model(record) for record in records],
            total=total,
            page=page,
            page_size=page_size,
        )

    @get("/{record_id:uuid}", return_dto=RecordDetailReadDTO)
    async def get_record(self, record_id: UUID, sla_tracker: RecordTracker) -> RecordDetailDTO:
        """Get a record with its step history and action log."""
        record, transitions, logs = await sla_tracker.get_record_history(record_id)
        return RecordDetailDTO(
            record=RecordDTO.from_model(record),
            transitions=[TransitionDTO.from_model(transition) for transition in transitions],
            action_logs=[ActionLogDTO.from_model(entry) for entry in logs],
        )

    @post("/{record_id:uuid}/advance", dto=AdvanceRecordWriteDTO, return_dto=RecordReadDTO, status_code=HTTP_200_OK)
    async def advance_record(self, record_id: UUID, data: AdvanceRecordDTO, sla_tracker: RecordTracker) -> RecordDTO:
        """Approve the record's current step.

        Responds 409 if the record is completed or escalated, or if it kept
        changing concurrently.
        """
        record = await sla_tracker.advance(
            record_id,
            data.approver_payload,
            expected_revision=data.expected_revision,
        )
        return RecordDTO.from_model(record)


class ActionLogController(Controller):
    """API controller for the SLA action log.

    Tags: SLA Action Logs
    """

    path = "/action-logs"
    tags: ClassVar[list[str]] = ["SLA Action Logs"]

    @get("/", return_dto=ActionLogPageReadDTO)
    async def list_action_logs(
        self,
        sla_action_logs: ActionLogService,
        user_id: str | None = Parameter(query="userId", default=None),
        record_id: UUID | None = Parameter(query="recordId", default=None),
        kind: ActionKind | None = Parameter(query="actionType", default=None),
        success: bool | None = Parameter(default=None),
        since: datetime | None = Parameter(query="from", default=None),
        until: datetime | None = Parameter(query="to", default=None),
        search: str | None = Parameter(default=None),
        page: int = Parameter(default=1, ge=1),
        page_size: int = Parameter(query="pageSize", default=20, ge=1, le=MAX_PAGE_SIZE),
    ) -> ActionLogPageDTO:
        """List action log entries by user, date range, record or kind, newest first."""
        entries, total = await sla_action_logs.list_logs(
            user_id=user_id,
            record_id=record_id,
            kind=kind,
            success=success,
            since=_aware(since),
            until=_aware(until),
            search=search,
            page=page,
            page_size=page_size,
        )
        return ActionLogPageDTO.build(entries, total, page, page_size)


class ReportController(Controller):
    """API controller for SLA reporting.

    Tags: SLA Reports
    """

    path = "/reports"
    tags: ClassVar[list[str]] = ["SLA Reports"]

    @get("/sla", return_dto=SLAReportReadDTO)
    async def sla_report(
        self,
        sla_reports: ReportingAggregator,
        user_id: str = Parameter(query="userId", default=ALL_USERS, description="A user ID or 'all'"),
        window_days: int = Parameter(query="windowDays", default=30, ge=1, le=3650),
    ) -> SLAReportDTO:
        """Per-user SLA compliance over a trailing window."""
        return SLAReportDTO.from_report(await sla_reports.sla_report(user_id, window_days))

    @get("/sla/export", media_type=MediaType.TEXT)
    async def export_sla_report(
        self,
        sla_reports: ReportingAggregator,
        user_id: str = Parameter(query="userId", default=ALL_USERS),
        window_days: int = Parameter(query="windowDays", default=30, ge=1, le=3650),
    ) -> Response[str]:
        """The SLA report as a downloadable text table."""
        content = await sla_reports.export_report(user_id, window_days)
        return Response(
            content=content,
            media_type=MediaType.TEXT,
            headers={"Content-Disposition": f'attachment; filename="sla-report-{user_id}-{window_days}d.txt"'},
        )

    @get("/summary", return_dto=SummaryReadDTO)
    async def summary(
        self,
        sla_reports: ReportingAggregator,
        window_days: int = Parameter(query="windowDays", default=30, ge=1, le=3650),
    ) -> SummaryDTO:
        """Dashboard counts: pending, overdue, completed, escalated and recent violations."""
        return SummaryDTO.from_summary(await sla_reports.summary(window_days))


class EvaluatorController(Controller):
    """API controller for the SLA evaluator.

    Tags: SLA Evaluator
    """

    path = "/evaluator"
    tags: ClassVar[list[str]] = ["SLA Evaluator"]

    @post("/run", return_dto=CycleResultReadDTO, status_code=HTTP_200_OK)
    async def run_cycle(self, sla_evaluator: SLAEvaluator) -> CycleResultDTO:
        """Run one evaluation cycle now."""
        return CycleResultDTO.from_result(await sla_evaluator.run_cycle())
