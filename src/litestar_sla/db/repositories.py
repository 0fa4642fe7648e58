"""Repository implementations for SLA persistence.

This module provides async repositories for CRUD operations on SLA models
using advanced-alchemy's repository pattern.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from advanced_alchemy.filters import LimitOffset, OrderBy
from advanced_alchemy.repository import SQLAlchemyAsyncRepository
from sqlalchemy import and_, func, or_, select, update

from litestar_sla.core.types import ActionKind, RecordStatus
from litestar_sla.db.models import (
    RecordAssigneeModel,
    SLAActionLogModel,
    SLARecordModel,
    StepTransitionModel,
    WorkflowDefinitionModel,
    WorkflowStepModel,
)

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime
    from decimal import Decimal

    from sqlalchemy import ColumnElement, Subquery

__all__ = [
    "SLAActionLogRepository",
    "SLARecordRepository",
    "StepTransitionRepository",
    "WorkflowDefinitionRepository",
    "WorkflowStepRepository",
]


def _records_for_user(user_id: str) -> ColumnElement[bool]:
    return SLARecordModel.id.in_(select(RecordAssigneeModel.record_id).where(RecordAssigneeModel.user_id == user_id))


class WorkflowDefinitionRepository(SQLAlchemyAsyncRepository[WorkflowDefinitionModel]):
    """Repository for workflow definition CRUD operations.

    Provides version management and activation status for definitions.
    """

    model_type = WorkflowDefinitionModel

    async def get_active(self, flow_name: str) -> WorkflowDefinitionModel | None:
        """Get the active version of a flow.

        Args:
            flow_name: The flow name.

        Returns:
            The highest active version or None.
        """
        stmt = (
            select(WorkflowDefinitionModel)
            .where(
                and_(
                    WorkflowDefinitionModel.flow_name == flow_name,
                    WorkflowDefinitionModel.is_active == True,  # noqa: E712
                )
            )
            .order_by(WorkflowDefinitionModel.version.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_locked(self, definition_id: UUID, *, shared: bool = False) -> WorkflowDefinitionModel | None:
        """Load a definition and lock its row until the transaction ends.

        Editors take the exclusive lock; record creation takes the shared one
        (``FOR SHARE``), which only conflicts with editors. Backends without
        row locks, such as SQLite, ignore the clause.

        Args:
            definition_id: The definition ID.
            shared: Take a read lock instead of an exclusive one.

        Returns:
            The definition or None.
        """
        stmt = (
            select(WorkflowDefinitionModel)
            .where(WorkflowDefinitionModel.id == definition_id)
            .with_for_update(read=shared)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def latest_version_number(self, flow_name: str) -> int:
        """Return the highest version published for a flow, or 0."""
        stmt = select(func.max(WorkflowDefinitionModel.version)).where(WorkflowDefinitionModel.flow_name == flow_name)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() or 0

    async def deactivate_flow(self, flow_name: str, *, keep: UUID | None = None) -> int:
        """Deactivate every version of a flow except ``keep``.

        Args:
            flow_name: The flow name.
            keep: Optional definition ID to leave untouched.

        Returns:
            Number of versions deactivated.
        """
        conditions = [
            WorkflowDefinitionModel.flow_name == flow_name,
            WorkflowDefinitionModel.is_active == True,  # noqa: E712
        ]
        if keep is not None:
            conditions.append(WorkflowDefinitionModel.id != keep)
        stmt = select(WorkflowDefinitionModel).where(and_(*conditions))
        result = await self.session.execute(stmt)
        definitions = result.scalars().all()
        for definition in definitions:
            definition.is_active = False
        await self.session.flush()
        return len(definitions)

    async def find_definitions(
        self,
        *,
        model: str | None = None,
        flow_name: str | None = None,
        active_only: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[Sequence[WorkflowDefinitionModel], int]:
        """List definitions with optional filters.

        Returns:
            Tuple of (definitions, total_count).
        """
        conditions: list[ColumnElement[bool]] = []
        if model:
            conditions.append(WorkflowDefinitionModel.model == model)
        if flow_name:
            conditions.append(WorkflowDefinitionModel.flow_name == flow_name)
        if active_only:
            conditions.append(WorkflowDefinitionModel.is_active == True)  # noqa: E712
        return await self.list_and_count(
            *conditions,
            LimitOffset(limit=limit, offset=offset),
            OrderBy(field_name="created_at", sort_order="desc"),
        )

    async def count_records(self, definition_id: UUID) -> int:
        """Count the records referencing a definition."""
        stmt = select(func.count(SLARecordModel.id)).where(SLARecordModel.definition_id == definition_id)
        result = await self.session.execute(stmt)
        return result.scalar_one()


class WorkflowStepRepository(SQLAlchemyAsyncRepository[WorkflowStepModel]):
    """Repository for workflow step CRUD operations."""

    model_type = WorkflowStepModel


class SLARecordRepository(SQLAlchemyAsyncRepository[SLARecordModel]):
    """Repository for tracked record operations.

    Provides the evaluator's due-record scan and the filtered listings of
    the query surface.
    """

    model_type = SLARecordModel

    async def find_due(self, now: datetime, limit: int | None = None) -> Sequence[SLARecordModel]:
        """Find pending records whose deadline has passed.

        Args:
            now: The evaluation instant.
            limit: Optional cap on the batch size.

        Returns:
            Due records, most overdue first.
        """
        stmt = (
            select(SLARecordModel)
            .where(
                and_(
                    SLARecordModel.status == RecordStatus.PENDING,
                    SLARecordModel.next_due_at.is_not(None),
                    SLARecordModel.next_due_at <= now,
                )
            )
            .order_by(SLARecordModel.next_due_at)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def find_watched(self, now: datetime) -> Sequence[SLARecordModel]:
        """Find pending records that are not yet due."""
        stmt = select(SLARecordModel).where(
            and_(
                SLARecordModel.status == RecordStatus.PENDING,
                SLARecordModel.next_due_at > now,
            )
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def find_by_business_record(
        self,
        model: str,
        definition_id: UUID,
        business_record_id: str,
    ) -> SLARecordModel | None:
        return await self.get_one_or_none(
            model=model,
            definition_id=definition_id,
            business_record_id=business_record_id,
        )

    async def find_records(
        self,
        *,
        definition_id: UUID | None = None,
        model: str | None = None,
        status: RecordStatus | None = None,
        user_id: str | None = None,
        search: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[Sequence[SLARecordModel], int]:
        """List records with optional filters.

        Args:
            definition_id: Only records of this definition.
            model: Only records of this business model.
            status: Only records in this status.
            user_id: Only records assigned to this user.
            search: Substring match on the business record ID.
            limit: Maximum number of results.
            offset: Number of results to skip.

        Returns:
            Tuple of (records, total_count).
        """
        conditions: list[ColumnElement[bool]] = []
        if definition_id:
            conditions.append(SLARecordModel.definition_id == definition_id)
        if model:
            conditions.append(SLARecordModel.model == model)
        if status:
            conditions.append(SLARecordModel.status == status)
        if user_id:
            conditions.append(_records_for_user(user_id))
        if search:
            conditions.append(SLARecordModel.business_record_id.ilike(f"%{search}%"))
        return await self.list_and_count(
            *conditions,
            LimitOffset(limit=limit, offset=offset),
            OrderBy(field_name="created_at", sort_order="desc"),
        )

    async def records_started_since(self, since: datetime, user_id: str | None = None) -> Sequence[SLARecordModel]:
        """Records created at or after ``since``, optionally for one user."""
        conditions: list[ColumnElement[bool]] = [SLARecordModel.started_at >= since]
        if user_id:
            conditions.append(_records_for_user(user_id))
        stmt = select(SLARecordModel).where(and_(*conditions)).order_by(SLARecordModel.started_at)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def count_by_status(self) -> dict[RecordStatus, int]:
        stmt = select(SLARecordModel.status, func.count(SLARecordModel.id)).group_by(SLARecordModel.status)
        result = await self.session.execute(stmt)
        counts = {status: 0 for status in RecordStatus}
        for status, count in result.all():
            counts[RecordStatus(status)] = count
        return counts

    async def count_overdue(self, now: datetime) -> int:
        stmt = select(func.count(SLARecordModel.id)).where(
            and_(
                SLARecordModel.status == RecordStatus.PENDING,
                SLARecordModel.next_due_at <= now,
            )
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def set_remaining_hours(self, record_id: UUID, revision: int, remaining_hours: Decimal) -> bool:
        """Store a recomputed remaining-hours value without bumping the revision.

        The update is skipped if the record changed since ``revision`` was read
        or if it would increase the stored value.

        Returns:
            True if a row was updated.
        """
        table = SLARecordModel.__table__
        stmt = (
            update(table)
            .where(
                and_(
                    table.c.id == record_id,
                    table.c.revision == revision,
                    table.c.status == RecordStatus.PENDING,
                    table.c.remaining_hours > remaining_hours,
                )
            )
            .values(remaining_hours=remaining_hours)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1


class StepTransitionRepository(SQLAlchemyAsyncRepository[StepTransitionModel]):
    """Repository for per-record step history."""

    model_type = StepTransitionModel

    async def find_by_record(self, record_id: UUID) -> Sequence[StepTransitionModel]:
        """List the steps a record went through, oldest first."""
        stmt = (
            select(StepTransitionModel)
            .where(StepTransitionModel.record_id == record_id)
            .order_by(StepTransitionModel.entered_at, StepTransitionModel.created_at)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def find_open(self, record_id: UUID) -> StepTransitionModel | None:
        """Return the transition for the step the record currently sits on."""
        stmt = (
            select(StepTransitionModel)
            .where(
                and_(
                    StepTransitionModel.record_id == record_id,
                    StepTransitionModel.approved_at.is_(None),
                )
            )
            .order_by(StepTransitionModel.entered_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()


class SLAActionLogRepository(SQLAlchemyAsyncRepository[SLAActionLogModel]):
    """Repository for the append-only action log.

    Entries are only ever added; there is no update path.
    """

    model_type = SLAActionLogModel

    async def find_logs(
        self,
        *,
        user_id: str | None = None,
        record_id: UUID | None = None,
        kind: ActionKind | None = None,
        success: bool | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        search: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[SLAActionLogModel], int]:
        """List action log entries with optional filters.

        Args:
            user_id: Only entries for records assigned to this user.
            record_id: Only entries for this record.
            kind: Only entries of this kind.
            success: Only successful (True) or failed (False) entries.
            since: Only entries at or after this instant.
            until: Only entries at or before this instant.
            search: Substring match on the detail or the business record ID.
            limit: Maximum number of results.
            offset: Number of results to skip.

        Returns:
            Tuple of (entries, total_count), newest first.
        """
        conditions: list[ColumnElement[bool]] = []
        if user_id:
            conditions.append(
                SLAActionLogModel.record_id.in_(
                    select(RecordAssigneeModel.record_id).where(RecordAssigneeModel.user_id == user_id)
                )
            )
        if record_id:
            conditions.append(SLAActionLogModel.record_id == record_id)
        if kind:
            conditions.append(SLAActionLogModel.kind == kind)
        if success is not None:
            conditions.append(SLAActionLogModel.success == success)
        if since:
            conditions.append(SLAActionLogModel.occurred_at >= since)
        if until:
            conditions.append(SLAActionLogModel.occurred_at <= until)
        if search:
            pattern = f"%{search}%"
            conditions.append(
                or_(
                    SLAActionLogModel.detail.ilike(pattern),
                    SLAActionLogModel.record_id.in_(
                        select(SLARecordModel.id).where(SLARecordModel.business_record_id.ilike(pattern))
                    ),
                )
            )
        return await self.list_and_count(
            *conditions,
            LimitOffset(limit=limit, offset=offset),
            OrderBy(field_name="occurred_at", sort_order="desc"),
        )

    async def find_by_record(self, record_id: UUID) -> Sequence[SLAActionLogModel]:
        """List a record's entries, oldest first."""
        stmt = (
            select(SLAActionLogModel)
            .where(SLAActionLogModel.record_id == record_id)
            .order_by(SLAActionLogModel.occurred_at, SLAActionLogModel.created_at)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    @staticmethod
    def _distinct_violations(*conditions: ColumnElement[bool]) -> Subquery:
        # Failed attempts share the step and count of the violation they retry.
        return (
            select(SLAActionLogModel.record_id, SLAActionLogModel.step_id, SLAActionLogModel.violation_count)
            .where(
                and_(
                    SLAActionLogModel.kind.in_([ActionKind.VIOLATION_NOTIFY, ActionKind.VIOLATION_AUTO_APPROVE]),
                    *conditions,
                )
            )
            .distinct()
            .subquery()
        )

    async def violation_counts(self, record_ids: Sequence[UUID]) -> dict[UUID, int]:
        """Count violations per record.

        A violation is one overrun of one step, identified by the step and the
        record's violation count at the time. Retries of an action that failed
        belong to the same violation. Evaluation errors are not violations and
        are not counted.
        """
        if not record_ids:
            return {}
        violations = self._distinct_violations(SLAActionLogModel.record_id.in_(record_ids))
        stmt = select(violations.c.record_id, func.count()).group_by(violations.c.record_id)
        result = await self.session.execute(stmt)
        return {record_id: count for record_id, count in result.all()}

    async def count_violations(self, since: datetime | None = None) -> int:
        """Count violations logged since ``since``, across all records."""
        conditions = [SLAActionLogModel.occurred_at >= since] if since is not None else []
        violations = self._distinct_violations(*conditions)
        result = await self.session.execute(select(func.count()).select_from(violations))
        return result.scalar_one()
