"""SQLAlchemy models for SLA persistence.

This module defines the database models for SLA tracking:
- WorkflowDefinitionModel: Versioned workflow definitions
- WorkflowStepModel: Ordered steps with SLA hours and violation policy
- SLARecordModel: Records progressing through a definition
- RecordAssigneeModel: Users responsible for approving a record
- StepTransitionModel: Per-record history of steps entered and approved
- SLAActionLogModel: Append-only audit trail of SLA actions
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from advanced_alchemy.base import UUIDAuditBase
from advanced_alchemy.types import DateTimeUTC
from sqlalchemy import JSON, Enum, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint, event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from litestar_sla.core.types import ActionKind, RecordStatus, ViolationAction
from litestar_sla.exceptions import SLAError

__all__ = [
    "JSONType",
    "RecordAssigneeModel",
    "SLAActionLogModel",
    "SLARecordModel",
    "StepTransitionModel",
    "WorkflowDefinitionModel",
    "WorkflowStepModel",
]


# Cross-database JSON type: uses JSONB for PostgreSQL, JSON for others (SQLite, MySQL, etc.)
JSONType = JSON().with_variant(JSONB, "postgresql")


class WorkflowDefinitionModel(UUIDAuditBase):
    """Persisted, versioned workflow definition.

    A definition is never edited once a record references it. Changes are
    published as a new version of the same ``flow_name``.

    Attributes:
        flow_name: Name shared by every version of the flow.
        model: Business model the flow tracks.
        version: Version number, starting at 1 per flow name.
        description: Human-readable description.
        is_active: Whether new records may start on this version.
        notify_callback: Workflow-level default callback for notify steps.
        auto_approve_callback: Workflow-level default callback for auto-approve steps.
        steps: The definition's steps, ordered.
    """

    __tablename__ = "sla_workflow_definitions"
    __table_args__ = (
        Index("ix_sla_workflow_definitions_flow_version", "flow_name", "version", unique=True),
        Index("ix_sla_workflow_definitions_model_active", "model", "is_active"),
    )

    flow_name: Mapped[str] = mapped_column(String(255), index=True)
    model: Mapped[str] = mapped_column(String(255))
    version: Mapped[int] = mapped_column(Integer, default=1)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(default=True)
    notify_callback: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    auto_approve_callback: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    # Relationships
    steps: Mapped[list[WorkflowStepModel]] = relationship(
        back_populates="definition",
        lazy="selectin",
        order_by="WorkflowStepModel.order",
        cascade="all, delete-orphan",
    )

    def step_after(self, step: WorkflowStepModel) -> WorkflowStepModel | None:
        """Return the step following ``step``, or None if it is the last one."""
        return next((candidate for candidate in self.steps if candidate.order == step.order + 1), None)

    def step_by_code(self, code: str) -> WorkflowStepModel | None:
        return next((candidate for candidate in self.steps if candidate.code == code), None)


class WorkflowStepModel(UUIDAuditBase):
    """One ordered step of a definition.

    Attributes:
        definition_id: Foreign key to the definition.
        order: 1-based position, contiguous within the definition.
        code: Business code, unique within the definition.
        name: Display name.
        sla_hours: Allotted time in whole hours.
        violation_action: Notify or auto-approve.
        callback: Optional step-level callback configuration.
        grace_hours: Optional grace window between notify firings.
        max_notifications: Optional notify limit before escalation.
    """

    __tablename__ = "sla_workflow_steps"
    __table_args__ = (
        UniqueConstraint("definition_id", "step_order", name="uq_sla_workflow_steps_definition_order"),
        UniqueConstraint("definition_id", "code", name="uq_sla_workflow_steps_definition_code"),
    )

    definition_id: Mapped[UUID] = mapped_column(
        ForeignKey("sla_workflow_definitions.id", ondelete="CASCADE"),
        index=True,
    )
    order: Mapped[int] = mapped_column("step_order", Integer)
    code: Mapped[str] = mapped_column(String(100))
    name: Mapped[str] = mapped_column(String(255))
    sla_hours: Mapped[int] = mapped_column(Integer, default=24)
    violation_action: Mapped[ViolationAction] = mapped_column(
        Enum(ViolationAction, native_enum=False, length=50),
        default=ViolationAction.NOTIFY,
    )
    callback: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    grace_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_notifications: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Relationships
    definition: Mapped[WorkflowDefinitionModel] = relationship(back_populates="steps", lazy="noload")


class SLARecordModel(UUIDAuditBase):
    """A business record progressing through a workflow definition.

    ``revision`` is the optimistic concurrency token: every ORM flush that
    changes the row increments it and fails if another writer got there first.

    Attributes:
        definition_id: Foreign key to the definition.
        current_step_id: Foreign key to the current step (the last step once completed).
        model: Business model name.
        business_record_id: Identifier of the business entity.
        activity_id: Optional originating activity.
        status: Pending, completed or escalated.
        remaining_hours: SLA hours left on the current step, two decimals.
        approval_payload: Payload of the most recent approval.
        approved_at: When the most recent step was approved.
        next_due_at: Current deadline; None once terminal.
        step_entered_at: When the current step was entered.
        started_at: When the record was created.
        violation_count: Violations fired on the current step.
        revision: Optimistic concurrency token.
    """

    __tablename__ = "sla_records"
    __table_args__ = (
        UniqueConstraint(
            "model",
            "definition_id",
            "business_record_id",
            name="uq_sla_records_model_definition_business_record",
        ),
        Index("ix_sla_records_status_next_due_at", "status", "next_due_at"),
    )

    definition_id: Mapped[UUID] = mapped_column(
        ForeignKey("sla_workflow_definitions.id", ondelete="RESTRICT"),
        index=True,
    )
    current_step_id: Mapped[UUID] = mapped_column(ForeignKey("sla_workflow_steps.id", ondelete="RESTRICT"))
    model: Mapped[str] = mapped_column(String(255))
    business_record_id: Mapped[str] = mapped_column(String(255))
    activity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[RecordStatus] = mapped_column(
        Enum(RecordStatus, native_enum=False, length=50),
        default=RecordStatus.PENDING,
    )
    remaining_hours: Mapped[Decimal] = mapped_column(Numeric(10, 2, asdecimal=True), default=Decimal("0.00"))
    approval_payload: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTimeUTC(timezone=True), nullable=True)
    next_due_at: Mapped[datetime | None] = mapped_column(DateTimeUTC(timezone=True), nullable=True)
    step_entered_at: Mapped[datetime] = mapped_column(DateTimeUTC(timezone=True))
    started_at: Mapped[datetime] = mapped_column(DateTimeUTC(timezone=True))
    violation_count: Mapped[int] = mapped_column(Integer, default=0)
    revision: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": revision}  # noqa: RUF012

    # Relationships
    definition: Mapped[WorkflowDefinitionModel] = relationship(lazy="selectin")
    current_step: Mapped[WorkflowStepModel] = relationship(lazy="selectin")
    assignees: Mapped[list[RecordAssigneeModel]] = relationship(
        back_populates="record",
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    transitions: Mapped[list[StepTransitionModel]] = relationship(
        back_populates="record",
        lazy="noload",
        order_by="StepTransitionModel.entered_at",
        cascade="all, delete-orphan",
    )

    @property
    def is_terminal(self) -> bool:
        return RecordStatus(self.status).is_terminal


class RecordAssigneeModel(UUIDAuditBase):
    """A user responsible for approving a record.

    Attributes:
        record_id: Foreign key to the record.
        user_id: External user identifier.
        name: Display name.
        login: Login name.
    """

    __tablename__ = "sla_record_assignees"
    __table_args__ = (UniqueConstraint("record_id", "user_id", name="uq_sla_record_assignees_record_user"),)

    record_id: Mapped[UUID] = mapped_column(ForeignKey("sla_records.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    login: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Relationships
    record: Mapped[SLARecordModel] = relationship(back_populates="assignees", lazy="noload")


class StepTransitionModel(UUIDAuditBase):
    """One step a record entered, and how it left it.

    Attributes:
        record_id: Foreign key to the record.
        step_id: Foreign key to the step.
        step_code: Denormalized step code.
        entered_at: When the step was entered.
        approved_at: When the step was approved; None while current.
        automatic: Whether the approval was system-generated.
        approval_payload: The approval payload.
    """

    __tablename__ = "sla_step_transitions"
    __table_args__ = (Index("ix_sla_step_transitions_record_entered", "record_id", "entered_at"),)

    record_id: Mapped[UUID] = mapped_column(ForeignKey("sla_records.id", ondelete="CASCADE"))
    step_id: Mapped[UUID] = mapped_column(ForeignKey("sla_workflow_steps.id", ondelete="RESTRICT"))
    step_code: Mapped[str] = mapped_column(String(100))
    entered_at: Mapped[datetime] = mapped_column(DateTimeUTC(timezone=True))
    approved_at: Mapped[datetime | None] = mapped_column(DateTimeUTC(timezone=True), nullable=True)
    automatic: Mapped[bool] = mapped_column(default=False)
    approval_payload: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    # Relationships
    record: Mapped[SLARecordModel] = relationship(back_populates="transitions", lazy="noload")


class SLAActionLogModel(UUIDAuditBase):
    """Append-only audit entry for an SLA action.

    Attributes:
        record_id: Foreign key to the record.
        step_id: Foreign key to the step the action applied to.
        step_code: Denormalized step code.
        kind: Notify, auto-approve or evaluation error.
        occurred_at: When the action was taken.
        success: Whether the action succeeded.
        detail: Outcome detail, the failure reason on failure.
        violation_count: The record's violation count after the action.
        payload: Request and response data of the action.
    """

    __tablename__ = "sla_action_logs"
    __table_args__ = (
        Index("ix_sla_action_logs_record_occurred", "record_id", "occurred_at"),
        Index("ix_sla_action_logs_kind", "kind"),
        Index("ix_sla_action_logs_occurred_at", "occurred_at"),
    )

    record_id: Mapped[UUID] = mapped_column(ForeignKey("sla_records.id", ondelete="CASCADE"))
    step_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("sla_workflow_steps.id", ondelete="SET NULL"),
        nullable=True,
    )
    step_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    kind: Mapped[ActionKind] = mapped_column(Enum(ActionKind, native_enum=False, length=50))
    occurred_at: Mapped[datetime] = mapped_column(DateTimeUTC(timezone=True))
    success: Mapped[bool] = mapped_column(default=True)
    detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    violation_count: Mapped[int] = mapped_column(Integer, default=0)
    payload: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)


@event.listens_for(SLAActionLogModel, "before_update")
def _reject_action_log_update(_mapper: Any, _connection: Any, target: SLAActionLogModel) -> None:
    msg = f"Action log entry '{target.id}' is immutable"
    raise SLAError(msg)
