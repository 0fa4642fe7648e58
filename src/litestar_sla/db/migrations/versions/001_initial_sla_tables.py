"""Initial SLA tables.

Revision ID: 001_initial_sla
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial_sla"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _audit_columns() -> list[sa.Column]:
    return [
        sa.Column("sa_orm_sentinel", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Create SLA tables."""
    # Create sla_workflow_definitions table
    op.create_table(
        "sla_workflow_definitions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("flow_name", sa.String(length=255), nullable=False),
        sa.Column("model", sa.String(length=255), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, default=True),
        sa.Column("notify_callback", JSONType, nullable=True),
        sa.Column("auto_approve_callback", JSONType, nullable=True),
        *_audit_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sla_workflow_definitions_flow_name", "sla_workflow_definitions", ["flow_name"])
    op.create_index(
        "ix_sla_workflow_definitions_flow_version",
        "sla_workflow_definitions",
        ["flow_name", "version"],
        unique=True,
    )
    op.create_index(
        "ix_sla_workflow_definitions_model_active",
        "sla_workflow_definitions",
        ["model", "is_active"],
    )

    # Create sla_workflow_steps table
    op.create_table(
        "sla_workflow_steps",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("definition_id", sa.Uuid(), nullable=False),
        sa.Column("step_order", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(length=100), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("sla_hours", sa.Integer(), nullable=False),
        sa.Column("violation_action", sa.String(length=50), nullable=False),
        sa.Column("callback", JSONType, nullable=True),
        sa.Column("grace_hours", sa.Integer(), nullable=True),
        sa.Column("max_notifications", sa.Integer(), nullable=True),
        *_audit_columns(),
        sa.ForeignKeyConstraint(["definition_id"], ["sla_workflow_definitions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("definition_id", "step_order", name="uq_sla_workflow_steps_definition_order"),
        sa.UniqueConstraint("definition_id", "code", name="uq_sla_workflow_steps_definition_code"),
    )
    op.create_index("ix_sla_workflow_steps_definition_id", "sla_workflow_steps", ["definition_id"])

    # Create sla_records table
    op.create_table(
        "sla_records",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("definition_id", sa.Uuid(), nullable=False),
        sa.Column("current_step_id", sa.Uuid(), nullable=False),
        sa.Column("model", sa.String(length=255), nullable=False),
        sa.Column("business_record_id", sa.String(length=255), nullable=False),
        sa.Column("activity_id", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=50), nullable=False),
        sa.Column("remaining_hours", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("approval_payload", JSONType, nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_due_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("step_entered_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("violation_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("revision", sa.Integer(), nullable=False),
        *_audit_columns(),
        sa.ForeignKeyConstraint(["definition_id"], ["sla_workflow_definitions.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["current_step_id"], ["sla_workflow_steps.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "model",
            "definition_id",
            "business_record_id",
            name="uq_sla_records_model_definition_business_record",
        ),
    )
    op.create_index("ix_sla_records_definition_id", "sla_records", ["definition_id"])
    op.create_index("ix_sla_records_status_next_due_at", "sla_records", ["status", "next_due_at"])

    # Create sla_record_assignees table
    op.create_table(
        "sla_record_assignees",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("record_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("login", sa.String(length=255), nullable=True),
        *_audit_columns(),
        sa.ForeignKeyConstraint(["record_id"], ["sla_records.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("record_id", "user_id", name="uq_sla_record_assignees_record_user"),
    )
    op.create_index("ix_sla_record_assignees_record_id", "sla_record_assignees", ["record_id"])
    op.create_index("ix_sla_record_assignees_user_id", "sla_record_assignees", ["user_id"])

    # Create sla_step_transitions table
    op.create_table(
        "sla_step_transitions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("record_id", sa.Uuid(), nullable=False),
        sa.Column("step_id", sa.Uuid(), nullable=False),
        sa.Column("step_code", sa.String(length=100), nullable=False),
        sa.Column("entered_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("automatic", sa.Boolean(), nullable=False, default=False),
        sa.Column("approval_payload", JSONType, nullable=True),
        *_audit_columns(),
        sa.ForeignKeyConstraint(["record_id"], ["sla_records.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["step_id"], ["sla_workflow_steps.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_sla_step_transitions_record_entered",
        "sla_step_transitions",
        ["record_id", "entered_at"],
    )

    # Create sla_action_logs table
    op.create_table(
        "sla_action_logs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("record_id", sa.Uuid(), nullable=False),
        sa.Column("step_id", sa.Uuid(), nullable=True),
        sa.Column("step_code", sa.String(length=100), nullable=True),
        sa.Column("kind", sa.String(length=50), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False, default=True),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("violation_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payload", JSONType, nullable=True),
        *_audit_columns(),
        sa.ForeignKeyConstraint(["record_id"], ["sla_records.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["step_id"], ["sla_workflow_steps.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sla_action_logs_record_occurred", "sla_action_logs", ["record_id", "occurred_at"])
    op.create_index("ix_sla_action_logs_kind", "sla_action_logs", ["kind"])
    op.create_index("ix_sla_action_logs_occurred_at", "sla_action_logs", ["occurred_at"])


def downgrade() -> None:
    """Drop SLA tables."""
    op.drop_table("sla_action_logs")
    op.drop_table("sla_step_transitions")
    op.drop_table("sla_record_assignees")
    op.drop_table("sla_records")
    op.drop_table("sla_workflow_steps")
    op.drop_table("sla_workflow_definitions")
