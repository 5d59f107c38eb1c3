"""Initial schema.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_UUID = postgresql.UUID(as_uuid=True)


def _timestamps(updated: bool = True) -> list[sa.Column]:
    columns = [sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)]
    if updated:
        columns.append(sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False))
    return columns


def upgrade() -> None:
    """Create all dispatch-core tables."""
    # --- machines ---
    op.create_table(
        "machines",
        sa.Column("id", _UUID, server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("company_id", _UUID, nullable=False),
        sa.Column("warehouse_id", _UUID, nullable=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("model", sa.String(100), nullable=True),
        sa.Column("machine_type", sa.String(20), server_default="other", nullable=False, comment="cutter, bender, loader, other"),
        sa.Column("status", sa.String(20), server_default="idle", nullable=False),
        sa.Column("current_run_id", _UUID, nullable=True),
        sa.Column("current_operator_profile_id", _UUID, nullable=True),
        sa.Column("last_event_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), server_default="1", nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_machines_company_id", "machines", ["company_id"])

    # --- machine_capabilities ---
    op.create_table(
        "machine_capabilities",
        sa.Column("id", _UUID, server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("machine_id", _UUID, nullable=False),
        sa.Column("bar_code", sa.String(10), nullable=False, comment="RSIC bar size, e.g. 10M"),
        sa.Column("process", sa.String(20), nullable=False),
        sa.Column("max_bars", sa.Integer(), nullable=False, comment="Max quantity per batch"),
        sa.Column("max_length_mm", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["machine_id"], ["machines.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("machine_id", "bar_code", "process", name="uq_machine_capability"),
    )

    # --- production_tasks ---
    op.create_table(
        "production_tasks",
        sa.Column("id", _UUID, server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("company_id", _UUID, nullable=False),
        sa.Column("task_type", sa.String(20), nullable=False),
        sa.Column("bar_code", sa.String(10), nullable=False),
        sa.Column("grade", sa.String(20), nullable=True),
        sa.Column("setup_key", sa.String(100), nullable=True),
        sa.Column("priority", sa.Integer(), server_default="5", nullable=False),
        sa.Column("status", sa.String(20), server_default="pending", nullable=False),
        sa.Column("qty_required", sa.Integer(), nullable=False),
        sa.Column("qty_completed", sa.Integer(), server_default="0", nullable=False),
        sa.Column("cut_length_mm", sa.Integer(), nullable=True),
        sa.Column("mark_number", sa.String(50), nullable=True),
        sa.Column("drawing_ref", sa.String(100), nullable=True),
        sa.Column("project_id", _UUID, nullable=True),
        sa.Column("work_order_id", _UUID, nullable=True),
        sa.Column("barlist_id", _UUID, nullable=True),
        sa.Column("locked_to_machine_id", _UUID, nullable=True, comment="Dispatch only to this machine when set"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_production_tasks_company_id", "production_tasks", ["company_id"])

    # --- machine_queue_items ---
    op.create_table(
        "machine_queue_items",
        sa.Column("id", _UUID, server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("company_id", _UUID, nullable=False),
        sa.Column("task_id", _UUID, nullable=False),
        sa.Column("machine_id", _UUID, nullable=False),
        sa.Column("project_id", _UUID, nullable=True),
        sa.Column("work_order_id", _UUID, nullable=True),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), server_default="queued", nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["task_id"], ["production_tasks.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["machine_id"], ["machines.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_machine_queue_items_company_id", "machine_queue_items", ["company_id"])
    op.create_index(
        "uq_queue_machine_position",
        "machine_queue_items",
        ["machine_id", "position"],
        unique=True,
        postgresql_where=sa.text("status <> 'cancelled'"),
    )
    op.create_index(
        "uq_queue_task_active",
        "machine_queue_items",
        ["task_id"],
        unique=True,
        postgresql_where=sa.text("status = 'queued'"),
    )

    # --- machine_runs ---
    op.create_table(
        "machine_runs",
        sa.Column("id", _UUID, server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("company_id", _UUID, nullable=False),
        sa.Column("machine_id", _UUID, nullable=False),
        sa.Column("task_id", _UUID, nullable=True),
        sa.Column("process", sa.String(20), nullable=False),
        sa.Column("bar_code", sa.String(10), nullable=True),
        sa.Column("work_order_id", _UUID, nullable=True),
        sa.Column("operator_profile_id", _UUID, nullable=True),
        sa.Column("supervisor_profile_id", _UUID, nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("input_qty", sa.Integer(), nullable=True),
        sa.Column("output_qty", sa.Integer(), nullable=True),
        sa.Column("scrap_qty", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", _UUID, nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["machine_id"], ["machines.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["task_id"], ["production_tasks.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_machine_runs_company_id", "machine_runs", ["company_id"])
    op.create_index(
        "uq_machine_runs_active",
        "machine_runs",
        ["machine_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('running', 'paused', 'blocked')"),
    )

    # --- transition_log (append-only) ---
    op.create_table(
        "transition_log",
        sa.Column("id", _UUID, server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("company_id", _UUID, nullable=True),
        sa.Column("entity_id", _UUID, nullable=True),
        sa.Column("graph", sa.String(50), nullable=False, comment="pipeline_stage, delivery_status, machine_run, ..."),
        sa.Column("from_state", sa.String(50), nullable=False),
        sa.Column("to_state", sa.String(50), nullable=False),
        sa.Column("result", sa.String(20), nullable=False),
        sa.Column("block_reason_code", sa.String(50), nullable=True),
        sa.Column("block_reason_detail", sa.Text(), nullable=True),
        sa.Column("triggered_by", sa.String(50), server_default="user", nullable=False),
        sa.Column("user_id", _UUID, nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_transition_log_company_id", "transition_log", ["company_id"])
    op.create_index("ix_transition_log_entity_id", "transition_log", ["entity_id"])

    # --- events ---
    op.create_table(
        "events",
        sa.Column("id", _UUID, server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("company_id", _UUID, nullable=True),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", _UUID, nullable=True),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("actor_id", _UUID, nullable=True),
        sa.Column("actor_type", sa.String(20), server_default="user", nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_events_company_id", "events", ["company_id"])
    op.create_index("ix_events_event_type", "events", ["event_type"])

    # --- leads ---
    op.create_table(
        "leads",
        sa.Column("id", _UUID, server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("company_id", _UUID, nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("stage", sa.String(50), server_default="new", nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_leads_company_id", "leads", ["company_id"])

    # --- lead_gate_records ---
    op.create_table(
        "lead_gate_records",
        sa.Column("id", _UUID, server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("company_id", _UUID, nullable=False),
        sa.Column("lead_id", _UUID, nullable=False),
        sa.Column("gate", sa.String(20), nullable=False, comment="qualification, pricing, loss, outcome"),
        sa.Column("payload", postgresql.JSONB(), nullable=True),
        sa.Column("created_by", _UUID, nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["lead_id"], ["leads.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_lead_gate_records_lead_id", "lead_gate_records", ["lead_id"])

    # --- deliveries ---
    op.create_table(
        "deliveries",
        sa.Column("id", _UUID, server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("company_id", _UUID, nullable=False),
        sa.Column("delivery_number", sa.String(50), nullable=False),
        sa.Column("status", sa.String(30), server_default="pending", nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_deliveries_company_id", "deliveries", ["company_id"])


def downgrade() -> None:
    """Drop all tables in reverse order."""
    op.drop_table("deliveries")
    op.drop_table("lead_gate_records")
    op.drop_table("leads")
    op.drop_table("events")
    op.drop_table("transition_log")
    op.drop_table("machine_runs")
    op.drop_table("machine_queue_items")
    op.drop_table("production_tasks")
    op.drop_table("machine_capabilities")
    op.drop_table("machines")
