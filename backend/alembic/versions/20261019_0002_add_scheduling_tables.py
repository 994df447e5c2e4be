"""add production plans, schedule slots, machine schedule state and audit log

Revision ID: 20261019_0002
Revises: 20261019_0001
Create Date: 2026-10-19 09:30:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_0002"
down_revision = "20261019_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "production_plans",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("plan_type", sa.String(length=10), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("work_order_ids_json", sa.Text(), nullable=False),
        sa.Column("policy_json", sa.Text(), nullable=True),
        sa.Column("last_scheduled_at", sa.DateTime(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("plan_type IN ('daily', 'weekly', 'monthly')", name="ck_production_plans_type"),
        sa.CheckConstraint(
            "status IN ('draft', 'active', 'paused', 'completed', 'archived')",
            name="ck_production_plans_status",
        ),
        sa.CheckConstraint("end_date >= start_date", name="ck_production_plans_range"),
    )
    op.create_index("ix_production_plans_id", "production_plans", ["id"], unique=False)
    op.create_index(
        "ix_production_plans_status_start",
        "production_plans",
        ["status", "start_date"],
        unique=False,
    )

    op.create_table(
        "schedule_slots",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("plan_id", sa.Integer(), nullable=True),
        sa.Column("work_order_id", sa.Integer(), nullable=False),
        sa.Column("operation_id", sa.Integer(), nullable=False),
        sa.Column("machine_id", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.DateTime(), nullable=False),
        sa.Column("end_time", sa.DateTime(), nullable=False),
        sa.Column("duration_override", sa.Boolean(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("priority", sa.String(length=10), nullable=True),
        sa.Column("assigned_operator", sa.String(length=100), nullable=True),
        sa.Column("tags_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["plan_id"], ["production_plans.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["work_order_id"], ["work_orders.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["operation_id"], ["operations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["machine_id"], ["machines.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("end_time > start_time", name="ck_schedule_slots_window"),
        sa.CheckConstraint(
            "status IN ('scheduled', 'in_progress', 'completed', 'delayed')",
            name="ck_schedule_slots_status",
        ),
    )
    op.create_index("ix_schedule_slots_id", "schedule_slots", ["id"], unique=False)
    op.create_index("ix_schedule_slots_plan_id", "schedule_slots", ["plan_id"], unique=False)
    op.create_index("ix_schedule_slots_operation_id", "schedule_slots", ["operation_id"], unique=False)
    op.create_index(
        "ix_schedule_slots_machine_window",
        "schedule_slots",
        ["machine_id", "start_time", "end_time"],
        unique=False,
    )
    op.create_index(
        "ix_schedule_slots_work_order",
        "schedule_slots",
        ["work_order_id", "operation_id"],
        unique=False,
    )

    op.create_table(
        "machine_schedule_states",
        sa.Column("machine_id", sa.Integer(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("lease_token", sa.String(length=64), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["machine_id"], ["machines.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("machine_id"),
        sa.CheckConstraint("version >= 0", name="ck_machine_schedule_states_version_non_negative"),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_name", sa.String(length=100), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("payload", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_id", "audit_logs", ["id"], unique=False)
    op.create_index("ix_audit_logs_event_name", "audit_logs", ["event_name"], unique=False)
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_entity", table_name="audit_logs")
    op.drop_index("ix_audit_logs_event_name", table_name="audit_logs")
    op.drop_index("ix_audit_logs_id", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("machine_schedule_states")
    op.drop_index("ix_schedule_slots_work_order", table_name="schedule_slots")
    op.drop_index("ix_schedule_slots_machine_window", table_name="schedule_slots")
    op.drop_index("ix_schedule_slots_operation_id", table_name="schedule_slots")
    op.drop_index("ix_schedule_slots_plan_id", table_name="schedule_slots")
    op.drop_index("ix_schedule_slots_id", table_name="schedule_slots")
    op.drop_table("schedule_slots")
    op.drop_index("ix_production_plans_status_start", table_name="production_plans")
    op.drop_index("ix_production_plans_id", table_name="production_plans")
    op.drop_table("production_plans")
