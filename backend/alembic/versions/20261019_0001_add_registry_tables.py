"""add work order, machine and production report registry tables

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "work_orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_number", sa.String(length=50), nullable=False),
        sa.Column("part_number", sa.String(length=100), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("due_date", sa.DateTime(), nullable=False),
        sa.Column("priority", sa.String(length=10), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("quantity >= 1", name="ck_work_orders_quantity_min_1"),
        sa.CheckConstraint(
            "priority IN ('low', 'medium', 'high', 'critical')",
            name="ck_work_orders_priority",
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'scheduled', 'in_progress', 'completed', 'delayed')",
            name="ck_work_orders_status",
        ),
    )
    op.create_index("ix_work_orders_id", "work_orders", ["id"], unique=False)
    op.create_index("ix_work_orders_order_number", "work_orders", ["order_number"], unique=True)
    op.create_index("ix_work_orders_status_due", "work_orders", ["status", "due_date"], unique=False)

    op.create_table(
        "operations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("work_order_id", sa.Integer(), nullable=False),
        sa.Column("operation_type", sa.String(length=50), nullable=False),
        sa.Column("estimated_duration_minutes", sa.Float(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["work_order_id"], ["work_orders.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("work_order_id", "sequence", name="uq_operations_work_order_sequence"),
        sa.CheckConstraint("estimated_duration_minutes > 0", name="ck_operations_duration_positive"),
        sa.CheckConstraint("sequence >= 1", name="ck_operations_sequence_min_1"),
    )
    op.create_index("ix_operations_id", "operations", ["id"], unique=False)
    op.create_index("ix_operations_work_order_id", "operations", ["work_order_id"], unique=False)
    op.create_index("ix_operations_operation_type", "operations", ["operation_type"], unique=False)

    op.create_table(
        "machines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("machine_type", sa.String(length=50), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("status_until", sa.DateTime(), nullable=True),
        sa.Column("calendar_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
        sa.CheckConstraint(
            "status IN ('running', 'idle', 'maintenance', 'offline')",
            name="ck_machines_status",
        ),
    )
    op.create_index("ix_machines_id", "machines", ["id"], unique=False)
    op.create_index("ix_machines_machine_type", "machines", ["machine_type"], unique=False)

    op.create_table(
        "machine_capabilities",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("machine_id", sa.Integer(), nullable=False),
        sa.Column("operation_type", sa.String(length=50), nullable=False),
        sa.Column("skill_level", sa.Integer(), nullable=False),
        sa.Column("throughput_rating", sa.Float(), nullable=False),
        sa.Column("quality_rating", sa.Float(), nullable=False),
        sa.Column("cost_per_hour", sa.Float(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(["machine_id"], ["machines.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("machine_id", "operation_type", name="uq_machine_capabilities_machine_operation"),
        sa.CheckConstraint("skill_level BETWEEN 1 AND 5", name="ck_machine_capabilities_skill_level"),
        sa.CheckConstraint(
            "throughput_rating BETWEEN 0 AND 100",
            name="ck_machine_capabilities_throughput_rating",
        ),
        sa.CheckConstraint("quality_rating BETWEEN 0 AND 100", name="ck_machine_capabilities_quality_rating"),
        sa.CheckConstraint("cost_per_hour >= 0", name="ck_machine_capabilities_cost_non_negative"),
    )
    op.create_index("ix_machine_capabilities_id", "machine_capabilities", ["id"], unique=False)
    op.create_index("ix_machine_capabilities_machine_id", "machine_capabilities", ["machine_id"], unique=False)
    op.create_index(
        "ix_machine_capabilities_operation_active",
        "machine_capabilities",
        ["operation_type", "is_active"],
        unique=False,
    )

    op.create_table(
        "machine_downtime",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("machine_id", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.DateTime(), nullable=False),
        sa.Column("end_time", sa.DateTime(), nullable=False),
        sa.Column("reason", sa.String(length=100), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["machine_id"], ["machines.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("end_time > start_time", name="ck_machine_downtime_window"),
    )
    op.create_index("ix_machine_downtime_id", "machine_downtime", ["id"], unique=False)
    op.create_index("ix_machine_downtime_machine_id", "machine_downtime", ["machine_id"], unique=False)
    op.create_index(
        "ix_machine_downtime_machine_window",
        "machine_downtime",
        ["machine_id", "start_time", "end_time"],
        unique=False,
    )

    op.create_table(
        "production_reports",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("machine_id", sa.Integer(), nullable=False),
        sa.Column("work_order_id", sa.Integer(), nullable=True),
        sa.Column("start_time", sa.DateTime(), nullable=False),
        sa.Column("end_time", sa.DateTime(), nullable=False),
        sa.Column("running_minutes", sa.Float(), nullable=False),
        sa.Column("units_produced", sa.Integer(), nullable=False),
        sa.Column("good_units", sa.Integer(), nullable=False),
        sa.Column("ideal_cycle_time_minutes", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["machine_id"], ["machines.id"]),
        sa.ForeignKeyConstraint(["work_order_id"], ["work_orders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("end_time > start_time", name="ck_production_reports_window"),
        sa.CheckConstraint("running_minutes >= 0", name="ck_production_reports_running_non_negative"),
        sa.CheckConstraint("good_units <= units_produced", name="ck_production_reports_good_units"),
    )
    op.create_index("ix_production_reports_id", "production_reports", ["id"], unique=False)
    op.create_index("ix_production_reports_machine_id", "production_reports", ["machine_id"], unique=False)
    op.create_index("ix_production_reports_work_order_id", "production_reports", ["work_order_id"], unique=False)
    op.create_index(
        "ix_production_reports_machine_window",
        "production_reports",
        ["machine_id", "start_time"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_production_reports_machine_window", table_name="production_reports")
    op.drop_index("ix_production_reports_work_order_id", table_name="production_reports")
    op.drop_index("ix_production_reports_machine_id", table_name="production_reports")
    op.drop_index("ix_production_reports_id", table_name="production_reports")
    op.drop_table("production_reports")
    op.drop_index("ix_machine_downtime_machine_window", table_name="machine_downtime")
    op.drop_index("ix_machine_downtime_machine_id", table_name="machine_downtime")
    op.drop_index("ix_machine_downtime_id", table_name="machine_downtime")
    op.drop_table("machine_downtime")
    op.drop_index("ix_machine_capabilities_operation_active", table_name="machine_capabilities")
    op.drop_index("ix_machine_capabilities_machine_id", table_name="machine_capabilities")
    op.drop_index("ix_machine_capabilities_id", table_name="machine_capabilities")
    op.drop_table("machine_capabilities")
    op.drop_index("ix_machines_machine_type", table_name="machines")
    op.drop_index("ix_machines_id", table_name="machines")
    op.drop_table("machines")
    op.drop_index("ix_operations_operation_type", table_name="operations")
    op.drop_index("ix_operations_work_order_id", table_name="operations")
    op.drop_index("ix_operations_id", table_name="operations")
    op.drop_table("operations")
    op.drop_index("ix_work_orders_status_due", table_name="work_orders")
    op.drop_index("ix_work_orders_order_number", table_name="work_orders")
    op.drop_index("ix_work_orders_id", table_name="work_orders")
    op.drop_table("work_orders")
