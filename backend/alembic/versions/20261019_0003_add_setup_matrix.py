"""add setup matrix, operation families and slot setup minutes

Revision ID: 20261019_0003
Revises: 20261019_0002
Create Date: 2026-10-19 14:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_0003"
down_revision = "20261019_0002"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "setup_matrix",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("machine_type", sa.String(length=50), nullable=False),
        sa.Column("from_family", sa.String(length=50), nullable=False),
        sa.Column("to_family", sa.String(length=50), nullable=False),
        sa.Column("changeover_minutes", sa.Float(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("machine_type", "from_family", "to_family", name="uq_setup_matrix_transition"),
        sa.CheckConstraint("changeover_minutes >= 0", name="ck_setup_matrix_changeover_non_negative"),
    )
    op.create_index("ix_setup_matrix_id", "setup_matrix", ["id"], unique=False)
    op.create_index("ix_setup_matrix_machine_type", "setup_matrix", ["machine_type"], unique=False)

    with op.batch_alter_table("operations") as batch_op:
        batch_op.add_column(sa.Column("operation_family", sa.String(length=50), nullable=True))
        batch_op.add_column(sa.Column("setup_minutes", sa.Float(), nullable=False, server_default="0"))
        batch_op.create_check_constraint("ck_operations_setup_non_negative", "setup_minutes >= 0")

    with op.batch_alter_table("schedule_slots") as batch_op:
        batch_op.add_column(sa.Column("setup_minutes", sa.Float(), nullable=False, server_default="0"))
        batch_op.create_check_constraint("ck_schedule_slots_setup_non_negative", "setup_minutes >= 0")


def downgrade() -> None:
    with op.batch_alter_table("schedule_slots") as batch_op:
        batch_op.drop_constraint("ck_schedule_slots_setup_non_negative", type_="check")
        batch_op.drop_column("setup_minutes")

    with op.batch_alter_table("operations") as batch_op:
        batch_op.drop_constraint("ck_operations_setup_non_negative", type_="check")
        batch_op.drop_column("setup_minutes")
        batch_op.drop_column("operation_family")

    op.drop_index("ix_setup_matrix_machine_type", table_name="setup_matrix")
    op.drop_index("ix_setup_matrix_id", table_name="setup_matrix")
    op.drop_table("setup_matrix")
