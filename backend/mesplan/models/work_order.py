from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    DateTime,
    ForeignKey,
    CheckConstraint,
    UniqueConstraint,
    Index,
    func,
)
from mesplan.database import Base


class WorkOrder(Base):
    __tablename__ = "work_orders"
    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_work_orders_quantity_min_1"),
        CheckConstraint(
            "priority IN ('low', 'medium', 'high', 'critical')",
            name="ck_work_orders_priority",
        ),
        CheckConstraint(
            "status IN ('pending', 'scheduled', 'in_progress', 'completed', 'delayed')",
            name="ck_work_orders_status",
        ),
        Index("ix_work_orders_status_due", "status", "due_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(50), unique=True, nullable=False, index=True)
    part_number = Column(String(100), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    due_date = Column(DateTime, nullable=False)
    priority = Column(String(10), nullable=False, default="medium")
    status = Column(String(20), nullable=False, default="pending")
    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)


class Operation(Base):
    __tablename__ = "operations"
    __table_args__ = (
        UniqueConstraint("work_order_id", "sequence", name="uq_operations_work_order_sequence"),
        CheckConstraint("estimated_duration_minutes > 0", name="ck_operations_duration_positive"),
        CheckConstraint("sequence >= 1", name="ck_operations_sequence_min_1"),
        CheckConstraint("setup_minutes >= 0", name="ck_operations_setup_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    work_order_id = Column(Integer, ForeignKey("work_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    operation_type = Column(String(50), nullable=False, index=True)
    estimated_duration_minutes = Column(Float, nullable=False)
    # Changeover family; setup_minutes applies when no setup_matrix row covers the transition.
    operation_family = Column(String(50), nullable=True)
    setup_minutes = Column(Float, nullable=False, default=0.0)
    sequence = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=func.now(), nullable=False)
