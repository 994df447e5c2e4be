import json

from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    Float,
    DateTime,
    ForeignKey,
    Text,
    CheckConstraint,
    Index,
    func,
)
from mesplan.database import Base


class ScheduleSlot(Base):
    __tablename__ = "schedule_slots"
    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_schedule_slots_window"),
        CheckConstraint("setup_minutes >= 0", name="ck_schedule_slots_setup_non_negative"),
        CheckConstraint(
            "status IN ('scheduled', 'in_progress', 'completed', 'delayed')",
            name="ck_schedule_slots_status",
        ),
        Index("ix_schedule_slots_machine_window", "machine_id", "start_time", "end_time"),
        Index("ix_schedule_slots_work_order", "work_order_id", "operation_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    plan_id = Column(Integer, ForeignKey("production_plans.id", ondelete="SET NULL"), nullable=True, index=True)
    work_order_id = Column(Integer, ForeignKey("work_orders.id", ondelete="CASCADE"), nullable=False)
    operation_id = Column(Integer, ForeignKey("operations.id", ondelete="CASCADE"), nullable=False, index=True)
    machine_id = Column(Integer, ForeignKey("machines.id"), nullable=False)

    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    duration_override = Column(Boolean, nullable=False, default=False)
    # Changeover reserved on the machine immediately before start_time.
    setup_minutes = Column(Float, nullable=False, default=0.0)

    status = Column(String(20), nullable=False, default="scheduled")
    priority = Column(String(10), nullable=True)
    assigned_operator = Column(String(100), nullable=True)
    tags_json = Column(Text, nullable=True)

    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def tags(self):
        return json.loads(self.tags_json) if self.tags_json else []
