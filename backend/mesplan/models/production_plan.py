import json

from sqlalchemy import (
    Column,
    Integer,
    String,
    Date,
    DateTime,
    Text,
    CheckConstraint,
    Index,
    func,
)
from mesplan.database import Base


class ProductionPlan(Base):
    __tablename__ = "production_plans"
    __table_args__ = (
        CheckConstraint("plan_type IN ('daily', 'weekly', 'monthly')", name="ck_production_plans_type"),
        CheckConstraint(
            "status IN ('draft', 'active', 'paused', 'completed', 'archived')",
            name="ck_production_plans_status",
        ),
        CheckConstraint("end_date >= start_date", name="ck_production_plans_range"),
        Index("ix_production_plans_status_start", "status", "start_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    plan_type = Column(String(10), nullable=False, default="weekly")
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default="draft")

    work_order_ids_json = Column(Text, nullable=False, default="[]")
    policy_json = Column(Text, nullable=True)
    last_scheduled_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def work_order_ids(self):
        return json.loads(self.work_order_ids_json or "[]")

    @property
    def policy(self):
        return json.loads(self.policy_json) if self.policy_json else None
