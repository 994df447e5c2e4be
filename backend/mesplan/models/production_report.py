from sqlalchemy import (
    Column,
    Integer,
    Float,
    DateTime,
    ForeignKey,
    CheckConstraint,
    Index,
    func,
)
from mesplan.database import Base


class ProductionReport(Base):
    __tablename__ = "production_reports"
    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_production_reports_window"),
        CheckConstraint("running_minutes >= 0", name="ck_production_reports_running_non_negative"),
        CheckConstraint("good_units <= units_produced", name="ck_production_reports_good_units"),
        Index("ix_production_reports_machine_window", "machine_id", "start_time"),
    )

    id = Column(Integer, primary_key=True, index=True)
    machine_id = Column(Integer, ForeignKey("machines.id"), nullable=False, index=True)
    work_order_id = Column(Integer, ForeignKey("work_orders.id"), nullable=True, index=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    running_minutes = Column(Float, nullable=False, default=0.0)
    units_produced = Column(Integer, nullable=False, default=0)
    good_units = Column(Integer, nullable=False, default=0)
    ideal_cycle_time_minutes = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime, default=func.now(), nullable=False)
