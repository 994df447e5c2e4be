from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    Boolean,
    DateTime,
    ForeignKey,
    Text,
    CheckConstraint,
    UniqueConstraint,
    Index,
    func,
)
from mesplan.database import Base


class Machine(Base):
    __tablename__ = "machines"
    __table_args__ = (
        CheckConstraint(
            "status IN ('running', 'idle', 'maintenance', 'offline')",
            name="ck_machines_status",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    machine_type = Column(String(50), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="idle")
    status_until = Column(DateTime, nullable=True)
    # {"shifts": [{"name": "Shift-A", "start": "06:00", "end": "14:00"}], "work_days": [0, 1, 2, 3, 4]}
    calendar_json = Column(Text, nullable=True)
    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)


class MachineCapability(Base):
    __tablename__ = "machine_capabilities"
    __table_args__ = (
        UniqueConstraint("machine_id", "operation_type", name="uq_machine_capabilities_machine_operation"),
        CheckConstraint("skill_level BETWEEN 1 AND 5", name="ck_machine_capabilities_skill_level"),
        CheckConstraint(
            "throughput_rating BETWEEN 0 AND 100",
            name="ck_machine_capabilities_throughput_rating",
        ),
        CheckConstraint("quality_rating BETWEEN 0 AND 100", name="ck_machine_capabilities_quality_rating"),
        CheckConstraint("cost_per_hour >= 0", name="ck_machine_capabilities_cost_non_negative"),
        Index("ix_machine_capabilities_operation_active", "operation_type", "is_active"),
    )

    id = Column(Integer, primary_key=True, index=True)
    machine_id = Column(Integer, ForeignKey("machines.id", ondelete="CASCADE"), nullable=False, index=True)
    operation_type = Column(String(50), nullable=False)
    skill_level = Column(Integer, nullable=False, default=3)
    throughput_rating = Column(Float, nullable=False, default=100.0)
    quality_rating = Column(Float, nullable=False, default=100.0)
    cost_per_hour = Column(Float, nullable=False, default=0.0)
    is_active = Column(Boolean, nullable=False, default=True)


class MachineDowntime(Base):
    __tablename__ = "machine_downtime"
    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_machine_downtime_window"),
        Index("ix_machine_downtime_machine_window", "machine_id", "start_time", "end_time"),
    )

    id = Column(Integer, primary_key=True, index=True)
    machine_id = Column(Integer, ForeignKey("machines.id", ondelete="CASCADE"), nullable=False, index=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    reason = Column(String(100), nullable=False, default="maintenance")
    created_at = Column(DateTime, default=func.now(), nullable=False)


class SetupMatrixEntry(Base):
    """Changeover minutes between two operation families on one machine type."""

    __tablename__ = "setup_matrix"
    __table_args__ = (
        UniqueConstraint("machine_type", "from_family", "to_family", name="uq_setup_matrix_transition"),
        CheckConstraint("changeover_minutes >= 0", name="ck_setup_matrix_changeover_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    machine_type = Column(String(50), nullable=False, index=True)
    from_family = Column(String(50), nullable=False)
    to_family = Column(String(50), nullable=False)
    changeover_minutes = Column(Float, nullable=False, default=0.0)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=func.now(), nullable=False)
