from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, CheckConstraint, func
from mesplan.database import Base


class MachineScheduleState(Base):
    """Version stamp and short mutation lease guarding one machine's slots."""

    __tablename__ = "machine_schedule_states"
    __table_args__ = (
        CheckConstraint("version >= 0", name="ck_machine_schedule_states_version_non_negative"),
    )

    machine_id = Column(Integer, ForeignKey("machines.id", ondelete="CASCADE"), primary_key=True)
    version = Column(Integer, nullable=False, default=0)
    lease_token = Column(String(64), nullable=True)
    lease_expires_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)
