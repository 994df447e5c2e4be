from datetime import datetime, date
from typing import List, Optional

from pydantic import BaseModel, Field

from mesplan.schemas.scheduling import SchedulingPolicySchema


class ProductionPlanCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    plan_type: str = Field(default="weekly", pattern="^(daily|weekly|monthly)$")
    start_date: date
    end_date: Optional[date] = None
    work_order_ids: List[int] = Field(default_factory=list)
    policy: Optional[SchedulingPolicySchema] = None
    notes: Optional[str] = None


class ProductionPlanStatusUpdate(BaseModel):
    status: str = Field(pattern="^(draft|active|paused|completed|archived)$")


class ProductionPlanResponse(BaseModel):
    id: int
    name: str
    plan_type: str
    start_date: date
    end_date: date
    status: str
    work_order_ids: List[int]
    policy: Optional[SchedulingPolicySchema] = None
    last_scheduled_at: Optional[datetime] = None
    next_reschedule_at: Optional[datetime] = None
    total_work_orders: int = 0
    completed_work_orders: int = 0
    efficiency: float = 0.0
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class MachineOEEResponse(BaseModel):
    machine_id: int
    available_minutes: float
    planned_minutes: float
    running_minutes: float
    units_produced: int
    good_units: int
    utilization: float
    availability: float
    performance: float
    quality: float
    oee: float


class PlanMetricsResponse(BaseModel):
    plan_id: int
    total_work_orders: int
    completed_work_orders: int
    total_operations: int
    scheduled_operations: int
    progress_pct: float
    estimated_hours: float
    available_hours: float
    efficiency: float
    overloaded_buckets: int
    utilization: float
    availability: float
    performance: float
    quality: float
    oee: float
    machines: List[MachineOEEResponse]
