from datetime import datetime, date, timezone
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Aware datetimes become naive UTC; the DateTime columns and calendars are naive UTC."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class SchedulingPolicySchema(BaseModel):
    # Range checks live in build_policy so they surface as INVALID_POLICY, not 422.
    rule: str = "EDD"
    horizon_hours: Optional[int] = None
    allow_overload: bool = False
    max_overload_percentage: Optional[float] = None
    reschedule_interval_minutes: Optional[int] = None


class PlanScheduleRequest(BaseModel):
    work_order_ids: List[int] = Field(min_length=1)
    policy: SchedulingPolicySchema = Field(default_factory=SchedulingPolicySchema)
    start: datetime
    end: datetime
    granularity: Optional[str] = Field(default=None, pattern="^(shift|daily|weekly)$")
    plan_id: Optional[int] = None

    @field_validator("start", "end")
    @classmethod
    def normalize_range(cls, v: datetime) -> datetime:
        return to_naive_utc(v)


class ScheduleSlotResponse(BaseModel):
    id: int
    plan_id: Optional[int] = None
    work_order_id: int
    operation_id: int
    machine_id: int
    start_time: datetime
    end_time: datetime
    setup_minutes: float = 0.0
    duration_override: bool = False
    status: str
    priority: Optional[str] = None
    assigned_operator: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class SchedulingConflictResponse(BaseModel):
    kind: str
    severity: str
    message: str
    slot_ids: List[int] = Field(default_factory=list)
    operation_ids: List[int] = Field(default_factory=list)
    machine_id: Optional[int] = None
    window_start: Optional[datetime] = None


class PlanScheduleResponse(BaseModel):
    plan_id: Optional[int] = None
    rule: str
    slots: List[ScheduleSlotResponse]
    conflicts: List[SchedulingConflictResponse]
    unplaced_operation_ids: List[int]


class SlotCandidate(BaseModel):
    id: Optional[int] = None
    operation_id: int
    machine_id: int
    start_time: datetime
    end_time: datetime
    setup_minutes: float = Field(default=0.0, ge=0)

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_window(cls, v: datetime) -> datetime:
        return to_naive_utc(v)


class ValidateSlotsRequest(BaseModel):
    slots: List[SlotCandidate]
    policy: Optional[SchedulingPolicySchema] = None
    granularity: Optional[str] = Field(default=None, pattern="^(shift|daily|weekly)$")


class ValidateSlotsResponse(BaseModel):
    valid: bool
    conflicts: List[SchedulingConflictResponse]


class SlotChange(BaseModel):
    slot_id: int
    machine_id: Optional[int] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    status: Optional[str] = Field(default=None, pattern="^(scheduled|in_progress|completed|delayed)$")
    assigned_operator: Optional[str] = None
    tags: Optional[List[str]] = None
    duration_override: Optional[bool] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_window(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)


class BulkUpdateSlotsRequest(BaseModel):
    updates: List[SlotChange] = Field(min_length=1)
    policy: Optional[SchedulingPolicySchema] = None
    strict: Optional[bool] = None


class BulkUpdateSlotsResponse(BaseModel):
    applied: bool
    slots: List[ScheduleSlotResponse]
    conflicts: List[SchedulingConflictResponse]


class SlotStatusUpdateRequest(BaseModel):
    status: str = Field(pattern="^(scheduled|in_progress|completed|delayed)$")


class CapacityBucketResponse(BaseModel):
    machine_id: int
    date: date
    shift: Optional[str] = None
    window_start: datetime
    window_end: datetime
    available_minutes: float
    planned_minutes: float
    utilization: float
    is_overloaded: bool
