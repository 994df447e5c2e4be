"""
Scheduling engine value types.

Plain frozen dataclasses and closed enums. Services build these from ORM rows;
the engine never touches a database session.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import FrozenSet, List, Optional, Tuple


class DispatchRule(str, Enum):
    EDD = "EDD"
    SPT = "SPT"
    CR = "CR"
    FIFO = "FIFO"
    PRIORITY = "PRIORITY"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {Priority.LOW: 1, Priority.MEDIUM: 2, Priority.HIGH: 3, Priority.CRITICAL: 4}


class MachineStatus(str, Enum):
    RUNNING = "running"
    IDLE = "idle"
    MAINTENANCE = "maintenance"
    OFFLINE = "offline"


class SlotStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    DELAYED = "delayed"


class Granularity(str, Enum):
    SHIFT = "shift"
    DAILY = "daily"
    WEEKLY = "weekly"


class ConflictKind(str, Enum):
    DOUBLE_BOOKING = "double_booking"
    CAPABILITY_MISMATCH = "capability_mismatch"
    OVERLOAD = "overload"
    PRECEDENCE_VIOLATION = "precedence_violation"
    NO_FEASIBLE_MACHINE = "no_feasible_machine"
    CAPACITY_EXCEEDED = "capacity_exceeded"


class Severity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


# ── Registry inputs ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class WorkOrderInfo:
    id: int
    due_date: datetime
    priority: Priority = Priority.MEDIUM
    created_at: Optional[datetime] = None
    part_number: str = ""
    quantity: int = 1
    status: str = "pending"


@dataclass(frozen=True)
class OperationInfo:
    id: int
    work_order_id: int
    operation_type: str
    duration_minutes: float
    sequence: int = 1
    family: Optional[str] = None
    setup_minutes: float = 0.0


@dataclass(frozen=True)
class CapabilityInfo:
    machine_id: int
    operation_type: str
    skill_level: int = 3
    throughput_rating: float = 100.0
    quality_rating: float = 100.0
    cost_per_hour: float = 0.0
    is_active: bool = True


@dataclass(frozen=True)
class ShiftWindow:
    name: str
    start: time
    end: time

    @property
    def overnight(self) -> bool:
        return self.end <= self.start


@dataclass(frozen=True)
class MachineCalendar:
    """Working days (0=Monday) and the shift windows worked on each of them."""

    shifts: Tuple[ShiftWindow, ...]
    work_days: FrozenSet[int] = frozenset(range(7))

    def working_intervals(self, start: datetime, end: datetime) -> List[Tuple[datetime, datetime]]:
        """Merged [from, to) intervals of working time intersecting [start, end)."""
        raw: List[Tuple[datetime, datetime]] = []
        day = start.date() - timedelta(days=1)
        while day <= end.date():
            if day.weekday() in self.work_days:
                for shift in self.shifts:
                    s = datetime.combine(day, shift.start)
                    e = datetime.combine(day + timedelta(days=1) if shift.overnight else day, shift.end)
                    lo, hi = max(s, start), min(e, end)
                    if lo < hi:
                        raw.append((lo, hi))
            day += timedelta(days=1)
        return merge_intervals(raw)


@dataclass(frozen=True)
class MachineInfo:
    id: int
    name: str = ""
    machine_type: str = ""
    status: MachineStatus = MachineStatus.IDLE
    status_until: Optional[datetime] = None
    calendar: Optional[MachineCalendar] = None


@dataclass(frozen=True)
class DowntimeWindow:
    machine_id: int
    start: datetime
    end: datetime
    reason: str = "maintenance"


@dataclass(frozen=True)
class ProductionReportInfo:
    machine_id: int
    start: datetime
    end: datetime
    running_minutes: float
    units_produced: int
    good_units: int
    ideal_cycle_time_minutes: float
    work_order_id: Optional[int] = None


@dataclass(frozen=True)
class ChangeoverRule:
    machine_type: str
    from_family: str
    to_family: str
    minutes: float


# ── Policy ────────────────────────────────────────────────────────────────────

MIN_HORIZON_HOURS = 24
MAX_HORIZON_HOURS = 8760


@dataclass(frozen=True)
class SchedulingPolicy:
    rule: DispatchRule = DispatchRule.EDD
    horizon_hours: int = 168
    allow_overload: bool = False
    max_overload_percentage: Optional[float] = None
    reschedule_interval_minutes: Optional[int] = None

    @property
    def overload_tolerance(self) -> float:
        """Fraction above 100% utilization a bucket may reach."""
        if not self.allow_overload:
            return 0.0
        return (self.max_overload_percentage or 0.0) / 100.0

    @property
    def utilization_ceiling(self) -> float:
        return 1.0 + self.overload_tolerance


# ── Engine outputs ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Slot:
    operation_id: int
    work_order_id: int
    machine_id: int
    start: datetime
    end: datetime
    status: SlotStatus = SlotStatus.SCHEDULED
    priority: Optional[Priority] = None
    id: Optional[int] = None
    plan_id: Optional[int] = None
    assigned_operator: Optional[str] = None
    tags: Tuple[str, ...] = ()
    duration_override: bool = False
    # Changeover reserved on the machine immediately before start.
    setup_minutes: float = 0.0

    @property
    def duration_minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60.0

    @property
    def setup_start(self) -> datetime:
        return self.start - timedelta(minutes=self.setup_minutes)

    def overlaps(self, other: "Slot") -> bool:
        return self.start < other.end and other.start < self.end

    def with_changes(self, **changes) -> "Slot":
        return replace(self, **changes)


@dataclass(frozen=True)
class CapacityBucket:
    machine_id: int
    date: date
    window_start: datetime
    window_end: datetime
    available_minutes: float
    planned_minutes: float
    shift: Optional[str] = None

    @property
    def utilization(self) -> float:
        if self.available_minutes <= 0:
            return 0.0
        return self.planned_minutes / self.available_minutes

    @property
    def is_overloaded(self) -> bool:
        if self.available_minutes <= 0:
            return self.planned_minutes > 0
        return self.utilization > 1.0

    def exceeds(self, ceiling: float) -> bool:
        if self.available_minutes <= 0:
            return self.planned_minutes > 0
        return self.planned_minutes > self.available_minutes * ceiling + 1e-9


@dataclass(frozen=True)
class SchedulingConflict:
    kind: ConflictKind
    severity: Severity
    message: str
    slot_ids: Tuple[int, ...] = ()
    operation_ids: Tuple[int, ...] = ()
    machine_id: Optional[int] = None
    window_start: Optional[datetime] = None

    def sort_key(self):
        return (
            self.kind.value,
            self.machine_id if self.machine_id is not None else -1,
            self.window_start or datetime.min,
            self.operation_ids,
            self.slot_ids,
        )


@dataclass
class AllocationResult:
    slots: List[Slot] = field(default_factory=list)
    conflicts: List[SchedulingConflict] = field(default_factory=list)
    unplaced_operation_ids: List[int] = field(default_factory=list)


def merge_intervals(intervals: List[Tuple[datetime, datetime]]) -> List[Tuple[datetime, datetime]]:
    merged: List[Tuple[datetime, datetime]] = []
    for s, e in sorted(intervals):
        if merged and s <= merged[-1][1]:
            if e > merged[-1][1]:
                merged[-1] = (merged[-1][0], e)
        else:
            merged.append((s, e))
    return merged


def subtract_intervals(
    base: List[Tuple[datetime, datetime]],
    cuts: List[Tuple[datetime, datetime]],
) -> List[Tuple[datetime, datetime]]:
    result = list(base)
    for cs, ce in merge_intervals(cuts):
        next_result = []
        for s, e in result:
            if ce <= s or cs >= e:
                next_result.append((s, e))
                continue
            if s < cs:
                next_result.append((s, cs))
            if ce < e:
                next_result.append((ce, e))
        result = next_result
    return result


def overlap_minutes(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> float:
    lo, hi = max(a_start, b_start), min(a_end, b_end)
    if lo >= hi:
        return 0.0
    return (hi - lo).total_seconds() / 60.0
