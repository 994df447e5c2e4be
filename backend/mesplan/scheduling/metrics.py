"""
Plan / Utilization Aggregator

Rolls slots, capacity buckets and production reports up into plan progress,
efficiency and per-machine OEE (availability x performance x quality).
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from mesplan.scheduling.types import (
    CapacityBucket,
    OperationInfo,
    ProductionReportInfo,
    Slot,
    SlotStatus,
)


@dataclass(frozen=True)
class MachineOEE:
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

    @property
    def oee(self) -> float:
        return self.availability * self.performance * self.quality


@dataclass(frozen=True)
class PlanMetrics:
    total_work_orders: int
    completed_work_orders: int
    total_operations: int
    scheduled_operations: int
    estimated_hours: float
    available_hours: float
    efficiency: float
    progress_pct: float
    overloaded_buckets: int
    machines: List[MachineOEE] = field(default_factory=list)

    def _average(self, attr: str) -> float:
        if not self.machines:
            return 0.0
        return sum(getattr(m, attr) for m in self.machines) / len(self.machines)

    @property
    def availability(self) -> float:
        return self._average("availability")

    @property
    def performance(self) -> float:
        return self._average("performance")

    @property
    def quality(self) -> float:
        return self._average("quality")

    @property
    def oee(self) -> float:
        return self._average("oee")

    @property
    def utilization(self) -> float:
        return self._average("utilization")


def _ratio(numerator: float, denominator: float) -> float:
    if denominator <= 0:
        return 0.0
    return numerator / denominator


def completed_work_order_ids(
    work_order_ids: Iterable[int],
    operations: Sequence[OperationInfo],
    slots: Sequence[Slot],
) -> List[int]:
    """Work orders whose every operation has a completed slot."""
    completed_ops = {s.operation_id for s in slots if s.status == SlotStatus.COMPLETED}
    ops_by_order: Dict[int, List[int]] = {}
    for op in operations:
        ops_by_order.setdefault(op.work_order_id, []).append(op.id)
    done = []
    for wo_id in sorted(set(work_order_ids)):
        op_ids = ops_by_order.get(wo_id, [])
        if op_ids and all(op_id in completed_ops for op_id in op_ids):
            done.append(wo_id)
    return done


def machine_oee(
    machine_id: int,
    buckets: Sequence[CapacityBucket],
    reports: Sequence[ProductionReportInfo],
) -> MachineOEE:
    available = sum(b.available_minutes for b in buckets if b.machine_id == machine_id)
    planned = sum(b.planned_minutes for b in buckets if b.machine_id == machine_id)
    mine = [r for r in reports if r.machine_id == machine_id]
    running = sum(r.running_minutes for r in mine)
    units = sum(r.units_produced for r in mine)
    good = sum(r.good_units for r in mine)
    ideal_minutes = sum(r.ideal_cycle_time_minutes * r.units_produced for r in mine)
    return MachineOEE(
        machine_id=machine_id,
        available_minutes=round(available, 4),
        planned_minutes=round(planned, 4),
        running_minutes=round(running, 4),
        units_produced=units,
        good_units=good,
        utilization=_ratio(planned, available),
        availability=min(1.0, _ratio(running, available)),
        performance=min(1.0, _ratio(ideal_minutes, running)),
        quality=_ratio(good, units),
    )


def aggregate_plan(
    work_order_ids: Sequence[int],
    operations: Sequence[OperationInfo],
    slots: Sequence[Slot],
    buckets: Sequence[CapacityBucket],
    reports: Sequence[ProductionReportInfo] = (),
) -> PlanMetrics:
    """
    Roll up one plan.

    ``buckets`` should cover the plan range for the machines that carry the
    plan's slots; efficiency is estimated work hours against their available
    hours, capped at 100.
    """
    wo_ids = set(work_order_ids)
    plan_ops = [op for op in operations if op.work_order_id in wo_ids]
    plan_slots = [s for s in slots if s.work_order_id in wo_ids]
    completed = completed_work_order_ids(wo_ids, plan_ops, plan_slots)

    estimated_hours = sum(op.duration_minutes for op in plan_ops) / 60.0
    available_hours = sum(b.available_minutes for b in buckets) / 60.0
    efficiency = min(100.0, _ratio(estimated_hours, available_hours) * 100.0)

    machine_ids = sorted({b.machine_id for b in buckets} | {r.machine_id for r in reports})
    machines = [machine_oee(mid, buckets, reports) for mid in machine_ids]

    return PlanMetrics(
        total_work_orders=len(wo_ids),
        completed_work_orders=len(completed),
        total_operations=len(plan_ops),
        scheduled_operations=len({s.operation_id for s in plan_slots}),
        estimated_hours=round(estimated_hours, 4),
        available_hours=round(available_hours, 4),
        efficiency=round(efficiency, 2),
        progress_pct=round(_ratio(len(completed), len(wo_ids)) * 100.0, 2),
        overloaded_buckets=sum(1 for b in buckets if b.is_overloaded),
        machines=machines,
    )


def derive_work_order_status(
    operations: Sequence[OperationInfo],
    slots: Sequence[Slot],
    now: Optional[datetime] = None,
) -> str:
    """pending | scheduled | in_progress | completed | delayed, from the slots of one work order."""
    if not slots:
        return "pending"
    by_op: Dict[int, List[Slot]] = {}
    for slot in slots:
        by_op.setdefault(slot.operation_id, []).append(slot)

    op_ids = [op.id for op in operations] or list(by_op)
    if all(any(s.status == SlotStatus.COMPLETED for s in by_op.get(op_id, [])) for op_id in op_ids):
        return "completed"

    open_slots = [s for s in slots if s.status != SlotStatus.COMPLETED]
    if any(s.status == SlotStatus.DELAYED for s in open_slots):
        return "delayed"
    if now is not None and any(s.end < now and s.status == SlotStatus.SCHEDULED for s in open_slots):
        return "delayed"
    if any(s.status in (SlotStatus.IN_PROGRESS, SlotStatus.COMPLETED) for s in slots):
        return "in_progress"
    return "scheduled"
