"""
Registry reader for the scheduling engine.

Loads work orders, operations, machines, capabilities, downtime, changeover
rules, slots and production reports through the repositories and converts them to the
engine's value types.
"""
import json
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from mesplan.config import settings
from mesplan.core.exceptions import EntityNotFoundException
from mesplan.models.machine import Machine, MachineCapability, MachineDowntime, SetupMatrixEntry
from mesplan.models.production_report import ProductionReport
from mesplan.models.schedule_slot import ScheduleSlot
from mesplan.models.work_order import Operation, WorkOrder
from mesplan.repositories.machine_repository import MachineRepository
from mesplan.repositories.production_report_repository import ProductionReportRepository
from mesplan.repositories.schedule_slot_repository import ScheduleSlotRepository
from mesplan.repositories.work_order_repository import WorkOrderRepository
from mesplan.scheduling.capacity import parse_calendar
from mesplan.scheduling.setup import SetupMatrix
from mesplan.scheduling.types import (
    CapabilityInfo,
    ChangeoverRule,
    DowntimeWindow,
    MachineCalendar,
    MachineInfo,
    MachineStatus,
    OperationInfo,
    Priority,
    ProductionReportInfo,
    SchedulingConflict,
    Slot,
    SlotStatus,
    WorkOrderInfo,
)


def default_calendar() -> MachineCalendar:
    return parse_calendar(settings.default_shift_list, settings.default_work_day_list)


def machine_calendar(row: Machine) -> MachineCalendar:
    if not row.calendar_json:
        return default_calendar()
    raw = json.loads(row.calendar_json)
    shifts = [(s.get("name", "Shift"), s["start"], s["end"]) for s in raw.get("shifts", [])]
    work_days = raw.get("work_days", settings.default_work_day_list)
    return parse_calendar(shifts, work_days)


# ── Row → value type ──────────────────────────────────────────────────────────

def to_work_order_info(row: WorkOrder) -> WorkOrderInfo:
    return WorkOrderInfo(
        id=row.id,
        due_date=row.due_date,
        priority=Priority(row.priority),
        created_at=row.created_at,
        part_number=row.part_number,
        quantity=row.quantity,
        status=row.status,
    )


def to_operation_info(row: Operation) -> OperationInfo:
    return OperationInfo(
        id=row.id,
        work_order_id=row.work_order_id,
        operation_type=row.operation_type,
        duration_minutes=float(row.estimated_duration_minutes),
        sequence=row.sequence,
        family=row.operation_family,
        setup_minutes=float(row.setup_minutes or 0.0),
    )


def to_machine_info(row: Machine) -> MachineInfo:
    return MachineInfo(
        id=row.id,
        name=row.name,
        machine_type=row.machine_type,
        status=MachineStatus(row.status),
        status_until=row.status_until,
        calendar=machine_calendar(row),
    )


def to_capability_info(row: MachineCapability) -> CapabilityInfo:
    return CapabilityInfo(
        machine_id=row.machine_id,
        operation_type=row.operation_type,
        skill_level=row.skill_level,
        throughput_rating=row.throughput_rating,
        quality_rating=row.quality_rating,
        cost_per_hour=row.cost_per_hour,
        is_active=bool(row.is_active),
    )


def to_downtime(row: MachineDowntime) -> DowntimeWindow:
    return DowntimeWindow(machine_id=row.machine_id, start=row.start_time, end=row.end_time, reason=row.reason)


def to_slot(row: ScheduleSlot) -> Slot:
    return Slot(
        id=row.id,
        plan_id=row.plan_id,
        operation_id=row.operation_id,
        work_order_id=row.work_order_id,
        machine_id=row.machine_id,
        start=row.start_time,
        end=row.end_time,
        status=SlotStatus(row.status),
        priority=Priority(row.priority) if row.priority else None,
        assigned_operator=row.assigned_operator,
        tags=tuple(row.tags),
        duration_override=bool(row.duration_override),
        setup_minutes=float(row.setup_minutes or 0.0),
    )


def to_changeover_rule(row: SetupMatrixEntry) -> ChangeoverRule:
    return ChangeoverRule(
        machine_type=row.machine_type,
        from_family=row.from_family,
        to_family=row.to_family,
        minutes=float(row.changeover_minutes),
    )


def to_report(row: ProductionReport) -> ProductionReportInfo:
    return ProductionReportInfo(
        machine_id=row.machine_id,
        work_order_id=row.work_order_id,
        start=row.start_time,
        end=row.end_time,
        running_minutes=row.running_minutes,
        units_produced=row.units_produced,
        good_units=row.good_units,
        ideal_cycle_time_minutes=row.ideal_cycle_time_minutes,
    )


def conflict_to_dict(conflict: SchedulingConflict) -> dict:
    return {
        "kind": conflict.kind.value,
        "severity": conflict.severity.value,
        "message": conflict.message,
        "slot_ids": list(conflict.slot_ids),
        "operation_ids": list(conflict.operation_ids),
        "machine_id": conflict.machine_id,
        "window_start": conflict.window_start,
    }


# ── Loader ────────────────────────────────────────────────────────────────────

class ScheduleDataLoader:
    def __init__(self, db: Session):
        self._work_orders = WorkOrderRepository(db)
        self._machines = MachineRepository(db)
        self._slots = ScheduleSlotRepository(db)
        self._reports = ProductionReportRepository(db)

    def work_orders(self, work_order_ids: Iterable[int]) -> Dict[int, WorkOrderInfo]:
        ids = sorted(set(work_order_ids))
        rows = {row.id: row for row in self._work_orders.get_many(ids)}
        for wo_id in ids:
            if wo_id not in rows:
                raise EntityNotFoundException("WorkOrder", wo_id)
        return {wo_id: to_work_order_info(rows[wo_id]) for wo_id in ids}

    def operations(self, work_order_ids: Iterable[int]) -> List[OperationInfo]:
        return [to_operation_info(row) for row in self._work_orders.list_operations(work_order_ids)]

    def operations_by_id(self, operation_ids: Iterable[int]) -> Dict[int, OperationInfo]:
        return {row.id: to_operation_info(row) for row in self._work_orders.get_operations(operation_ids)}

    def machines(self, machine_ids: Optional[Iterable[int]] = None) -> List[MachineInfo]:
        return [to_machine_info(row) for row in self._machines.list_filtered(machine_ids=machine_ids)]

    def capabilities(
        self,
        machine_ids: Optional[Iterable[int]] = None,
        operation_types: Optional[Iterable[str]] = None,
    ) -> List[CapabilityInfo]:
        rows = self._machines.list_capabilities(machine_ids=machine_ids, operation_types=operation_types)
        return [to_capability_info(row) for row in rows]

    def downtime(self, start: datetime, end: datetime, machine_ids: Optional[Iterable[int]] = None) -> List[DowntimeWindow]:
        return [to_downtime(row) for row in self._machines.list_downtime(start, end, machine_ids=machine_ids)]

    def slots(self, **filters) -> List[Slot]:
        return [to_slot(row) for row in self._slots.list_filtered(**filters)]

    def reports(self, start: datetime, end: datetime, machine_ids: Optional[Iterable[int]] = None) -> List[ProductionReportInfo]:
        return [to_report(row) for row in self._reports.list_in_range(start, end, machine_ids=machine_ids)]


    def setup_matrix(self, machine_types: Optional[Iterable[str]] = None) -> SetupMatrix:
        return SetupMatrix(to_changeover_rule(row) for row in self._machines.list_setup_matrix(machine_types))
