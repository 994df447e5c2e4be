"""
Allocator

Greedy, single-pass assignment of policy-ordered operations to machine time
windows. Each placement updates the in-memory bucket ledgers before the next
operation is considered; there is no backtracking, so the result is feasible
but not globally optimal.
"""
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple

from mesplan.scheduling.capacity import BucketLedger, continuous_calendar
from mesplan.scheduling.setup import SetupMatrix
from mesplan.scheduling.types import (
    AllocationResult,
    CapabilityInfo,
    ConflictKind,
    DowntimeWindow,
    Granularity,
    MachineCalendar,
    MachineInfo,
    MachineStatus,
    OperationInfo,
    SchedulingConflict,
    SchedulingPolicy,
    Severity,
    Slot,
    SlotStatus,
    WorkOrderInfo,
)

logger = logging.getLogger(__name__)


def precedence_order(operations: Sequence[OperationInfo]) -> List[OperationInfo]:
    """Keep policy order, but pull each operation's earlier-sequence siblings in front of it."""
    by_order: Dict[int, List[OperationInfo]] = {}
    for op in operations:
        by_order.setdefault(op.work_order_id, []).append(op)
    for siblings in by_order.values():
        siblings.sort(key=lambda o: (o.sequence, o.id))

    emitted: Set[int] = set()
    result: List[OperationInfo] = []
    for op in operations:
        for sibling in by_order[op.work_order_id]:
            if sibling.sequence > op.sequence:
                break
            if sibling.id in emitted:
                continue
            if sibling.sequence == op.sequence and sibling.id != op.id:
                continue
            emitted.add(sibling.id)
            result.append(sibling)
    return result


class Allocator:
    def __init__(
        self,
        machines: Sequence[MachineInfo],
        capabilities: Sequence[CapabilityInfo],
        policy: SchedulingPolicy,
        calendars: Optional[Mapping[int, MachineCalendar]] = None,
        downtime: Sequence[DowntimeWindow] = (),
        existing_slots: Sequence[Slot] = (),
        granularity: Granularity = Granularity.DAILY,
        default_calendar: Optional[MachineCalendar] = None,
        known_operations: Sequence[OperationInfo] = (),
        shift_start_hour: int = 6,
        setup_matrix: Optional[SetupMatrix] = None,
    ):
        self.machines = {m.id: m for m in machines}
        self.policy = policy
        self.calendars = dict(calendars or {})
        self.downtime = list(downtime)
        self.existing_slots = list(existing_slots)
        self.granularity = Granularity(granularity)
        self.default_calendar = default_calendar or continuous_calendar()
        self.shift_start_hour = shift_start_hour
        self.setup_matrix = setup_matrix or SetupMatrix()
        self._operations: Dict[int, OperationInfo] = {op.id: op for op in known_operations}

        self._capabilities: Dict[Tuple[int, str], CapabilityInfo] = {}
        for cap in capabilities:
            if cap.is_active and cap.machine_id in self.machines:
                self._capabilities[(cap.machine_id, cap.operation_type)] = cap

    def calendar_for(self, machine: MachineInfo) -> MachineCalendar:
        return self.calendars.get(machine.id) or machine.calendar or self.default_calendar

    def feasible_machines(self, op: OperationInfo) -> List[Tuple[MachineInfo, CapabilityInfo]]:
        feasible = []
        for machine_id in sorted(self.machines):
            machine = self.machines[machine_id]
            if machine.status == MachineStatus.OFFLINE:
                continue
            cap = self._capabilities.get((machine_id, op.operation_type))
            if cap is not None:
                feasible.append((machine, cap))
        return feasible

    def allocate(
        self,
        operations: Sequence[OperationInfo],
        work_orders: Mapping[int, WorkOrderInfo],
        start: datetime,
        end: datetime,
    ) -> AllocationResult:
        horizon_end = min(end, start + timedelta(hours=self.policy.horizon_hours))
        ceiling = self.policy.utilization_ceiling
        result = AllocationResult()

        for op in operations:
            self._operations.setdefault(op.id, op)

        ledgers: Dict[int, BucketLedger] = {}

        def ledger_for(machine: MachineInfo) -> BucketLedger:
            if machine.id not in ledgers:
                ledgers[machine.id] = BucketLedger(
                    machine,
                    self.calendar_for(machine),
                    start,
                    horizon_end,
                    self.granularity,
                    slots=self.existing_slots,
                    downtime=self.downtime,
                    shift_start_hour=self.shift_start_hour,
                )
            return ledgers[machine.id]

        # work order id -> (sequence, slot end) for every slot already placed
        finished: Dict[int, List[Tuple[int, datetime]]] = {}
        for slot in self.existing_slots:
            known = self._operations.get(slot.operation_id)
            if known is not None:
                finished.setdefault(slot.work_order_id, []).append((known.sequence, slot.end))
        failed: Set[int] = set()

        for op in precedence_order(operations):
            wo = work_orders[op.work_order_id]

            blocking = sorted(
                o.id for o in operations
                if o.work_order_id == op.work_order_id and o.sequence < op.sequence and o.id in failed
            )
            if blocking:
                failed.add(op.id)
                result.conflicts.append(
                    SchedulingConflict(
                        kind=ConflictKind.PRECEDENCE_VIOLATION,
                        severity=Severity.CRITICAL,
                        message=(
                            f"Operation {op.id} of work order {op.work_order_id} not placed: "
                            f"predecessor operation(s) {blocking} could not be scheduled"
                        ),
                        operation_ids=(op.id,) + tuple(blocking),
                    )
                )
                continue

            earliest = max(
                [start] + [end_ for seq, end_ in finished.get(op.work_order_id, []) if seq < op.sequence]
            )

            feasible = self.feasible_machines(op)
            if not feasible:
                failed.add(op.id)
                result.conflicts.append(
                    SchedulingConflict(
                        kind=ConflictKind.NO_FEASIBLE_MACHINE,
                        severity=Severity.CRITICAL,
                        message=f"No active machine is capable of {op.operation_type} for operation {op.id}",
                        operation_ids=(op.id,),
                    )
                )
                continue

            ranked = sorted(
                feasible,
                key=lambda mc: (
                    ledger_for(mc[0]).is_overloaded(),
                    ledger_for(mc[0]).utilization(),
                    mc[1].cost_per_hour,
                    mc[0].id,
                ),
            )

            placement = None
            for machine, _cap in ranked:
                found = self._search_window(ledger_for(machine), op, earliest, horizon_end, ceiling)
                if found is not None:
                    placement = (machine,) + found
                    break

            if placement is None:
                failed.add(op.id)
                result.conflicts.append(
                    SchedulingConflict(
                        kind=ConflictKind.CAPACITY_EXCEEDED,
                        severity=Severity.CRITICAL,
                        message=(
                            f"No window of {op.duration_minutes:g} minutes for operation {op.id} "
                            f"before {horizon_end.isoformat()}"
                        ),
                        operation_ids=(op.id,),
                    )
                )
                continue

            machine, slot_start, setup, skipped = placement
            slot = Slot(
                operation_id=op.id,
                work_order_id=op.work_order_id,
                machine_id=machine.id,
                start=slot_start,
                end=slot_start + timedelta(minutes=op.duration_minutes),
                status=SlotStatus.SCHEDULED,
                priority=wo.priority,
                setup_minutes=setup,
            )
            ledger_for(machine).add(slot)
            finished.setdefault(op.work_order_id, []).append((op.sequence, slot.end))
            result.slots.append(slot)

            if skipped is not None:
                label = skipped.shift or skipped.date.isoformat()
                result.conflicts.append(
                    SchedulingConflict(
                        kind=ConflictKind.CAPACITY_EXCEEDED,
                        severity=Severity.WARNING,
                        message=(
                            f"Operation {op.id} pushed past bucket {label} on machine {machine.id}; "
                            f"placed at {slot.start.isoformat()}"
                        ),
                        operation_ids=(op.id,),
                        machine_id=machine.id,
                        window_start=skipped.window_start,
                    )
                )

        result.unplaced_operation_ids = sorted(failed)
        result.conflicts.sort(key=SchedulingConflict.sort_key)
        logger.info(
            "allocation_completed rule=%s operations=%s placed=%s unplaced=%s conflicts=%s",
            self.policy.rule.value,
            len(operations),
            len(result.slots),
            len(result.unplaced_operation_ids),
            len(result.conflicts),
        )
        if result.unplaced_operation_ids:
            logger.warning("allocation_unplaced operation_ids=%s", result.unplaced_operation_ids)
        return result

    def _changeover(self, ledger: BucketLedger, previous: Optional[Slot], op: OperationInfo) -> float:
        prev_op = self._operations.get(previous.operation_id) if previous is not None else None
        return self.setup_matrix.changeover(ledger.machine.machine_type, prev_op, op)

    def _search_window(self, ledger: BucketLedger, op: OperationInfo, earliest: datetime, horizon_end: datetime, ceiling: float):
        """
        Earliest feasible placement on one machine.

        A candidate is where the changeover begins; the operation runs after
        it. Returns (run start, changeover minutes, first bucket skipped for
        lack of room or None).
        """
        duration = timedelta(minutes=op.duration_minutes)
        candidates = ledger.candidate_starts(earliest)
        if not candidates:
            return None

        first_bucket = ledger.bucket_at(candidates[0])
        rejected_first = False
        for candidate in candidates:
            setup = self._changeover(ledger, ledger.previous_slot(candidate), op)
            run_start = candidate + timedelta(minutes=setup)
            window_end = run_start + duration
            if window_end > horizon_end:
                break
            ok = not ledger.collides(candidate, window_end)
            if ok:
                successor = ledger.next_slot(window_end)
                if successor is not None:
                    succ_op = self._operations.get(successor.operation_id)
                    if succ_op is not None:
                        gap = (successor.start - window_end).total_seconds() / 60.0
                        ok = gap + 1e-9 >= self.setup_matrix.changeover(ledger.machine.machine_type, op, succ_op)
            if ok and not self.policy.allow_overload:
                ok = ledger.covered_by_working_time(candidate, window_end)
            if ok:
                ok = ledger.fits(candidate, window_end, ceiling)
            if not ok:
                if first_bucket is not None and first_bucket.window_start <= candidate < first_bucket.window_end:
                    rejected_first = True
                continue

            skipped = None
            if rejected_first and first_bucket is not None and candidate >= first_bucket.window_end:
                skipped = first_bucket
            return run_start, setup, skipped
        return None
