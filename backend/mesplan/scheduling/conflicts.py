"""
Conflict Detector

Validates a slot set against machine capability, bucket capacity, machine
double-booking, changeover gaps and work-order precedence. Per-machine checks
are independent and run in parallel; results are merged and sorted so the
output does not depend on thread scheduling.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from mesplan.scheduling.capacity import build_buckets, continuous_calendar
from mesplan.scheduling.setup import SetupMatrix
from mesplan.scheduling.types import (
    CapabilityInfo,
    ConflictKind,
    DowntimeWindow,
    Granularity,
    MachineCalendar,
    MachineInfo,
    OperationInfo,
    SchedulingConflict,
    SchedulingPolicy,
    Severity,
    Slot,
)

logger = logging.getLogger(__name__)


def _ids(slots: Iterable[Slot]) -> Tuple[int, ...]:
    return tuple(sorted(s.id for s in slots if s.id is not None))


def _op_ids(slots: Iterable[Slot]) -> Tuple[int, ...]:
    return tuple(sorted(s.operation_id for s in slots))


class ConflictDetector:
    def __init__(
        self,
        operations: Sequence[OperationInfo],
        capabilities: Sequence[CapabilityInfo],
        machines: Sequence[MachineInfo],
        policy: SchedulingPolicy,
        calendars: Optional[Mapping[int, MachineCalendar]] = None,
        downtime: Sequence[DowntimeWindow] = (),
        granularity: Granularity = Granularity.DAILY,
        default_calendar: Optional[MachineCalendar] = None,
        shift_start_hour: int = 6,
        max_workers: int = 4,
        setup_matrix: Optional[SetupMatrix] = None,
    ):
        self.operations = {op.id: op for op in operations}
        self.machines = {m.id: m for m in machines}
        self.policy = policy
        self.calendars = dict(calendars or {})
        self.downtime = list(downtime)
        self.granularity = Granularity(granularity)
        self.default_calendar = default_calendar or continuous_calendar()
        self.shift_start_hour = shift_start_hour
        self.max_workers = max(1, max_workers)
        self.setup_matrix = setup_matrix or SetupMatrix()
        self._active: Set[Tuple[int, str]] = {
            (c.machine_id, c.operation_type) for c in capabilities if c.is_active
        }

    def validate(
        self,
        slots: Sequence[Slot],
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[SchedulingConflict]:
        if not slots:
            return []
        range_start = start or min(s.start for s in slots)
        range_end = end or max(s.end for s in slots)

        by_machine: Dict[int, List[Slot]] = {}
        for slot in slots:
            by_machine.setdefault(slot.machine_id, []).append(slot)

        conflicts: List[SchedulingConflict] = []
        machine_ids = sorted(by_machine)
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(machine_ids))) as pool:
            futures = [
                pool.submit(self._check_machine, machine_id, by_machine[machine_id], range_start, range_end)
                for machine_id in machine_ids
            ]
            for future in futures:
                conflicts.extend(future.result())

        conflicts.extend(self._check_precedence(slots))
        conflicts.sort(key=SchedulingConflict.sort_key)
        if conflicts:
            logger.info(
                "conflicts_detected slots=%s conflicts=%s critical=%s",
                len(slots),
                len(conflicts),
                sum(1 for c in conflicts if c.severity == Severity.CRITICAL),
            )
        return conflicts

    # ── Per-machine checks ────────────────────────────────────────────────────

    def _machine(self, machine_id: int) -> MachineInfo:
        return self.machines.get(machine_id) or MachineInfo(id=machine_id)

    def _check_machine(
        self,
        machine_id: int,
        slots: List[Slot],
        range_start: datetime,
        range_end: datetime,
    ) -> List[SchedulingConflict]:
        machine = self._machine(machine_id)
        calendar = self.calendars.get(machine_id) or machine.calendar or self.default_calendar
        # Buckets must cover every slot even when the caller's range is narrower.
        lo = min([range_start] + [s.setup_start for s in slots])
        hi = max([range_end] + [s.end for s in slots])
        buckets = build_buckets(
            machine,
            calendar,
            lo,
            hi,
            self.granularity,
            slots=slots,
            downtime=self.downtime,
            shift_start_hour=self.shift_start_hour,
        )
        conflicts: List[SchedulingConflict] = []
        conflicts.extend(self._check_capability(machine_id, slots))
        conflicts.extend(self._check_double_booking(machine_id, slots, buckets))
        conflicts.extend(self._check_changeover(machine, slots, buckets))
        conflicts.extend(self._check_overload(machine_id, slots, buckets))
        return conflicts

    def _check_capability(self, machine_id: int, slots: List[Slot]) -> List[SchedulingConflict]:
        conflicts = []
        for slot in sorted(slots, key=lambda s: (s.start, s.operation_id)):
            op = self.operations.get(slot.operation_id)
            if op is None or (machine_id, op.operation_type) in self._active:
                continue
            conflicts.append(
                SchedulingConflict(
                    kind=ConflictKind.CAPABILITY_MISMATCH,
                    severity=Severity.CRITICAL,
                    message=f"Machine {machine_id} has no active capability for {op.operation_type}",
                    slot_ids=_ids([slot]),
                    operation_ids=(slot.operation_id,),
                    machine_id=machine_id,
                    window_start=slot.start,
                )
            )
        return conflicts

    def _check_double_booking(self, machine_id, slots, buckets) -> List[SchedulingConflict]:
        ceiling = self.policy.utilization_ceiling
        ordered = sorted(slots, key=lambda s: (s.start, s.end, s.operation_id))
        conflicts = []
        for i, first in enumerate(ordered):
            for second in ordered[i + 1:]:
                if second.start >= first.end:
                    break
                overlap_start, overlap_end = second.start, min(first.end, second.end)
                if self.policy.allow_overload:
                    touched = [b for b in buckets if b.window_start < overlap_end and overlap_start < b.window_end]
                    if not any(b.exceeds(ceiling) for b in touched):
                        continue
                conflicts.append(
                    SchedulingConflict(
                        kind=ConflictKind.DOUBLE_BOOKING,
                        severity=Severity.CRITICAL,
                        message=(
                            f"Operations {first.operation_id} and {second.operation_id} overlap on machine "
                            f"{machine_id} from {overlap_start.isoformat()} to {overlap_end.isoformat()}"
                        ),
                        slot_ids=_ids([first, second]),
                        operation_ids=_op_ids([first, second]),
                        machine_id=machine_id,
                        window_start=overlap_start,
                    )
                )
        return conflicts

    def _check_changeover(self, machine: MachineInfo, slots, buckets) -> List[SchedulingConflict]:
        """Consecutive slots must leave at least the required changeover between them."""
        ceiling = self.policy.utilization_ceiling
        ordered = sorted(slots, key=lambda s: (s.start, s.end, s.operation_id))
        conflicts = []
        for prev, nxt in zip(ordered, ordered[1:]):
            # Overlapping runs are reported as plain double booking.
            if nxt.start < prev.end:
                continue
            current = self.operations.get(nxt.operation_id)
            if current is None:
                continue
            required = self.setup_matrix.changeover(
                machine.machine_type, self.operations.get(prev.operation_id), current
            )
            gap = (nxt.start - prev.end).total_seconds() / 60.0
            if gap + 1e-9 >= required:
                continue
            needed_from = nxt.start - timedelta(minutes=required)
            if self.policy.allow_overload:
                touched = [b for b in buckets if b.window_start < prev.end and needed_from < b.window_end]
                if not any(b.exceeds(ceiling) for b in touched):
                    continue
            conflicts.append(
                SchedulingConflict(
                    kind=ConflictKind.DOUBLE_BOOKING,
                    severity=Severity.CRITICAL,
                    message=(
                        f"Operation {nxt.operation_id} needs {required:g} changeover minutes after operation "
                        f"{prev.operation_id} on machine {machine.id} but only {gap:g} are free"
                    ),
                    slot_ids=_ids([prev, nxt]),
                    operation_ids=_op_ids([prev, nxt]),
                    machine_id=machine.id,
                    window_start=needed_from,
                )
            )
        return conflicts

    def _check_overload(self, machine_id, slots, buckets) -> List[SchedulingConflict]:
        ceiling = self.policy.utilization_ceiling
        conflicts = []
        for bucket in buckets:
            if bucket.planned_minutes <= 0:
                continue
            if bucket.exceeds(ceiling):
                severity = Severity.CRITICAL
            elif bucket.is_overloaded and self.policy.allow_overload:
                severity = Severity.WARNING
            else:
                continue
            touching = [s for s in slots if s.setup_start < bucket.window_end and bucket.window_start < s.end]
            label = bucket.shift or bucket.date.isoformat()
            conflicts.append(
                SchedulingConflict(
                    kind=ConflictKind.OVERLOAD,
                    severity=severity,
                    message=(
                        f"Machine {machine_id} bucket {label} planned {bucket.planned_minutes:g} of "
                        f"{bucket.available_minutes:g} available minutes"
                    ),
                    slot_ids=_ids(touching),
                    operation_ids=_op_ids(touching),
                    machine_id=machine_id,
                    window_start=bucket.window_start,
                )
            )
        return conflicts

    # ── Cross-machine checks ──────────────────────────────────────────────────

    def _check_precedence(self, slots: Sequence[Slot]) -> List[SchedulingConflict]:
        by_order: Dict[int, List[Tuple[int, Slot]]] = {}
        for slot in slots:
            op = self.operations.get(slot.operation_id)
            if op is None:
                continue
            by_order.setdefault(slot.work_order_id, []).append((op.sequence, slot))

        conflicts = []
        for work_order_id in sorted(by_order):
            entries = sorted(by_order[work_order_id], key=lambda e: (e[0], e[1].operation_id))
            for i, (seq, earlier) in enumerate(entries):
                for later_seq, later in entries[i + 1:]:
                    if later_seq <= seq or later.start >= earlier.end:
                        continue
                    conflicts.append(
                        SchedulingConflict(
                            kind=ConflictKind.PRECEDENCE_VIOLATION,
                            severity=Severity.CRITICAL,
                            message=(
                                f"Work order {work_order_id}: operation {later.operation_id} starts at "
                                f"{later.start.isoformat()} before operation {earlier.operation_id} ends at "
                                f"{earlier.end.isoformat()}"
                            ),
                            slot_ids=_ids([earlier, later]),
                            operation_ids=(earlier.operation_id, later.operation_id),
                            machine_id=later.machine_id,
                            window_start=later.start,
                        )
                    )
        return conflicts
